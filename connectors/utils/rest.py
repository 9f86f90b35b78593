"""
REST API helper utilities.

Provides the shared request/response handling used by the HTTP-based
source clients.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from connectors.exceptions import (APIException, AuthenticationException,
                                   NotFoundException, RateLimitException)
from connectors.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class RESTClient:
    """
    Generic REST API client with retry and rate limit handling.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        source: Optional[str] = None,
    ):
        """
        Initialize REST client.

        :param base_url: Base URL for the API.
        :param token: Optional bearer token.
        :param timeout: Request timeout in seconds.
        :param headers: Optional additional headers.
        :param auth: Optional (username, password) pair for basic auth.
        :param source: Name of the upstream system, used in error messages.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.auth = auth
        self.source = source

        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _raise_for_status(self, response: requests.Response, endpoint: str) -> None:
        if response.status_code == 401:
            raise AuthenticationException("Authentication failed", self.source)
        elif response.status_code == 403:
            raise APIException(f"Forbidden: {response.text}", self.source)
        elif response.status_code == 429:
            raise RateLimitException("API rate limit exceeded", self.source)
        elif response.status_code == 404:
            raise NotFoundException(f"Not found: {endpoint}", self.source)
        elif response.status_code != 200:
            raise APIException(
                f"API error: {response.status_code} - {response.text}", self.source
            )

    def _send(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> Any:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        request_headers = {**self.headers, **(headers or {})}

        try:
            response = requests.get(
                url,
                params=params,
                headers=request_headers,
                auth=self.auth,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise APIException("Request timeout", self.source)
        except requests.exceptions.RequestException as e:
            raise APIException(f"Request failed: {e}", self.source)

        self._raise_for_status(response, endpoint)
        try:
            return response.json()
        except ValueError as e:
            raise APIException(f"Invalid JSON from {endpoint}: {e}", self.source)

    @retry_with_backoff(
        max_retries=5,
        initial_delay=1.0,
        max_delay=60.0,
        exceptions=(RateLimitException, APIException),
    )
    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Make a GET request expecting an object response.

        :param endpoint: API endpoint (relative to base_url).
        :param params: Optional query parameters.
        :param headers: Optional additional headers.
        :return: Response data.
        :raises AuthenticationException: If authentication fails.
        :raises RateLimitException: If rate limit is exceeded.
        :raises NotFoundException: If the endpoint does not exist.
        :raises APIException: If API returns an error.
        """
        data = self._send(endpoint, params, headers)
        if not isinstance(data, dict):
            logger.warning(f"Expected object response from {endpoint}, got {type(data)}")
            return {}
        return data
