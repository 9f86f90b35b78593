"""
AWS connectors for CloudWatch statistics and Cost Explorer spend.

Both connectors wrap a boto3 client and translate botocore failures into
connector exceptions so the infra collector can treat them like any other
source client error.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from connectors.exceptions import (APIException, AuthenticationException,
                                   ConnectorException, RateLimitException)
from connectors.models import (CostData, CostForecast, ForecastPeriod,
                               MetricDatapoint, ResourceCost, ResourceKind)
from connectors.utils import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_SECONDS = 300
DEFAULT_STATISTICS = ("Average", "Maximum", "Minimum")
COST_METRIC = "UnblendedCost"
FORECAST_METRIC = "UNBLENDED_COST"

THROTTLING_CODES = {"Throttling", "ThrottlingException", "RequestLimitExceeded"}
AUTH_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "ExpiredToken",
}

EC2 = ResourceKind(
    name="ec2",
    namespace="AWS/EC2",
    dimension_names=["InstanceId"],
    metric_names=[
        "CPUUtilization",
        "NetworkIn",
        "NetworkOut",
        "DiskReadBytes",
        "DiskWriteBytes",
    ],
)
RDS = ResourceKind(
    name="rds",
    namespace="AWS/RDS",
    dimension_names=["DBInstanceIdentifier"],
    metric_names=[
        "CPUUtilization",
        "DatabaseConnections",
        "FreeableMemory",
        "ReadIOPS",
        "WriteIOPS",
        "FreeStorageSpace",
    ],
)
ECS = ResourceKind(
    name="ecs",
    namespace="AWS/ECS",
    dimension_names=["ClusterName", "ServiceName"],
    metric_names=["CPUUtilization", "MemoryUtilization"],
)
LAMBDA = ResourceKind(
    name="lambda",
    namespace="AWS/Lambda",
    dimension_names=["FunctionName"],
    metric_names=[
        "Invocations",
        "Duration",
        "Errors",
        "Throttles",
        "ConcurrentExecutions",
    ],
)
ALB = ResourceKind(
    name="alb",
    namespace="AWS/ApplicationELB",
    dimension_names=["LoadBalancer"],
    metric_names=[
        "RequestCount",
        "TargetResponseTime",
        "HTTPCode_Target_2XX_Count",
        "HTTPCode_Target_4XX_Count",
        "HTTPCode_Target_5XX_Count",
    ],
)

RESOURCE_KINDS = {kind.name: kind for kind in (EC2, RDS, ECS, LAMBDA, ALB)}


def _translate_aws_error(e: Exception, service: str) -> ConnectorException:
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        if code in THROTTLING_CODES:
            return RateLimitException(f"{service} throttled: {e}", "aws")
        if code in AUTH_CODES:
            return AuthenticationException(f"{service} access denied: {e}", "aws")
        return APIException(f"{service} error ({code}): {e}", "aws")
    if isinstance(e, BotoCoreError):
        return APIException(f"{service} request failed: {e}", "aws")
    return APIException(f"Unexpected {service} error: {e}", "aws")


def resource_dimensions(kind: ResourceKind, resource: str) -> List[Tuple[str, str]]:
    """
    Split a configured resource identifier into CloudWatch dimension pairs.

    ECS services are configured as ``cluster/service``; load balancers may be
    given as a full ARN and are reduced to the ``app/name/id`` suffix.

    :param kind: Resource kind.
    :param resource: Resource identifier from team configuration.
    :return: List of (dimension name, dimension value).
    """
    if kind.name == "ecs":
        if "/" not in resource:
            raise ValueError(f"ECS service must be 'cluster/service', got {resource!r}")
        cluster, service = resource.split("/", 1)
        return [("ClusterName", cluster), ("ServiceName", service)]
    if kind.name == "alb" and "loadbalancer/" in resource:
        resource = resource.split("loadbalancer/", 1)[1]
    return [(kind.dimension_names[0], resource)]


class CloudWatchConnector:
    """
    CloudWatch statistics client.
    """

    def __init__(
        self,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client: Any = None,
    ):
        """
        Initialize CloudWatch connector.

        :param region: AWS region name.
        :param access_key_id: Optional static access key; falls back to the boto3 credential chain.
        :param secret_access_key: Optional static secret key.
        :param client: Optional pre-built boto3 CloudWatch client.
        """
        self.region = region
        self.client = client or boto3.client(
            "cloudwatch",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        exceptions=(RateLimitException,),
    )
    def get_metric_statistics(
        self,
        namespace: str,
        metric_name: str,
        dimensions: Sequence[Tuple[str, str]],
        start: datetime,
        end: datetime,
        period: int = DEFAULT_PERIOD_SECONDS,
        statistics: Sequence[str] = DEFAULT_STATISTICS,
    ) -> List[MetricDatapoint]:
        """
        Fetch statistics for one metric, ordered by timestamp.

        :param namespace: CloudWatch namespace, e.g. AWS/EC2.
        :param metric_name: Metric name, e.g. CPUUtilization.
        :param dimensions: (name, value) pairs identifying the resource.
        :param start: Window start.
        :param end: Window end.
        :param period: Bucket size in seconds.
        :param statistics: Statistics to request.
        :return: List of datapoints.
        """
        try:
            response = self.client.get_metric_statistics(
                Namespace=namespace,
                MetricName=metric_name,
                Dimensions=[{"Name": n, "Value": v} for n, v in dimensions],
                StartTime=start,
                EndTime=end,
                Period=period,
                Statistics=list(statistics),
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_aws_error(e, "CloudWatch")

        datapoints = sorted(
            response.get("Datapoints") or [],
            key=lambda dp: str(dp.get("Timestamp")),
        )
        return [
            MetricDatapoint(
                timestamp=str(dp.get("Timestamp")) if dp.get("Timestamp") else None,
                average=dp.get("Average"),
                maximum=dp.get("Maximum"),
                minimum=dp.get("Minimum"),
                unit=dp.get("Unit"),
            )
            for dp in datapoints
        ]

    def get_resource_metrics(
        self,
        kind: ResourceKind,
        resource: str,
        start: datetime,
        end: datetime,
    ) -> Dict[str, List[MetricDatapoint]]:
        """
        Fetch every catalogued metric for one resource.

        :param kind: Resource kind.
        :param resource: Resource identifier from team configuration.
        :param start: Window start.
        :param end: Window end.
        :return: Mapping of metric name to datapoints.
        """
        dimensions = resource_dimensions(kind, resource)
        result: Dict[str, List[MetricDatapoint]] = {}
        for metric_name in kind.metric_names:
            result[metric_name] = self.get_metric_statistics(
                kind.namespace, metric_name, dimensions, start, end
            )
        logger.debug(
            f"Retrieved {len(result)} {kind.namespace} metrics for {resource}"
        )
        return result


class CostExplorerConnector:
    """
    Cost Explorer client for total and per-service spend.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client: Any = None,
    ):
        self.client = client or boto3.client(
            "ce",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def _cost_and_usage(
        self,
        start: date,
        end: date,
        group_by: Optional[List[Dict[str, str]]] = None,
        granularity: str = "DAILY",
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "TimePeriod": {"Start": start.isoformat(), "End": end.isoformat()},
            "Granularity": granularity,
            "Metrics": [COST_METRIC],
        }
        if group_by:
            params["GroupBy"] = group_by

        results: List[Dict[str, Any]] = []
        while True:
            try:
                response = self.client.get_cost_and_usage(**params)
            except (ClientError, BotoCoreError) as e:
                raise _translate_aws_error(e, "Cost Explorer")
            results.extend(response.get("ResultsByTime") or [])
            token = response.get("NextPageToken")
            if not token:
                return results
            params["NextPageToken"] = token

    def get_total_cost(self, start: date, end: date) -> CostData:
        """
        Sum daily unblended cost over ``[start, end)``.

        :param start: First day (inclusive).
        :param end: Last day (exclusive).
        :return: CostData with per-day amounts.
        """
        total = 0.0
        currency = "USD"
        daily: Dict[str, float] = {}
        for bucket in self._cost_and_usage(start, end):
            cost = (bucket.get("Total") or {}).get(COST_METRIC) or {}
            amount = float(cost.get("Amount") or 0.0)
            currency = cost.get("Unit") or currency
            day = (bucket.get("TimePeriod") or {}).get("Start", "")
            daily[day] = daily.get(day, 0.0) + amount
            total += amount
        return CostData(total_amount=total, currency=currency, daily_amounts=daily)

    def get_cost_by_service(self, start: date, end: date) -> Dict[str, CostData]:
        """
        Sum daily unblended cost per AWS service over ``[start, end)``.

        :param start: First day (inclusive).
        :param end: Last day (exclusive).
        :return: Mapping of service name to CostData.
        """
        totals: Dict[str, float] = {}
        currencies: Dict[str, str] = {}
        buckets = self._cost_and_usage(
            start, end, group_by=[{"Type": "DIMENSION", "Key": "SERVICE"}]
        )
        for bucket in buckets:
            for group in bucket.get("Groups") or []:
                keys = group.get("Keys") or ["Unknown"]
                service = keys[0]
                cost = (group.get("Metrics") or {}).get(COST_METRIC) or {}
                totals[service] = totals.get(service, 0.0) + float(
                    cost.get("Amount") or 0.0
                )
                currencies[service] = cost.get("Unit") or currencies.get(service, "USD")
        return {
            service: CostData(total_amount=amount, currency=currencies[service])
            for service, amount in totals.items()
        }

    def get_cost_forecast(self, start: date, end: date) -> CostForecast:
        """
        Forecast unblended cost for a future window.

        :param start: First forecast day (today or later).
        :param end: Last day (exclusive).
        :return: CostForecast with one period per month.
        """
        try:
            response = self.client.get_cost_forecast(
                TimePeriod={"Start": start.isoformat(), "End": end.isoformat()},
                Metric=FORECAST_METRIC,
                Granularity="MONTHLY",
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_aws_error(e, "Cost Explorer")

        total = response.get("Total") or {}
        periods = [
            ForecastPeriod(
                start=(result.get("TimePeriod") or {}).get("Start", ""),
                end=(result.get("TimePeriod") or {}).get("End", ""),
                mean_amount=float(result.get("MeanValue") or 0.0),
            )
            for result in response.get("ForecastResultsByTime") or []
        ]
        return CostForecast(
            total_amount=float(total.get("Amount") or 0.0),
            currency=total.get("Unit") or "USD",
            periods=periods,
        )

    def get_top_cost_resources(
        self, start: date, end: date, limit: int = 10
    ) -> List[ResourceCost]:
        """
        Most expensive (service, usage type) pairs over ``[start, end)``, highest first.
        """
        buckets = self._cost_and_usage(
            start,
            end,
            group_by=[
                {"Type": "DIMENSION", "Key": "SERVICE"},
                {"Type": "DIMENSION", "Key": "USAGE_TYPE"},
            ],
            granularity="MONTHLY",
        )
        totals: Dict[Tuple[str, str], float] = {}
        for bucket in buckets:
            for group in bucket.get("Groups") or []:
                keys = list(group.get("Keys") or [])
                service = keys[0] if keys else "Unknown"
                usage_type = keys[1] if len(keys) > 1 else "Unknown"
                cost = (group.get("Metrics") or {}).get(COST_METRIC) or {}
                key = (service, usage_type)
                totals[key] = totals.get(key, 0.0) + float(cost.get("Amount") or 0.0)

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [
            ResourceCost(service=service, usage_type=usage_type, amount=amount)
            for (service, usage_type), amount in ranked[:limit]
        ]
