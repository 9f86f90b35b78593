from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union


@dataclass(frozen=True)
class Ok:
    """One item was stored or updated."""

    key: str


@dataclass(frozen=True)
class Skipped:
    """One item was dropped; ``reason`` is logged by the collector."""

    key: Optional[str]
    reason: str


Outcome = Union[Ok, Skipped]


@dataclass(frozen=True)
class CollectionResult:
    count: int = 0
    error_count: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[Outcome]) -> "CollectionResult":
        count = 0
        errors = 0
        for outcome in outcomes:
            if isinstance(outcome, Ok):
                count += 1
            else:
                errors += 1
        return cls(count=count, error_count=errors)

    @classmethod
    def failed(cls) -> "CollectionResult":
        return cls(count=0, error_count=1)

    def __add__(self, other: "CollectionResult") -> "CollectionResult":
        return CollectionResult(
            count=self.count + other.count,
            error_count=self.error_count + other.error_count,
        )


async def run_sync(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking connector call on the default executor."""
    loop = asyncio.get_running_loop()
    if kwargs:
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
    return await loop.run_in_executor(None, fn, *args)
