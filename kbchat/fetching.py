"""Concurrent fetches whose failures stay isolated from each other."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .config import config

logger = config.get_logger(__name__)


@dataclass
class FetchReport:
    """Per-source outcome of ``gather_isolated``."""

    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def get(self, name: str, default: Any = None) -> Any:
        return self.results.get(name, default)


async def gather_isolated(
    fetches: Mapping[str, Callable[[], Awaitable[Any]]],
) -> FetchReport:
    """Run independent fetches concurrently.

    A failing fetch is recorded in ``errors`` and never cancels or hides the
    results of the others.

    Args:
        fetches: Source name to a zero-argument coroutine factory.

    Returns:
        The collected results and errors.
    """
    names = list(fetches)
    outcomes = await asyncio.gather(
        *(fetches[name]() for name in names), return_exceptions=True
    )

    report = FetchReport()
    for name, outcome in zip(names, outcomes, strict=True):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning("Fetch %s failed: %s", name, outcome)
            report.errors[name] = outcome
        else:
            report.results[name] = outcome
    return report
