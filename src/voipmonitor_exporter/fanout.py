"""Concurrent per-component fetching within one collection cycle."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from types import MappingProxyType

import aiohttp

from voipmonitor_exporter.errors import FetchError, FetchErrorKind
from voipmonitor_exporter.models import (
    CycleResult,
    Observation,
    Roster,
    Session,
    TimeWindow,
)
from voipmonitor_exporter.stats import StatsFetcher

logger = logging.getLogger(__name__)


class FanoutCoordinator:
    """Run one stats fetch per roster component and merge the results.

    All fetches share the session, window and HTTP client. A failing
    component is logged and left out; it never fails the cycle.
    """

    def __init__(self, fetcher: StatsFetcher, max_concurrency: int | None = None):
        """Initialize the coordinator.

        Args:
            fetcher: Fetcher used for every component.
            max_concurrency: Optional cap on in-flight fetches.
        """
        self.fetcher = fetcher
        self.max_concurrency = max_concurrency

    async def run_cycle(
        self,
        http: aiohttp.ClientSession,
        session: Session,
        roster: Roster,
        window: TimeWindow,
    ) -> CycleResult:
        """Fetch every component and wait for all of them.

        Args:
            http: Shared HTTP client.
            session: Session of the current cycle.
            roster: Components to query.
            window: Window shared by every query.

        Returns:
            CycleResult holding observations of the components that succeeded
            and the errors of those that did not.
        """
        semaphore = (
            asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        )
        components = list(roster.items())

        async def fetch_one(component: str, sensor_id: str) -> list[Observation]:
            async with AsyncExitStack() as stack:
                if semaphore is not None:
                    await stack.enter_async_context(semaphore)
                return await self.fetcher.fetch(
                    http, session, component, sensor_id, window
                )

        # gather is the barrier: nothing is merged until every task settled
        outcomes = await asyncio.gather(
            *(fetch_one(name, sensor_id) for name, sensor_id in components),
            return_exceptions=True,
        )

        observations: list[Observation] = []
        failures: dict[str, FetchError] = {}

        for (component, _), outcome in zip(components, outcomes):
            if isinstance(outcome, FetchError):
                failures[component] = outcome
                logger.warning(f"Fetch failed for {component}: {outcome}")
            elif isinstance(outcome, Exception):
                failures[component] = FetchError(
                    f"Unexpected error fetching {component}: {outcome!r}",
                    kind=FetchErrorKind.NETWORK,
                    component=component,
                    cause=outcome,
                )
                logger.warning(f"Fetch failed for {component}: {outcome!r}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                observations.extend(outcome)

        return CycleResult(
            observations=tuple(observations),
            ok=True,
            failures=MappingProxyType(failures),
        )
