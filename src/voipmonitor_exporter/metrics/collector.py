"""Prometheus collector driving one collection cycle per scrape."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Iterable

import aiohttp
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from voipmonitor_exporter.config import ExporterConfig
from voipmonitor_exporter.errors import AuthError
from voipmonitor_exporter.fanout import FanoutCoordinator
from voipmonitor_exporter.models import CycleResult, TimeWindow
from voipmonitor_exporter.session import SessionClient
from voipmonitor_exporter.singleflight import SingleFlight
from voipmonitor_exporter.stats import StatsFetcher

logger = logging.getLogger(__name__)

NAMESPACE = "voipmonitor"

CALL_STATS_LABELS = ["last_sip_response", "sip_response_code", "component"]

# Metric definitions for Prometheus
METRIC_DEFINITIONS = {
    f"{NAMESPACE}_up": "Was the last Voipmonitor query successful.",
    f"{NAMESPACE}_call_stats_total": (
        "How many calls have occured (per last sip response code)."
    ),
    f"{NAMESPACE}_scrape_duration_seconds": (
        "Time spent on the last Voipmonitor collection cycle."
    ),
    f"{NAMESPACE}_component_fetch_failures": (
        "Components whose stats query failed in the last cycle."
    ),
}


class CollectionCycle:
    """Authenticate, then fan out over the roster.

    Each run starts from scratch: new HTTP client, new session, new window.
    """

    def __init__(
        self,
        config: ExporterConfig,
        session_client: SessionClient | None = None,
        coordinator: FanoutCoordinator | None = None,
    ):
        """Initialize the cycle.

        Args:
            config: Exporter configuration.
            session_client: Override for the login client.
            coordinator: Override for the fan-out coordinator.
        """
        self.config = config
        self.session_client = session_client or SessionClient(config.upstream)
        self.coordinator = coordinator or FanoutCoordinator(
            StatsFetcher(config.upstream),
            max_concurrency=config.upstream.max_concurrency,
        )

    def _client_session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(ssl=self.config.upstream.verify_tls)
        return aiohttp.ClientSession(connector=connector)

    async def run(
        self,
        http: aiohttp.ClientSession | None = None,
        now: datetime | None = None,
    ) -> CycleResult:
        """Run one full collection cycle.

        Args:
            http: HTTP client to use; a private one is opened and closed
                  around the cycle when omitted.
            now: Reference time for the window (for testing).

        Returns:
            CycleResult; ok is False when authentication failed.
        """
        if http is None:
            async with self._client_session() as owned:
                return await self.run(owned, now)

        started = time.monotonic()
        window = TimeWindow.trailing(self.config.upstream.interval_minutes, now)
        logger.debug(f"Starting cycle for window from {window.fdatefrom}")

        try:
            session = await self.session_client.authenticate(http)
        except AuthError as e:
            logger.warning(f"Authentication failed ({e.kind.value}): {e}")
            return CycleResult.failed(e, duration_seconds=time.monotonic() - started)

        result = await self.coordinator.run_cycle(
            http, session, self.config.roster, window
        )
        duration = time.monotonic() - started

        logger.info(
            f"Endpoint scraped: {len(result.observations)} observations, "
            f"{len(result.failures)} failed components in {duration:.2f}s"
        )
        return replace(result, duration_seconds=duration)


class VoipmonitorCollector(Collector):
    """Pull-based collector for a prometheus_client registry.

    Every call to collect() runs a fresh cycle on the calling thread. With
    single_flight enabled, scrapes that overlap a running cycle share its
    result instead of starting another one.
    """

    def __init__(self, config: ExporterConfig, cycle: CollectionCycle | None = None):
        """Initialize the collector.

        Args:
            config: Exporter configuration.
            cycle: Override for the collection cycle.
        """
        self.config = config
        self.cycle = cycle or CollectionCycle(config)
        self._flight: SingleFlight[CycleResult] | None = (
            SingleFlight() if config.single_flight else None
        )

    def scrape(self) -> CycleResult:
        """Run (or join) a collection cycle and return its result.

        Must not be called from a thread with a running event loop.
        """
        if self._flight is not None:
            return self._flight.do(self._run_cycle)
        return self._run_cycle()

    def _run_cycle(self) -> CycleResult:
        return asyncio.run(self.cycle.run())

    def describe(self) -> Iterable[GaugeMetricFamily]:
        """Describe metrics without contacting the upstream API."""
        return list(_families(CycleResult(ok=False)))

    def collect(self) -> Iterable[GaugeMetricFamily]:
        """Scrape the upstream API and yield the resulting metrics."""
        return list(_families(self.scrape()))


def _families(result: CycleResult) -> Iterable[GaugeMetricFamily]:
    """Turn a cycle result into metric families."""
    yield GaugeMetricFamily(
        f"{NAMESPACE}_up",
        METRIC_DEFINITIONS[f"{NAMESPACE}_up"],
        value=1 if result.ok else 0,
    )

    call_stats = GaugeMetricFamily(
        f"{NAMESPACE}_call_stats_total",
        METRIC_DEFINITIONS[f"{NAMESPACE}_call_stats_total"],
        labels=CALL_STATS_LABELS,
    )
    # Rows sharing a label set are summed so each series appears once
    totals: dict[tuple[str, str, str], float] = {}
    for observation in result.observations:
        key = (
            observation.response_label,
            str(observation.response_code),
            observation.component,
        )
        totals[key] = totals.get(key, 0.0) + observation.count
    for labels, value in totals.items():
        call_stats.add_metric(list(labels), value)
    yield call_stats

    yield GaugeMetricFamily(
        f"{NAMESPACE}_scrape_duration_seconds",
        METRIC_DEFINITIONS[f"{NAMESPACE}_scrape_duration_seconds"],
        value=result.duration_seconds,
    )
    yield GaugeMetricFamily(
        f"{NAMESPACE}_component_fetch_failures",
        METRIC_DEFINITIONS[f"{NAMESPACE}_component_fetch_failures"],
        value=len(result.failures),
    )
