"""Per-component CDR statistics queries.

Each query asks the CDR_stats module for calls grouped by last SIP response
over a trailing window, and turns every returned row into an Observation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from voipmonitor_exporter.config import UpstreamConfig
from voipmonitor_exporter.errors import FetchError, FetchErrorKind
from voipmonitor_exporter.models import Observation, Session, TimeWindow

logger = logging.getLogger(__name__)

# Group CDRs by last SIP response
GROUP_BY_LAST_SIP_RESPONSE = "4"


def build_stats_form(
    sensor_id: str,
    window: TimeWindow,
    need_columns: str,
    timestamp_id: str,
) -> dict[str, str]:
    """Build the form body of a CDR_stats listing request.

    Args:
        sensor_id: Upstream sensor id of the component.
        window: Queried time window; only its start is sent.
        need_columns: Column selection passed through unchanged.
        timestamp_id: Panel identifier expected by the upstream UI endpoint.

    Returns:
        Ordered mapping of form fields.
    """
    return {
        "task": "LISTING",
        "module": "CDR_stats",
        "fdatefrom": window.fdatefrom,
        "fsensor_id": sensor_id,
        "group_by": GROUP_BY_LAST_SIP_RESPONSE,
        "needColumns": need_columns,
        "needPercentile": "1",
        "page": "1",
        "start": "0",
        "limit": "-1",
        "timestampId": timestamp_id,
        "clientTimezone": "UTC",
        "clientOsTimezone": "UTC",
        "timeout": "3600",
        "check_active_request": "true",
    }


def parse_call_stats(body: str | bytes, component: str) -> list[Observation]:
    """Parse a CDR_stats response body.

    Args:
        body: Raw response body; bytes are decoded as UTF-8.
        component: Component the query was made for.

    Returns:
        One Observation per result row.

    Raises:
        FetchError: With kind DECODE if the body does not have the expected shape.
    """
    try:
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FetchError(
            f"Invalid JSON from stats query for {component}",
            kind=FetchErrorKind.DECODE,
            component=component,
            cause=e,
        ) from e

    if not isinstance(payload, dict):
        raise _decode_error(component, "response is not a JSON object")

    results = payload.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        raise _decode_error(component, "results is not a list")

    observations = []
    for row in results:
        if not isinstance(row, dict):
            raise _decode_error(component, f"result row is not an object: {row!r}")
        try:
            observations.append(
                Observation(
                    component=component,
                    response_label=_as_label(row.get("lastSIPresponse")),
                    response_code=_as_int(row.get("lastSIPresponseNum", 0)),
                    count=_as_float(row.get("cnt_all", 0.0)),
                )
            )
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"Invalid result row for {component}: {e}",
                kind=FetchErrorKind.DECODE,
                component=component,
                cause=e,
            ) from e

    return observations


class StatsFetcher:
    """Query call statistics for one component at a time."""

    def __init__(self, config: UpstreamConfig):
        """Initialize the fetcher.

        Args:
            config: Upstream endpoint, deadline and query settings.
        """
        self.config = config

    async def fetch(
        self,
        http: aiohttp.ClientSession,
        session: Session,
        component: str,
        sensor_id: str,
        window: TimeWindow,
    ) -> list[Observation]:
        """Fetch stats for one component within its own deadline.

        Args:
            http: Shared HTTP client.
            session: Session of the current cycle.
            component: Component name used to tag observations.
            sensor_id: Upstream sensor id of the component.
            window: Trailing window to query.

        Returns:
            Observations for the component, possibly empty.

        Raises:
            FetchError: On transport failure, deadline, non-2xx status, or
                an undecodable body.
        """
        form = build_stats_form(
            sensor_id,
            window,
            need_columns=self.config.need_columns,
            timestamp_id=self.config.timestamp_id,
        )

        try:
            status, body = await asyncio.wait_for(
                self._post(http, session, form),
                timeout=self.config.fetch_timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(
                f"Stats query for {component} exceeded {self.config.fetch_timeout}s",
                kind=FetchErrorKind.NETWORK,
                component=component,
                cause=e,
            ) from e
        except aiohttp.ClientError as e:
            raise FetchError(
                f"Stats query for {component} failed: {e!r}",
                kind=FetchErrorKind.NETWORK,
                component=component,
                cause=e,
            ) from e

        if not 200 <= status < 300:
            raise FetchError(
                f"Stats query for {component} returned HTTP {status}",
                kind=FetchErrorKind.UPSTREAM_STATUS,
                component=component,
                status=status,
            )

        observations = parse_call_stats(body, component)
        logger.debug(f"Fetched {len(observations)} rows for {component}")
        return observations

    async def _post(
        self,
        http: aiohttp.ClientSession,
        session: Session,
        form: dict[str, str],
    ) -> tuple[int, bytes]:
        async with http.post(
            self.config.sql_url,
            data=form,
            headers={"Cookie": session.cookie},
        ) as response:
            return response.status, await response.read()


def _decode_error(component: str, detail: str) -> FetchError:
    return FetchError(
        f"Unexpected stats response for {component}: {detail}",
        kind=FetchErrorKind.DECODE,
        component=component,
    )


def _as_label(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"lastSIPresponse must be a string, got {value!r}")
    return value


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"lastSIPresponseNum must be an integer, got {value!r}")
    return int(value)


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError(f"cnt_all must be a number, got {value!r}")
    return float(value)
