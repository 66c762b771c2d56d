"""Shared fixtures: a scripted stand-in for aiohttp.ClientSession."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from voipmonitor_exporter.config import ExporterConfig, UpstreamConfig
from voipmonitor_exporter.models import freeze_roster


def mock_response(status: int = 200, body: Any = "") -> MagicMock:
    """Async context manager yielding a response with status and read().

    A str body is UTF-8 encoded, bytes are returned as-is, and anything
    else is serialized as JSON.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    elif not isinstance(body, bytes):
        body = json.dumps(body).encode("utf-8")

    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)

    response_cm = MagicMock()
    response_cm.__aenter__ = AsyncMock(return_value=response)
    response_cm.__aexit__ = AsyncMock(return_value=None)
    return response_cm


class SlowResponse:
    """Response context manager that hangs for `delay` seconds."""

    def __init__(self, delay: float):
        self.delay = delay

    async def __aenter__(self):
        await asyncio.sleep(self.delay)
        raise AssertionError("slow response should have been cancelled")

    async def __aexit__(self, *exc_info):
        return None


class FakeUpstream:
    """Routes post() calls to scripted login and per-sensor responses.

    A scripted value may be a response context manager or an exception,
    which is raised when post() is called.
    """

    def __init__(self) -> None:
        self.login: Any = mock_response(200, {"sid": "tok1"})
        self.sensors: dict[str, Any] = {}
        self.login_calls: list[dict] = []
        self.stats_calls: list[dict] = []

    def stats(self, sensor_id: str, results: list[dict], total: int | None = None) -> None:
        """Script a successful stats response for a sensor."""
        self.sensors[sensor_id] = mock_response(
            200,
            {"total": len(results) if total is None else total, "results": results},
        )

    def post(self, url: str, params=None, data=None, headers=None, timeout=None):
        if params and params.get("module") == "bypass_login":
            self.login_calls.append({"url": url, "params": dict(params)})
            return self._resolve(self.login)

        self.stats_calls.append({"url": url, "data": dict(data), "headers": headers})
        scripted = self.sensors.get(data["fsensor_id"])
        if scripted is None:
            return mock_response(200, {"total": 0, "results": []})
        return self._resolve(scripted)

    @staticmethod
    def _resolve(scripted: Any):
        if isinstance(scripted, BaseException):
            raise scripted
        return scripted

    @property
    def queried_sensors(self) -> list[str]:
        return [call["data"]["fsensor_id"] for call in self.stats_calls]


@pytest.fixture
def upstream() -> FakeUpstream:
    """Scripted upstream API."""
    return FakeUpstream()


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    """Upstream settings pointing at a fake host."""
    return UpstreamConfig(
        endpoint="http://voipmonitor.test",
        username="exporter",
        password="secret",
        fetch_timeout=1.0,
    )


@pytest.fixture
def config(upstream_config: UpstreamConfig) -> ExporterConfig:
    """Exporter config with a two-component roster."""
    return ExporterConfig(
        upstream=upstream_config,
        roster=freeze_roster({"A": "4", "B": "8"}),
    )
