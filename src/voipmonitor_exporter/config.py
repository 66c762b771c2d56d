"""Exporter configuration management.

Loads configuration from voipmonitor.toml with sensible defaults, then
applies VOIPMONITOR_* environment overrides. The resulting ExporterConfig is
built once at startup and handed to the collector.
"""

from __future__ import annotations

import logging
import math
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

from voipmonitor_exporter.errors import ConfigError
from voipmonitor_exporter.models import Roster, freeze_roster

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "voipmonitor.toml"

DEFAULT_INTERVAL_MINUTES = 5
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_LISTEN_ADDRESS = ":9141"
DEFAULT_TELEMETRY_PATH = "/metrics"

# Sent verbatim; the upstream column list is not well-formed URL escaping
DEFAULT_NEED_COLUMNS = (
    "%5B%22lastSIPresponse%22%2C%22cnt_all%22%2C%22cnt_ok%22"
    "%lastSIPresponseNum%22%sensor_id"
)
DEFAULT_TIMESTAMP_ID = "1642680756758_CDR-group-panel"

DEFAULT_ROSTER: Roster = freeze_roster({
    "audiocodes-eastus": "4",
    "audiocodes-auseast": "8",
    "audiocodes-uksouth": "9",
    "audiocodes-westgerc": "10",
    "audiocodes-transus": "15",
    "audiocodes-sanorth": "21",
    "opensips1": "14",
    "opensips2": "17",
    "fscc3": "12",
    "fscc4": "18",
    "fscc5": "19",
    "fscc6": "20",
})

ENV_ENDPOINT = "VOIPMONITOR_ENDPOINT"
ENV_USERNAME = "VOIPMONITOR_USERNAME"
ENV_PASSWORD = "VOIPMONITOR_PASSWORD"
ENV_INTERVAL = "VOIPMONITOR_INTERVAL"
ENV_FETCH_TIMEOUT = "VOIPMONITOR_FETCH_TIMEOUT"
ENV_LISTEN_ADDRESS = "VOIPMONITOR_LISTEN_ADDRESS"
ENV_TELEMETRY_PATH = "VOIPMONITOR_TELEMETRY_PATH"


@dataclass(frozen=True)
class UpstreamConfig:
    """Connection settings for the VoIPmonitor REST API."""

    endpoint: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_concurrency: int | None = None  # None: one in-flight fetch per component
    need_columns: str = DEFAULT_NEED_COLUMNS
    timestamp_id: str = DEFAULT_TIMESTAMP_ID
    verify_tls: bool = True

    @property
    def sql_url(self) -> str:
        """URL of the upstream query endpoint."""
        return f"{self.endpoint}/php/model/sql.php"


@dataclass(frozen=True)
class WebConfig:
    """Where the metrics are served."""

    listen_address: str = DEFAULT_LISTEN_ADDRESS
    telemetry_path: str = DEFAULT_TELEMETRY_PATH


@dataclass(frozen=True)
class ExporterConfig:
    """Root configuration for the exporter."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    web: WebConfig = field(default_factory=WebConfig)
    roster: Roster = field(default_factory=lambda: DEFAULT_ROSTER)
    single_flight: bool = True

    def validate(self) -> None:
        """Check the settings a collection cycle cannot run without.

        Raises:
            ConfigError: If the endpoint or roster is missing.
        """
        if not self.upstream.endpoint:
            raise ConfigError(f"{ENV_ENDPOINT} is not set")
        if not self.roster:
            raise ConfigError("Roster has no components")


def parse_interval(value: object) -> int:
    """Parse a polling interval in minutes.

    Anything that is not a positive whole number falls back to the default.

    Args:
        value: Raw value from the environment or config file.

    Returns:
        Interval in minutes.
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_INTERVAL_MINUTES
    try:
        minutes = int(str(value).strip())
    except ValueError:
        logger.debug(f"Invalid interval {value!r}, using {DEFAULT_INTERVAL_MINUTES}m")
        return DEFAULT_INTERVAL_MINUTES
    if minutes <= 0:
        return DEFAULT_INTERVAL_MINUTES
    return minutes


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a listen address such as ':9141' or '127.0.0.1:9141'.

    Raises:
        ConfigError: If the port is missing or not a number.
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigError(f"Invalid listen address: {address!r}")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"Invalid port in listen address: {address!r}") from None
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ExporterConfig:
    """Load configuration from voipmonitor.toml and the environment.

    Args:
        config_path: Path to config file. If None, searches current directory
                     and parent directories for voipmonitor.toml.
        env: Environment mapping, defaults to os.environ.

    Returns:
        ExporterConfig with values from file, environment, or defaults.

    Raises:
        ConfigError: If the config file cannot be parsed.
    """
    if env is None:
        env = os.environ

    if config_path is None:
        config_path = _find_config_file()

    data: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e

    return _apply_env(_parse_config(data), env)


def _find_config_file() -> Path | None:
    """Search for voipmonitor.toml in current and parent directories."""
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_file = directory / CONFIG_FILENAME
        if config_file.exists():
            return config_file

    return None


def _parse_config(data: dict) -> ExporterConfig:
    """Parse configuration dictionary into ExporterConfig."""
    upstream_data = _section(data, "upstream")
    web_data = _section(data, "web")
    collector_data = _section(data, "collector")

    try:
        upstream = UpstreamConfig(
            endpoint=str(upstream_data.get("endpoint", "")).rstrip("/"),
            username=str(upstream_data.get("username", "")),
            password=str(upstream_data.get("password", "")),
            interval_minutes=parse_interval(upstream_data.get("interval_minutes")),
            request_timeout=_positive_float(
                upstream_data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
            ),
            fetch_timeout=_positive_float(
                upstream_data.get("fetch_timeout", DEFAULT_FETCH_TIMEOUT)
            ),
            max_concurrency=_optional_positive_int(
                upstream_data.get("max_concurrency")
            ),
            need_columns=str(upstream_data.get("need_columns", DEFAULT_NEED_COLUMNS)),
            timestamp_id=str(upstream_data.get("timestamp_id", DEFAULT_TIMESTAMP_ID)),
            verify_tls=bool(upstream_data.get("verify_tls", True)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid [upstream] section: {e}") from e

    web = WebConfig(
        listen_address=str(web_data.get("listen_address", DEFAULT_LISTEN_ADDRESS)),
        telemetry_path=_normalize_path(
            str(web_data.get("telemetry_path", DEFAULT_TELEMETRY_PATH))
        ),
    )

    roster = DEFAULT_ROSTER
    if "roster" in data:
        roster_data = data["roster"]
        if not isinstance(roster_data, dict) or not roster_data:
            raise ConfigError("[roster] must map component names to sensor ids")
        roster = freeze_roster(roster_data)

    return ExporterConfig(
        upstream=upstream,
        web=web,
        roster=roster,
        single_flight=bool(collector_data.get("single_flight", True)),
    )


def _apply_env(config: ExporterConfig, env: Mapping[str, str]) -> ExporterConfig:
    """Overlay VOIPMONITOR_* environment variables on a parsed config."""
    upstream = config.upstream
    web = config.web

    if ENV_ENDPOINT in env:
        upstream = replace(upstream, endpoint=env[ENV_ENDPOINT].rstrip("/"))
    if ENV_USERNAME in env:
        upstream = replace(upstream, username=env[ENV_USERNAME])
    if ENV_PASSWORD in env:
        upstream = replace(upstream, password=env[ENV_PASSWORD])
    if ENV_INTERVAL in env:
        upstream = replace(upstream, interval_minutes=parse_interval(env[ENV_INTERVAL]))
    if ENV_FETCH_TIMEOUT in env:
        try:
            upstream = replace(
                upstream, fetch_timeout=_positive_float(env[ENV_FETCH_TIMEOUT])
            )
        except ValueError:
            logger.warning(
                f"Ignoring invalid {ENV_FETCH_TIMEOUT}={env[ENV_FETCH_TIMEOUT]!r}"
            )

    if ENV_LISTEN_ADDRESS in env:
        web = replace(web, listen_address=env[ENV_LISTEN_ADDRESS])
    if ENV_TELEMETRY_PATH in env:
        web = replace(web, telemetry_path=_normalize_path(env[ENV_TELEMETRY_PATH]))

    return replace(config, upstream=upstream, web=web)


def _optional_positive_int(value: object) -> int | None:
    if value is None:
        return None
    number = int(value)
    if number <= 0:
        raise ValueError(f"expected a positive integer, got {value!r}")
    return number


def _normalize_path(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"


def _positive_float(value: object) -> float:
    if isinstance(value, bool):
        raise ValueError(f"expected a positive number, got {value!r}")
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"expected a positive number, got {value!r}")
    return number


def _section(data: dict, name: str) -> dict:
    """Return a top-level table of the config file, empty when absent."""
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section
