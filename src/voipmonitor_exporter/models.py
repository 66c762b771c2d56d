"""Value types passed through a collection cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Mapping

from voipmonitor_exporter.errors import AuthError, FetchError

# Name -> upstream sensor id
Roster = Mapping[str, str]

RFC3339_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def freeze_roster(components: Mapping[str, str]) -> Roster:
    """Return a read-only copy of a component mapping."""
    return MappingProxyType({str(k): str(v) for k, v in components.items()})


@dataclass(frozen=True)
class Session:
    """Upstream session token, valid for a single cycle."""

    sid: str

    @property
    def cookie(self) -> str:
        """Cookie header value carrying the session."""
        return f"PHPSESSID={self.sid}"

    def __repr__(self) -> str:
        return "Session(sid=***)"


@dataclass(frozen=True)
class TimeWindow:
    """Half-open UTC interval [start, end) queried for stats."""

    start: datetime
    end: datetime

    @classmethod
    def trailing(cls, minutes: int, now: datetime | None = None) -> TimeWindow:
        """Build the window ending now and spanning the given minutes.

        Args:
            minutes: Window length in minutes.
            now: Reference time, defaults to the current UTC time.

        Returns:
            TimeWindow in UTC.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        else:
            now = now.astimezone(timezone.utc)
        return cls(start=now - timedelta(minutes=minutes), end=now)

    @property
    def fdatefrom(self) -> str:
        """Window start rendered as RFC3339 in UTC."""
        return self.start.astimezone(timezone.utc).strftime(RFC3339_FORMAT)


@dataclass(frozen=True)
class Observation:
    """Call count for one SIP response code of one component."""

    component: str
    response_label: str
    response_code: int
    count: float

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "response_label": self.response_label,
            "response_code": self.response_code,
            "count": self.count,
        }


@dataclass(frozen=True)
class CycleResult:
    """Everything one collection cycle produced.

    ok is False only when no session could be obtained; component failures
    are listed in failures and leave ok untouched.
    """

    observations: tuple[Observation, ...] = ()
    ok: bool = True
    error: AuthError | None = None
    failures: Mapping[str, FetchError] = field(
        default_factory=lambda: MappingProxyType({})
    )
    duration_seconds: float = 0.0

    @classmethod
    def failed(cls, error: AuthError, duration_seconds: float = 0.0) -> CycleResult:
        """Result of a cycle that could not authenticate."""
        return cls(ok=False, error=error, duration_seconds=duration_seconds)

    @property
    def liveness(self) -> bool:
        return self.ok

    @property
    def components(self) -> set[str]:
        """Components that contributed at least one observation."""
        return {o.component for o in self.observations}
