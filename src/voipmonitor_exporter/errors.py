"""Error taxonomy for the collection cycle.

Two failure scopes exist:
- AuthError: no session could be obtained, the whole cycle is abandoned
- FetchError: one component could not be queried, the cycle continues
"""

from __future__ import annotations

from enum import Enum


# =============================================================================
# Kinds
# =============================================================================


class AuthErrorKind(str, Enum):
    """Why a login attempt failed."""

    NETWORK = "network"
    UPSTREAM_STATUS = "upstream_status"
    MALFORMED_RESPONSE = "malformed_response"


class FetchErrorKind(str, Enum):
    """Why a per-component stats query failed."""

    NETWORK = "network"
    UPSTREAM_STATUS = "upstream_status"
    DECODE = "decode"


# =============================================================================
# Exceptions
# =============================================================================


class ExporterError(Exception):
    """Base class for exporter errors."""


class ConfigError(ExporterError):
    """Raised when the exporter configuration is unusable."""


class AuthError(ExporterError):
    """Raised when the upstream session could not be obtained."""

    def __init__(
        self,
        message: str,
        kind: AuthErrorKind,
        cause: BaseException | None = None,
        status: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.cause = cause
        self.status = status


class FetchError(ExporterError):
    """Raised when stats for a single component could not be fetched."""

    def __init__(
        self,
        message: str,
        kind: FetchErrorKind,
        component: str,
        cause: BaseException | None = None,
        status: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.component = component
        self.cause = cause
        self.status = status
