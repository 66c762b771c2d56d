"""Session acquisition against the VoIPmonitor REST API.

The exporter logs in again on every cycle; sessions are never cached.
"""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp

from voipmonitor_exporter.config import UpstreamConfig
from voipmonitor_exporter.errors import AuthError, AuthErrorKind
from voipmonitor_exporter.models import Session

logger = logging.getLogger(__name__)


class SessionClient:
    """Obtain a session token through the bypass_login module."""

    def __init__(self, config: UpstreamConfig):
        """Initialize the session client.

        Args:
            config: Upstream endpoint and credentials.
        """
        self.config = config

    def login_params(self) -> dict[str, str]:
        """Query parameters of the login request."""
        return {
            "module": "bypass_login",
            "user": self.config.username,
            "pass": self.config.password,
        }

    async def authenticate(self, http: aiohttp.ClientSession) -> Session:
        """Log in and return a fresh session.

        Args:
            http: HTTP client to send the request with.

        Returns:
            Session carrying the upstream sid.

        Raises:
            AuthError: On transport failure, non-2xx status, or a body
                without a usable sid.
        """
        try:
            async with http.post(
                self.config.sql_url,
                params=self.login_params(),
                data=b"",
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            ) as response:
                status = response.status
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(
                f"Login request failed: {e!r}",
                kind=AuthErrorKind.NETWORK,
                cause=e,
            ) from e

        if not 200 <= status < 300:
            raise AuthError(
                f"Login returned HTTP {status}",
                kind=AuthErrorKind.UPSTREAM_STATUS,
                status=status,
            )

        sid = _parse_sid(body)
        logger.debug("Obtained upstream session")
        return Session(sid=sid)


def _parse_sid(body: bytes) -> str:
    """Extract the sid from a login response body."""
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise AuthError(
            "Can not unmarshal login response",
            kind=AuthErrorKind.MALFORMED_RESPONSE,
            cause=e,
        ) from e

    if not isinstance(payload, dict):
        raise AuthError(
            "Login response is not a JSON object",
            kind=AuthErrorKind.MALFORMED_RESPONSE,
        )

    sid = payload.get("sid", payload.get("SID"))
    if not isinstance(sid, str) or not sid:
        raise AuthError(
            "Login response carries no sid",
            kind=AuthErrorKind.MALFORMED_RESPONSE,
        )
    return sid
