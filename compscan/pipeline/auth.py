"""
CompScan - eBay OAuth Token Cache

OAuth2 Client Credentials flow using EBAY_APP_ID + EBAY_CERT_ID. The token is
held until it is within TOKEN_EXPIRY_SKEW_SECONDS of expiry; refreshes are
serialized by an asyncio.Lock so concurrent callers share one fetch.
"""

from __future__ import annotations

import asyncio
import base64
import time
from typing import Any, Callable

import httpx
import structlog

from compscan.config import settings
from compscan.errors import ConfigurationMissing, UpstreamRateLimited, UpstreamTransientFailure

logger = structlog.get_logger(__name__)

_DEFAULT_EXPIRES_IN = 7200


def _expires_in(value: Any) -> int:
    if value is None:
        return _DEFAULT_EXPIRES_IN
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        logger.warning("ebay_token_expiry_unparseable", value=value, source="ebay_auth")
        return _DEFAULT_EXPIRES_IN
    return seconds if seconds > 0 else _DEFAULT_EXPIRES_IN


def token_preview(token: str, length: int = 12) -> str:
    """First characters of a token, safe to log."""
    return token[:length] + "…" if token else ""


class OAuthTokenCache:
    """
    Application access token with its expiry.

    Usage:
        token = await token_cache.get_token(http_client)
    """

    def __init__(
        self,
        app_id: str | None = None,
        cert_id: str | None = None,
        skew_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._app_id = app_id
        self._cert_id = cert_id
        self._skew_seconds = skew_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def app_id(self) -> str:
        return self._app_id if self._app_id is not None else settings.EBAY_APP_ID

    @property
    def cert_id(self) -> str:
        return self._cert_id if self._cert_id is not None else settings.EBAY_CERT_ID

    @property
    def skew_seconds(self) -> float:
        return (
            self._skew_seconds if self._skew_seconds is not None
            else settings.TOKEN_EXPIRY_SKEW_SECONDS
        )

    def is_fresh(self) -> bool:
        return bool(self._token) and self._clock() < self._expires_at - self.skew_seconds

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self, client: httpx.AsyncClient) -> str:
        """Cached token, refreshed when missing or close to expiry."""
        missing = [
            name for name, value in (("EBAY_APP_ID", self.app_id), ("EBAY_CERT_ID", self.cert_id))
            if not value
        ]
        if missing:
            raise ConfigurationMissing(*missing)

        if self.is_fresh():
            return str(self._token)
        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self.is_fresh():
                return str(self._token)
            return await self._refresh(client)

    async def _refresh(self, client: httpx.AsyncClient) -> str:
        credentials = f"{self.app_id}:{self.cert_id}"
        encoded = base64.b64encode(credentials.encode()).decode()
        try:
            response = await client.post(
                settings.EBAY_OAUTH_URL,
                headers={
                    "Authorization": f"Basic {encoded}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={
                    "grant_type": "client_credentials",
                    "scope": settings.EBAY_OAUTH_SCOPE,
                },
            )
        except httpx.HTTPError as e:
            logger.error("ebay_token_fetch_failed", error=str(e), source="ebay_auth")
            raise UpstreamTransientFailure("oauth", str(e)) from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "")
            raise UpstreamRateLimited(int(retry_after) * 1000 if retry_after.isdigit() else 0)
        if response.status_code in (400, 401):
            # Credentials present but rejected.
            logger.error(
                "ebay_token_rejected",
                status_code=response.status_code,
                source="ebay_auth",
            )
            raise ConfigurationMissing("EBAY_APP_ID", "EBAY_CERT_ID")
        if response.status_code >= 400:
            logger.error(
                "ebay_token_fetch_failed",
                status_code=response.status_code,
                source="ebay_auth",
            )
            raise UpstreamTransientFailure("oauth", f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamTransientFailure("oauth", "invalid JSON body") from e
        if not isinstance(data, dict):
            raise UpstreamTransientFailure("oauth", f"unexpected {type(data).__name__} body")
        token = data.get("access_token")
        if not token or not isinstance(token, str):
            raise UpstreamTransientFailure("oauth", "no access_token in response")
        expires_in = _expires_in(data.get("expires_in"))

        self._token = token
        self._expires_at = self._clock() + expires_in
        logger.info(
            "ebay_token_refreshed",
            expires_in=expires_in,
            token_preview=token_preview(token),
            source="ebay_auth",
        )
        return token


# Process-wide token, shared by every Browse client.
token_cache = OAuthTokenCache()
