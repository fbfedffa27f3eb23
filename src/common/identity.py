from __future__ import annotations

import os
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx

from .events import Signal, Subscription


DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_APPDATA_SCOPE = "https://www.googleapis.com/auth/drive.appdata"

# Environment variable names for convenience configuration
ENV_CLIENT_ID = "SAVESYNC_CLIENT_ID"
ENV_CLIENT_SECRET = "SAVESYNC_CLIENT_SECRET"
ENV_REFRESH_TOKEN = "SAVESYNC_REFRESH_TOKEN"

# Refresh this many seconds before the provider-reported expiry
_EXPIRY_SKEW = 60.0


class IdentityError(RuntimeError):
    """Identity provider could not initialize or refresh credentials."""


class IdentityProvider(Protocol):
    """Sign-in state source the session gate observes."""

    async def initialize(self) -> None:
        ...

    def is_signed_in(self) -> bool:
        ...

    def listen(self, callback: Callable[[bool], Awaitable[Any]]) -> Subscription:
        ...

    async def sign_in(self) -> None:
        ...

    async def sign_out(self) -> None:
        ...


class RefreshTokenIdentity:
    """
    Google OAuth identity backed by a stored refresh token.

    Usage
    - `initialize()` exchanges the refresh token for an access token when one
      is configured; without a refresh token the user starts signed out.
    - `access_token()` is the async token source for `DriveClient`; it
      refreshes transparently when the current token is about to expire.
    - `sign_in()` / `sign_out()` flip the session and notify listeners. Signing
      out only drops the access token; the refresh token stays so the user
      can sign back in.

    Environment variables (optional)
    - `SAVESYNC_CLIENT_ID`:     OAuth client id
    - `SAVESYNC_CLIENT_SECRET`: OAuth client secret (installed apps may omit)
    - `SAVESYNC_REFRESH_TOKEN`: refresh token granted for the drive.appdata scope
    """

    def __init__(
        self,
        client_id: str,
        *,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not client_id:
            raise ValueError("client_id is required")
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._token_url = token_url
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0
        self._signed_in = False
        self._changed: Signal[bool] = Signal("session-changed")

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls, **kwargs: Any) -> "RefreshTokenIdentity":
        client_id = os.environ.get(ENV_CLIENT_ID)
        if not client_id:
            raise RuntimeError(f"Missing required environment variable for identity: {ENV_CLIENT_ID}")
        return cls(
            client_id,
            client_secret=os.environ.get(ENV_CLIENT_SECRET) or None,
            refresh_token=os.environ.get(ENV_REFRESH_TOKEN) or None,
            **kwargs,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -------- Session state --------
    async def initialize(self) -> None:
        """Establish the initial session state without notifying listeners."""
        if self._refresh_token:
            await self._refresh()
            self._signed_in = True

    def is_signed_in(self) -> bool:
        return self._signed_in

    def listen(self, callback: Callable[[bool], Awaitable[Any]]) -> Subscription:
        return self._changed.subscribe(callback)

    async def sign_in(self) -> None:
        if self._signed_in:
            return
        if not self._refresh_token:
            raise IdentityError("No refresh token configured; complete the consent flow first")
        await self._refresh()
        await self._set_signed_in(True)

    async def sign_out(self) -> None:
        if not self._signed_in:
            return
        self._access_token = None
        self._expires_at = 0.0
        await self._set_signed_in(False)

    async def access_token(self) -> Optional[str]:
        if not self._signed_in:
            return None
        if self._access_token is None or self._clock() >= self._expires_at - _EXPIRY_SKEW:
            await self._refresh()
        return self._access_token

    # -------- Internal --------
    async def _set_signed_in(self, value: bool) -> None:
        self._signed_in = value
        await self._changed.emit(value)

    async def _refresh(self) -> None:
        form: Dict[str, str] = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "refresh_token": self._refresh_token or "",
        }
        if self._client_secret:
            form["client_secret"] = self._client_secret
        try:
            resp = await self._client.post(self._token_url, data=form)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise IdentityError("Token endpoint unreachable") from exc
        if resp.status_code != 200:
            raise IdentityError(f"HTTP {resp.status_code} from token endpoint: {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise IdentityError("Failed to parse JSON from token endpoint") from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise IdentityError("Token endpoint response carried no access_token")
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            expires_in = 3600
        self._access_token = token
        self._expires_at = self._clock() + float(expires_in)


__all__ = [
    "DRIVE_APPDATA_SCOPE",
    "IdentityError",
    "IdentityProvider",
    "RefreshTokenIdentity",
]
