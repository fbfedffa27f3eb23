from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from state.models import RemoteFile

from .identity import IdentityError
from .rate_limiter import SlidingWindowRateLimiter


DEFAULT_API_BASE = "https://www.googleapis.com"
APP_DATA_SPACE = "appDataFolder"

_FILES_PATH = "/drive/v3/files"
_UPLOAD_PATH = "/upload/drive/v3/files"
_RETRYABLE_STATUSES = (429, 500, 502, 503, 504)
_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")


class DriveError(RuntimeError):
    """Base error for the Drive client."""


class DriveApiError(DriveError):
    """API returned an error status or an unexpected payload."""


class DriveNotFoundError(DriveApiError):
    """The addressed file does not exist (or is not visible to this app)."""


class DriveAuthError(DriveError):
    """No access token available, or the API rejected it."""


class DriveRateLimitError(DriveError):
    """Local or remote rate limiting prevented the request."""


def _quote_query_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _error_reason(resp: httpx.Response) -> Optional[str]:
    # Drive errors: { error: { code, message, errors: [ { reason, ... } ] } }
    try:
        body = resp.json()
    except ValueError:
        return None
    err = body.get("error") if isinstance(body, dict) else None
    if not isinstance(err, dict):
        return None
    items = err.get("errors")
    if isinstance(items, list) and items and isinstance(items[0], dict):
        reason = items[0].get("reason")
        return reason if isinstance(reason, str) else None
    return None


class DriveClient:
    """
    Minimal Google Drive v3 client for a single file in the app data folder.

    Notes
    - Only the four calls the save sync needs: list by name, create, download
      content, overwrite content (media upload).
    - Bearer token comes from `token_source` on every request, so a refreshed
      or revoked token takes effect immediately.
    - Retries transport errors, 429/5xx and 403 rate-limit reasons with
      backoff, honoring `Retry-After` when present.
    """

    def __init__(
        self,
        token_source: Callable[[], Awaitable[Optional[str]]],
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        max_per_second: int = 10,
        max_attempts: int = 5,
        backoff: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._token_source = token_source
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._limiter = SlidingWindowRateLimiter(max_calls=max_per_second, per_seconds=1.0)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "DriveClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Public API ---------------
    async def list_files(self, name: str, *, space: str = APP_DATA_SPACE) -> List[RemoteFile]:
        """
        List files named exactly `name` in `space`, following pagination.

        Returns an empty list when nothing matches.
        """
        params: Dict[str, Any] = {
            "q": f"name = {_quote_query_value(name)} and trashed = false",
            "spaces": space,
            "fields": "nextPageToken, files(id, name)",
        }
        files: List[RemoteFile] = []
        while True:
            resp = await self._request("GET", _FILES_PATH, params=params)
            data = self._json(resp)
            raw_files = data.get("files", [])
            if not isinstance(raw_files, list):
                raise DriveApiError("Malformed files.list response: 'files' is not a list")
            try:
                files.extend(RemoteFile.model_validate(item) for item in raw_files)
            except ValidationError as ve:
                raise DriveApiError(f"Malformed file entry in files.list response: {ve}") from ve
            token = data.get("nextPageToken")
            if not token:
                return files
            params = {**params, "pageToken": token}

    async def create_file(self, name: str, *, space: str = APP_DATA_SPACE) -> str:
        """Create an empty file named `name` inside `space`; returns its id."""
        metadata = {"name": name, "parents": [space], "mimeType": "application/json"}
        resp = await self._request("POST", _FILES_PATH, params={"fields": "id"}, json_body=metadata)
        data = self._json(resp)
        file_id = data.get("id")
        if not isinstance(file_id, str) or not file_id:
            raise DriveApiError("files.create response carried no id")
        return file_id

    async def get_content(self, file_id: str) -> str:
        """Download the raw content of `file_id` as text."""
        resp = await self._request("GET", f"{_FILES_PATH}/{file_id}", params={"alt": "media"})
        return resp.text

    async def update_content(self, file_id: str, content: str) -> None:
        """Overwrite the content of `file_id` in place (media upload, no metadata)."""
        await self._request(
            "PATCH",
            f"{_UPLOAD_PATH}/{file_id}",
            params={"uploadType": "media"},
            content=content.encode("utf-8"),
            content_type="application/json",
        )

    # --------------- Internal ---------------
    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise DriveApiError("Failed to parse JSON from Drive API") from exc
        if not isinstance(data, dict):
            raise DriveApiError("Malformed response from Drive API")
        return data

    async def _headers(self, content_type: Optional[str]) -> Dict[str, str]:
        try:
            token = await self._token_source()
        except IdentityError as exc:
            raise DriveAuthError(f"Could not obtain an access token: {exc}") from exc
        if not token:
            raise DriveAuthError("No access token; user is not signed in")
        headers = {"Authorization": f"Bearer {token}"}
        if content_type is not None:
            headers["Content-Type"] = content_type
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> httpx.Response:
        attempt = 0
        backoff = self._backoff
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            await self._limiter.acquire(blocking=True)
            headers = await self._headers(content_type)
            try:
                resp = await self._client.request(
                    method, f"{self._api_base}{path}", params=params, json=json_body, content=content, headers=headers
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
                delay = backoff
            else:
                if 200 <= resp.status_code < 300:
                    return resp
                if resp.status_code == 401:
                    raise DriveAuthError("Drive rejected the access token (HTTP 401)")
                if resp.status_code == 404:
                    raise DriveNotFoundError(f"Drive file not found: {path}")
                reason = _error_reason(resp)
                if resp.status_code == 403 and reason not in _RATE_LIMIT_REASONS:
                    raise DriveAuthError(f"Drive denied access (HTTP 403, reason={reason})")
                if resp.status_code not in _RETRYABLE_STATUSES and resp.status_code != 403:
                    raise DriveApiError(
                        f"HTTP {resp.status_code} from Drive: {resp.text[:200]}"
                    )
                if resp.status_code in (403, 429):
                    last_exc = DriveRateLimitError(f"HTTP {resp.status_code} from Drive (reason={reason})")
                else:
                    last_exc = DriveApiError(f"HTTP {resp.status_code} from Drive")
                delay = backoff
                retry_after = resp.headers.get("Retry-After")
                if retry_after is not None:
                    try:
                        delay = float(retry_after)
                    except ValueError:
                        pass

            attempt += 1
            if attempt < self._max_attempts:
                await asyncio.sleep(min(delay, 10.0))
                backoff = min(backoff * 2, 8.0)

        if isinstance(last_exc, DriveError):
            raise last_exc
        if last_exc is not None:
            raise DriveError("Failed request after retries") from last_exc
        raise DriveError("Failed request after retries (unknown error)")


__all__ = [
    "APP_DATA_SPACE",
    "DriveClient",
    "DriveError",
    "DriveApiError",
    "DriveNotFoundError",
    "DriveAuthError",
    "DriveRateLimitError",
]
