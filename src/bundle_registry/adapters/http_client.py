"""Authenticated HTTP access for remote sources."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from bundle_registry.core.exceptions import SourceAccessError, SourceAuthError

TokenProvider = Callable[[], Awaitable[str | None]]

GITHUB_JSON = "application/vnd.github.v3+json"

_STATUS_HINTS = {
    401: "Authentication failed. Check that your token is valid and has not expired.",
    403: "Access forbidden. The token may lack the 'repo' scope, or the rate limit was exceeded.",
    404: "Not found. Check the repository URL and that the token can access it.",
}


class RemoteClient:
    """
    Small wrapper over :class:`httpx.AsyncClient`.

    A 404 returns ``None``; 401/403 raise :class:`SourceAuthError`; any other
    failure raises :class:`SourceAccessError` with the underlying error as cause.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider | None = None,
        user_agent: str = "bundle-registry",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        auth_scheme: str = "Bearer",
    ) -> None:
        self._token_provider = token_provider
        self._user_agent = user_agent
        self._timeout = timeout
        self._transport = transport
        self._auth_scheme = auth_scheme

    async def _headers(self, accept: str | None) -> dict[str, str]:
        headers = {"User-Agent": self._user_agent}
        if accept:
            headers["Accept"] = accept
        if self._token_provider is not None:
            token = await self._token_provider()
            if token:
                headers["Authorization"] = f"{self._auth_scheme} {token}"
        return headers

    async def _get(self, url: str, accept: str | None) -> httpx.Response | None:
        headers = await self._headers(accept)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise SourceAccessError(f"Request failed: {url}", str(exc)) from exc

        if response.status_code == 404:
            return None
        if response.status_code in (401, 403):
            raise SourceAuthError(
                f"HTTP {response.status_code} from {url}",
                _STATUS_HINTS[response.status_code],
                status_code=response.status_code,
            )
        if not response.is_success:
            raise SourceAccessError(
                f"HTTP {response.status_code} from {url}",
                response.reason_phrase,
                status_code=response.status_code,
            )
        return response

    async def get_json(self, url: str, accept: str | None = GITHUB_JSON) -> Any | None:
        response = await self._get(url, accept)
        if response is None:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise SourceAccessError(f"Invalid JSON from {url}", str(exc)) from exc

    async def get_text(self, url: str, accept: str | None = None) -> str | None:
        response = await self._get(url, accept)
        return None if response is None else response.text

    async def get_bytes(self, url: str, accept: str | None = "application/octet-stream") -> bytes | None:
        response = await self._get(url, accept)
        return None if response is None else response.content


def describe_status(status_code: int | None) -> str:
    return _STATUS_HINTS.get(status_code or 0, "")
