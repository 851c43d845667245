from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import requests

from .logging_utils import debug_log


class ChapterFetchError(ConnectionError):
    """Raised when a page request fails before an HTTP status is available."""


@dataclass(slots=True)
class FetchResponse:
    url: str
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Fetcher(Protocol):
    async def fetch(self, path: str) -> FetchResponse: ...


class HttpFetcher:
    """
    Fetch book and chapter pages relative to ``base_url``.

    Requests run on a worker thread so the event loop driving scroll handling
    keeps running while a page downloads. Every request carries ``timeout`` so
    a hung server surfaces as ChapterFetchError instead of stalling the loader.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _get(self, url: str) -> FetchResponse:
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ChapterFetchError(f"Failed to fetch {url}") from exc
        resp.encoding = resp.encoding or "utf-8"
        return FetchResponse(url=url, status=resp.status_code, text=resp.text)

    async def fetch(self, path: str) -> FetchResponse:
        url = self.url_for(path)
        debug_log(f"GET {url}")
        return await asyncio.to_thread(self._get, url)

    def close(self) -> None:
        self._session.close()


__all__ = ["ChapterFetchError", "FetchResponse", "Fetcher", "HttpFetcher"]
