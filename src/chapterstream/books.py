from __future__ import annotations

from .config import StreamConfig
from .fetch import Fetcher
from .logging_utils import debug_log
from .models import BookMetadata
from .page import parse_book_metadata, soup_from_html


class BookMetadataError(RuntimeError):
    """Raised when a book page cannot be fetched or carries no book metadata."""


class BookBoundaryResolver:
    """Session cache of per-book metadata, filled from each book's base page."""

    def __init__(self, fetcher: Fetcher, config: StreamConfig) -> None:
        self._fetcher = fetcher
        self._config = config
        self._cache: dict[str, BookMetadata] = {}

    def remember(self, metadata: BookMetadata) -> None:
        self._cache.setdefault(metadata.book, metadata)

    def cached(self, book: str) -> BookMetadata | None:
        return self._cache.get(book)

    async def resolve(self, book: str) -> BookMetadata:
        cached = self._cache.get(book)
        if cached is not None:
            return cached
        path = self._config.book_url_path(book)
        response = await self._fetcher.fetch(path)
        if not response.ok:
            raise BookMetadataError(f"Book page {path} returned {response.status}")
        metadata = parse_book_metadata(soup_from_html(response.text), book)
        if metadata is None:
            raise BookMetadataError(f"No book metadata found on {path}")
        debug_log(
            f"Resolved {book}: {metadata.title!r}, {metadata.chapter_count} chapters, "
            f"prev={metadata.prev.book if metadata.prev else None}, "
            f"next={metadata.next.book if metadata.next else None}"
        )
        self._cache[book] = metadata
        return metadata


__all__ = ["BookBoundaryResolver", "BookMetadataError"]
