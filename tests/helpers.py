from __future__ import annotations

import re

from chapterstream.config import StreamConfig
from chapterstream.controller import ChapterStream
from chapterstream.fetch import ChapterFetchError, FetchResponse
from chapterstream.models import BookMetadata, BookRef
from chapterstream.web import render_chapter_page

_BOOK_RE = re.compile(r"^/(\w+)/$")
_CHAPTER_RE = re.compile(r"^/(\w+)/(?:res/(\d+)\.html|(\d+)/)$")


def verses(book: str, chapter: int, count: int = 3) -> list[str]:
    return [f"{book} {chapter}:{verse} " + "x" * 40 for verse in range(1, count + 1)]


def bible(*entries: tuple[str, str, int]) -> dict[str, BookMetadata]:
    """Chain books in order: each entry is (id, title, chapter_count)."""
    books: dict[str, BookMetadata] = {}
    for index, (book, title, count) in enumerate(entries):
        prev_ref = None
        next_ref = None
        if index > 0:
            prev_ref = BookRef(book=entries[index - 1][0], label=entries[index - 1][1])
        if index + 1 < len(entries):
            next_ref = BookRef(book=entries[index + 1][0], label=entries[index + 1][1])
        books[book] = BookMetadata(
            book=book,
            title=title,
            subtitle=f"The book of {title}",
            chapter_count=count,
            prev=prev_ref,
            next=next_ref,
        )
    return books


class FakeFetcher:
    def __init__(
        self,
        books: dict[str, BookMetadata],
        *,
        missing: set[str] | None = None,
        errors: set[str] | None = None,
        empty: set[str] | None = None,
    ) -> None:
        self.books = books
        self.missing = missing or set()
        self.errors = errors or set()
        self.empty = empty or set()
        self.calls: list[str] = []

    def page(self, book: str, chapter: int) -> str:
        metadata = self.books[book]
        return render_chapter_page(metadata, chapter, verses(book, chapter))

    async def fetch(self, path: str) -> FetchResponse:
        self.calls.append(path)
        if path in self.errors:
            raise ChapterFetchError(f"Failed to fetch {path}")
        if path in self.missing:
            return FetchResponse(url=path, status=404, text="not found")
        match = _BOOK_RE.match(path)
        if match:
            book, chapter = match.group(1), 1
        else:
            match = _CHAPTER_RE.match(path)
            if not match:
                return FetchResponse(url=path, status=404, text="not found")
            book = match.group(1)
            chapter = int(match.group(2) or match.group(3))
        metadata = self.books.get(book)
        if metadata is None or chapter > (metadata.chapter_count or 0):
            return FetchResponse(url=path, status=404, text="not found")
        if path in self.empty:
            html = render_chapter_page(metadata, chapter, [])
        else:
            html = self.page(book, chapter)
        return FetchResponse(url=path, status=200, text=html)

    def close(self) -> None:
        pass

    def chapter_calls(self) -> list[str]:
        return [call for call in self.calls if "/res/" in call]


def make_config(**overrides: object) -> StreamConfig:
    values: dict[str, object] = {
        "batch_size": 2,
        "client_width": 416.0,
        "chars_per_column": 100,
        "edge_check_delay": 0.0,
        "url_update_delay": 0.0,
        "enable_delay": 0.0,
    }
    values.update(overrides)
    return StreamConfig(**values)  # type: ignore[arg-type]




def open_at(
    fetcher: FakeFetcher,
    book: str,
    chapter: int,
    **overrides: object,
) -> ChapterStream:
    html = fetcher.page(book, chapter)
    stream = ChapterStream.from_page(html, f"/{book}/{chapter}/", fetcher, make_config(**overrides))
    assert stream is not None
    return stream


def display_keys(stream: ChapterStream) -> list[tuple[str, int]]:
    return [(key.book, key.chapter) for key in stream.display.keys()]
