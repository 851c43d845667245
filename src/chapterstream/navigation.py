from __future__ import annotations

from dataclasses import dataclass, field

from .books import BookBoundaryResolver, BookMetadataError
from .display import Display, VisibleEntry
from .logging_utils import debug_log, warn_log
from .models import BookMetadata, BookRef, ChapterKey


@dataclass(slots=True)
class HistoryEntry:
    url: str
    state: dict[str, object] = field(default_factory=dict)


class SessionHistory:
    """Browser-style session history: a stack of entries and a cursor."""

    def __init__(self, url: str) -> None:
        self.entries: list[HistoryEntry] = [HistoryEntry(url=url)]
        self.index = 0

    @property
    def current(self) -> HistoryEntry:
        return self.entries[self.index]

    @property
    def url(self) -> str:
        return self.current.url

    def __len__(self) -> int:
        return len(self.entries)

    def replace_state(self, state: dict[str, object], url: str) -> None:
        self.entries[self.index] = HistoryEntry(url=url, state=dict(state))


@dataclass(slots=True)
class ChapterLink:
    number: int
    href: str
    selected: bool = False


@dataclass(slots=True)
class PageChrome:
    """Title, subtitle, neighbour links and chapter links around the content."""

    book: str
    title: str
    subtitle: str = ""
    prev: BookRef | None = None
    next: BookRef | None = None
    chapter_links: list[ChapterLink] = field(default_factory=list)

    @classmethod
    def from_metadata(cls, metadata: BookMetadata) -> "PageChrome":
        chrome = cls(book=metadata.book, title=metadata.title)
        chrome.apply(metadata)
        return chrome

    def apply(self, metadata: BookMetadata) -> None:
        self.book = metadata.book
        self.title = metadata.title
        self.subtitle = metadata.subtitle
        self.prev = metadata.prev
        self.next = metadata.next
        count = metadata.chapter_count or 0
        self.chapter_links = [
            ChapterLink(number=n, href=ChapterKey(metadata.book, n).address())
            for n in range(1, count + 1)
        ]

    def select(self, chapter: int) -> None:
        for link in self.chapter_links:
            link.selected = link.number == chapter

    @property
    def selected(self) -> int | None:
        for link in self.chapter_links:
            if link.selected:
                return link.number
        return None


class NavigationSync:
    """Keeps the address, history entry and page chrome on the visible chapter."""

    def __init__(
        self,
        display: Display,
        chrome: PageChrome,
        history: SessionHistory,
        resolver: BookBoundaryResolver,
        *,
        book: str,
        chapter: int,
        leading_tolerance: float = 50.0,
    ) -> None:
        self._display = display
        self.chrome = chrome
        self.history = history
        self._resolver = resolver
        self.book = book
        self.chapter = chapter
        self._leading_tolerance = leading_tolerance

    def detect_book(self, visible: list[VisibleEntry] | None = None) -> str | None:
        if visible is None:
            visible = self._display.visible_entries()
        if not visible:
            return None
        view_center = self._display.scroll_left + self._display.client_width / 2
        best = visible[0]
        best_distance = abs(best.center - view_center)
        for candidate in visible[1:]:
            distance = abs(candidate.center - view_center)
            if distance < best_distance:
                best, best_distance = candidate, distance
        return best.entry.key.book

    def leading_chapter(self, book: str, visible: list[VisibleEntry] | None = None) -> int | None:
        if visible is None:
            visible = self._display.visible_entries()
        metadata = self._resolver.cached(book)
        scroll_left = self._display.scroll_left
        for item in visible:
            key = item.entry.key
            if key.book != book:
                continue
            if metadata is not None and not metadata.has_chapter(key.chapter):
                continue
            if item.right > scroll_left and item.left <= scroll_left + self._leading_tolerance:
                return key.chapter
        for item in visible:
            key = item.entry.key
            if key.book == book and (metadata is None or metadata.has_chapter(key.chapter)):
                return key.chapter
        return None

    async def _switch_book(self, book: str) -> bool:
        metadata = self._resolver.cached(book)
        if metadata is None:
            try:
                metadata = await self._resolver.resolve(book)
            except (BookMetadataError, ConnectionError) as exc:
                warn_log(f"Cannot switch page to {book}: {exc}")
                return False
        self.chrome.apply(metadata)
        debug_log(f"Switched page to {book} ({metadata.title})")
        return True

    async def update_url(self) -> str | None:
        visible = self._display.visible_entries()
        book = self.detect_book(visible) or self.book
        if book != self.chrome.book and not await self._switch_book(book):
            book = self.chrome.book
        chapter = self.leading_chapter(book, visible) or self.chapter
        if book == self.book and chapter == self.chapter:
            return None
        self.book, self.chapter = book, chapter
        url = ChapterKey(book, chapter).address()
        self.history.replace_state({"book": book, "chapter": chapter}, url)
        self.chrome.select(chapter)
        debug_log(f"Address is now {url}")
        return url


__all__ = [
    "ChapterLink",
    "HistoryEntry",
    "NavigationSync",
    "PageChrome",
    "SessionHistory",
]
