from __future__ import annotations

from .books import BookBoundaryResolver
from .config import StreamConfig
from .display import ChapterEntry, ColumnDisplay
from .fetch import Fetcher
from .loader import ChapterLoader
from .logging_utils import debug_log
from .models import BEFORE, BookMetadata, ChapterFragment, ChapterKey, Direction, LoadState
from .navigation import NavigationSync, PageChrome, SessionHistory
from .page import (
    chapter_from_thread_id,
    find_container,
    group_posts_by_chapter,
    parse_address,
    parse_book_metadata,
    soup_from_html,
)
from .splicer import DocumentSplicer
from .viewport import ViewportMonitor


class ChapterStream:
    """
    Infinite horizontal scrolling across the chapters and books of one page view.

    Build it with :meth:`from_page`; every piece of session state lives on the
    instance and its components.
    """

    def __init__(
        self,
        *,
        book: str,
        chapter: int,
        metadata: BookMetadata,
        display: ColumnDisplay,
        fetcher: Fetcher,
        config: StreamConfig,
        history: SessionHistory,
    ) -> None:
        self.config = config
        self.display = display
        self.state = LoadState.starting_at(book, chapter)
        self.resolver = BookBoundaryResolver(fetcher, config)
        self.resolver.remember(metadata)
        self.splicer = DocumentSplicer(display, ChapterKey(book, chapter))
        self.chrome = PageChrome.from_metadata(metadata)
        self.chrome.select(chapter)
        self.navigation = NavigationSync(
            display,
            self.chrome,
            history,
            self.resolver,
            book=book,
            chapter=chapter,
            leading_tolerance=config.leading_tolerance,
        )
        self.monitor = ViewportMonitor(
            display,
            config,
            self.load_more_chapters,
            self.navigation.update_url,
        )
        self.loader = ChapterLoader(
            self.state,
            fetcher,
            config,
            self.resolver,
            self.splicer,
            after_batch=self.monitor.refresh_sentinels,
        )
        display.add_scroll_listener(self.monitor.on_scroll)

    @classmethod
    def from_page(
        cls,
        html: str,
        address: str,
        fetcher: Fetcher,
        config: StreamConfig | None = None,
        *,
        history: SessionHistory | None = None,
    ) -> "ChapterStream | None":
        """Attach to a rendered page, or return None when it has no chapter stream."""
        config = config or StreamConfig()
        soup = soup_from_html(html)
        container = find_container(soup)
        if container is None:
            return None
        book = container.get("data-board")
        if not isinstance(book, str) or not book.strip():
            return None
        book = book.strip()

        parsed = parse_address(address)
        if parsed is not None and parsed[0] == book:
            chapter = parsed[1]
        else:
            id_value = container.get("id")
            chapter = chapter_from_thread_id(id_value if isinstance(id_value, str) else None) or 1

        metadata = parse_book_metadata(soup, book) or BookMetadata(book=book, title=book)
        display = ColumnDisplay(
            client_width=config.client_width,
            column_width=config.column_width,
            fallback_column_width=config.fallback_column_width,
            chars_per_column=config.chars_per_column,
        )
        stream = cls(
            book=book,
            chapter=chapter,
            metadata=metadata,
            display=display,
            fetcher=fetcher,
            config=config,
            history=history or SessionHistory(address),
        )
        for number, posts in group_posts_by_chapter(container, chapter):
            display.insert(ChapterEntry(key=ChapterKey(book, number), rank=0, posts=posts))
            stream.state.mark_loaded(ChapterKey(book, number))
        display.reflow()
        start = display.offset_of(ChapterKey(book, chapter))
        if start:
            with display.programmatic():
                display.scroll_to(start)
        stream.monitor.refresh_sentinels()
        debug_log(f"Chapter stream attached to {book}, chapter {chapter}")
        return stream

    @property
    def loading(self) -> bool:
        return self.loader.loading

    async def load_chapter(self, book: str, chapter: int) -> ChapterFragment | None:
        return await self.loader.load_chapter(book, chapter)

    async def load_more_chapters(self, direction: Direction) -> list[ChapterKey]:
        return await self.loader.load_more_chapters(direction)

    async def preload(self) -> list[ChapterKey]:
        """Load one batch before the requested chapter and keep that chapter in view."""
        self.splicer.preloading = True
        try:
            inserted = await self.loader.load_more_chapters(BEFORE)
        finally:
            self.splicer.preloading = False
            self.monitor.preload_complete = True
        return inserted

    def on_scroll(self) -> None:
        self.monitor.on_scroll()

    def scroll_by(self, delta: float) -> None:
        self.display.scroll_by(delta)

    def scroll_to(self, position: float) -> None:
        self.display.scroll_to(position)

    async def settle(self) -> None:
        """Run pending edge checks and address updates immediately."""
        await self.monitor.edge_check.flush()
        await self.monitor.sentinel_check.flush()
        await self.monitor.url_update.flush()

    @property
    def address(self) -> str:
        return self.navigation.history.url

    def close(self) -> None:
        self.monitor.close()


async def open_stream(
    address: str,
    fetcher: Fetcher,
    config: StreamConfig | None = None,
) -> ChapterStream | None:
    """Fetch ``address`` and attach a ChapterStream to it."""
    response = await fetcher.fetch(address)
    if not response.ok:
        return None
    stream = ChapterStream.from_page(response.text, address, fetcher, config)
    if stream is not None and stream.config.preload_before:
        await stream.preload()
    return stream


__all__ = ["ChapterStream", "open_stream"]
