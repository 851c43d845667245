from __future__ import annotations

import asyncio
from typing import Callable

from .books import BookBoundaryResolver, BookMetadataError
from .config import StreamConfig
from .fetch import ChapterFetchError, Fetcher
from .logging_utils import debug_log, warn_log
from .models import AFTER, BEFORE, BookMetadata, ChapterFragment, ChapterKey, Direction, LoadState
from .page import extract_posts, find_container, soup_from_html, tag_posts
from .splicer import DocumentSplicer

# Upper bound on chapters skipped while searching for the next cross-book target.
_MAX_CROSS_STEPS = 1000


class ChapterLoader:
    """
    Fetches chapters on demand and hands them to the splicer.

    Same-book chapters extend ``state.min_loaded``/``state.max_loaded``. Once the
    home book is exhausted in a direction, loading walks into the neighbouring
    book one chapter per call and keeps going from wherever it last stopped.
    """

    def __init__(
        self,
        state: LoadState,
        fetcher: Fetcher,
        config: StreamConfig,
        resolver: BookBoundaryResolver,
        splicer: DocumentSplicer,
        *,
        after_batch: Callable[[], None] | None = None,
    ) -> None:
        self.state = state
        self._fetcher = fetcher
        self._config = config
        self._resolver = resolver
        self._splicer = splicer
        self._after_batch = after_batch
        self._lock = asyncio.Lock()
        self._in_flight: set[str] = set()
        self._ranks: dict[str, int] = {state.home_book: 0}

    @property
    def loading(self) -> bool:
        return self._lock.locked()

    def rank_of(self, book: str) -> int:
        return self._ranks.get(book, 0)

    def path_for(self, key: ChapterKey) -> str:
        if self.state.is_home(key.book) and key.chapter == 1:
            return self._config.book_url_path(key.book)
        return self._config.chapter_url_path(key.book, key.chapter)

    async def _fetch_chapter(self, key: ChapterKey) -> ChapterFragment | None:
        if self.state.is_known(key) or key.composite in self._in_flight:
            debug_log(f"Chapter {key.composite} already loaded or failed")
            return None
        path = self.path_for(key)
        self._in_flight.add(key.composite)
        try:
            response = await self._fetcher.fetch(path)
        finally:
            self._in_flight.discard(key.composite)

        if not response.ok:
            debug_log(f"Chapter {key.composite} not found ({response.status})")
            self.state.mark_failed(key)
            return None

        soup = soup_from_html(response.text)
        container = find_container(soup)
        posts = extract_posts(container if container is not None else soup)
        if not posts:
            debug_log(f"Chapter {key.composite} has no posts")
            self.state.mark_failed(key)
            return None

        tagged = not self.state.is_home(key.book)
        if tagged:
            tag_posts(posts, key.book)
        self.state.mark_loaded(key)
        return ChapterFragment(key=key, posts=[str(post) for post in posts], tagged=tagged)

    async def load_chapter(self, book: str, chapter: int) -> ChapterFragment | None:
        """Fetch one chapter and splice it in on whichever side of the view it belongs."""
        key = ChapterKey(book, chapter)
        try:
            fragment = await self._fetch_chapter(key)
        except ChapterFetchError as exc:
            warn_log(f"Error fetching {book} {chapter}: {exc}")
            return None
        if fragment is not None:
            rank = self.rank_of(book)
            await self._splicer.insert(fragment, self._splicer.direction_for(key, rank), chapter, rank=rank)
        return fragment

    def _home_ceiling(self) -> int | None:
        metadata = self._resolver.cached(self.state.home_book)
        return metadata.chapter_count if metadata else None

    def same_book_batch(self, direction: Direction) -> list[int]:
        state = self.state
        ceiling = self._home_ceiling()
        batch: list[int] = []
        if direction == AFTER:
            if ceiling is None and state.max_loaded in state.failed:
                return batch
            chapter = state.max_loaded + 1
            while len(batch) < self._config.batch_size:
                if ceiling is not None and chapter > ceiling:
                    break
                if chapter in state.failed:
                    if ceiling is None:
                        break
                elif chapter not in state.loaded:
                    batch.append(chapter)
                chapter += 1
        else:
            chapter = state.min_loaded - 1
            while len(batch) < self._config.batch_size and chapter >= 1:
                if not state.covers(chapter):
                    batch.append(chapter)
                chapter -= 1
        return batch

    async def _enter_neighbour(self, metadata: BookMetadata, direction: Direction) -> ChapterKey | None:
        ref = metadata.neighbour(direction)
        if ref is None:
            return None
        neighbour = await self._resolver.resolve(ref.book)
        step = -1 if direction == BEFORE else 1
        self._ranks.setdefault(ref.book, self.rank_of(metadata.book) + step)
        if direction == AFTER:
            return ChapterKey(ref.book, 1)
        if neighbour.chapter_count is None:
            warn_log(f"Chapter count of {ref.book} is unknown; cannot enter it from the end")
            return None
        return ChapterKey(ref.book, neighbour.chapter_count)

    async def _step(self, key: ChapterKey, direction: Direction) -> ChapterKey | None:
        metadata = await self._resolver.resolve(key.book)
        if direction == AFTER:
            count = metadata.chapter_count
            open_ended = count is None and not self.state.is_failed(key)
            if open_ended or (count is not None and key.chapter < count):
                return ChapterKey(key.book, key.chapter + 1)
        elif key.chapter > 1:
            return ChapterKey(key.book, key.chapter - 1)
        return await self._enter_neighbour(metadata, direction)

    async def next_cross_book_key(self, direction: Direction) -> ChapterKey | None:
        state = self.state
        edge = state.edges.get(direction)
        if edge is None:
            start = state.max_loaded if direction == AFTER else state.min_loaded
            edge = ChapterKey(state.home_book, start)
        candidate = await self._step(edge, direction)
        steps = 0
        while candidate is not None and state.is_known(candidate):
            steps += 1
            if steps > _MAX_CROSS_STEPS:
                return None
            candidate = await self._step(candidate, direction)
        if candidate is None or state.is_home(candidate.book):
            return None
        return candidate

    async def _load_cross_book(self, direction: Direction) -> ChapterKey | None:
        key = await self.next_cross_book_key(direction)
        if key is None:
            debug_log(f"No more chapters {direction} {self.state.home_book}")
            return None
        debug_log(f"Crossing into {key.composite} ({direction})")
        fragment = await self._fetch_chapter(key)
        if fragment is None:
            return None
        await self._splicer.insert(fragment, direction, key.chapter, rank=self.rank_of(key.book))
        self.state.edges[direction] = key
        return key

    async def load_more_chapters(self, direction: Direction) -> list[ChapterKey]:
        if self._lock.locked():
            debug_log(f"Load {direction} skipped; a batch is already in flight")
            return []
        inserted: list[ChapterKey] = []
        async with self._lock:
            try:
                batch = self.same_book_batch(direction)
                if batch:
                    debug_log(f"Loading chapters {direction}: {batch}")
                    for chapter in batch:
                        fragment = await self._fetch_chapter(ChapterKey(self.state.home_book, chapter))
                        if fragment is None:
                            if self._home_ceiling() is None:
                                break
                            continue
                        await self._splicer.insert(fragment, direction, chapter)
                        inserted.append(fragment.key)
                else:
                    key = await self._load_cross_book(direction)
                    if key is not None:
                        inserted.append(key)
            except (ChapterFetchError, BookMetadataError) as exc:
                warn_log(f"Error loading chapters {direction}: {exc}")
        if inserted and self._after_batch is not None:
            self._after_batch()
        return inserted


__all__ = ["ChapterLoader"]
