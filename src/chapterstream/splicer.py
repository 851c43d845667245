from __future__ import annotations

from .display import ChapterEntry, Display
from .logging_utils import debug_log
from .models import AFTER, BEFORE, ChapterFragment, ChapterKey, Direction

LAYOUT_FRAMES = 2


class DocumentSplicer:
    """Places fetched chapters into the display and keeps the view steady."""

    def __init__(self, display: Display, requested: ChapterKey) -> None:
        self._display = display
        self.requested = requested
        self.preloading = False

    def direction_for(self, key: ChapterKey, rank: int = 0) -> Direction:
        visible = self._display.visible_entries()
        if visible and (rank, key.chapter) < visible[0].entry.sort_key:
            return BEFORE
        return AFTER

    async def _settle(self) -> None:
        # Column reflow lands over more than one frame.
        for _ in range(LAYOUT_FRAMES):
            await self._display.next_frame()

    async def insert(
        self,
        fragment: ChapterFragment,
        direction: Direction,
        chapter: int | None = None,
        *,
        rank: int = 0,
    ) -> int:
        key = fragment.key if chapter is None else ChapterKey(fragment.key.book, chapter)
        entry = ChapterEntry(key=key, rank=rank, posts=list(fragment.posts))

        if direction != BEFORE:
            index = self._display.insert(entry)
            await self._settle()
            debug_log(f"Appended {key.composite} at {index}")
            return index

        if self.preloading:
            index = self._display.insert(entry)
            await self._settle()
            target = self._display.offset_of(self.requested)
            if target is not None:
                with self._display.programmatic():
                    self._display.scroll_to(target)
            debug_log(f"Preloaded {key.composite} at {index}, pinned {self.requested.composite}")
            return index

        width_before = self._display.scroll_width
        index = self._display.insert(entry)
        await self._settle()
        delta = self._display.scroll_width - width_before
        if delta:
            with self._display.programmatic():
                self._display.scroll_to(self._display.scroll_left + delta)
        debug_log(f"Prepended {key.composite} at {index}, shifted view by {delta:.0f}px")
        return index


__all__ = ["DocumentSplicer", "LAYOUT_FRAMES"]
