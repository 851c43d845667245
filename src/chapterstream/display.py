from __future__ import annotations

import asyncio
import math
from bisect import bisect_right
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Protocol

from .models import ChapterKey
from .page import soup_from_html


@dataclass(slots=True)
class ChapterEntry:
    """One chapter's worth of content posts as placed in the display."""

    key: ChapterKey
    rank: int
    posts: list[str]
    width: float | None = None
    text_length: int | None = field(default=None, repr=False)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.rank, self.key.chapter)


@dataclass(slots=True)
class VisibleEntry:
    index: int
    entry: ChapterEntry
    left: float
    right: float

    @property
    def center(self) -> float:
        return (self.left + self.right) / 2


class Display(Protocol):
    scroll_left: float
    client_width: float

    @property
    def scroll_width(self) -> float: ...

    @property
    def column_width(self) -> float: ...

    @property
    def programmatic_scroll(self) -> bool: ...

    @property
    def entries(self) -> list[ChapterEntry]: ...

    def insert(self, entry: ChapterEntry) -> int: ...

    async def next_frame(self) -> None: ...

    def scroll_to(self, position: float) -> None: ...

    def programmatic(self) -> AbstractContextManager[None]: ...

    def offset_of(self, key: ChapterKey) -> float | None: ...

    def visible_entries(self) -> list[VisibleEntry]: ...


class ColumnDisplay:
    """
    Ordered chapter index laid out as a horizontal run of text columns.

    Entries are kept sorted by (book rank, chapter). Widths are computed on
    the next frame after insertion, so geometry read straight after an insert
    still reflects the previous layout, as it does in a browser.
    """

    def __init__(
        self,
        *,
        client_width: float,
        column_width: float | None,
        fallback_column_width: float,
        chars_per_column: int,
    ) -> None:
        self.client_width = float(client_width)
        self._column_width = column_width
        self._fallback_column_width = fallback_column_width
        self._chars_per_column = chars_per_column
        self._entries: list[ChapterEntry] = []
        self._scroll_left = 0.0
        self._programmatic_depth = 0
        self._listeners: list[Callable[[], None]] = []

    @property
    def entries(self) -> list[ChapterEntry]:
        return list(self._entries)

    @property
    def column_width(self) -> float:
        if self._column_width and self._column_width > 0:
            return float(self._column_width)
        return float(self._fallback_column_width)

    @property
    def scroll_width(self) -> float:
        laid_out = sum(entry.width for entry in self._entries if entry.width is not None)
        return max(laid_out, self.client_width)

    @property
    def scroll_left(self) -> float:
        return self._scroll_left

    @scroll_left.setter
    def scroll_left(self, value: float) -> None:
        self.scroll_to(value)

    @property
    def programmatic_scroll(self) -> bool:
        return self._programmatic_depth > 0

    def add_scroll_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def keys(self) -> list[ChapterKey]:
        return [entry.key for entry in self._entries]

    def insert(self, entry: ChapterEntry) -> int:
        sort_keys = [existing.sort_key for existing in self._entries]
        index = bisect_right(sort_keys, entry.sort_key)
        self._entries.insert(index, entry)
        return index

    def _measure(self, entry: ChapterEntry) -> float:
        if entry.text_length is None:
            entry.text_length = len(soup_from_html("".join(entry.posts)).get_text(strip=True))
        columns = max(1, math.ceil(entry.text_length / self._chars_per_column))
        return columns * self.column_width

    def reflow(self) -> None:
        for entry in self._entries:
            if entry.width is None:
                entry.width = self._measure(entry)

    async def next_frame(self) -> None:
        await asyncio.sleep(0)
        self.reflow()

    def max_scroll(self) -> float:
        return max(0.0, self.scroll_width - self.client_width)

    def scroll_to(self, position: float) -> None:
        clamped = min(max(0.0, float(position)), self.max_scroll())
        if clamped == self._scroll_left:
            return
        self._scroll_left = clamped
        for listener in list(self._listeners):
            listener()

    def scroll_by(self, delta: float) -> None:
        self.scroll_to(self._scroll_left + delta)

    @contextmanager
    def programmatic(self) -> Iterator[None]:
        self._programmatic_depth += 1
        try:
            yield
        finally:
            self._programmatic_depth -= 1

    def offset_of(self, key: ChapterKey) -> float | None:
        offset = 0.0
        for entry in self._entries:
            if entry.key == key:
                return offset
            offset += entry.width or 0.0
        return None

    def visible_entries(self) -> list[VisibleEntry]:
        view_left = self._scroll_left
        view_right = view_left + self.client_width
        visible: list[VisibleEntry] = []
        offset = 0.0
        for index, entry in enumerate(self._entries):
            width = entry.width or 0.0
            left, right = offset, offset + width
            offset = right
            if width and right > view_left and left < view_right:
                visible.append(VisibleEntry(index=index, entry=entry, left=left, right=right))
        return visible


__all__ = ["ChapterEntry", "ColumnDisplay", "Display", "VisibleEntry"]
