from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Direction = Literal["before", "after"]

BEFORE: Direction = "before"
AFTER: Direction = "after"


@dataclass(frozen=True, slots=True)
class ChapterKey:
    book: str
    chapter: int

    @property
    def composite(self) -> str:
        return f"{self.book}:{self.chapter}"

    def address(self) -> str:
        return f"/{self.book}/{self.chapter}/"


@dataclass(frozen=True, slots=True)
class BookRef:
    book: str
    label: str


@dataclass(slots=True)
class BookMetadata:
    book: str
    title: str
    subtitle: str = ""
    chapter_count: int | None = None
    prev: BookRef | None = None
    next: BookRef | None = None

    def has_chapter(self, chapter: int) -> bool:
        if chapter < 1:
            return False
        return self.chapter_count is None or chapter <= self.chapter_count

    def neighbour(self, direction: Direction) -> BookRef | None:
        return self.prev if direction == BEFORE else self.next


@dataclass(slots=True)
class ChapterFragment:
    """Content posts extracted from one fetched chapter page, in page order."""

    key: ChapterKey
    posts: list[str]
    tagged: bool = False

    @property
    def markup(self) -> str:
        return "".join(f"{post}<br>" for post in self.posts)


@dataclass(slots=True)
class LoadState:
    home_book: str
    min_loaded: int
    max_loaded: int
    loaded: set[int] = field(default_factory=set)
    failed: set[int] = field(default_factory=set)
    cross_loaded: set[str] = field(default_factory=set)
    cross_failed: set[str] = field(default_factory=set)
    edges: dict[str, ChapterKey] = field(default_factory=dict)

    @classmethod
    def starting_at(cls, book: str, chapter: int) -> "LoadState":
        return cls(home_book=book, min_loaded=chapter, max_loaded=chapter, loaded={chapter})

    def is_home(self, book: str) -> bool:
        return book == self.home_book

    def is_known(self, key: ChapterKey) -> bool:
        if self.is_home(key.book):
            return key.chapter in self.loaded or key.chapter in self.failed
        return key.composite in self.cross_loaded or key.composite in self.cross_failed

    def is_failed(self, key: ChapterKey) -> bool:
        if self.is_home(key.book):
            return key.chapter in self.failed
        return key.composite in self.cross_failed

    def mark_loaded(self, key: ChapterKey) -> None:
        if self.is_home(key.book):
            self.loaded.add(key.chapter)
            self._extend_range()
        else:
            self.cross_loaded.add(key.composite)

    def mark_failed(self, key: ChapterKey) -> None:
        if self.is_home(key.book):
            self.failed.add(key.chapter)
            self._extend_range()
        else:
            self.cross_failed.add(key.composite)

    def covers(self, chapter: int) -> bool:
        return chapter in self.loaded or chapter in self.failed

    def _extend_range(self) -> None:
        # The range only grows across chapters that are loaded or failed, so it
        # stays contiguous whatever order the loads complete in.
        while self.covers(self.max_loaded + 1):
            self.max_loaded += 1
        while self.min_loaded > 1 and self.covers(self.min_loaded - 1):
            self.min_loaded -= 1


__all__ = [
    "AFTER",
    "BEFORE",
    "BookMetadata",
    "BookRef",
    "ChapterFragment",
    "ChapterKey",
    "Direction",
    "LoadState",
]
