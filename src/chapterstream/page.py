from __future__ import annotations

import json
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, FeatureNotFound, NavigableString, Tag  # type: ignore

from .models import BookMetadata, BookRef

CONTAINER_SELECTOR = ".thread.bible"
POST_SELECTOR = ".post.bible"
MARKER_SELECTOR = ".post_no.chapter"
CHAPTER_LINK_SELECTOR = ".pages a"
SUBTITLE_SELECTOR = ".subtitle"
MANIFEST_SELECTOR = "script#book-nav"

_ADDRESS_RE = re.compile(r"/([A-Za-z0-9]+)/(\d+)/")
_THREAD_ID_RE = re.compile(r"thread_(\d+)")
_FLOAT_RE = re.compile(r"float\s*:\s*(left|right)", re.IGNORECASE)
_PREV_MARKERS = ("«", "‹", "←")
_NEXT_MARKERS = ("»", "›", "→")


def soup_from_html(html: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")


def find_container(soup: BeautifulSoup) -> Tag | None:
    container = soup.select_one(CONTAINER_SELECTOR)
    return container if isinstance(container, Tag) else None


def parse_address(address: str) -> tuple[str, int] | None:
    path = urlparse(address).path or address
    match = _ADDRESS_RE.search(path)
    if not match:
        return None
    return match.group(1), int(match.group(2))


def chapter_from_thread_id(value: str | None) -> int | None:
    if not value:
        return None
    match = _THREAD_ID_RE.search(value)
    return int(match.group(1)) if match else None


def chapter_of(post: Tag) -> int | None:
    marker = post.select_one(MARKER_SELECTOR)
    if marker is None:
        return None
    text = marker.get_text(strip=True)
    return int(text) if text.isdecimal() else None


def extract_posts(root: Tag | BeautifulSoup) -> list[Tag]:
    return [post for post in root.select(POST_SELECTOR) if isinstance(post, Tag)]


def tag_posts(posts: list[Tag], book: str) -> None:
    for post in posts:
        post["data-book"] = book


def group_posts_by_chapter(container: Tag, default_chapter: int) -> list[tuple[int, list[str]]]:
    """
    Split the posts of a page into chapters.

    A post carrying a chapter marker starts a new chapter; unmarked posts
    belong to the chapter before them (or ``default_chapter`` at the start).
    """
    groups: list[tuple[int, list[str]]] = []
    current = default_chapter
    for post in extract_posts(container):
        marked = chapter_of(post)
        if marked is not None and (not groups or marked != current):
            current = marked
            groups.append((current, []))
        elif not groups:
            groups.append((current, []))
        groups[-1][1].append(str(post))
    return groups


def _book_from_href(href: str | None) -> str | None:
    if not href:
        return None
    path = urlparse(href).path
    parts = [part for part in path.split("/") if part]
    return parts[0] if parts else None


def _clean_label(text: str) -> str:
    for marker in (*_PREV_MARKERS, *_NEXT_MARKERS):
        text = text.replace(marker, "")
    return " ".join(text.split())


def _ref_from_payload(payload: object) -> BookRef | None:
    if not isinstance(payload, dict):
        return None
    book = payload.get("book")
    if not isinstance(book, str) or not book.strip() or book == "none":
        return None
    label = payload.get("label")
    return BookRef(book=book.strip(), label=label.strip() if isinstance(label, str) else book.strip())


def _metadata_from_manifest(soup: BeautifulSoup, book: str) -> BookMetadata | None:
    script = soup.select_one(MANIFEST_SELECTOR)
    if script is None:
        return None
    try:
        payload = json.loads(script.string or "")
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    chapters = payload.get("chapters")
    title = payload.get("title")
    subtitle = payload.get("subtitle")
    manifest_book = payload.get("book")
    return BookMetadata(
        book=manifest_book if isinstance(manifest_book, str) and manifest_book else book,
        title=title if isinstance(title, str) else book,
        subtitle=subtitle if isinstance(subtitle, str) else "",
        chapter_count=chapters if isinstance(chapters, int) and chapters > 0 else None,
        prev=_ref_from_payload(payload.get("prev")),
        next=_ref_from_payload(payload.get("next")),
    )


def _subtitle_text(subtitle: Tag) -> str:
    parts: list[str] = []
    for node in subtitle.descendants:
        if not isinstance(node, NavigableString):
            continue
        if node.find_parent("a") is not None:
            continue
        parts.append(str(node))
    return " ".join("".join(parts).split())


def _neighbour_refs(subtitle: Tag | None) -> tuple[BookRef | None, BookRef | None]:
    prev_ref: BookRef | None = None
    next_ref: BookRef | None = None
    if subtitle is None:
        return None, None
    for link in subtitle.find_all("a"):
        book = _book_from_href(link.get("href"))
        if not book or book == "none":
            continue
        text = link.get_text(" ", strip=True)
        style_match = _FLOAT_RE.search(link.get("style") or "")
        side = style_match.group(1).lower() if style_match else None
        if side is None:
            if any(marker in text for marker in _PREV_MARKERS):
                side = "left"
            elif any(marker in text for marker in _NEXT_MARKERS):
                side = "right"
        ref = BookRef(book=book, label=_clean_label(text) or book)
        if side == "left" and prev_ref is None:
            prev_ref = ref
        elif side == "right" and next_ref is None:
            next_ref = ref
    return prev_ref, next_ref


def max_chapter_link(soup: BeautifulSoup | Tag) -> int | None:
    numbers = [
        int(text)
        for text in (link.get_text(strip=True) for link in soup.select(CHAPTER_LINK_SELECTOR))
        if text.isdecimal()
    ]
    return max(numbers) if numbers else None


def parse_book_metadata(soup: BeautifulSoup, book: str) -> BookMetadata | None:
    """
    Read title, subtitle, chapter count and neighbours of ``book`` from its page.

    The ``script#book-nav`` manifest wins when present. Otherwise the rendered
    chrome is scraped; pieces that are missing are left empty rather than
    failing the whole parse.
    """
    manifest = _metadata_from_manifest(soup, book)
    if manifest is not None:
        return manifest

    heading = soup.find("h1")
    subtitle = soup.select_one(SUBTITLE_SELECTOR)
    chapter_count = max_chapter_link(soup)
    if heading is None and subtitle is None and chapter_count is None:
        return None
    prev_ref, next_ref = _neighbour_refs(subtitle if isinstance(subtitle, Tag) else None)
    return BookMetadata(
        book=book,
        title=heading.get_text(" ", strip=True) if heading is not None else book,
        subtitle=_subtitle_text(subtitle) if isinstance(subtitle, Tag) else "",
        chapter_count=chapter_count,
        prev=prev_ref,
        next=next_ref,
    )


__all__ = [
    "CONTAINER_SELECTOR",
    "POST_SELECTOR",
    "chapter_from_thread_id",
    "chapter_of",
    "extract_posts",
    "find_container",
    "group_posts_by_chapter",
    "max_chapter_link",
    "parse_address",
    "parse_book_metadata",
    "soup_from_html",
    "tag_posts",
]
