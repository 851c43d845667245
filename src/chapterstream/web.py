from __future__ import annotations

import json
from dataclasses import dataclass
from html import escape
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse

from .models import BookMetadata, BookRef

BOOK_METADATA_FILENAME = "book.json"
CHAPTER_SUFFIX = ".txt"


@dataclass(slots=True)
class WebConfig:
    root: Path
    title: str = "chapterstream preview"


def _list_books(root: Path) -> list[Path]:
    books: list[Path] = []
    for entry in sorted(root.iterdir()):
        if entry.is_dir() and any(entry.glob(f"*{CHAPTER_SUFFIX}")):
            books.append(entry)
    return books


def _list_chapters(book_dir: Path) -> list[Path]:
    return [
        p
        for p in sorted(book_dir.glob(f"*{CHAPTER_SUFFIX}"))
        if p.is_file() and p.stem.isdecimal()
    ]


def _ref(payload: object) -> BookRef | None:
    if isinstance(payload, str) and payload.strip():
        return BookRef(book=payload.strip(), label=payload.strip())
    if isinstance(payload, dict) and isinstance(payload.get("book"), str):
        label = payload.get("label")
        return BookRef(book=payload["book"], label=label if isinstance(label, str) else payload["book"])
    return None


def load_library_book(book_dir: Path) -> BookMetadata:
    raw: object = {}
    meta_path = book_dir / BOOK_METADATA_FILENAME
    if meta_path.exists():
        try:
            raw = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            raw = {}
    if not isinstance(raw, dict):
        raw = {}
    title = raw.get("title")
    subtitle = raw.get("subtitle")
    return BookMetadata(
        book=book_dir.name,
        title=title if isinstance(title, str) else book_dir.name,
        subtitle=subtitle if isinstance(subtitle, str) else "",
        chapter_count=len(_list_chapters(book_dir)),
        prev=_ref(raw.get("prev")),
        next=_ref(raw.get("next")),
    )


def _chapter_lines(book_dir: Path, chapter: int) -> list[str] | None:
    for path in _list_chapters(book_dir):
        if int(path.stem) == chapter:
            text = path.read_text(encoding="utf-8")
            return [line.strip() for line in text.splitlines() if line.strip()]
    return None


def _manifest(metadata: BookMetadata) -> str:
    def ref(value: BookRef | None) -> dict[str, str] | None:
        return {"book": value.book, "label": value.label} if value else None

    payload = {
        "book": metadata.book,
        "title": metadata.title,
        "subtitle": metadata.subtitle,
        "chapters": metadata.chapter_count,
        "prev": ref(metadata.prev),
        "next": ref(metadata.next),
    }
    # "</" would end the script element early.
    return json.dumps(payload, ensure_ascii=False).replace("</", "<\\/")


def render_chapter_page(metadata: BookMetadata, chapter: int, lines: list[str]) -> str:
    """Render one chapter the way the chapter stream expects to find it."""
    book = escape(metadata.book)
    neighbours = []
    if metadata.prev:
        neighbours.append(
            f'<a style="float: left" href="/{escape(metadata.prev.book)}/">« {escape(metadata.prev.label)}</a>'
        )
    if metadata.next:
        neighbours.append(
            f'<a style="float: right" href="/{escape(metadata.next.book)}/">{escape(metadata.next.label)} »</a>'
        )
    page_links = []
    for n in range(1, (metadata.chapter_count or 0) + 1):
        selected = ' class="selected"' if n == chapter else ""
        page_links.append(f'<a href="/{book}/{n}/"{selected}>{n}</a>')
    pages = "".join(page_links)
    posts = []
    for verse, line in enumerate(lines, start=1):
        if verse == 1:
            marker = f'<a class="post_no chapter" href="/{book}/{chapter}/">{chapter}</a>'
        else:
            marker = f'<a class="post_no" href="/{book}/{chapter}/#{verse}">{verse}</a>'
        posts.append(
            f'<div class="post bible" id="reply_{chapter}_{verse}">{marker} '
            f'<span class="body">{escape(line)}</span></div>'
        )
    return (
        "<!DOCTYPE html>\n"
        f'<html><head><meta charset="utf-8"><title>{escape(metadata.title)} {chapter}</title>'
        f'<script type="application/json" id="book-nav">{_manifest(metadata)}</script></head>'
        f"<body><header><h1>{escape(metadata.title)}</h1>"
        f'<div class="subtitle">{"".join(neighbours)}{escape(metadata.subtitle)}</div></header>'
        f'<div class="pages">{pages}</div>'
        f'<div class="thread bible" id="thread_{chapter}" data-board="{book}">{"".join(posts)}</div>'
        "</body></html>"
    )


def create_app(config: WebConfig) -> FastAPI:
    root = config.root.expanduser().resolve()
    if not root.exists():
        raise FileNotFoundError(f"Library root not found: {root}")

    app = FastAPI(title=config.title)
    app.state.config = config
    app.state.root = root

    def _resolve_book(book: str) -> Path:
        book_dir = (root / book).resolve()
        if book_dir.parent != root or not book_dir.is_dir():
            raise HTTPException(status_code=404, detail="Book not found")
        return book_dir

    def _chapter_response(book: str, chapter: int) -> HTMLResponse:
        book_dir = _resolve_book(book)
        lines = _chapter_lines(book_dir, chapter)
        if not lines:
            raise HTTPException(status_code=404, detail="Chapter not found")
        metadata = load_library_book(book_dir)
        return HTMLResponse(render_chapter_page(metadata, chapter, lines))

    @app.get("/api/books")
    def api_books() -> JSONResponse:
        books_payload = []
        for book_dir in _list_books(root):
            metadata = load_library_book(book_dir)
            books_payload.append(
                {
                    "id": metadata.book,
                    "title": metadata.title,
                    "total_chapters": metadata.chapter_count,
                    "prev": metadata.prev.book if metadata.prev else None,
                    "next": metadata.next.book if metadata.next else None,
                }
            )
        return JSONResponse({"books": books_payload})

    @app.get("/", response_class=HTMLResponse)
    def index() -> HTMLResponse:
        items = []
        for book_dir in _list_books(root):
            metadata = load_library_book(book_dir)
            items.append(
                f'<li><a href="/{escape(metadata.book)}/">{escape(metadata.title)}</a>'
                f" ({metadata.chapter_count or 0} chapters)</li>"
            )
        body = "\n".join(items) or "<li>No books yet.</li>"
        return HTMLResponse(
            f"<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\"><title>{escape(config.title)}</title></head>"
            f"<body><h1>{escape(config.title)}</h1><ul>\n{body}\n</ul></body></html>"
        )

    @app.get("/{book}/res/{chapter:int}.html", response_class=HTMLResponse)
    def chapter_page(book: str, chapter: int) -> HTMLResponse:
        return _chapter_response(book, chapter)

    @app.get("/{book}/{chapter:int}/", response_class=HTMLResponse)
    def chapter_address(book: str, chapter: int) -> HTMLResponse:
        return _chapter_response(book, chapter)

    @app.get("/{book}/", response_class=HTMLResponse)
    def book_page(book: str) -> HTMLResponse:
        return _chapter_response(book, 1)

    return app


__all__ = ["WebConfig", "create_app", "load_library_book", "render_chapter_page"]
