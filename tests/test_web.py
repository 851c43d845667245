from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

from chapterstream.controller import ChapterStream
from chapterstream.page import parse_book_metadata, soup_from_html
from chapterstream.web import WebConfig, create_app

from helpers import FakeFetcher, make_config


def _create_book(root, name: str, chapters: list[list[str]], meta: dict | None = None) -> None:
    book_dir = root / name
    book_dir.mkdir()
    if meta is not None:
        (book_dir / "book.json").write_text(json.dumps(meta), encoding="utf-8")
    for index, lines in enumerate(chapters, start=1):
        (book_dir / f"{index:03d}.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    _create_book(
        root,
        "Gen",
        [["In the beginning", "", "And the earth"], ["Thus the heavens"]],
        {"title": "Genesis", "subtitle": "The First Book of Moses", "next": {"book": "Exo", "label": "Exodus"}},
    )
    _create_book(root, "Exo", [["Now these are the names"]], {"title": "Exodus", "prev": "Gen"})
    (root / "notes").mkdir()
    return root


def test_book_page_renders_first_chapter_in_page_contract(library) -> None:
    app = create_app(WebConfig(root=library))
    book_page = _find_route(app, "/{book}/", "GET")

    response = book_page("Gen")
    html = response.body.decode("utf-8")

    assert response.status_code == 200
    assert 'data-board="Gen"' in html
    assert 'id="thread_1"' in html
    assert html.count('class="post bible"') == 2
    metadata = parse_book_metadata(soup_from_html(html), "Gen")
    assert metadata is not None
    assert metadata.chapter_count == 2
    assert metadata.subtitle == "The First Book of Moses"
    assert metadata.next is not None and metadata.next.book == "Exo"


def test_rendered_page_scrapes_without_manifest(library) -> None:
    app = create_app(WebConfig(root=library))
    chapter_page = _find_route(app, "/{book}/res/{chapter:int}.html", "GET")

    html = chapter_page("Exo", 1).body.decode("utf-8")
    start = html.index('<script type="application/json"')
    end = html.index("</script>", start) + len("</script>")
    metadata = parse_book_metadata(soup_from_html(html[:start] + html[end:]), "Exo")

    assert metadata is not None
    assert metadata.title == "Exodus"
    assert metadata.prev is not None and metadata.prev.book == "Gen"
    assert metadata.chapter_count == 1


def test_missing_chapter_and_unknown_book_are_404(library) -> None:
    app = create_app(WebConfig(root=library))
    chapter_page = _find_route(app, "/{book}/res/{chapter:int}.html", "GET")
    book_page = _find_route(app, "/{book}/", "GET")

    with pytest.raises(HTTPException) as missing_chapter:
        chapter_page("Gen", 3)
    with pytest.raises(HTTPException) as unknown_book:
        book_page("Rev")
    with pytest.raises(HTTPException) as outside_root:
        book_page("..")

    assert missing_chapter.value.status_code == 404
    assert unknown_book.value.status_code == 404
    assert outside_root.value.status_code == 404


def test_api_books_lists_library(library) -> None:
    app = create_app(WebConfig(root=library))
    api_books = _find_route(app, "/api/books", "GET")

    payload = json.loads(api_books().body)

    assert [book["id"] for book in payload["books"]] == ["Exo", "Gen"]
    gen = payload["books"][1]
    assert gen["total_chapters"] == 2
    assert gen["next"] == "Exo"


def test_index_links_every_book(library) -> None:
    app = create_app(WebConfig(root=library, title="Bible"))
    index = _find_route(app, "/", "GET")

    html = index().body.decode("utf-8")

    assert "<h1>Bible</h1>" in html
    assert '<a href="/Exo/">Exodus</a> (1 chapters)' in html
    assert '<a href="/Gen/">Genesis</a> (2 chapters)' in html
    assert "notes" not in html


def test_chapter_stream_attaches_to_served_page(library) -> None:
    app = create_app(WebConfig(root=library))
    chapter_address = _find_route(app, "/{book}/{chapter:int}/", "GET")
    html = chapter_address("Gen", 2).body.decode("utf-8")

    stream = ChapterStream.from_page(html, "/Gen/2/", FakeFetcher({}), make_config())

    assert stream is not None
    assert stream.state.loaded == {2}
    assert stream.chrome.title == "Genesis"
    assert [link.number for link in stream.chrome.chapter_links] == [1, 2]


def test_missing_root_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        create_app(WebConfig(root=tmp_path / "nope"))
