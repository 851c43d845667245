from __future__ import annotations

import argparse
import asyncio
import sys
from importlib import metadata
from pathlib import Path
from urllib.parse import urlparse

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .config import ConfigError, StreamConfig, load_config
from .controller import ChapterStream, open_stream
from .fetch import ChapterFetchError, HttpFetcher
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .models import AFTER, BEFORE
from .web import WebConfig, create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("chapterstream")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"chapterstream {__version__}",
    )


def build_read_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterstream read",
        description="Open a chapter page and scroll through it headlessly, loading chapters as a reader would.",
    )
    _add_version_flag(ap)
    ap.add_argument("url", help="Chapter page address, e.g. http://127.0.0.1:8080/Gen/25/")
    ap.add_argument(
        "--steps",
        type=int,
        default=5,
        help="Number of scroll gestures to perform (default: 5).",
    )
    ap.add_argument(
        "--direction",
        choices=[AFTER, BEFORE],
        default=AFTER,
        help="Scroll direction (default: after).",
    )
    ap.add_argument(
        "--step-width",
        type=float,
        help="Pixels per scroll gesture (default: one viewport).",
    )
    ap.add_argument("--batch-size", type=int, help="Chapters to load per edge trigger.")
    ap.add_argument(
        "--preload",
        action="store_true",
        default=None,
        help="Load one batch before the requested chapter on open.",
    )
    ap.add_argument("--config", type=Path, help="TOML file with a [stream] table.")
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (fetches, splices, address updates).",
    )
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapterstream serve",
        description="Serve a local library of books as chapter pages for previewing.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "root",
        help="Directory containing one subdirectory per book (book.json plus 001.txt, 002.txt, ...).",
    )
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the preview server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for the preview server (default: 8080).",
    )
    return ap


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Infinite chapter streaming for paginated book boards. Commands: read, serve.",
    )
    _add_version_flag(ap)
    ap.add_argument("command", choices=["read", "serve"])
    return ap


async def _drive(
    stream: ChapterStream,
    *,
    steps: int,
    direction: str,
    step_width: float,
) -> None:
    delta = step_width if direction == AFTER else -step_width
    for step in range(steps):
        before = stream.display.scroll_left
        stream.scroll_by(delta)
        if stream.display.scroll_left == before:
            # Pinned against an edge; report the gesture anyway.
            stream.on_scroll()
        if step == 0:
            # Loading switches on after the first gesture, then rechecks the edges.
            await asyncio.sleep(stream.config.enable_delay + stream.config.edge_check_delay + 0.05)
        await stream.settle()


def _render_summary(console: Console, stream: ChapterStream) -> None:
    table = Table(title=f"Loaded chapters ({stream.state.home_book})")
    table.add_column("#", justify="right")
    table.add_column("Book")
    table.add_column("Chapter", justify="right")
    table.add_column("Posts", justify="right")
    table.add_column("Width", justify="right")
    for index, entry in enumerate(stream.display.entries, start=1):
        table.add_row(
            str(index),
            entry.key.book,
            str(entry.key.chapter),
            str(len(entry.posts)),
            f"{entry.width or 0:.0f}",
        )
    console.print(table)
    failed = sorted(stream.state.failed)
    if failed:
        console.print(f"Unavailable chapters: {', '.join(map(str, failed))}")
    console.print(f"Address: {stream.address}  (history entries: {len(stream.navigation.history)})")
    console.print(f"Page: {stream.chrome.title}")


async def _read(url: str, config: StreamConfig, args: argparse.Namespace, console: Console) -> int:
    parsed = urlparse(url)
    fetcher = HttpFetcher(config.base_url, timeout=config.fetch_timeout)
    try:
        stream = await open_stream(parsed.path or "/", fetcher, config)
        if stream is None:
            console.print(f"[yellow]{url} has no chapter stream.[/yellow]")
            return 1
        try:
            step_width = args.step_width or config.client_width
            await _drive(stream, steps=args.steps, direction=args.direction, step_width=step_width)
        finally:
            stream.close()
        _render_summary(console, stream)
        return 0
    finally:
        fetcher.close()


def _run_read(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    console = Console()
    parsed = urlparse(args.url)
    if not parsed.scheme or not parsed.netloc:
        console.print(f"[red]Not an absolute URL: {args.url}[/red]")
        return 2
    try:
        config = load_config(
            args.config,
            base_url=f"{parsed.scheme}://{parsed.netloc}",
            batch_size=args.batch_size,
            preload_before=args.preload,
        )
    except (ConfigError, FileNotFoundError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 2
    try:
        return asyncio.run(_read(args.url, config, args, console))
    except ChapterFetchError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1


def _run_serve(args: argparse.Namespace) -> int:
    root = Path(args.root).expanduser().resolve()
    try:
        app = create_app(WebConfig(root=root))
    except FileNotFoundError as exc:
        print(exc, file=sys.stderr)
        return 2
    print(f"Serving books from {root}")
    print(f"Preview URL: http://{args.host}:{args.port}/")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(app, host=args.host, port=args.port, log_config=build_uvicorn_log_config())
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "read":
        return _run_read(build_read_parser().parse_args(argv[1:]))
    if argv and argv[0] == "serve":
        return _run_serve(build_serve_parser().parse_args(argv[1:]))

    build_parser().parse_args(argv)
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
