from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path

import tomllib

CONFIG_ENV = "CHAPTERSTREAM_CONFIG"
DEFAULT_COLUMN_WIDTH = 208.0  # 13em at 16px


class ConfigError(ValueError):
    """Raised when a chapterstream config file holds unknown or invalid values."""


@dataclass(slots=True)
class StreamConfig:
    base_url: str = "http://127.0.0.1:8080"
    book_path: str = "/{book}/"
    chapter_path: str = "/{book}/res/{chapter}.html"
    batch_size: int = 3
    load_threshold: float = 2.0
    url_update_delay: float = 0.5
    edge_check_delay: float = 0.15
    enable_delay: float = 1.0
    dead_zone: float = 10.0
    fallback_column_width: float = DEFAULT_COLUMN_WIDTH
    column_width: float | None = None
    client_width: float = 1040.0
    chars_per_column: int = 600
    leading_tolerance: float = 50.0
    fetch_timeout: float = 15.0
    preload_before: bool = False

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        if self.load_threshold < 0:
            raise ConfigError("load_threshold must not be negative")
        if self.fetch_timeout <= 0:
            raise ConfigError("fetch_timeout must be positive")
        if self.chars_per_column < 1:
            raise ConfigError("chars_per_column must be at least 1")
        if "{book}" not in self.book_path:
            raise ConfigError("book_path must contain {book}")
        if "{book}" not in self.chapter_path or "{chapter}" not in self.chapter_path:
            raise ConfigError("chapter_path must contain {book} and {chapter}")

    def book_url_path(self, book: str) -> str:
        return self.book_path.format(book=book)

    def chapter_url_path(self, book: str, chapter: int) -> str:
        return self.chapter_path.format(book=book, chapter=chapter)


def _config_path(path: Path | None) -> Path | None:
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return None


def load_config(path: Path | None = None, **overrides: object) -> StreamConfig:
    """
    Build a StreamConfig from the ``[stream]`` table of a TOML file.

    Keyword overrides win over file values (the CLI passes its flags this way);
    ``None`` overrides are ignored.
    """
    values: dict[str, object] = {}
    config_path = _config_path(path)
    if config_path is not None:
        try:
            with config_path.open("rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
        table = data.get("stream", {})
        if not isinstance(table, dict):
            raise ConfigError(f"[stream] in {config_path} must be a table")
        values.update(table)
    values.update({key: value for key, value in overrides.items() if value is not None})

    known = {f.name for f in fields(StreamConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    try:
        return StreamConfig(**values)  # type: ignore[arg-type]
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc


__all__ = ["CONFIG_ENV", "ConfigError", "StreamConfig", "load_config"]
