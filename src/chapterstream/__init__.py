from .books import BookBoundaryResolver, BookMetadataError
from .config import ConfigError, StreamConfig, load_config
from .controller import ChapterStream, open_stream
from .fetch import ChapterFetchError, FetchResponse, HttpFetcher
from .loader import ChapterLoader
from .models import BookMetadata, BookRef, ChapterFragment, ChapterKey, LoadState
from .navigation import NavigationSync, PageChrome, SessionHistory
from .splicer import DocumentSplicer
from .viewport import ViewportMonitor

__all__ = [
    "BookBoundaryResolver",
    "BookMetadata",
    "BookMetadataError",
    "BookRef",
    "ChapterFetchError",
    "ChapterFragment",
    "ChapterKey",
    "ChapterLoader",
    "ChapterStream",
    "ConfigError",
    "DocumentSplicer",
    "FetchResponse",
    "HttpFetcher",
    "LoadState",
    "NavigationSync",
    "PageChrome",
    "SessionHistory",
    "StreamConfig",
    "ViewportMonitor",
    "load_config",
    "open_stream",
]
