"""Page retrieval: HTTP and headless fetch, cookie jars, archive storage."""

from .cookies import CookieStore, FileCookieStore, MemoryCookieStore
from .fetcher import Fetcher, FetchResult
from .headless import HeadlessConfig, PlaywrightRenderer, RenderedPage, Renderer
from .storage import LocalObjectStore, ObjectStore, S3ObjectStore, archive_key, build_object_store

__all__ = [
    "CookieStore",
    "FetchResult",
    "Fetcher",
    "FileCookieStore",
    "HeadlessConfig",
    "LocalObjectStore",
    "MemoryCookieStore",
    "ObjectStore",
    "PlaywrightRenderer",
    "RenderedPage",
    "Renderer",
    "S3ObjectStore",
    "archive_key",
    "build_object_store",
]
