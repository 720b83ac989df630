"""Per-category cookie persistence.

A jar is a list of Playwright-style cookie dicts (``name``, ``value``,
``domain``, ``path`` ...). ``lock(category)`` serialises fetches that share a
jar so login and logout never interleave.
"""
from __future__ import annotations

import json
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from continuous_scraper.fs import atomic_write_json

logger = structlog.get_logger(__name__)

Cookie = dict[str, Any]


class CookieStore(Protocol):
    def load(self, category: str) -> list[Cookie]: ...

    def save(self, category: str, cookies: list[Cookie]) -> None: ...

    def clear(self, category: str) -> bool: ...

    def lock(self, category: str): ...


class _CategoryLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, category: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(category, threading.RLock())
        with lock:
            yield


class FileCookieStore:
    """One JSON file per category under ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._locks = _CategoryLocks()

    def _path(self, category: str) -> Path:
        safe = re.sub(r"[^a-z0-9_\-]", "_", category.lower()) or "default"
        return self.root / f"{safe}.json"

    def lock(self, category: str):
        return self._locks.hold(category)

    def load(self, category: str) -> list[Cookie]:
        path = self._path(category)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("cookies.unreadable", category=category, error=str(exc))
            return []
        return [c for c in data if isinstance(c, dict) and "name" in c and "value" in c]

    def save(self, category: str, cookies: list[Cookie]) -> None:
        atomic_write_json(self._path(category), list(cookies))
        logger.info("cookies.saved", category=category, count=len(cookies))

    def clear(self, category: str) -> bool:
        path = self._path(category)
        if not path.exists():
            return False
        path.unlink()
        logger.info("cookies.cleared", category=category)
        return True


class MemoryCookieStore:
    """Process-local jar; used when nothing should touch the disk."""

    def __init__(self) -> None:
        self._jars: dict[str, list[Cookie]] = {}
        self._locks = _CategoryLocks()

    def lock(self, category: str):
        return self._locks.hold(category)

    def load(self, category: str) -> list[Cookie]:
        return list(self._jars.get(category, []))

    def save(self, category: str, cookies: list[Cookie]) -> None:
        self._jars[category] = list(cookies)

    def clear(self, category: str) -> bool:
        return self._jars.pop(category, None) is not None


def to_httpx(cookies: list[Cookie]) -> httpx.Cookies:
    jar = httpx.Cookies()
    for c in cookies:
        jar.set(c["name"], c["value"], domain=c.get("domain", ""), path=c.get("path", "/"))
    return jar


def from_httpx(jar: httpx.Cookies) -> list[Cookie]:
    return [
        {"name": c.name, "value": c.value, "domain": c.domain, "path": c.path}
        for c in jar.jar
    ]
