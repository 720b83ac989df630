"""Crash-safe file writes for the local archive and the cookie jars."""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def json_bytes(payload: Any) -> bytes:
    """Stable JSON encoding shared by archive sidecars and cookie jars."""
    return json.dumps(payload, indent=2, sort_keys=True, default=str).encode("utf-8")


def atomic_write(path: Path | str, data: bytes, *, overwrite: bool = True) -> bool:
    """Write ``data`` through a temp file in the target directory, then move it in place.

    With ``overwrite=False`` the target is linked rather than replaced, so an
    existing file is never touched and ``False`` comes back.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if not overwrite and target.exists():
        return False
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if overwrite:
            os.replace(tmp, target)
        else:
            try:
                os.link(tmp, target)
            except FileExistsError:
                return False
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)
    return True


def atomic_write_json(path: Path | str, payload: Any) -> bool:
    return atomic_write(path, json_bytes(payload))
