"""Utility helpers shared across the MovieTrailer services."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

YEAR_RE = re.compile(r"^(\d{4})")


def utcnow() -> datetime:
    """Return an aware UTC timestamp."""

    return datetime.now(timezone.utc)


def parse_year(value: Any) -> int | None:
    """Return the year of a ``YYYY-MM-DD`` style release date."""

    if isinstance(value, int):
        return value if 1800 <= value <= 2200 else None
    if not isinstance(value, str):
        return None
    match = YEAR_RE.match(value.strip())
    if not match:
        return None
    return int(match.group(1))


def decade_label(year: int) -> str:
    """Bucket a year into its decade label, e.g. ``1994 -> "1990s"``."""

    return f"{year // 10 * 10}s"


def build_image_url(path: str | None, base_url: str) -> str | None:
    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of ``items`` holding at most ``size`` entries."""

    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def atomic_write_json(path: Path, payload: Any) -> None:
    """Write ``payload`` as JSON so readers never observe a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


def read_json(path: Path) -> Any | None:
    """Return the decoded JSON document at ``path`` or ``None`` if unusable."""

    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable JSON document %s: %s", path, exc)
        return None
