import datetime as _dt
import time

from pathlib import Path
from typing import Dict, Iterable
from urllib.parse import urlparse


def store_paths(root: Path) -> Dict[str, Path]:
    return {
        "store": root / "notes.json",
        "logs": root / "logs",
    }


def now_iso() -> str:
    """UTC timestamp in the same shape as JavaScript's Date.toISOString()."""
    now = _dt.datetime.now(_dt.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value) -> _dt.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = _dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed


def new_note_id(taken: Iterable[int]) -> int:
    """Millisecond creation time, bumped past any id already in use."""
    taken = set(taken)
    nid = int(time.time() * 1000)
    while nid in taken:
        nid += 1
    return nid


def new_key_id(previous: str | None = None) -> str:
    """Timestamp-derived key version, strictly greater than `previous`."""
    stamp = int(time.time() * 1000)
    if previous and previous.startswith("v") and previous[1:].isdigit():
        stamp = max(stamp, int(previous[1:]) + 1)
    return f"v{stamp}"


def is_valid_url(text: str) -> bool:
    parsed = urlparse(text.strip())
    if not parsed.scheme or " " in text.strip():
        return False
    if parsed.scheme in ("http", "https", "ftp", "ws", "wss"):
        return bool(parsed.netloc)
    return bool(parsed.netloc or parsed.path)


def suggest_category(text: str, fallback: str = "other") -> str:
    return "url" if is_valid_url(text) else fallback


def filter_notes(entries, search: str = "", category: str | None = None,
                 order: str = "newest", limit: int | None = None) -> list:
    """Filter (note, text) pairs the way the popup list does: substring match plus category."""
    term = (search or "").strip().lower()
    hits = [
        (note, text) for note, text in entries
        if (not term or term in (text or "").lower()) and (not category or note.category == category)
    ]
    if order == "oldest":
        hits.reverse()
    if limit is not None:
        hits = hits[:limit]
    return hits
