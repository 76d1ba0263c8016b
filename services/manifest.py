"""
Load and save a book's JSON manifest (book.json).

Saves go through a temporary file in the same directory followed by an atomic
rename, so readers never observe a partially written document.
"""
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from services.errors import CorruptState, IOFailure, NotFound

logger = logging.getLogger(__name__)

MANIFEST_NAME = "book.json"


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None when missing or unparseable."""
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def find_manifest_path(book_dir: Path, book_id: str) -> Optional[Path]:
    """
    Locate the manifest inside a book folder.

    Accepts book.json, book-<id>.json and, as a last resort, any book-*.json.
    """
    book_dir = Path(book_dir)
    candidates = [book_dir / MANIFEST_NAME, book_dir / f"book-{book_id}.json"]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    if book_dir.is_dir():
        for candidate in sorted(book_dir.glob("book-*.json")):
            if candidate.is_file():
                return candidate
    return None


def load(path: Path) -> Dict[str, Any]:
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise NotFound(f"Manifest not found: {path}", path=path)
    except OSError as exc:
        raise IOFailure(f"Failed to read manifest {path}: {exc}", path=path) from exc

    try:
        manifest = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptState(f"Manifest is not valid JSON: {path} ({exc})", path=path) from exc

    if not isinstance(manifest, dict):
        raise CorruptState(f"Manifest root must be an object: {path}", path=path)
    return manifest


def save(path: Path, manifest: Dict[str, Any]) -> Dict[str, Any]:
    """
    Stamp updatedAt and write the manifest atomically.

    Returns the manifest that was written.
    """
    path = Path(path)
    manifest["updatedAt"] = now_iso()
    payload = json.dumps(manifest, ensure_ascii=False, indent=2)

    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as handle:
            tmp_name = handle.name
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise IOFailure(f"Failed to write manifest {path}: {exc}", path=path) from exc
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.debug("Saved manifest %s", path)
    return manifest


def normalize_overrides(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Make sure manifest['overrides'] and its page maps exist; return the overrides."""
    overrides = manifest.get("overrides")
    if not isinstance(overrides, dict):
        overrides = {}
        manifest["overrides"] = overrides
    for key in ("pagesText", "pagesImageUrl"):
        if not isinstance(overrides.get(key), dict):
            overrides[key] = {}
    return overrides
