"""
Where a book lives on disk, where its regenerated images go, and how
public URLs map back onto files.

Book scope precedence is decided here and nowhere else: a book is user-scoped
when a manifest exists under the requesting user's folder, otherwise it is
looked up in the shared (global) folder.
"""
import hashlib
import io
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote, unquote, urlparse

import requests
from PIL import Image

import config
from book_utils import pad2
from services.errors import InvalidInput, IOFailure, NotFound
from services.manifest import find_manifest_path

logger = logging.getLogger(__name__)

USER_SCOPE = "user"
GLOBAL_SCOPE = "global"
EDITED_DIR_NAME = "edited"


@dataclass(frozen=True)
class BookLocation:
    scope: str
    user_id: str
    book_id: str
    book_dir: Path
    manifest_path: Path

    @property
    def lock_key(self):
        owner = self.user_id if self.scope == USER_SCOPE else ""
        return (self.scope, owner, self.book_id)


def validate_id(value, label: str = "id") -> str:
    """Reject empty ids and anything that could escape its folder."""
    text = str(value if value is not None else "").strip()
    if not text or text in (".", "..") or ".." in text or "/" in text or "\\" in text or "\x00" in text:
        raise InvalidInput(f"Invalid {label}: {value!r}")
    return text


def convert_image_to_png(image_bytes: bytes) -> bytes:
    """
    Convert any image format Pillow can read (WebP, JPEG, GIF, ...) to PNG bytes.

    Raises IOFailure when the bytes are not a decodable image.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (OSError, ValueError) as exc:
        raise IOFailure(f"Image conversion to PNG failed: {exc}") from exc

    if img.mode == 'P':
        img = img.convert('RGBA')
    elif img.mode not in ('RGB', 'RGBA', 'LA', 'L'):
        img = img.convert('RGB')

    output = io.BytesIO()
    img.save(output, format='PNG', optimize=True)
    return output.getvalue()


def write_bytes_atomic(path: Path, data: bytes) -> Path:
    """Write to a temporary sibling and rename onto path."""
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False) as handle:
            tmp_name = handle.name
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise IOFailure(f"Failed to write {path}: {exc}", path=path) from exc
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    return path


class DerivedArtifactStore:
    """Maps (scope, book) onto directories and public URLs."""

    def __init__(
        self,
        output_dir: Optional[str] = None,
        users_dir: Optional[str] = None,
        global_books_dir: Optional[str] = None,
        public_prefix: Optional[str] = None,
    ):
        self.output_dir = Path(output_dir or config.OUTPUT_DIR)
        if output_dir and not users_dir:
            users_dir = os.path.join(output_dir, "users")
        if output_dir and not global_books_dir:
            global_books_dir = os.path.join(output_dir, "books")
        self.users_dir = Path(users_dir or config.USERS_DIR)
        self.global_books_dir = Path(global_books_dir or config.GLOBAL_BOOKS_DIR)
        self.public_prefix = "/" + (public_prefix or config.PUBLIC_OUTPUT_PREFIX).strip("/")

    # ------------------------------------------------------------------
    # Book directories
    # ------------------------------------------------------------------
    def user_books_dir(self, user_id: str) -> Path:
        return self.users_dir / validate_id(user_id, "user id") / "books"

    def book_dir_for(self, scope: str, user_id: str, book_id: str) -> Path:
        if scope == GLOBAL_SCOPE:
            return self.global_books_dir / book_id
        return self.user_books_dir(user_id) / book_id

    def locate(self, user_id: str, book_id: str) -> BookLocation:
        """
        Resolve a book's folder: user scope first, shared scope as fallback.

        Raises NotFound when neither folder holds a manifest.
        """
        user_id = validate_id(user_id, "user id")
        book_id = validate_id(book_id, "book id")

        for scope in (USER_SCOPE, GLOBAL_SCOPE):
            book_dir = self.book_dir_for(scope, user_id, book_id)
            manifest_path = find_manifest_path(book_dir, book_id)
            if manifest_path is not None:
                return BookLocation(scope, user_id, book_id, book_dir, manifest_path)

        raise NotFound(f"Book not found: {book_id} (expected book.json)")

    def list_locations(self, user_id: str) -> List[BookLocation]:
        """Every readable book for a user; a user book shadows a shared one with the same folder name."""
        user_id = validate_id(user_id, "user id")
        by_dir: Dict[str, BookLocation] = {}
        roots = [(GLOBAL_SCOPE, self.global_books_dir), (USER_SCOPE, self.user_books_dir(user_id))]
        for scope, root in roots:
            if not root.is_dir():
                continue
            for entry in sorted(root.iterdir()):
                if not entry.is_dir():
                    continue
                manifest_path = find_manifest_path(entry, entry.name)
                if manifest_path is None:
                    continue
                by_dir[entry.name] = BookLocation(scope, user_id, entry.name, entry, manifest_path)
        return list(by_dir.values())

    # ------------------------------------------------------------------
    # Derived (edited) artifacts
    # ------------------------------------------------------------------
    def edited_dir(self, location: BookLocation) -> Path:
        return location.book_dir / EDITED_DIR_NAME

    def edited_url_prefix(self, location: BookLocation) -> str:
        if location.scope == GLOBAL_SCOPE:
            return f"{self.public_prefix}/books/{quote(location.book_id)}/{EDITED_DIR_NAME}"
        return (
            f"{self.public_prefix}/users/{quote(location.user_id)}/books/"
            f"{quote(location.book_id)}/{EDITED_DIR_NAME}"
        )

    def derived_filename(self, location: BookLocation, page: int, taken: Iterable[str] = ()) -> str:
        """
        A timestamped file name for a regenerated cover (page 0) or page.

        The timestamp is bumped past names already on disk or already in `taken`,
        so earlier versions that may still be referenced are never overwritten.
        """
        stem = "cover" if int(page) == 0 else f"page_{pad2(page)}"
        taken = set(taken)
        edited_dir = self.edited_dir(location)
        stamp = int(time.time() * 1000)
        while True:
            name = f"{stem}-{stamp}.png"
            if name not in taken and not (edited_dir / name).exists():
                return name
            stamp += 1

    def derived_url(self, location: BookLocation, file_name: str) -> str:
        return f"{self.edited_url_prefix(location)}/{quote(file_name)}"

    # ------------------------------------------------------------------
    # URL <-> path
    # ------------------------------------------------------------------
    def can_read(self, user_id: str, path: Path) -> bool:
        """Files under the users folder belong to that user only; everything else is shared."""
        try:
            rel = Path(path).resolve().relative_to(self.users_dir.resolve())
        except ValueError:
            return True
        return bool(rel.parts) and rel.parts[0] == user_id

    def url_to_path(self, url: str, location: Optional[BookLocation] = None) -> Optional[Path]:
        """
        Map a public URL onto a local file path.

        `<prefix>/...` maps under the output directory and `/api/image/<id>/<file>`
        into the book folder. Remote URLs and paths escaping their root give None.
        """
        raw = str(url or "").strip()
        if not raw:
            return None
        parsed = urlparse(raw)
        if parsed.scheme or parsed.netloc:
            return None
        url_path = unquote(parsed.path)

        prefix = self.public_prefix + "/"
        if url_path.startswith(prefix):
            return self._contained(self.output_dir, url_path[len(prefix):])

        if location is not None and url_path.startswith("/api/image/"):
            parts = url_path[len("/api/image/"):].split("/")
            if len(parts) == 2 and parts[0] == location.book_id:
                return self._contained(location.book_dir, parts[1])
        return None

    @staticmethod
    def _contained(root: Path, rel: str) -> Optional[Path]:
        rel = rel.lstrip("/")
        if not rel:
            return None
        root = root.resolve()
        candidate = (root / rel).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            return None
        return candidate

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def pdf_path(self, location: BookLocation) -> Path:
        return location.book_dir / f"book-{location.book_id}.pdf"

    def pdf_candidates(self, location: BookLocation) -> List[Path]:
        book_dir = location.book_dir
        book_id = location.book_id
        return [
            book_dir / f"book-{book_id}.pdf",
            book_dir / f"{book_id}.pdf",
            book_dir.parent / f"{book_id}.pdf",
            book_dir.parent / f"book-{book_id}.pdf",
        ]

    def existing_pdf(self, location: BookLocation) -> Optional[Path]:
        for candidate in self.pdf_candidates(location):
            if candidate.is_file():
                return candidate
        return None

    def pdf_exists(self, location: BookLocation) -> bool:
        return self.existing_pdf(location) is not None

    # ------------------------------------------------------------------
    # Remote replacement images
    # ------------------------------------------------------------------
    def fetch_remote_image(self, location: BookLocation, url: str, timeout: Optional[int] = None) -> Path:
        """
        Download a remote replacement image into edited/ as PNG and return its path.

        Downloads are cached by URL hash.
        """
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]
        target = self.edited_dir(location) / f"remote-{digest}.png"
        if target.is_file():
            return target

        try:
            resp = requests.get(url, timeout=timeout or config.REMOTE_IMAGE_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise IOFailure(f"Failed to download {url}: {exc}", path=target) from exc

        write_bytes_atomic(target, convert_image_to_png(resp.content))
        logger.info("Cached remote image %s -> %s", url, target)
        return target
