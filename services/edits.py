"""
Apply a batch of user edits to a book.

Text edits burn the new text onto a clean base image and point the override at
the regenerated PNG; image edits store a replacement URL as-is. A batch is all
or nothing: sources are resolved for every edit before anything is rendered,
renders are staged under edited/, and the manifest is written exactly once.
"""
import copy
import logging
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import config
from book_utils import (
    COVER,
    expected_page_filename,
    is_derived_or_final,
    resolve_base,
    resolve_clean_base,
)
from services import manifest as manifest_store
from services.book_view import as_text, child_name_of, current_url
from services.errors import InvalidInput, NotFound
from services.overlay import render_card
from services.storage import BookLocation, DerivedArtifactStore

logger = logging.getLogger(__name__)

TARGETS = ("cover", "page")
MIN_INSTRUCTION_LENGTH = 6
MAX_PAGE = 9999


@dataclass(frozen=True)
class TextEdit:
    target: str
    page: Optional[int]
    text: str

    @property
    def slot(self) -> int:
        return COVER if self.target == "cover" else int(self.page)


@dataclass(frozen=True)
class ImageEdit:
    target: str
    page: Optional[int]
    new_url: str


@dataclass
class EditResult:
    manifest: Dict[str, Any]
    derived_files: List[Path] = field(default_factory=list)
    committed: bool = False

    @property
    def overrides(self) -> Dict[str, Any]:
        return self.manifest.get("overrides") or {}


# ----------------------------------------------------------------------
# Validation (pure)
# ----------------------------------------------------------------------
def _parse_target(raw: Any) -> str:
    target = str(raw or "").strip().lower()
    if target not in TARGETS:
        raise InvalidInput(f"Invalid edit target: {raw!r} (expected 'cover' or 'page')")
    return target


def _parse_page(raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidInput(f"Invalid page number: {raw!r}")
    try:
        page = int(str(raw).strip())
    except (TypeError, ValueError):
        raise InvalidInput(f"Invalid page number: {raw!r}")
    if page < 1 or page > MAX_PAGE:
        raise InvalidInput(f"Page number out of range: {page}")
    return page


def _target_and_page(edit: Dict[str, Any]) -> Tuple[str, Optional[int]]:
    target = _parse_target(edit.get("target"))
    page = _parse_page(edit.get("page")) if target == "page" else None
    return target, page


def validate_edits(text_edits: Any, image_edits: Any) -> Tuple[List[TextEdit], List[ImageEdit]]:
    """
    Check quotas and shape of an edit batch without touching the disk.

    Raises InvalidInput on the first problem found.
    """
    text_edits = [] if text_edits is None else text_edits
    image_edits = [] if image_edits is None else image_edits
    if not isinstance(text_edits, (list, tuple)) or not isinstance(image_edits, (list, tuple)):
        raise InvalidInput("textEdits and imageEdits must be lists")

    if len(text_edits) > config.MAX_TEXT_EDITS:
        raise InvalidInput(f"Too many text edits: {len(text_edits)} (limit {config.MAX_TEXT_EDITS})")
    if len(image_edits) > config.MAX_IMAGE_EDITS:
        raise InvalidInput(f"Too many image edits: {len(image_edits)} (limit {config.MAX_IMAGE_EDITS})")

    parsed_text: List[TextEdit] = []
    for index, edit in enumerate(text_edits):
        if not isinstance(edit, dict):
            raise InvalidInput(f"Text edit #{index + 1} must be an object")
        target, page = _target_and_page(edit)
        text = str(edit.get("text") or "").strip()
        if not text:
            raise InvalidInput(f"Text edit #{index + 1} has blank text")
        parsed_text.append(TextEdit(target, page, text))

    parsed_images: List[ImageEdit] = []
    for index, edit in enumerate(image_edits):
        if not isinstance(edit, dict):
            raise InvalidInput(f"Image edit #{index + 1} must be an object")
        target, page = _target_and_page(edit)
        new_url = str(edit.get("newUrl") or "").strip()
        if not new_url:
            raise InvalidInput(f"Image edit #{index + 1} is missing newUrl")
        parsed_images.append(ImageEdit(target, page, new_url))

    return parsed_text, parsed_images


def validate_image_request(target: Any, page: Any, instruction: Any, image_url: Any) -> Tuple[str, Optional[int], str, str]:
    target = _parse_target(target or "page")
    page = _parse_page(page) if target == "page" else None
    instruction = str(instruction or "").strip()
    if len(instruction) < MIN_INSTRUCTION_LENGTH:
        raise InvalidInput(f"Instruction too short (minimum {MIN_INSTRUCTION_LENGTH} characters)")
    image_url = str(image_url or "").strip()
    if not image_url:
        raise InvalidInput("imageUrl is missing")
    return target, page, instruction, image_url


# ----------------------------------------------------------------------
# Titles and current URLs
# ----------------------------------------------------------------------
def cover_title(manifest: Dict[str, Any]) -> str:
    overrides = manifest.get("overrides") or {}
    story = manifest.get("story") if isinstance(manifest.get("story"), dict) else {}
    for value in (
        overrides.get("coverTitle"),
        manifest.get("title"),
        manifest.get("bookTitle"),
        story.get("title"),
        story.get("bookTitle"),
    ):
        if as_text(value):
            return as_text(value)
    name = child_name_of(manifest)
    return f"A Aventura de {name}" if name else ""


def _row_title(rows: Any, page: int) -> str:
    if not isinstance(rows, list) or len(rows) < page:
        return ""
    row = rows[page - 1]
    if not isinstance(row, dict):
        return ""
    for key in ("title", "heading", "pageTitle"):
        if as_text(row.get(key)):
            return as_text(row.get(key))
    return ""


def page_title(manifest: Dict[str, Any], page: int) -> str:
    overrides = manifest.get("overrides") or {}
    titles = overrides.get("pagesTitle")
    if isinstance(titles, dict) and as_text(titles.get(str(page))):
        return as_text(titles.get(str(page)))

    story = manifest.get("story") if isinstance(manifest.get("story"), dict) else {}
    return _row_title(story.get("pages"), page) or _row_title(manifest.get("pages"), page) or f"Página {page}"


# ----------------------------------------------------------------------
# Planning, staging, commit
# ----------------------------------------------------------------------
def resolve_text_source(
    store: DerivedArtifactStore, location: BookLocation, manifest: Dict[str, Any], slot: int
) -> Optional[Path]:
    """
    Pick the image a text edit is burned onto.

    A clean base wins; then the current effective image when it is a clean
    local file; then whatever the resolver finds (legacy burned assets).
    """
    clean = resolve_clean_base(location.book_dir, slot)
    if clean is not None:
        return clean

    url = current_url(manifest, slot)
    if url and not is_derived_or_final(url):
        by_url = store.url_to_path(url, location)
        if by_url is not None and by_url.is_file() and not is_derived_or_final(by_url):
            return by_url

    return resolve_base(location.book_dir, slot)


def _plan_sources(
    store: DerivedArtifactStore, location: BookLocation, manifest: Dict[str, Any], text_edits: Sequence[TextEdit]
) -> List[Optional[Path]]:
    sources: List[Optional[Path]] = []
    for edit in text_edits:
        source = resolve_text_source(store, location, manifest, edit.slot)
        if source is None and edit.target == "page":
            raise NotFound(
                f"Base image for page {edit.page} not found (expected: {expected_page_filename(edit.page)})"
            )
        if source is None:
            logger.warning("Book %s has no cover image; storing cover text only", location.book_id)
        sources.append(source)
    return sources


def _discard(paths: Sequence[Path]) -> None:
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove staged file %s: %s", path, exc)


def summarize(text_edits: Sequence[TextEdit], image_edits: Sequence[ImageEdit]) -> Dict[str, Any]:
    """Edit log summary: counts and targets, never the raw text."""
    return {
        "textCount": len(text_edits),
        "imageCount": len(image_edits),
        "textEdits": [{"target": e.target, "page": e.page, "size": len(e.text)} for e in text_edits],
        "imageEdits": [{"target": e.target, "page": e.page, "hasNewUrl": bool(e.new_url)} for e in image_edits],
    }


def apply_edits(
    store: DerivedArtifactStore,
    location: BookLocation,
    manifest: Dict[str, Any],
    text_edits: Sequence[TextEdit],
    image_edits: Sequence[ImageEdit],
    user_id: str,
) -> EditResult:
    """
    Stage every derived image, then merge overrides and persist the manifest once.

    The caller must hold the book lock. On any failure the staged images are
    removed and the manifest on disk is left as it was.
    """
    if not text_edits and not image_edits:
        return EditResult(manifest=manifest)

    sources = _plan_sources(store, location, manifest, text_edits)

    updated = copy.deepcopy(manifest)
    overrides = manifest_store.normalize_overrides(updated)
    edited_dir = store.edited_dir(location)
    staged: List[Path] = []
    staged_names: List[str] = []

    try:
        for edit, source in zip(text_edits, sources):
            if edit.target == "cover":
                overrides["coverText"] = edit.text
            else:
                overrides["pagesText"][str(edit.page)] = edit.text

            if source is None:
                continue

            file_name = store.derived_filename(location, edit.slot, taken=staged_names)
            out_path = edited_dir / file_name
            title = cover_title(updated) if edit.target == "cover" else page_title(updated, edit.page)
            render_card(source, out_path, title, edit.text)
            staged.append(out_path)
            staged_names.append(file_name)

            url = store.derived_url(location, file_name)
            if edit.target == "cover":
                overrides["coverUrl"] = url
            else:
                overrides["pagesImageUrl"][str(edit.page)] = url

        for edit in image_edits:
            if edit.target == "cover":
                overrides["coverUrl"] = edit.new_url
            else:
                overrides["pagesImageUrl"][str(edit.page)] = edit.new_url

        edits_log = updated.get("editsLog")
        if not isinstance(edits_log, list):
            edits_log = updated["editsLog"] = []
        edits_log.append(
            {"at": manifest_store.now_iso(), "userId": user_id, "summary": summarize(text_edits, image_edits)}
        )

        manifest_store.save(location.manifest_path, updated)
    except Exception:
        _discard(staged)
        raise

    logger.info(
        "Applied %d text and %d image edits to book %s (%s scope)",
        len(text_edits),
        len(image_edits),
        location.book_id,
        location.scope,
    )
    return EditResult(manifest=updated, derived_files=staged, committed=True)


def queue_image_edit(
    location: BookLocation,
    manifest: Dict[str, Any],
    target: str,
    page: Optional[int],
    instruction: str,
    image_url: str,
    user_id: str,
) -> Dict[str, Any]:
    """Record an image replacement request; fulfillment happens elsewhere."""
    updated = copy.deepcopy(manifest)
    requests_queue = updated.get("imageEditRequests")
    if not isinstance(requests_queue, list):
        requests_queue = updated["imageEditRequests"] = []

    entry = {
        "id": f"imgedit_{int(time.time() * 1000)}_{secrets.token_hex(6)}",
        "at": manifest_store.now_iso(),
        "target": target,
        "page": page,
        "instruction": instruction,
        "imageUrl": image_url,
        "status": "queued",
    }
    requests_queue.append(entry)
    manifest_store.save(location.manifest_path, updated)
    logger.info("Queued image edit %s for book %s (user %s)", entry["id"], location.book_id, user_id)
    return entry
