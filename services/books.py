"""
Book operations exposed to the application: list, load, apply edits and queue
image replacement requests.

Every operation resolves the book folder through DerivedArtifactStore.locate,
so user/global precedence is decided in one place. Writes hold the per-book
lock for the whole read-modify-regenerate-write cycle.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from generate_pdf import build_book_pdf
from services import book_view, edits
from services import manifest as manifest_store
from services.errors import BookError, IOFailure, NotFound
from services.locks import BookLockManager, book_locks
from services.storage import BookLocation, DerivedArtifactStore

logger = logging.getLogger(__name__)

_default_store: Optional[DerivedArtifactStore] = None


def default_store() -> DerivedArtifactStore:
    global _default_store
    if _default_store is None:
        _default_store = DerivedArtifactStore()
    return _default_store


def _view_for(location: BookLocation, manifest: Dict[str, Any], store: DerivedArtifactStore) -> Dict[str, Any]:
    return book_view.resolve(
        manifest,
        lambda: store.pdf_exists(location),
        dir_id=location.book_id,
        scope=location.scope,
    )


def list_books(user_id: str, store: Optional[DerivedArtifactStore] = None) -> List[Dict[str, Any]]:
    """All books visible to a user, most recently updated first. Unreadable manifests are skipped."""
    store = store or default_store()
    views = []
    for location in store.list_locations(user_id):
        try:
            manifest = manifest_store.load(location.manifest_path)
        except BookError as exc:
            logger.warning("Skipping book %s: %s", location.book_id, exc)
            continue
        views.append(_view_for(location, manifest, store))
    return book_view.sort_views(views)


def load_book(user_id: str, book_id: str, store: Optional[DerivedArtifactStore] = None) -> Dict[str, Any]:
    store = store or default_store()
    location = store.locate(user_id, book_id)
    manifest = manifest_store.load(location.manifest_path)
    return _view_for(location, manifest, store)


def get_edit_state(user_id: str, book_id: str, store: Optional[DerivedArtifactStore] = None) -> Dict[str, Any]:
    store = store or default_store()
    location = store.locate(user_id, book_id)
    manifest = manifest_store.load(location.manifest_path)
    return {"ok": True, "text": book_view.edit_state(manifest)}


def apply_edits(
    user_id: str,
    book_id: str,
    text_edits: Any,
    image_edits: Any,
    store: Optional[DerivedArtifactStore] = None,
    locks: Optional[BookLockManager] = None,
) -> Dict[str, Any]:
    """
    Validate, render, commit and rebuild the PDF for one batch of edits.

    Returns only after every regeneration and the manifest commit are done.
    A failing batch leaves the manifest unchanged.
    """
    text, images = edits.validate_edits(text_edits, image_edits)
    store = store or default_store()
    locks = locks or book_locks

    location = store.locate(user_id, book_id)
    with locks.hold(location.lock_key):
        manifest = manifest_store.load(location.manifest_path)
        result = edits.apply_edits(store, location, manifest, text, images, user_id)

        pdf_path = None
        pdf_error = ""
        if result.committed:
            try:
                pdf_path = build_book_pdf(location, result.manifest, store)
            except IOFailure as exc:
                # edits are committed; the next successful rebuild catches up
                logger.error("PDF rebuild failed for book %s: %s", location.book_id, exc)
                pdf_error = exc.message

    overrides = result.overrides
    return {
        "ok": True,
        "coverUrl": overrides.get("coverUrl") or "",
        "pagesImageUrl": dict(overrides.get("pagesImageUrl") or {}),
        "pdfPath": str(pdf_path) if pdf_path else "",
        "pdfError": pdf_error,
    }


def queue_image_edit(
    user_id: str,
    book_id: str,
    target: Any,
    page: Any,
    instruction: Any,
    image_url: Any,
    store: Optional[DerivedArtifactStore] = None,
    locks: Optional[BookLockManager] = None,
) -> Dict[str, Any]:
    target, page, instruction, image_url = edits.validate_image_request(target, page, instruction, image_url)
    store = store or default_store()
    locks = locks or book_locks

    location = store.locate(user_id, book_id)
    with locks.hold(location.lock_key):
        manifest = manifest_store.load(location.manifest_path)
        entry = edits.queue_image_edit(location, manifest, target, page, instruction, image_url, user_id)

    return {"ok": True, "requestId": entry["id"], "target": target, "page": page}


def pdf_path_for(user_id: str, book_id: str, store: Optional[DerivedArtifactStore] = None) -> Path:
    """
    The downloadable PDF of a finished book.

    Raises NotFound when the book is not done or no PDF file exists.
    """
    store = store or default_store()
    location = store.locate(user_id, book_id)
    manifest = manifest_store.load(location.manifest_path)
    view = _view_for(location, manifest, store)
    if not view["hasPdf"]:
        raise NotFound(f"PDF not available for book {book_id} (status: {view['status']})")
    return store.existing_pdf(location)
