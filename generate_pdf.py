"""
PDF generation module for assembling a book's printable document
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from book_utils import COVER, resolve_base, resolve_final
from services.book_view import as_text
from services.errors import BookError, IOFailure
from services.storage import BookLocation, DerivedArtifactStore

logger = logging.getLogger(__name__)


def collect_page_numbers(manifest: Dict[str, Any]) -> List[int]:
    """
    Page numbers present in the base images or in any page override, ascending.
    """
    pages = set()
    for item in manifest.get("images") or []:
        if isinstance(item, dict):
            pages.add(_positive_int(item.get("page")))

    overrides = manifest.get("overrides") or {}
    for key in ("pagesText", "pagesImageUrl"):
        mapping = overrides.get(key)
        if isinstance(mapping, dict):
            pages.update(_positive_int(k) for k in mapping)

    pages.discard(0)
    return sorted(pages)


def _positive_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def _override_url(manifest: Dict[str, Any], slot: int) -> str:
    overrides = manifest.get("overrides") or {}
    if slot == COVER:
        return as_text(overrides.get("coverUrl"))
    return as_text((overrides.get("pagesImageUrl") or {}).get(str(slot)))


def _override_asset(
    store: DerivedArtifactStore, location: BookLocation, manifest: Dict[str, Any], slot: int
) -> Optional[Path]:
    url = _override_url(manifest, slot)
    if not url:
        return None
    if url.startswith(("http://", "https://")):
        try:
            return store.fetch_remote_image(location, url)
        except BookError as exc:
            logger.warning("Skipping remote override for slot %s of book %s: %s", slot, location.book_id, exc)
            return None
    path = store.url_to_path(url, location)
    if path is not None and path.is_file():
        return path
    logger.warning("Override %s for slot %s of book %s has no local file", url, slot, location.book_id)
    return None


def select_image(
    store: DerivedArtifactStore, location: BookLocation, manifest: Dict[str, Any], slot: int
) -> Optional[Path]:
    """
    Image used for the cover (slot 0) or a page: edited asset, then the legacy
    final asset, then the clean base.
    """
    return (
        _override_asset(store, location, manifest, slot)
        or resolve_final(location.book_dir, slot)
        or resolve_base(location.book_dir, slot)
    )


def collect_images(
    store: DerivedArtifactStore, location: BookLocation, manifest: Dict[str, Any]
) -> List[Tuple[int, Path]]:
    """Ordered (slot, path) pairs for the cover and every page; unresolvable slots are skipped."""
    selected = []
    for slot in [COVER] + collect_page_numbers(manifest):
        path = select_image(store, location, manifest, slot)
        if path is None:
            logger.warning("No image for %s of book %s; skipping", "cover" if slot == COVER else f"page {slot}", location.book_id)
            continue
        selected.append((slot, path))
    return selected


def image_dimensions(path: Path) -> Tuple[int, int]:
    try:
        with Image.open(path) as img:
            return img.size
    except (OSError, ValueError) as exc:
        raise IOFailure(f"Cannot read image {path}: {exc}", path=path) from exc


def create_pdf(image_paths: List[Path], output_path) -> Path:
    """
    Write one PDF page per image, each page exactly the image's pixel size in points.

    Images are read from disk one at a time. The document is written to a
    temporary sibling and renamed onto output_path when complete.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=output_path.parent, prefix=f".{output_path.stem}.", suffix=".pdf.tmp")
    os.close(fd)

    try:
        c = canvas.Canvas(tmp_name)
        for idx, image_path in enumerate(image_paths):
            width, height = image_dimensions(image_path)
            if idx > 0:
                c.showPage()
            c.setPageSize((float(width), float(height)))
            c.drawImage(
                ImageReader(str(image_path)),
                0,
                0,
                width=width,
                height=height,
                preserveAspectRatio=False,
                mask='auto'
            )
        c.save()
        os.replace(tmp_name, output_path)
    except BookError:
        raise
    except Exception as exc:
        raise IOFailure(f"Failed to build PDF {output_path}: {exc}", path=output_path) from exc
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)

    return output_path


def build_book_pdf(
    location: BookLocation, manifest: Dict[str, Any], store: DerivedArtifactStore
) -> Optional[Path]:
    """
    Rebuild book-<id>.pdf from the effective cover and pages.

    Returns the PDF path, or None when the book has no resolvable image at all.
    """
    selected = collect_images(store, location, manifest)
    if not selected:
        logger.warning("Book %s has no images; PDF not built", location.book_id)
        return None

    output_path = store.pdf_path(location)
    create_pdf([path for _, path in selected], output_path)
    logger.info("Built PDF for book %s with %d pages -> %s", location.book_id, len(selected), output_path)
    return output_path
