"""
Read model for listing and detail pages.

`resolve` is the only place where base values and overrides are merged for
display. It is pure: the single disk question (does a PDF file exist?) is
asked through the `disk_probe` callable, and only when the status says the
book is done.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

from services.manifest import parse_iso

COVER = 0

THEME_LABELS = {
    "space": "Viagem Espacial",
    "dragon": "Reino dos Dragões",
    "ocean": "Fundo do Mar",
    "jungle": "Safari na Selva",
    "superhero": "Super Herói",
    "dinosaur": "Dinossauros",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def theme_label(theme: Any) -> str:
    return THEME_LABELS.get(str(theme or ""), str(theme or "") or "Tema")


def style_label(style: Any) -> str:
    return "Leitura + Colorir" if style == "color" else "Livro para leitura"


def format_timestamp(value: Any) -> str:
    """dd/mm/yyyy HH:MM, or an empty string for missing/unparseable values."""
    parsed = parse_iso(value)
    return parsed.strftime("%d/%m/%Y %H:%M") if parsed else ""


def as_text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _safe_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def child_name_of(manifest: Dict[str, Any]) -> str:
    name = as_text(manifest.get("childName"))
    if not name and isinstance(manifest.get("child"), dict):
        name = as_text(manifest["child"].get("name"))
    return name


def base_cover_url(manifest: Dict[str, Any]) -> str:
    cover = manifest.get("cover")
    if isinstance(cover, dict) and as_text(cover.get("url")):
        return as_text(cover.get("url"))
    return as_text(manifest.get("coverUrl"))


def base_page_url(manifest: Dict[str, Any], page: int) -> str:
    for item in manifest.get("images") or []:
        if isinstance(item, dict) and _safe_int(item.get("page")) == page:
            return as_text(item.get("url"))
    return ""


def current_url(manifest: Dict[str, Any], slot: int) -> str:
    """Effective URL of the cover (slot 0) or a page: override over base."""
    overrides = manifest.get("overrides") or {}
    if slot == COVER:
        return as_text(overrides.get("coverUrl")) or base_cover_url(manifest)
    page_urls = overrides.get("pagesImageUrl") or {}
    return as_text(page_urls.get(str(slot))) or base_page_url(manifest, slot)


def effective_images(manifest: Dict[str, Any]) -> List[Dict[str, Any]]:
    page_urls = (manifest.get("overrides") or {}).get("pagesImageUrl") or {}
    images = []
    for item in manifest.get("images") or []:
        if not isinstance(item, dict):
            continue
        page = _safe_int(item.get("page"))
        url = as_text(page_urls.get(str(page))) if page else ""
        url = url or as_text(item.get("url"))
        if url:
            images.append({"page": page, "url": url})
    images.sort(key=lambda it: it["page"])
    return images


def resolve(
    manifest: Dict[str, Any],
    disk_probe: Callable[[], bool],
    dir_id: Optional[str] = None,
    scope: Optional[str] = None,
) -> Dict[str, Any]:
    """Merge base and overrides into the view model used by every read path."""
    dir_id = str(dir_id or manifest.get("dirId") or manifest.get("id") or "")
    status = as_text(manifest.get("status")) or "created"
    # status gates availability; a stale file on disk is not enough
    has_pdf = status == "done" and bool(disk_probe())
    images = effective_images(manifest)
    created_at = as_text(manifest.get("createdAt"))
    updated_at = as_text(manifest.get("updatedAt")) or created_at
    pending = [
        r for r in manifest.get("imageEditRequests") or [] if isinstance(r, dict) and r.get("status") == "queued"
    ]

    return {
        "id": as_text(manifest.get("id")) or dir_id,
        "dirId": dir_id,
        "scope": scope or "",
        "status": status,
        "step": as_text(manifest.get("step")),
        "error": as_text(manifest.get("error")),
        "theme": as_text(manifest.get("theme")),
        "themeLabel": theme_label(manifest.get("theme")),
        "style": as_text(manifest.get("style")) or "read",
        "styleLabel": style_label(manifest.get("style")),
        "childName": child_name_of(manifest),
        "createdAt": created_at,
        "updatedAt": updated_at,
        "createdAtLabel": format_timestamp(created_at),
        "updatedAtLabel": format_timestamp(updated_at),
        "coverUrl": current_url(manifest, COVER),
        "images": images,
        "imagesCount": len(images),
        "overrides": manifest.get("overrides") or {},
        "pendingImageEdits": len(pending),
        "hasPdf": has_pdf,
        "pdfUrl": f"/download/{quote(dir_id)}" if has_pdf else "",
    }


def _sort_key(view: Dict[str, Any]) -> datetime:
    return parse_iso(view.get("updatedAt")) or parse_iso(view.get("createdAt")) or _EPOCH


def sort_views(views: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Most recently updated first; createdAt as fallback; unparseable dates sort as epoch."""
    return sorted(views, key=_sort_key, reverse=True)


def _row_text(row: Any) -> str:
    if isinstance(row, str):
        return row.strip()
    if isinstance(row, dict):
        for key in ("text", "pageText", "content"):
            if as_text(row.get(key)):
                return as_text(row.get(key))
    return ""


def edit_state(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Current editable texts: overrides first, then generated captions, then story rows."""
    overrides = manifest.get("overrides") or {}
    story = manifest.get("story") if isinstance(manifest.get("story"), dict) else {}
    cover = manifest.get("cover") if isinstance(manifest.get("cover"), dict) else {}

    cover_text = ""
    for value in (
        overrides.get("coverText"),
        cover.get("text"),
        cover.get("caption"),
        manifest.get("coverText"),
        manifest.get("title"),
        manifest.get("bookTitle"),
        story.get("title"),
    ):
        if as_text(value):
            cover_text = as_text(value)
            break

    pages: Dict[str, str] = {}

    def set_text(page: int, text: str) -> None:
        if page > 0 and text and str(page) not in pages:
            pages[str(page)] = text

    for key, value in (overrides.get("pagesText") or {}).items():
        set_text(_safe_int(key), as_text(value))

    for item in manifest.get("images") or []:
        if isinstance(item, dict):
            caption = next((as_text(item.get(k)) for k in ("text", "pageText", "caption") if as_text(item.get(k))), "")
            set_text(_safe_int(item.get("page")), caption)

    rows = story.get("pages") if isinstance(story.get("pages"), list) else manifest.get("pages")
    if isinstance(rows, list):
        for index, row in enumerate(rows):
            page = _safe_int(row.get("page")) if isinstance(row, dict) and row.get("page") else index + 1
            set_text(page, _row_text(row))

    return {"cover": cover_text, "pages": pages}
