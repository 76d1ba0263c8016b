"""
Shared utilities for locating book image assets.

Generated books went through several naming conventions over time. Each book
folder may contain (newest layout first):
  cover.png / capa.png / edit_base.png / cover_base.png / capa_base.png   clean cover
  cover_final.png / capa_final.png                                         cover with burned text
  page_01.png ... page_NN.png                                              clean pages
  page_01_final.png ...                                                    pages with burned text
  page_1.png ...                                                           old unpadded names
  edited/                                                                  regenerated images

Lookups walk an ordered list of named strategies. The order always prefers the
cleanest source so a new text edit never stacks on top of an older overlay.
"""
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, List, NamedTuple, Optional
from urllib.parse import unquote, urlparse

COVER = 0


def pad2(page: int) -> str:
    page = int(page or 0)
    if page < 0:
        return "00"
    return f"{page:02d}"


def expected_page_filename(page: int) -> str:
    """The canonical clean name for a page, used in error messages."""
    return f"page_{pad2(page)}.png"


class ResolutionStrategy(NamedTuple):
    """A named group of candidate file names for one asset kind."""

    name: str
    candidates: Callable[[int], List[str]]
    last_resort: bool = False

    def probe(self, book_dir: Path, page: int) -> Iterator[Path]:
        for file_name in self.candidates(page):
            path = Path(book_dir) / file_name
            if path.is_file():
                yield path


COVER_STRATEGIES = [
    ResolutionStrategy(
        "clean-cover",
        lambda _page: ["cover.png", "capa.png", "edit_base.png", "cover_base.png", "capa_base.png"],
    ),
    ResolutionStrategy("legacy-final-cover", lambda _page: ["cover_final.png", "capa_final.png"]),
    # last resort: the first page is better than no cover at all
    ResolutionStrategy("first-page-fallback", lambda _page: ["page_01.png", "page_01_final.png"], last_resort=True),
]

PAGE_STRATEGIES = [
    ResolutionStrategy(
        "padded",
        lambda page: [f"page_{pad2(page)}.png", f"page-{pad2(page)}.png", f"p{pad2(page)}.png"],
    ),
    ResolutionStrategy(
        "legacy-final",
        lambda page: [f"page_{pad2(page)}_final.png", f"page_{pad2(page)}.final.png", f"page_{pad2(page)}_final.PNG"],
    ),
    ResolutionStrategy("unpadded", lambda page: [f"page_{page}.png", f"page_{page}_final.png"]),
]

FINAL_COVER_NAMES = ["cover_final.png", "capa_final.png"]


def strategies_for(page: int) -> List[ResolutionStrategy]:
    return COVER_STRATEGIES if int(page or 0) == COVER else PAGE_STRATEGIES


def iter_base_candidates(book_dir: Path, page: int, include_last_resort: bool = True) -> Iterator[Path]:
    """Every existing base candidate for a slot, in priority order."""
    page = int(page or 0)
    for strategy in strategies_for(page):
        if strategy.last_resort and not include_last_resort:
            continue
        yield from strategy.probe(book_dir, page)


def resolve_base(book_dir: Path, page: int) -> Optional[Path]:
    """
    Return the preferred existing base image for a cover (page 0) or page.

    Absence is a normal outcome and returns None.
    """
    return next(iter_base_candidates(book_dir, page), None)


def resolve_clean_base(book_dir: Path, page: int) -> Optional[Path]:
    """
    Like resolve_base, skipping anything with burned text and last-resort
    stand-ins (page 1 standing in for a missing cover).
    """
    for path in iter_base_candidates(book_dir, page, include_last_resort=False):
        if not is_derived_or_final(path):
            return path
    return None


def resolve_final(book_dir: Path, page: int) -> Optional[Path]:
    """Legacy asset with burned text, used for the PDF when no edit exists."""
    page = int(page or 0)
    if page == COVER:
        names = FINAL_COVER_NAMES
    else:
        names = [f"page_{pad2(page)}_final.png", f"page_{pad2(page)}.final.png", f"page_{page}_final.png"]
    for name in names:
        path = Path(book_dir) / name
        if path.is_file():
            return path
    return None


def is_derived_or_final(path_or_url) -> bool:
    """
    True when a path or URL points at an already edited or text-burned asset:
    an `edited` directory segment, or a file name carrying a `final` marker.
    """
    text = str(path_or_url or "")
    if not text:
        return False
    if "://" in text or text.startswith("/"):
        text = unquote(urlparse(text).path) or text
    parts = PurePosixPath(text.replace("\\", "/")).parts
    if any(part.lower() == "edited" for part in parts[:-1]):
        return True
    name = parts[-1].lower() if parts else ""
    return "final" in name
