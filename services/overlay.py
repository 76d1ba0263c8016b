"""
Burns a title + body text card onto a page image.

The card is a rounded white band along the bottom edge, 28% of the image
height, sized relative to the image so covers and pages of any resolution get
the same look.
"""
import logging
import math
import os
import tempfile
import unicodedata
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps

import config
from services.errors import IOFailure

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
CHAR_WIDTH_RATIO = 0.6  # average glyph width relative to font size
BAND_HEIGHT_RATIO = 0.28
BAND_FILL = (255, 255, 255, 224)
TEXT_FILL = (17, 24, 39, 235)


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def clean_text(text) -> str:
    """Drop control characters and collapse whitespace before drawing."""
    text = str(text or "")
    kept = "".join(ch if unicodedata.category(ch)[0] != "C" else " " for ch in text)
    return " ".join(kept.split())


def wrap_text_lines(text: str, max_chars: int, max_lines: int) -> List[str]:
    """
    Greedy word wrap into at most `max_lines` lines of at most `max_chars` characters.

    Words longer than a line are split. When text is left over, the last line
    is trimmed and ends with an ellipsis.
    """
    max_chars = max(1, int(max_chars))
    words: List[str] = []
    for word in clean_text(text).split(" "):
        if not word:
            continue
        while len(word) > max_chars:
            words.append(word[:max_chars])
            word = word[max_chars:]
        words.append(word)

    lines: List[str] = []
    current = ""
    truncated = False
    for word in words:
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars:
            current = candidate
            continue
        lines.append(current)
        if len(lines) >= max_lines:
            truncated = True
            break
        current = word
    else:
        if current:
            lines.append(current)

    if truncated and lines:
        last = lines[-1].rstrip()
        if len(last) + len(ELLIPSIS) > max_chars:
            last = last[: max_chars - len(ELLIPSIS)].rstrip()
        lines[-1] = last + ELLIPSIS
    return lines


def card_layout(width: int, height: int) -> Dict[str, int]:
    """Band geometry and font sizes for an image of the given pixel size."""
    W = max(1, int(width or config.DEFAULT_IMAGE_SIZE[0]))
    H = max(1, int(height or config.DEFAULT_IMAGE_SIZE[1]))

    margin = _round(max(10, W * 0.02))
    pad_x = _round(max(12, W * 0.02))
    pad_y = _round(max(10, H * 0.015))
    radius = _round(max(12, W * 0.02))

    band_h = _round(H * BAND_HEIGHT_RATIO)
    band_w = max(1, W - margin * 2)
    band_x = margin
    band_y = H - margin - band_h

    title_size = _round(max(14, W * 0.030))
    text_size = _round(max(12, W * 0.024))
    line_h = _round(text_size * 1.28)

    inner_w = max(1, band_w - pad_x * 2)
    title_y = band_y + pad_y + title_size
    text_y = title_y + _round(title_size * 0.75) + text_size
    # body lines whose baseline still sits inside the band
    fitting = math.floor((band_y + band_h - pad_y - text_y) / line_h) + 1
    max_lines = min(config.OVERLAY_MAX_LINES, max(1, fitting))

    return {
        "width": W,
        "height": H,
        "band_x": band_x,
        "band_y": band_y,
        "band_w": band_w,
        "band_h": band_h,
        "radius": radius,
        "pad_x": pad_x,
        "title_size": title_size,
        "text_size": text_size,
        "line_h": line_h,
        "inner_w": inner_w,
        "title_y": title_y,
        "text_y": text_y,
        "max_lines": max_lines,
        "max_chars": max(1, math.floor(inner_w / (text_size * CHAR_WIDTH_RATIO))),
        "title_max_chars": max(1, math.floor(inner_w / (title_size * CHAR_WIDTH_RATIO))),
    }


@lru_cache(maxsize=32)
def _load_font(size: int, font_path: Optional[str] = None):
    path = font_path or config.OVERLAY_FONT_PATH
    try:
        return ImageFont.truetype(path, size)
    except OSError:
        logger.warning("Could not load font %s, using Pillow's default font", path)
        return ImageFont.load_default(size=size)


def _open_base(base_path: Path) -> Image.Image:
    try:
        with Image.open(base_path) as src:
            oriented = ImageOps.exif_transpose(src)
            return oriented.convert("RGBA")
    except (OSError, ValueError) as exc:
        raise IOFailure(f"Cannot open base image {base_path}: {exc}", path=base_path) from exc


def render_card(base_path, out_path, title: str, body: str, font_path: Optional[str] = None) -> Tuple[int, int]:
    """
    Composite the text card onto `base_path` and write a new PNG at `out_path`.

    Returns the (width, height) of the written image. Missing output
    directories are created; the PNG is written to a temporary sibling and
    renamed, so a failure never leaves a partial file at `out_path`.
    """
    base_path = Path(base_path)
    out_path = Path(out_path)

    image = _open_base(base_path)
    layout = card_layout(*image.size)

    overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    draw.rounded_rectangle(
        (
            layout["band_x"],
            layout["band_y"],
            layout["band_x"] + layout["band_w"],
            layout["band_y"] + layout["band_h"],
        ),
        radius=layout["radius"],
        fill=BAND_FILL,
    )

    text_x = layout["band_x"] + layout["pad_x"]
    title_lines = wrap_text_lines(title, layout["title_max_chars"], 1)
    if title_lines:
        draw.text(
            (text_x, layout["title_y"]),
            title_lines[0],
            font=_load_font(layout["title_size"], font_path),
            fill=TEXT_FILL,
            anchor="ls",
        )

    body_font = _load_font(layout["text_size"], font_path)
    for index, line in enumerate(wrap_text_lines(body, layout["max_chars"], layout["max_lines"])):
        draw.text(
            (text_x, layout["text_y"] + index * layout["line_h"]),
            line,
            font=body_font,
            fill=TEXT_FILL,
            anchor="ls",
        )

    composed = Image.alpha_composite(image, overlay)

    tmp_name = None
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=out_path.parent, prefix=f".{out_path.stem}.", suffix=".png.tmp", delete=False
        ) as handle:
            tmp_name = handle.name
            composed.save(handle, format="PNG", compress_level=9)
        os.replace(tmp_name, out_path)
        tmp_name = None
    except OSError as exc:
        raise IOFailure(f"Failed to write {out_path}: {exc}", path=out_path) from exc
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.info("Rendered text card %s -> %s (%dx%d)", base_path.name, out_path, *composed.size)
    return composed.size
