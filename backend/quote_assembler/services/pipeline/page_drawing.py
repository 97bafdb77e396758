from __future__ import annotations

from typing import Optional, Sequence

import fitz
from PIL import Image

from .models import Color

WHITE: Color = (1.0, 1.0, 1.0)
BLACK: Color = (0.0, 0.0, 0.0)
DEFAULT_FONT = "helv"


def padded_rect(bbox: Sequence[float], padding: float, page_rect: fitz.Rect | None = None) -> fitz.Rect:
    rect = fitz.Rect(bbox[0] - padding, bbox[1] - padding, bbox[2] + padding, bbox[3] + padding)
    if page_rect is not None:
        rect = rect & page_rect
    return rect


def sample_background_color(page: fitz.Page, rect: fitz.Rect, dpi: int = 72) -> Color:
    """Most frequent colour inside ``rect`` as rendered; white if it cannot be sampled."""
    clip = fitz.Rect(rect) & page.rect
    if clip.is_empty or clip.width < 1 or clip.height < 1:
        return WHITE
    try:
        pix = page.get_pixmap(clip=clip, dpi=dpi, alpha=False)
    except (RuntimeError, ValueError):
        return WHITE
    if pix.width == 0 or pix.height == 0:
        return WHITE
    mode = "RGB" if pix.n >= 3 else "L"
    image = Image.frombytes(mode, (pix.width, pix.height), pix.samples)
    colors = image.convert("RGB").getcolors(maxcolors=pix.width * pix.height)
    if not colors:
        return WHITE
    _, (red, green, blue) = max(colors, key=lambda entry: entry[0])
    return (red / 255.0, green / 255.0, blue / 255.0)


def remove_text(page: fitz.Page, bbox: Sequence[float]) -> None:
    """Drop the glyphs under ``bbox`` from the content stream without painting."""
    rect = fitz.Rect(bbox)
    # Inset so glyphs that only touch the edge survive.
    inset = min(0.5, rect.width * 0.05)
    rect = fitz.Rect(rect.x0 + inset, rect.y0, rect.x1 - inset, rect.y1)
    if rect.is_empty:
        return
    page.add_redact_annot(rect, fill=False)
    page.apply_redactions(images=0)


def erase_region(page: fitz.Page, bbox: Sequence[float], padding: float, fill: Optional[Color] = None) -> Color:
    """Erase text under ``bbox`` and paint the padded box in the background colour."""
    cover = padded_rect(bbox, padding, page.rect)
    color = fill if fill is not None else sample_background_color(page, cover)
    remove_text(page, bbox)
    page.draw_rect(cover, color=None, fill=color, overlay=True)
    return color


def draw_text(
    page: fitz.Page,
    origin: Sequence[float],
    text: str,
    font_size: float,
    color: Color = BLACK,
) -> None:
    page.insert_text(
        fitz.Point(float(origin[0]), float(origin[1])),
        text,
        fontsize=float(font_size),
        fontname=DEFAULT_FONT,
        color=color,
    )


def insert_textbox_with_fallback(
    page: fitz.Page,
    rect: fitz.Rect,
    text: str,
    initial_size: float,
    min_font_size: float = 5.5,
    align: int = 0,
) -> float | None:
    """Insert text into ``rect``, shrinking the font and then the box margin until it fits."""
    page_rect = page.rect
    attempt_rect = fitz.Rect(rect)
    attempt_size = max(float(initial_size), min_font_size)

    for attempt in range(3):
        result = page.insert_textbox(
            attempt_rect,
            text,
            fontsize=attempt_size,
            fontname=DEFAULT_FONT,
            color=BLACK,
            align=align,
        )
        if result is not None and result >= 0:
            return attempt_size

        if attempt == 0:
            attempt_size = max(attempt_size * 0.85, min_font_size)
        else:
            expand_w = max(attempt_rect.width * 0.15, 1.0)
            expand_h = max(attempt_rect.height * 0.2, 1.0)
            attempt_rect = fitz.Rect(
                max(page_rect.x0, attempt_rect.x0 - expand_w),
                max(page_rect.y0, attempt_rect.y0 - expand_h),
                min(page_rect.x1, attempt_rect.x1 + expand_w),
                min(page_rect.y1, attempt_rect.y1 + expand_h),
            )
            attempt_size = max(attempt_size * 0.9, min_font_size)

    return None
