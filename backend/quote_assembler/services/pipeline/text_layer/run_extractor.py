from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import fitz

from ....utils.exceptions import ExtractionError
from ..deadline import Deadline
from ..models import BBox, TextRun, union_boxes


_ZERO_WIDTH = {
    "\u200B",
    "\u200C",
    "\u200D",
    "\u2060",
    "\u2061",
    "\u2062",
    "\u2063",
    "\ufeff",
}

# (glyph, bbox, origin, font size, font name)
Glyph = Tuple[str, BBox, Tuple[float, float], float, str]


def _approximate_chars(text: str, bbox: Sequence[float], origin: Sequence[float]) -> List[Dict[str, object]]:
    """Spread a span's box evenly over its characters when glyph boxes are missing."""
    if not text:
        return []
    x0, y0, x1, y1 = (float(v) for v in bbox[:4])
    step = (x1 - x0) / len(text)
    baseline = float(origin[1]) if origin else y1
    chars: List[Dict[str, object]] = []
    for index, glyph in enumerate(text):
        left = x0 + step * index
        chars.append({
            "c": glyph,
            "bbox": (left, y0, left + step, y1),
            "origin": (left, baseline),
        })
    return chars


def _line_glyphs(line: Dict[str, object]) -> List[Glyph]:
    glyphs: List[Glyph] = []
    for span in line.get("spans", []) or []:
        try:
            font_size = float(span.get("size") or 0.0)
        except (TypeError, ValueError):
            font_size = 0.0
        font = span.get("font") or ""
        span_bbox = span.get("bbox") or (0.0, 0.0, 0.0, 0.0)
        span_origin = span.get("origin") or (span_bbox[0], span_bbox[3])

        chars = span.get("chars")
        if not chars:
            chars = _approximate_chars(span.get("text") or "", span_bbox, span_origin)

        for char in chars:
            glyph = char.get("c") or ""
            if not glyph or glyph in _ZERO_WIDTH:
                continue
            bbox_raw = char.get("bbox") or span_bbox
            try:
                bbox = tuple(float(v) for v in bbox_raw[:4])
            except (TypeError, ValueError):
                bbox = tuple(float(v) for v in span_bbox[:4])
            origin_raw = char.get("origin") or (bbox[0], bbox[3])
            origin = (float(origin_raw[0]), float(origin_raw[1]))
            glyphs.append((glyph, bbox, origin, font_size, font))  # type: ignore[arg-type]
    return glyphs


def _build_run(glyphs: List[Glyph], page_index: int) -> Optional[TextRun]:
    if not glyphs:
        return None
    text = "".join(glyph[0] for glyph in glyphs)
    bbox = union_boxes(glyph[1] for glyph in glyphs)
    if bbox is None:
        return None
    _, origin, font_size, font = glyphs[0][1:]
    return TextRun(
        text=text,
        x=origin[0],
        y=origin[1],
        width=bbox[2] - bbox[0],
        height=bbox[3] - bbox[1],
        page_index=page_index,
        bbox=bbox,
        font_size=font_size,
        font=font,
        glyph_boxes=tuple(glyph[1] for glyph in glyphs),
    )


def collect_text_runs(page: fitz.Page, page_index: int) -> List[TextRun]:
    """Split every text line on the page into whitespace-delimited runs.

    A run may cross span boundaries, so a marker whose characters switch font
    half way through still comes back as one piece.
    """
    try:
        raw = page.get_text("rawdict") or {}
        if not raw.get("blocks"):
            fallback = page.get_text("dict") or {}
            if fallback.get("blocks"):
                raw = fallback
    except (RuntimeError, ValueError) as exc:
        raise ExtractionError(
            f"page {page_index}: positioned text layer unreadable ({exc})", page_index
        ) from exc

    runs: List[TextRun] = []
    for block in raw.get("blocks", []):
        if block.get("type", 0) != 0:
            continue
        for line in block.get("lines", []):
            current: List[Glyph] = []
            for glyph in _line_glyphs(line):
                if glyph[0].isspace():
                    run = _build_run(current, page_index)
                    if run:
                        runs.append(run)
                    current = []
                    continue
                current.append(glyph)
            run = _build_run(current, page_index)
            if run:
                runs.append(run)
    return runs


def collect_document_runs(
    doc: fitz.Document,
    deadline: Optional[Deadline] = None,
) -> Dict[int, List[TextRun]]:
    runs_by_page: Dict[int, List[TextRun]] = {}
    for page_index in range(doc.page_count):
        if deadline is not None:
            deadline.check()
        try:
            page = doc.load_page(page_index)
        except (RuntimeError, ValueError) as exc:
            raise ExtractionError(f"page {page_index}: cannot load page ({exc})", page_index) from exc
        runs_by_page[page_index] = collect_text_runs(page, page_index)
    return runs_by_page
