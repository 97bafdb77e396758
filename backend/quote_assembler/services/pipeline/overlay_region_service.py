from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

import fitz

from ...utils.logging import get_logger
from .deadline import Deadline
from .models import DetectionMethod, OverlayOptions, OverlayRegion
from .text_layer import DEFAULT_LINE_TOLERANCE, collect_text_runs, reconstruct_lines
from .text_layer.line_builder import page_text

PRICING_VOCABULARY: Tuple[Tuple[Pattern[str], float], ...] = (
    (re.compile(r"price|cost|total|amount|quote|estimate", re.IGNORECASE), 1.0),
    (re.compile(r"\$[\d,]+\.?\d*"), 0.8),
    (re.compile(r"pricing|billing|invoice", re.IGNORECASE), 0.7),
    (re.compile(r"currency|dollar|usd", re.IGNORECASE), 0.6),
)

# (x, y, width, height) as page fractions, origin top-left.
CANDIDATE_TEMPLATES: Tuple[Tuple[str, Tuple[float, float, float, float]], ...] = (
    ("bottom-right", (0.60, 0.50, 0.35, 0.40)),
    ("center-right", (0.50, 0.20, 0.45, 0.50)),
    ("right-band", (0.55, 0.20, 0.40, 0.60)),
)

DEFAULT_FALLBACK_FRACTIONS = (0.60, 0.10, 0.35, 0.60)
DEFAULT_FALLBACK_CONFIDENCE = 0.5

LAYOUT_FALLBACK_FRACTIONS: Dict[str, Tuple[float, float, float, float]] = {
    "invoice": (0.60, 0.50, 0.35, 0.40),
    "quote": (0.50, 0.20, 0.45, 0.50),
    "proposal": (0.55, 0.20, 0.40, 0.60),
    "custom": DEFAULT_FALLBACK_FRACTIONS,
}


def _scaled(fractions: Tuple[float, float, float, float], width: float, height: float) -> Tuple[float, float, float, float]:
    fx, fy, fw, fh = fractions
    return width * fx, height * fy, width * fw, height * fh


def score_page_text(text: str) -> Tuple[float, List[str]]:
    """Highest vocabulary weight present in ``text`` and the words that hit."""
    best = 0.0
    hits: List[str] = []
    for regex, weight in PRICING_VOCABULARY:
        found = regex.search(text)
        if found:
            hits.append(found.group(0))
            best = max(best, weight)
    return best, hits


def merge_overlapping_regions(regions: Iterable[OverlayRegion]) -> List[OverlayRegion]:
    """Merge until no two regions on a page overlap.

    Merged confidence is the mean over every original member, so the result
    does not depend on which pairs were merged first.
    """
    pending = list(regions)
    changed = True
    while changed:
        changed = False
        for i in range(len(pending)):
            for j in range(i + 1, len(pending)):
                if pending[i].overlaps(pending[j]):
                    pending[i] = pending[i].merged_with(pending[j])
                    del pending[j]
                    changed = True
                    break
            if changed:
                break
    return sorted(pending, key=lambda region: (region.page_index, region.y, region.x))


def _best(regions: Sequence[OverlayRegion]) -> Optional[OverlayRegion]:
    if not regions:
        return None
    return min(regions, key=lambda region: (-region.confidence, region.page_index, region.y, region.x))


def default_fallback_region(page_width: float, page_height: float) -> OverlayRegion:
    x, y, width, height = _scaled(DEFAULT_FALLBACK_FRACTIONS, page_width, page_height)
    return OverlayRegion(
        x=x,
        y=y,
        width=width,
        height=height,
        page_index=0,
        confidence=DEFAULT_FALLBACK_CONFIDENCE,
        detection_method=DetectionMethod.FALLBACK.value,
    )


def fallback_region_for_layout(layout: str, page_width: float, page_height: float) -> OverlayRegion:
    fractions = LAYOUT_FALLBACK_FRACTIONS.get(layout, DEFAULT_FALLBACK_FRACTIONS)
    x, y, width, height = _scaled(fractions, page_width, page_height)
    return OverlayRegion(
        x=x,
        y=y,
        width=width,
        height=height,
        page_index=0,
        confidence=0.7,
        detection_method=DetectionMethod.FALLBACK.value,
        detected_text=f"{layout} layout",
    )


@dataclass(frozen=True)
class Placement:
    x: float
    y: float
    width: float
    height: float
    scale_x: float
    scale_y: float

    @property
    def rect(self) -> fitz.Rect:
        return fitz.Rect(self.x, self.y, self.x + self.width, self.y + self.height)

    def to_dict(self) -> Dict[str, float]:
        return {
            "x": round(self.x, 2),
            "y": round(self.y, 2),
            "width": round(self.width, 2),
            "height": round(self.height, 2),
            "scale_x": round(self.scale_x, 4),
            "scale_y": round(self.scale_y, 4),
        }


def compute_placement(
    region: OverlayRegion,
    artifact_width: float,
    artifact_height: float,
    options: OverlayOptions | None = None,
) -> Placement:
    options = options or OverlayOptions()
    if artifact_width <= 0 or artifact_height <= 0:
        raise ValueError("artifact has no area")

    padding = max(options.padding, 0.0)
    usable_width = max(region.width - 2 * padding, 0.0)
    usable_height = max(region.height - 2 * padding, 0.0)

    if options.scale_to_fit:
        scale_x = usable_width / artifact_width
        scale_y = usable_height / artifact_height
        if options.maintain_aspect_ratio:
            scale_x = scale_y = min(scale_x, scale_y)
    else:
        scale_x = scale_y = 1.0

    width = artifact_width * scale_x
    height = artifact_height * scale_y
    x = region.x + padding
    y = region.y + padding
    if options.center_in_region:
        x += (usable_width - width) / 2
        y += (usable_height - height) / 2

    return Placement(x=x, y=y, width=width, height=height, scale_x=scale_x, scale_y=scale_y)


@dataclass
class RegionDetection:
    region: OverlayRegion
    candidates: List[OverlayRegion] = field(default_factory=list)
    page_scores: Dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region.to_dict(),
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "page_scores": self.page_scores,
        }


class OverlayRegionService:
    def __init__(self, line_tolerance: float = DEFAULT_LINE_TOLERANCE) -> None:
        self.logger = get_logger(__name__)
        self.line_tolerance = line_tolerance

    def page_candidates(self, page: fitz.Page, page_index: int) -> Tuple[float, List[OverlayRegion]]:
        lines = reconstruct_lines(collect_text_runs(page, page_index), self.line_tolerance)
        score, hits = score_page_text(page_text(lines))
        if score <= 0:
            return 0.0, []
        width, height = page.rect.width, page.rect.height
        note = ", ".join(hits)
        candidates = []
        for _, fractions in CANDIDATE_TEMPLATES:
            x, y, w, h = _scaled(fractions, width, height)
            candidates.append(
                OverlayRegion(
                    x=x,
                    y=y,
                    width=w,
                    height=h,
                    page_index=page_index,
                    confidence=score,
                    detection_method=DetectionMethod.HEURISTIC.value,
                    detected_text=note,
                )
            )
        return score, candidates

    def detect(
        self,
        doc: fitz.Document,
        options: OverlayOptions | None = None,
        deadline: Deadline | None = None,
    ) -> RegionDetection:
        options = options or OverlayOptions()
        page_scores: Dict[int, float] = {}
        per_page_best: List[OverlayRegion] = []

        for page_index in range(doc.page_count):
            if deadline is not None:
                deadline.check()
            score, candidates = self.page_candidates(doc[page_index], page_index)
            page_scores[page_index] = score
            best = _best(merge_overlapping_regions(candidates))
            if best is not None:
                per_page_best.append(best)

        selected = _best(per_page_best)
        if selected is None or selected.confidence <= options.usable_threshold:
            if options.fallback_region is not None:
                selected = options.fallback_region
            else:
                first = doc[0].rect
                selected = default_fallback_region(first.width, first.height)
            self.logger.info("no usable pricing region, using fallback", method=selected.detection_method)
        else:
            self.logger.info(
                "pricing region selected",
                page=selected.page_index,
                confidence=round(selected.confidence, 3),
            )

        return RegionDetection(region=selected, candidates=per_page_best, page_scores=page_scores)

    def embed(
        self,
        doc: fitz.Document,
        region: OverlayRegion,
        artifact: bytes,
        options: OverlayOptions | None = None,
    ) -> Placement:
        """Draw page 0 of ``artifact`` into ``region`` of ``doc``."""
        options = options or OverlayOptions()
        if region.page_index >= doc.page_count:
            raise ValueError(f"overlay region targets missing page {region.page_index}")

        source = fitz.open(stream=artifact, filetype="pdf")
        try:
            if source.page_count == 0:
                raise ValueError("secondary artifact has no pages")
            source_rect = source[0].rect
            placement = compute_placement(region, source_rect.width, source_rect.height, options)
            page = doc[region.page_index]
            if options.clear_region:
                page.draw_rect(
                    fitz.Rect(*region.box), color=None, fill=options.clear_color, overlay=True
                )
            page.show_pdf_page(placement.rect, source, 0, keep_proportion=False)
        finally:
            source.close()

        self.logger.info("secondary artifact embedded", page=region.page_index, **placement.to_dict())
        return placement
