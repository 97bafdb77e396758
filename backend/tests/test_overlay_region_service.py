from __future__ import annotations

import itertools

import fitz
import pytest

from quote_assembler.services.pipeline.models import OverlayOptions, OverlayRegion
from quote_assembler.services.pipeline.overlay_region_service import (
    OverlayRegionService,
    compute_placement,
    fallback_region_for_layout,
    merge_overlapping_regions,
    score_page_text,
)
from quote_assembler.services.pipeline.quote_context import CostBreakdown, QuoteContext
from quote_assembler.services.pipeline.quote_summary_service import QuoteSummaryService


def _detect(payload: bytes, options: OverlayOptions | None = None):
    doc = fitz.open(stream=payload, filetype="pdf")
    try:
        return OverlayRegionService().detect(doc, options)
    finally:
        doc.close()


def test_score_page_text_uses_highest_weight():
    assert score_page_text("Nothing to see")[0] == 0.0
    assert score_page_text("Paid in USD")[0] == pytest.approx(0.6)
    assert score_page_text("$1,200 due, billing attached")[0] == pytest.approx(0.8)
    assert score_page_text("Total price")[0] == pytest.approx(1.0)


def test_no_pricing_vocabulary_selects_default_fallback(build_pdf):
    detection = _detect(build_pdf([[(72, 100, "Hello world")]]))
    region = detection.region

    assert region.detection_method == "fallback"
    assert region.confidence == pytest.approx(0.5)
    assert region.page_index == 0
    assert region.box == pytest.approx((0.6 * 612, 0.1 * 792, 0.95 * 612, 0.7 * 792))
    assert detection.candidates == []


def test_pricing_page_yields_heuristic_region(build_pdf):
    payload = build_pdf([
        [(72, 100, "Introduction")],
        [(72, 100, "Total price: $1,200")],
    ])
    detection = _detect(payload)

    assert detection.region.detection_method == "heuristic"
    assert detection.region.page_index == 1
    assert detection.region.confidence == pytest.approx(1.0)
    assert detection.page_scores == {0: 0.0, 1: 1.0}


def test_usable_threshold_is_strict(build_pdf):
    payload = build_pdf([[(72, 100, "Amounts shown in USD only")]])
    loose = _detect(payload, OverlayOptions(usable_threshold=0.5))
    strict = _detect(build_pdf([[(72, 100, "Shown in USD only")]]), OverlayOptions(usable_threshold=0.6))

    assert loose.region.detection_method == "heuristic"
    assert strict.region.detection_method == "fallback"


def test_caller_fallback_region_wins_over_default(build_pdf):
    manual = OverlayRegion.from_dict({"x": 50, "y": 60, "width": 200, "height": 100})
    detection = _detect(build_pdf([[(72, 100, "Hello")]]), OverlayOptions(fallback_region=manual))

    assert detection.region == manual
    assert detection.region.detection_method == "manual"


def test_merge_uses_mean_confidence_and_union_box():
    first = OverlayRegion(x=0, y=0, width=100, height=100, confidence=0.8)
    second = OverlayRegion(x=50, y=50, width=100, height=100, confidence=0.6)

    merged = merge_overlapping_regions([first, second])

    assert len(merged) == 1
    assert merged[0].confidence == pytest.approx(0.7)
    assert merged[0].box == (0, 0, 150, 150)
    assert merged[0].detection_method == "heuristic"


@pytest.mark.parametrize("other_method", ["fallback", "manual"])
def test_merge_keeps_heuristic_method_from_either_side(other_method):
    heuristic = OverlayRegion(x=0, y=0, width=100, height=100, confidence=0.8)
    other = OverlayRegion(
        x=50, y=50, width=100, height=100, confidence=0.6, detection_method=other_method
    )

    for ordering in ([heuristic, other], [other, heuristic]):
        merged = merge_overlapping_regions(ordering)
        assert len(merged) == 1
        assert merged[0].detection_method == "heuristic"
        assert merged[0].confidence == pytest.approx(0.7)


def test_merge_ignores_touching_edges_and_other_pages():
    left = OverlayRegion(x=0, y=0, width=100, height=100)
    touching = OverlayRegion(x=100, y=0, width=100, height=100)
    other_page = OverlayRegion(x=0, y=0, width=100, height=100, page_index=1)

    assert len(merge_overlapping_regions([left, touching, other_page])) == 3


def test_merge_result_is_independent_of_order():
    regions = [
        OverlayRegion(x=0, y=0, width=100, height=100, confidence=0.9),
        OverlayRegion(x=80, y=0, width=100, height=100, confidence=0.6),
        OverlayRegion(x=160, y=0, width=100, height=100, confidence=0.3),
    ]
    outcomes = set()
    for ordering in itertools.permutations(regions):
        merged = merge_overlapping_regions(ordering)
        assert len(merged) == 1
        outcomes.add((merged[0].box, round(merged[0].confidence, 9), merged[0].member_count))

    assert outcomes == {((0, 0, 260, 100), 0.6, 3)}


def test_compute_placement_scales_and_centers():
    region = OverlayRegion(x=100, y=100, width=300, height=200)
    placement = compute_placement(region, 612, 792, OverlayOptions(padding=10))

    scale = min(280 / 612, 180 / 792)
    assert placement.scale_x == pytest.approx(scale)
    assert placement.scale_y == pytest.approx(scale)
    assert placement.height == pytest.approx(180)
    assert placement.x == pytest.approx(110 + (280 - 612 * scale) / 2)
    assert placement.y == pytest.approx(110)


def test_compute_placement_without_aspect_ratio_fills_region():
    region = OverlayRegion(x=0, y=0, width=220, height=120)
    options = OverlayOptions(padding=10, maintain_aspect_ratio=False)
    placement = compute_placement(region, 612, 792, options)

    assert placement.x == pytest.approx(10)
    assert placement.y == pytest.approx(10)
    assert placement.width == pytest.approx(200)
    assert placement.height == pytest.approx(100)


def test_compute_placement_rejects_empty_artifact():
    with pytest.raises(ValueError):
        compute_placement(OverlayRegion(x=0, y=0, width=10, height=10), 0, 10)


def test_layout_fallbacks_cover_known_layouts():
    invoice = fallback_region_for_layout("invoice", 612, 792)
    assert invoice.confidence == pytest.approx(0.7)
    assert invoice.box == pytest.approx((0.6 * 612, 0.5 * 792, 0.95 * 612, 0.9 * 792))


def test_embed_draws_summary_into_region(build_pdf):
    context = QuoteContext(company="Acme Corp", costs=CostBreakdown(total_cost=1200))
    artifact = QuoteSummaryService().generate(context)
    region = OverlayRegion(x=300, y=300, width=280, height=400)
    doc = fitz.open(stream=build_pdf([[(72, 100, "Pricing")]]), filetype="pdf")
    try:
        placement = OverlayRegionService().embed(doc, region, artifact, OverlayOptions(clear_region=True))
        text = doc[0].get_text()
    finally:
        doc.close()

    assert placement.rect in fitz.Rect(*region.box)
    assert "Total Cost" in text
    assert "Pricing" in text
