from __future__ import annotations

import fitz
import pytest

from quote_assembler.services.pipeline.page_drawing import (
    WHITE,
    erase_region,
    insert_textbox_with_fallback,
    sample_background_color,
)


def test_sample_background_color_picks_dominant_fill():
    doc = fitz.open()
    try:
        page = doc.new_page()
        page.draw_rect(fitz.Rect(50, 50, 250, 150), color=None, fill=(0.0, 0.0, 1.0))
        page.insert_text(fitz.Point(60, 100), "Price", fontsize=10, color=(1, 1, 1))
        shaded = sample_background_color(page, fitz.Rect(55, 55, 245, 145))
        blank = sample_background_color(page, fitz.Rect(300, 300, 400, 400))
        degenerate = sample_background_color(page, fitz.Rect(10, 10, 10, 10))
    finally:
        doc.close()

    assert shaded == pytest.approx((0.0, 0.0, 1.0), abs=0.02)
    assert blank == pytest.approx(WHITE)
    assert degenerate == WHITE


def test_erase_region_removes_glyphs_and_keeps_neighbours():
    doc = fitz.open()
    try:
        page = doc.new_page()
        page.insert_text(fitz.Point(72, 100), "keep", fontsize=11)
        page.insert_text(fitz.Point(200, 100), "drop", fontsize=11)
        target = page.search_for("drop")[0]
        color = erase_region(page, target, 2.0)
        text = page.get_text()
    finally:
        doc.close()

    assert color == pytest.approx(WHITE)
    assert "keep" in text
    assert "drop" not in text


def test_insert_textbox_shrinks_to_fit():
    doc = fitz.open()
    try:
        page = doc.new_page()
        rect = fitz.Rect(72, 72, 160, 100)
        size = insert_textbox_with_fallback(page, rect, "Acme Corporation Ltd", 12.0)
        text = page.get_text()
    finally:
        doc.close()

    assert size is not None
    assert size <= 12.0
    assert "Acme" in text
