from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Sequence, Tuple

import fitz
import pytest

# (x, baseline y, text)
TextItem = Tuple[float, float, str]


def _build_pdf(pages: Sequence[Iterable[TextItem]], fontsize: float = 11.0) -> bytes:
    doc = fitz.open()
    try:
        for items in pages:
            page = doc.new_page(width=612, height=792)
            for x, y, text in items:
                page.insert_text(fitz.Point(x, y), text, fontsize=fontsize)
        return doc.tobytes()
    finally:
        doc.close()


def _build_form_pdf(fields: Sequence[Tuple[str, fitz.Rect, int]]) -> bytes:
    doc = fitz.open()
    try:
        page = doc.new_page(width=612, height=792)
        page.insert_text(fitz.Point(72, 60), "Order Form", fontsize=14)
        for name, rect, flags in fields:
            widget = fitz.Widget()
            widget.field_name = name
            widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
            widget.rect = rect
            widget.field_value = ""
            widget.text_fontsize = 10
            widget.field_flags = flags
            page.add_widget(widget)
        return doc.tobytes()
    finally:
        doc.close()


@pytest.fixture
def build_pdf() -> Callable[..., bytes]:
    return _build_pdf


@pytest.fixture
def build_form_pdf() -> Callable[..., bytes]:
    return _build_form_pdf


@pytest.fixture
def page_texts() -> Callable[[bytes], List[str]]:
    def _texts(payload: bytes) -> List[str]:
        doc = fitz.open(stream=payload, filetype="pdf")
        try:
            return [page.get_text() for page in doc]
        finally:
            doc.close()

    return _texts


@pytest.fixture
def quote_payload() -> Dict[str, object]:
    return {
        "company": "Acme Corp",
        "contact_name": "Jane Doe",
        "contact_email": "jane@acme.test",
        "user_count": 25,
        "duration_months": 6,
        "migration_type": "Content",
        "quote_date": "2026-10-19",
        "costs": {"user_cost": 500, "migration_cost": 300, "total_cost": 1200},
    }


class FakeClock:
    """Manually advanced stand-in for ``time.perf_counter``."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
