from __future__ import annotations

import fitz
import pytest

from quote_assembler.services.pipeline.form_field_service import (
    FormFieldService,
    classify_field_name,
    describe_fields,
    field_statistics,
    resolve_field_value,
)
from quote_assembler.services.pipeline.quote_context import QuoteContext


def _fields():
    return [
        ("company_name", fitz.Rect(72, 100, 320, 120), 0),
        ("client_email", fitz.Rect(72, 140, 320, 160), 0),
        ("total_amount", fitz.Rect(72, 180, 320, 200), 0),
        ("company_note", fitz.Rect(72, 220, 320, 240), fitz.PDF_FIELD_IS_READ_ONLY),
    ]


@pytest.mark.parametrize(
    "name, category, confidence",
    [
        ("company_name", "company", 1.0),
        ("client_email", "email", 1.0),
        ("mail_to", "email", 1.0),
        ("recipient_contact_name_field", "contact", 24 / 28),
        ("total_amount_due", "price", 1.0),
        ("xyz", "unknown", 0.0),
        ("", "unknown", 0.0),
    ],
)
def test_classify_field_name(name, category, confidence):
    result = classify_field_name(name)
    assert result.category == category
    assert result.confidence == pytest.approx(confidence)
    assert 0.0 <= result.confidence <= 1.0


def test_email_names_never_classify_as_contact():
    assert classify_field_name("client_mail").category == "email"
    assert classify_field_name("Customer E-Mail").category == "email"


def test_resolve_field_value_prefers_custom_fields():
    context = QuoteContext(company="Acme Corp", custom_fields={"company_name": "Acme Holdings"})
    assert resolve_field_value("company_name", context) == "Acme Holdings"
    assert resolve_field_value("Company", QuoteContext(company="Acme Corp")) == "Acme Corp"
    assert resolve_field_value("xyz", context) is None


def test_describe_fields_reports_categories_and_flags(build_form_pdf):
    doc = fitz.open(stream=build_form_pdf(_fields()), filetype="pdf")
    try:
        fields = describe_fields(doc)
    finally:
        doc.close()

    by_name = {info.name: info for info in fields}
    assert by_name["company_name"].category == "company"
    assert by_name["client_email"].category == "email"
    assert by_name["company_note"].is_read_only
    stats = field_statistics(fields)
    assert stats["total_fields"] == 4
    assert stats["fields_by_type"] == {"text": 4}
    assert stats["fillable_fields"] == 3


def test_fill_without_flatten_sets_widget_values(build_form_pdf):
    context = QuoteContext(company="Acme Corp", contact_email="jane@acme.test")
    doc = fitz.open(stream=build_form_pdf(_fields()), filetype="pdf")
    try:
        report = FormFieldService().fill(doc, context, flatten=False)
        values = {widget.field_name: widget.field_value for widget in doc[0].widgets()}
    finally:
        doc.close()

    assert report.fields_found == 4
    assert report.fields_filled == 2
    assert "company_note" in report.skipped
    assert "total_amount" in report.skipped
    assert values["company_name"] == "Acme Corp"
    assert values["client_email"] == "jane@acme.test"
    assert not values["company_note"]


def test_fill_and_flatten_leaves_static_text(build_form_pdf):
    context = QuoteContext(company="Acme Corp", contact_email="jane@acme.test")
    doc = fitz.open(stream=build_form_pdf(_fields()), filetype="pdf")
    try:
        report = FormFieldService().fill(doc, context, flatten=True)
        payload = doc.tobytes()
    finally:
        doc.close()

    assert report.flattened
    reopened = fitz.open(stream=payload, filetype="pdf")
    try:
        page = reopened[0]
        assert list(page.widgets() or []) == []
        text = page.get_text()
    finally:
        reopened.close()
    assert "Acme Corp" in text
    assert "jane@acme.test" in text


def test_fill_is_noop_without_form(build_pdf):
    doc = fitz.open(stream=build_pdf([[(72, 100, "No form here")]]), filetype="pdf")
    try:
        report = FormFieldService().fill(doc, QuoteContext(company="Acme Corp"))
    finally:
        doc.close()

    assert report.fields_found == 0
    assert not report.flattened
