from __future__ import annotations

import fitz
import pytest

from quote_assembler.services.pipeline import token_replacement_service
from quote_assembler.services.pipeline.calibration_templates import get_calibration_template
from quote_assembler.services.pipeline.quote_context import CostBreakdown, QuoteContext
from quote_assembler.services.pipeline.token_replacement_service import TokenReplacementService
from quote_assembler.utils.exceptions import ExtractionError


def _open(payload: bytes) -> fitz.Document:
    return fitz.open(stream=payload, filetype="pdf")


def test_replaces_company_token_and_removes_it_from_text_layer(build_pdf):
    doc = _open(build_pdf([[(72, 100, "Prepared for {{Company Name}}")]]))
    try:
        service = TokenReplacementService()
        report = service.replace(doc, QuoteContext(company="Acme Corp"))
        rescan = service.find_matches(doc)
        text = doc[0].get_text()
    finally:
        doc.close()

    assert report.replaced == 1
    assert report.outcomes[0].replacement == "Acme Corp"
    assert report.outcomes[0].method == "geometric"
    assert rescan.matches == []
    assert "Acme Corp" in text
    assert "Prepared for" in text
    assert "{{Company Name}}" not in text


def test_label_sharing_token_vocabulary_is_left_in_place(build_pdf):
    doc = _open(build_pdf([[(72, 100, "Company Name: {{Company Name}}")]]))
    try:
        service = TokenReplacementService()
        matches = service.find_matches(doc).matches
        report = service.replace(doc, QuoteContext(company="Acme Corp"))
        text = doc[0].get_text()
    finally:
        doc.close()

    assert [match.category for match in matches] == ["company"]
    assert report.replaced == 1
    assert "Company Name:" in text
    assert "Acme Corp" in text
    assert "{{" not in text


def test_replacement_survives_save_and_reload(build_pdf):
    doc = _open(build_pdf([[(72, 100, "Total: {{total price}}")]]))
    try:
        TokenReplacementService().replace(doc, QuoteContext(costs=CostBreakdown(total_cost=1200)))
        payload = doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()

    reloaded = _open(payload)
    try:
        text = reloaded[0].get_text()
        remaining = TokenReplacementService().find_matches(reloaded).matches
    finally:
        reloaded.close()
    assert "$1,200" in text
    assert remaining == []


def test_missing_value_is_reported_and_token_left_in_place(build_pdf):
    doc = _open(build_pdf([[(72, 100, "Total: {{total price}}")]]))
    try:
        report = TokenReplacementService().replace(doc, QuoteContext(company="Acme Corp"))
        text = doc[0].get_text()
    finally:
        doc.close()

    assert report.replaced == 0
    outcome = report.outcomes[0]
    assert not outcome.success
    assert outcome.reason == "no value for category price"
    assert "{{total price}}" in text


def test_multiple_tokens_on_several_pages(build_pdf):
    payload = build_pdf([
        [(72, 100, "Client: {{client_name}}"), (72, 130, "Email: {{client_email}}")],
        [(72, 100, "Users: {{users_count}}")],
    ])
    context = QuoteContext(contact_name="Jane Doe", contact_email="jane@acme.test", user_count=25)
    doc = _open(payload)
    try:
        report = TokenReplacementService().replace(doc, context)
        texts = [page.get_text() for page in doc]
    finally:
        doc.close()

    assert report.replaced == 3
    assert [outcome.page_index for outcome in report.outcomes] == [0, 0, 1]
    assert "Jane Doe" in texts[0] and "jane@acme.test" in texts[0]
    assert "25" in texts[1]


def test_calibration_fills_unmatched_keys_and_skips_overlaps(build_pdf):
    context = QuoteContext(
        company="Acme Corp",
        user_count=25,
        costs=CostBreakdown(user_cost=500, migration_cost=300, total_cost=1200),
    )
    calibration = get_calibration_template("cloudfuze-standard")
    doc = _open(build_pdf([[(72, 700, "Statement of work")]]))
    try:
        report = TokenReplacementService().replace(doc, context, calibration)
        text = doc[0].get_text()
    finally:
        doc.close()

    by_token = {outcome.token: outcome for outcome in report.outcomes}
    assert report.calibration_replacements == 4
    assert by_token["{{price_migration}}"].reason == "calibrated position already used by {{users_cost}}"
    assert by_token["{{price_data}}"].reason == "no value for category price"
    assert all(outcome.method == "calibration" for outcome in report.outcomes)
    assert "Acme Corp" in text
    assert "$1,200" in text


def test_calibration_skips_keys_already_matched(build_pdf):
    calibration = get_calibration_template("cloudfuze-standard")
    doc = _open(build_pdf([[(72, 100, "Prepared for {{Company Name}}")]]))
    try:
        report = TokenReplacementService().replace(doc, QuoteContext(company="Acme Corp"), calibration)
    finally:
        doc.close()

    company_outcomes = [outcome for outcome in report.outcomes if outcome.category == "company"]
    assert len(company_outcomes) == 1
    assert company_outcomes[0].method == "geometric"


def test_extraction_failure_falls_back_to_calibration(build_pdf, monkeypatch):
    def _unreadable(doc, deadline=None):
        raise ExtractionError("page 0: positioned text layer unreadable", 0)

    monkeypatch.setattr(token_replacement_service, "collect_document_runs", _unreadable)
    calibration = get_calibration_template("cloudfuze-standard")
    doc = _open(build_pdf([[(72, 100, "Prepared for {{Company Name}}")]]))
    try:
        report = TokenReplacementService().replace(doc, QuoteContext(company="Acme Corp"), calibration)
        with pytest.raises(ExtractionError):
            TokenReplacementService().replace(doc, QuoteContext(company="Acme Corp"))
    finally:
        doc.close()

    assert report.extraction_failed
    assert report.calibration_replacements == 1
    assert any("calibration 'cloudfuze-standard'" in warning for warning in report.warnings)


def test_unknown_calibration_name_resolves_to_none():
    assert get_calibration_template("does-not-exist") is None
    assert get_calibration_template(None) is None


def test_label_glued_to_token_survives_replacement(build_pdf):
    doc = _open(build_pdf([[(72, 100, "Client:{{Company Name}}")]]))
    try:
        report = TokenReplacementService().replace(doc, QuoteContext(company="Acme Corp"))
        text = doc[0].get_text()
    finally:
        doc.close()

    assert report.replaced == 1
    assert "Client:" in text
    assert "Acme Corp" in text
    assert "{{" not in text
