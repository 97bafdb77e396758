from __future__ import annotations

import fitz
import pytest

from quote_assembler.services.pipeline.deadline import Deadline
from quote_assembler.services.pipeline.models import TextRun, TokenPattern
from quote_assembler.services.pipeline.text_layer import (
    TokenMatcher,
    collect_text_runs,
    custom_patterns,
    match_tokens,
    reconstruct_lines,
    runs_in_span,
    token_statistics,
)
from quote_assembler.utils.exceptions import NoMatchWarning, StageTimeoutError


def _run(text: str, x: float, y: float, width: float | None = None, height: float = 10.0) -> TextRun:
    width = 6.0 * len(text) if width is None else width
    return TextRun(text=text, x=x, y=y, width=width, height=height, page_index=0)


def _line(*words: str, y: float = 100.0):
    runs = []
    x = 72.0
    for word in words:
        runs.append(_run(word, x, y))
        x += 6.0 * len(word) + 4.0
    return reconstruct_lines(runs)


def test_collect_text_runs_splits_on_whitespace():
    doc = fitz.open()
    try:
        page = doc.new_page()
        page.insert_text(fitz.Point(72, 100), "Total: {{total price}}", fontsize=11)
        runs = collect_text_runs(page, 0)
    finally:
        doc.close()

    assert [run.text for run in runs] == ["Total:", "{{total", "price}}"]
    assert all(run.page_index == 0 for run in runs)
    assert all(abs(run.y - 100) < 0.5 for run in runs)
    assert runs[0].x < runs[1].x < runs[2].x
    assert all(run.width > 0 and run.height > 0 for run in runs)


def test_reconstruct_lines_groups_by_first_run_baseline():
    runs = [
        _run("later", 200, 104),
        _run("first", 72, 100),
        _run("third", 72, 108),
    ]
    lines = reconstruct_lines(runs, tolerance=5)

    # 108 is within 5 of 104 but not of the line's first run at 100.
    assert [line.text for line in lines] == ["first later", "third"]
    assert [line.line_index for line in lines] == [0, 1]


def test_reconstruct_lines_tolerance_is_inclusive():
    lines = reconstruct_lines([_run("a", 72, 100), _run("b", 90, 105)], tolerance=5)
    assert len(lines) == 1


def test_reconstruct_lines_records_run_offsets():
    lines = reconstruct_lines([_run("$500", 110, 101), _run("Total:", 72, 100)])
    line = lines[0]

    assert line.text == "Total: $500"
    assert line.run_offsets == ((0, 6), (7, 11))
    for run, (start, end) in zip(line.runs, line.run_offsets):
        assert line.text[start:end] == run.text
    assert [run.text for run in runs_in_span(line, 7, 9)] == ["$500"]


def test_reconstruct_lines_empty_input():
    assert reconstruct_lines([]) == []


def test_matcher_spans_runs_with_full_confidence():
    lines = _line("Dear", "{{Company", "Name}},", "your", "quote")
    report = TokenMatcher().match_lines(lines)

    assert len(report.matches) == 1
    match = report.matches[0]
    assert match.literal == "{{Company Name}}"
    assert match.category == "company"
    assert match.confidence == 1.0
    assert lines[0].text[match.start:match.end] == "{{Company Name}}"
    assert match.bbox[0] == pytest.approx(lines[0].runs[1].box[0])
    assert match.bbox[2] == pytest.approx(lines[0].runs[2].box[2])


def test_matcher_tolerates_whitespace_with_partial_confidence():
    lines = _line("{{", "Company", "Name", "}}")
    report = TokenMatcher().match_lines(lines)

    assert len(report.matches) == 1
    match = report.matches[0]
    assert match.matched_text == "{{ Company Name }}"
    assert match.confidence == pytest.approx(0.8)


def test_matcher_reports_no_false_positives_for_plain_words():
    lines = _line("Company", "overview", "and", "total", "price", "company_name")
    report = match_tokens(lines)

    assert report.matches == []
    assert report.warnings == []


def test_case_sensitive_constant_only_matches_exact_case():
    assert len(TokenMatcher().match_lines(_line("COMPANY_NAME")).matches) == 1
    assert TokenMatcher().match_lines(_line("Company_Name")).matches == []


def test_nested_variant_is_not_matched_twice():
    report = TokenMatcher().match_lines(_line("{{company}}"))

    assert len(report.matches) == 1
    assert report.matches[0].literal == "{{company}}"


def test_matches_are_ordered_by_page_line_and_offset():
    runs = [
        _run("{{email}}", 72, 200),
        _run("{{users_count}}", 300, 100),
        _run("{{client_name}}", 72, 100),
    ]
    report = TokenMatcher().match_lines(reconstruct_lines(runs))

    assert [match.category for match in report.matches] == ["contact", "count", "email"]
    stats = token_statistics(report.matches)
    assert stats["total_tokens"] == 3
    assert stats["tokens_by_page"] == {0: 3}


def test_zero_area_geometry_is_dropped_with_warning():
    runs = [TextRun(text="{{email}}", x=72, y=100, width=0, height=0, page_index=0)]
    report = TokenMatcher().match_lines(reconstruct_lines(runs))

    assert report.matches == []
    assert len(report.warnings) == 1
    assert isinstance(report.warnings[0], NoMatchWarning)
    assert "{{email}}" in report.warning_messages()[0]


@pytest.mark.parametrize("partial, expected", [(1.7, 1.0), (-0.3, 0.0), (0.65, 0.65)])
def test_confidence_is_clamped(partial, expected):
    pattern = TokenPattern(category="custom", variants=("{{ref}}",), partial_confidence=partial)
    report = TokenMatcher([pattern]).match_lines(_line("{{", "ref", "}}"))

    assert report.matches[0].confidence == pytest.approx(expected)
    assert 0.0 <= report.matches[0].confidence <= 1.0


def test_custom_patterns_use_literal_as_value_key():
    patterns = custom_patterns(["<<PO>>"])
    report = TokenMatcher(patterns).match_lines(_line("Order", "<<PO>>"))

    assert report.matches[0].value_key == "<<PO>>"
    assert report.matches[0].category == "custom"


def test_token_pattern_from_dict_accepts_camel_case():
    pattern = TokenPattern.from_dict({"category": "custom", "variants": "<<ref>>", "valueKey": "ref"})

    assert pattern.variants == ("<<ref>>",)
    assert pattern.resolved_value_key == "ref"


def test_matcher_honours_deadline(fake_clock):
    deadline = Deadline(10, clock=fake_clock)
    fake_clock.advance(1.0)

    with pytest.raises(StageTimeoutError) as excinfo:
        TokenMatcher().match_lines(_line("{{email}}"), deadline)
    assert str(excinfo.value).startswith("timeout")


def test_match_box_covers_only_the_matched_glyphs():
    doc = fitz.open()
    try:
        page = doc.new_page()
        page.insert_text(fitz.Point(72, 100), "Client:{{Company Name}}/{{total price}}", fontsize=11)
        runs = collect_text_runs(page, 0)
    finally:
        doc.close()

    company, price = match_tokens(reconstruct_lines(runs)).matches

    assert (company.category, price.category) == ("company", "price")
    assert company.bbox[0] > runs[0].x + 10
    assert company.origin[0] == pytest.approx(company.bbox[0])
    assert company.bbox[2] <= price.bbox[0]
    assert price.origin[0] > company.origin[0]
    assert price.bbox[2] <= runs[-1].box[2] + 0.01
