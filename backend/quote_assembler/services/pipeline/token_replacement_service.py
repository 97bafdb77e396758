from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import fitz

from ...utils.exceptions import ExtractionError
from ...utils.logging import get_logger
from .calibration_templates import CalibrationEntry, CalibrationTemplate
from .deadline import Deadline
from .models import BBox, Color, ReplacementMethod, ReplacementOutcome, TokenMatch, TokenPattern, boxes_overlap
from .page_drawing import draw_text, erase_region, padded_rect, sample_background_color
from .quote_context import QuoteContext
from .text_layer import (
    DEFAULT_LINE_TOLERANCE,
    MatchReport,
    TokenMatcher,
    collect_document_runs,
    reconstruct_document_lines,
    token_statistics,
)

ERASE_PADDING = 2.0


def missing_value_reason(category: str) -> str:
    return f"no value for category {category}"


@dataclass
class ReplacementReport:
    outcomes: List[ReplacementOutcome] = field(default_factory=list)
    matches: List[TokenMatch] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    extraction_failed: bool = False

    @property
    def replaced(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def calibration_replacements(self) -> int:
        return sum(
            1
            for outcome in self.outcomes
            if outcome.success and outcome.method == ReplacementMethod.CALIBRATION.value
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens_matched": len(self.matches),
            "tokens_replaced": self.replaced,
            "calibration_replacements": self.calibration_replacements,
            "extraction_failed": self.extraction_failed,
            "token_statistics": token_statistics(self.matches),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass
class _PlannedEdit:
    page_index: int
    bbox: BBox
    origin: Tuple[float, float]
    text: str
    font_size: float
    erase_padding: float
    fill: Optional[Color] = None


class TokenReplacementService:
    """Erase matched placeholder text and draw the quote value in its place."""

    def __init__(
        self,
        patterns: Sequence[TokenPattern] | None = None,
        line_tolerance: float = DEFAULT_LINE_TOLERANCE,
        erase_padding: float = ERASE_PADDING,
    ) -> None:
        self.logger = get_logger(__name__)
        self.matcher = TokenMatcher(patterns)
        self.line_tolerance = line_tolerance
        self.erase_padding = erase_padding

    def find_matches(self, doc: fitz.Document, deadline: Deadline | None = None) -> MatchReport:
        runs_by_page = collect_document_runs(doc, deadline)
        lines = reconstruct_document_lines(runs_by_page, self.line_tolerance)
        return self.matcher.match_lines(lines, deadline)

    def replace(
        self,
        doc: fitz.Document,
        context: QuoteContext,
        calibration: CalibrationTemplate | None = None,
        deadline: Deadline | None = None,
    ) -> ReplacementReport:
        report = ReplacementReport()
        try:
            match_report = self.find_matches(doc, deadline)
        except ExtractionError as exc:
            if calibration is None:
                raise
            self.logger.warning("text layer unreadable, using calibration only", error=str(exc))
            report.extraction_failed = True
            report.warnings.append(f"text extraction failed, calibration '{calibration.name}' used: {exc}")
            match_report = MatchReport()

        report.matches = list(match_report.matches)
        report.warnings.extend(match_report.warning_messages())

        planned: List[_PlannedEdit] = []
        for match in match_report.matches:
            value = context.value_for(match.value_key)
            if value is None:
                report.outcomes.append(
                    ReplacementOutcome(
                        token=match.literal,
                        replacement=None,
                        success=False,
                        reason=missing_value_reason(match.category),
                        category=match.category,
                        page_index=match.page_index,
                    )
                )
                continue
            planned.append(
                _PlannedEdit(
                    page_index=match.page_index,
                    bbox=match.bbox,
                    origin=match.origin,
                    text=value,
                    font_size=match.font_size,
                    erase_padding=self.erase_padding,
                )
            )
            report.outcomes.append(
                ReplacementOutcome(
                    token=match.literal,
                    replacement=value,
                    success=True,
                    category=match.category,
                    page_index=match.page_index,
                )
            )

        self._apply(doc, planned, deadline)

        if calibration is not None:
            matched_keys = {match.value_key for match in match_report.matches}
            self._apply_calibration(doc, context, calibration, matched_keys, report, deadline)

        self.logger.info(
            "token replacement finished",
            matched=len(report.matches),
            replaced=report.replaced,
            calibrated=report.calibration_replacements,
        )
        return report

    def _apply(self, doc: fitz.Document, edits: List[_PlannedEdit], deadline: Deadline | None) -> None:
        """Erase every target first, then draw, so new text is never painted over."""
        if not edits:
            return
        for edit in edits:
            if edit.fill is None:
                page = doc[edit.page_index]
                edit.fill = sample_background_color(page, padded_rect(edit.bbox, edit.erase_padding, page.rect))
        for edit in edits:
            if deadline is not None:
                deadline.check()
            erase_region(doc[edit.page_index], edit.bbox, edit.erase_padding, edit.fill)
        for edit in edits:
            draw_text(doc[edit.page_index], edit.origin, edit.text, edit.font_size)

    def _apply_calibration(
        self,
        doc: fitz.Document,
        context: QuoteContext,
        calibration: CalibrationTemplate,
        matched_keys: Set[str],
        report: ReplacementReport,
        deadline: Deadline | None,
    ) -> None:
        if calibration.page_index >= doc.page_count:
            report.warnings.append(
                f"calibration '{calibration.name}' targets missing page {calibration.page_index}"
            )
            return

        page = doc[calibration.page_index]
        width, height = page.rect.width, page.rect.height
        used: List[Tuple[CalibrationEntry, BBox]] = []
        planned: List[_PlannedEdit] = []

        for entry in calibration.entries:
            if entry.value_key in matched_keys:
                continue
            value = context.value_for(entry.value_key)
            if value is None:
                report.outcomes.append(self._calibration_outcome(entry, None, missing_value_reason(entry.category), calibration))
                continue
            clear_box = entry.clear_box(width, height, calibration.padding)
            taken = next((other for other, box in used if boxes_overlap(box, clear_box)), None)
            if taken is not None:
                report.outcomes.append(
                    self._calibration_outcome(
                        entry, value, f"calibrated position already used by {taken.token}", calibration
                    )
                )
                continue
            used.append((entry, clear_box))
            planned.append(
                _PlannedEdit(
                    page_index=calibration.page_index,
                    bbox=clear_box,
                    origin=entry.baseline(width, height),
                    text=value,
                    font_size=entry.font_size,
                    erase_padding=0.0,
                )
            )
            report.outcomes.append(self._calibration_outcome(entry, value, None, calibration))

        if planned:
            self.logger.warning(
                "calibration fallback applied",
                template=calibration.name,
                entries=[edit.text for edit in planned],
            )
        self._apply(doc, planned, deadline)

    @staticmethod
    def _calibration_outcome(
        entry: CalibrationEntry,
        value: Optional[str],
        reason: Optional[str],
        calibration: CalibrationTemplate,
    ) -> ReplacementOutcome:
        return ReplacementOutcome(
            token=entry.token,
            replacement=value,
            success=reason is None,
            reason=reason,
            category=entry.category,
            page_index=calibration.page_index,
            method=ReplacementMethod.CALIBRATION.value,
        )
