from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from ....utils.exceptions import NoMatchWarning
from ....utils.logging import get_logger
from ..deadline import Deadline
from ..models import Line, TokenMatch, TokenPattern, box_area, union_boxes
from .line_builder import span_pieces
from .token_catalog import DEFAULT_TOKEN_PATTERNS

_BRACKETS = frozenset("{}[]")
_GAP = r"\s*"


def compile_variant(variant: str, case_sensitive: bool = False, whitespace_tolerant: bool = True) -> Pattern[str]:
    """Regex for one literal variant.

    Whitespace-tolerant variants accept any run of whitespace (including none)
    where the literal has a space, and around its brace/bracket delimiters, so
    ``{{Company Name}}`` also finds ``{{ Company  Name }}``.
    """
    flags = 0 if case_sensitive else re.IGNORECASE
    literal = variant.strip()
    if not whitespace_tolerant:
        return re.compile(re.escape(literal), flags)

    pieces: List[str] = []
    previous: Optional[str] = None
    for char in literal:
        if char.isspace():
            if pieces and pieces[-1] != _GAP:
                pieces.append(_GAP)
            previous = char
            continue
        needs_gap = previous is not None and (char in _BRACKETS or previous in _BRACKETS)
        if needs_gap and pieces[-1] != _GAP:
            pieces.append(_GAP)
        pieces.append(re.escape(char))
        previous = char
    return re.compile("".join(pieces), flags)


def _normalize(text: str, case_sensitive: bool) -> str:
    return text if case_sensitive else text.casefold()


@dataclass
class _CompiledVariant:
    pattern: TokenPattern
    variant: str
    regex: Pattern[str]


@dataclass
class MatchReport:
    matches: List[TokenMatch] = field(default_factory=list)
    warnings: List[NoMatchWarning] = field(default_factory=list)
    lines_scanned: int = 0

    def warning_messages(self) -> List[str]:
        return [str(warning) for warning in self.warnings]


class TokenMatcher:
    def __init__(self, patterns: Sequence[TokenPattern] | None = None) -> None:
        self.logger = get_logger(__name__)
        self.patterns: Tuple[TokenPattern, ...] = tuple(
            DEFAULT_TOKEN_PATTERNS if patterns is None else patterns
        )
        compiled = [
            _CompiledVariant(
                pattern=pattern,
                variant=variant,
                regex=compile_variant(variant, pattern.case_sensitive, pattern.whitespace_tolerant),
            )
            for pattern in self.patterns
            for variant in pattern.variants
            if variant.strip()
        ]
        # Longest literal claims its span first so shorter variants nested
        # inside it ("{company}" in "{{company}}") cannot match again.
        self._variants = sorted(compiled, key=lambda item: len(item.variant.strip()), reverse=True)

    def match_lines(self, lines: Iterable[Line], deadline: Deadline | None = None) -> MatchReport:
        report = MatchReport()
        for line in lines:
            if deadline is not None:
                deadline.check()
            report.lines_scanned += 1
            self._match_line(line, report)
        report.matches.sort(key=lambda match: (match.page_index, match.line_index, match.start))
        if report.matches or report.warnings:
            self.logger.debug(
                "token scan complete",
                lines=report.lines_scanned,
                matches=len(report.matches),
                dropped=len(report.warnings),
            )
        return report

    def _match_line(self, line: Line, report: MatchReport) -> None:
        if not line.text:
            return
        claimed: List[Tuple[int, int]] = []
        for compiled in self._variants:
            for found in compiled.regex.finditer(line.text):
                start, end = found.span()
                if start == end:
                    continue
                if any(start < c_end and c_start < end for c_start, c_end in claimed):
                    continue
                claimed.append((start, end))
                match = self._build_match(line, compiled, found.group(0), start, end, report)
                if match is not None:
                    report.matches.append(match)

    def _build_match(
        self,
        line: Line,
        compiled: _CompiledVariant,
        matched_text: str,
        start: int,
        end: int,
        report: MatchReport,
    ) -> Optional[TokenMatch]:
        pattern = compiled.pattern
        pieces = span_pieces(line, start, end)
        bbox = union_boxes(box for _, box, _ in pieces)
        if not pieces or bbox is None or box_area(bbox) <= 0:
            report.warnings.append(
                NoMatchWarning(
                    f"'{matched_text}' on page {line.page_index} line {line.line_index} "
                    "has no usable text geometry"
                )
            )
            return None

        literal, confidence = self._score(pattern, compiled.variant, matched_text)
        first, _, first_x = pieces[0]
        return TokenMatch(
            literal=literal,
            matched_text=matched_text,
            category=pattern.category,
            value_key=pattern.resolved_value_key,
            page_index=line.page_index,
            line_index=line.line_index,
            start=start,
            end=end,
            bbox=bbox,
            origin=(first_x, first.y),
            font_size=first.font_size or pattern.default_font_size,
            confidence=confidence,
        )

    @staticmethod
    def _score(pattern: TokenPattern, variant: str, matched_text: str) -> Tuple[str, float]:
        observed = _normalize(matched_text, pattern.case_sensitive)
        for candidate in (variant, *pattern.variants):
            if _normalize(candidate.strip(), pattern.case_sensitive) == observed:
                return candidate, 1.0
        return variant, max(0.0, min(pattern.partial_confidence, 1.0))


def match_tokens(
    lines: Iterable[Line],
    patterns: Sequence[TokenPattern] | None = None,
    deadline: Deadline | None = None,
) -> MatchReport:
    return TokenMatcher(patterns).match_lines(lines, deadline)


def token_statistics(matches: Sequence[TokenMatch]) -> Dict[str, Any]:
    by_category: Dict[str, int] = {}
    by_page: Dict[int, int] = {}
    for match in matches:
        by_category[match.category] = by_category.get(match.category, 0) + 1
        by_page[match.page_index] = by_page.get(match.page_index, 0) + 1
    average = sum(match.confidence for match in matches) / len(matches) if matches else 0.0
    return {
        "total_tokens": len(matches),
        "tokens_by_category": by_category,
        "tokens_by_page": by_page,
        "average_confidence": round(average, 4),
    }
