from __future__ import annotations

from .line_builder import DEFAULT_LINE_TOLERANCE, reconstruct_document_lines, reconstruct_lines, runs_in_span
from .run_extractor import collect_document_runs, collect_text_runs
from .token_catalog import DEFAULT_TOKEN_PATTERNS, custom_patterns
from .token_matcher import MatchReport, TokenMatcher, match_tokens, token_statistics

__all__ = [
    "DEFAULT_LINE_TOLERANCE",
    "DEFAULT_TOKEN_PATTERNS",
    "MatchReport",
    "TokenMatcher",
    "collect_document_runs",
    "collect_text_runs",
    "custom_patterns",
    "match_tokens",
    "reconstruct_document_lines",
    "reconstruct_lines",
    "runs_in_span",
    "token_statistics",
]
