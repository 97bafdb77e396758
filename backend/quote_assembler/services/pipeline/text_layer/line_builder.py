from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from ..models import BBox, Line, TextRun

DEFAULT_LINE_TOLERANCE = 5.0


def _finish_line(runs: List[TextRun], page_index: int, line_index: int) -> Line:
    ordered = sorted(runs, key=lambda run: run.x)
    offsets: List[Tuple[int, int]] = []
    parts: List[str] = []
    cursor = 0
    for run in ordered:
        offsets.append((cursor, cursor + len(run.text)))
        parts.append(run.text)
        cursor += len(run.text) + 1
    return Line(
        page_index=page_index,
        line_index=line_index,
        runs=tuple(ordered),
        text=" ".join(parts),
        run_offsets=tuple(offsets),
    )


def reconstruct_lines(
    runs: Sequence[TextRun],
    tolerance: float = DEFAULT_LINE_TOLERANCE,
) -> List[Line]:
    """Cluster one page's runs into lines, top of the page first.

    A run joins the current line while its baseline stays within ``tolerance``
    of the line's first run; otherwise it opens a new line.
    """
    if not runs:
        return []

    page_index = runs[0].page_index
    ordered = sorted(runs, key=lambda run: (run.y, run.x))

    lines: List[Line] = []
    current: List[TextRun] = []
    reference_y = ordered[0].y
    for run in ordered:
        if current and abs(run.y - reference_y) > tolerance:
            lines.append(_finish_line(current, page_index, len(lines)))
            current = []
        if not current:
            reference_y = run.y
        current.append(run)
    if current:
        lines.append(_finish_line(current, page_index, len(lines)))
    return lines


def reconstruct_document_lines(
    runs_by_page: Dict[int, List[TextRun]],
    tolerance: float = DEFAULT_LINE_TOLERANCE,
) -> List[Line]:
    lines: List[Line] = []
    for page_index in sorted(runs_by_page):
        lines.extend(reconstruct_lines(runs_by_page[page_index], tolerance))
    return lines


def runs_in_span(line: Line, start: int, end: int) -> List[TextRun]:
    """Runs whose character range in ``line.text`` intersects ``[start, end)``."""
    return [
        run
        for run, (run_start, run_end) in zip(line.runs, line.run_offsets)
        if run_start < end and start < run_end
    ]


def span_pieces(line: Line, start: int, end: int) -> List[Tuple[TextRun, BBox, float]]:
    """Per intersecting run: the run, the box of its characters inside ``[start, end)``
    and the x where that slice begins.
    """
    pieces: List[Tuple[TextRun, BBox, float]] = []
    for run, (run_start, run_end) in zip(line.runs, line.run_offsets):
        if not (run_start < end and start < run_end):
            continue
        local_start = max(start, run_start) - run_start
        box = run.chars_box(local_start, min(end, run_end) - run_start)
        x = run.x if local_start == 0 else box[0]
        pieces.append((run, box, x))
    return pieces


def page_text(lines: Iterable[Line]) -> str:
    return "\n".join(line.text for line in lines)
