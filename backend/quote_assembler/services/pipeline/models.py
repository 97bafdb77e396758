from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ...utils.exceptions import ValidationError
from ...utils.json import dumps_report

BBox = Tuple[float, float, float, float]
Color = Tuple[float, float, float]


def union_boxes(boxes: Iterable[BBox]) -> Optional[BBox]:
    boxes = list(boxes)
    if not boxes:
        return None
    return (
        min(box[0] for box in boxes),
        min(box[1] for box in boxes),
        max(box[2] for box in boxes),
        max(box[3] for box in boxes),
    )


def box_area(box: Optional[BBox]) -> float:
    if not box:
        return 0.0
    return max(box[2] - box[0], 0.0) * max(box[3] - box[1], 0.0)


def boxes_overlap(first: BBox, second: BBox) -> bool:
    """True when the two rectangles share a region of positive area."""
    return (
        min(first[2], second[2]) > max(first[0], second[0])
        and min(first[3], second[3]) > max(first[1], second[1])
    )


def _pick(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class DetectionMethod(str, Enum):
    HEURISTIC = "heuristic"
    FALLBACK = "fallback"
    MANUAL = "manual"


# Merged regions keep the first method in this order that any member carries.
MERGE_METHOD_PRECEDENCE = (
    DetectionMethod.HEURISTIC.value,
    DetectionMethod.MANUAL.value,
    DetectionMethod.FALLBACK.value,
)


class ReplacementMethod(str, Enum):
    GEOMETRIC = "geometric"
    CALIBRATION = "calibration"


@dataclass(frozen=True)
class TextRun:
    """One whitespace-delimited fragment of a text line with its page geometry.

    ``x``/``y`` is the baseline origin in page space (origin top-left, y down).
    """

    text: str
    x: float
    y: float
    width: float
    height: float
    page_index: int
    bbox: Optional[BBox] = None
    font_size: float = 0.0
    font: str = ""
    glyph_boxes: Tuple[BBox, ...] = ()

    @property
    def box(self) -> BBox:
        if self.bbox is not None:
            return self.bbox
        return (self.x, self.y - self.height, self.x + self.width, self.y)

    def chars_box(self, start: int, end: int) -> BBox:
        """Box of characters ``[start, end)``; the whole run when glyph boxes are missing."""
        start, end = max(start, 0), min(end, len(self.text))
        if len(self.glyph_boxes) != len(self.text) or start >= end:
            return self.box
        return union_boxes(self.glyph_boxes[start:end])  # type: ignore[return-value]


@dataclass(frozen=True)
class Line:
    page_index: int
    line_index: int
    runs: Tuple[TextRun, ...]
    text: str
    run_offsets: Tuple[Tuple[int, int], ...]

    @property
    def bbox(self) -> Optional[BBox]:
        return union_boxes(run.box for run in self.runs)

    @property
    def y(self) -> float:
        return self.runs[0].y if self.runs else 0.0


@dataclass(frozen=True)
class TokenPattern:
    category: str
    variants: Tuple[str, ...]
    case_sensitive: bool = False
    value_key: Optional[str] = None
    name: Optional[str] = None
    default_font_size: float = 10.0
    partial_confidence: float = 0.8
    whitespace_tolerant: bool = True

    @property
    def resolved_value_key(self) -> str:
        return self.value_key or self.category

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TokenPattern":
        variants = _pick(payload, "variants", "patterns", default=[])
        if isinstance(variants, str):
            variants = [variants]
        category = _pick(payload, "category")
        if not category or not variants:
            raise ValidationError(["token pattern requires a category and at least one variant"])
        return cls(
            category=str(category),
            variants=tuple(str(variant) for variant in variants if str(variant)),
            case_sensitive=_as_bool(_pick(payload, "case_sensitive", "caseSensitive"), False),
            value_key=_pick(payload, "value_key", "valueKey"),
            name=_pick(payload, "name"),
            default_font_size=float(_pick(payload, "default_font_size", "defaultFontSize", default=10.0)),
            partial_confidence=float(_pick(payload, "partial_confidence", "partialConfidence", default=0.8)),
            whitespace_tolerant=_as_bool(
                _pick(payload, "whitespace_tolerant", "whitespaceTolerant"), True
            ),
        )


@dataclass(frozen=True)
class TokenMatch:
    literal: str
    matched_text: str
    category: str
    value_key: str
    page_index: int
    line_index: int
    start: int
    end: int
    bbox: BBox
    origin: Tuple[float, float]
    font_size: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "literal": self.literal,
            "matched_text": self.matched_text,
            "category": self.category,
            "page_index": self.page_index,
            "line_index": self.line_index,
            "start": self.start,
            "end": self.end,
            "bbox": [round(value, 2) for value in self.bbox],
            "font_size": round(self.font_size, 2),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ReplacementOutcome:
    token: str
    replacement: Optional[str]
    success: bool
    reason: Optional[str] = None
    category: Optional[str] = None
    page_index: Optional[int] = None
    method: str = ReplacementMethod.GEOMETRIC.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "replacement": self.replacement,
            "success": self.success,
            "reason": self.reason,
            "category": self.category,
            "page_index": self.page_index,
            "method": self.method,
        }


@dataclass(frozen=True)
class OverlayRegion:
    x: float
    y: float
    width: float
    height: float
    page_index: int = 0
    confidence: float = 0.5
    detection_method: str = DetectionMethod.HEURISTIC.value
    detected_text: Optional[str] = None
    member_count: int = 1

    @property
    def box(self) -> BBox:
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def overlaps(self, other: "OverlayRegion") -> bool:
        return self.page_index == other.page_index and boxes_overlap(self.box, other.box)

    def merged_with(self, other: "OverlayRegion") -> "OverlayRegion":
        """Union rectangle; confidence is the member-weighted mean of both sides."""
        x0, y0, x1, y1 = union_boxes([self.box, other.box])  # type: ignore[misc]
        members = self.member_count + other.member_count
        confidence = (
            self.confidence * self.member_count + other.confidence * other.member_count
        ) / members
        notes = sorted({note for note in (self.detected_text, other.detected_text) if note})
        methods = {self.detection_method, other.detection_method}
        method = next(
            (candidate for candidate in MERGE_METHOD_PRECEDENCE if candidate in methods),
            min(methods),
        )
        return OverlayRegion(
            x=x0,
            y=y0,
            width=x1 - x0,
            height=y1 - y0,
            page_index=self.page_index,
            confidence=confidence,
            detection_method=method,
            detected_text=", ".join(notes) or None,
            member_count=members,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": round(self.x, 2),
            "y": round(self.y, 2),
            "width": round(self.width, 2),
            "height": round(self.height, 2),
            "page_index": self.page_index,
            "confidence": round(self.confidence, 4),
            "detection_method": self.detection_method,
            "detected_text": self.detected_text,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "OverlayRegion":
        try:
            return cls(
                x=float(payload["x"]),
                y=float(payload["y"]),
                width=float(payload["width"]),
                height=float(payload["height"]),
                page_index=int(_pick(payload, "page_index", "pageIndex", default=0)),
                confidence=float(_pick(payload, "confidence", default=1.0)),
                detection_method=DetectionMethod.MANUAL.value,
                detected_text=_pick(payload, "detected_text", "detectedText"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError([f"invalid fallback region: {exc}"]) from exc


def _parse_color(value: Any, default: Color) -> Color:
    if value is None:
        return default
    if isinstance(value, str):
        raw = value.lstrip("#")
        if len(raw) != 6:
            raise ValidationError([f"invalid colour {value!r}"])
        return tuple(int(raw[i:i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]
    channels = [float(channel) for channel in value][:3]
    if len(channels) != 3:
        raise ValidationError([f"invalid colour {value!r}"])
    if any(channel > 1.0 for channel in channels):
        channels = [channel / 255.0 for channel in channels]
    return tuple(channels)  # type: ignore[return-value]


@dataclass(frozen=True)
class OverlayOptions:
    scale_to_fit: bool = True
    maintain_aspect_ratio: bool = True
    center_in_region: bool = True
    padding: float = 10.0
    clear_region: bool = False
    clear_color: Color = (1.0, 1.0, 1.0)
    fallback_region: Optional[OverlayRegion] = None
    usable_threshold: float = 0.5

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "OverlayOptions":
        payload = payload or {}
        fallback = _pick(payload, "fallback_region", "fallbackRegion")
        return cls(
            scale_to_fit=_as_bool(_pick(payload, "scale_to_fit", "scaleToFit"), True),
            maintain_aspect_ratio=_as_bool(
                _pick(payload, "maintain_aspect_ratio", "maintainAspectRatio"), True
            ),
            center_in_region=_as_bool(_pick(payload, "center_in_region", "centerInRegion"), True),
            padding=float(_pick(payload, "padding", "paddingUnits", "padding_units", default=10.0)),
            clear_region=_as_bool(_pick(payload, "clear_region", "clearRegion"), False),
            clear_color=_parse_color(_pick(payload, "clear_color", "clearColor"), (1.0, 1.0, 1.0)),
            fallback_region=OverlayRegion.from_dict(fallback) if fallback else None,
            usable_threshold=float(_pick(payload, "usable_threshold", "usableThreshold", default=0.5)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scale_to_fit": self.scale_to_fit,
            "maintain_aspect_ratio": self.maintain_aspect_ratio,
            "center_in_region": self.center_in_region,
            "padding": self.padding,
            "clear_region": self.clear_region,
            "clear_color": list(self.clear_color),
            "fallback_region": self.fallback_region.to_dict() if self.fallback_region else None,
            "usable_threshold": self.usable_threshold,
        }


@dataclass(frozen=True)
class SummaryOptions:
    vendor_name: str = "CloudFuze"
    vendor_tagline: str = "Cloud Migration Services"
    theme: str = "blue"
    include_terms: bool = True
    validity_days: int = 30

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None, base: "SummaryOptions | None" = None) -> "SummaryOptions":
        payload = payload or {}
        base = base or cls()
        return cls(
            vendor_name=str(_pick(payload, "vendor_name", "vendorName", "companyName", default=base.vendor_name)),
            vendor_tagline=str(_pick(payload, "vendor_tagline", "vendorTagline", default=base.vendor_tagline)),
            theme=str(_pick(payload, "theme", "colorScheme", default=base.theme)),
            include_terms=_as_bool(_pick(payload, "include_terms", "includeTerms"), base.include_terms),
            validity_days=int(_pick(payload, "validity_days", "validityDays", default=base.validity_days)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendor_name": self.vendor_name,
            "vendor_tagline": self.vendor_tagline,
            "theme": self.theme,
            "include_terms": self.include_terms,
            "validity_days": self.validity_days,
        }


@dataclass(frozen=True)
class AssemblyOptions:
    fill_forms: bool = True
    flatten_forms: bool = True
    replace_tokens: bool = True
    generate_secondary_artifact: bool = True
    overlay_secondary_artifact: bool = True
    preserve_original: bool = True
    timeout_ms: int = 30000
    line_tolerance: float = 5.0
    max_template_bytes: int = 100 * 1024 * 1024
    calibration_template: Optional[str] = None
    token_patterns: Optional[Tuple[TokenPattern, ...]] = None
    overlay: OverlayOptions = field(default_factory=OverlayOptions)
    summary: SummaryOptions = field(default_factory=SummaryOptions)

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any] | None,
        base: "AssemblyOptions | None" = None,
    ) -> "AssemblyOptions":
        """Build options from snake_case or camelCase keys, falling back to ``base``."""
        payload = payload or {}
        base = base or cls()

        timeout_raw = _pick(payload, "timeout_ms", "timeoutMs", "timeout", default=base.timeout_ms)
        try:
            timeout_ms = int(timeout_raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError([f"timeoutMs must be an integer, got {timeout_raw!r}"]) from exc
        if timeout_ms < 0:
            raise ValidationError(["timeoutMs must not be negative"])

        patterns_raw = _pick(payload, "token_patterns", "tokenPatterns")
        token_patterns = base.token_patterns
        if patterns_raw is not None:
            token_patterns = tuple(
                pattern if isinstance(pattern, TokenPattern) else TokenPattern.from_dict(pattern)
                for pattern in patterns_raw
            )

        overlay_raw = _pick(payload, "overlay", "overlay_options", "overlayOptions")
        summary_raw = _pick(payload, "summary", "summary_options", "summaryOptions", "templateOptions")

        return cls(
            fill_forms=_as_bool(_pick(payload, "fill_forms", "fillForms"), base.fill_forms),
            flatten_forms=_as_bool(_pick(payload, "flatten_forms", "flattenForms"), base.flatten_forms),
            replace_tokens=_as_bool(_pick(payload, "replace_tokens", "replaceTokens"), base.replace_tokens),
            generate_secondary_artifact=_as_bool(
                _pick(payload, "generate_secondary_artifact", "generateSecondaryArtifact", "generateQuotePDF"),
                base.generate_secondary_artifact,
            ),
            overlay_secondary_artifact=_as_bool(
                _pick(payload, "overlay_secondary_artifact", "overlaySecondaryArtifact", "overlayQuotePDF"),
                base.overlay_secondary_artifact,
            ),
            preserve_original=_as_bool(
                _pick(payload, "preserve_original", "preserveOriginal"), base.preserve_original
            ),
            timeout_ms=timeout_ms,
            line_tolerance=float(_pick(payload, "line_tolerance", "lineTolerance", default=base.line_tolerance)),
            max_template_bytes=int(
                _pick(payload, "max_template_bytes", "maxTemplateBytes", default=base.max_template_bytes)
            ),
            calibration_template=_pick(
                payload, "calibration_template", "calibrationTemplate", default=base.calibration_template
            ),
            token_patterns=token_patterns,
            overlay=OverlayOptions.from_dict(overlay_raw) if overlay_raw is not None else base.overlay,
            summary=SummaryOptions.from_dict(summary_raw, base.summary) if summary_raw is not None else base.summary,
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AssemblyOptions":
        """Seed defaults from a Flask config mapping."""
        summary_defaults = config.get("SUMMARY_DEFAULTS") or {}
        return cls(
            timeout_ms=int(config.get("ASSEMBLY_TIMEOUT_MS", 30000)),
            line_tolerance=float(config.get("LINE_TOLERANCE", 5.0)),
            max_template_bytes=int(config.get("MAX_TEMPLATE_BYTES", 100 * 1024 * 1024)),
            calibration_template=config.get("DEFAULT_CALIBRATION_TEMPLATE"),
            summary=SummaryOptions.from_dict(summary_defaults),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fill_forms": self.fill_forms,
            "flatten_forms": self.flatten_forms,
            "replace_tokens": self.replace_tokens,
            "generate_secondary_artifact": self.generate_secondary_artifact,
            "overlay_secondary_artifact": self.overlay_secondary_artifact,
            "preserve_original": self.preserve_original,
            "timeout_ms": self.timeout_ms,
            "line_tolerance": self.line_tolerance,
            "calibration_template": self.calibration_template,
            "custom_token_patterns": len(self.token_patterns) if self.token_patterns is not None else None,
            "overlay": self.overlay.to_dict(),
            "summary": self.summary.to_dict(),
        }


def default_assembly_options() -> AssemblyOptions:
    return AssemblyOptions()


@dataclass(frozen=True)
class PipelineStepResult:
    stage: str
    success: bool
    duration_ms: float
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 3),
            "error": self.error,
            "details": self.details,
            "required": self.required,
        }


@dataclass(frozen=True)
class DebugMetrics:
    original_size: int = 0
    secondary_size: Optional[int] = None
    final_size: Optional[int] = None
    fields_found: int = 0
    fields_filled: int = 0
    tokens_matched: int = 0
    tokens_replaced: int = 0
    calibration_replacements: int = 0
    overlay_region: Optional[OverlayRegion] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_size": self.original_size,
            "secondary_size": self.secondary_size,
            "final_size": self.final_size,
            "fields_found": self.fields_found,
            "fields_filled": self.fields_filled,
            "tokens_matched": self.tokens_matched,
            "tokens_replaced": self.tokens_replaced,
            "calibration_replacements": self.calibration_replacements,
            "overlay_region": self.overlay_region.to_dict() if self.overlay_region else None,
        }


@dataclass(frozen=True)
class PipelineResult:
    success: bool
    steps: Tuple[PipelineStepResult, ...]
    total_duration_ms: float
    warnings: Tuple[str, ...] = ()
    error: Optional[str] = None
    artifact: Optional[bytes] = None
    original_artifact: Optional[bytes] = None
    secondary_artifact: Optional[bytes] = None
    debug: DebugMetrics = field(default_factory=DebugMetrics)
    outcomes: Tuple[ReplacementOutcome, ...] = ()
    started_at: Optional[str] = None

    @property
    def timed_out(self) -> bool:
        return bool(self.error and self.error.startswith("timeout"))

    def statistics(self) -> Dict[str, Any]:
        total = len(self.steps)
        successful = sum(1 for step in self.steps if step.success)
        duration = sum(step.duration_ms for step in self.steps)
        return {
            "total_steps": total,
            "successful_steps": successful,
            "failed_steps": total - successful,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "average_step_duration_ms": round(duration / total, 3) if total else 0.0,
            "success_rate": f"{(successful / total * 100) if total else 0.0:.1f}%",
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "started_at": self.started_at,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "warnings": list(self.warnings),
            "steps": [step.to_dict() for step in self.steps],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "outcome_summary": summarize_outcomes(self.outcomes),
            "debug": self.debug.to_dict(),
            "statistics": self.statistics(),
            "artifact_size": len(self.artifact) if self.artifact is not None else None,
            "original_preserved": self.original_artifact is not None,
            "secondary_artifact_size": (
                len(self.secondary_artifact) if self.secondary_artifact is not None else None
            ),
        }

    def to_json(self, *, pretty: bool = True) -> str:
        return dumps_report(self.to_dict(), pretty=pretty)


def summarize_outcomes(outcomes: Sequence[ReplacementOutcome]) -> Dict[str, Any]:
    by_method: Dict[str, int] = {}
    failures: List[Dict[str, Any]] = []
    for outcome in outcomes:
        if outcome.success:
            by_method[outcome.method] = by_method.get(outcome.method, 0) + 1
        else:
            failures.append({"token": outcome.token, "reason": outcome.reason})
    return {
        "attempted": len(outcomes),
        "replaced": sum(by_method.values()),
        "by_method": by_method,
        "failures": failures,
    }
