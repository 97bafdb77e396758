from __future__ import annotations

import io
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import fitz
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from ...utils.exceptions import FatalStageFailure, StageFailure, StageTimeoutError, ValidationError
from ...utils.logging import get_logger
from ...utils.time import isoformat, utc_now
from .calibration_templates import get_calibration_template
from .deadline import Deadline
from .form_field_service import FormFieldService
from .models import (
    AssemblyOptions,
    DebugMetrics,
    OverlayRegion,
    PipelineResult,
    PipelineStepResult,
    ReplacementOutcome,
    SummaryOptions,
    default_assembly_options,
)
from .overlay_region_service import OverlayRegionService
from .quote_context import QuoteContext, validate_quote_context
from .quote_summary_service import QuoteSummaryService
from .text_layer import collect_text_runs
from .token_replacement_service import TokenReplacementService

SecondaryGenerator = Callable[[QuoteContext, SummaryOptions], bytes]


class AssemblyStage(str, Enum):
    LOAD = "load"
    FILL_FIELDS = "fill-fields"
    REPLACE_TOKENS = "replace-tokens"
    GENERATE_SECONDARY_ARTIFACT = "generate-secondary-artifact"
    DETECT_AND_OVERLAY_REGION = "detect-and-overlay-region"
    PERSIST = "persist"


REQUIRED_STAGES = frozenset({AssemblyStage.LOAD, AssemblyStage.PERSIST})

# Keys fitz.Document.set_metadata accepts
_METADATA_KEYS = frozenset({
    "author", "creator", "producer", "title", "subject", "keywords", "creationDate", "modDate",
})


def validate_assembly_inputs(
    template_bytes: bytes,
    context: QuoteContext,
    options: AssemblyOptions,
) -> List[str]:
    """Raise :class:`ValidationError` for unusable input; return soft warnings."""
    errors: List[str] = []
    if not template_bytes:
        errors.append("template is empty")
    else:
        if b"%PDF" not in bytes(template_bytes[:1024]):
            errors.append("template is not a PDF document")
        if len(template_bytes) > options.max_template_bytes:
            errors.append(
                f"template is {len(template_bytes)} bytes; limit is {options.max_template_bytes}"
            )

    context_errors, warnings = validate_quote_context(context)
    errors.extend(context_errors)
    if errors:
        raise ValidationError(errors)
    return warnings


@dataclass
class _RunState:
    context: QuoteContext
    options: AssemblyOptions
    deadline: Deadline
    original: bytes
    document: bytes
    secondary: Optional[bytes] = None
    final: Optional[bytes] = None
    page_count: int = 0
    warnings: List[str] = field(default_factory=list)
    outcomes: List[ReplacementOutcome] = field(default_factory=list)
    fields_found: int = 0
    fields_filled: int = 0
    tokens_matched: int = 0
    tokens_replaced: int = 0
    calibration_replacements: int = 0
    region: Optional[OverlayRegion] = None


class AssemblyOrchestrator:
    """Runs the assembly stages in order against one template and quote.

    The working document travels between stages as bytes; a stage only swaps
    in new bytes once it has finished, so an optional stage that fails leaves
    the previous state untouched.
    """

    def __init__(
        self,
        options: AssemblyOptions | None = None,
        secondary_generator: SecondaryGenerator | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.logger = get_logger(__name__)
        self.default_options = options or default_assembly_options()
        self.secondary_generator = secondary_generator or QuoteSummaryService().generate
        self.clock = clock
        self.pipeline_order = [stage for stage in AssemblyStage]
        self.stage_handlers: Dict[AssemblyStage, Callable[[_RunState], Dict[str, Any]]] = {
            AssemblyStage.LOAD: self._load,
            AssemblyStage.FILL_FIELDS: self._fill_fields,
            AssemblyStage.REPLACE_TOKENS: self._replace_tokens,
            AssemblyStage.GENERATE_SECONDARY_ARTIFACT: self._generate_secondary,
            AssemblyStage.DETECT_AND_OVERLAY_REGION: self._detect_and_overlay,
            AssemblyStage.PERSIST: self._persist,
        }

    def resolve_options(self, options: Union[AssemblyOptions, Mapping[str, Any], None]) -> AssemblyOptions:
        if options is None:
            return self.default_options
        if isinstance(options, AssemblyOptions):
            return options
        return AssemblyOptions.from_dict(options, base=self.default_options)

    def enabled_stages(self, options: AssemblyOptions) -> List[AssemblyStage]:
        toggles = {
            AssemblyStage.FILL_FIELDS: options.fill_forms,
            AssemblyStage.REPLACE_TOKENS: options.replace_tokens,
            AssemblyStage.GENERATE_SECONDARY_ARTIFACT: options.generate_secondary_artifact,
            AssemblyStage.DETECT_AND_OVERLAY_REGION: options.overlay_secondary_artifact,
        }
        return [stage for stage in self.pipeline_order if toggles.get(stage, True)]

    def run(
        self,
        template_bytes: bytes,
        context: Union[QuoteContext, Mapping[str, Any]],
        options: Union[AssemblyOptions, Mapping[str, Any], None] = None,
    ) -> PipelineResult:
        resolved = self.resolve_options(options)
        if not isinstance(context, QuoteContext):
            context = QuoteContext.from_dict(context)
        input_warnings = validate_assembly_inputs(template_bytes, context, resolved)

        started_at = isoformat(utc_now())
        run_started = self.clock()
        deadline = Deadline(resolved.timeout_ms, clock=self.clock)
        state = _RunState(
            context=context,
            options=resolved,
            deadline=deadline,
            original=bytes(template_bytes),
            document=bytes(template_bytes),
            warnings=list(input_warnings),
        )

        steps: List[PipelineStepResult] = []
        error: Optional[str] = None
        for stage in self.enabled_stages(resolved):
            deadline.stage = stage.value
            try:
                deadline.check()
            except StageTimeoutError as exc:
                error = str(exc)
                self.logger.warning("deadline exceeded before stage", stage=stage.value)
                break

            step, error = self._execute_stage(stage, state)
            steps.append(step)
            if error is not None:
                break

        result = PipelineResult(
            success=error is None and state.final is not None,
            steps=tuple(steps),
            total_duration_ms=(self.clock() - run_started) * 1000.0,
            warnings=tuple(state.warnings),
            error=error,
            artifact=state.final if error is None else None,
            original_artifact=state.original if resolved.preserve_original else None,
            secondary_artifact=state.secondary,
            debug=DebugMetrics(
                original_size=len(state.original),
                secondary_size=len(state.secondary) if state.secondary is not None else None,
                final_size=len(state.final) if state.final is not None and error is None else None,
                fields_found=state.fields_found,
                fields_filled=state.fields_filled,
                tokens_matched=state.tokens_matched,
                tokens_replaced=state.tokens_replaced,
                calibration_replacements=state.calibration_replacements,
                overlay_region=state.region,
            ),
            outcomes=tuple(state.outcomes),
            started_at=started_at,
        )
        self.logger.info(
            "assembly finished",
            success=result.success,
            steps=len(result.steps),
            warnings=len(result.warnings),
            duration_ms=round(result.total_duration_ms, 2),
            error=result.error,
        )
        return result

    def _execute_stage(self, stage: AssemblyStage, state: _RunState) -> Tuple[PipelineStepResult, Optional[str]]:
        required = stage in REQUIRED_STAGES
        handler = self.stage_handlers[stage]
        started = self.clock()

        def finish(success: bool, error: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> PipelineStepResult:
            return PipelineStepResult(
                stage=stage.value,
                success=success,
                duration_ms=(self.clock() - started) * 1000.0,
                error=error,
                details=details or {},
                required=required,
            )

        self.logger.info("stage started", stage=stage.value)
        try:
            details = handler(state) or {}
            state.deadline.check()
        except StageTimeoutError as exc:
            self.logger.warning("deadline exceeded inside stage", stage=stage.value)
            return finish(False, str(exc)), str(exc)
        except Exception as exc:  # noqa: BLE001 - every stage failure is reported in the trace
            if required:
                failure = FatalStageFailure(stage.value, str(exc))
                self.logger.error(str(failure), exc_info=True)
                return finish(False, failure.message), failure.message
            failure = StageFailure(stage.value, str(exc))
            self.logger.warning(str(failure), exc_info=True)
            state.warnings.append(str(failure))
            return finish(False, failure.message), None

        step = finish(True, details=details)
        self.logger.info("stage completed", stage=stage.value, duration_ms=round(step.duration_ms, 2))
        return step, None

    def _load(self, state: _RunState) -> Dict[str, Any]:
        try:
            reader = PdfReader(io.BytesIO(state.document))
            if reader.is_encrypted and not reader.decrypt(""):
                raise ValueError("template is encrypted")
            reader_pages = len(reader.pages)
        except PdfReadError as exc:
            raise ValueError(f"template could not be parsed: {exc}") from exc

        doc = fitz.open(stream=state.document, filetype="pdf")
        try:
            if doc.needs_pass:
                raise ValueError("template is password protected")
            if doc.page_count == 0:
                raise ValueError("template has no pages")
            text_runs = 0
            for page_index in range(doc.page_count):
                state.deadline.check()
                text_runs += len(collect_text_runs(doc[page_index], page_index))
            state.page_count = doc.page_count
            form_fields = sum(1 for page in doc for _ in (page.widgets() or []))
        finally:
            doc.close()

        if text_runs == 0:
            state.warnings.append("template has no extractable text; placeholders cannot be located")
        return {
            "page_count": state.page_count,
            "reader_page_count": reader_pages,
            "text_runs": text_runs,
            "form_fields": form_fields,
            "size": len(state.document),
        }

    def _fill_fields(self, state: _RunState) -> Dict[str, Any]:
        doc = fitz.open(stream=state.document, filetype="pdf")
        try:
            report = FormFieldService().fill(doc, state.context, flatten=state.options.flatten_forms)
            updated = doc.tobytes() if report.fields_filled or report.flattened else None
        finally:
            doc.close()

        state.fields_found = report.fields_found
        state.fields_filled = report.fields_filled
        if updated is not None:
            state.document = updated
        return report.to_dict()

    def _replace_tokens(self, state: _RunState) -> Dict[str, Any]:
        options = state.options
        calibration = get_calibration_template(options.calibration_template)
        if options.calibration_template and calibration is None:
            state.warnings.append(f"unknown calibration template '{options.calibration_template}'")

        service = TokenReplacementService(
            patterns=options.token_patterns,
            line_tolerance=options.line_tolerance,
        )
        doc = fitz.open(stream=state.document, filetype="pdf")
        try:
            report = service.replace(doc, state.context, calibration, state.deadline)
            updated = doc.tobytes(garbage=3, deflate=True) if report.replaced else None
        finally:
            doc.close()

        state.outcomes.extend(report.outcomes)
        state.tokens_matched = len(report.matches)
        state.tokens_replaced = report.replaced
        state.calibration_replacements = report.calibration_replacements
        state.warnings.extend(report.warnings)
        for outcome in report.outcomes:
            if not outcome.success:
                state.warnings.append(f"'{outcome.token}' not replaced: {outcome.reason}")
        if updated is not None:
            state.document = updated
        return report.to_dict()

    def _generate_secondary(self, state: _RunState) -> Dict[str, Any]:
        artifact = self.secondary_generator(state.context, state.options.summary)
        if not artifact:
            raise ValueError("secondary artifact generator returned no bytes")
        state.deadline.check()
        state.secondary = artifact
        return {"size": len(artifact), "theme": state.options.summary.theme}

    def _detect_and_overlay(self, state: _RunState) -> Dict[str, Any]:
        if state.secondary is None:
            state.warnings.append("overlay skipped: no secondary artifact available")
            return {"skipped": True}

        service = OverlayRegionService(line_tolerance=state.options.line_tolerance)
        doc = fitz.open(stream=state.document, filetype="pdf")
        try:
            detection = service.detect(doc, state.options.overlay, state.deadline)
            placement = service.embed(doc, detection.region, state.secondary, state.options.overlay)
            updated = doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()

        state.region = detection.region
        state.document = updated
        details = detection.to_dict()
        details["placement"] = placement.to_dict()
        return details

    def _persist(self, state: _RunState) -> Dict[str, Any]:
        context = state.context
        doc = fitz.open(stream=state.document, filetype="pdf")
        try:
            metadata = {
                key: value
                for key, value in (doc.metadata or {}).items()
                if key in _METADATA_KEYS and value
            }
            metadata.update({
                "title": f"Quote for {context.company}" if context.company else metadata.get("title", ""),
                "subject": context.quote_id or metadata.get("subject", ""),
                "producer": "quote-assembler",
            })
            doc.set_metadata(metadata)
            state.deadline.check()
            payload = doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()

        try:
            written_pages = len(PdfReader(io.BytesIO(payload)).pages)
        except PdfReadError as exc:
            raise ValueError(f"assembled document could not be read back: {exc}") from exc
        if state.page_count and written_pages != state.page_count:
            raise ValueError(
                f"assembled document has {written_pages} pages; template had {state.page_count}"
            )

        state.final = payload
        return {"size": len(payload), "page_count": written_pages}
