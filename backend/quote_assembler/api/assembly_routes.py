from __future__ import annotations

import io
from http import HTTPStatus
from typing import Any, Dict

import fitz
import orjson
from flask import Blueprint, current_app, jsonify, request, send_file

from ..services.pipeline.form_field_service import describe_fields, field_statistics
from ..services.pipeline.models import AssemblyOptions
from ..services.pipeline.pipeline_orchestrator import AssemblyOrchestrator
from ..services.pipeline.token_replacement_service import TokenReplacementService
from ..services.pipeline.text_layer import token_statistics
from ..utils.exceptions import ValidationError
from ..utils.logging import get_logger

bp = Blueprint("assembly", __name__, url_prefix="/assembly")
logger = get_logger(__name__)


def init_app(api_bp: Blueprint) -> None:
    api_bp.register_blueprint(bp)


def _template_bytes() -> bytes:
    upload = request.files.get("template")
    if upload is None:
        raise ValidationError(["template file is required"])
    return upload.read()


def _json_field(name: str, required: bool = False) -> Dict[str, Any]:
    raw = request.form.get(name)
    if raw is None:
        if required:
            raise ValidationError([f"{name} is required"])
        return {}
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ValidationError([f"{name} is not valid JSON: {exc}"]) from exc
    if not isinstance(payload, dict):
        raise ValidationError([f"{name} must be a JSON object"])
    return payload


def _open_template(template: bytes) -> fitz.Document:
    try:
        return fitz.open(stream=template, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise ValidationError([f"template could not be opened: {exc}"]) from exc


@bp.post("")
def assemble_document():
    """Assemble a quote document; ``?format=pdf`` returns the artifact itself."""
    template = _template_bytes()
    quote = _json_field("quote", required=True)
    base = AssemblyOptions.from_config(current_app.config)
    options = AssemblyOptions.from_dict(_json_field("options"), base=base)

    result = AssemblyOrchestrator(options=base).run(template, quote, options)

    if request.args.get("format") == "pdf":
        if not result.success or result.artifact is None:
            return jsonify(result.to_dict()), HTTPStatus.UNPROCESSABLE_ENTITY
        return send_file(
            io.BytesIO(result.artifact),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=request.args.get("filename") or "assembled-quote.pdf",
        )

    status = HTTPStatus.OK if result.success else HTTPStatus.UNPROCESSABLE_ENTITY
    return jsonify(result.to_dict()), status


@bp.post("/fields")
def inspect_fields():
    doc = _open_template(_template_bytes())
    try:
        fields = describe_fields(doc)
    finally:
        doc.close()
    return jsonify({
        "fields": [info.to_dict() for info in fields],
        "statistics": field_statistics(fields),
    })


@bp.post("/tokens")
def inspect_tokens():
    options = AssemblyOptions.from_dict(
        _json_field("options"), base=AssemblyOptions.from_config(current_app.config)
    )
    doc = _open_template(_template_bytes())
    try:
        service = TokenReplacementService(options.token_patterns, options.line_tolerance)
        report = service.find_matches(doc)
    finally:
        doc.close()
    logger.info("token inspection", matches=len(report.matches))
    return jsonify({
        "tokens": [match.to_dict() for match in report.matches],
        "warnings": report.warning_messages(),
        "statistics": token_statistics(report.matches),
    })
