#!/usr/bin/env python3
"""Assemble a quote document from a template PDF and a quote JSON file."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import orjson

sys.path.insert(0, str(Path(__file__).parent.parent))

from quote_assembler.services.pipeline.models import AssemblyOptions
from quote_assembler.services.pipeline.pipeline_orchestrator import AssemblyOrchestrator
from quote_assembler.utils.exceptions import ValidationError
from quote_assembler.utils.logging import configure_logging


def load_json(path: Path) -> dict:
    if not path.exists():
        raise SystemExit(f"Could not find {path}")
    payload = orjson.loads(path.read_bytes())
    if not isinstance(payload, dict):
        raise SystemExit(f"{path} must contain a JSON object")
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("template", type=Path, help="Template PDF with placeholders or form fields")
    parser.add_argument("quote", type=Path, help="Quote JSON (flat or configuration/calculation form)")
    parser.add_argument("output", type=Path, help="Where to write the assembled PDF")
    parser.add_argument("--options", type=Path, default=None, help="Optional assembly options JSON")
    parser.add_argument("--report", type=Path, default=None, help="Write the run report JSON here")
    parser.add_argument("--summary", type=Path, default=None, help="Also write the generated quote summary PDF")
    args = parser.parse_args()

    configure_logging()

    template = args.template.read_bytes()
    quote = load_json(args.quote)
    options = AssemblyOptions.from_dict(load_json(args.options)) if args.options else AssemblyOptions()

    try:
        result = AssemblyOrchestrator(options=options).run(template, quote)
    except ValidationError as exc:
        for error in exc.errors:
            print(f"invalid input: {error}", file=sys.stderr)
        return 2

    if args.report:
        args.report.write_text(result.to_json())

    for step in result.steps:
        marker = "ok" if step.success else "FAILED"
        print(f"  {step.stage:<30} {marker:<7} {step.duration_ms:8.1f} ms")
    for warning in result.warnings:
        print(f"  warning: {warning}")

    if not result.success:
        print(f"Assembly failed: {result.error}", file=sys.stderr)
        return 1

    args.output.write_bytes(result.artifact)
    if args.summary and result.secondary_artifact:
        args.summary.write_bytes(result.secondary_artifact)
    stats = result.statistics()
    print(f"Wrote {args.output} ({len(result.artifact)} bytes, {stats['success_rate']} stages succeeded)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
