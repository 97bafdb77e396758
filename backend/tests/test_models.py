from __future__ import annotations

import pytest

from quote_assembler import config
from quote_assembler.services.pipeline.deadline import Deadline
from quote_assembler.services.pipeline.models import (
    AssemblyOptions,
    OverlayOptions,
    PipelineResult,
    PipelineStepResult,
    ReplacementOutcome,
    summarize_outcomes,
)
from quote_assembler.utils.exceptions import StageTimeoutError, ValidationError


def test_options_accept_camel_case_and_keep_base_values():
    base = AssemblyOptions(timeout_ms=5000, calibration_template="cloudfuze-standard")
    options = AssemblyOptions.from_dict(
        {
            "flattenForms": False,
            "lineTolerance": 3,
            "overlay": {"paddingUnits": 4, "clearRegion": True, "clearColor": "#ff0000"},
            "templateOptions": {"colorScheme": "purple", "companyName": "Northwind"},
        },
        base=base,
    )

    assert options.flatten_forms is False
    assert options.fill_forms is True
    assert options.timeout_ms == 5000
    assert options.line_tolerance == 3.0
    assert options.calibration_template == "cloudfuze-standard"
    assert options.overlay.padding == 4.0
    assert options.overlay.clear_region is True
    assert options.overlay.clear_color == (1.0, 0.0, 0.0)
    assert options.summary.theme == "purple"
    assert options.summary.vendor_name == "Northwind"


def test_overlay_defaults_leave_region_uncleared():
    options = OverlayOptions.from_dict(None)
    assert options.clear_region is False
    assert options.padding == 10.0
    assert options.fallback_region is None


@pytest.mark.parametrize("payload", [{"timeoutMs": -5}, {"timeoutMs": "soon"}])
def test_bad_timeouts_are_rejected(payload):
    with pytest.raises(ValidationError):
        AssemblyOptions.from_dict(payload)


def test_token_patterns_require_category_and_variants():
    with pytest.raises(ValidationError):
        AssemblyOptions.from_dict({"tokenPatterns": [{"category": "custom"}]})


def test_options_from_test_config():
    options = AssemblyOptions.from_config(config.config_as_mapping(config.TestConfig))
    assert options.timeout_ms == config.TestConfig.ASSEMBLY_TIMEOUT_MS
    assert options.summary.vendor_name == config.TestConfig.SUMMARY_DEFAULTS["vendor_name"]


def test_deadline_zero_budget_is_unlimited(fake_clock):
    deadline = Deadline(0, clock=fake_clock)
    fake_clock.advance(3600)
    deadline.check()
    assert deadline.remaining_ms() is None


def test_deadline_reports_stage(fake_clock):
    deadline = Deadline(100, clock=fake_clock)
    deadline.stage = "persist"
    fake_clock.advance(0.05)
    assert deadline.remaining_ms() == pytest.approx(50)
    fake_clock.advance(0.1)

    with pytest.raises(StageTimeoutError) as excinfo:
        deadline.check()
    assert excinfo.value.stage == "persist"
    assert "during 'persist'" in str(excinfo.value)


def test_statistics_for_partial_run():
    steps = (
        PipelineStepResult(stage="load", success=True, duration_ms=10.0, required=True),
        PipelineStepResult(stage="replace-tokens", success=False, duration_ms=30.0, error="boom"),
    )
    result = PipelineResult(success=True, steps=steps, total_duration_ms=45.0)
    stats = result.statistics()

    assert stats["total_steps"] == 2
    assert stats["failed_steps"] == 1
    assert stats["average_step_duration_ms"] == 20.0
    assert stats["success_rate"] == "50.0%"
    assert not result.timed_out


def test_summarize_outcomes_groups_by_method():
    outcomes = [
        ReplacementOutcome(token="{{company}}", replacement="Acme", success=True),
        ReplacementOutcome(token="{{users_cost}}", replacement="$5", success=True, method="calibration"),
        ReplacementOutcome(token="{{total price}}", replacement=None, success=False, reason="no value"),
    ]
    summary = summarize_outcomes(outcomes)

    assert summary["replaced"] == 2
    assert summary["by_method"] == {"geometric": 1, "calibration": 1}
    assert summary["failures"] == [{"token": "{{total price}}", "reason": "no value"}]
