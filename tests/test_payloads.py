# tests/test_payloads.py
"""
Test suite for stored payload decoding
"""

import pytest

from autoship.errors import CollaboratorFailure
from autoship.models.task import Stage, RiskLevel
from autoship.payloads import (
    DeployOutput,
    ErrorInfo,
    ObservationOutput,
    PollSample,
    decode_plan,
    decode_stage_output,
    dump,
    output_type_for,
)

from conftest import low_risk_plan


class TestDecodeStageOutput:

    def test_every_stage_has_a_type(self):
        for stage in Stage:
            assert output_type_for(stage) is not None

    def test_decodes_stored_observation(self):
        stored = dump(ObservationOutput(
            environment="production",
            window_seconds=900,
            polls=[PollSample(elapsed_seconds=30, error_rate=0.2)],
            error=ErrorInfo(error_code="X", message="y"),
        ))

        output = decode_stage_output("observing_production", stored)

        assert isinstance(output, ObservationOutput)
        assert output.polls[0].error_rate == 0.2
        assert output.error.error_code == "X"

    def test_missing_output_decodes_to_defaults(self):
        output = decode_stage_output(Stage.RESEARCH, None)
        assert output.research is None
        assert output.interrupted is False

    def test_unknown_stage(self):
        with pytest.raises(CollaboratorFailure):
            decode_stage_output("succeeded", {})

    def test_unsupported_version(self):
        with pytest.raises(CollaboratorFailure) as exc:
            decode_stage_output(Stage.RESEARCH, {"version": 2})
        assert "Unsupported output version" in exc.value.message

    @pytest.mark.parametrize("stage,data", [
        (Stage.RESEARCH, {"unexpected": True}),
        (Stage.DEPLOYING_STAGING, {"artifact": "develop@abc"}),
        (Stage.TESTING, {"passed": "maybe"}),
    ])
    def test_malformed_output(self, stage, data):
        with pytest.raises(CollaboratorFailure) as exc:
            decode_stage_output(stage, data)
        assert exc.value.collaborator == "payloads"

    def test_non_object_output(self):
        with pytest.raises(CollaboratorFailure):
            decode_stage_output(Stage.PLANNING, ["plan"])

    def test_deploy_output_requires_environment(self):
        stored = dump(DeployOutput(environment="staging", strategy="git-pull"))
        assert decode_stage_output(Stage.DEPLOYING_STAGING, stored).environment == "staging"


class TestDecodePlan:

    def test_round_trips_stored_plan(self):
        plan = decode_plan(dump(low_risk_plan(risk_level=RiskLevel.MEDIUM)))
        assert plan.risk_level == RiskLevel.MEDIUM
        assert plan.version == 1

    @pytest.mark.parametrize("data", [
        None,
        "a plan",
        {"version": 3, "summary": "x", "risk_level": "low"},
        {"summary": "Fix it", "risk_level": "catastrophic"},
        {"summary": " ", "risk_level": "low"},
    ])
    def test_rejects_unusable_plan(self, data):
        with pytest.raises(CollaboratorFailure):
            decode_plan(data)
