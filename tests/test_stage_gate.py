"""Stage-gate validation tests."""

from __future__ import annotations

import pytest

from dealer_mcp.constants import PIPELINE_STAGES
from dealer_mcp.pipeline.stage_gate import (
    CLOSE_REQUIREMENTS_REASON,
    CONSENT_REQUIRED_REASON,
    DOCS_REQUIRED_REASON,
    QUOTE_REQUIRED_REASON,
    has_sms_consent,
    merge_checklist,
    validate_stage_transition,
)

SMS_CONSENT = [{"lead_id": "L1", "channel": "sms", "consented": True}]


def _opportunity(stage: str = "contacted", **checklist) -> dict:
    flags = {"quote_shared": False, "docs_requested": False, "consent_verified": False}
    flags.update(checklist)
    return {"id": "O1", "lead_id": "L1", "stage": stage, "checklist": flags}


class TestValidateStageTransition:
    def test_financing_review_reports_every_gap(self):
        result = validate_stage_transition(
            _opportunity(quote_shared=True), "financing_review",
        )
        assert result["allowed"] is False
        assert result["reasons"] == [DOCS_REQUIRED_REASON, CONSENT_REQUIRED_REASON]

    def test_consent_flag_without_event_is_rejected(self):
        result = validate_stage_transition(
            _opportunity(docs_requested=True, consent_verified=True), "financing_review",
        )
        assert result == {"allowed": False, "reasons": [CONSENT_REQUIRED_REASON]}

    def test_consent_event_without_flag_is_rejected(self):
        result = validate_stage_transition(
            _opportunity(docs_requested=True), "financing_review", SMS_CONSENT,
        )
        assert result["reasons"] == [CONSENT_REQUIRED_REASON]

    def test_declined_or_other_lead_consent_does_not_count(self):
        events = [
            {"lead_id": "L1", "channel": "sms", "consented": False},
            {"lead_id": "L2", "channel": "sms", "consented": True},
            {"lead_id": "L1", "channel": "phone", "consented": True},
        ]
        result = validate_stage_transition(
            _opportunity(docs_requested=True, consent_verified=True), "financing_review", events,
        )
        assert result["allowed"] is False

    def test_financing_review_allowed(self):
        result = validate_stage_transition(
            _opportunity(docs_requested=True, consent_verified=True),
            "financing_review",
            SMS_CONSENT,
        )
        assert result == {"allowed": True, "reasons": []}

    def test_negotiating_needs_quote(self):
        assert validate_stage_transition(_opportunity(), "negotiating")["reasons"] == [
            QUOTE_REQUIRED_REASON,
        ]
        assert validate_stage_transition(
            _opportunity(quote_shared=True), "negotiating",
        )["allowed"] is True

    @pytest.mark.parametrize("current_stage", PIPELINE_STAGES)
    @pytest.mark.parametrize(
        "quote,docs,allowed",
        [(True, True, True), (True, False, False), (False, True, False), (False, False, False)],
    )
    def test_closed_won_depends_only_on_quote_and_docs(
        self, current_stage: str, quote: bool, docs: bool, allowed: bool
    ):
        result = validate_stage_transition(
            _opportunity(current_stage, quote_shared=quote, docs_requested=docs), "closed_won",
        )
        assert result["allowed"] is allowed
        if not allowed:
            assert result["reasons"] == [CLOSE_REQUIREMENTS_REASON]

    @pytest.mark.parametrize(
        "target", ["new", "contacted", "appointment_set", "appointment_showed", "closed_lost"],
    )
    def test_ungated_stages_always_allowed(self, target: str):
        assert validate_stage_transition(_opportunity("closed_won"), target)["allowed"] is True

    def test_unknown_stage_raises(self):
        with pytest.raises(ValueError, match="Unknown pipeline stage"):
            validate_stage_transition(_opportunity(), "delivered")

    def test_missing_checklist_treated_as_empty(self):
        result = validate_stage_transition({"id": "O1", "lead_id": "L1"}, "closed_won")
        assert result["allowed"] is False


class TestChecklist:
    def test_flags_are_never_cleared(self):
        merged = merge_checklist(
            {"quote_shared": True, "docs_requested": False, "consent_verified": False},
            {"quote_shared": False, "docs_requested": True, "consent_verified": None},
        )
        assert merged == {"quote_shared": True, "docs_requested": True, "consent_verified": False}

    def test_unknown_flag_rejected(self):
        with pytest.raises(ValueError, match="Unknown checklist flag"):
            merge_checklist(None, {"trade_appraised": True})

    def test_has_sms_consent(self):
        assert has_sms_consent("L1", SMS_CONSENT) is True
        assert has_sms_consent("L2", SMS_CONSENT) is False
