"""Opportunity stage-gate validation.

The gate does not enforce linear stage order.  It only checks the
preconditions attached to specific *target* stages, and reports every
unmet precondition rather than stopping at the first one.
"""

from __future__ import annotations

from typing import Any, Iterable

from dealer_mcp.constants import CHECKLIST_FLAGS, PIPELINE_STAGES

QUOTE_REQUIRED_REASON = "Quote must be shared before entering negotiating stage."
DOCS_REQUIRED_REASON = "Documents must be requested before financing review."
CONSENT_REQUIRED_REASON = "SMS consent verification is required before financing review."
CLOSE_REQUIREMENTS_REASON = "Cannot mark closed won until quote and documents are complete."


def empty_checklist() -> dict[str, bool]:
    return {flag: False for flag in CHECKLIST_FLAGS}


def merge_checklist(
    current: dict[str, Any] | None,
    updates: dict[str, bool | None],
) -> dict[str, bool]:
    """Apply checklist updates monotonically: flags can be set, never cleared."""
    merged = empty_checklist()
    for flag in CHECKLIST_FLAGS:
        merged[flag] = bool((current or {}).get(flag, False))
    for flag, value in updates.items():
        if flag not in merged:
            raise ValueError(f"Unknown checklist flag: {flag}")
        if value:
            merged[flag] = True
    return merged


def has_sms_consent(lead_id: str, consent_events: Iterable[dict[str, Any]]) -> bool:
    return any(
        event.get("lead_id") == lead_id
        and event.get("channel") == "sms"
        and event.get("consented") is True
        for event in consent_events
    )


def validate_stage_transition(
    opportunity: dict[str, Any],
    target_stage: str,
    consent_events: Iterable[dict[str, Any]] = (),
) -> dict[str, Any]:
    """Return ``{"allowed": bool, "reasons": [...]}`` for a requested move.

    Pure: nothing is written.  The caller mutates the stage only when
    ``allowed`` is true.
    """
    if target_stage not in PIPELINE_STAGES:
        raise ValueError(
            f"Unknown pipeline stage '{target_stage}'. "
            f"Expected one of: {', '.join(PIPELINE_STAGES)}."
        )

    checklist = opportunity.get("checklist") or {}
    reasons: list[str] = []

    if target_stage == "negotiating" and not checklist.get("quote_shared"):
        reasons.append(QUOTE_REQUIRED_REASON)

    if target_stage == "financing_review":
        if not checklist.get("docs_requested"):
            reasons.append(DOCS_REQUIRED_REASON)
        consent_ok = bool(checklist.get("consent_verified")) and has_sms_consent(
            opportunity.get("lead_id", ""), consent_events,
        )
        if not consent_ok:
            reasons.append(CONSENT_REQUIRED_REASON)

    if target_stage == "closed_won" and not (
        checklist.get("quote_shared") and checklist.get("docs_requested")
    ):
        reasons.append(CLOSE_REQUIREMENTS_REASON)

    return {"allowed": not reasons, "reasons": reasons}
