"""Opportunity pipeline tools: checklist evidence and gated stage moves."""

from __future__ import annotations

from dealer_mcp.constants import PIPELINE_STAGES
from dealer_mcp.data.crm import (
    find_opportunity_for_lead,
    transition_opportunity,
    update_checklist,
)
from dealer_mcp.data.store import RecordNotFoundError
from dealer_mcp.tools.common import resolve_now


def _resolve_opportunity_id(opportunity_id: str, lead_id: str) -> str | None:
    if opportunity_id.strip():
        return opportunity_id.strip()
    if lead_id.strip():
        opportunity = find_opportunity_for_lead(lead_id.strip())
        return opportunity["id"] if opportunity else None
    return None


def update_opportunity_checklist_impl(
    *,
    opportunity_id: str = "",
    lead_id: str = "",
    quote_shared: bool | None = None,
    docs_requested: bool | None = None,
    consent_verified: bool | None = None,
    as_of: str = "",
) -> str:
    """Mark checklist evidence on an opportunity.  Flags are never cleared."""
    if not opportunity_id.strip() and not lead_id.strip():
        return "Opportunity ID or lead ID is required."
    if not any((quote_shared, docs_requested, consent_verified)):
        return "Please set at least one checklist flag to true."
    resolved = _resolve_opportunity_id(opportunity_id, lead_id)
    if resolved is None:
        return f"No opportunity found for lead '{lead_id}'."
    try:
        opportunity = update_checklist(
            resolved,
            now=resolve_now(as_of),
            quote_shared=quote_shared,
            docs_requested=docs_requested,
            consent_verified=consent_verified,
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    flags = ", ".join(
        f"{name}={'yes' if value else 'no'}"
        for name, value in opportunity["checklist"].items()
    )
    return f"Checklist for opportunity {opportunity['id']}: {flags}."


def move_opportunity_stage_impl(
    *,
    target_stage: str,
    opportunity_id: str = "",
    lead_id: str = "",
    as_of: str = "",
) -> str:
    """Validate a stage move through the stage gates and apply it if allowed."""
    if target_stage not in PIPELINE_STAGES:
        return f"Error: target_stage must be one of: {', '.join(PIPELINE_STAGES)}."
    if not opportunity_id.strip() and not lead_id.strip():
        return "Opportunity ID or lead ID is required."
    resolved = _resolve_opportunity_id(opportunity_id, lead_id)
    if resolved is None:
        return f"No opportunity found for lead '{lead_id}'."
    try:
        outcome = transition_opportunity(resolved, target_stage, now=resolve_now(as_of))
    except RecordNotFoundError as exc:
        return f"Error: {exc}"

    if not outcome["allowed"]:
        lines = [f"Stage change to {target_stage} blocked for opportunity {resolved}:"]
        lines.extend(f"- {reason}" for reason in outcome["reasons"])
        return "\n".join(lines)
    return f"Moved opportunity {resolved} to {target_stage}."
