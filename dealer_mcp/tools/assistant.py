"""AI follow-up text suggestions.

The language model output is passed back verbatim; nothing here inspects it.
"""

from __future__ import annotations

from typing import Any

from cip_protocol import CIP, run_tool_with_orchestration

from dealer_mcp.data.crm import find_opportunity_for_lead, load_snapshot
from dealer_mcp.pipeline.stage_gate import has_sms_consent

_CHANNELS = ("sms", "email", "phone")


async def suggest_follow_up_text_impl(
    cip: CIP,
    *,
    lead_id: str,
    channel: str = "sms",
    goal: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Draft a follow-up message for a lead from a short CRM context."""
    if not lead_id.strip():
        return "Lead ID is required."
    if channel not in _CHANNELS:
        return f"Error: channel must be one of: {', '.join(_CHANNELS)}."

    snapshot = load_snapshot()
    lead = snapshot.lead_by_id().get(lead_id.strip())
    if lead is None:
        return f"Lead '{lead_id}' not found."

    opportunity = find_opportunity_for_lead(lead["id"])
    upcoming = [
        {"vehicle_label": a.get("vehicle_label"), "starts_at": a.get("starts_at"),
         "status": a.get("status")}
        for a in snapshot.appointments
        if a.get("lead_id") == lead["id"] and a.get("status") in {"booked", "confirmed"}
    ]
    data_context: dict[str, Any] = {
        "channel": channel,
        "goal": goal or "re-engage and book the next step",
        "lead": {
            "first_name": lead.get("first_name"),
            "status": lead.get("status"),
            "urgency": lead.get("urgency"),
            "location": lead.get("location_intent"),
            "clicked_vehicle": lead.get("clicked_vehicle"),
            "last_contact_at": lead.get("last_contact_at"),
            "has_trade_in": lead.get("has_trade_in"),
        },
        "stage": opportunity.get("stage") if opportunity else None,
        "upcoming_appointments": upcoming,
        "sms_consent": has_sms_consent(lead["id"], snapshot.consent_events),
    }
    user_input = (
        f"Draft a short {channel} follow-up for {lead.get('first_name', 'the customer')}"
        + (f" to {goal}" if goal else "")
    )
    return await run_tool_with_orchestration(
        cip,
        user_input=user_input,
        tool_name="suggest_follow_up_text",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )
