"""Command-centre tools: ranked actions, SLA alerts, and the morning brief."""

from __future__ import annotations

from typing import Any

from cip_protocol import CIP, run_tool_with_orchestration

from dealer_mcp.command.actions import (
    build_command_actions,
    build_command_metrics,
    build_morning_brief,
)
from dealer_mcp.command.sla import build_channel_sla_states, build_sla_alerts
from dealer_mcp.config import sla_policy_from_env
from dealer_mcp.constants import ACTION_SEVERITIES, LOCATIONS
from dealer_mcp.data.crm import CrmSnapshot, load_snapshot
from dealer_mcp.normalization import to_iso
from dealer_mcp.tools.common import resolve_now, resolve_showroom_now, validate_limit


def _filter_by_location(snapshot: CrmSnapshot, location: str) -> CrmSnapshot:
    if not location:
        return snapshot
    leads = [lead for lead in snapshot.leads if lead.get("location_intent") == location]
    lead_ids = {lead["id"] for lead in leads}
    return CrmSnapshot(
        leads=leads,
        opportunities=[o for o in snapshot.opportunities if o.get("lead_id") in lead_ids],
        appointments=[a for a in snapshot.appointments if a.get("lead_id") in lead_ids],
        finance_applications=[
            f for f in snapshot.finance_applications if f.get("lead_id") in lead_ids
        ],
        consent_events=[c for c in snapshot.consent_events if c.get("lead_id") in lead_ids],
        inventory=snapshot.inventory,
        conversation_threads=[
            t for t in snapshot.conversation_threads if t.get("lead_id") in lead_ids
        ],
    )


def _location_error(location: str) -> str | None:
    if location and location not in LOCATIONS:
        return f"Error: location must be one of: {', '.join(LOCATIONS)}."
    return None


async def get_command_actions_impl(
    cip: CIP,
    *,
    limit: int = 20,
    severity: str = "",
    location: str = "",
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Return the ranked next-best-action queue across leads and inventory."""
    limit_error = validate_limit(limit, maximum=200)
    if limit_error:
        return limit_error
    if severity and severity not in ACTION_SEVERITIES:
        return f"Error: severity must be one of: {', '.join(ACTION_SEVERITIES)}."
    location_error = _location_error(location)
    if location_error:
        return location_error

    now = resolve_now(as_of)
    snapshot = _filter_by_location(load_snapshot(), location)
    actions = build_command_actions(snapshot.leads, snapshot.inventory, now=now)
    if severity:
        actions = [action for action in actions if action["severity"] == severity]

    data_context: dict[str, Any] = {
        "as_of": to_iso(now),
        "filters": {"limit": limit, "severity": severity, "location": location},
        "total_actions": len(actions),
        "actions": actions[:limit],
    }
    user_input = (
        f"Prioritize the top {min(limit, len(actions))} command-centre actions"
        + (f" at {location}" if location else "")
        + (f" with severity {severity}" if severity else "")
    )
    return await run_tool_with_orchestration(
        cip,
        user_input=user_input,
        tool_name="get_command_actions",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )


async def get_sla_alerts_impl(
    cip: CIP,
    *,
    location: str = "",
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Return first-response SLA alerts plus per-thread channel SLA states."""
    location_error = _location_error(location)
    if location_error:
        return location_error

    now = resolve_now(as_of)
    sla_policy = sla_policy_from_env()
    snapshot = _filter_by_location(load_snapshot(), location)
    alerts = build_sla_alerts(snapshot.leads, now=now, policy=sla_policy)
    channel_states = build_channel_sla_states(
        snapshot.conversation_threads, snapshot.leads, now=now, policy=sla_policy,
    )

    data_context: dict[str, Any] = {
        "as_of": to_iso(now),
        "business_hours_open": sla_policy.business_hours.is_open(now),
        "alert_count": len(alerts),
        "alerts": alerts,
        "channel_sla_states": channel_states,
    }
    user_input = (
        f"Review {len(alerts)} first-response SLA alert(s)"
        + (f" at {location}" if location else "")
        + " and say who needs a call first"
    )
    return await run_tool_with_orchestration(
        cip,
        user_input=user_input,
        tool_name="get_sla_alerts",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )


async def get_morning_brief_impl(
    cip: CIP,
    *,
    location: str = "",
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Return the morning brief: headline, bullets, metrics, and top actions."""
    location_error = _location_error(location)
    if location_error:
        return location_error

    now = resolve_showroom_now(as_of)
    snapshot = _filter_by_location(load_snapshot(), location)
    actions = build_command_actions(snapshot.leads, snapshot.inventory, now=now)
    metrics = build_command_metrics(
        snapshot.leads, snapshot.inventory, snapshot.appointments, now=now,
    )
    brief = build_morning_brief(actions, metrics)

    data_context: dict[str, Any] = {
        "as_of": to_iso(now),
        "brief": brief,
        "metrics": metrics,
        "top_actions": actions[:5],
    }
    user_input = "Deliver the morning brief" + (f" for {location}" if location else "")
    return await run_tool_with_orchestration(
        cip,
        user_input=user_input,
        tool_name="get_morning_brief",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )
