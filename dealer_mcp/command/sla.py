"""First-response SLA alerts and per-thread channel SLA states."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable

from dealer_mcp.forecast import half_up
from dealer_mcp.normalization import ensure_aware, parse_iso_datetime, to_iso
from dealer_mcp.policy import DEFAULT_SLA_POLICY, SlaPolicy

SLA_ALERT_REASON = "No first response within 5-minute target."


def lead_display_name(lead: dict[str, Any]) -> str:
    return f"{lead.get('first_name', '')} {lead.get('last_name', '')}".strip()


def severity_for_wait(minutes_waiting: float, policy: SlaPolicy = DEFAULT_SLA_POLICY) -> str:
    if minutes_waiting >= policy.critical_after_minutes:
        return "critical"
    if minutes_waiting >= policy.high_after_minutes:
        return "high"
    return "medium"


def build_sla_alerts(
    leads: Iterable[dict[str, Any]],
    *,
    now: datetime,
    policy: SlaPolicy = DEFAULT_SLA_POLICY,
) -> list[dict[str, Any]]:
    """Alerts for uncontacted leads, only while the showroom is open.

    Outside business hours the list is always empty.  Sorted by minutes
    waited, longest first.
    """
    now = ensure_aware(now)
    if not policy.business_hours.is_open(now):
        return []

    alerts: list[dict[str, Any]] = []
    for lead in leads:
        if lead.get("first_contact_at"):
            continue
        created_at = parse_iso_datetime(lead.get("created_at"))
        if created_at is None:
            continue
        minutes_waiting = half_up((now - created_at).total_seconds() / 60)
        if minutes_waiting < policy.min_wait_minutes:
            continue
        alerts.append({
            "lead_id": lead["id"],
            "lead_name": lead_display_name(lead),
            "minutes_waiting": minutes_waiting,
            "severity": severity_for_wait(minutes_waiting, policy),
            "reason": SLA_ALERT_REASON,
        })

    alerts.sort(key=lambda alert: alert["minutes_waiting"], reverse=True)
    return alerts


def build_channel_sla_states(
    threads: Iterable[dict[str, Any]],
    leads: Iterable[dict[str, Any]],
    *,
    now: datetime,
    policy: SlaPolicy = DEFAULT_SLA_POLICY,
) -> list[dict[str, Any]]:
    """First-response state per conversation thread, ignoring business hours.

    Threads whose lead is unknown are skipped.
    """
    now = ensure_aware(now)
    leads_by_id = {lead["id"]: lead for lead in leads}
    target = timedelta(minutes=policy.first_response_target_minutes)

    states: list[dict[str, Any]] = []
    for thread in threads:
        lead = leads_by_id.get(thread.get("lead_id"))
        if lead is None:
            continue
        created_at = parse_iso_datetime(lead.get("created_at"))
        if created_at is None:
            continue
        due_at = created_at + target
        minutes_open = max(0, half_up((now - created_at).total_seconds() / 60))
        breached = not lead.get("first_contact_at") and now > due_at
        states.append({
            "thread_id": thread["id"],
            "lead_id": lead["id"],
            "owner": thread.get("assigned_rep"),
            "location": thread.get("location") or lead.get("location_intent"),
            "channel": thread.get("channel"),
            "first_response_due_at": to_iso(due_at),
            "breached_at": to_iso(now) if breached else None,
            "minutes_open": minutes_open,
            "is_breached": breached,
            "severity": severity_for_wait(minutes_open, policy) if breached else "none",
        })

    states.sort(key=lambda state: state["minutes_open"], reverse=True)
    return states
