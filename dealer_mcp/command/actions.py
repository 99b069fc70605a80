"""Command-centre action ranking, metrics, and the morning brief.

Every lead is checked against three independent rule families (hot
uncontacted, deal at risk, follow-up overdue) and every available unit
against the aging-inventory rule.  The pooled actions are scored and
re-ranked globally so a critical action is never starved by a lower-value
one.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Iterable

from dealer_mcp.command.sla import lead_display_name
from dealer_mcp.constants import DEAL_RISK_STATUSES, FOLLOW_UP_STATUSES
from dealer_mcp.forecast import build_revenue_forecast, half_up, lead_expected_value
from dealer_mcp.normalization import ensure_aware, parse_iso_datetime, to_iso
from dealer_mcp.policy import (
    DEFAULT_COMMAND_POLICY,
    DEFAULT_FORECAST_POLICY,
    CommandPolicy,
    ForecastPolicy,
)

logger = logging.getLogger(__name__)

HOT_LEAD_REASON = "Hot lead has no first contact and is at risk of going cold."
FOLLOW_UP_REASON = "Lead has gone more than 24h without follow-up."
AGING_INVENTORY_REASON = "Aging inventory needs pricing, placement, or merchandising action."
UPCOMING_APPOINTMENT_STATUSES = frozenset({"booked", "confirmed", "rescheduled"})


# ── Formatting helpers ──────────────────────────────────────────────


def format_currency(value: float) -> str:
    """Whole-dollar USD, e.g. ``$42,500``."""
    if value < 0:
        return f"-${abs(value):,.0f}"
    return f"${value:,.0f}"


def due_label(due_at: datetime, now: datetime) -> str:
    delta_hours = (due_at - now).total_seconds() / 3600
    if delta_hours <= 0:
        return "Due now"
    if delta_hours <= 24:
        return f"Due in {math.ceil(delta_hours)}h"
    delta_days = delta_hours / 24
    if delta_days <= 7:
        return f"Due in {math.ceil(delta_days)}d"
    return f"Due {due_at.strftime('%b')} {due_at.day}"


def _lead_subtitle(lead: dict[str, Any]) -> str:
    # Only the first underscore becomes a space ("FINANCING REVIEW", "CLOSED WON").
    status = str(lead.get("status", "")).replace("_", " ", 1)
    return f"{status.upper()} • Score {lead.get('lead_score') or 0}"


# ── Scoring ─────────────────────────────────────────────────────────


def urgency_weight(
    due_at: datetime,
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> float:
    delta_hours = (due_at - now).total_seconds() / 3600
    for max_hours, weight in policy.urgency_bands:
        if delta_hours <= max_hours:
            return weight
    return 0.0


def score_action(
    severity: str,
    expected_value: float,
    due_at: datetime,
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> int:
    """``severity_weight + min(value / 1000, 25) + urgency_weight``, rounded."""
    value_weight = min((expected_value or 0) / policy.value_divisor, policy.value_weight_cap)
    total = (
        policy.severity_weights[severity]
        + value_weight
        + urgency_weight(due_at, now, policy)
    )
    return half_up(total)


# ── Rule predicates ─────────────────────────────────────────────────


def is_hot_lead_uncontacted(
    lead: dict[str, Any],
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> bool:
    created_at = parse_iso_datetime(lead.get("created_at"))
    if created_at is None:
        return False
    if (lead.get("lead_score") or 0) < policy.hot_lead_min_score:
        return False
    if lead.get("first_contact_at"):
        return False
    return now - created_at > policy.hot_lead_grace


def deal_risk_gaps(
    lead: dict[str, Any],
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> list[str]:
    """Every missing condition that puts a late-stage deal at risk, in order."""
    if lead.get("status") not in DEAL_RISK_STATUSES:
        return []
    created_at = parse_iso_datetime(lead.get("created_at"))
    gaps: list[str] = []
    if not lead.get("deal_value"):
        gaps.append("deal value")
    if parse_iso_datetime(lead.get("last_contact_at")) is None:
        gaps.append("recent follow-up")
    if created_at is not None and now - created_at > policy.deal_risk_max_age:
        gaps.append("fresh activity")
    return gaps


def is_deal_at_risk(
    lead: dict[str, Any],
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> bool:
    return bool(deal_risk_gaps(lead, now, policy))


def last_touch(lead: dict[str, Any]) -> datetime | None:
    for key in ("last_contact_at", "first_contact_at", "created_at"):
        parsed = parse_iso_datetime(lead.get(key))
        if parsed is not None:
            return parsed
    return None


def is_follow_up_overdue(
    lead: dict[str, Any],
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> bool:
    if lead.get("status") not in FOLLOW_UP_STATUSES:
        return False
    touched = last_touch(lead)
    if touched is None:
        return False
    return now - touched > policy.follow_up_after


def is_aging_unit(unit: dict[str, Any], policy: CommandPolicy = DEFAULT_COMMAND_POLICY) -> bool:
    return (
        unit.get("status") == "available"
        and (unit.get("days_in_inventory") or 0) >= policy.aging_inventory_days
    )


# ── Action builders ─────────────────────────────────────────────────


def _make_action(
    *,
    action_id: str,
    lead_id: str | None,
    title: str,
    subtitle: str,
    reason: str,
    severity: str,
    action_kind: str,
    action_label: str,
    label: str,
    due_at: datetime,
    expected_value: float,
    now: datetime,
    policy: CommandPolicy,
) -> dict[str, Any]:
    return {
        "id": action_id,
        "lead_id": lead_id,
        "title": title,
        "subtitle": subtitle,
        "reason": reason,
        "severity": severity,
        "action_kind": action_kind,
        "action_label": action_label,
        "due_label": label,
        "due_at": to_iso(due_at),
        "expected_value": expected_value,
        "impact_score": score_action(severity, expected_value, due_at, now, policy),
    }


def _lead_actions(
    lead: dict[str, Any],
    now: datetime,
    policy: CommandPolicy,
) -> list[tuple[dict[str, Any], datetime]]:
    created_at = parse_iso_datetime(lead.get("created_at")) or now
    expected_value = lead_expected_value(lead)
    title = lead_display_name(lead)
    subtitle = _lead_subtitle(lead)
    high_urgency = lead.get("urgency") == "high"
    results: list[tuple[dict[str, Any], datetime]] = []

    if is_hot_lead_uncontacted(lead, now, policy):
        due_at = created_at + policy.hot_lead_grace
        results.append((_make_action(
            action_id=f"hot-uncontacted-{lead['id']}",
            lead_id=lead["id"],
            title=title,
            subtitle=subtitle,
            reason=HOT_LEAD_REASON,
            severity="critical" if high_urgency else "high",
            action_kind="call",
            action_label="Call",
            label=due_label(due_at, now),
            due_at=due_at,
            expected_value=expected_value,
            now=now,
            policy=policy,
        ), due_at))

    gaps = deal_risk_gaps(lead, now, policy)
    if gaps:
        last_contact = parse_iso_datetime(lead.get("last_contact_at"))
        due_at = last_contact + policy.deal_risk_follow_up if last_contact else now
        in_financing = lead.get("status") == "financing_review"
        results.append((_make_action(
            action_id=f"deal-risk-{lead['id']}",
            lead_id=lead["id"],
            title=title,
            subtitle=f"{subtitle} • {format_currency(expected_value)}",
            reason=f"Deal near close is missing {', '.join(gaps)}.",
            severity="critical",
            action_kind="docs" if in_financing else "assignment",
            action_label="Request Documents" if in_financing else "Reassign",
            label=due_label(due_at, now),
            due_at=due_at,
            expected_value=expected_value,
            now=now,
            policy=policy,
        ), due_at))

    if is_follow_up_overdue(lead, now, policy):
        due_at = (last_touch(lead) or created_at) + policy.follow_up_after
        results.append((_make_action(
            action_id=f"followup-overdue-{lead['id']}",
            lead_id=lead["id"],
            title=title,
            subtitle=subtitle,
            reason=FOLLOW_UP_REASON,
            severity="high" if high_urgency else "medium",
            action_kind="sms",
            action_label="Send AI Text",
            label=due_label(due_at, now),
            due_at=due_at,
            expected_value=expected_value,
            now=now,
            policy=policy,
        ), due_at))

    return results


def _inventory_action(
    unit: dict[str, Any],
    now: datetime,
    policy: CommandPolicy,
) -> tuple[dict[str, Any], datetime]:
    days = int(unit.get("days_in_inventory") or 0)
    due_at = now + policy.inventory_due_in
    expected_value = float(unit.get("list_price") or 0)
    severity = "medium" if days >= policy.aging_inventory_medium_days else "admin"
    title = f"{unit.get('year', '')} {unit.get('make', '')} {unit.get('model', '')}".strip()
    action = _make_action(
        action_id=f"inventory-risk-{unit['id']}",
        lead_id=None,
        title=title,
        subtitle=f"{format_currency(expected_value)} • {days} days in stock",
        reason=AGING_INVENTORY_REASON,
        severity=severity,
        action_kind="status_update",
        action_label="Open Inventory",
        label=f"{days} days in stock",
        due_at=due_at,
        expected_value=expected_value,
        now=now,
        policy=policy,
    )
    return action, due_at


def build_command_actions(
    leads: Iterable[dict[str, Any]],
    inventory: Iterable[dict[str, Any]] = (),
    *,
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
) -> list[dict[str, Any]]:
    """Ranked next-best-actions across the whole lead book and lot.

    Ordering: ``impact_score`` descending, then due date ascending.  Input
    order breaks any remaining ties, so identical inputs always produce the
    identical list.
    """
    now = ensure_aware(now)
    scored: list[tuple[dict[str, Any], datetime]] = []
    for lead in leads:
        scored.extend(_lead_actions(lead, now, policy))
    for unit in inventory:
        if is_aging_unit(unit, policy):
            scored.append(_inventory_action(unit, now, policy))

    scored.sort(key=lambda pair: (-pair[0]["impact_score"], pair[1]))
    logger.debug("Ranked %d command actions", len(scored))
    return [action for action, _ in scored]


# ── Metrics + morning brief ─────────────────────────────────────────


def count_upcoming_appointments(
    appointments: Iterable[dict[str, Any]],
    *,
    now: datetime,
    days: int = 7,
) -> int:
    now = ensure_aware(now)
    horizon = now + timedelta(days=days)
    count = 0
    for appointment in appointments:
        if appointment.get("status") not in UPCOMING_APPOINTMENT_STATUSES:
            continue
        starts_at = parse_iso_datetime(appointment.get("starts_at"))
        if starts_at is not None and now <= starts_at <= horizon:
            count += 1
    return count


def build_command_metrics(
    leads: Iterable[dict[str, Any]],
    inventory: Iterable[dict[str, Any]] = (),
    appointments: Iterable[dict[str, Any]] = (),
    *,
    now: datetime,
    policy: CommandPolicy = DEFAULT_COMMAND_POLICY,
    forecast_policy: ForecastPolicy = DEFAULT_FORECAST_POLICY,
) -> list[dict[str, Any]]:
    """Headline tiles: upcoming appointments, deals at risk, gross this month."""
    now = ensure_aware(now)
    leads = list(leads)
    aging_units = sum(1 for unit in inventory if is_aging_unit(unit, policy))
    deals_at_risk = sum(1 for lead in leads if is_deal_at_risk(lead, now, policy))
    forecast = build_revenue_forecast(leads, now=now, policy=forecast_policy)

    return [
        {
            "id": "appointments_7d",
            "label": "Appointments Next 7 Days",
            "value": str(count_upcoming_appointments(appointments, now=now)),
            "helper": f"{aging_units} aging units need inventory attention",
        },
        {
            "id": "deals_at_risk",
            "label": "Deals At Risk",
            "value": str(deals_at_risk),
            "helper": "Deals in negotiating or financing review missing key progress",
        },
        {
            "id": "gross_month",
            "label": "Expected Gross This Month",
            "value": format_currency(forecast["this_month"]),
            "helper": "Closed won + weighted active pipeline forecast",
        },
    ]


def build_morning_brief(
    actions: list[dict[str, Any]],
    metrics: list[dict[str, Any]],
) -> dict[str, Any]:
    top = actions[0] if actions else None
    critical = sum(1 for action in actions if action["severity"] == "critical")
    high = sum(1 for action in actions if action["severity"] == "high")
    metrics_by_id = {metric["id"]: metric for metric in metrics}
    risk = metrics_by_id.get("deals_at_risk")
    gross = metrics_by_id.get("gross_month")

    if top is not None:
        headline = f"Focus first on {top['title']}. {top['reason']}"
        footer = f"Primary focus: {top['action_label']} for {top['title']}."
    else:
        headline = "No urgent blockers detected. Keep momentum with proactive follow-up."
        footer = "Use this window to clean stale statuses and schedule upcoming test drives."

    return {
        "headline": headline,
        "bullets": [
            f"{critical} critical and {high} high-priority actions are currently in queue.",
            f"{risk['value'] if risk else '0'} deals are in at-risk stages "
            "and need immediate movement.",
            f"{gross['label'] if gross else 'Expected Gross'} is tracking at "
            f"{gross['value'] if gross else '$0'}.",
        ],
        "primary_action_id": top["id"] if top else None,
        "footer": footer,
    }
