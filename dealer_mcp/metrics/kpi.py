"""Operational KPI aggregation.

Total over empty input: every metric is 0 when its denominator is empty.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from dealer_mcp.constants import (
    APPOINTMENT_OUTCOME_STATUSES,
    APPOINTMENT_SET_STAGES,
    FINANCE_COMPLETE_STATUSES,
)
from dealer_mcp.forecast import half_up
from dealer_mcp.normalization import ensure_aware, parse_iso_datetime


def safe_percent(numerator: float, denominator: float) -> float:
    """Percent with one decimal place; 0 for a zero denominator."""
    if not denominator:
        return 0
    return half_up(numerator / denominator * 1000) / 10


def round1(value: float) -> float:
    return half_up(value * 10) / 10


def median(values: Iterable[float]) -> float:
    """Middle value; an even-length set averages the middle pair to one decimal."""
    ordered = sorted(values)
    if not ordered:
        return 0
    half = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return ordered[half]
    return round1((ordered[half - 1] + ordered[half]) / 2)


def response_minutes(leads: Iterable[dict[str, Any]]) -> list[float]:
    """Minutes from creation to first contact, clamped at 0, for contacted leads."""
    minutes: list[float] = []
    for lead in leads:
        first_contact = parse_iso_datetime(lead.get("first_contact_at"))
        created_at = parse_iso_datetime(lead.get("created_at"))
        if first_contact is None or created_at is None:
            continue
        minutes.append(max(0.0, (first_contact - created_at).total_seconds() / 60))
    return minutes


def build_operational_kpis(
    leads: Iterable[dict[str, Any]],
    opportunities: Iterable[dict[str, Any]] = (),
    appointments: Iterable[dict[str, Any]] = (),
    finance_applications: Iterable[dict[str, Any]] = (),
    *,
    now: datetime,
) -> dict[str, float]:
    now = ensure_aware(now)
    leads = list(leads)
    appointments = list(appointments)
    finance_applications = list(finance_applications)

    lead_ids = {lead["id"] for lead in leads}
    appointment_set_leads = {
        opportunity.get("lead_id")
        for opportunity in opportunities
        if opportunity.get("stage") in APPOINTMENT_SET_STAGES
        and opportunity.get("lead_id") in lead_ids
    }

    contacted = sum(1 for lead in leads if lead.get("first_contact_at"))
    showed = sum(1 for appt in appointments if appt.get("status") == "showed")
    show_denominator = sum(
        1 for appt in appointments if appt.get("status") in APPOINTMENT_OUTCOME_STATUSES
    )
    sold = [lead for lead in leads if lead.get("status") == "closed_won"]
    finance_complete = sum(
        1 for app in finance_applications if app.get("status") in FINANCE_COMPLETE_STATUSES
    )

    close_ages: list[float] = []
    for lead in sold:
        created_at = parse_iso_datetime(lead.get("created_at"))
        if created_at is not None:
            close_ages.append((now - created_at).total_seconds() / 86400)

    return {
        "time_to_first_response_minutes": median(response_minutes(leads)),
        "contact_rate_percent": safe_percent(contacted, len(leads)),
        "appointment_set_rate_percent": safe_percent(len(appointment_set_leads), len(leads)),
        "show_rate_percent": safe_percent(showed, show_denominator),
        "sold_rate_percent": safe_percent(len(sold), len(leads)),
        "finance_completion_percent": safe_percent(finance_complete, len(finance_applications)),
        "avg_days_to_close": round1(sum(close_ages) / len(close_ages)) if close_ages else 0,
    }
