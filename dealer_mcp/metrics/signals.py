"""Per-record signal scores: lead intent, finance readiness, show probability,
and deal decay risk.  Each score is an integer clamped to 0..100."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from cip_protocol.engagement.scoring import LeadScoringConfig, lead_score_band

from dealer_mcp.forecast import half_up
from dealer_mcp.normalization import ensure_aware, parse_iso_datetime

# Only the band table is used; intent is not derived from engagement events.
INTENT_BAND_CONFIG = LeadScoringConfig(
    action_weights={},
    status_thresholds=[],
    recency_bands=[],
    score_bands=[
        (80, "hot"),
        (60, "warm"),
        (0, "cold"),
    ],
    terminal_statuses=frozenset({"closed_won", "closed_lost"}),
)

SOURCE_INTENT_WEIGHTS: dict[str, int] = {"website_form": 10, "phone": 8}
DEFAULT_SOURCE_INTENT_WEIGHT = 6
TRADE_IN_WEIGHT = 8

DECAY_STAGES = frozenset({
    "appointment_set",
    "appointment_showed",
    "negotiating",
    "financing_review",
})
NEXT_BEST_ACTIONS: dict[str, str] = {
    "financing_review": "Call and collect missing documents now.",
    "negotiating": "Send revised payment terms and trade value today.",
}
DEFAULT_NEXT_BEST_ACTION = "Confirm appointment commitment and reminder cadence."


def _clamp(value: float) -> int:
    return int(max(0, min(100, value)))


def build_lead_intent_scores(leads: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    scores: list[dict[str, Any]] = []
    for lead in leads:
        base = lead.get("lead_score") or 0
        source_weight = SOURCE_INTENT_WEIGHTS.get(lead.get("source", ""), DEFAULT_SOURCE_INTENT_WEIGHT)
        trade_weight = TRADE_IN_WEIGHT if lead.get("has_trade_in") else 0
        score = min(100, half_up(base * 0.75 + source_weight + trade_weight))
        scores.append({
            "lead_id": lead["id"],
            "score": score,
            "band": lead_score_band(score, INTENT_BAND_CONFIG),
            "rationale": f"Base lead score {base} adjusted by source + trade-in signals.",
        })
    scores.sort(key=lambda s: s["score"], reverse=True)
    return scores


def build_finance_readiness_scores(
    applications: Iterable[dict[str, Any]],
) -> list[dict[str, Any]]:
    scores: list[dict[str, Any]] = []
    for application in applications:
        missing = list(application.get("missing_items") or [])
        completion = application.get("completion_percent") or 0
        status = application.get("status")
        bonus = 20 if status == "approved" else 10 if status == "submitted" else 0
        scores.append({
            "lead_id": application.get("lead_id"),
            "application_id": application.get("id"),
            "score": _clamp(completion + bonus - 7 * len(missing)),
            "rationale": f"{completion}% completion with {len(missing)} missing item(s).",
        })
    scores.sort(key=lambda s: s["score"], reverse=True)
    return scores


def build_show_probability_scores(
    appointments: Iterable[dict[str, Any]],
    *,
    now: datetime,
) -> list[dict[str, Any]]:
    now = ensure_aware(now)
    scores: list[dict[str, Any]] = []
    for appointment in appointments:
        starts_at = parse_iso_datetime(appointment.get("starts_at")) or now
        hours_until = (starts_at - now).total_seconds() / 3600
        status = appointment.get("status")
        status_weight = 20 if status == "confirmed" else 10 if status == "booked" else 0
        if hours_until <= 24:
            proximity = 18
        elif hours_until <= 48:
            proximity = 12
        else:
            proximity = 6
        scores.append({
            "appointment_id": appointment.get("id"),
            "lead_id": appointment.get("lead_id"),
            "score": _clamp(55 + status_weight + proximity),
            "rationale": (
                f"Status {status} and {max(0, half_up(hours_until))}h until appointment."
            ),
        })
    scores.sort(key=lambda s: s["score"], reverse=True)
    return scores


def build_deal_decay_scores(
    leads: Iterable[dict[str, Any]],
    opportunities: Iterable[dict[str, Any]] = (),
    finance_applications: Iterable[dict[str, Any]] = (),
    *,
    now: datetime,
) -> list[dict[str, Any]]:
    """Risk that an in-flight deal goes cold, with the drivers behind it."""
    now = ensure_aware(now)
    # Later records win, matching how the store lists them (insertion order).
    opportunity_by_lead = {opp.get("lead_id"): opp for opp in opportunities}
    finance_by_lead = {app.get("lead_id"): app for app in finance_applications}

    scores: list[dict[str, Any]] = []
    for lead in leads:
        status = lead.get("status")
        if status not in DECAY_STAGES:
            continue
        opportunity = opportunity_by_lead.get(lead["id"])
        finance = finance_by_lead.get(lead["id"])
        checklist = (opportunity or {}).get("checklist") or {}
        drivers: list[str] = []
        score = 25

        last_contact = (
            parse_iso_datetime(lead.get("last_contact_at"))
            or parse_iso_datetime(lead.get("created_at"))
            or now
        )
        stale_hours = (now - last_contact).total_seconds() / 3600
        if stale_hours > 24:
            score += 20
            drivers.append("No rep touch in over 24h")
        if stale_hours > 48:
            score += 15
            drivers.append("No rep touch in over 48h")
        if opportunity is not None and not checklist.get("quote_shared"):
            score += 15
            drivers.append("Quote not shared")
        if (
            opportunity is not None
            and not checklist.get("docs_requested")
            and status == "financing_review"
        ):
            score += 20
            drivers.append("Finance docs not requested")
        missing = list((finance or {}).get("missing_items") or [])
        if missing:
            score += min(20, len(missing) * 6)
            drivers.append(f"{len(missing)} finance item(s) missing")
        if lead.get("urgency") == "high":
            score += 10
            drivers.append("High urgency buyer")

        scores.append({
            "lead_id": lead["id"],
            "score": min(100, score),
            "drivers": drivers,
            "next_best_action": NEXT_BEST_ACTIONS.get(status, DEFAULT_NEXT_BEST_ACTION),
        })

    scores.sort(key=lambda s: s["score"], reverse=True)
    return scores
