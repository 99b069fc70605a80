"""Guarantee scorecard: live KPIs versus fixed baselines and target deltas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from dealer_mcp.metrics.kpi import round1
from dealer_mcp.normalization import to_iso
from dealer_mcp.policy import DEFAULT_SCORECARD_POLICY, GuaranteeTarget, ScorecardPolicy

# Guarantee key -> operational KPI field.
KPI_FIELDS: dict[str, str] = {
    "time_to_first_response": "time_to_first_response_minutes",
    "contact_rate": "contact_rate_percent",
    "appointment_set_rate": "appointment_set_rate_percent",
    "show_rate": "show_rate_percent",
    "finance_completion": "finance_completion_percent",
}


def oriented_delta(current: float, baseline: float, direction: str) -> float:
    """Positive means improvement regardless of direction."""
    if direction == "down":
        return baseline - current
    return current - baseline


def guarantee_status(
    current: float,
    target: GuaranteeTarget,
    policy: ScorecardPolicy = DEFAULT_SCORECARD_POLICY,
) -> str:
    delta = oriented_delta(current, target.baseline, target.direction)
    if delta >= target.target_delta:
        return "met"
    if delta >= target.target_delta * policy.on_track_ratio:
        return "on_track"
    return "at_risk"


def build_guarantee_snapshots(
    kpis: dict[str, float],
    policy: ScorecardPolicy = DEFAULT_SCORECARD_POLICY,
) -> list[dict[str, Any]]:
    snapshots: list[dict[str, Any]] = []
    for target in policy.targets:
        current = float(kpis.get(KPI_FIELDS.get(target.key, target.key), 0) or 0)
        snapshots.append({
            "key": target.key,
            "label": target.label,
            "baseline": round1(target.baseline),
            "current": round1(current),
            "delta": round1(oriented_delta(current, target.baseline, target.direction)),
            "target_delta": target.target_delta,
            "target_direction": target.direction,
            "status": guarantee_status(current, target, policy),
            "unit": target.unit,
            "note": target.note,
        })
    return snapshots


def build_scorecard(
    kpis: dict[str, float],
    *,
    now: datetime,
    policy: ScorecardPolicy = DEFAULT_SCORECARD_POLICY,
) -> dict[str, Any]:
    """Snapshots plus the program-level recommendation."""
    snapshots = build_guarantee_snapshots(kpis, policy)
    any_at_risk = any(snapshot["status"] == "at_risk" for snapshot in snapshots)
    return {
        "generated_at": to_iso(now),
        "snapshots": snapshots,
        "recommendation": (
            policy.at_risk_recommendation if any_at_risk else policy.healthy_recommendation
        ),
    }
