"""Probability-weighted revenue forecast over three rolling windows."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Iterable

from dealer_mcp.normalization import ensure_aware, parse_iso_datetime
from dealer_mcp.policy import DEFAULT_FORECAST_POLICY, ForecastPolicy


def half_up(value: float) -> int:
    """Round halves toward +inf (``round()`` would bank 2.5 down to 2)."""
    return math.floor(value + 0.5)


def lead_expected_value(lead: dict[str, Any]) -> float:
    """``deal_value``, else ``budget_max``, else ``budget_min``, else 0."""
    for key in ("deal_value", "budget_max", "budget_min"):
        value = lead.get(key)
        if value is not None:
            return float(value)
    return 0.0


def lead_reference_date(lead: dict[str, Any], now: datetime) -> datetime:
    for key in ("closed_at", "updated_at", "created_at"):
        parsed = parse_iso_datetime(lead.get(key))
        if parsed is not None:
            return parsed
    return now


def _month_start(year: int, month: int, tzinfo: Any) -> datetime:
    # Months past December roll into the next year.
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1, tzinfo=tzinfo)


def forecast_windows(
    now: datetime,
    policy: ForecastPolicy = DEFAULT_FORECAST_POLICY,
) -> dict[str, tuple[datetime, datetime]]:
    """Inclusive ``(start, end)`` bounds for each window, in ``now``'s timezone."""
    now = ensure_aware(now)
    this_month_start = _month_start(now.year, now.month, now.tzinfo)
    next_month_start = _month_start(now.year, now.month + 1, now.tzinfo)
    month_after_start = _month_start(now.year, now.month + 2, now.tzinfo)
    return {
        "next_7_days": (now, now + timedelta(days=policy.near_term_days)),
        "this_month": (this_month_start, next_month_start - timedelta(microseconds=1)),
        "next_month": (next_month_start, month_after_start - timedelta(hours=1)),
    }


def build_revenue_forecast(
    leads: Iterable[dict[str, Any]],
    *,
    now: datetime,
    policy: ForecastPolicy = DEFAULT_FORECAST_POLICY,
) -> dict[str, int]:
    """Weighted pipeline value per window, rounded to whole currency units.

    The near-term window deliberately leaves ``financing_review`` out; the
    two monthly windows weight it at 20 %.
    """
    now = ensure_aware(now)
    windows = forecast_windows(now, policy)
    weights = {
        "next_7_days": policy.near_term_weights,
        "this_month": policy.monthly_weights,
        "next_month": policy.monthly_weights,
    }
    totals = {name: 0.0 for name in windows}

    for lead in leads:
        reference = lead_reference_date(lead, now).astimezone(now.tzinfo)
        value = lead_expected_value(lead)
        status = lead.get("status")
        for name, (start, end) in windows.items():
            weight = weights[name].get(status)
            if weight and start <= reference <= end:
                totals[name] += value * weight

    return {name: half_up(total) for name, total in totals.items()}
