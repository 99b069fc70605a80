"""Revenue forecast tool."""

from __future__ import annotations

from typing import Any

from cip_protocol import CIP, run_tool_with_orchestration

from dealer_mcp.data.crm import load_snapshot
from dealer_mcp.forecast import build_revenue_forecast, forecast_windows
from dealer_mcp.normalization import to_iso
from dealer_mcp.policy import DEFAULT_FORECAST_POLICY
from dealer_mcp.tools.common import resolve_showroom_now


async def get_revenue_forecast_impl(
    cip: CIP,
    *,
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Return weighted pipeline value for next 7 days, this month, and next month."""
    now = resolve_showroom_now(as_of)
    forecast = build_revenue_forecast(load_snapshot().leads, now=now)
    windows = {
        name: {"start": to_iso(start), "end": to_iso(end)}
        for name, (start, end) in forecast_windows(now).items()
    }

    data_context: dict[str, Any] = {
        "as_of": to_iso(now),
        "forecast": forecast,
        "windows": windows,
        "weights": {
            "next_7_days": dict(DEFAULT_FORECAST_POLICY.near_term_weights),
            "monthly": dict(DEFAULT_FORECAST_POLICY.monthly_weights),
        },
    }
    return await run_tool_with_orchestration(
        cip,
        user_input="Explain the weighted revenue forecast across the three windows",
        tool_name="get_revenue_forecast",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )
