"""KPI and guarantee-scorecard tools."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from cip_protocol import CIP, run_tool_with_orchestration

from dealer_mcp.data.crm import load_snapshot
from dealer_mcp.metrics.kpi import build_operational_kpis
from dealer_mcp.metrics.scorecard import build_scorecard
from dealer_mcp.normalization import to_iso
from dealer_mcp.tools.common import resolve_now


def _current_kpis(as_of: str) -> tuple[datetime, dict[str, float]]:
    now = resolve_now(as_of)
    snapshot = load_snapshot()
    kpis = build_operational_kpis(
        snapshot.leads,
        snapshot.opportunities,
        snapshot.appointments,
        snapshot.finance_applications,
        now=now,
    )
    return now, kpis


async def get_operational_kpis_impl(
    cip: CIP,
    *,
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Return response time, contact, appointment, show, sold, and finance KPIs."""
    now, kpis = _current_kpis(as_of)
    return await run_tool_with_orchestration(
        cip,
        user_input="Summarize current operational KPIs and the biggest gap",
        tool_name="get_operational_kpis",
        data_context={"as_of": to_iso(now), "kpis": kpis},
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )


async def get_guarantee_scorecard_impl(
    cip: CIP,
    *,
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Compare live KPIs with guarantee baselines and report met/on_track/at_risk."""
    now, kpis = _current_kpis(as_of)
    scorecard = build_scorecard(kpis, now=now)
    at_risk = [s["label"] for s in scorecard["snapshots"] if s["status"] == "at_risk"]

    data_context: dict[str, Any] = {
        "kpis": kpis,
        "scorecard": scorecard,
    }
    user_input = (
        "Report guarantee scorecard status"
        + (f"; at risk: {', '.join(at_risk)}" if at_risk else "; all tracks healthy")
    )
    return await run_tool_with_orchestration(
        cip,
        user_input=user_input,
        tool_name="get_guarantee_scorecard",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )
