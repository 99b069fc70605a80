"""Deal-risk and readiness signal tool."""

from __future__ import annotations

from typing import Any

from cip_protocol import CIP, run_tool_with_orchestration

from dealer_mcp.data.crm import load_snapshot
from dealer_mcp.metrics.signals import (
    build_deal_decay_scores,
    build_finance_readiness_scores,
    build_lead_intent_scores,
    build_show_probability_scores,
)
from dealer_mcp.normalization import to_iso
from dealer_mcp.tools.common import resolve_now, validate_limit


async def get_deal_risk_scores_impl(
    cip: CIP,
    *,
    limit: int = 10,
    min_score: int = 0,
    as_of: str = "",
    scaffold_id: str | None = None,
    policy: str | None = None,
    context_notes: str | None = None,
    raw: bool = False,
) -> str:
    """Return deal-decay risk with drivers, plus intent, finance, and show signals."""
    limit_error = validate_limit(limit, maximum=100)
    if limit_error:
        return limit_error
    if not 0 <= min_score <= 100:
        return "Minimum score must be between 0 and 100."

    now = resolve_now(as_of)
    snapshot = load_snapshot()
    decay = [
        score
        for score in build_deal_decay_scores(
            snapshot.leads,
            snapshot.opportunities,
            snapshot.finance_applications,
            now=now,
        )
        if score["score"] >= min_score
    ]

    data_context: dict[str, Any] = {
        "as_of": to_iso(now),
        "deal_decay": decay[:limit],
        "lead_intent": build_lead_intent_scores(snapshot.leads)[:limit],
        "finance_readiness": build_finance_readiness_scores(snapshot.finance_applications)[:limit],
        "show_probability": build_show_probability_scores(snapshot.appointments, now=now)[:limit],
    }
    user_input = (
        f"Rank {min(limit, len(decay))} in-flight deal(s) by decay risk"
        + (f" at or above {min_score}" if min_score else "")
        + " and name the next best action for each"
    )
    return await run_tool_with_orchestration(
        cip,
        user_input=user_input,
        tool_name="get_deal_risk_scores",
        data_context=data_context,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
        raw=raw,
    )
