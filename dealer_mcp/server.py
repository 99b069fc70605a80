"""Dealer CRM MCP server: FastMCP entry point for the CRM decision engines."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from cip_protocol import CIP
from cip_protocol.orchestration.errors import (
    log_and_return_tool_error as _log_and_return_tool_error,
)
from cip_protocol.orchestration.pool import ProviderPool
from cip_protocol.scaffold.loader import load_scaffold_directory
from cip_protocol.scaffold.registry import ScaffoldRegistry
from mcp.server.fastmcp import FastMCP

from dealer_mcp.config import DEALER_CRM_DOMAIN_CONFIG
from dealer_mcp.tools.assistant import suggest_follow_up_text_impl
from dealer_mcp.tools.command_center import (
    get_command_actions_impl,
    get_morning_brief_impl,
    get_sla_alerts_impl,
)
from dealer_mcp.tools.forecast import get_revenue_forecast_impl
from dealer_mcp.tools.intake import (
    book_appointment_impl,
    ingest_inbound_call_impl,
    ingest_inbound_sms_impl,
    intake_lead_impl,
    log_lead_contact_impl,
    open_conversation_thread_impl,
    queue_workflow_impl,
    record_consent_impl,
    start_finance_application_impl,
    update_appointment_status_impl,
    update_finance_application_impl,
    upsert_inventory_unit_impl,
)
from dealer_mcp.tools.pipeline import (
    move_opportunity_stage_impl,
    update_opportunity_checklist_impl,
)
from dealer_mcp.tools.scorecard import (
    get_guarantee_scorecard_impl,
    get_operational_kpis_impl,
)
from dealer_mcp.tools.signals import get_deal_risk_scores_impl

# Load .env from project root (no extra dependency)
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
if _ENV_FILE.is_file():
    for line in _ENV_FILE.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip())

mcp = FastMCP("DealerCRM")
logger = logging.getLogger(__name__)

_SCAFFOLD_DIR = str(Path(__file__).parent / "scaffolds")

_pool = ProviderPool(DEALER_CRM_DOMAIN_CONFIG, _SCAFFOLD_DIR)

_scaffold_registry_ref: ScaffoldRegistry | None = None


def _get_scaffold_registry() -> ScaffoldRegistry:
    """Lazy scaffold registry accessor for resources/prompts."""
    global _scaffold_registry_ref  # noqa: PLW0603
    if _scaffold_registry_ref is None:
        reg = ScaffoldRegistry()
        load_scaffold_directory(_SCAFFOLD_DIR, reg)
        _scaffold_registry_ref = reg
    return _scaffold_registry_ref


def _build_scaffold_catalog_payload() -> dict[str, Any]:
    reg = _get_scaffold_registry()
    entries = [
        {
            "id": scaffold.id,
            "display_name": scaffold.display_name,
            "description": scaffold.description,
            "tools": list(scaffold.applicability.tools or []),
            "keywords": list(scaffold.applicability.keywords or []),
            "tags": list(scaffold.tags or []),
        }
        for scaffold in sorted(reg.all(), key=lambda s: s.id)
    ]
    return {
        "domain": DEALER_CRM_DOMAIN_CONFIG.name,
        "default_scaffold_id": DEALER_CRM_DOMAIN_CONFIG.default_scaffold_id,
        "count": len(entries),
        "scaffolds": entries,
    }


@mcp.resource("dealercrm://scaffolds/catalog")
def scaffold_catalog_resource() -> dict[str, Any]:
    """List available scaffold_id values with routing hints for orchestrators."""
    return _build_scaffold_catalog_payload()


@mcp.prompt()
def command_center_prompt() -> str:
    """Prompt-friendly briefing on which CRM tool answers which question."""
    return (
        "Start the day with `get_morning_brief`, then work `get_command_actions` "
        "top-down. Use `get_sla_alerts` during showroom hours, "
        "`get_guarantee_scorecard` for program health, and `get_revenue_forecast` "
        "for pipeline value. Stage moves go through `move_opportunity_stage`; "
        "never suggest bypassing a blocked stage gate.\n\n"
        f"{json.dumps(_build_scaffold_catalog_payload(), indent=2)}"
    )


def set_cip_override(cip: CIP | None) -> None:
    """Inject a CIP instance (e.g. with MockProvider) for testing."""
    _pool.set_override(cip)


def _prepare_cip_orchestration(
    *,
    tool_name: str,
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
) -> tuple[CIP, str | None, str | None, str | None]:
    return _pool.prepare_orchestration(
        tool_name=tool_name,
        provider=provider,
        scaffold_id=scaffold_id,
        policy=policy,
        context_notes=context_notes,
    )


# ── Tool registrations ──────────────────────────────────────────────


@mcp.tool()
def set_llm_provider(provider: str, model: str = "") -> str:
    """Set the default LLM provider used for CIP reasoning.

    provider: 'anthropic' or 'openai'
    model: optional model override
    """
    try:
        return _pool.set_provider(provider, model)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="set_llm_provider",
            exc=exc,
            user_message=f"Failed to switch to {provider}: check API key is set.",
        )


@mcp.tool()
def get_llm_provider() -> str:
    """Return current default provider/model and initialized provider pool details."""
    return _pool.get_info()


# ── Write tools ─────────────────────────────────────────────────────


@mcp.tool()
def intake_lead(
    first_name: str,
    last_name: str,
    source: str,
    page_url: str = "",
    email: str = "",
    phone: str = "",
    message: str = "",
    location_intent: str = "",
    utm_source: str = "",
    utm_medium: str = "",
    utm_campaign: str = "",
    clicked_vehicle: str = "",
    consent_sms: bool | None = None,
    consent_phone: bool | None = None,
    as_of: str = "",
) -> str:
    """Ingest a lead: dedup by phone then email, route to a rooftop, suggest merges.

    Returns JSON with lead_id, routed_location, dedupe_match_id,
    merge_suggestions, and created_new_lead.
    """
    try:
        return intake_lead_impl(
            first_name=first_name,
            last_name=last_name,
            source=source,
            page_url=page_url,
            email=email,
            phone=phone,
            message=message,
            location_intent=location_intent,
            utm_source=utm_source,
            utm_medium=utm_medium,
            utm_campaign=utm_campaign,
            clicked_vehicle=clicked_vehicle,
            consent_sms=consent_sms,
            consent_phone=consent_phone,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="intake_lead",
            exc=exc,
            user_message="I am having trouble saving this lead right now. Please try again.",
        )


@mcp.tool()
def log_lead_contact(lead_id: str, mark_contacted: bool = True, as_of: str = "") -> str:
    """Log a rep touch; sets first contact once and moves new leads to contacted."""
    try:
        return log_lead_contact_impl(lead_id=lead_id, mark_contacted=mark_contacted, as_of=as_of)
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="log_lead_contact",
            exc=exc,
            user_message="I am having trouble logging this contact right now.",
        )


@mcp.tool()
def update_opportunity_checklist(
    opportunity_id: str = "",
    lead_id: str = "",
    quote_shared: bool | None = None,
    docs_requested: bool | None = None,
    consent_verified: bool | None = None,
    as_of: str = "",
) -> str:
    """Mark quote/docs/consent evidence on an opportunity. Flags are never cleared."""
    try:
        return update_opportunity_checklist_impl(
            opportunity_id=opportunity_id,
            lead_id=lead_id,
            quote_shared=quote_shared,
            docs_requested=docs_requested,
            consent_verified=consent_verified,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="update_opportunity_checklist",
            exc=exc,
            user_message="I am having trouble updating the checklist right now.",
        )


@mcp.tool()
def record_consent(
    lead_id: str,
    channel: str,
    consented: bool,
    proof: str,
    source: str = "manual",
    as_of: str = "",
) -> str:
    """Append a consent event (sms, phone, or email) with a proof reference."""
    try:
        return record_consent_impl(
            lead_id=lead_id,
            channel=channel,
            consented=consented,
            source=source,
            proof=proof,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="record_consent",
            exc=exc,
            user_message="I am having trouble recording consent right now.",
        )


@mcp.tool()
def move_opportunity_stage(
    target_stage: str,
    opportunity_id: str = "",
    lead_id: str = "",
    as_of: str = "",
) -> str:
    """Move an opportunity to a pipeline stage if its stage gates pass.

    Blocked moves list every unmet precondition and change nothing.
    """
    try:
        return move_opportunity_stage_impl(
            target_stage=target_stage,
            opportunity_id=opportunity_id,
            lead_id=lead_id,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="move_opportunity_stage",
            exc=exc,
            user_message="I am having trouble moving this opportunity right now.",
        )


@mcp.tool()
def book_appointment(
    lead_id: str,
    starts_at: str,
    vehicle_label: str,
    location: str = "",
    as_of: str = "",
) -> str:
    """Book a test drive. starts_at is an ISO-8601 timestamp."""
    try:
        return book_appointment_impl(
            lead_id=lead_id,
            starts_at=starts_at,
            vehicle_label=vehicle_label,
            location=location,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="book_appointment",
            exc=exc,
            user_message="I am having trouble booking this appointment right now.",
        )


@mcp.tool()
def update_appointment_status(appointment_id: str, status: str, as_of: str = "") -> str:
    """Record an appointment outcome: booked, confirmed, showed, no_show, rescheduled, cancelled."""
    try:
        return update_appointment_status_impl(
            appointment_id=appointment_id, status=status, as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="update_appointment_status",
            exc=exc,
            user_message="I am having trouble updating this appointment right now.",
        )


@mcp.tool()
def start_finance_application(lead_id: str, as_of: str = "") -> str:
    """Open a finance application with the standard document checklist."""
    try:
        return start_finance_application_impl(lead_id=lead_id, as_of=as_of)
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="start_finance_application",
            exc=exc,
            user_message="I am having trouble starting the finance application right now.",
        )


@mcp.tool()
def update_finance_application(
    application_id: str,
    status: str = "",
    completion_percent: int | None = None,
    missing_items: list[str] | None = None,
    as_of: str = "",
) -> str:
    """Update a finance application's status, completion, or missing documents."""
    try:
        return update_finance_application_impl(
            application_id=application_id,
            status=status,
            completion_percent=completion_percent,
            missing_items=missing_items,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="update_finance_application",
            exc=exc,
            user_message="I am having trouble updating the finance application right now.",
        )


@mcp.tool()
def upsert_inventory_unit(
    year: int,
    make: str,
    model: str,
    unit_id: str = "",
    vin: str = "",
    status: str = "available",
    days_in_inventory: int = 0,
    list_price: float | None = None,
) -> str:
    """Add or refresh a lot unit so aging inventory shows up in command actions."""
    try:
        return upsert_inventory_unit_impl(
            year=year,
            make=make,
            model=model,
            unit_id=unit_id,
            vin=vin,
            status=status,
            days_in_inventory=days_in_inventory,
            list_price=list_price,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="upsert_inventory_unit",
            exc=exc,
            user_message="I am having trouble saving this unit right now.",
        )


@mcp.tool()
def open_conversation_thread(
    lead_id: str,
    channel: str = "sms",
    assigned_rep: str = "",
    as_of: str = "",
) -> str:
    """Open a conversation thread so its first-response SLA is tracked."""
    try:
        return open_conversation_thread_impl(
            lead_id=lead_id, channel=channel, assigned_rep=assigned_rep, as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="open_conversation_thread",
            exc=exc,
            user_message="I am having trouble opening this thread right now.",
        )


@mcp.tool()
def ingest_inbound_sms(
    phone: str,
    body: str,
    received_at: str = "",
    as_of: str = "",
) -> str:
    """Attach an inbound text to the lead with this phone number.

    Returns JSON with ``stored`` and ``trigger_workflow``
    (``missed_call_text_back`` or ``no_lead_match``).
    """
    try:
        return ingest_inbound_sms_impl(
            phone=phone, body=body, received_at=received_at, as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="ingest_inbound_sms",
            exc=exc,
            user_message="I am having trouble receiving this text right now.",
        )


@mcp.tool()
def ingest_inbound_call(
    phone: str,
    outcome: str,
    duration_seconds: int = 0,
    received_at: str = "",
    as_of: str = "",
) -> str:
    """Log an inbound call (answered, missed, voicemail, ...) against a lead.

    Returns JSON with ``stored`` and ``missed_call_follow_up``.
    """
    try:
        return ingest_inbound_call_impl(
            phone=phone,
            outcome=outcome,
            duration_seconds=duration_seconds,
            received_at=received_at,
            as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="ingest_inbound_call",
            exc=exc,
            user_message="I am having trouble logging this call right now.",
        )


@mcp.tool()
def queue_workflow(
    workflow_key: str,
    lead_id: str = "",
    context: dict[str, Any] | None = None,
    as_of: str = "",
) -> str:
    """Queue an automation workflow run (e.g. missed_call_text_back)."""
    try:
        return queue_workflow_impl(
            workflow_key=workflow_key, lead_id=lead_id, context=context, as_of=as_of,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="queue_workflow",
            exc=exc,
            user_message="I am having trouble queueing this workflow right now.",
        )


# ── Read tools (CIP-orchestrated) ───────────────────────────────────


@mcp.tool()
async def get_command_actions(
    limit: int = 20,
    severity: str = "",
    location: str = "",
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Ranked next-best-actions across leads and aging inventory.

    Sorted by impact score, then soonest due. Filter by severity
    (critical, high, medium, admin) or location (wayne, taylor).
    """
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_command_actions",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_command_actions_impl(
            cip,
            limit=limit,
            severity=severity,
            location=location,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_command_actions",
            exc=exc,
            user_message=(
                "I am having trouble ranking command actions right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def get_sla_alerts(
    location: str = "",
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """First-response SLA alerts (business hours only) and channel SLA states."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_sla_alerts",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_sla_alerts_impl(
            cip,
            location=location,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_sla_alerts",
            exc=exc,
            user_message=(
                "I am having trouble checking SLA alerts right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def get_morning_brief(
    location: str = "",
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Morning brief: headline focus, queue counts, deals at risk, and gross this month."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_morning_brief",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_morning_brief_impl(
            cip,
            location=location,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_morning_brief",
            exc=exc,
            user_message=(
                "I am having trouble building the morning brief right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def get_operational_kpis(
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Response time, contact, appointment-set, show, sold, and finance-completion KPIs."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_operational_kpis",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_operational_kpis_impl(
            cip,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_operational_kpis",
            exc=exc,
            user_message=(
                "I am having trouble computing KPIs right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def get_guarantee_scorecard(
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Guarantee scorecard: each KPI against its baseline and target (met/on_track/at_risk)."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_guarantee_scorecard",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_guarantee_scorecard_impl(
            cip,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_guarantee_scorecard",
            exc=exc,
            user_message=(
                "I am having trouble building the scorecard right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def get_revenue_forecast(
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Weighted pipeline value for the next 7 days, this month, and next month."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_revenue_forecast",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_revenue_forecast_impl(
            cip,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_revenue_forecast",
            exc=exc,
            user_message=(
                "I am having trouble building the forecast right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def get_deal_risk_scores(
    limit: int = 10,
    min_score: int = 0,
    as_of: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Deal-decay risk with drivers and next best action, plus intent/finance/show signals."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="get_deal_risk_scores",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await get_deal_risk_scores_impl(
            cip,
            limit=limit,
            min_score=min_score,
            as_of=as_of,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="get_deal_risk_scores",
            exc=exc,
            user_message=(
                "I am having trouble scoring deal risk right now. "
                "Please try again in a moment."
            ),
        )


@mcp.tool()
async def suggest_follow_up_text(
    lead_id: str,
    channel: str = "sms",
    goal: str = "",
    provider: str = "",
    scaffold_id: str = "",
    policy: str = "",
    context_notes: str = "",
    raw: bool = False,
) -> str:
    """Draft a follow-up message for a lead. The draft is returned verbatim for rep review."""
    try:
        cip, resolved_scaffold_id, resolved_policy, resolved_context_notes = (
            _prepare_cip_orchestration(
                tool_name="suggest_follow_up_text",
                provider=provider,
                scaffold_id=scaffold_id,
                policy=policy,
                context_notes=context_notes,
            )
        )
        return await suggest_follow_up_text_impl(
            cip,
            lead_id=lead_id,
            channel=channel,
            goal=goal,
            scaffold_id=resolved_scaffold_id,
            policy=resolved_policy,
            context_notes=resolved_context_notes,
            raw=raw,
        )
    except ValueError as exc:
        return str(exc)
    except Exception as exc:
        return _log_and_return_tool_error(
            tool_name="suggest_follow_up_text",
            exc=exc,
            user_message=(
                "I am having trouble drafting a follow-up right now. "
                "Please try again in a moment."
            ),
        )


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
