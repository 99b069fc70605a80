"""CRM facade: the only write paths, plus snapshot assembly for the engines.

Every operation goes through the module-level :class:`RecordStore`
singleton.  Read-modify-write sequences (intake dedup, stage changes,
checklist merges) run inside ``store.atomic()`` so concurrent callers
never interleave between the read and the write.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dealer_mcp.constants import (
    APPOINTMENT_STATUSES,
    CLOSED_STAGES,
    CONSENT_CHANNELS,
    CONSENT_SOURCES,
    DEFAULT_FINANCE_MISSING_ITEMS,
    FINANCE_STATUSES,
    LOCATIONS,
    THREAD_CHANNELS,
)
from dealer_mcp.data.store import RecordNotFoundError, RecordStore, SqliteRecordStore
from dealer_mcp.intake.router import IntakeSubmission, plan_intake
from dealer_mcp.normalization import ensure_aware, normalize_phone, parse_iso_datetime, to_iso
from dealer_mcp.pipeline.stage_gate import (
    empty_checklist,
    merge_checklist,
    validate_stage_transition,
)
from dealer_mcp.policy import DEFAULT_INTAKE_POLICY, IntakePolicy

logger = logging.getLogger(__name__)

_store: RecordStore | None = None

_DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "crm.db")


def get_store() -> RecordStore:
    """Return the active RecordStore singleton, creating + seeding if needed."""
    global _store  # noqa: PLW0603
    if _store is None:
        db_path = os.environ.get("DEALER_CRM_DB_PATH", _DEFAULT_DB_PATH)
        store = SqliteRecordStore(db_path)
        if store.count("leads") == 0:
            from dealer_mcp.data.seed import seed_demo_data
            seed_demo_data(store)
        _store = store
    return _store


def set_store(store: RecordStore | None) -> None:
    """Inject a store instance for testing (mirrors ``set_cip_override``)."""
    global _store  # noqa: PLW0603
    _store = store


def _require(collection: str, record_id: str) -> dict[str, Any]:
    record = get_store().get(collection, record_id)
    if record is None:
        raise RecordNotFoundError(collection, record_id)
    return record


# ── Snapshot ────────────────────────────────────────────────────────


@dataclass
class CrmSnapshot:
    """A consistent read of every collection the engines consume."""

    leads: list[dict[str, Any]] = field(default_factory=list)
    opportunities: list[dict[str, Any]] = field(default_factory=list)
    appointments: list[dict[str, Any]] = field(default_factory=list)
    finance_applications: list[dict[str, Any]] = field(default_factory=list)
    consent_events: list[dict[str, Any]] = field(default_factory=list)
    inventory: list[dict[str, Any]] = field(default_factory=list)
    conversation_threads: list[dict[str, Any]] = field(default_factory=list)

    def lead_by_id(self) -> dict[str, dict[str, Any]]:
        return {lead["id"]: lead for lead in self.leads}


def load_snapshot() -> CrmSnapshot:
    store = get_store()
    with store.atomic():
        return CrmSnapshot(
            leads=store.list_all("leads"),
            opportunities=store.list_all("opportunities"),
            appointments=store.list_all("appointments"),
            finance_applications=store.list_all("finance_applications"),
            consent_events=store.list_all("consent_events"),
            inventory=store.list_all("inventory"),
            conversation_threads=store.list_all("conversation_threads"),
        )


# ── Leads ───────────────────────────────────────────────────────────


def intake_lead(
    submission: IntakeSubmission,
    *,
    now: datetime,
    policy: IntakePolicy = DEFAULT_INTAKE_POLICY,
) -> dict[str, Any]:
    """Dedup, route, and persist one intake submission.

    Returns ``{lead_id, routed_location, dedupe_match_id, merge_suggestions,
    created_new_lead}``.
    """
    store = get_store()
    now = ensure_aware(now)
    with store.atomic():
        plan = plan_intake(submission, store.list_all("leads"), now=now, policy=policy)
        if plan.creates_new_lead:
            lead_id = store.insert("leads", plan.new_lead or {})
            store.insert("opportunities", {
                "lead_id": lead_id,
                "stage": "new",
                "expected_value": 0,
                "location": plan.routed_location,
                "checklist": empty_checklist(),
                "created_at": to_iso(now),
                "updated_at": to_iso(now),
            })
            logger.info("Created lead %s routed to %s", lead_id, plan.routed_location)
        else:
            lead_id = plan.dedupe_match_id or ""
            store.patch("leads", lead_id, plan.lead_patch)
            logger.info("Intake reused lead %s via exact contact match", lead_id)

        for channel, consented in (
            ("sms", submission.consent_sms),
            ("phone", submission.consent_phone),
        ):
            if consented is None:
                continue
            store.insert("consent_events", {
                "lead_id": lead_id,
                "channel": channel,
                "consented": bool(consented),
                "source": "website_form",
                "proof": f"intake:{submission.page_url}",
                "created_at": to_iso(now),
            })

    return {
        "lead_id": lead_id,
        "routed_location": plan.routed_location,
        "dedupe_match_id": plan.dedupe_match_id,
        "merge_suggestions": plan.merge_suggestions,
        "created_new_lead": plan.creates_new_lead,
    }


def log_contact(
    lead_id: str,
    *,
    now: datetime,
    mark_contacted: bool = True,
) -> dict[str, Any]:
    """Record a rep touch.

    ``first_contact_at`` is set once and never earlier than ``created_at``;
    ``last_contact_at`` always moves to *now*.  A ``new`` lead moves to
    ``contacted`` (an ungated stage) together with its opportunity.
    """
    store = get_store()
    now = ensure_aware(now)
    with store.atomic():
        lead = _require("leads", lead_id)
        changes: dict[str, Any] = {
            "last_contact_at": to_iso(now),
            "updated_at": to_iso(now),
        }
        if not lead.get("first_contact_at"):
            created_at = parse_iso_datetime(lead.get("created_at")) or now
            changes["first_contact_at"] = to_iso(max(now, created_at))
        if mark_contacted and lead.get("status") == "new":
            changes["status"] = "contacted"
            opportunity = store.find_first("opportunities", "lead_id", lead_id)
            if opportunity is not None and opportunity.get("stage") == "new":
                store.patch("opportunities", opportunity["id"], {
                    "stage": "contacted",
                    "updated_at": to_iso(now),
                })
        return store.patch("leads", lead_id, changes)


def find_opportunity_for_lead(lead_id: str) -> dict[str, Any] | None:
    return get_store().find_first("opportunities", "lead_id", lead_id)


# ── Opportunities ───────────────────────────────────────────────────


def update_checklist(
    opportunity_id: str,
    *,
    now: datetime,
    quote_shared: bool | None = None,
    docs_requested: bool | None = None,
    consent_verified: bool | None = None,
) -> dict[str, Any]:
    """Set checklist flags.  A false or missing value never clears a flag."""
    store = get_store()
    with store.atomic():
        opportunity = _require("opportunities", opportunity_id)
        checklist = merge_checklist(opportunity.get("checklist"), {
            "quote_shared": quote_shared,
            "docs_requested": docs_requested,
            "consent_verified": consent_verified,
        })
        return store.patch("opportunities", opportunity_id, {
            "checklist": checklist,
            "updated_at": to_iso(ensure_aware(now)),
        })


def transition_opportunity(
    opportunity_id: str,
    target_stage: str,
    *,
    now: datetime,
) -> dict[str, Any]:
    """Gate-check and apply a stage move.

    Returns ``{allowed, reasons, opportunity}``.  On rejection nothing is
    written.  On success the stage is mirrored onto the lead's status, and
    closed stages stamp ``closed_at``.
    """
    store = get_store()
    now_iso = to_iso(ensure_aware(now))
    with store.atomic():
        opportunity = _require("opportunities", opportunity_id)
        lead_id = opportunity.get("lead_id", "")
        consent_events = [
            event for event in store.list_all("consent_events")
            if event.get("lead_id") == lead_id
        ]
        verdict = validate_stage_transition(opportunity, target_stage, consent_events)
        if not verdict["allowed"]:
            logger.warning(
                "Rejected stage change %s -> %s for %s: %s",
                opportunity.get("stage"), target_stage, opportunity_id,
                "; ".join(verdict["reasons"]),
            )
            return {**verdict, "opportunity": opportunity}

        updated = store.patch("opportunities", opportunity_id, {
            "stage": target_stage,
            "updated_at": now_iso,
        })
        lead_changes: dict[str, Any] = {"status": target_stage, "updated_at": now_iso}
        if target_stage in CLOSED_STAGES:
            lead_changes["closed_at"] = now_iso
        if store.get("leads", lead_id) is not None:
            store.patch("leads", lead_id, lead_changes)
        logger.info(
            "Moved opportunity %s from %s to %s",
            opportunity_id, opportunity.get("stage"), target_stage,
        )
        return {**verdict, "opportunity": updated}


# ── Consent ─────────────────────────────────────────────────────────


def record_consent(
    lead_id: str,
    *,
    channel: str,
    consented: bool,
    source: str,
    proof: str,
    now: datetime,
) -> dict[str, Any]:
    """Append an immutable consent event.  Existing events are never touched."""
    if channel not in CONSENT_CHANNELS:
        raise ValueError(
            f"Unknown consent channel '{channel}'. "
            f"Expected one of: {', '.join(sorted(CONSENT_CHANNELS))}."
        )
    if source not in CONSENT_SOURCES:
        raise ValueError(
            f"Unknown consent source '{source}'. "
            f"Expected one of: {', '.join(sorted(CONSENT_SOURCES))}."
        )
    store = get_store()
    _require("leads", lead_id)
    event = {
        "lead_id": lead_id,
        "channel": channel,
        "consented": bool(consented),
        "source": source,
        "proof": proof,
        "created_at": to_iso(ensure_aware(now)),
    }
    event_id = store.insert("consent_events", event)
    return {"id": event_id, **event}


# ── Appointments ────────────────────────────────────────────────────


def book_appointment(
    lead_id: str,
    *,
    starts_at: datetime,
    vehicle_label: str,
    now: datetime,
    location: str | None = None,
) -> dict[str, Any]:
    lead = _require("leads", lead_id)
    resolved_location = location or lead.get("location_intent") or LOCATIONS[0]
    if resolved_location not in LOCATIONS:
        raise ValueError(
            f"Unknown location '{resolved_location}'. Expected one of: {', '.join(LOCATIONS)}."
        )
    now_iso = to_iso(ensure_aware(now))
    appointment = {
        "lead_id": lead_id,
        "location": resolved_location,
        "vehicle_label": vehicle_label,
        "starts_at": to_iso(starts_at),
        "status": "booked",
        "created_at": now_iso,
        "updated_at": now_iso,
    }
    appointment_id = get_store().insert("appointments", appointment)
    return {"id": appointment_id, **appointment}


def set_appointment_status(
    appointment_id: str,
    status: str,
    *,
    now: datetime,
) -> dict[str, Any]:
    if status not in APPOINTMENT_STATUSES:
        raise ValueError(
            f"Unknown appointment status '{status}'. "
            f"Expected one of: {', '.join(sorted(APPOINTMENT_STATUSES))}."
        )
    store = get_store()
    with store.atomic():
        _require("appointments", appointment_id)
        return store.patch("appointments", appointment_id, {
            "status": status,
            "updated_at": to_iso(ensure_aware(now)),
        })


# ── Finance ─────────────────────────────────────────────────────────


def start_finance_application(lead_id: str, *, now: datetime) -> dict[str, Any]:
    _require("leads", lead_id)
    now_iso = to_iso(ensure_aware(now))
    application = {
        "lead_id": lead_id,
        "status": "started",
        "completion_percent": 10,
        "missing_items": list(DEFAULT_FINANCE_MISSING_ITEMS),
        "created_at": now_iso,
        "updated_at": now_iso,
    }
    application_id = get_store().insert("finance_applications", application)
    return {"id": application_id, **application}


def update_finance_application(
    application_id: str,
    *,
    now: datetime,
    status: str | None = None,
    completion_percent: int | None = None,
    missing_items: list[str] | None = None,
) -> dict[str, Any]:
    changes: dict[str, Any] = {"updated_at": to_iso(ensure_aware(now))}
    if status is not None:
        if status not in FINANCE_STATUSES:
            raise ValueError(
                f"Unknown finance status '{status}'. "
                f"Expected one of: {', '.join(sorted(FINANCE_STATUSES))}."
            )
        changes["status"] = status
    if completion_percent is not None:
        if not 0 <= completion_percent <= 100:
            raise ValueError("Completion percent must be between 0 and 100.")
        changes["completion_percent"] = completion_percent
    if missing_items is not None:
        changes["missing_items"] = list(missing_items)
    store = get_store()
    with store.atomic():
        _require("finance_applications", application_id)
        return store.patch("finance_applications", application_id, changes)


# ── Inventory, threads, workflows ───────────────────────────────────


def upsert_inventory_unit(unit: dict[str, Any]) -> str:
    """Insert a unit, or merge into the existing one with the same id."""
    store = get_store()
    with store.atomic():
        unit_id = unit.get("id")
        if unit_id and store.get("inventory", unit_id) is not None:
            store.patch("inventory", unit_id, unit)
            return unit_id
        return store.insert("inventory", unit)


def open_conversation_thread(
    lead_id: str,
    *,
    channel: str,
    now: datetime,
    assigned_rep: str = "",
) -> dict[str, Any]:
    if channel not in THREAD_CHANNELS:
        raise ValueError(
            f"Unknown thread channel '{channel}'. Expected one of: {', '.join(THREAD_CHANNELS)}."
        )
    lead = _require("leads", lead_id)
    thread = {
        "lead_id": lead_id,
        "channel": channel,
        "location": lead.get("location_intent"),
        "assigned_rep": assigned_rep,
        "has_unread": True,
        "last_message_at": to_iso(ensure_aware(now)),
    }
    thread_id = get_store().insert("conversation_threads", thread)
    return {"id": thread_id, **thread}


def queue_workflow(
    workflow_key: str,
    *,
    now: datetime,
    lead_id: str | None = None,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if lead_id:
        _require("leads", lead_id)
    run = {
        "workflow_key": workflow_key,
        "lead_id": lead_id,
        "status": "queued",
        "detail": json.dumps(context, default=str) if context else "Workflow queued",
        "created_at": to_iso(ensure_aware(now)),
    }
    run_id = get_store().insert("workflow_runs", run)
    return {"id": run_id, **run}


# ── Inbound signals ─────────────────────────────────────────────────


def _lead_for_phone(phone: str) -> dict[str, Any] | None:
    digits = normalize_phone(phone)
    if not digits:
        return None
    return get_store().find_first("leads", "phone", digits)


def ingest_inbound_sms(
    phone: str,
    body: str,
    *,
    received_at: datetime,
    now: datetime,
) -> dict[str, Any]:
    """Attach an inbound text to the lead that owns *phone*.

    Returns ``{stored, trigger_workflow}``; an unmatched number stores
    nothing and reports ``no_lead_match``.
    """
    store = get_store()
    now = ensure_aware(now)
    with store.atomic():
        lead = _lead_for_phone(phone)
        if lead is None:
            logger.info("Inbound SMS from unknown number dropped")
            return {"stored": False, "trigger_workflow": "no_lead_match"}
        store.insert("conversations", {
            "lead_id": lead["id"],
            "channel": "sms",
            "direction": "inbound",
            "body": body,
            "created_at": to_iso(ensure_aware(received_at)),
        })
        store.patch("leads", lead["id"], {"updated_at": to_iso(now)})
    logger.info("Stored inbound SMS for lead %s", lead["id"])
    return {"stored": True, "trigger_workflow": "missed_call_text_back"}


def ingest_inbound_call(
    phone: str,
    outcome: str,
    duration_seconds: int,
    *,
    received_at: datetime,
    now: datetime,
) -> dict[str, Any]:
    """Log an inbound call against the lead that owns *phone*.

    Returns ``{stored, missed_call_follow_up}``; only a ``missed`` outcome
    asks for a follow-up.
    """
    if duration_seconds < 0:
        raise ValueError("Call duration cannot be negative.")
    store = get_store()
    now = ensure_aware(now)
    with store.atomic():
        lead = _lead_for_phone(phone)
        if lead is None:
            logger.info("Inbound call from unknown number dropped")
            return {"stored": False, "missed_call_follow_up": False}
        store.insert("call_events", {
            "lead_id": lead["id"],
            "direction": "inbound",
            "outcome": outcome,
            "duration_seconds": duration_seconds,
            "created_at": to_iso(ensure_aware(received_at)),
        })
        store.patch("leads", lead["id"], {"updated_at": to_iso(now)})
    logger.info("Logged inbound %s call for lead %s", outcome, lead["id"])
    return {"stored": True, "missed_call_follow_up": outcome == "missed"}
