"""Lead-side write tools: intake, contact logging, consent, appointments,
finance, and workflow queueing."""

from __future__ import annotations

import json
from typing import Any

from dealer_mcp.constants import LEAD_SOURCES, LOCATIONS
from dealer_mcp.data.crm import (
    book_appointment,
    ingest_inbound_call,
    ingest_inbound_sms,
    intake_lead,
    log_contact,
    open_conversation_thread,
    queue_workflow,
    record_consent,
    set_appointment_status,
    start_finance_application,
    update_finance_application,
    upsert_inventory_unit,
)
from dealer_mcp.data.store import RecordNotFoundError
from dealer_mcp.intake.router import IntakeSubmission
from dealer_mcp.tools.common import require_timestamp, resolve_now


def intake_lead_impl(
    *,
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
    """Dedup, route, and store an inbound lead.  Returns the intake result as JSON."""
    if not first_name.strip() or not last_name.strip():
        return "Error: first_name and last_name are required."
    if source not in LEAD_SOURCES:
        return f"Error: source must be one of: {', '.join(sorted(LEAD_SOURCES))}."
    if location_intent and location_intent not in LOCATIONS:
        return f"Error: location_intent must be one of: {', '.join(LOCATIONS)}."

    submission = IntakeSubmission(
        first_name=first_name,
        last_name=last_name,
        source=source,
        page_url=page_url,
        email=email or None,
        phone=phone or None,
        message=message or None,
        location_intent=location_intent or None,
        utm_source=utm_source or None,
        utm_medium=utm_medium or None,
        utm_campaign=utm_campaign or None,
        clicked_vehicle=clicked_vehicle or None,
        consent_sms=consent_sms,
        consent_phone=consent_phone,
    )
    result = intake_lead(submission, now=resolve_now(as_of))
    return json.dumps(result, indent=2)


def log_lead_contact_impl(*, lead_id: str, mark_contacted: bool = True, as_of: str = "") -> str:
    """Record a rep touch on a lead."""
    if not lead_id.strip():
        return "Lead ID is required."
    try:
        lead = log_contact(lead_id.strip(), now=resolve_now(as_of), mark_contacted=mark_contacted)
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    return (
        f"Logged contact for {lead['first_name']} {lead['last_name']} ({lead['id']}). "
        f"First contact: {lead['first_contact_at']}. Status: {lead['status']}."
    )


def record_consent_impl(
    *,
    lead_id: str,
    channel: str,
    consented: bool,
    source: str = "manual",
    proof: str = "",
    as_of: str = "",
) -> str:
    """Append a consent event for a lead."""
    if not lead_id.strip():
        return "Lead ID is required."
    if not proof.strip():
        return "Error: proof reference is required for consent events."
    try:
        event = record_consent(
            lead_id.strip(),
            channel=channel,
            consented=consented,
            source=source,
            proof=proof.strip(),
            now=resolve_now(as_of),
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    verb = "granted" if event["consented"] else "declined"
    return (
        f"Recorded {event['channel']} consent {verb} for lead {event['lead_id']} "
        f"({event['id']}, source {event['source']})."
    )


def book_appointment_impl(
    *,
    lead_id: str,
    starts_at: str,
    vehicle_label: str,
    location: str = "",
    as_of: str = "",
) -> str:
    """Book a test drive for a lead."""
    if not lead_id.strip():
        return "Lead ID is required."
    if not vehicle_label.strip():
        return "Error: vehicle_label is required."
    try:
        appointment = book_appointment(
            lead_id.strip(),
            starts_at=require_timestamp(starts_at, label="starts_at"),
            vehicle_label=vehicle_label.strip(),
            location=location or None,
            now=resolve_now(as_of),
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    return (
        f"Booked {appointment['vehicle_label']} test drive ({appointment['id']}) for lead "
        f"{appointment['lead_id']} at {appointment['location']} on {appointment['starts_at']}."
    )


def start_finance_application_impl(*, lead_id: str, as_of: str = "") -> str:
    """Open a finance application with the default document checklist."""
    if not lead_id.strip():
        return "Lead ID is required."
    try:
        application = start_finance_application(lead_id.strip(), now=resolve_now(as_of))
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    return (
        f"Started finance application {application['id']} for lead {application['lead_id']} "
        f"({application['completion_percent']}% complete). "
        f"Missing: {', '.join(application['missing_items'])}."
    )


def queue_workflow_impl(
    *,
    workflow_key: str,
    lead_id: str = "",
    context: dict[str, Any] | None = None,
    as_of: str = "",
) -> str:
    """Queue an automation workflow run."""
    if not workflow_key.strip():
        return "Workflow key is required."
    try:
        run = queue_workflow(
            workflow_key.strip(),
            lead_id=lead_id.strip() or None,
            context=context,
            now=resolve_now(as_of),
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    target = f" for lead {run['lead_id']}" if run["lead_id"] else ""
    return f"Queued workflow '{run['workflow_key']}'{target} ({run['id']}, status {run['status']})."


def update_appointment_status_impl(*, appointment_id: str, status: str, as_of: str = "") -> str:
    """Record an appointment outcome (showed, no_show, rescheduled, ...)."""
    if not appointment_id.strip():
        return "Appointment ID is required."
    try:
        appointment = set_appointment_status(
            appointment_id.strip(), status, now=resolve_now(as_of),
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    return f"Appointment {appointment['id']} is now {appointment['status']}."


def update_finance_application_impl(
    *,
    application_id: str,
    status: str = "",
    completion_percent: int | None = None,
    missing_items: list[str] | None = None,
    as_of: str = "",
) -> str:
    """Update status, completion, or outstanding documents on a finance application."""
    if not application_id.strip():
        return "Application ID is required."
    try:
        application = update_finance_application(
            application_id.strip(),
            now=resolve_now(as_of),
            status=status or None,
            completion_percent=completion_percent,
            missing_items=missing_items,
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    missing = ", ".join(application.get("missing_items") or []) or "none"
    return (
        f"Finance application {application['id']}: {application['status']}, "
        f"{application['completion_percent']}% complete. Missing: {missing}."
    )


def upsert_inventory_unit_impl(
    *,
    year: int,
    make: str,
    model: str,
    unit_id: str = "",
    vin: str = "",
    status: str = "available",
    days_in_inventory: int = 0,
    list_price: float | None = None,
) -> str:
    """Add a unit to the lot or refresh an existing one."""
    if not make.strip() or not model.strip():
        return "Error: make and model are required."
    if days_in_inventory < 0:
        return "Days in inventory must be greater than or equal to 0."
    unit: dict[str, Any] = {
        "year": year,
        "make": make.strip(),
        "model": model.strip(),
        "vin": vin.strip() or None,
        "status": status,
        "days_in_inventory": days_in_inventory,
        "list_price": list_price,
    }
    if unit_id.strip():
        unit["id"] = unit_id.strip()
    saved_id = upsert_inventory_unit(unit)
    return (
        f"Saved {year} {make.strip()} {model.strip()} as {saved_id} "
        f"({status}, {days_in_inventory} days in stock)."
    )


def open_conversation_thread_impl(
    *,
    lead_id: str,
    channel: str = "sms",
    assigned_rep: str = "",
    as_of: str = "",
) -> str:
    """Open a conversation thread so its first-response SLA is tracked."""
    if not lead_id.strip():
        return "Lead ID is required."
    try:
        thread = open_conversation_thread(
            lead_id.strip(),
            channel=channel,
            assigned_rep=assigned_rep.strip(),
            now=resolve_now(as_of),
        )
    except RecordNotFoundError as exc:
        return f"Error: {exc}"
    owner = f", owner {thread['assigned_rep']}" if thread["assigned_rep"] else ""
    return f"Opened {thread['channel']} thread {thread['id']} for lead {thread['lead_id']}{owner}."


def ingest_inbound_sms_impl(
    *,
    phone: str,
    body: str,
    received_at: str = "",
    as_of: str = "",
) -> str:
    """Attach an inbound text to the matching lead.  Returns the result as JSON."""
    if not phone.strip():
        return "Phone number is required."
    if not body.strip():
        return "Error: message body is required."
    now = resolve_now(as_of)
    arrived = require_timestamp(received_at, label="received_at") if received_at.strip() else now
    result = ingest_inbound_sms(phone, body, received_at=arrived, now=now)
    return json.dumps(result, indent=2)


def ingest_inbound_call_impl(
    *,
    phone: str,
    outcome: str,
    duration_seconds: int = 0,
    received_at: str = "",
    as_of: str = "",
) -> str:
    """Log an inbound call against the matching lead.  Returns the result as JSON."""
    if not phone.strip():
        return "Phone number is required."
    if not outcome.strip():
        return "Error: call outcome is required."
    if duration_seconds < 0:
        return "Duration must be greater than or equal to 0."
    now = resolve_now(as_of)
    arrived = require_timestamp(received_at, label="received_at") if received_at.strip() else now
    result = ingest_inbound_call(
        phone, outcome.strip().lower(), duration_seconds, received_at=arrived, now=now,
    )
    return json.dumps(result, indent=2)
