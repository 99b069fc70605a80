"""Shared vocabulary used across the engines, the store facade, and the tools.

Single source of truth for pipeline stages, sources, and status values.
"""

from __future__ import annotations

LOCATIONS: tuple[str, ...] = ("wayne", "taylor")

LEAD_SOURCES: frozenset[str] = frozenset({
    "website_form",
    "phone",
    "facebook",
    "walk_in",
    "sms",
    "email",
})

# Ordered the way a deal normally travels; the stage gate does not enforce order.
PIPELINE_STAGES: tuple[str, ...] = (
    "new",
    "contacted",
    "appointment_set",
    "appointment_showed",
    "negotiating",
    "financing_review",
    "closed_won",
    "closed_lost",
)
CLOSED_STAGES: frozenset[str] = frozenset({"closed_won", "closed_lost"})

# Stages that count as "appointment set or further" for KPI purposes.
APPOINTMENT_SET_STAGES: frozenset[str] = frozenset({
    "appointment_set",
    "appointment_showed",
    "negotiating",
    "financing_review",
    "closed_won",
})

# Lead statuses that keep a lead in the follow-up cadence. "interested" is a
# legacy status still written by older intake channels.
FOLLOW_UP_STATUSES: frozenset[str] = frozenset({"new", "contacted", "interested"})
DEAL_RISK_STATUSES: frozenset[str] = frozenset({"negotiating", "financing_review"})

APPOINTMENT_STATUSES: frozenset[str] = frozenset({
    "booked",
    "confirmed",
    "showed",
    "no_show",
    "rescheduled",
    "cancelled",
})
# Appointments whose outcome is known; the show-rate denominator.
APPOINTMENT_OUTCOME_STATUSES: frozenset[str] = frozenset({"showed", "no_show"})

FINANCE_STATUSES: frozenset[str] = frozenset({
    "started",
    "incomplete",
    "submitted",
    "approved",
    "declined",
    "needs_docs",
})
FINANCE_COMPLETE_STATUSES: frozenset[str] = frozenset({"submitted", "approved"})
DEFAULT_FINANCE_MISSING_ITEMS: tuple[str, ...] = (
    "Driver license",
    "Proof of income",
    "Proof of residence",
)

CONSENT_CHANNELS: frozenset[str] = frozenset({"sms", "phone", "email"})
THREAD_CHANNELS: tuple[str, ...] = ("sms", "email", "phone", "chat")
CONSENT_SOURCES: frozenset[str] = frozenset({
    "finance_form",
    "website_form",
    "verbal_recording",
    "manual",
})

CHECKLIST_FLAGS: tuple[str, ...] = ("quote_shared", "docs_requested", "consent_verified")

ACTION_SEVERITIES: tuple[str, ...] = ("critical", "high", "medium", "admin")

COLLECTIONS: tuple[str, ...] = (
    "leads",
    "opportunities",
    "appointments",
    "finance_applications",
    "consent_events",
    "inventory",
    "conversation_threads",
    "conversations",
    "call_events",
    "workflow_runs",
)
