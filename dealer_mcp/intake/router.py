"""Lead intake planning: dedup, location routing, merge suggestions.

Pure logic, no DB or I/O.  The caller hands in a consistent read of the
existing leads and applies the returned plan atomically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from dealer_mcp.normalization import (
    normalize_email,
    normalize_name,
    normalize_phone,
    to_iso,
)
from dealer_mcp.policy import DEFAULT_INTAKE_POLICY, IntakePolicy

logger = logging.getLogger(__name__)

# Contact-adjacent fields an intake refresh may overwrite on a reused lead.
_REFRESHABLE_FIELDS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "clicked_vehicle",
)


@dataclass
class IntakeSubmission:
    """One raw intake signal (web form, SMS, phone, walk-in, manual entry)."""

    first_name: str
    last_name: str
    source: str
    page_url: str = ""
    email: str | None = None
    phone: str | None = None
    message: str | None = None
    location_intent: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    clicked_vehicle: str | None = None
    consent_sms: bool | None = None
    consent_phone: bool | None = None

    @property
    def normalized_phone(self) -> str:
        return normalize_phone(self.phone)

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)


@dataclass
class IntakePlan:
    """What the store should do with a submission.

    Exactly one of ``new_lead`` / ``lead_patch`` is set.
    """

    routed_location: str
    merge_suggestions: list[dict[str, Any]]
    dedupe_match_id: str | None = None
    new_lead: dict[str, Any] | None = None
    lead_patch: dict[str, Any] = field(default_factory=dict)

    @property
    def creates_new_lead(self) -> bool:
        return self.dedupe_match_id is None


def route_location(
    page_url: str | None,
    location_intent: str | None = None,
    *,
    policy: IntakePolicy = DEFAULT_INTAKE_POLICY,
) -> str:
    """Explicit intent wins verbatim; otherwise sniff the page URL."""
    if location_intent:
        return location_intent
    lowered = (page_url or "").lower()
    for keyword, location in policy.url_location_keywords:
        if keyword in lowered:
            return location
    return policy.default_location


def find_exact_match(
    submission: IntakeSubmission,
    existing_leads: Iterable[dict[str, Any]],
) -> dict[str, Any] | None:
    """First lead with the same normalized phone, else the same normalized email."""
    leads = list(existing_leads)
    phone = submission.normalized_phone
    email = submission.normalized_email

    if phone:
        for lead in leads:
            if normalize_phone(lead.get("phone")) == phone:
                return lead
    if email:
        for lead in leads:
            if normalize_email(lead.get("email")) == email:
                return lead
    return None


def build_merge_suggestions(
    submission: IntakeSubmission,
    existing_leads: Iterable[dict[str, Any]],
    *,
    policy: IntakePolicy = DEFAULT_INTAKE_POLICY,
) -> list[dict[str, Any]]:
    """Fuzzy last-name / phone-suffix candidates for a human merge decision.

    Deliberately loose: two unrelated Smiths will be suggested.  Nothing is
    merged automatically.
    """
    last_name = normalize_name(submission.last_name)
    phone = submission.normalized_phone
    suffix = phone[-policy.phone_suffix_length:] if phone else ""

    suggestions: list[dict[str, Any]] = []
    for lead in existing_leads:
        lead_phone = normalize_phone(lead.get("phone"))
        name_match = bool(last_name) and normalize_name(lead.get("last_name")) == last_name
        phone_match = bool(suffix) and bool(lead_phone) and lead_phone.endswith(suffix)
        if not name_match and not phone_match:
            continue

        if name_match and phone_match:
            confidence = policy.name_and_phone_confidence
            reason = "Matching last name and phone digits"
        elif name_match:
            confidence = policy.name_only_confidence
            reason = "Matching last name"
        else:
            confidence = policy.phone_only_confidence
            reason = "Similar phone digits"

        suggestions.append({
            "matched_lead_id": lead["id"],
            "confidence": confidence,
            "reason": reason,
        })

    # sorted() is stable, so equal confidences keep store order.
    suggestions = sorted(suggestions, key=lambda s: s["confidence"], reverse=True)
    return suggestions[: policy.max_merge_suggestions]


def plan_intake(
    submission: IntakeSubmission,
    existing_leads: Iterable[dict[str, Any]],
    *,
    now: datetime,
    policy: IntakePolicy = DEFAULT_INTAKE_POLICY,
) -> IntakePlan:
    """Decide reuse-vs-create, owning location, and merge candidates."""
    leads = list(existing_leads)
    routed = route_location(
        submission.page_url, submission.location_intent, policy=policy,
    )
    suggestions = build_merge_suggestions(submission, leads, policy=policy)
    now_iso = to_iso(now)

    match = find_exact_match(submission, leads)
    if match is not None:
        patch: dict[str, Any] = {
            "message": submission.message if submission.message is not None
            else match.get("message"),
            "source": submission.source,
            "page_url": submission.page_url,
            "location_intent": routed,
            "updated_at": now_iso,
        }
        for name in _REFRESHABLE_FIELDS:
            value = getattr(submission, name)
            if value is not None:
                patch[name] = value
        logger.debug("Intake matched existing lead %s", match["id"])
        return IntakePlan(
            routed_location=routed,
            merge_suggestions=suggestions,
            dedupe_match_id=match["id"],
            lead_patch=patch,
        )

    new_lead: dict[str, Any] = {
        "first_name": submission.first_name.strip(),
        "last_name": submission.last_name.strip(),
        "email": submission.normalized_email or None,
        "phone": submission.normalized_phone or None,
        "source": submission.source,
        "message": submission.message,
        "status": "new",
        "urgency": "medium",
        "lead_score": policy.baseline_lead_score,
        "location_intent": routed,
        "page_url": submission.page_url,
        "utm_source": submission.utm_source,
        "utm_medium": submission.utm_medium,
        "utm_campaign": submission.utm_campaign,
        "clicked_vehicle": submission.clicked_vehicle,
        "consent_sms": submission.consent_sms,
        "consent_phone": submission.consent_phone,
        "has_trade_in": False,
        "deal_value": None,
        "budget_min": None,
        "budget_max": None,
        "first_contact_at": None,
        "last_contact_at": None,
        "closed_at": None,
        "created_at": now_iso,
        "updated_at": now_iso,
    }
    return IntakePlan(
        routed_location=routed,
        merge_suggestions=suggestions,
        new_lead=new_lead,
    )
