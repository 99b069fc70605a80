"""Demo book of business: leads across every stage, plus the lot.

Timestamps are laid out relative to ``now`` so the command centre always has
something to rank.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from dealer_mcp.data.store import RecordStore
from dealer_mcp.normalization import to_iso

# (id, first, last, phone, email, source, stage, urgency, score, location,
#  created_ago, first_contact_after, last_contact_ago, deal_value, budget_max, trade_in)
_LEADS: list[tuple[Any, ...]] = [
    ("lead-demo-001", "Maria", "Lopez", "7345550101", "maria.lopez@example.com",
     "website_form", "new", "high", 92, "wayne",
     timedelta(minutes=25), None, None, None, 38000, True),
    ("lead-demo-002", "James", "Carter", "7345550102", "jcarter@example.com",
     "phone", "contacted", "medium", 70, "taylor",
     timedelta(days=3), timedelta(minutes=4), timedelta(days=2), None, 26000, False),
    ("lead-demo-003", "Aisha", "Khan", "3135550103", "aisha.khan@example.com",
     "facebook", "appointment_set", "medium", 78, "wayne",
     timedelta(days=2), timedelta(minutes=7), timedelta(hours=30), None, 31000, False),
    ("lead-demo-004", "Derek", "Nguyen", "7345550104", None,
     "walk_in", "negotiating", "high", 85, "taylor",
     timedelta(days=5), timedelta(minutes=2), None, 41500, 45000, True),
    ("lead-demo-005", "Priya", "Shah", "2485550105", "priya.shah@example.com",
     "website_form", "financing_review", "medium", 88, "wayne",
     timedelta(days=6), timedelta(minutes=9), timedelta(hours=6), 36200, 40000, False),
    ("lead-demo-006", "Tom", "Becker", "7345550106", "tbecker@example.com",
     "sms", "closed_won", "low", 80, "wayne",
     timedelta(days=12), timedelta(minutes=12), timedelta(days=1), 29800, None, True),
    ("lead-demo-007", "Lena", "Fischer", None, "lena.fischer@example.com",
     "email", "closed_lost", "low", 55, "taylor",
     timedelta(days=20), timedelta(minutes=45), timedelta(days=15), None, 22000, False),
    ("lead-demo-008", "Omar", "Haddad", "3135550108", None,
     "phone", "appointment_showed", "high", 83, "wayne",
     timedelta(days=4), timedelta(minutes=3), timedelta(hours=20), 33900, 35000, True),
]

_CHECKLISTS: dict[str, dict[str, bool]] = {
    "appointment_set": {"quote_shared": False, "docs_requested": False, "consent_verified": False},
    "appointment_showed": {"quote_shared": True, "docs_requested": False, "consent_verified": False},
    "negotiating": {"quote_shared": True, "docs_requested": False, "consent_verified": False},
    "financing_review": {"quote_shared": True, "docs_requested": True, "consent_verified": True},
    "closed_won": {"quote_shared": True, "docs_requested": True, "consent_verified": True},
}

_INVENTORY: list[dict[str, Any]] = [
    {"id": "unit-demo-001", "vin": "1FTFW1E50PFA00001", "year": 2023, "make": "Ford",
     "model": "F-150", "status": "available", "days_in_inventory": 82, "list_price": 48900},
    {"id": "unit-demo-002", "vin": "1C4RJFBG5NC000002", "year": 2022, "make": "Jeep",
     "model": "Grand Cherokee", "status": "available", "days_in_inventory": 51,
     "list_price": 39900},
    {"id": "unit-demo-003", "vin": "2T1BURHE0KC000003", "year": 2019, "make": "Toyota",
     "model": "Corolla", "status": "available", "days_in_inventory": 12, "list_price": 17400},
    {"id": "unit-demo-004", "vin": "5YJ3E1EA7KF000004", "year": 2021, "make": "Tesla",
     "model": "Model 3", "status": "sold", "days_in_inventory": 96, "list_price": 31500},
]


def seed_demo_data(store: RecordStore, *, now: datetime | None = None) -> None:
    """Populate an empty store with the demo book of business."""
    now = now or datetime.now(timezone.utc)

    for (
        lead_id, first, last, phone, email, source, stage, urgency, score, location,
        created_ago, first_after, last_ago, deal_value, budget_max, trade_in,
    ) in _LEADS:
        created_at = now - created_ago
        first_contact = created_at + first_after if first_after else None
        last_contact = now - last_ago if last_ago else first_contact
        closed_at = now - timedelta(days=1) if stage in {"closed_won", "closed_lost"} else None
        store.insert("leads", {
            "id": lead_id,
            "first_name": first,
            "last_name": last,
            "phone": phone,
            "email": email,
            "source": source,
            "status": stage,
            "urgency": urgency,
            "lead_score": score,
            "location_intent": location,
            "page_url": f"https://example-dealer.com/{location}/inventory",
            "message": None,
            "has_trade_in": trade_in,
            "deal_value": deal_value,
            "budget_min": None,
            "budget_max": budget_max,
            "first_contact_at": to_iso(first_contact) if first_contact else None,
            "last_contact_at": to_iso(last_contact) if last_contact else None,
            "closed_at": to_iso(closed_at) if closed_at else None,
            "created_at": to_iso(created_at),
            "updated_at": to_iso(last_contact or created_at),
        })
        store.insert("opportunities", {
            "id": lead_id.replace("lead-", "opp-"),
            "lead_id": lead_id,
            "stage": stage,
            "expected_value": deal_value or budget_max or 0,
            "location": location,
            "checklist": dict(_CHECKLISTS.get(
                stage, {"quote_shared": False, "docs_requested": False, "consent_verified": False},
            )),
            "created_at": to_iso(created_at),
            "updated_at": to_iso(last_contact or created_at),
        })

    for lead_id in ("lead-demo-005", "lead-demo-006"):
        store.insert("consent_events", {
            "lead_id": lead_id,
            "channel": "sms",
            "consented": True,
            "source": "finance_form",
            "proof": f"finance-form:{lead_id}",
            "created_at": to_iso(now - timedelta(days=2)),
        })

    appointments = [
        ("lead-demo-003", "2024 Honda CR-V EX", now + timedelta(hours=20), "confirmed"),
        ("lead-demo-008", "2023 Ford Bronco Sport", now - timedelta(days=1), "showed"),
        ("lead-demo-002", "2022 Chevy Equinox", now - timedelta(days=2), "no_show"),
        ("lead-demo-004", "2023 Ford F-150 XLT", now + timedelta(days=3), "booked"),
    ]
    for lead_id, vehicle, starts_at, status in appointments:
        store.insert("appointments", {
            "lead_id": lead_id,
            "location": "wayne",
            "vehicle_label": vehicle,
            "starts_at": to_iso(starts_at),
            "status": status,
            "created_at": to_iso(now - timedelta(days=3)),
            "updated_at": to_iso(now - timedelta(days=1)),
        })

    finance = [
        ("lead-demo-005", "submitted", 80, ["Proof of residence"]),
        ("lead-demo-006", "approved", 100, []),
        ("lead-demo-004", "needs_docs", 40, ["Proof of income", "Proof of residence"]),
    ]
    for lead_id, status, completion, missing in finance:
        store.insert("finance_applications", {
            "lead_id": lead_id,
            "status": status,
            "completion_percent": completion,
            "missing_items": missing,
            "created_at": to_iso(now - timedelta(days=4)),
            "updated_at": to_iso(now - timedelta(days=1)),
        })

    for unit in _INVENTORY:
        store.insert("inventory", dict(unit))

    store.insert("conversation_threads", {
        "lead_id": "lead-demo-001",
        "channel": "sms",
        "location": "wayne",
        "assigned_rep": "Jordan",
        "has_unread": True,
        "last_message_at": to_iso(now - timedelta(minutes=20)),
    })
