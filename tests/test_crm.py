"""CRM facade tests: intake persistence, contact logging, gated stage writes."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from dealer_mcp.data.crm import (
    book_appointment,
    find_opportunity_for_lead,
    get_store,
    ingest_inbound_call,
    ingest_inbound_sms,
    intake_lead,
    load_snapshot,
    log_contact,
    open_conversation_thread,
    queue_workflow,
    record_consent,
    set_appointment_status,
    start_finance_application,
    transition_opportunity,
    update_checklist,
    update_finance_application,
    upsert_inventory_unit,
)
from dealer_mcp.data.store import RecordNotFoundError
from dealer_mcp.intake.router import IntakeSubmission
from dealer_mcp.pipeline.stage_gate import CONSENT_REQUIRED_REASON


def _submission(phone: str = "734-555-0001", **overrides) -> IntakeSubmission:
    fields = {
        "first_name": "Nina",
        "last_name": "Park",
        "source": "website_form",
        "page_url": "https://example-dealer.com/inventory",
        "phone": phone,
    }
    fields.update(overrides)
    return IntakeSubmission(**fields)


class TestIntake:
    def test_reformatted_phone_dedupes(self, now):
        first = intake_lead(_submission("734-555-0001"), now=now)
        second = intake_lead(_submission("(734) 555-0001", first_name="NINA"), now=now)
        assert first["created_new_lead"] is True
        assert first["dedupe_match_id"] is None
        assert second["created_new_lead"] is False
        assert second["dedupe_match_id"] == first["lead_id"]
        assert second["lead_id"] == first["lead_id"]
        assert get_store().count("leads") == 9

    def test_new_lead_gets_opportunity(self, now):
        result = intake_lead(_submission(), now=now)
        opportunity = find_opportunity_for_lead(result["lead_id"])
        assert opportunity["stage"] == "new"
        assert opportunity["checklist"] == {
            "quote_shared": False, "docs_requested": False, "consent_verified": False,
        }

    def test_taylor_page_routes_to_taylor(self, now):
        result = intake_lead(
            _submission(page_url="https://example-dealer.com/Taylor/used"), now=now,
        )
        assert result["routed_location"] == "taylor"
        lead = get_store().get("leads", result["lead_id"])
        assert lead["location_intent"] == "taylor"

    def test_reuse_refreshes_source(self, now):
        result = intake_lead(
            _submission("734 555 0101", first_name="Maria", last_name="Lopez", source="sms"),
            now=now,
        )
        assert result["lead_id"] == "lead-demo-001"
        lead = get_store().get("leads", "lead-demo-001")
        assert lead["source"] == "sms"
        assert lead["first_name"] == "Maria"

    def test_consent_flags_become_events(self, now):
        result = intake_lead(_submission(consent_sms=True, consent_phone=False), now=now)
        events = [
            e for e in get_store().list_all("consent_events")
            if e["lead_id"] == result["lead_id"]
        ]
        assert {(e["channel"], e["consented"]) for e in events} == {
            ("sms", True), ("phone", False),
        }
        assert all(e["source"] == "website_form" for e in events)

    def test_concurrent_same_phone_creates_one_lead(self, now):
        def _submit(i: int) -> dict:
            return intake_lead(_submission("313-555-7777", first_name=f"Dup{i}"), now=now)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(_submit, range(16)))
        assert sum(1 for r in results if r["created_new_lead"]) == 1
        assert len({r["lead_id"] for r in results}) == 1


class TestContact:
    def test_first_contact_moves_new_to_contacted(self, now):
        lead = log_contact("lead-demo-001", now=now)
        assert lead["status"] == "contacted"
        assert lead["first_contact_at"] == now.isoformat()
        assert lead["last_contact_at"] == now.isoformat()
        assert find_opportunity_for_lead("lead-demo-001")["stage"] == "contacted"

    def test_first_contact_set_once(self, now):
        before = get_store().get("leads", "lead-demo-002")["first_contact_at"]
        lead = log_contact("lead-demo-002", now=now)
        assert lead["first_contact_at"] == before
        assert lead["last_contact_at"] == now.isoformat()

    def test_unknown_lead(self, now):
        with pytest.raises(RecordNotFoundError):
            log_contact("ghost", now=now)


class TestStageTransitions:
    def test_blocked_move_writes_nothing(self, now):
        outcome = transition_opportunity("opp-demo-004", "financing_review", now=now)
        assert outcome["allowed"] is False
        assert len(outcome["reasons"]) == 2
        assert get_store().get("opportunities", "opp-demo-004")["stage"] == "negotiating"
        assert get_store().get("leads", "lead-demo-004")["status"] == "negotiating"

    def test_consent_event_unlocks_financing_review(self, now):
        update_checklist("opp-demo-004", now=now, docs_requested=True, consent_verified=True)
        outcome = transition_opportunity("opp-demo-004", "financing_review", now=now)
        assert outcome["reasons"] == [CONSENT_REQUIRED_REASON]

        record_consent(
            "lead-demo-004", channel="sms", consented=True, source="verbal_recording",
            proof="call-recording-88", now=now,
        )
        outcome = transition_opportunity("opp-demo-004", "financing_review", now=now)
        assert outcome["allowed"] is True
        assert outcome["opportunity"]["stage"] == "financing_review"
        assert get_store().get("leads", "lead-demo-004")["status"] == "financing_review"

    def test_closed_won_stamps_closed_at(self, now):
        outcome = transition_opportunity("opp-demo-005", "closed_won", now=now)
        assert outcome["allowed"] is True
        lead = get_store().get("leads", "lead-demo-005")
        assert lead["status"] == "closed_won"
        assert lead["closed_at"] == now.isoformat()

    def test_checklist_never_cleared(self, now):
        opportunity = update_checklist("opp-demo-005", now=now, quote_shared=False)
        assert opportunity["checklist"]["quote_shared"] is True

    def test_unknown_opportunity(self, now):
        with pytest.raises(RecordNotFoundError):
            transition_opportunity("opp-ghost", "contacted", now=now)


class TestOtherWrites:
    def test_record_consent_rejects_unknown_channel(self, now):
        with pytest.raises(ValueError, match="Unknown consent channel"):
            record_consent(
                "lead-demo-001", channel="fax", consented=True, source="manual",
                proof="x", now=now,
            )

    def test_book_appointment_defaults_to_lead_location(self, now):
        appointment = book_appointment(
            "lead-demo-002", starts_at=now + timedelta(days=1),
            vehicle_label="2024 Toyota RAV4", now=now,
        )
        assert appointment["location"] == "taylor"
        assert appointment["status"] == "booked"

    def test_appointment_status(self, now):
        appointment = book_appointment(
            "lead-demo-001", starts_at=now + timedelta(days=1), vehicle_label="CR-V", now=now,
        )
        updated = set_appointment_status(appointment["id"], "showed", now=now)
        assert updated["status"] == "showed"
        with pytest.raises(ValueError, match="Unknown appointment status"):
            set_appointment_status(appointment["id"], "maybe", now=now)

    def test_finance_application_lifecycle(self, now):
        application = start_finance_application("lead-demo-003", now=now)
        assert application["status"] == "started"
        assert application["missing_items"] == [
            "Driver license", "Proof of income", "Proof of residence",
        ]
        updated = update_finance_application(
            application["id"], now=now, status="submitted", completion_percent=90,
            missing_items=[],
        )
        assert updated["status"] == "submitted"
        assert updated["missing_items"] == []
        with pytest.raises(ValueError, match="between 0 and 100"):
            update_finance_application(application["id"], now=now, completion_percent=120)

    def test_upsert_inventory(self):
        new_id = upsert_inventory_unit({"year": 2020, "make": "Honda", "model": "Civic",
                                        "status": "available", "days_in_inventory": 3})
        assert new_id.startswith("unit-")
        assert upsert_inventory_unit({"id": "unit-demo-001", "status": "sold"}) == "unit-demo-001"
        unit = get_store().get("inventory", "unit-demo-001")
        assert unit["status"] == "sold"
        assert unit["model"] == "F-150"

    def test_conversation_thread(self, now):
        thread = open_conversation_thread(
            "lead-demo-002", channel="email", now=now, assigned_rep="Sam",
        )
        assert thread["location"] == "taylor"
        assert len(load_snapshot().conversation_threads) == 2
        with pytest.raises(ValueError, match="Unknown thread channel"):
            open_conversation_thread("lead-demo-002", channel="fax", now=now)

    def test_queue_workflow(self, now):
        run = queue_workflow(
            "missed_call_text_back", lead_id="lead-demo-001", context={"attempt": 1}, now=now,
        )
        assert run["status"] == "queued"
        assert '"attempt": 1' in run["detail"]
        with pytest.raises(RecordNotFoundError):
            queue_workflow("missed_call_text_back", lead_id="ghost", now=now)


class TestInboundSignals:
    def test_sms_matches_lead_by_phone_digits(self, now):
        received = now - timedelta(minutes=2)
        result = ingest_inbound_sms(
            "(734) 555-0101", "Is the F-150 still there?", received_at=received, now=now,
        )
        assert result == {"stored": True, "trigger_workflow": "missed_call_text_back"}
        message = get_store().find_first("conversations", "lead_id", "lead-demo-001")
        assert message["id"].startswith("msg-")
        assert message["direction"] == "inbound"
        assert message["body"] == "Is the F-150 still there?"
        assert message["created_at"] == received.isoformat()
        assert get_store().get("leads", "lead-demo-001")["updated_at"] == now.isoformat()

    def test_sms_from_unknown_number_is_not_stored(self, now):
        result = ingest_inbound_sms("555-000-9999", "hello", received_at=now, now=now)
        assert result == {"stored": False, "trigger_workflow": "no_lead_match"}
        assert get_store().count("conversations") == 0

    def test_sms_without_digits_is_not_matched(self, now):
        result = ingest_inbound_sms("unknown", "hello", received_at=now, now=now)
        assert result["stored"] is False

    def test_missed_call_requests_follow_up(self, now):
        result = ingest_inbound_call("734.555.0102", "missed", 0, received_at=now, now=now)
        assert result == {"stored": True, "missed_call_follow_up": True}
        event = get_store().find_first("call_events", "lead_id", "lead-demo-002")
        assert event["id"].startswith("call-")
        assert event["outcome"] == "missed"
        assert event["duration_seconds"] == 0
        assert get_store().get("leads", "lead-demo-002")["updated_at"] == now.isoformat()

    def test_answered_call_needs_no_follow_up(self, now):
        result = ingest_inbound_call("7345550102", "answered", 240, received_at=now, now=now)
        assert result == {"stored": True, "missed_call_follow_up": False}

    def test_call_from_unknown_number(self, now):
        result = ingest_inbound_call("2125550000", "missed", 0, received_at=now, now=now)
        assert result == {"stored": False, "missed_call_follow_up": False}
        assert get_store().count("call_events") == 0

    def test_negative_duration_rejected(self, now):
        with pytest.raises(ValueError, match="cannot be negative"):
            ingest_inbound_call("7345550102", "answered", -5, received_at=now, now=now)
