"""Server integration tests: MCP tool wrappers, provider pool, guardrails."""

from __future__ import annotations

import json

from cip_protocol import CIP
from cip_protocol.llm.providers.mock import MockProvider

import dealer_mcp.server as server_mod
from dealer_mcp.data.crm import get_store
from dealer_mcp.server import (
    book_appointment,
    command_center_prompt,
    get_command_actions,
    get_deal_risk_scores,
    get_guarantee_scorecard,
    get_llm_provider,
    get_morning_brief,
    get_operational_kpis,
    get_revenue_forecast,
    get_sla_alerts,
    ingest_inbound_call,
    ingest_inbound_sms,
    intake_lead,
    log_lead_contact,
    move_opportunity_stage,
    queue_workflow,
    record_consent,
    scaffold_catalog_resource,
    set_cip_override,
    set_llm_provider,
    suggest_follow_up_text,
    update_appointment_status,
    update_opportunity_checklist,
)

# ── MCP tool wrapper tests ──────────────────────────────────────


class TestMCPToolWrappers:
    """Verify that MCP-registered functions return strings and work end-to-end."""

    async def test_command_actions_returns_string(self, as_of: str):
        result = await get_command_actions(as_of=as_of)
        assert isinstance(result, str)
        assert len(result) > 0

    async def test_read_tools_return_strings(self, as_of: str):
        for tool in (
            get_sla_alerts,
            get_morning_brief,
            get_operational_kpis,
            get_guarantee_scorecard,
            get_revenue_forecast,
            get_deal_risk_scores,
        ):
            result = await tool(as_of=as_of)
            assert isinstance(result, str)

    async def test_suggest_follow_up_returns_string(self):
        result = await suggest_follow_up_text(lead_id="lead-demo-002", channel="email")
        assert isinstance(result, str)

    async def test_raw_mode_through_wrapper(self, as_of: str, mock_provider: MockProvider):
        result = await get_revenue_forecast(as_of=as_of, raw=True)
        payload = json.loads(result)
        assert payload["_tool"] == "get_revenue_forecast"
        assert payload["data"]["forecast"]["this_month"] == 51565
        assert mock_provider.call_count == 0

    async def test_wrapper_accepts_orchestration_params(self, as_of: str):
        result = await get_command_actions(
            as_of=as_of,
            provider="anthropic",
            scaffold_id="command_center",
            policy="compact mode",
            context_notes="Sales manager wants a short list.",
            raw=False,
        )
        assert isinstance(result, str)
        assert len(result) > 0

    async def test_command_wrapper_sanitizes_internal_errors(self, monkeypatch):
        async def _raise(*_args, **_kwargs):
            raise RuntimeError("simulated-failure")

        monkeypatch.setattr("dealer_mcp.server.get_command_actions_impl", _raise)
        result = await get_command_actions()
        assert "having trouble ranking command actions" in result.lower()
        assert "simulated-failure" not in result.lower()

    async def test_bad_as_of_is_reported(self):
        result = await get_sla_alerts(as_of="yesterday-ish")
        assert result == "Error: as_of must be an ISO-8601 timestamp."

    async def test_invalid_scaffold_id_fails_fast(self):
        result = await get_command_actions(scaffold_id="missing_scaffold")
        assert "unknown scaffold_id" in result.lower()
        assert "missing_scaffold" in result

    async def test_provider_override_is_forwarded(self, monkeypatch, mock_cip: CIP):
        captured: dict[str, str] = {}

        def _fake_prepare_cip_orchestration(**kwargs):
            captured["provider"] = kwargs["provider"]
            captured["tool_name"] = kwargs["tool_name"]
            return mock_cip, None, None, None

        monkeypatch.setattr(
            server_mod,
            "_prepare_cip_orchestration",
            _fake_prepare_cip_orchestration,
        )
        await get_morning_brief(provider="openai")
        assert captured == {"provider": "openai", "tool_name": "get_morning_brief"}


class TestWriteWrappers:
    def test_intake_then_contact(self, as_of: str):
        result = json.loads(intake_lead(
            first_name="Ray", last_name="Ortiz", source="phone",
            phone="313-555-0144", as_of=as_of,
        ))
        assert result["created_new_lead"] is True
        logged = log_lead_contact(lead_id=result["lead_id"], as_of=as_of)
        assert "Status: contacted" in logged

    def test_invalid_consent_channel_returns_message(self):
        result = record_consent(
            lead_id="lead-demo-001", channel="fax", consented=True, proof="form-1",
        )
        assert isinstance(result, str)
        assert "Unknown consent channel" in result

    def test_write_wrapper_sanitizes_internal_errors(self, monkeypatch):
        def _raise(**_kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("dealer_mcp.server.queue_workflow_impl", _raise)
        result = queue_workflow(workflow_key="nurture")
        assert "having trouble queueing this workflow" in result.lower()
        assert "disk on fire" not in result

    def test_gate_then_move(self, as_of: str):
        blocked = move_opportunity_stage(
            target_stage="negotiating", lead_id="lead-demo-003", as_of=as_of,
        )
        assert "blocked" in blocked
        update_opportunity_checklist(lead_id="lead-demo-003", quote_shared=True, as_of=as_of)
        moved = move_opportunity_stage(
            target_stage="negotiating", lead_id="lead-demo-003", as_of=as_of,
        )
        assert moved == "Moved opportunity opp-demo-003 to negotiating."
        assert get_store().get("leads", "lead-demo-003")["status"] == "negotiating"

    def test_bad_appointment_time_returns_message(self):
        result = book_appointment(
            lead_id="lead-demo-001", starts_at="tomorrow", vehicle_label="CR-V",
        )
        assert result == "Error: starts_at must be an ISO-8601 timestamp."

    def test_unknown_appointment_status_returns_message(self, as_of: str):
        appointment = get_store().find_first("appointments", "lead_id", "lead-demo-004")
        result = update_appointment_status(
            appointment_id=appointment["id"], status="vanished", as_of=as_of,
        )
        assert "Unknown appointment status" in result

    def test_inbound_text_then_call(self, as_of: str):
        sms = json.loads(ingest_inbound_sms(
            phone="248-555-0105", body="Any update on financing?", as_of=as_of,
        ))
        assert sms["trigger_workflow"] == "missed_call_text_back"
        call = json.loads(ingest_inbound_call(
            phone="248-555-0105", outcome="voicemail", duration_seconds=35, as_of=as_of,
        ))
        assert call == {"stored": True, "missed_call_follow_up": False}

    def test_bad_received_at_returns_message(self):
        result = ingest_inbound_call(phone="2485550105", outcome="missed", received_at="earlier")
        assert result == "Error: received_at must be an ISO-8601 timestamp."

    def test_ingest_wrapper_sanitizes_internal_errors(self, monkeypatch):
        def _raise(**_kwargs):
            raise RuntimeError("carrier webhook exploded")

        monkeypatch.setattr("dealer_mcp.server.ingest_inbound_sms_impl", _raise)
        result = ingest_inbound_sms(phone="2485550105", body="hi")
        assert "having trouble receiving this text" in result.lower()
        assert "exploded" not in result


# ── Resources and prompts ───────────────────────────────────────


class TestResources:
    def test_scaffold_catalog(self):
        payload = scaffold_catalog_resource()
        assert payload["domain"] == "dealership_crm"
        assert payload["default_scaffold_id"] == "general_advice"
        assert payload["count"] == 9
        ids = [entry["id"] for entry in payload["scaffolds"]]
        assert ids == sorted(ids)
        assert "command_center" in ids

    def test_command_center_prompt(self):
        prompt = command_center_prompt()
        assert "get_morning_brief" in prompt
        assert "move_opportunity_stage" in prompt
        assert '"count": 9' in prompt

    def test_entry_point_exists(self):
        assert callable(server_mod.main)


def _reset_provider_state() -> None:
    pool = server_mod._pool
    pool._pool.clear()
    pool._provider_models.clear()
    pool._default_provider = ""
    pool.set_override(None)


class TestProviderPool:
    def test_provider_pool_builds_lazily_and_caches(self, monkeypatch):
        _reset_provider_state()
        monkeypatch.delenv("CIP_LLM_PROVIDER", raising=False)
        monkeypatch.delenv("CIP_LLM_MODEL", raising=False)

        builds: list[tuple[str, str]] = []
        pool = server_mod._pool

        def _fake_build(provider: str, model: str = "") -> object:
            builds.append((provider, model))
            return {"provider": provider, "model": model}

        monkeypatch.setattr(pool, "_build", _fake_build)

        anth_1 = pool.get("anthropic")
        anth_2 = pool.get("anthropic")
        openai_1 = pool.get("openai")

        assert anth_1 is anth_2
        assert anth_1 is not openai_1
        assert builds == [("anthropic", ""), ("openai", "")]

    def test_set_cip_override_still_wins(self, mock_cip: CIP):
        _reset_provider_state()
        set_cip_override(mock_cip)
        assert server_mod._pool.get("openai") is mock_cip

    def test_set_llm_provider_persists_model_per_provider(self, monkeypatch):
        _reset_provider_state()
        monkeypatch.delenv("CIP_LLM_PROVIDER", raising=False)
        monkeypatch.delenv("CIP_LLM_MODEL", raising=False)

        pool = server_mod._pool

        def _fake_build(provider: str, model: str = "") -> object:
            return {"provider": provider, "model": model}

        monkeypatch.setattr(pool, "_build", _fake_build)

        msg = set_llm_provider("openai", "gpt-custom")
        assert "openai/gpt-custom" in msg
        assert pool._provider_models["openai"] == "gpt-custom"

        status = get_llm_provider()
        assert status.startswith("openai/gpt-custom")
        assert "default=openai" in status

    def test_set_llm_provider_reports_build_failure(self, monkeypatch):
        _reset_provider_state()
        pool = server_mod._pool

        def _failing_build(provider: str, model: str = "") -> object:
            raise RuntimeError("missing key")

        monkeypatch.setattr(pool, "_build", _failing_build)
        result = set_llm_provider("anthropic")
        assert result == "Failed to switch to anthropic: check API key is set."


# ── Adversarial guardrail tests ─────────────────────────────────


class TestGuardrails:
    """CIP guardrails flag prohibited sales guidance from the mock provider."""

    async def test_consent_shortcut_flagged(self, mock_cip: CIP, mock_provider: MockProvider):
        mock_provider.response_content = "No consent on file, but text them anyway tonight."
        result = await mock_cip.run(
            "Draft an SMS for this lead",
            tool_name="suggest_follow_up_text",
            data_context={"lead": {"first_name": "Maria"}, "sms_consent": False},
        )
        assert len(result.response.guardrail_flags) > 0

    async def test_gate_bypass_flagged(self, mock_cip: CIP, mock_provider: MockProvider):
        mock_provider.response_content = "Just skip the checklist and mark it closed won anyway."
        result = await mock_cip.run(
            "How do I close this deal?",
            tool_name="get_deal_risk_scores",
            data_context={"deal_decay": []},
        )
        assert len(result.response.guardrail_flags) > 0

    async def test_regex_approval_promise(self, mock_cip: CIP, mock_provider: MockProvider):
        mock_provider.response_content = "Priya, you will definitely be approved by Friday."
        result = await mock_cip.run(
            "What should I tell the customer about financing?",
            tool_name="get_deal_risk_scores",
            data_context={"finance_readiness": []},
        )
        assert len(result.response.guardrail_flags) > 0
