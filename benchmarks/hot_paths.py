#!/usr/bin/env python3
"""Performance benchmark for DealerCRM intake and command-centre hot paths."""

from __future__ import annotations

import argparse
import asyncio
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from dealer_mcp.command.actions import build_command_actions
from dealer_mcp.data.crm import intake_lead, load_snapshot, set_store
from dealer_mcp.data.store import SqliteRecordStore
from dealer_mcp.intake.router import IntakeSubmission
from dealer_mcp.metrics.kpi import build_operational_kpis
from dealer_mcp.normalization import to_iso
from dealer_mcp.tools.command_center import get_command_actions_impl

NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)
STAGES = ["new", "contacted", "appointment_set", "negotiating", "financing_review", "closed_won"]
URGENCY = ["low", "medium", "high"]
LOCATIONS = ["wayne", "taylor"]


def make_lead(i: int) -> dict:
    created_at = NOW - timedelta(hours=(i % 400) + 1)
    contacted = i % 7 != 0
    return {
        "id": f"BM-{i:07d}",
        "first_name": f"Buyer{i}",
        "last_name": "Bench",
        "phone": f"734{i:07d}",
        "email": f"buyer{i}@bench.test",
        "source": "website_form",
        "status": STAGES[i % len(STAGES)],
        "urgency": URGENCY[i % 3],
        "lead_score": 50 + (i % 50),
        "location_intent": LOCATIONS[i % 2],
        "deal_value": 20_000 + (i % 200) * 150,
        "first_contact_at": to_iso(created_at + timedelta(minutes=i % 30)) if contacted else None,
        "last_contact_at": to_iso(created_at + timedelta(hours=i % 90)) if contacted else None,
        "created_at": to_iso(created_at),
        "updated_at": to_iso(created_at),
    }


class NullCIP:
    """Minimal CIP mock that accepts all keyword args from orchestration."""

    async def run(self, user_input, **kwargs):
        return SimpleNamespace(response=SimpleNamespace(content="ok"))


def _make_store(records: int) -> SqliteRecordStore:
    store = SqliteRecordStore(":memory:")
    with store.atomic():
        for i in range(records):
            lead = make_lead(i)
            store.insert("leads", lead)
            store.insert("opportunities", {
                "lead_id": lead["id"],
                "stage": lead["status"],
                "checklist": {"quote_shared": i % 2 == 0, "docs_requested": False,
                              "consent_verified": False},
            })
        for i in range(records // 20):
            store.insert("inventory", {
                "year": 2020, "make": "Ford", "model": "Escape", "status": "available",
                "days_in_inventory": 20 + (i % 90), "list_price": 24_000,
            })
    return store


# ── Benchmarks ────────────────────────────────────────────────────────


def bench_intake(records: int, submissions: int) -> tuple[float, float]:
    store = _make_store(records)
    set_store(store)
    try:
        start = time.perf_counter()
        for i in range(submissions):
            intake_lead(
                IntakeSubmission(
                    first_name="Repeat",
                    last_name="Buyer",
                    source="website_form",
                    phone=f"(734) {i % records:07d}",
                ),
                now=NOW,
            )
        elapsed = time.perf_counter() - start
    finally:
        set_store(None)
        store.close()
    return elapsed, submissions / max(elapsed, 1e-9)


def bench_command_actions(records: int, repeats: int) -> tuple[float, int]:
    store = _make_store(records)
    leads = store.list_all("leads")
    inventory = store.list_all("inventory")
    start = time.perf_counter()
    for _ in range(repeats):
        actions = build_command_actions(leads, inventory, now=NOW)
    elapsed = time.perf_counter() - start
    store.close()
    return elapsed, len(actions)


def bench_kpis(records: int, repeats: int) -> float:
    store = _make_store(records)
    leads = store.list_all("leads")
    opportunities = store.list_all("opportunities")
    start = time.perf_counter()
    for _ in range(repeats):
        build_operational_kpis(leads, opportunities, [], [], now=NOW)
    elapsed = time.perf_counter() - start
    store.close()
    return elapsed


async def bench_command_tool(records: int, repeats: int) -> tuple[float, float]:
    store = _make_store(records)
    set_store(store)
    cip = NullCIP()
    as_of = NOW.isoformat()
    # Warmup
    await get_command_actions_impl(cip, as_of=as_of, raw=True)

    start = time.perf_counter()
    for _ in range(repeats):
        await get_command_actions_impl(cip, as_of=as_of, raw=True)
    elapsed = time.perf_counter() - start
    set_store(None)
    store.close()
    return elapsed, (elapsed / max(repeats, 1)) * 1000


def bench_snapshot(records: int, repeats: int) -> float:
    store = _make_store(records)
    set_store(store)
    start = time.perf_counter()
    for _ in range(repeats):
        load_snapshot()
    elapsed = time.perf_counter() - start
    set_store(None)
    store.close()
    return elapsed


# ── Main ──────────────────────────────────────────────────────────────


async def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark DealerCRM hot paths.")
    parser.add_argument("--records", type=int, default=20_000)
    parser.add_argument("--repeats", type=int, default=20)
    args = parser.parse_args()

    print("dealercrm_hot_path_benchmark")
    print(f"records={args.records}")
    print(f"repeats={args.repeats}")
    print()

    intake_elapsed, intake_rps = bench_intake(args.records, 500)
    print(f"intake_dedupe_seconds={intake_elapsed:.6f}")
    print(f"intake_dedupe_per_sec={intake_rps:.0f}")
    print()

    actions_elapsed, action_count = bench_command_actions(args.records, args.repeats)
    print(f"command_actions_seconds={actions_elapsed:.6f}")
    print(f"command_actions_count={action_count}")
    print()

    kpi_elapsed = bench_kpis(args.records, args.repeats)
    print(f"operational_kpis_seconds={kpi_elapsed:.6f}")
    print()

    snapshot_elapsed = bench_snapshot(args.records, args.repeats)
    print(f"load_snapshot_seconds={snapshot_elapsed:.6f}")
    print()

    tool_elapsed, tool_avg_ms = await bench_command_tool(args.records, args.repeats)
    print(f"command_tool_raw_seconds={tool_elapsed:.6f}")
    print(f"command_tool_raw_avg_ms={tool_avg_ms:.3f}")


if __name__ == "__main__":
    asyncio.run(main())
