"""Revenue forecast tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dealer_mcp.forecast import (
    build_revenue_forecast,
    forecast_windows,
    half_up,
    lead_expected_value,
    lead_reference_date,
)
from dealer_mcp.policy import ForecastPolicy

NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


def _lead(status: str, value: float, at: datetime, **fields) -> dict:
    return {"id": "L", "status": status, "deal_value": value, "updated_at": at.isoformat(), **fields}


class TestHelpers:
    def test_half_up(self):
        assert half_up(2.5) == 3
        assert half_up(2.4999) == 2
        assert half_up(-0.5) == 0

    def test_expected_value_fallbacks(self):
        assert lead_expected_value({"deal_value": 30000, "budget_max": 40000}) == 30000
        assert lead_expected_value({"budget_max": 40000, "budget_min": 20000}) == 40000
        assert lead_expected_value({"budget_min": 20000}) == 20000
        assert lead_expected_value({}) == 0

    def test_reference_date_prefers_closed_at(self):
        lead = {
            "closed_at": "2026-03-01T00:00:00+00:00",
            "updated_at": "2026-03-05T00:00:00+00:00",
            "created_at": "2026-02-01T00:00:00+00:00",
        }
        assert lead_reference_date(lead, NOW) == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert lead_reference_date({}, NOW) == NOW


class TestWindows:
    def test_bounds(self):
        windows = forecast_windows(NOW)
        assert windows["next_7_days"] == (NOW, NOW + timedelta(days=7))
        start, end = windows["this_month"]
        assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 4, 1, tzinfo=timezone.utc) - timedelta(microseconds=1)
        start, end = windows["next_month"]
        assert start == datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 4, 30, 23, 0, tzinfo=timezone.utc)

    def test_december_rolls_into_next_year(self):
        december = datetime(2026, 12, 15, tzinfo=timezone.utc)
        windows = forecast_windows(december)
        assert windows["this_month"][0] == datetime(2026, 12, 1, tzinfo=timezone.utc)
        assert windows["next_month"][0] == datetime(2027, 1, 1, tzinfo=timezone.utc)
        assert windows["next_month"][1] == datetime(2027, 1, 31, 23, 0, tzinfo=timezone.utc)


class TestBuildRevenueForecast:
    def test_stage_weights(self):
        tomorrow = NOW + timedelta(days=1)
        leads = [
            _lead("negotiating", 10000, tomorrow),
            _lead("financing_review", 10000, tomorrow),
            _lead("closed_won", 5000, tomorrow),
            _lead("closed_lost", 50000, tomorrow),
            _lead("new", 50000, tomorrow),
        ]
        forecast = build_revenue_forecast(leads, now=NOW)
        assert forecast == {"next_7_days": 8500, "this_month": 10500, "next_month": 0}

    def test_seven_day_window_excludes_financing_review(self):
        leads = [_lead("financing_review", 100000, NOW + timedelta(hours=1))]
        forecast = build_revenue_forecast(leads, now=NOW)
        assert forecast["next_7_days"] == 0
        assert forecast["this_month"] == 20000

    def test_next_month_bucket(self):
        april = datetime(2026, 4, 5, tzinfo=timezone.utc)
        leads = [_lead("closed_won", 20000, april, closed_at=april.isoformat())]
        assert build_revenue_forecast(leads, now=NOW)["next_month"] == 20000

    def test_last_hour_of_next_month_excluded(self):
        late = datetime(2026, 4, 30, 23, 30, tzinfo=timezone.utc)
        leads = [_lead("closed_won", 20000, late)]
        assert build_revenue_forecast(leads, now=NOW)["next_month"] == 0

    def test_outside_windows_ignored(self):
        leads = [_lead("closed_won", 20000, datetime(2026, 2, 20, tzinfo=timezone.utc))]
        assert build_revenue_forecast(leads, now=NOW) == {
            "next_7_days": 0, "this_month": 0, "next_month": 0,
        }

    def test_rounded_to_whole_units(self):
        leads = [_lead("negotiating", 1001, NOW + timedelta(days=1))]
        assert build_revenue_forecast(leads, now=NOW)["this_month"] == 350

    def test_custom_policy(self):
        policy = ForecastPolicy(near_term_weights={"negotiating": 1.0})
        leads = [_lead("negotiating", 1000, NOW + timedelta(days=1))]
        assert build_revenue_forecast(leads, now=NOW, policy=policy)["next_7_days"] == 1000

    def test_empty_book(self):
        assert build_revenue_forecast([], now=NOW) == {
            "next_7_days": 0, "this_month": 0, "next_month": 0,
        }

    def test_seeded_book(self, store, now):
        forecast = build_revenue_forecast(store.list_all("leads"), now=now)
        assert forecast == {"next_7_days": 0, "this_month": 51565, "next_month": 0}
