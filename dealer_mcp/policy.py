"""Injectable threshold and weight tables for the decision engines.

Every engine takes one of these as a keyword argument and falls back to the
module-level default, so tests and alternate rooftops can swap policies
without touching engine code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from dealer_mcp.normalization import ensure_aware

# ── Business hours ──────────────────────────────────────────────────

DEFAULT_SHOWROOM_TIMEZONE = "America/Detroit"


@dataclass(frozen=True)
class BusinessHours:
    """Opening windows keyed by ``datetime.weekday()`` (Monday == 0).

    A missing weekday means closed all day.  Hours are ``[open, close)``.
    """

    windows: dict[int, tuple[int, int]] = field(default_factory=lambda: {
        0: (9, 19),
        1: (9, 19),
        2: (9, 19),
        3: (9, 19),
        4: (9, 19),
        5: (9, 17),
    })
    timezone: str = DEFAULT_SHOWROOM_TIMEZONE

    def local(self, now: datetime) -> datetime:
        """Convert *now* to showroom wall time (unchanged if the timezone is blank)."""
        if not self.timezone:
            return now
        return ensure_aware(now).astimezone(ZoneInfo(self.timezone))

    def is_open(self, now: datetime) -> bool:
        local_now = self.local(now)
        window = self.windows.get(local_now.weekday())
        if window is None:
            return False
        open_hour, close_hour = window
        return open_hour <= local_now.hour < close_hour


# ── Intake ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IntakePolicy:
    baseline_lead_score: int = 65
    default_location: str = "wayne"
    # Substring (matched case-insensitively in the page URL) -> location.
    url_location_keywords: tuple[tuple[str, str], ...] = (("taylor", "taylor"),)
    phone_suffix_length: int = 7
    name_and_phone_confidence: float = 0.92
    name_only_confidence: float = 0.72
    phone_only_confidence: float = 0.64
    max_merge_suggestions: int = 3


# ── SLA + command actions ───────────────────────────────────────────


@dataclass(frozen=True)
class SlaPolicy:
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    min_wait_minutes: int = 5
    high_after_minutes: int = 10
    critical_after_minutes: int = 20
    first_response_target_minutes: int = 5


@dataclass(frozen=True)
class CommandPolicy:
    severity_weights: dict[str, float] = field(default_factory=lambda: {
        "critical": 50.0,
        "high": 30.0,
        "medium": 15.0,
        "admin": 5.0,
    })
    value_divisor: float = 1000.0
    value_weight_cap: float = 25.0
    # (max hours until due, weight); first band that fits wins.
    urgency_bands: tuple[tuple[float, float], ...] = ((24.0, 20.0), (72.0, 10.0))
    hot_lead_min_score: int = 80
    hot_lead_grace: timedelta = timedelta(minutes=10)
    follow_up_after: timedelta = timedelta(hours=24)
    deal_risk_max_age: timedelta = timedelta(hours=72)
    deal_risk_follow_up: timedelta = timedelta(hours=24)
    aging_inventory_days: int = 45
    aging_inventory_medium_days: int = 75
    inventory_due_in: timedelta = timedelta(days=1)


# ── Guarantee scorecard ─────────────────────────────────────────────


@dataclass(frozen=True)
class GuaranteeTarget:
    key: str
    label: str
    baseline: float
    target_delta: float
    direction: str  # "up" | "down"
    unit: str  # "minutes" | "percent"
    note: str


DEFAULT_GUARANTEE_TARGETS: tuple[GuaranteeTarget, ...] = (
    GuaranteeTarget(
        key="time_to_first_response",
        label="Time to first response",
        baseline=14.2,
        target_delta=5,
        direction="down",
        unit="minutes",
        note="Target median <= 5 minutes.",
    ),
    GuaranteeTarget(
        key="contact_rate",
        label="Contact rate",
        baseline=52.1,
        target_delta=20,
        direction="up",
        unit="percent",
        note="Target +20% versus baseline.",
    ),
    GuaranteeTarget(
        key="appointment_set_rate",
        label="Appointment set rate",
        baseline=24.6,
        target_delta=15,
        direction="up",
        unit="percent",
        note="Target +15% versus baseline.",
    ),
    GuaranteeTarget(
        key="show_rate",
        label="Show rate",
        baseline=57.2,
        target_delta=10,
        direction="up",
        unit="percent",
        note="Target +10% improvement.",
    ),
    GuaranteeTarget(
        key="finance_completion",
        label="Finance completion",
        baseline=48.4,
        target_delta=15,
        direction="up",
        unit="percent",
        note="Target +15% versus baseline.",
    ),
)


@dataclass(frozen=True)
class ScorecardPolicy:
    targets: tuple[GuaranteeTarget, ...] = DEFAULT_GUARANTEE_TARGETS
    on_track_ratio: float = 0.6
    healthy_recommendation: str = (
        "All guarantee tracks are healthy. Continue parallel run and prepare cutover."
    )
    at_risk_recommendation: str = (
        "Keep parallel run active and close at-risk KPI gaps before cutover."
    )


# ── Revenue forecast ────────────────────────────────────────────────


@dataclass(frozen=True)
class ForecastPolicy:
    near_term_days: int = 7
    near_term_weights: dict[str, float] = field(default_factory=lambda: {
        "closed_won": 1.0,
        "negotiating": 0.35,
    })
    monthly_weights: dict[str, float] = field(default_factory=lambda: {
        "closed_won": 1.0,
        "negotiating": 0.35,
        "financing_review": 0.2,
    })


DEFAULT_INTAKE_POLICY = IntakePolicy()
DEFAULT_SLA_POLICY = SlaPolicy()
DEFAULT_COMMAND_POLICY = CommandPolicy()
DEFAULT_SCORECARD_POLICY = ScorecardPolicy()
DEFAULT_FORECAST_POLICY = ForecastPolicy()
