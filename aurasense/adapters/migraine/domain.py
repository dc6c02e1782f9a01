"""
Migraine-specific domain models on top of the core record store and risk engine.

This adapter supplies:
- the namespaces the app keeps and the typed payload stored in each
- the daily ``general`` snapshot the decision tree scores
- feature profiles: which side of a split is risky and how to phrase it
- the bundled decision tree and a factory wiring the prediction pipeline

Payloads carry a ``schema_version`` so stored records can evolve without a
storage-level migration.
"""

from collections.abc import Callable
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from aurasense.core.config import PredictionConfig
from aurasense.core.domain.models import Direction
from aurasense.core.domain.profiles import FeatureProfile
from aurasense.core.domain.tree import LeafNode, SplitNode, load_tree
from aurasense.core.services.explanation import ExplanationEngine
from aurasense.core.services.prediction import RiskPredictionService
from aurasense.core.services.tree_evaluator import DecisionTreeEvaluator
from aurasense.core.storage.records import RecordEngine, now_ms

DEFAULT_TREE_PATH = Path(__file__).with_name("model.json")


class Namespace(str, Enum):
    """Stores kept by the migraine app."""

    GENERAL = "general"
    MIGRAINES = "migraines"
    PERMISSIONS = "permissions"
    GEOLOCATION = "geolocation"
    WEATHER = "weather"
    CALENDAR = "calendar"
    WEARABLES = "wearables"


class CamelPayload(BaseModel):
    """Payloads persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# General (daily snapshot scored by the tree) ------------------------------


FEATURE_NAMES: tuple[str, ...] = (
    "sleep_hours",
    "screen_time_hours",
    "stress_level",
    "prodrome_symptoms",
    "attacks_last_7_days",
    "attacks_last_30_days",
    "days_since_last_attack",
    "hydration_low",
    "skipped_meal",
    "bright_light_exposure",
    "pressure_drop",
)


class GeneralSnapshot(BaseModel):
    """
    One day of model inputs plus the day's attack aggregates.

    Keys stay snake_case: they are the feature names the tree splits on.
    Unknown keys are preserved so merges never drop data.
    """

    model_config = ConfigDict(extra="allow")

    schema_version: int = 1
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$", description="Day, YYYY-MM-DD")

    # Model features
    sleep_hours: float = Field(default=7.0, ge=0.0, le=24.0)
    stress_level: float = Field(default=2, ge=0.0)
    screen_time_hours: float = Field(default=2.0, ge=0.0, le=24.0)
    hydration_low: int = Field(default=0, ge=0, le=1)
    skipped_meal: int = Field(default=0, ge=0, le=1)
    bright_light_exposure: int = Field(default=0, ge=0, le=1)
    pressure_drop: int = Field(default=0, ge=0, le=1)
    prodrome_symptoms: int = Field(default=0, ge=0)
    days_since_last_attack: int = Field(default=0, ge=0)
    attacks_last_7_days: int = Field(default=0, ge=0)
    attacks_last_30_days: int = Field(default=0, ge=0)
    migraine_next_day: int = Field(default=0, ge=0, le=1)

    # Per-day attack aggregates
    migraine_sessions_count: int = Field(default=0, ge=0)
    migraine_sessions_total_minutes: int = Field(default=0, ge=0)
    migraine_sessions_avg_minutes: float = Field(default=0.0, ge=0.0)
    last_migraine_duration_minutes: int = Field(default=0, ge=0)
    last_migraine_time: str | None = None

    def features(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FEATURE_NAMES}


# Migraines (attack log) ---------------------------------------------------


class MigraineEntry(CamelPayload):
    """A logged attack: ISO start time and duration."""

    schema_version: int = 1
    date: str = Field(description="ISO-8601 start time (UTC)")
    duration_minutes: int = Field(gt=0)


# Permissions --------------------------------------------------------------


class PermissionType(str, Enum):
    NOTIFICATIONS = "notifications"
    GEOLOCATION = "geolocation"
    MOTION = "motion"
    CAMERA = "camera"
    CALENDAR = "calendar"
    SCREEN_TIME = "screenTime"


PermissionStatus = Literal["granted", "denied", "prompt", "not-requested"]


class Permission(CamelPayload):
    type: PermissionType
    status: PermissionStatus = "not-requested"
    last_requested: str | None = None
    is_required: bool = False


class PermissionsSnapshot(CamelPayload):
    schema_version: int = 1
    permissions: list[Permission] = Field(default_factory=list)

    def status_of(self, permission: PermissionType) -> PermissionStatus:
        for entry in self.permissions:
            if entry.type == permission:
                return entry.status
        return "not-requested"


# Geolocation and weather --------------------------------------------------


class GeolocationFix(CamelPayload):
    schema_version: int = 1
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    accuracy: float | None = Field(default=None, ge=0.0, description="Meters")
    timestamp: int = Field(description="Epoch milliseconds")


class WeatherObservation(CamelPayload):
    schema_version: int = 1
    date: str
    temperature_c: float
    humidity: float | None = Field(default=None, ge=0.0, le=100.0)
    pressure_hpa: float | None = Field(default=None, gt=0.0)
    pressure_change_hpa: float | None = Field(
        default=None, description="Change versus the previous observation"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pressure_drop(self) -> bool:
        return self.pressure_change_hpa is not None and self.pressure_change_hpa < 0


# Calendar -----------------------------------------------------------------


def calculate_workload_score(event_count: int, total_duration_minutes: int) -> int:
    """0-100: half from the number of events (10+ saturates), half from booked time (8h+)."""
    event_score = min(event_count / 10 * 50, 50)
    duration_score = min(total_duration_minutes / 480 * 50, 50)
    return round(event_score + duration_score)


class CalendarEvent(CamelPayload):
    id: str
    summary: str = "No title"
    start: str
    end: str
    duration_minutes: int


class CalendarDay(CamelPayload):
    schema_version: int = 1
    date: str
    event_count: int = Field(ge=0)
    total_duration_minutes: int = Field(ge=0)
    workload_score: int = Field(ge=0, le=100)
    events: list[CalendarEvent] = Field(default_factory=list)

    @classmethod
    def from_events(cls, date: str, events: list[CalendarEvent]) -> "CalendarDay":
        total = sum(event.duration_minutes for event in events)
        return cls(
            date=date,
            event_count=len(events),
            total_duration_minutes=total,
            workload_score=calculate_workload_score(len(events), total),
            events=events,
        )


# Wearables ----------------------------------------------------------------


class HeartRate(CamelPayload):
    bpm: int = Field(gt=0)
    resting_bpm: int | None = None
    max_bpm: int | None = None
    hrv: float | None = Field(default=None, description="Heart rate variability, ms")


class SleepSummary(CamelPayload):
    duration_hours: float = Field(ge=0.0, le=24.0)
    quality: int | None = Field(default=None, ge=0, le=100)
    deep_sleep_minutes: int | None = None
    rem_sleep_minutes: int | None = None
    light_sleep_minutes: int | None = None
    awake_minutes: int | None = None
    sleep_start: str | None = None
    sleep_end: str | None = None


class Workout(CamelPayload):
    type: str
    duration_minutes: int = Field(ge=0)
    calories: int | None = None
    distance: float | None = None
    average_heart_rate: int | None = None
    max_heart_rate: int | None = None
    start_time: str | None = None
    end_time: str | None = None


class WearablesDay(CamelPayload):
    schema_version: int = 1
    date: str
    timestamp: int
    heart_rate: HeartRate | None = None
    steps: int | None = Field(default=None, ge=0)
    distance: float | None = Field(default=None, ge=0.0, description="Meters")
    calories: int | None = None
    active_minutes: int | None = None
    stress_level: int | None = None
    sleep: SleepSummary | None = None
    workouts: list[Workout] = Field(default_factory=list)


PAYLOAD_MODELS: dict[Namespace, type[BaseModel]] = {
    Namespace.GENERAL: GeneralSnapshot,
    Namespace.MIGRAINES: MigraineEntry,
    Namespace.PERMISSIONS: PermissionsSnapshot,
    Namespace.GEOLOCATION: GeolocationFix,
    Namespace.WEATHER: WeatherObservation,
    Namespace.CALENDAR: CalendarDay,
    Namespace.WEARABLES: WearablesDay,
}


# Feature profiles ---------------------------------------------------------


FEATURE_PROFILES: dict[str, FeatureProfile] = {
    profile.name: profile
    for profile in (
        FeatureProfile(
            name="sleep_hours",
            description="sleep hours",
            risk_side=Direction.LEFT,
            key_factor=(
                "You're getting only {value:.1f} hours of sleep, "
                "below the recommended {threshold:.1f} hours"
            ),
            recommendation="Aim for at least {threshold:.1f} hours of sleep per night",
            track_trend=True,
        ),
        FeatureProfile(
            name="screen_time_hours",
            description="screen time",
            key_factor=(
                "Your screen time is {value:.1f} hours, "
                "above the recommended {threshold:.1f} hours"
            ),
            recommendation="Reduce screen time to below {threshold:.1f} hours per day",
            track_trend=True,
        ),
        FeatureProfile(
            name="prodrome_symptoms",
            description="prodrome symptoms",
            key_factor="You're experiencing prodrome symptoms",
            recommendation="Monitor and manage prodrome symptoms early",
            track_trend=True,
        ),
        FeatureProfile(
            name="stress_level",
            description="stress level",
            key_factor="Your stress level appears elevated",
            recommendation="Practice stress-reduction techniques",
            track_trend=True,
        ),
        FeatureProfile(
            name="attacks_last_7_days",
            description="recent attacks (7 days)",
            key_factor="You've had {value:g} recent attacks",
        ),
        FeatureProfile(
            name="attacks_last_30_days",
            description="recent attacks (30 days)",
            key_factor="You've had {value:g} attacks in the last 30 days",
        ),
        FeatureProfile(
            name="days_since_last_attack",
            description="days since last attack",
            risk_side=Direction.LEFT,
            key_factor="It has been {value:g} days since your last attack",
        ),
        FeatureProfile(
            name="hydration_low",
            description="low hydration",
            key_factor="You're experiencing low hydration",
            recommendation="Increase your water intake throughout the day",
        ),
        FeatureProfile(name="skipped_meal", description="skipped meals"),
        FeatureProfile(name="bright_light_exposure", description="bright light exposure"),
        FeatureProfile(name="pressure_drop", description="pressure drop"),
    )
}


@lru_cache
def load_default_tree() -> LeafNode | SplitNode:
    """The bundled decision tree, parsed once."""
    return load_tree(DEFAULT_TREE_PATH)


def build_risk_service(
    records: RecordEngine,
    config: PredictionConfig | None = None,
    clock: Callable[[], int] = now_ms,
) -> RiskPredictionService:
    """Wire the evaluator, profiles and history reader for migraine risk."""
    config = config or PredictionConfig()
    tree = load_tree(config.tree_path) if config.tree_path else load_default_tree()
    return RiskPredictionService(
        records,
        DecisionTreeEvaluator(
            tree,
            missing_feature_policy=config.missing_feature_policy,
            degenerate_leaf_policy=config.degenerate_leaf_policy,
        ),
        ExplanationEngine(FEATURE_PROFILES, subject="migraine", max_drivers=config.max_drivers),
        config,
        clock,
    )
