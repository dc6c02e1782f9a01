"""
Domain models for the record store and the risk-inference pipeline.

These models represent the core concepts and are independent of any particular
namespace payload. Wire shapes keep the camelCase keys that persisted records and
UI consumers already use (createdAt, changePercent, ...), while Python code uses
snake_case attributes.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

RecordId = int | str

DataT = TypeVar("DataT")


class WireModel(BaseModel):
    """Base for models that travel as camelCase JSON."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AccessMode(str, Enum):
    """Transaction access modes offered by the storage engine."""

    READONLY = "readonly"
    READWRITE = "readwrite"


class Record(WireModel, Generic[DataT]):
    """A stored item: application-chosen id, payload and millisecond timestamps."""

    id: RecordId
    data: DataT
    created_at: int = Field(description="Epoch milliseconds of the first insertion")
    updated_at: int = Field(description="Epoch milliseconds of the latest write")


class Direction(str, Enum):
    """Branch taken at a split: left when value <= threshold."""

    LEFT = "left"
    RIGHT = "right"


class TrendClassification(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class RiskLevel(str, Enum):
    """Risk buckets used in summaries and alerting."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @classmethod
    def from_score(cls, score: float) -> "RiskLevel":
        if score >= 0.7:
            return cls.HIGH
        if score >= 0.4:
            return cls.MODERATE
        return cls.LOW


class FeatureObservation(WireModel):
    """One split visited while evaluating the decision tree."""

    label: str
    value: float
    threshold: float
    direction: Direction

    @computed_field(alias="isAboveThreshold")  # type: ignore[prop-decorator]
    @property
    def is_above_threshold(self) -> bool:
        return self.direction == Direction.RIGHT


class Trend(WireModel):
    """A feature's current value compared with its historical mean."""

    feature: str
    current: float
    average: float
    classification: TrendClassification
    change_percent: float


class Driver(WireModel):
    """A ranked feature judged to push the current risk score."""

    label: str
    current: float
    threshold: float
    direction: Direction
    normalized_score: float = Field(ge=0.0, le=1.0)


class Explanation(WireModel):
    """Human-readable account of a prediction."""

    summary: str
    risk_level: RiskLevel
    key_factors: list[str]
    trends: list[Trend]
    recommendations: list[str] = Field(min_length=1)


class PredictionMeta(WireModel):
    explanation: str
    detailed_explanation: Explanation
    features: list[FeatureObservation]
    trends: list[Trend]
    drivers: list[Driver]


class PredictionResult(WireModel):
    """Outcome of one risk prediction."""

    score: float = Field(ge=0.0, le=1.0)
    meta: PredictionMeta
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def risk_level(self) -> RiskLevel:
        return self.meta.detailed_explanation.risk_level
