"""
Per-feature knowledge used to explain a prediction.

A profile says on which side of a split threshold a feature is risky and how to
phrase it. Templates are ``str.format`` strings receiving ``value`` and
``threshold``.
"""

from pydantic import BaseModel, ConfigDict, Field

from aurasense.core.domain.models import Direction, FeatureObservation, Trend, TrendClassification


class FeatureProfile(BaseModel):
    """How one feature contributes to risk and how to talk about it."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    risk_side: Direction = Field(
        default=Direction.RIGHT,
        description="LEFT when low values are risky (value <= threshold), RIGHT otherwise",
    )
    key_factor: str | None = Field(default=None, description="Sentence for a problematic value")
    recommendation: str | None = Field(default=None, description="Advice for a problematic value")
    track_trend: bool = Field(
        default=False, description="Mention a trend moving toward risk in the key factors"
    )

    def is_problematic(self, observation: FeatureObservation) -> bool:
        return observation.direction == self.risk_side

    def raw_magnitude(self, value: float, threshold: float) -> float:
        """Distance past the threshold on the risky side, relative to the threshold."""
        safe_threshold = max(0.1, abs(threshold))
        if self.risk_side is Direction.LEFT:
            return max(0.0, (threshold - value) / safe_threshold)
        return max(0.0, (value - threshold) / safe_threshold)

    def risk_trend(self) -> TrendClassification:
        """The trend classification that moves this feature toward risk."""
        if self.risk_side is Direction.LEFT:
            return TrendClassification.DECREASING
        return TrendClassification.INCREASING

    def trend_weight(self, trend: Trend | None) -> float:
        if trend is None:
            return 1.0
        if trend.classification is TrendClassification.STABLE:
            weight = 1.0
        elif trend.classification is self.risk_trend():
            weight = 1.2
        else:
            weight = 0.9
        if abs(trend.change_percent) > 20:
            weight *= 1.1
        return weight

    def describe(self, observation: FeatureObservation) -> str | None:
        if self.key_factor is None:
            return None
        return self.key_factor.format(value=observation.value, threshold=observation.threshold)

    def recommend(self, observation: FeatureObservation) -> str | None:
        if self.recommendation is None:
            return None
        return self.recommendation.format(
            value=observation.value, threshold=observation.threshold
        )


def default_profile(name: str) -> FeatureProfile:
    """Profile for a feature nobody described: right-risk, no text."""
    return FeatureProfile(name=name, description=name.replace("_", " "))
