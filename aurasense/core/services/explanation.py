"""
Explanation engine: turns a decision path and its trends into drivers and text.

Feature knowledge comes from a profile table supplied by the domain adapter;
features without a profile are treated as right-risk with no dedicated text.
"""

from collections.abc import Mapping, Sequence

import structlog

from aurasense.core.domain.models import (
    Driver,
    Explanation,
    FeatureObservation,
    RiskLevel,
    Trend,
)
from aurasense.core.domain.profiles import FeatureProfile, default_profile

logger = structlog.get_logger(__name__)

DEFAULT_RECOMMENDATION = "Continue monitoring your health metrics"
TREND_NOTE_MIN_PERCENT = 10.0
SUMMARY_FACTOR_LIMIT = 3
_EPSILON = 1e-9


class ExplanationEngine:
    """Ranks drivers and writes the human-readable account of a prediction."""

    def __init__(
        self,
        profiles: Mapping[str, FeatureProfile],
        subject: str = "migraine",
        max_drivers: int = 3,
    ) -> None:
        self.profiles = dict(profiles)
        self.subject = subject
        self.max_drivers = max_drivers
        self.logger = logger.bind(component="explanation_engine")

    def profile(self, label: str) -> FeatureProfile:
        return self.profiles.get(label) or default_profile(label)

    def _strongest_per_label(
        self, path: Sequence[FeatureObservation]
    ) -> dict[str, FeatureObservation]:
        """One observation per label, the one furthest into risk; first-seen order."""
        strongest: dict[str, FeatureObservation] = {}
        for observation in path:
            kept = strongest.get(observation.label)
            if kept is None:
                strongest[observation.label] = observation
                continue
            profile = self.profile(observation.label)
            if profile.raw_magnitude(observation.value, observation.threshold) > (
                profile.raw_magnitude(kept.value, kept.threshold)
            ):
                strongest[observation.label] = observation
        return strongest

    def rank_drivers(
        self, path: Sequence[FeatureObservation], trends: Sequence[Trend]
    ) -> list[Driver]:
        """Top features by trend-weighted risk magnitude, normalised to [0, 1]."""
        trend_by_feature = {trend.feature: trend for trend in trends}

        weighted: list[tuple[FeatureObservation, float]] = []
        for label, observation in self._strongest_per_label(path).items():
            profile = self.profile(label)
            raw = profile.raw_magnitude(observation.value, observation.threshold)
            weighted.append((observation, raw * profile.trend_weight(trend_by_feature.get(label))))

        if not weighted:
            return []

        top = max(max(score for _, score in weighted), _EPSILON)
        drivers = [
            Driver(
                label=observation.label,
                current=observation.value,
                threshold=observation.threshold,
                direction=observation.direction,
                normalized_score=min(1.0, score / top),
            )
            for observation, score in weighted
        ]
        drivers.sort(key=lambda driver: driver.normalized_score, reverse=True)
        return drivers[: self.max_drivers]

    def explain(
        self,
        score: float,
        path: Sequence[FeatureObservation],
        trends: Sequence[Trend],
    ) -> Explanation:
        risk_level = RiskLevel.from_score(score)
        trend_by_feature = {trend.feature: trend for trend in trends}

        key_factors: list[str] = []
        recommendations: list[str] = []
        for observation in path:
            profile = self.profile(observation.label)
            if not profile.is_problematic(observation):
                continue

            factor = profile.describe(observation)
            if factor is not None:
                note = self._trend_note(profile, trend_by_feature.get(observation.label))
                for text in (factor, note):
                    if text is not None and text not in key_factors:
                        key_factors.append(text)

            advice = profile.recommend(observation)
            if advice is not None and advice not in recommendations:
                recommendations.append(advice)

        summary = f"Your {self.subject} risk is {risk_level.value}. "
        if key_factors:
            summary += (
                "Main contributing factors: "
                f"{', '.join(key_factors[:SUMMARY_FACTOR_LIMIT])}."
            )
        else:
            summary += "Your current metrics are within normal ranges."

        return Explanation(
            summary=summary,
            risk_level=risk_level,
            key_factors=key_factors,
            trends=list(trends),
            recommendations=recommendations or [DEFAULT_RECOMMENDATION],
        )

    @staticmethod
    def _trend_note(profile: FeatureProfile, trend: Trend | None) -> str | None:
        if not profile.track_trend or trend is None:
            return None
        if abs(trend.change_percent) <= TREND_NOTE_MIN_PERCENT:
            return None
        if trend.classification is not profile.risk_trend():
            return None
        verb = "increased" if trend.change_percent > 0 else "decreased"
        return f"Your {profile.description} has {verb} compared to recent averages"
