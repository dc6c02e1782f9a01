"""Compare the features on a decision path against their recent history."""

from collections.abc import Mapping, Sequence
from typing import Any

from aurasense.core.domain.models import FeatureObservation, Trend, TrendClassification
from aurasense.core.services.tree_evaluator import numeric_value

STABLE_BAND_PERCENT = 5.0


def classify_change(change_percent: float) -> TrendClassification:
    if abs(change_percent) < STABLE_BAND_PERCENT:
        return TrendClassification.STABLE
    if change_percent > 0:
        return TrendClassification.INCREASING
    return TrendClassification.DECREASING


def _stable(feature: str, current: float) -> Trend:
    return Trend(
        feature=feature,
        current=current,
        average=current,
        classification=TrendClassification.STABLE,
        change_percent=0.0,
    )


def compute_trends(
    current: Mapping[str, Any],
    historical: Sequence[Mapping[str, Any]],
    path: Sequence[FeatureObservation],
) -> list[Trend]:
    """
    One trend per unique path feature, in order of first appearance.

    The current value is read from ``current`` and falls back to the path
    observation when the record has no number for it. History values that are
    missing, boolean or NaN are ignored; a feature with no usable history is
    stable. ``change_percent`` is relative to ``|average|`` and is 0 when the
    average is 0.
    """
    observed: dict[str, float] = {}
    for observation in path:
        observed.setdefault(observation.label, observation.value)

    trends: list[Trend] = []
    for feature, path_value in observed.items():
        current_value = numeric_value(current.get(feature))
        if current_value is None:
            current_value = path_value

        values = [
            value
            for value in (numeric_value(entry.get(feature)) for entry in historical)
            if value is not None
        ]
        if not values:
            trends.append(_stable(feature, current_value))
            continue

        average = sum(values) / len(values)
        change_percent = (current_value - average) / abs(average) * 100 if average != 0 else 0.0
        trends.append(
            Trend(
                feature=feature,
                current=current_value,
                average=average,
                classification=classify_change(change_percent),
                change_percent=change_percent,
            )
        )

    return trends
