"""
Decision tree evaluation.

The walk is iterative so tree depth never touches the recursion limit. Each
split visited is recorded as a FeatureObservation; the leaf reached yields the
positive-class probability.
"""

import math
from collections.abc import Mapping
from numbers import Real
from typing import Any

import structlog

from aurasense.core.config import DegenerateLeafPolicy, MissingFeaturePolicy
from aurasense.core.domain.models import Direction, FeatureObservation
from aurasense.core.domain.tree import LeafNode, SplitNode
from aurasense.core.errors import DegenerateLeaf, MissingFeature

logger = structlog.get_logger(__name__)

NEUTRAL_SCORE = 0.5


def numeric_value(value: Any) -> float | None:
    """``value`` as a float, or None when it is absent, boolean, non-numeric or NaN."""
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    result = float(value)
    return None if math.isnan(result) else result


class DecisionTreeEvaluator:
    """Scores records against one immutable tree; safe to share between tasks."""

    def __init__(
        self,
        tree: LeafNode | SplitNode,
        missing_feature_policy: MissingFeaturePolicy = "error",
        degenerate_leaf_policy: DegenerateLeafPolicy = "error",
    ) -> None:
        self.tree = tree
        self.missing_feature_policy = missing_feature_policy
        self.degenerate_leaf_policy = degenerate_leaf_policy
        self.logger = logger.bind(component="tree_evaluator")

    def evaluate(self, record: Mapping[str, Any]) -> tuple[float, list[FeatureObservation]]:
        """
        Walk from the root to a leaf.

        Returns:
            The positive-class probability of the leaf and the ordered path of
            split observations.

        Raises:
            MissingFeature: a split feature is absent or not a number and the
                policy is "error".
            DegenerateLeaf: the leaf has no samples and the policy is "error".
        """
        path: list[FeatureObservation] = []
        node = self.tree

        while isinstance(node, SplitNode):
            value = numeric_value(record.get(node.feature))
            if value is None:
                if self.missing_feature_policy == "error":
                    raise MissingFeature(node.feature, record.get(node.feature))
                # Comparisons against a missing value are false: take the right branch.
                self.logger.warning("feature_missing", feature=node.feature, depth=len(path))
                node = node.right
                continue

            direction = Direction.LEFT if value <= node.threshold else Direction.RIGHT
            path.append(
                FeatureObservation(
                    label=node.feature,
                    value=value,
                    threshold=node.threshold,
                    direction=direction,
                )
            )
            node = node.left if direction is Direction.LEFT else node.right

        total = node.negative + node.positive
        if total == 0:
            if self.degenerate_leaf_policy == "error":
                raise DegenerateLeaf(len(path))
            self.logger.warning("degenerate_leaf", depth=len(path))
            score = NEUTRAL_SCORE
        else:
            score = node.positive / total

        self.logger.debug("tree_evaluated", score=score, depth=len(path))
        return score, path
