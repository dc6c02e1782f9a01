"""
Risk prediction pipeline.

Flow: evaluate the current record against the decision tree, read the recent
``general`` history, compute trends for the features on the decision path,
then rank drivers and write the explanation. History is best-effort: a failing
read is logged and the prediction proceeds with an empty window.
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel

from aurasense.core.config import PredictionConfig
from aurasense.core.domain.models import PredictionMeta, PredictionResult, Trend
from aurasense.core.result import Result
from aurasense.core.services.explanation import ExplanationEngine
from aurasense.core.services.tree_evaluator import DecisionTreeEvaluator
from aurasense.core.services.trend_analyzer import compute_trends
from aurasense.core.storage.records import RecordEngine, now_ms

logger = structlog.get_logger(__name__)

HISTORY_NAMESPACE = "general"
_MS_PER_HOUR = 60 * 60 * 1000


def parse_record_date(value: Any) -> datetime | None:
    """ISO date or datetime string as an aware datetime (naive values are UTC)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


class RiskPredictionService:
    """Scores a record and explains the score."""

    def __init__(
        self,
        records: RecordEngine,
        evaluator: DecisionTreeEvaluator,
        explainer: ExplanationEngine,
        config: PredictionConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.records = records.use_namespace(HISTORY_NAMESPACE)
        self.evaluator = evaluator
        self.explainer = explainer
        self.config = config or PredictionConfig()
        self._clock = clock
        self.logger = logger.bind(component="risk_prediction")

    async def fetch_history(
        self, hours: int | None = None
    ) -> Result[list[dict[str, Any]], Exception]:
        """
        Payloads of ``general`` records created within the last ``hours``.

        Only mapping payloads with a parseable ``date`` are kept, sorted by that
        date. Any failure to read history is logged and returned, not raised.
        """
        window = hours if hours is not None else self.config.history_window_hours
        cutoff = self._clock() - window * _MS_PER_HOUR
        try:
            recent = await self.records.query(lambda record: record.created_at >= cutoff)
        except Exception as e:
            self.logger.warning(
                "history_fetch_failed", error=str(e), error_type=type(e).__name__
            )
            return Result.err(e)

        dated = [
            (date, record.data)
            for record in recent
            if isinstance(record.data, Mapping)
            and (date := parse_record_date(record.data.get("date"))) is not None
        ]
        dated.sort(key=lambda item: item[0])
        return Result.ok([dict(data) for _, data in dated])

    async def predict(
        self, sample: Mapping[str, Any] | BaseModel, include_trends: bool | None = None
    ) -> PredictionResult:
        """
        Score ``sample`` and explain the result.

        Raises:
            MissingFeature, DegenerateLeaf: the record cannot be scored under the
                configured evaluator policies.
        """
        record = sample.model_dump(mode="json") if isinstance(sample, BaseModel) else sample
        use_trends = self.config.include_trends if include_trends is None else include_trends

        score, path = self.evaluator.evaluate(record)

        trends: list[Trend] = []
        if use_trends:
            history = (await self.fetch_history()).unwrap_or([])
            trends = compute_trends(record, history, path)

        explanation = self.explainer.explain(score, path, trends)
        drivers = self.explainer.rank_drivers(path, trends)

        self.logger.info(
            "risk_predicted",
            score=round(score, 4),
            risk_level=explanation.risk_level.value,
            path_length=len(path),
            trend_count=len(trends),
            drivers=[driver.label for driver in drivers],
        )
        return PredictionResult(
            score=score,
            meta=PredictionMeta(
                explanation=explanation.summary,
                detailed_explanation=explanation,
                features=path,
                trends=trends,
                drivers=drivers,
            ),
        )
