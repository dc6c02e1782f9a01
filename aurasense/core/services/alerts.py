"""
Risk alerts and the periodic monitoring loop.

Pipeline for each cycle:
1. Read the current snapshot from the ``general`` namespace
2. Score it with the prediction service
3. Raise an alert when the score reaches the configured threshold
4. Hand alerts to caller-supplied handlers (sync or async)
"""

import asyncio
import inspect
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from aurasense.core.config import PredictionConfig
from aurasense.core.domain.models import PredictionResult, RecordId, RiskLevel
from aurasense.core.services.prediction import HISTORY_NAMESPACE, RiskPredictionService
from aurasense.core.storage.records import RecordEngine

logger = structlog.get_logger(__name__)


@dataclass
class RiskAlert:
    """A prediction that crossed the alert threshold."""

    record_id: RecordId
    score: float
    risk_level: RiskLevel
    summary: str
    recommendations: list[str]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def title(self) -> str:
        return f"{self.risk_level.value.capitalize()} risk ({self.score:.0%})"


AlertHandler = Callable[[RiskAlert], None] | Callable[[RiskAlert], Awaitable[None]]


class AlertManager:
    """Turns predictions into alerts and dispatches them."""

    def __init__(self, threshold: float = 0.7, history_size: int = 1000) -> None:
        self.threshold = threshold
        self.alert_history: deque[RiskAlert] = deque(maxlen=history_size)
        self.logger = logger.bind(component="alert_manager")

    def process_prediction(self, result: PredictionResult, record_id: RecordId) -> RiskAlert | None:
        if result.score < self.threshold:
            return None

        explanation = result.meta.detailed_explanation
        alert = RiskAlert(
            record_id=record_id,
            score=result.score,
            risk_level=explanation.risk_level,
            summary=explanation.summary,
            recommendations=list(explanation.recommendations),
        )
        self.alert_history.append(alert)
        self.logger.warning(
            "risk_alert_raised",
            record_id=record_id,
            score=round(result.score, 4),
            risk_level=alert.risk_level.value,
        )
        return alert

    async def dispatch_alerts(
        self,
        alerts: Sequence[RiskAlert],
        handlers: Sequence[AlertHandler] | None = None,
    ) -> None:
        """Send every alert to every handler; one failing handler does not stop the rest."""
        if not alerts:
            return

        for alert in alerts:
            for handler in handlers or [self._log_alert_handler]:
                try:
                    outcome = handler(alert)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    self.logger.error(
                        "alert_dispatch_failed",
                        error=str(e),
                        alert_title=alert.title,
                        handler=getattr(handler, "__name__", type(handler).__name__),
                    )

    def _log_alert_handler(self, alert: RiskAlert) -> None:
        self.logger.info(
            "risk_alert",
            title=alert.title,
            summary=alert.summary,
            recommendations=alert.recommendations,
        )


class RiskMonitor:
    """
    Periodically re-scores stored snapshots and raises alerts.

    ``watch`` is an async generator: the caller decides how long to keep
    consuming predictions.
    """

    def __init__(
        self,
        records: RecordEngine,
        predictor: RiskPredictionService,
        alert_manager: AlertManager | None = None,
        config: PredictionConfig | None = None,
        handlers: Sequence[AlertHandler] | None = None,
    ) -> None:
        self.records = records.use_namespace(HISTORY_NAMESPACE)
        self.predictor = predictor
        self.config = config or PredictionConfig()
        self.alert_manager = alert_manager or AlertManager(self.config.alert_threshold)
        self.handlers = list(handlers or [])
        self.logger = logger.bind(component="risk_monitor")

    async def run_once(self, record_id: RecordId) -> PredictionResult | None:
        """Score one stored snapshot; None when the record does not exist."""
        sample = await self.records.read_data(record_id)
        if sample is None:
            self.logger.info("snapshot_missing", record_id=record_id)
            return None

        result = await self.predictor.predict(sample)
        alert = self.alert_manager.process_prediction(result, record_id)
        if alert is not None:
            await self.alert_manager.dispatch_alerts([alert], self.handlers or None)
        return result

    async def watch(
        self, record_ids: Sequence[RecordId]
    ) -> AsyncIterator[tuple[RecordId, PredictionResult]]:
        """Cycle over ``record_ids`` forever, one prediction per interval."""
        if not record_ids:
            return

        interval = self.config.monitor_interval_seconds
        self.logger.info("risk_monitoring_started", interval_seconds=interval)

        index = 0
        while True:
            record_id = record_ids[index % len(record_ids)]
            index += 1
            cycle_start = time.perf_counter()

            try:
                result = await self.run_once(record_id)
            except Exception as e:
                self.logger.exception(
                    "risk_monitoring_cycle_failed", record_id=record_id, error=str(e)
                )
                await asyncio.sleep(min(60.0, interval * 2))
                continue

            if result is not None:
                yield record_id, result

            elapsed = time.perf_counter() - cycle_start
            await asyncio.sleep(max(0.0, interval - elapsed))
