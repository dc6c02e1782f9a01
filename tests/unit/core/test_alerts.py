"""
Tests for alerting and the monitoring loop in `core/services/alerts.py`.

Covers:
- Threshold handling and bounded alert history
- Dispatch to sync and async handlers, isolating failing handlers
- Single monitoring cycles and the continuous watch loop
"""

from contextlib import aclosing

import pytest

from aurasense.adapters.migraine.domain import build_risk_service
from aurasense.core.config import PredictionConfig
from aurasense.core.domain.models import PredictionResult, RiskLevel
from aurasense.core.errors import MissingFeature
from aurasense.core.services.alerts import AlertManager, RiskAlert, RiskMonitor
from aurasense.core.services.prediction import RiskPredictionService
from aurasense.core.storage.records import RecordEngine

HIGH_RISK = {"date": "2023-11-14", "sleep_hours": 5.0, "prodrome_symptoms": 1}
LOW_RISK = {
    "date": "2023-11-14",
    "sleep_hours": 5.0,
    "prodrome_symptoms": 0,
    "screen_time_hours": 3.0,
    "attacks_last_30_days": 2,
}


@pytest.fixture
def predictor(records: RecordEngine) -> RiskPredictionService:
    return build_risk_service(records)


@pytest.fixture
def fast_config() -> PredictionConfig:
    return PredictionConfig(monitor_interval_seconds=0.01)


class FlakyPredictor:
    """Fails the first prediction, then delegates."""

    def __init__(self, inner: RiskPredictionService) -> None:
        self.inner = inner
        self.calls = 0

    async def predict(self, sample: dict) -> PredictionResult:
        self.calls += 1
        if self.calls == 1:
            raise MissingFeature("sleep_hours", None)
        return await self.inner.predict(sample)


class TestAlertManager:
    async def test_below_threshold_raises_nothing(self, predictor: RiskPredictionService) -> None:
        manager = AlertManager(threshold=0.7)
        result = await predictor.predict(LOW_RISK)

        assert manager.process_prediction(result, 1) is None
        assert len(manager.alert_history) == 0

    async def test_alert_carries_explanation(self, predictor: RiskPredictionService) -> None:
        manager = AlertManager(threshold=0.7)
        result = await predictor.predict(HIGH_RISK)

        alert = manager.process_prediction(result, "2023-11-14")

        assert alert is not None
        assert alert.record_id == "2023-11-14"
        assert alert.score == 1.0
        assert alert.risk_level is RiskLevel.HIGH
        assert alert.title == "High risk (100%)"
        assert alert.summary.startswith("Your migraine risk is high.")
        assert "Monitor and manage prodrome symptoms early" in alert.recommendations
        assert list(manager.alert_history) == [alert]

    async def test_threshold_is_inclusive(self, predictor: RiskPredictionService) -> None:
        result = await predictor.predict(LOW_RISK)

        assert AlertManager(threshold=0.0625).process_prediction(result, 1) is not None

    async def test_history_is_bounded(self, predictor: RiskPredictionService) -> None:
        manager = AlertManager(threshold=0.5, history_size=2)
        result = await predictor.predict(HIGH_RISK)

        for record_id in range(5):
            manager.process_prediction(result, record_id)

        assert [alert.record_id for alert in manager.alert_history] == [3, 4]

    async def test_dispatch_to_sync_and_async_handlers(self) -> None:
        manager = AlertManager()
        alert = RiskAlert(
            record_id=1,
            score=0.9,
            risk_level=RiskLevel.HIGH,
            summary="Your migraine risk is high.",
            recommendations=[],
        )
        received: list[tuple[str, RiskAlert]] = []

        def sync_handler(a: RiskAlert) -> None:
            received.append(("sync", a))

        async def async_handler(a: RiskAlert) -> None:
            received.append(("async", a))

        await manager.dispatch_alerts([alert], [sync_handler, async_handler])

        assert received == [("sync", alert), ("async", alert)]

    async def test_failing_handler_does_not_stop_others(self) -> None:
        manager = AlertManager()
        alerts = [
            RiskAlert(
                record_id=i, score=0.8, risk_level=RiskLevel.HIGH, summary="", recommendations=[]
            )
            for i in range(2)
        ]
        received: list[int] = []

        def broken(_: RiskAlert) -> None:
            raise RuntimeError("notification channel down")

        async def working(a: RiskAlert) -> None:
            received.append(a.record_id)

        await manager.dispatch_alerts(alerts, [broken, working])

        assert received == [0, 1]

    async def test_default_handler_logs(self) -> None:
        manager = AlertManager()
        alert = RiskAlert(
            record_id=1, score=0.75, risk_level=RiskLevel.HIGH, summary="s", recommendations=[]
        )

        await manager.dispatch_alerts([alert])
        await manager.dispatch_alerts([])


class TestRiskMonitor:
    async def test_run_once_missing_snapshot(
        self, records: RecordEngine, predictor: RiskPredictionService
    ) -> None:
        monitor = RiskMonitor(records, predictor)

        assert await monitor.run_once(42) is None

    async def test_run_once_dispatches_alert(
        self, records: RecordEngine, predictor: RiskPredictionService
    ) -> None:
        await records.upsert(1, HIGH_RISK)
        received: list[RiskAlert] = []
        monitor = RiskMonitor(records, predictor, handlers=[received.append])

        result = await monitor.run_once(1)

        assert result is not None
        assert result.score == 1.0
        assert [alert.record_id for alert in received] == [1]

    async def test_run_once_quiet_below_threshold(
        self, records: RecordEngine, predictor: RiskPredictionService
    ) -> None:
        await records.upsert(1, LOW_RISK)
        received: list[RiskAlert] = []
        monitor = RiskMonitor(records, predictor, handlers=[received.append])

        result = await monitor.run_once(1)

        assert result is not None
        assert received == []

    async def test_threshold_comes_from_config(
        self, records: RecordEngine, predictor: RiskPredictionService
    ) -> None:
        monitor = RiskMonitor(records, predictor, config=PredictionConfig(alert_threshold=0.05))

        assert monitor.alert_manager.threshold == 0.05

    async def test_watch_cycles_and_skips_missing(
        self,
        records: RecordEngine,
        predictor: RiskPredictionService,
        fast_config: PredictionConfig,
    ) -> None:
        await records.upsert(1, LOW_RISK)
        await records.upsert(3, HIGH_RISK)
        monitor = RiskMonitor(records, predictor, config=fast_config)
        seen: list[object] = []

        async with aclosing(monitor.watch([1, 2, 3])) as stream:
            async for record_id, result in stream:
                seen.append(record_id)
                assert isinstance(result, PredictionResult)
                if len(seen) == 4:
                    break

        assert seen == [1, 3, 1, 3]
        assert [alert.record_id for alert in monitor.alert_manager.alert_history] == [3, 3]

    async def test_watch_survives_failing_cycle(
        self,
        records: RecordEngine,
        predictor: RiskPredictionService,
        fast_config: PredictionConfig,
    ) -> None:
        await records.upsert(1, HIGH_RISK)
        flaky = FlakyPredictor(predictor)
        monitor = RiskMonitor(records, flaky, config=fast_config)  # type: ignore[arg-type]

        async with aclosing(monitor.watch([1])) as stream:
            async for record_id, result in stream:
                break

        assert flaky.calls == 2
        assert record_id == 1
        assert result.score == 1.0

    async def test_watch_without_ids_ends(
        self, records: RecordEngine, predictor: RiskPredictionService
    ) -> None:
        monitor = RiskMonitor(records, predictor)

        assert [item async for item in monitor.watch([])] == []
