"""
End-to-end walkthrough of the record store and the risk pipeline.

This script checks:
1. Configuration loading and validation
2. Namespace creation and record CRUD
3. Attack logging and daily snapshot refresh
4. Risk prediction with trends, drivers and explanation
5. Alerting and error handling

It works on a throwaway database so an existing one is never touched.

Run with: python system_check.py
"""

import asyncio
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aurasense.adapters.migraine import AttackLogService, Namespace, build_risk_service
from aurasense.core.config import (
    DEFAULT_NAMESPACES,
    PredictionConfig,
    StorageConfig,
    get_config,
    print_config_summary,
    validate_config,
)
from aurasense.core.errors import DuplicateKey, MissingFeature, NotFound
from aurasense.core.services.alerts import AlertManager, RiskAlert, RiskMonitor
from aurasense.core.storage import RecordEngine, StoreHandle

console = Console()

HIGH_RISK_DAY = {
    "date": datetime.now(UTC).date().isoformat(),
    "sleep_hours": 5.0,
    "screen_time_hours": 8.0,
    "stress_level": 3,
    "prodrome_symptoms": 1,
    "attacks_last_7_days": 2,
    "attacks_last_30_days": 4,
    "days_since_last_attack": 2,
    "hydration_low": 1,
    "skipped_meal": 0,
    "bright_light_exposure": 0,
    "pressure_drop": 0,
}


def _storage_config(workdir: Path) -> StorageConfig:
    return StorageConfig(database_path=str(workdir / "system_check.db"))


async def check_configuration(workdir: Path) -> bool:
    console.print(Panel("🔧 Checking Configuration", style="blue"))
    try:
        validate_config()
        print_config_summary()
        console.print(
            f"✅ Environment {get_config().environment}, scratch database in {workdir}",
            style="green",
        )
        return True
    except Exception as e:
        console.print(f"❌ Configuration check failed: {e}", style="red")
        return False


async def check_storage(workdir: Path) -> bool:
    console.print(Panel("💾 Checking Record Store", style="blue"))
    try:
        async with StoreHandle(_storage_config(workdir)) as handle:
            await handle.ensure_namespaces(*DEFAULT_NAMESPACES)
            records = RecordEngine(handle)

            await records.create("profile", {"name": "demo"})
            try:
                await records.create("profile", {"name": "again"})
            except DuplicateKey:
                console.print("✅ Duplicate create rejected", style="green")

            await records.update("profile", {"timezone": "UTC"})
            try:
                await records.update("missing", {"x": 1})
            except NotFound:
                console.print("✅ Update of a missing record rejected", style="green")

            table = Table(title="Stores")
            table.add_column("Namespace", style="cyan")
            table.add_column("Records", style="green")
            for name in await handle.namespace_names():
                table.add_row(name, str(await records.count(name)))
            console.print(table)
            console.print(
                f"✅ Schema version {await handle.schema_version()} "
                f"after {handle.upgrade_count} upgrade(s)",
                style="green",
            )
        return True
    except Exception as e:
        console.print(f"❌ Record store check failed: {e}", style="red")
        return False


async def check_attack_log(workdir: Path) -> bool:
    console.print(Panel("📓 Checking Attack Log", style="blue"))
    try:
        async with StoreHandle(_storage_config(workdir)) as handle:
            service = AttackLogService(RecordEngine(handle))
            now = datetime.now(UTC)
            for days_ago, minutes in ((9, 120), (3, 45), (0, 90)):
                outcome = await service.log_attack(now - timedelta(days=days_ago), minutes)

            snapshot = outcome.snapshot.unwrap()
            console.print(
                f"✅ Snapshot {snapshot.date}: {snapshot.attacks_last_7_days} attacks in 7 days, "
                f"{snapshot.days_since_last_attack} days since the previous one",
                style="green",
            )
        return True
    except Exception as e:
        console.print(f"❌ Attack log check failed: {e}", style="red")
        return False


async def check_prediction(workdir: Path) -> bool:
    console.print(Panel("🧠 Checking Risk Prediction", style="blue"))
    try:
        async with StoreHandle(_storage_config(workdir)) as handle:
            records = RecordEngine(handle, Namespace.GENERAL.value)
            await records.upsert("today", HIGH_RISK_DAY)

            service = build_risk_service(records, PredictionConfig())
            result = await service.predict(HIGH_RISK_DAY)

            console.print(
                f"Score: {result.score:.2f} ({result.risk_level.value})",
                style="red" if result.score >= 0.7 else "yellow",
            )
            console.print(result.meta.explanation)

            table = Table(title="Drivers")
            table.add_column("Feature", style="cyan")
            table.add_column("Value", style="magenta")
            table.add_column("Threshold", style="yellow")
            table.add_column("Score", style="green")
            for driver in result.meta.drivers:
                table.add_row(
                    driver.label,
                    f"{driver.current:.1f}",
                    f"{driver.threshold:.2f}",
                    f"{driver.normalized_score:.2f}",
                )
            console.print(table)

            for recommendation in result.meta.detailed_explanation.recommendations:
                console.print(f"  • {recommendation}")
        return True
    except Exception as e:
        console.print(f"❌ Prediction check failed: {e}", style="red")
        return False


async def check_alerts_and_errors(workdir: Path) -> bool:
    console.print(Panel("🚨 Checking Alerts and Error Handling", style="blue"))
    try:
        async with StoreHandle(_storage_config(workdir)) as handle:
            records = RecordEngine(handle)
            service = build_risk_service(records)

            received: list[RiskAlert] = []
            monitor = RiskMonitor(
                records, service, AlertManager(threshold=0.7), handlers=[received.append]
            )
            await monitor.run_once("today")
            console.print(f"✅ {len(received)} alert(s) dispatched", style="green")

            try:
                await service.predict({"screen_time_hours": 2.0})
            except MissingFeature as e:
                console.print(f"✅ Incomplete record rejected: {e.message}", style="green")
        return True
    except Exception as e:
        console.print(f"❌ Alert check failed: {e}", style="red")
        return False


async def run_all_checks() -> None:
    console.print(Panel("🧪 AuraSense - System Check", style="bold blue"))

    with tempfile.TemporaryDirectory(prefix="aurasense-") as scratch:
        workdir = Path(scratch)
        checks = [
            ("Configuration", check_configuration),
            ("Record Store", check_storage),
            ("Attack Log", check_attack_log),
            ("Risk Prediction", check_prediction),
            ("Alerts and Errors", check_alerts_and_errors),
        ]

        results = []
        for name, check in checks:
            console.print(f"\n{'=' * 60}")
            results.append((name, await check(workdir)))

    console.print(f"\n{'=' * 60}")
    summary_table = Table(title="📋 Results")
    summary_table.add_column("Check", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for name, ok in results:
        summary_table.add_row(name, "✅ PASSED" if ok else "❌ FAILED")
        passed += ok

    console.print(summary_table)
    console.print(f"\n🎯 Results: {passed}/{len(results)} checks passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_checks())
    except KeyboardInterrupt:
        console.print("\n👋 Stopped by user", style="yellow")
