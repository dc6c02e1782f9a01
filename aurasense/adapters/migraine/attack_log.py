"""
Attack logging.

Logging an attack writes the entry to the ``migraines`` namespace and then
refreshes that day's ``general`` snapshot with the attack-derived features
(counts over 7 and 30 days, days since the previous attack, and the day's
session aggregates). The snapshot refresh is secondary: when it fails the
entry stays logged and the failure is reported in the outcome.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import ValidationError

from aurasense.adapters.migraine.domain import GeneralSnapshot, MigraineEntry, Namespace
from aurasense.core.errors import AuraSenseError, DuplicateKey
from aurasense.core.result import Result
from aurasense.core.storage.records import RecordEngine

logger = structlog.get_logger(__name__)

_MS_PER_DAY = 24 * 60 * 60 * 1000


def to_utc(moment: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def format_timestamp(moment: datetime) -> str:
    return to_utc(moment).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _epoch_ms(moment: datetime) -> int:
    return int(to_utc(moment).timestamp() * 1000)


@dataclass
class AttackLogOutcome:
    """What log_attack stored; ``snapshot`` holds the refreshed day or the refresh error."""

    entry_id: int
    entry: MigraineEntry
    snapshot: Result[GeneralSnapshot, Exception]


class AttackLogService:
    """Records attacks and keeps the daily model inputs in step with them."""

    def __init__(self, records: RecordEngine) -> None:
        self.migraines = records.use_namespace(Namespace.MIGRAINES.value)
        self.general = records.use_namespace(Namespace.GENERAL.value)
        self.logger = logger.bind(component="attack_log")

    async def log_attack(self, started_at: datetime, duration_minutes: float) -> AttackLogOutcome:
        """
        Store one attack and refresh its day's snapshot.

        Raises:
            ValueError: ``duration_minutes`` is not a positive number.
            StorageError: the attack entry itself could not be written.
        """
        if (
            isinstance(duration_minutes, bool)
            or not isinstance(duration_minutes, int | float)
            or math.isnan(duration_minutes)
            or duration_minutes <= 0
        ):
            raise ValueError("Please enter a valid duration in minutes.")

        entry = MigraineEntry(
            date=format_timestamp(started_at), duration_minutes=round(duration_minutes)
        )
        # Ids are creation milliseconds; step past any id already taken.
        entry_id = _epoch_ms(datetime.now(UTC))
        while True:
            try:
                await self.migraines.create(entry_id, entry.to_record())
                break
            except DuplicateKey:
                entry_id += 1
        self.logger.info(
            "attack_logged", entry_id=entry_id, date=entry.date, duration=entry.duration_minutes
        )

        try:
            snapshot = await self.refresh_day(started_at)
        except (AuraSenseError, ValidationError) as e:
            self.logger.error("daily_snapshot_refresh_failed", entry_id=entry_id, error=str(e))
            return AttackLogOutcome(entry_id, entry, Result.err(e))
        return AttackLogOutcome(entry_id, entry, Result.ok(snapshot))

    async def _load_entries(self) -> list[tuple[datetime, MigraineEntry]]:
        entries: list[tuple[datetime, MigraineEntry]] = []
        for payload in await self.migraines.read_all_data():
            try:
                entry = MigraineEntry.model_validate(payload)
                started = to_utc(datetime.fromisoformat(entry.date))
            except (ValidationError, ValueError) as e:
                self.logger.warning("attack_entry_skipped", error=str(e))
                continue
            entries.append((started, entry))
        return entries

    async def refresh_day(self, moment: datetime) -> GeneralSnapshot:
        """Recompute the attack features for the UTC day containing ``moment``."""
        day = to_utc(moment).date()
        day_start = datetime(day.year, day.month, day.day, tzinfo=UTC)
        day_id = _epoch_ms(day_start)

        entries = await self._load_entries()
        times = [started for started, _ in entries]

        attacks_last_7_days = sum(1 for t in times if t >= day_start - timedelta(days=7))
        attacks_last_30_days = sum(1 for t in times if t >= day_start - timedelta(days=30))

        previous = [t for t in times if t < day_start]
        days_since_last_attack = (
            (_epoch_ms(day_start) - _epoch_ms(max(previous))) // _MS_PER_DAY if previous else 0
        )

        same_day = [(t, entry) for t, entry in entries if t.date() == day]
        total_minutes = sum(entry.duration_minutes for _, entry in same_day)
        last = max(same_day, key=lambda item: item[0]) if same_day else None

        aggregates = {
            "date": day.isoformat(),
            "days_since_last_attack": days_since_last_attack,
            "attacks_last_7_days": attacks_last_7_days,
            "attacks_last_30_days": attacks_last_30_days,
            "migraine_sessions_count": len(same_day),
            "migraine_sessions_total_minutes": total_minutes,
            "migraine_sessions_avg_minutes": total_minutes / len(same_day) if same_day else 0.0,
            "last_migraine_duration_minutes": last[1].duration_minutes if last else 0,
            "last_migraine_time": last[1].date if last else None,
        }

        existing = await self.general.read_data(day_id)
        merged = {**existing, **aggregates} if isinstance(existing, dict) else aggregates
        snapshot = GeneralSnapshot.model_validate(merged)

        await self.general.upsert(day_id, snapshot)
        self.logger.info(
            "daily_snapshot_refreshed",
            day=day.isoformat(),
            attacks_last_7_days=attacks_last_7_days,
            sessions=len(same_day),
        )
        return snapshot
