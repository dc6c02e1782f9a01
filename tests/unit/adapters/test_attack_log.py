"""
Tests for attack logging in `adapters/migraine/attack_log.py`.

Covers:
- Entry storage and duration validation
- Daily snapshot features: 7/30-day counts, days since last attack, same-day aggregates
- Merging into an existing snapshot and reporting a failed refresh
"""

import math
from datetime import UTC, datetime, timedelta, timezone

import pytest

from aurasense.adapters.migraine.attack_log import AttackLogService, format_timestamp
from aurasense.adapters.migraine.domain import GeneralSnapshot, MigraineEntry, Namespace
from aurasense.core.storage.records import RecordEngine


def _day_id(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=UTC).timestamp() * 1000)


@pytest.fixture
def service(records: RecordEngine) -> AttackLogService:
    return AttackLogService(records)


async def test_log_attack_stores_entry(service: AttackLogService, records: RecordEngine) -> None:
    started = datetime(2024, 3, 10, 8, 15, tzinfo=UTC)

    outcome = await service.log_attack(started, 44.6)

    assert outcome.entry.duration_minutes == 45
    assert outcome.entry.date == "2024-03-10T08:15:00.000Z"
    stored = await records.read_data(outcome.entry_id, Namespace.MIGRAINES.value)
    assert stored == {"schemaVersion": 1, "date": "2024-03-10T08:15:00.000Z", "durationMinutes": 45}
    assert outcome.snapshot.is_ok()


async def test_entries_logged_in_the_same_instant_get_distinct_ids(
    service: AttackLogService, records: RecordEngine
) -> None:
    started = datetime(2024, 3, 10, 8, 0, tzinfo=UTC)

    outcomes = [await service.log_attack(started, 30) for _ in range(3)]

    assert len({outcome.entry_id for outcome in outcomes}) == 3
    assert await records.count(Namespace.MIGRAINES.value) == 3


@pytest.mark.parametrize("duration", [0, -5, math.nan, True, "30", None])
async def test_invalid_duration_rejected(
    service: AttackLogService, records: RecordEngine, duration: object
) -> None:
    started = datetime(2024, 3, 10, tzinfo=UTC)
    with pytest.raises(ValueError, match="valid duration"):
        await service.log_attack(started, duration)  # type: ignore[arg-type]

    assert await records.count(Namespace.MIGRAINES.value) == 0


async def test_daily_snapshot_features(service: AttackLogService, records: RecordEngine) -> None:
    for started, minutes in [
        (datetime(2024, 1, 1, 12, 0, tzinfo=UTC), 10),
        (datetime(2024, 2, 20, 12, 0, tzinfo=UTC), 20),
        (datetime(2024, 3, 5, 9, 0, tzinfo=UTC), 45),
        (datetime(2024, 3, 10, 8, 0, tzinfo=UTC), 60),
        (datetime(2024, 3, 10, 14, 0, tzinfo=UTC), 30),
    ]:
        outcome = await service.log_attack(started, minutes)

    snapshot = outcome.snapshot.unwrap()

    assert snapshot.date == "2024-03-10"
    assert snapshot.attacks_last_7_days == 3
    assert snapshot.attacks_last_30_days == 4
    assert snapshot.days_since_last_attack == 4
    assert snapshot.migraine_sessions_count == 2
    assert snapshot.migraine_sessions_total_minutes == 90
    assert snapshot.migraine_sessions_avg_minutes == 45.0
    assert snapshot.last_migraine_duration_minutes == 30
    assert snapshot.last_migraine_time == "2024-03-10T14:00:00.000Z"

    stored = await records.read_data(_day_id(2024, 3, 10), model=GeneralSnapshot)
    assert stored == snapshot


async def test_first_attack_has_no_days_since(service: AttackLogService) -> None:
    outcome = await service.log_attack(datetime(2024, 3, 10, 8, 0, tzinfo=UTC), 30)

    snapshot = outcome.snapshot.unwrap()
    assert snapshot.days_since_last_attack == 0
    assert snapshot.attacks_last_7_days == 1
    # Untouched model inputs keep their defaults.
    assert snapshot.sleep_hours == 7.0


async def test_days_are_utc(service: AttackLogService, records: RecordEngine) -> None:
    eastern = timezone(timedelta(hours=-5))

    outcome = await service.log_attack(datetime(2024, 3, 10, 23, 30, tzinfo=eastern), 20)

    assert outcome.entry.date == "2024-03-11T04:30:00.000Z"
    assert outcome.snapshot.unwrap().date == "2024-03-11"
    assert await records.exists(_day_id(2024, 3, 11))


async def test_naive_times_are_treated_as_utc(service: AttackLogService) -> None:
    outcome = await service.log_attack(datetime(2024, 3, 10, 23, 30), 20)

    assert outcome.entry.date == format_timestamp(datetime(2024, 3, 10, 23, 30, tzinfo=UTC))
    assert outcome.snapshot.unwrap().date == "2024-03-10"


async def test_refresh_merges_into_existing_snapshot(
    service: AttackLogService, records: RecordEngine
) -> None:
    day_id = _day_id(2024, 3, 10)
    await records.upsert(
        day_id, {"date": "2024-03-10", "sleep_hours": 5.5, "stress_level": 3, "note": "late shift"}
    )

    outcome = await service.log_attack(datetime(2024, 3, 10, 6, 0, tzinfo=UTC), 25)

    snapshot = outcome.snapshot.unwrap()
    assert snapshot.sleep_hours == 5.5
    assert snapshot.stress_level == 3
    assert snapshot.migraine_sessions_count == 1
    stored = await records.read_data(day_id)
    assert stored["note"] == "late shift"
    assert stored["last_migraine_duration_minutes"] == 25


async def test_unreadable_entries_are_skipped(
    service: AttackLogService, records: RecordEngine
) -> None:
    migraines = Namespace.MIGRAINES.value
    await records.create(1, {"date": "sometime", "durationMinutes": 10}, migraines)
    await records.create(2, {"unexpected": True}, migraines)
    entry = MigraineEntry(date="2024-03-09T10:00:00Z", duration_minutes=15)
    await records.create(3, entry.to_record(), migraines)

    snapshot = await service.refresh_day(datetime(2024, 3, 10, tzinfo=UTC))

    assert snapshot.attacks_last_7_days == 1
    assert snapshot.days_since_last_attack == 0
    assert snapshot.migraine_sessions_count == 0


async def test_failed_refresh_keeps_entry(service: AttackLogService, records: RecordEngine) -> None:
    await records.upsert(_day_id(2024, 3, 10), {"date": "2024-03-10", "sleep_hours": 99})

    outcome = await service.log_attack(datetime(2024, 3, 10, 9, 0, tzinfo=UTC), 30)

    assert outcome.snapshot.is_err()
    assert await records.exists(outcome.entry_id, Namespace.MIGRAINES.value)
