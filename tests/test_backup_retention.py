from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from backup.naming import build_backup_filename
from backup.retention import (
    DEFAULT_RETENTION_CONFIG,
    apply_retention_policy,
    calculate_cutoffs,
    categorize_backups,
    enrich_backup_files,
    get_month_key,
    get_week_key,
)
from backup.types import BackupFileInfo, RetentionConfig

NOW = datetime(2025, 6, 18, 12, 0, tzinfo=timezone.utc)


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - simple recorder
        self.events.append(("event", event, phase, ok, extra))


def _write_backup(base: Path, database: str, moment: datetime, *, size: int = 16, with_log: bool = False) -> Path:
    path = base / build_backup_filename(database, moment)
    path.write_bytes(b"x" * size)
    if with_log:
        Path(f"{path}.log").write_text(":t\n", encoding="utf-8")
    return path


def test_week_and_month_keys() -> None:
    assert get_week_key(datetime(2025, 5, 12, tzinfo=timezone.utc)) == "2025-W20"
    assert get_month_key(datetime(2025, 5, 12, tzinfo=timezone.utc)) == "2025-05"
    # 2024-12-30 belongs to the first ISO week of 2025
    assert get_week_key(datetime(2024, 12, 30, tzinfo=timezone.utc)) == "2025-W01"


def test_calculate_cutoffs_uses_thirty_day_months() -> None:
    cutoffs = calculate_cutoffs(RetentionConfig(daily_retention_days=7, weekly_retention_weeks=4, monthly_retention_months=2), NOW)

    assert cutoffs.daily == NOW - timedelta(days=7)
    assert cutoffs.weekly == NOW - timedelta(days=28)
    assert cutoffs.monthly == NOW - timedelta(days=60)


def test_old_backup_outside_every_window_is_deleted(tmp_path) -> None:
    old = _write_backup(tmp_path, "db1", datetime(2024, 1, 1, tzinfo=timezone.utc), size=123)
    fresh = _write_backup(tmp_path, "db1", NOW, size=50)
    logger = StubLogger()

    result = apply_retention_policy(tmp_path, DEFAULT_RETENTION_CONFIG, logger=logger, now=NOW)

    assert [item.path for item in result.kept] == [fresh]
    assert [item.path for item in result.deleted] == [old]
    assert result.freed_bytes == 123
    assert result.errors == []
    assert not old.exists()
    assert fresh.exists()
    summary = [entry for entry in logger.events if entry[0] == "event"]
    assert summary and summary[-1][1] == "retention_applied"
    assert summary[-1][4]["removed"] == 1


def test_newest_backup_in_a_week_claims_the_weekly_slot(tmp_path) -> None:
    day35 = _write_backup(tmp_path, "db1", NOW - timedelta(days=35))
    day36 = _write_backup(tmp_path, "db1", NOW - timedelta(days=36))
    day37 = _write_backup(tmp_path, "db1", NOW - timedelta(days=37))
    current = _write_backup(tmp_path, "db1", NOW)

    result = apply_retention_policy(tmp_path, RetentionConfig(), now=NOW)

    assert [item.path for item in result.daily] == [current]
    assert [item.path for item in result.weekly] == [day35]
    assert result.monthly == []
    assert sorted(item.path for item in result.deleted) == sorted([day36, day37])
    assert not day36.exists() and not day37.exists()
    assert day35.exists() and current.exists()


def test_daily_window_keeps_everything(tmp_path) -> None:
    paths = [_write_backup(tmp_path, "db1", NOW - timedelta(hours=hours)) for hours in (1, 2, 3, 30)]

    result = apply_retention_policy(tmp_path, RetentionConfig(), now=NOW)

    assert sorted(item.path for item in result.daily) == sorted(paths)
    assert result.deleted == []


def test_monthly_tier_keeps_one_backup_per_month(tmp_path) -> None:
    config = RetentionConfig(daily_retention_days=1, weekly_retention_weeks=1, monthly_retention_months=12)
    newer = _write_backup(tmp_path, "db1", datetime(2025, 3, 20, tzinfo=timezone.utc))
    older = _write_backup(tmp_path, "db1", datetime(2025, 3, 5, tzinfo=timezone.utc))
    other_month = _write_backup(tmp_path, "db1", datetime(2025, 2, 10, tzinfo=timezone.utc))

    result = apply_retention_policy(tmp_path, config, now=NOW)

    assert sorted(item.path for item in result.monthly) == sorted([newer, other_month])
    assert [item.path for item in result.deleted] == [older]


def test_weekly_backup_also_claims_its_month(tmp_path) -> None:
    config = RetentionConfig(daily_retention_days=1, weekly_retention_weeks=2, monthly_retention_months=12)
    weekly = _write_backup(tmp_path, "db1", datetime(2025, 6, 10, tzinfo=timezone.utc))
    same_month = _write_backup(tmp_path, "db1", datetime(2025, 6, 1, tzinfo=timezone.utc))

    result = apply_retention_policy(tmp_path, config, now=NOW)

    assert [item.path for item in result.weekly] == [weekly]
    assert [item.path for item in result.deleted] == [same_month]


def test_databases_are_bucketed_independently(tmp_path) -> None:
    moment = NOW - timedelta(days=40)
    first = _write_backup(tmp_path, "db1", moment)
    second = _write_backup(tmp_path, "db2", moment)

    result = apply_retention_policy(tmp_path, RetentionConfig(), now=NOW)

    assert sorted(item.path for item in result.weekly) == sorted([first, second])
    assert result.deleted == []


def test_every_backup_lands_in_exactly_one_tier() -> None:
    infos = []
    for days in range(0, 500, 3):
        moment = NOW - timedelta(days=days)
        name = build_backup_filename("db1", moment)
        timestamp = name[len("db1-"):-len(".json")].replace("-", ":")
        infos.append(BackupFileInfo(path=Path(name), database="db1", timestamp=timestamp, size=1))
    enriched = enrich_backup_files(infos)
    categorized = categorize_backups(enriched, calculate_cutoffs(RetentionConfig(), NOW))

    buckets = [categorized.daily, categorized.weekly, categorized.monthly, categorized.to_delete]
    assert sum(len(bucket) for bucket in buckets) == len(enriched)
    seen = [item.path for bucket in buckets for item in bucket]
    assert len(seen) == len(set(seen))
    assert len({item.week_key for item in categorized.weekly}) == len(categorized.weekly)
    assert len({item.month_key for item in categorized.monthly}) == len(categorized.monthly)


def test_dry_run_reports_without_deleting(tmp_path) -> None:
    old = _write_backup(tmp_path, "db1", datetime(2023, 1, 1, tzinfo=timezone.utc), size=10, with_log=True)
    _write_backup(tmp_path, "db1", NOW)
    logger = StubLogger()
    config = RetentionConfig(dry_run=True)

    first = apply_retention_policy(tmp_path, config, logger=logger, now=NOW)
    second = apply_retention_policy(tmp_path, config, logger=logger, now=NOW)

    assert first.dry_run is True
    assert [item.path for item in first.deleted] == [old]
    assert first.freed_bytes == 10
    assert [item.path for item in second.deleted] == [old]
    assert old.exists()
    assert Path(f"{old}.log").exists()
    assert any(entry[1] == "backup_would_delete" for entry in logger.events)


def test_deleting_a_backup_removes_its_log(tmp_path) -> None:
    old = _write_backup(tmp_path, "db1", datetime(2023, 1, 1, tzinfo=timezone.utc), with_log=True)

    result = apply_retention_policy(tmp_path, RetentionConfig(), now=NOW)

    assert [item.path for item in result.deleted] == [old]
    assert not old.exists()
    assert not Path(f"{old}.log").exists()


def test_delete_failures_are_collected(tmp_path, monkeypatch) -> None:
    old = _write_backup(tmp_path, "db1", datetime(2023, 1, 1, tzinfo=timezone.utc), size=99)
    original_unlink = Path.unlink

    def _refuse(self, *args, **kwargs):
        if self == old:
            raise PermissionError("read-only filesystem")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", _refuse)
    logger = StubLogger()

    result = apply_retention_policy(tmp_path, RetentionConfig(), logger=logger, now=NOW)

    assert result.deleted == []
    assert result.freed_bytes == 0
    assert len(result.errors) == 1
    assert result.errors[0].file == str(old)
    assert "read-only" in result.errors[0].error
    assert any(entry[0] == "error" and entry[1] == "backup_delete_failed" for entry in logger.events)
    assert old.exists()


def test_unparseable_timestamps_are_left_alone(tmp_path) -> None:
    odd = tmp_path / "db1-2025-13-45T99-99-99-999Z.json"
    odd.write_text("[]", encoding="utf-8")

    result = apply_retention_policy(tmp_path, RetentionConfig(daily_retention_days=0, weekly_retention_weeks=0, monthly_retention_months=0), now=NOW)

    assert result.kept == []
    assert result.deleted == []
    assert odd.exists()


def test_missing_directory_is_empty_result(tmp_path) -> None:
    result = apply_retention_policy(tmp_path / "absent", RetentionConfig(), now=NOW)

    assert result.kept == [] and result.deleted == [] and result.errors == []
    assert result.freed_bytes == 0


def test_retention_config_rejects_negative_values() -> None:
    with pytest.raises(ValueError, match="daily_retention_days"):
        RetentionConfig(daily_retention_days=-1)
