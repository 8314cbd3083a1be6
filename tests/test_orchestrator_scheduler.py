import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from backup.naming import build_backup_filename
from backup.types import RetentionConfig
from orchestrator.scheduler import BACKUP_NOT_FOUND, BackupScheduler, SchedulerConfig


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
        self.events.append(("event", event, extra))

    def names(self, level: str) -> list:
        return [entry[1] for entry in self.events if entry[0] == level]


class FakeStore:
    """Pretends to snapshot databases by dropping files in the backup dir."""

    def __init__(self, backup_dir: Path, databases, *, failing=()) -> None:
        self.backup_dir = backup_dir
        self.databases = list(databases)
        self.failing = set(failing)
        self.snapshots = []

    def list_databases(self):
        return list(self.databases)

    def snapshot(self, name: str) -> Path:
        self.snapshots.append(name)
        if name in self.failing:
            raise RuntimeError(f"boom {name}")
        path = self.backup_dir / build_backup_filename(name, datetime.now(timezone.utc))
        path.write_text('[{"_id": "a"}]\n', encoding="utf-8")
        return path


def _config(tmp_path: Path, **overrides) -> SchedulerConfig:
    values = dict(
        backup_dir=tmp_path,
        interval_ms=60_000,
        database_pattern="eddo_*",
        verify_after_backup=False,
        apply_retention=False,
    )
    values.update(overrides)
    return SchedulerConfig(**values)


def test_cycle_backs_up_matching_databases(tmp_path) -> None:
    store = FakeStore(tmp_path, ["eddo_a", "_users", "other", "eddo_b"])
    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path),
        list_databases=store.list_databases,
        snapshot=store.snapshot,
        logger=logger,
    )

    results = scheduler.run_backup_cycle()

    assert store.snapshots == ["eddo_a", "eddo_b"]
    assert [result.database for result in results] == ["eddo_a", "eddo_b"]
    assert all(result.success for result in results)
    assert all(result.backup_file is not None and result.backup_file.exists() for result in results)
    assert all(result.verified is None for result in results)
    assert scheduler.state.last_backup_time is not None
    assert scheduler.state.backup_in_progress is False


def test_one_failing_database_does_not_stop_the_cycle(tmp_path) -> None:
    store = FakeStore(tmp_path, ["eddo_a", "eddo_b", "eddo_c"], failing={"eddo_b"})
    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path),
        list_databases=store.list_databases,
        snapshot=store.snapshot,
        logger=logger,
    )

    results = scheduler.run_backup_cycle()

    assert [result.success for result in results] == [True, False, True]
    assert results[1].error == "boom eddo_b"
    assert results[1].backup_file is None
    assert "backup_failed" in logger.names("error")


def test_missing_file_after_snapshot_is_a_failure(tmp_path) -> None:
    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path),
        list_databases=lambda: ["eddo_a"],
        snapshot=lambda name: None,
        logger=logger,
    )

    results = scheduler.run_backup_cycle()

    assert len(results) == 1
    assert results[0].success is False
    assert results[0].error == BACKUP_NOT_FOUND


def test_verification_outcomes(tmp_path) -> None:
    store = FakeStore(tmp_path, ["eddo_ok", "eddo_bad", "eddo_err"])

    def _verify(path: Path) -> bool:
        if "eddo_err" in path.name:
            raise ValueError("corrupt")
        return "eddo_ok" in path.name

    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path, verify_after_backup=True),
        list_databases=store.list_databases,
        snapshot=store.snapshot,
        verify=_verify,
        logger=logger,
    )

    results = {result.database: result for result in scheduler.run_backup_cycle()}

    assert results["eddo_ok"].verified is True
    assert results["eddo_bad"].verified is False
    assert results["eddo_err"].verified is False
    assert all(result.success for result in results.values())
    assert "verify_error" in logger.names("error")
    assert "verify_failed" in logger.names("warning")


def test_verification_requires_a_callable(tmp_path) -> None:
    with pytest.raises(ValueError):
        BackupScheduler(
            _config(tmp_path, verify_after_backup=True),
            list_databases=lambda: [],
            snapshot=lambda name: None,
            logger=StubLogger(),
        )


def test_discovery_failure_yields_empty_cycle(tmp_path) -> None:
    def _broken():
        raise ConnectionError("couch down")

    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path),
        list_databases=_broken,
        snapshot=lambda name: None,
        logger=logger,
    )

    assert scheduler.run_backup_cycle() == []
    assert "database_discovery_failed" in logger.names("error")
    assert "no_matching_databases" in logger.names("warning")
    assert scheduler.state.last_backup_time is None
    assert scheduler.state.backup_in_progress is False


def test_no_matching_databases_skips_retention(tmp_path) -> None:
    old = tmp_path / "eddo_a-2020-01-01T00-00-00-000Z.json"
    old.write_text("[]", encoding="utf-8")
    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path, apply_retention=True),
        list_databases=lambda: ["other"],
        snapshot=lambda name: None,
        logger=logger,
    )

    assert scheduler.run_backup_cycle() == []
    assert old.exists()
    assert scheduler.state.last_backup_time is None


def test_retention_runs_after_backups(tmp_path) -> None:
    old = tmp_path / "eddo_a-2020-01-01T00-00-00-000Z.json"
    old.write_text("[]", encoding="utf-8")
    store = FakeStore(tmp_path, ["eddo_a"])
    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path, apply_retention=True, retention_config=RetentionConfig()),
        list_databases=store.list_databases,
        snapshot=store.snapshot,
        logger=logger,
    )

    results = scheduler.run_backup_cycle()

    assert results[0].success
    assert not old.exists()
    assert results[0].backup_file.exists()
    assert "retention_completed" in logger.names("info")


def test_overlapping_cycle_is_skipped(tmp_path) -> None:
    entered = threading.Event()
    release = threading.Event()
    store = FakeStore(tmp_path, ["eddo_a"])

    def _slow_snapshot(name: str) -> Path:
        entered.set()
        assert release.wait(5)
        return store.snapshot(name)

    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(tmp_path),
        list_databases=store.list_databases,
        snapshot=_slow_snapshot,
        logger=logger,
    )
    outcome = {}
    worker = threading.Thread(target=lambda: outcome.setdefault("results", scheduler.run_backup_cycle()))
    worker.start()
    try:
        assert entered.wait(5)
        assert scheduler.get_status()["backup_in_progress"] is True
        assert scheduler.run_backup_cycle() == []
        assert "cycle_skipped" in logger.names("warning")
    finally:
        release.set()
        worker.join(5)

    assert len(outcome["results"]) == 1
    assert store.snapshots == ["eddo_a"]
    assert scheduler.get_status()["backup_in_progress"] is False


def test_start_and_stop(tmp_path) -> None:
    backup_dir = tmp_path / "backups"
    ran = threading.Event()

    def _list():
        ran.set()
        return []

    logger = StubLogger()
    scheduler = BackupScheduler(
        _config(backup_dir, interval_ms=3_600_000),
        list_databases=_list,
        snapshot=lambda name: None,
        logger=logger,
    )

    status = scheduler.get_status()
    assert status["is_running"] is False
    assert status["next_backup_time"] is None

    scheduler.start()
    scheduler.start()
    try:
        assert backup_dir.is_dir()
        assert ran.wait(5)
        status = scheduler.get_status()
        assert status["is_running"] is True
        assert status["next_backup_time"] is not None
        assert status["config"]["interval_ms"] == 3_600_000
        assert "scheduler_already_running" in logger.names("warning")
    finally:
        scheduler.stop()
    scheduler.stop()

    assert scheduler.join(5)
    assert scheduler.get_status()["is_running"] is False


def test_config_rejects_non_positive_interval(tmp_path) -> None:
    with pytest.raises(ValueError):
        _config(tmp_path, interval_ms=0)


def test_config_from_settings(tmp_path) -> None:
    settings = {
        "backup": {
            "dir": "snapshots",
            "interval": "30m",
            "database_pattern": "todo_*",
            "verify_after_backup": False,
            "apply_retention": True,
            "retention": {"daily_days": 7, "weekly_weeks": 4, "monthly_months": 6},
        }
    }

    config = SchedulerConfig.from_settings(settings, tmp_path)

    assert config.backup_dir == tmp_path / "snapshots"
    assert config.interval_ms == 30 * 60 * 1000
    assert config.database_pattern == "todo_*"
    assert config.verify_after_backup is False
    assert config.retention_config == RetentionConfig(
        daily_retention_days=7, weekly_retention_weeks=4, monthly_retention_months=6
    )


def test_join_waits_for_a_loop_stopped_mid_cycle(tmp_path) -> None:
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def _slow_list():
        calls.append(1)
        if len(calls) == 1:
            entered.set()
            assert release.wait(5)
        return []

    scheduler = BackupScheduler(
        _config(tmp_path, interval_ms=3_600_000),
        list_databases=_slow_list,
        snapshot=lambda name: None,
        logger=StubLogger(),
    )

    scheduler.start()
    assert entered.wait(5)
    scheduler.stop()
    scheduler.start()
    scheduler.stop()
    try:
        assert scheduler.join(0.2) is False
    finally:
        release.set()

    assert scheduler.join(5) is True
    assert scheduler.get_status()["backup_in_progress"] is False
