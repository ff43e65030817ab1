import json
from loadboard.monitor import HealthMonitor, is_healthy, read_status
from loadboard.schemas import HealthState, HealthStatus, RunResult


def ok(duration=1.0, seen=10, new=4, dup=6):
    return RunResult(duration=duration, items_seen=seen, new_records=new, duplicates=dup)


def failed(error="ConnectionError: boom"):
    return RunResult(duration=0.5, error=error)


def test_starts_in_starting_state(monitor, settings):
    assert monitor.status().state is HealthState.STARTING
    assert read_status(settings.health_path).state is HealthState.STARTING


def test_failures_escalate_to_critical_and_success_resets(monitor):
    assert monitor.record(ok()).state is HealthState.HEALTHY
    assert monitor.record(failed()).state is HealthState.DEGRADED
    assert monitor.record(failed()).state is HealthState.DEGRADED
    status = monitor.record(failed())
    assert status.state is HealthState.CRITICAL
    assert status.consecutive_failures == 3
    assert monitor.should_exit

    status = monitor.record(ok())
    assert status.state is HealthState.HEALTHY
    assert status.consecutive_failures == 0
    assert not monitor.should_exit


def test_counters_and_error_rate(monitor):
    monitor.record(ok())
    monitor.record(failed("ExtractionError: No load rows found"))
    status = monitor.status()
    assert (status.total_runs, status.total_successes, status.total_failures) == (2, 1, 1)
    assert status.error_rate == 0.5
    assert status.last_error == "ExtractionError: No load rows found"
    assert status.last_success is not None


def test_snapshot_written_after_every_record(monitor, settings):
    monitor.record(failed())
    on_disk = read_status(settings.health_path)
    assert on_disk.state is HealthState.DEGRADED
    assert on_disk.consecutive_failures == 1
    assert is_healthy(on_disk)


def test_liveness_rule():
    assert not is_healthy(HealthStatus(state=HealthState.CRITICAL))
    for state in (HealthState.STARTING, HealthState.HEALTHY, HealthState.DEGRADED, HealthState.STOPPED):
        assert is_healthy(HealthStatus(state=state))
    assert not is_healthy(None)


def test_stats_averages_and_extremes(monitor):
    monitor.record(ok(duration=2.0, seen=10, new=4))
    monitor.record(ok(duration=4.0, seen=20, new=0))
    monitor.record(failed())
    stats = monitor.stats()
    assert stats.total_runs == 3
    assert stats.total_entries == 30
    assert stats.total_new_entries == 4
    assert stats.average_entries_per_run == 10.0
    assert stats.average_new_entries_per_run == 1.33
    assert stats.fastest_run == 0.5
    assert stats.slowest_run == 4.0
    assert stats.success_rate == 66.67
    assert stats.runs[0].error is not None


def test_history_is_capped(settings):
    monitor = HealthMonitor(settings.health_path, settings.stats_path, history=5)
    for _ in range(8):
        monitor.record(ok())
    stats = monitor.stats()
    assert stats.total_runs == 8
    assert len(stats.runs) == 5


def test_stats_survive_restart(monitor, settings):
    monitor.record(ok(seen=7))
    again = HealthMonitor.from_settings(settings)
    assert again.stats().total_entries == 7
    assert again.status().state is HealthState.STARTING
    again.record(ok(seen=3))
    data = json.loads(settings.stats_path.read_text())
    assert data["total_runs"] == 2
    assert data["average_entries_per_run"] == 5.0


def test_mark_stopped(monitor, settings):
    monitor.mark_stopped()
    assert read_status(settings.health_path).state is HealthState.STOPPED


def test_record_fault(monitor):
    status = monitor.record_fault(RuntimeError("unexpected"))
    assert status.last_error == "RuntimeError: unexpected"
    assert status.state is HealthState.DEGRADED


def test_read_status_missing(tmp_path):
    assert read_status(tmp_path / "nope.json") is None
