"""Run outcome tracking and the health state machine.

``starting -> healthy`` on the first success; a failure moves to ``degraded``
and, once ``max_consecutive_failures`` failures happened in a row, to
``critical``. Any success resets to ``healthy``. ``stopped`` is set on
shutdown. Both the health and the stats document are rewritten atomically
after every recorded run, so probes read the file and never wait on a run.
"""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .schemas import HealthState, HealthStatus, RunResult, RunStats, utcnow
from .utils import logger, write_json_atomic


def read_status(path) -> Optional[HealthStatus]:
    path = Path(path)
    if not path.exists():
        return None
    return HealthStatus.model_validate_json(path.read_text(encoding="utf-8"))


def is_healthy(status: Optional[HealthStatus]) -> bool:
    """Liveness rule: anything short of critical counts as alive."""
    return status is not None and status.state is not HealthState.CRITICAL


class HealthMonitor:
    def __init__(self, health_path, stats_path, max_consecutive_failures=5, history=100, clock=utcnow):
        self.health_path = Path(health_path)
        self.stats_path = Path(stats_path)
        self.max_consecutive_failures = max_consecutive_failures
        self.history = history
        self._clock = clock
        self._lock = threading.Lock()
        self._status = HealthStatus(started_at=clock())
        self._stats = self._load_stats()
        self._persist()

    @classmethod
    def from_settings(cls, settings):
        return cls(
            settings.health_path,
            settings.stats_path,
            max_consecutive_failures=settings.max_consecutive_failures,
            history=settings.stats_history,
        )

    def _load_stats(self) -> RunStats:
        if not self.stats_path.exists():
            return RunStats()
        try:
            stats = RunStats.model_validate_json(self.stats_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error("Failed to load stats from %s, starting fresh: %s", self.stats_path, e)
            return RunStats()
        logger.info("Resuming stats: %d runs, %d entries so far", stats.total_runs, stats.total_entries)
        return stats

    def status(self) -> HealthStatus:
        with self._lock:
            return self._status.model_copy()

    def stats(self) -> RunStats:
        with self._lock:
            return self._stats.model_copy(deep=True)

    @property
    def should_exit(self) -> bool:
        with self._lock:
            return self._status.consecutive_failures >= self.max_consecutive_failures

    def record(self, result: RunResult) -> HealthStatus:
        with self._lock:
            status = self._status
            status.total_runs += 1
            status.last_run = result.timestamp
            if result.ok:
                status.state = HealthState.HEALTHY
                status.consecutive_failures = 0
                status.total_successes += 1
                status.last_success = result.timestamp
            else:
                status.consecutive_failures += 1
                status.total_failures += 1
                status.last_error = result.error
                status.last_error_at = self._clock()
                if status.consecutive_failures >= self.max_consecutive_failures:
                    status.state = HealthState.CRITICAL
                else:
                    status.state = HealthState.DEGRADED
            status.error_rate = round(status.total_failures / status.total_runs, 4)
            self._update_stats(result)
            self._persist()
            if status.state is HealthState.CRITICAL:
                logger.error("Health critical after %d consecutive failures", status.consecutive_failures)
            return status.model_copy()

    def record_fault(self, error: BaseException, started=None) -> HealthStatus:
        return self.record(RunResult(timestamp=started or self._clock(), error=f"{type(error).__name__}: {error}"))

    def mark_stopped(self):
        with self._lock:
            self._status.state = HealthState.STOPPED
            self._persist()

    def _update_stats(self, result: RunResult):
        stats = self._stats
        stats.total_runs += 1
        n = stats.total_runs
        stats.total_entries += result.items_seen
        stats.total_new_entries += result.new_records
        stats.total_duplicates += result.duplicates
        if not result.ok:
            stats.total_errors += 1

        # incremental means, so the capped history is not needed to compute them
        stats.average_entries_per_run = round(
            stats.average_entries_per_run + (result.items_seen - stats.average_entries_per_run) / n, 2)
        stats.average_new_entries_per_run = round(
            stats.average_new_entries_per_run + (result.new_records - stats.average_new_entries_per_run) / n, 2)
        stats.average_duration = round(stats.average_duration + (result.duration - stats.average_duration) / n, 3)
        stats.success_rate = round((n - stats.total_errors) / n * 100, 2)

        if stats.fastest_run is None or result.duration < stats.fastest_run:
            stats.fastest_run = result.duration
        if stats.slowest_run is None or result.duration > stats.slowest_run:
            stats.slowest_run = result.duration

        if stats.first_run is None:
            stats.first_run = result.timestamp
        stats.last_run = result.timestamp
        stats.runs.insert(0, result)
        del stats.runs[self.history:]

    def _persist(self):
        try:
            write_json_atomic(self.health_path, self._status.model_dump_json(indent=2))
            write_json_atomic(self.stats_path, self._stats.model_dump_json(indent=2))
        except OSError as e:
            logger.error("Failed to write status files: %s", e)
