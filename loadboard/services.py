# loadboard/services.py
import time
from .schemas import AppendResult, RunResult, utcnow
from .scrape import ExtractionError
from .utils import logger

class Pipeline:
    """One run: live session -> rows -> records -> store -> monitor.

    Records are buffered for the whole run and handed to the store once, so a
    failed run never leaves a partial batch behind.
    """

    def __init__(self, settings, session, engine, store, monitor, clock=time.monotonic):
        self.settings = settings
        self.session = session
        self.engine = engine
        self.store = store
        self.monitor = monitor
        self._clock = clock

    def run(self, token=None) -> RunResult:
        started = utcnow()
        t0 = self._clock()
        items_seen = 0
        outcome = AppendResult()
        logger.info("Starting run (max %d entries)", self.settings.max_entries)
        try:
            page = self.session.ensure_live()
            self.engine.open_listings(page)
            rows = self.engine.collect_rows(page)
            items_seen = len(rows)
            if not rows:
                raise ExtractionError("No load rows found")
            records = self.engine.extract_batch(page, rows, token)
            outcome = self.store.append(records)
            self.session.cleanup()
            if self.settings.archive_retention_days:
                self.store.prune_archives(self.settings.archive_retention_days)
        except Exception as e:
            result = RunResult(
                timestamp=started,
                duration=round(self._clock() - t0, 3),
                items_seen=items_seen,
                error=f"{type(e).__name__}: {e}",
            )
            logger.error("Run failed after %.1fs: %s", result.duration, result.error)
            self.monitor.record(result)
            return result

        result = RunResult(
            timestamp=started,
            duration=round(self._clock() - t0, 3),
            items_seen=items_seen,
            new_records=outcome.written,
            duplicates=outcome.duplicates,
        )
        self.monitor.record(result)
        logger.info(
            "Run finished in %.1fs: %d seen, %d new, %d duplicates",
            result.duration, result.items_seen, result.new_records, result.duplicates,
        )
        return result
