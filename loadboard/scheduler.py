# loadboard/scheduler.py
"""Periodic execution of the pipeline.

APScheduler only fires ticks; every run is executed on one dedicated worker
thread, which is also where shutdown hooks (closing the browser) run, since
the browser session must stay on the thread that created it.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers import SchedulerNotRunningError
from .utils import CancelToken, logger


class PipelineScheduler:
    def __init__(self, run, settings, monitor, on_stop=(), scheduler=None):
        self._run = run
        self.settings = settings
        self.monitor = monitor
        self._on_stop = list(on_stop)
        self._scheduler = scheduler or BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}, timezone=timezone.utc
        )
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pipeline")
        self._lock = threading.Lock()
        self._futures = []
        self._token = None
        self._stopping = threading.Event()
        self._done = threading.Event()
        self.fatal = False

    @property
    def running(self) -> bool:
        with self._lock:
            return any(not f.done() for f in self._futures)

    def start(self):
        kwargs = {}
        if self.settings.run_immediately:
            kwargs["next_run_time"] = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.on_tick, "interval", seconds=self.settings.interval_seconds, id="pipeline", **kwargs
        )
        self._scheduler.start()
        logger.info(
            "Scheduler started: every %ss, run immediately=%s, overlap policy=%s",
            self.settings.interval_seconds, self.settings.run_immediately, self.settings.overlap_policy,
        )

    def on_tick(self) -> bool:
        """Submit a run unless the overlap policy says otherwise."""
        if self._stopping.is_set():
            return False
        with self._lock:
            self._futures = [f for f in self._futures if not f.done()]
            # "queue" allows exactly one run waiting behind the in-flight one
            limit = 1 if self.settings.overlap_policy == "skip" else 2
            if len(self._futures) >= limit:
                logger.warning("Previous run still in progress, tick skipped")
                return False
            self._futures.append(self._worker.submit(self._guarded_run))
            return True

    def run_once(self):
        return self._worker.submit(self._guarded_run).result()

    def _guarded_run(self):
        if self._stopping.is_set():
            return None
        token = CancelToken(timeout=self.settings.run_timeout)
        self._token = token
        try:
            return self._run(token)
        except Exception as e:
            logger.exception("Run crashed: %s", e)
            try:
                self.monitor.record_fault(e)
            except Exception:
                logger.exception("Could not record crashed run")
            if self.monitor.should_exit:
                logger.critical("Too many consecutive failures, shutting down")
                self.fatal = True
                self._done.set()
            return None
        finally:
            self._token = None

    def request_stop(self):
        self._done.set()

    def wait(self, timeout=None) -> bool:
        return self._done.wait(timeout)

    def stop(self, grace=None):
        if self._stopping.is_set():
            return
        grace = self.settings.shutdown_grace if grace is None else grace
        self._stopping.set()
        logger.info("Stopping scheduler (grace %.0fs)", grace)
        try:
            self._scheduler.shutdown(wait=False)
        except SchedulerNotRunningError:
            pass

        with self._lock:
            futures = list(self._futures)
        for f in futures:
            f.cancel()
        for f in futures:
            if f.cancelled():
                continue
            try:
                f.result(timeout=grace)
            except FuturesTimeout:
                token = self._token
                if token is not None:
                    logger.warning("Run did not finish within %.0fs, cancelling it", grace)
                    token.cancel("shutdown")
                try:
                    f.result(timeout=grace)
                except FuturesTimeout:
                    logger.error("Run still busy after cancellation")
            except Exception as e:
                logger.warning("In-flight run ended with error: %s", e)

        for hook in self._on_stop:
            try:
                self._worker.submit(hook).result(timeout=grace)
            except FuturesTimeout:
                logger.error("Shutdown hook %s timed out", getattr(hook, "__name__", hook))
            except Exception as e:
                logger.warning("Shutdown hook failed: %s", e)
        self._worker.shutdown(wait=False)
        self.monitor.mark_stopped()
        self._done.set()
        logger.info("Scheduler stopped")
