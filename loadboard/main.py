"""Composition root: builds every component once and runs the scheduler."""
import argparse
import signal
from dataclasses import dataclass
from pathlib import Path

from .config import Settings, load_settings
from .monitor import HealthMonitor
from .scheduler import PipelineScheduler
from .scrape import ExtractionEngine
from .services import Pipeline
from .session import SessionManager
from .store import ListingStore
from .utils import logger


@dataclass
class App:
    settings: Settings
    session: SessionManager
    store: ListingStore
    monitor: HealthMonitor
    pipeline: Pipeline
    scheduler: PipelineScheduler


def build(settings: Settings, session=None) -> App:
    session = session or SessionManager(settings)
    store = ListingStore.from_settings(settings)
    monitor = HealthMonitor.from_settings(settings)
    pipeline = Pipeline(settings, session, ExtractionEngine(settings), store, monitor)
    scheduler = PipelineScheduler(pipeline.run, settings, monitor, on_stop=[session.close])
    return App(settings, session, store, monitor, pipeline, scheduler)


def main(argv=None) -> int:
    p = argparse.ArgumentParser(prog="loadboard", description="Scheduled load-board extraction")
    p.add_argument("--once", action="store_true", help="Run the pipeline once and exit")
    p.add_argument("--env-file", type=Path, default=None, help="Read settings from this .env file")
    args = p.parse_args(argv)

    settings = load_settings(args.env_file)
    app = build(settings)
    app.store.load()

    if args.once:
        result = app.scheduler.run_once()
        app.scheduler.stop()
        return 0 if result is not None and result.ok else 1

    signal.signal(signal.SIGTERM, lambda signum, frame: app.scheduler.request_stop())
    app.scheduler.start()
    try:
        while not app.scheduler.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    app.scheduler.stop()
    return 1 if app.scheduler.fatal else 0


if __name__ == "__main__":
    raise SystemExit(main())
