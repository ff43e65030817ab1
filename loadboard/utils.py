"""Shared utilities: logging, retry decorator, cancellation and file helpers."""
import os
import json
import logging
import random
import tempfile
import threading
import time
from functools import wraps
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("loadboard")

def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger, sleep=time.sleep):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


class RunCancelled(Exception):
    """Raised inside a run once its token is cancelled or its deadline passed."""


class CancelToken:
    """Cooperative cancellation for one pipeline run.

    The run polls ``raise_if_cancelled`` between items; the scheduler calls
    ``cancel`` on shutdown. ``timeout`` (seconds) adds a hard deadline.
    """

    def __init__(self, timeout=None, clock=time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout else None
        self.reason = None

    def cancel(self, reason="cancelled"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self):
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("run timeout exceeded")
            return True
        return False

    def raise_if_cancelled(self):
        if self.cancelled:
            raise RunCancelled(self.reason)


def write_json_atomic(path, payload):
    """Write ``payload`` as JSON next to ``path`` then swap it in with os.replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            if isinstance(payload, str):
                fh.write(payload)
            else:
                json.dump(payload, fh, indent=2, default=str)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def random_delay(low_ms, high_ms, scale=1.0):
    """Milliseconds to pause, scaled; 0 when pacing is disabled."""
    if scale <= 0:
        return 0
    return int(random.randint(low_ms, high_ms) * scale)


def human_pause(page, low_ms, high_ms, scale=1.0):
    delay = random_delay(low_ms, high_ms, scale)
    if not delay:
        return
    try:
        page.wait_for_timeout(delay)
    except Exception as e:
        logger.debug("Wait interrupted: %s", e)


def human_mouse_move(page, scale=1.0):
    if scale <= 0:
        return
    try:
        viewport = page.viewport_size
        if not viewport:
            return
        x = random.randint(0, int(viewport["width"] * 0.8)) + viewport["width"] * 0.1
        y = random.randint(0, int(viewport["height"] * 0.8)) + viewport["height"] * 0.1
        page.mouse.move(x, y, steps=random.randint(3, 8))
    except Exception as e:
        logger.debug("Mouse movement failed: %s", e)
