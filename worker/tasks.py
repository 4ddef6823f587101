# worker/tasks.py
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

from .celery_app import celery

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

# cross-process lock: only one feed refresh at a time
LOCK_PATH = Path(os.getenv("CTI_FETCH_LOCK_FILE", os.path.join(os.getenv("TMP", os.getenv("TEMP", "/tmp")), "ctidash_fetch.lock")))
LOCK_STALE_AFTER = 15 * 60

@contextmanager
def fetch_lock(path=None, poll=0.2):
    path = Path(path or LOCK_PATH)
    while True:
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.write(fd, str(os.getpid()).encode("utf-8"))
            os.close(fd)
            break
        except FileExistsError:
            try:
                if time.time() - path.stat().st_mtime > LOCK_STALE_AFTER:
                    logger.warning("removing stale fetch lock %s", path)
                    path.unlink()
                    continue
            except FileNotFoundError:
                continue
            time.sleep(poll)
    try:
        yield
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


_mongo_ready = False

def _ensure_mongo():
    global _mongo_ready
    if not _mongo_ready:
        # imported lazily so the web app can import this module without a cycle
        from ctidash.db import init_mongo
        init_mongo()
        _mongo_ready = True


@celery.task(bind=True, name="worker.tasks.run_refresh_cves")
def run_refresh_cves(self, limit: int = 200):
    from ctidash.cve_feed import refresh_cache

    self.update_state(state="PROGRESS", meta={"step": "fetch"})
    try:
        _ensure_mongo()
        with fetch_lock():
            result = refresh_cache(limit=limit)
        logger.info("[Celery] run_refresh_cves: %s", result)
        return result
    except Exception as e:
        logger.exception("run_refresh_cves failed: %s", e)
        self.update_state(state="FAILURE", meta={"step": "error", "error": str(e)})
        raise


@celery.task(name="worker.tasks.run_dispatch_notifications")
def run_dispatch_notifications():
    from ctidash.notifications import dispatch_due_notifications

    try:
        _ensure_mongo()
        created = dispatch_due_notifications()
        return {"ok": True, "created": created}
    except Exception as e:
        logger.exception("run_dispatch_notifications failed: %s", e)
        raise
