# worker/celery_app.py
import os
from celery import Celery
from celery.signals import worker_ready

BROKER_URL  = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
BACKEND_URL = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)

celery = Celery(
    "ctidash",
    broker=BROKER_URL,
    backend=BACKEND_URL,
    include=["worker.tasks"],
)

celery.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_max_tasks_per_child=20,
    broker_connection_retry_on_startup=True,
    task_time_limit=60 * 10,
    task_soft_time_limit=60 * 8,
)

if os.getenv("DISABLE_BEAT", "0") != "1":
    celery.conf.beat_schedule = {
        # scheduled notifications become due reminders
        "dispatch-notifications-every-minute": {
            "task": "worker.tasks.run_dispatch_notifications",
            "schedule": 60.0,
        },
        "refresh-cves-every-30min": {
            "task": "worker.tasks.run_refresh_cves",
            "schedule": 30 * 60.0,
        },
    }
else:
    celery.conf.beat_schedule = {}


@worker_ready.connect
def _kickoff_once(sender, **kwargs):
    """Fill the CVE cache once when the worker comes up. Set RUN_STARTUP_TASKS=0 to skip."""
    if os.getenv("RUN_STARTUP_TASKS", "1") != "1":
        return
    sender.app.send_task("worker.tasks.run_refresh_cves")
