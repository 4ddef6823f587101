# ctidash/tasks_api.py
from flask import Blueprint, jsonify
from celery.result import AsyncResult
from worker.tasks import run_refresh_cves
from worker.celery_app import celery
from .errors import ApiError
from .utils import login_required, get_current_user, is_admin

bp = Blueprint("tasks_api", __name__)

@bp.post("/cves/refresh")
@login_required
def refresh_now():
    if not is_admin(get_current_user()):
        raise ApiError(403, "Access denied", "Only administrators can refresh the CVE feed")
    ar = run_refresh_cves.delay()
    return jsonify({"task_id": ar.id, "state": ar.state}), 202

@bp.get("/tasks/<task_id>")
@login_required
def task_status(task_id):
    ar = AsyncResult(task_id, app=celery)
    payload = {"task_id": task_id, "state": ar.state}
    if ar.state == "PENDING":
        payload["meta"] = None
    elif ar.state in {"RECEIVED", "STARTED", "PROGRESS"}:
        payload["meta"] = _safe_info(ar.info)
    elif ar.state == "FAILURE":
        payload["meta"] = _safe_info(ar.info)
    elif ar.state == "SUCCESS":
        payload["result"] = _safe_info(ar.result)
    return jsonify(payload)

def _safe_info(val):
    if isinstance(val, Exception):
        return {"error": str(val)}
    if isinstance(val, (dict, list, str, int, float, bool)) or val is None:
        return val
    return {"repr": repr(val)}
