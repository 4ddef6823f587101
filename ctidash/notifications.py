# ctidash/notifications.py
import logging
from datetime import timedelta

from dateutil import parser as dateparser
from flask import Blueprint, jsonify, request

from . import db
from .config import NOTIFICATION_TYPES, NOTIFICATION_PRIORITIES
from .errors import ApiError
from .utils import (
    json_body, login_required, get_current_user, is_admin, public_doc, to_oid,
    sanitize_payload, to_utc_naive, utcnow, iso,
)

logger = logging.getLogger(__name__)

bp = Blueprint("notifications", __name__)

# ---------- helpers used by other blueprints ----------

def notify_user(user_id, org_id, title, message, ntype="info", priority="medium",
                action_url=None, action_text=None, incident_id=None, sent_by=None):
    now = utcnow()
    doc = {
        "audience": "user",
        "userId": str(user_id),
        "organizationId": org_id,
        "type": ntype,
        "title": title,
        "message": message,
        "priority": priority,
        "read": False,
        "actionUrl": action_url,
        "actionText": action_text,
        "incidentId": incident_id,
        "sentBy": sent_by,
        "timestamp": now,
        "createdAt": now,
    }
    r = db.notifications_coll.insert_one(doc)
    return r.inserted_id

def _public(n, uid):
    out = public_doc(n, "id", drop=("readBy", "dismissedBy", "audience"))
    if n.get("audience") == "organization":
        out["read"] = uid in (n.get("readBy") or [])
    return out

def _visible_filter(u):
    uid = str(u["_id"])
    clauses = [{"audience": "user", "userId": uid}]
    if u.get("organizationId"):
        clauses.append({"audience": "organization", "organizationId": u["organizationId"],
                        "dismissedBy": {"$nin": [uid]}})
    return {"$or": clauses}

def _find_visible(u, notification_id):
    oid = to_oid(notification_id)
    n = db.notifications_coll.find_one({"$and": [{"_id": oid}, _visible_filter(u)]}) if oid else None
    if not n:
        raise ApiError(404, "Notification not found", "The notification does not exist")
    return n

def _require_admin(u, message):
    if not is_admin(u):
        raise ApiError(403, "Access denied", message)
    if not u.get("organizationId"):
        raise ApiError(403, "Access denied", "You must belong to an organization")

# ---------- inbox ----------

@bp.get("")
@login_required
def list_notifications():
    u = get_current_user()
    uid = str(u["_id"])
    try:
        limit = min(200, max(1, int(request.args.get("limit", 50))))
    except ValueError:
        limit = 50
    rows = list(db.notifications_coll.find(_visible_filter(u)).sort([("timestamp", -1)]).limit(limit))

    unread = db.notifications_coll.count_documents({"audience": "user", "userId": uid, "read": False})
    if u.get("organizationId"):
        unread += db.notifications_coll.count_documents({
            "audience": "organization", "organizationId": u["organizationId"],
            "readBy": {"$nin": [uid]}, "dismissedBy": {"$nin": [uid]},
        })
    return jsonify({"notifications": [_public(n, uid) for n in rows], "unreadCount": unread})

@bp.post("/organization")
@login_required
def broadcast():
    u = get_current_user()
    _require_admin(u, "Only administrators can send organization notifications")
    data = sanitize_payload(json_body())
    title = data.get("title")
    message = data.get("message")
    if not title or not message:
        raise ApiError(400, "Missing required fields", "Title and message are required")
    ntype = data.get("type") or "info"
    priority = data.get("priority") or "medium"
    if ntype not in NOTIFICATION_TYPES:
        raise ApiError(400, "Invalid type", "Type must be one of: " + ", ".join(NOTIFICATION_TYPES))
    if priority not in NOTIFICATION_PRIORITIES:
        raise ApiError(400, "Invalid priority", "Priority must be low, medium, or high")

    now = utcnow()
    doc = {
        "audience": "organization",
        "organizationId": u["organizationId"],
        "type": ntype,
        "title": title,
        "message": message,
        "priority": priority,
        "actionUrl": data.get("actionUrl"),
        "actionText": data.get("actionText"),
        "sentBy": str(u["_id"]),
        "readBy": [],
        "dismissedBy": [],
        "timestamp": now,
        "createdAt": now,
    }
    r = db.notifications_coll.insert_one(doc)
    doc["_id"] = r.inserted_id
    logger.info("org %s broadcast by %s", u["organizationId"], u["_id"])
    return jsonify({"message": "Notification sent successfully", "notification": _public(doc, str(u["_id"]))}), 201

@bp.post("/read-all")
@login_required
def mark_all_read():
    u = get_current_user()
    uid = str(u["_id"])
    db.notifications_coll.update_many({"audience": "user", "userId": uid}, {"$set": {"read": True}})
    if u.get("organizationId"):
        db.notifications_coll.update_many(
            {"audience": "organization", "organizationId": u["organizationId"]},
            {"$addToSet": {"readBy": uid}},
        )
    return jsonify({"message": "All notifications marked as read"})

@bp.post("/<notification_id>/read")
@login_required
def mark_read(notification_id):
    u = get_current_user()
    n = _find_visible(u, notification_id)
    if n.get("audience") == "organization":
        db.notifications_coll.update_one({"_id": n["_id"]}, {"$addToSet": {"readBy": str(u["_id"])}})
    else:
        db.notifications_coll.update_one({"_id": n["_id"]}, {"$set": {"read": True}})
    return jsonify({"message": "Notification marked as read", "notificationId": str(n["_id"])})

@bp.delete("/<notification_id>")
@login_required
def delete_notification(notification_id):
    u = get_current_user()
    n = _find_visible(u, notification_id)
    if n.get("audience") == "organization":
        db.notifications_coll.update_one({"_id": n["_id"]}, {"$addToSet": {"dismissedBy": str(u["_id"])}})
    else:
        db.notifications_coll.delete_one({"_id": n["_id"]})
    return jsonify({"message": "Notification deleted successfully", "notificationId": str(n["_id"])})

@bp.delete("")
@login_required
def clear_notifications():
    u = get_current_user()
    uid = str(u["_id"])
    db.notifications_coll.delete_many({"audience": "user", "userId": uid})
    if u.get("organizationId"):
        db.notifications_coll.update_many(
            {"audience": "organization", "organizationId": u["organizationId"]},
            {"$addToSet": {"dismissedBy": uid}},
        )
    return jsonify({"message": "All notifications cleared"})

# ---------- scheduling ----------

def parse_schedule_time(date_str, time_str):
    """``YYYY-MM-DD`` + ``HH:MM`` -> naive UTC datetime, or None when unparseable."""
    if not isinstance(date_str, str) or not isinstance(time_str, str):
        return None
    try:
        return to_utc_naive(dateparser.isoparse(f"{date_str.strip()}T{time_str.strip()}"))
    except (ValueError, OverflowError):
        return None

@bp.post("/schedule")
@login_required
def schedule_notification():
    u = get_current_user()
    _require_admin(u, "Only administrators can schedule notifications")
    raw = json_body()
    user_ids = raw.get("userIds")
    if (not raw.get("title") or not raw.get("message") or not raw.get("priority")
            or not raw.get("scheduledDate") or not isinstance(user_ids, list) or not user_ids):
        raise ApiError(400, "Missing required fields",
                       "Title, message, priority, scheduled date, and user selection are required")

    data = sanitize_payload(raw)
    if data["priority"] not in NOTIFICATION_PRIORITIES:
        raise ApiError(400, "Invalid priority", "Priority must be low, medium, or high")
    ntype = data.get("type") or "info"
    if ntype not in NOTIFICATION_TYPES:
        raise ApiError(400, "Invalid type", "Type must be one of: " + ", ".join(NOTIFICATION_TYPES))

    now = utcnow()
    time_str = data.get("scheduledTime") or now.strftime("%H:%M")
    when = parse_schedule_time(data["scheduledDate"], time_str)
    if when is None:
        raise ApiError(400, "Invalid date/time format", "Please provide valid date and time")
    if when <= now + timedelta(minutes=1):
        raise ApiError(400, "Invalid scheduled time", "Scheduled time must be in the future")

    targets = list(dict.fromkeys(data["userIds"]))
    oids = [to_oid(t) for t in targets]
    in_org = db.users_coll.count_documents({
        "_id": {"$in": oids}, "organizationId": u["organizationId"],
    }) if targets and all(oids) else -1
    if in_org != len(targets):
        raise ApiError(400, "Invalid users", "All selected users must belong to your organization")

    doc = {
        "title": data["title"],
        "message": data["message"],
        "priority": data["priority"],
        "type": ntype,
        "scheduledDate": data["scheduledDate"],
        "scheduledTime": time_str,
        "scheduledDateTime": when,
        "userIds": targets,
        "organizationId": u["organizationId"],
        "createdBy": str(u["_id"]),
        "status": "scheduled",
        "createdAt": now,
    }
    r = db.schedules_coll.insert_one(doc)
    doc["_id"] = r.inserted_id
    logger.info("notification %s scheduled for %s (%d users)", r.inserted_id, when, len(targets))
    return jsonify({
        "message": "Notification scheduled successfully",
        "scheduledNotification": public_doc(doc, "id"),
    }), 201

@bp.get("/scheduled")
@login_required
def list_scheduled():
    u = get_current_user()
    _require_admin(u, "Only administrators can view scheduled notifications")
    rows = list(
        db.schedules_coll.find({"organizationId": u["organizationId"], "status": "scheduled"})
        .sort([("scheduledDateTime", 1)])
    )
    return jsonify({"scheduledNotifications": [public_doc(r, "id") for r in rows], "total": len(rows)})

@bp.delete("/scheduled/<schedule_id>")
@login_required
def cancel_scheduled(schedule_id):
    u = get_current_user()
    _require_admin(u, "Only administrators can cancel scheduled notifications")
    oid = to_oid(schedule_id)
    r = db.schedules_coll.update_one(
        {"_id": oid, "organizationId": u["organizationId"], "status": "scheduled"},
        {"$set": {"status": "cancelled", "cancelledAt": utcnow(), "cancelledBy": str(u["_id"])}},
    ) if oid else None
    if not r or not r.matched_count:
        raise ApiError(404, "Scheduled notification not found", "The scheduled notification does not exist")
    return jsonify({"message": "Scheduled notification cancelled successfully", "notificationId": schedule_id})

def dispatch_due_notifications(now=None):
    """Turn every schedule whose time has passed into per-user reminders. Returns how many were created."""
    now = now or utcnow()
    created = 0
    due = list(db.schedules_coll.find({"status": "scheduled", "scheduledDateTime": {"$lte": now}})
               .sort([("scheduledDateTime", 1)]))
    for s in due:
        # claim first so overlapping beats cannot deliver twice
        claimed = db.schedules_coll.find_one_and_update(
            {"_id": s["_id"], "status": "scheduled"}, {"$set": {"status": "sending"}},
        )
        if not claimed:
            continue
        docs = [{
            "audience": "user",
            "userId": uid,
            "organizationId": s["organizationId"],
            "type": s.get("type") or "info",
            "title": s["title"],
            "message": s["message"],
            "priority": s["priority"],
            "read": False,
            "sentBy": s.get("createdBy"),
            "scheduleId": str(s["_id"]),
            "status": "due",
            "scheduledDateTime": s["scheduledDateTime"],
            "dueDateTime": now,
            "timestamp": now,
            "createdAt": now,
        } for uid in s.get("userIds") or []]
        try:
            if docs:
                db.notifications_coll.insert_many(docs)
        except Exception:
            logger.exception("dispatch of schedule %s failed, releasing it", s["_id"])
            db.notifications_coll.delete_many({"scheduleId": str(s["_id"])})
            db.schedules_coll.update_one({"_id": s["_id"]}, {"$set": {"status": "scheduled"}})
            raise
        db.schedules_coll.update_one({"_id": s["_id"]}, {"$set": {"status": "sent", "sentAt": now}})
        created += len(docs)
    if due:
        logger.info("dispatched %d scheduled notifications (%d reminders)", len(due), created)
    return created

# ---------- reminders ----------

_REMINDER_FIELDS = ("title", "message", "priority", "scheduledDateTime", "dueDateTime", "status", "type", "createdAt")

@bp.get("/reminders")
@login_required
def list_reminders():
    u = get_current_user()
    rows = list(
        db.notifications_coll.find({"audience": "user", "userId": str(u["_id"]),
                                    "scheduleId": {"$exists": True}, "status": "due"})
        .sort([("dueDateTime", -1)])
    )
    reminders = [public_doc({k: r.get(k) for k in ("_id",) + _REMINDER_FIELDS}, "id") for r in rows]
    return jsonify({"reminders": reminders, "total": len(reminders)})

@bp.post("/reminders/<reminder_id>/acknowledge")
@login_required
def acknowledge_reminder(reminder_id):
    u = get_current_user()
    oid = to_oid(reminder_id)
    r = db.notifications_coll.find_one({"_id": oid, "audience": "user", "userId": str(u["_id"]),
                                        "scheduleId": {"$exists": True}}) if oid else None
    if not r:
        raise ApiError(404, "Reminder not found", "The reminder does not exist")
    now = utcnow()
    db.notifications_coll.update_one(
        {"_id": r["_id"]}, {"$set": {"status": "acknowledged", "acknowledgedAt": now, "read": True}},
    )
    return jsonify({
        "message": "Reminder acknowledged successfully",
        "reminderId": reminder_id,
        "acknowledgedAt": iso(now),
    })
