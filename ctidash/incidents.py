# ctidash/incidents.py
import logging
import uuid

from flask import Blueprint, current_app, jsonify, request, send_file

from . import db
from .ai import GeminiClient, AIServiceError, build_incident_prompt, parse_summary_sections
from .config import INCIDENT_STATUSES, INCIDENT_PRIORITIES
from .errors import ApiError
from .notifications import notify_user
from .report import build_incident_pdf
from .utils import (
    json_body, login_required, permission_required, get_current_user, is_admin, same_org,
    public_doc, to_oid, sanitize_payload, clean_str_list, full_name, is_valid_cve_id, to_json, utcnow, iso,
)

logger = logging.getLogger(__name__)

bp = Blueprint("incidents", __name__)

def _public(i):
    return public_doc(i, "incidentId")

def _load(incident_id, u, verb):
    oid = to_oid(incident_id)
    i = db.incidents_coll.find_one({"_id": oid}) if oid else None
    if not i:
        raise ApiError(404, "Incident not found", "The requested incident does not exist")
    if not same_org(u, i):
        raise ApiError(403, "Access denied", f"You can only {verb} incidents from your own organization")
    return i

def _load_for_summary(incident_id, u):
    oid = to_oid(incident_id)
    i = db.incidents_coll.find_one({"_id": oid}) if oid else None
    if not i:
        raise ApiError(404, "Incident not found", "The specified incident does not exist")
    if not same_org(u, i):
        raise ApiError(403, "Access denied", "You can only access incidents in your organization")
    return i

def _resolve_assignee(u, value):
    if value in (None, ""):
        return None, None
    oid = to_oid(value)
    member = db.users_coll.find_one({"_id": oid, "organizationId": u["organizationId"]}) if oid else None
    if not member:
        raise ApiError(400, "Invalid assignee", "Assigned user must belong to your organization")
    return str(member["_id"]), full_name(member)

def _cve_list(values):
    cves = [c.upper() for c in clean_str_list(values)]
    bad = [c for c in cves if not is_valid_cve_id(c)]
    if bad:
        raise ApiError(400, "Invalid CVE ID", "Invalid CVE identifiers: " + ", ".join(bad))
    return list(dict.fromkeys(cves))

def _check_enum(value, allowed, label):
    if value not in allowed:
        raise ApiError(400, f"Invalid {label}", f"{label.capitalize()} must be one of: " + ", ".join(allowed))

def _notify_assignee(u, incident, assignee_id, title, message):
    if assignee_id and assignee_id != str(u["_id"]):
        notify_user(assignee_id, incident["organizationId"], title, message,
                    ntype="info", priority="high" if incident.get("priority") in ("High", "Critical") else "medium",
                    action_url="/incidents", action_text="View incident",
                    incident_id=str(incident["_id"]), sent_by=str(u["_id"]))

# ---------- CRUD ----------

@bp.get("")
@permission_required("canViewIncidents", "You do not have permission to view incidents")
def list_incidents():
    u = get_current_user()
    org = u["organizationId"]
    filt = {"organizationId": org}
    for key, allowed in (("status", INCIDENT_STATUSES), ("priority", INCIDENT_PRIORITIES)):
        val = (request.args.get(key) or "").strip()
        if val:
            _check_enum(val, allowed, key)
            filt[key] = val
    rows = list(db.incidents_coll.find(filt).sort([("dateCreated", -1)]))
    return jsonify({"incidents": [_public(i) for i in rows], "total": len(rows), "organizationId": org})

@bp.get("/<incident_id>")
@permission_required("canViewIncidents", "You do not have permission to view incidents")
def get_incident(incident_id):
    i = _load(incident_id, get_current_user(), "view")
    return jsonify({"incident": _public(i)})

@bp.post("")
@permission_required("canCreateIncidents", "You do not have permission to create incidents")
def create_incident():
    u = get_current_user()
    raw = json_body()
    if not all(raw.get(k) for k in ("title", "description", "priority", "status")):
        raise ApiError(400, "Missing required fields", "Title, description, priority, and status are required")

    data = sanitize_payload(raw)
    _check_enum(data["status"], INCIDENT_STATUSES, "status")
    _check_enum(data["priority"], INCIDENT_PRIORITIES, "priority")
    assignee_id, assignee_name = _resolve_assignee(u, data.get("assignedToUserId"))

    now = utcnow()
    i = {
        "title": data["title"],
        "description": data["description"],
        "resolutionNotes": data.get("resolutionNotes") or "",
        "status": data["status"],
        "priority": data["priority"],
        "type": data.get("type") or None,
        "cveIds": _cve_list(raw.get("cveIds")),
        "threatActorIds": clean_str_list(raw.get("threatActorIds")),
        "reportedByUserId": str(u["_id"]),
        "reportedByUserName": full_name(u),
        "assignedToUserId": assignee_id,
        "assignedToUserName": assignee_name,
        "organizationId": u["organizationId"],
        "dateCreated": now,
        "dateResolved": now if data["status"] == "Resolved" else None,
        "lastUpdatedAt": now,
        "resolutionComments": [],
    }
    r = db.incidents_coll.insert_one(i)
    i["_id"] = r.inserted_id
    _notify_assignee(u, i, assignee_id, f"Incident assigned: {i['title']}",
                     f"{full_name(u)} assigned you a {i['priority']} priority incident.")
    logger.info("incident %s created in org %s by %s", r.inserted_id, i["organizationId"], u["_id"])
    return jsonify({"message": "Incident created successfully", "incident": _public(i)}), 201

@bp.put("/<incident_id>")
@permission_required("canEditIncidents", "You do not have permission to update incidents")
def update_incident(incident_id):
    u = get_current_user()
    i = _load(incident_id, u, "update")
    raw = json_body()
    data = sanitize_payload(raw)
    now = utcnow()
    updates = {}

    for key in ("title", "description"):
        if key in data:
            if not isinstance(data[key], str) or not raw[key]:
                raise ApiError(400, "Invalid input", f"{key} must be a non-empty string")
            updates[key] = data[key]
    for key in ("resolutionNotes", "type"):
        if key in data:
            if data[key] is not None and not isinstance(data[key], str):
                raise ApiError(400, "Invalid input", f"{key} must be a string")
            updates[key] = data[key]
    if "priority" in data:
        _check_enum(data["priority"], INCIDENT_PRIORITIES, "priority")
        updates["priority"] = data["priority"]
    if "status" in data:
        _check_enum(data["status"], INCIDENT_STATUSES, "status")
        updates["status"] = data["status"]
        if data["status"] == "Resolved" and i.get("status") != "Resolved":
            updates["dateResolved"] = now
        elif data["status"] != "Resolved" and i.get("status") == "Resolved":
            updates["dateResolved"] = None
    if "cveIds" in raw:
        updates["cveIds"] = _cve_list(raw["cveIds"])
    if "threatActorIds" in raw:
        updates["threatActorIds"] = clean_str_list(raw["threatActorIds"])

    new_assignee = None
    if "assignedToUserId" in data:
        assignee_id, assignee_name = _resolve_assignee(u, data["assignedToUserId"])
        updates["assignedToUserId"] = assignee_id
        updates["assignedToUserName"] = assignee_name
        if assignee_id != i.get("assignedToUserId"):
            new_assignee = assignee_id

    if not updates:
        raise ApiError(400, "No fields to update", "At least one field must be provided for update")
    updates["lastUpdatedAt"] = now
    db.incidents_coll.update_one({"_id": i["_id"]}, {"$set": updates})
    i = db.incidents_coll.find_one({"_id": i["_id"]})
    _notify_assignee(u, i, new_assignee, f"Incident assigned: {i['title']}",
                     f"{full_name(u)} assigned you a {i['priority']} priority incident.")
    return jsonify({"message": "Incident updated successfully", "incident": _public(i)})

@bp.delete("/<incident_id>")
@permission_required("canDeleteIncidents", "You do not have permission to delete incidents")
def delete_incident(incident_id):
    u = get_current_user()
    i = _load(incident_id, u, "delete")
    db.incidents_coll.delete_one({"_id": i["_id"]})
    db.notifications_coll.delete_many({"incidentId": str(i["_id"])})
    logger.info("incident %s deleted by %s", i["_id"], u["_id"])
    return jsonify({"message": "Incident deleted successfully", "incidentId": incident_id})

# ---------- comments ----------

@bp.post("/<incident_id>/comments")
@permission_required("canViewIncidents", "You do not have permission to view incidents")
def add_comment(incident_id):
    u = get_current_user()
    i = _load(incident_id, u, "view")
    content = sanitize_payload(json_body().get("content"))
    if not isinstance(content, str) or not content:
        raise ApiError(400, "Missing required fields", "Comment content is required")
    comment = {
        "commentId": uuid.uuid4().hex,
        "userId": str(u["_id"]),
        "userName": full_name(u),
        "content": content,
        "timestamp": utcnow(),
    }
    db.incidents_coll.update_one(
        {"_id": i["_id"]},
        {"$push": {"resolutionComments": comment}, "$set": {"lastUpdatedAt": comment["timestamp"]}},
    )
    _notify_assignee(u, i, i.get("assignedToUserId"), f"New comment on: {i['title']}",
                     f"{comment['userName']} commented on an incident assigned to you.")
    return jsonify({"message": "Comment added successfully", "comment": to_json(comment)}), 201

@bp.delete("/<incident_id>/comments/<comment_id>")
@permission_required("canViewIncidents", "You do not have permission to view incidents")
def delete_comment(incident_id, comment_id):
    u = get_current_user()
    i = _load(incident_id, u, "view")
    comment = next((c for c in i.get("resolutionComments") or [] if c.get("commentId") == comment_id), None)
    if not comment:
        raise ApiError(404, "Comment not found", "The requested comment does not exist")
    if comment.get("userId") != str(u["_id"]) and not is_admin(u):
        raise ApiError(403, "Access denied", "You can only delete your own comments")
    db.incidents_coll.update_one({"_id": i["_id"]}, {"$pull": {"resolutionComments": {"commentId": comment_id}}})
    return jsonify({"message": "Comment deleted successfully", "commentId": comment_id})

# ---------- AI summary / PDF ----------

_AI_ERRORS = {
    503: (503, "AI service temporarily unavailable. Please try again later."),
    400: (400, "Invalid request to AI service"),
    403: (403, "AI service access denied"),
}

def _gemini_client():
    cfg = current_app.config
    if not cfg.get("GEMINI_API_KEY"):
        raise ApiError(500, "Failed to generate AI summary", "Gemini API key not configured on server")
    return GeminiClient(cfg["GEMINI_API_KEY"], model=cfg["GEMINI_MODEL"],
                        base_url=cfg["GEMINI_API_BASE"], timeout=cfg["GEMINI_TIMEOUT"])

def _generate_summary(u, incident):
    allowed, retry_after = current_app.extensions["ctidash.ai_limiter"].hit(str(u["_id"]))
    if not allowed:
        raise ApiError(429, "Too many AI summary requests",
                       details="Please wait 15 minutes before requesting another AI summary",
                       retryAfter=retry_after)
    client = _gemini_client()
    org = incident["organizationId"]
    users = list(db.users_coll.find({"organizationId": org}, {"firstName": 1, "lastName": 1}))
    actors = list(db.actors_coll.find({"organizationId": org}, {"name": 1}))
    try:
        text = client.generate(build_incident_prompt(incident, users, actors))
    except AIServiceError as e:
        status, error = _AI_ERRORS.get(e.status, (500, "Failed to generate AI summary"))
        logger.error("AI summary for incident %s failed: %s", incident["_id"], e)
        raise ApiError(status, error, str(e) if status == 500 else None)

    now = utcnow()
    sections = parse_summary_sections(text)
    db.incidents_coll.update_one(
        {"_id": incident["_id"]},
        {"$set": {"aiSummary": text, "aiSummarySections": sections, "aiSummaryGeneratedAt": now}},
    )
    return text, sections, now

@bp.post("/<incident_id>/ai-summary")
@login_required
def ai_summary(incident_id):
    u = get_current_user()
    i = _load_for_summary(incident_id, u)
    text, sections, generated_at = _generate_summary(u, i)
    return jsonify({"incidentId": incident_id, "summary": text, "sections": sections, "generatedAt": iso(generated_at)})

@bp.post("/<incident_id>/export-pdf")
@login_required
def export_pdf(incident_id):
    u = get_current_user()
    i = _load_for_summary(incident_id, u)
    if i.get("aiSummary"):
        sections = i.get("aiSummarySections") or parse_summary_sections(i["aiSummary"])
        generated_at = i.get("aiSummaryGeneratedAt")
    else:
        _, sections, generated_at = _generate_summary(u, i)
    buf = build_incident_pdf(i, sections, generated_at)
    return send_file(buf, mimetype="application/pdf", as_attachment=True,
                     download_name=f"vulnerability-summary-{incident_id}.pdf")
