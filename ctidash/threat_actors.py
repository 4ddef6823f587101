# ctidash/threat_actors.py
import logging
import re

from flask import Blueprint, jsonify, request

from . import db
from .config import SOPHISTICATION_LEVELS, RESOURCE_LEVELS
from .errors import ApiError
from .utils import (
    json_body, permission_required, get_current_user, same_org, public_doc, to_oid,
    sanitize_payload, clean_str_list, parse_dt, build_pager, page_args, utcnow,
)

logger = logging.getLogger(__name__)

bp = Blueprint("threat_actors", __name__)

TEXT_FIELDS = ("description", "country", "motivation")
LIST_FIELDS = ("aliases", "primaryTargets", "attackPatterns", "tools", "malwareFamilies")
DATE_FIELDS = ("firstSeen", "lastSeen")

def _public(a):
    return public_doc(a, "threatActorId")

def _load(actor_id, u):
    oid = to_oid(actor_id)
    a = db.actors_coll.find_one({"_id": oid}) if oid else None
    if not a:
        raise ApiError(404, "Threat actor not found", "The requested threat actor does not exist")
    if not same_org(u, a):
        raise ApiError(403, "Access denied", "You can only access threat actors from your own organization")
    return a

def _fields_from(raw, data):
    out = {}
    if "name" in data:
        if not isinstance(data["name"], str) or not data["name"]:
            raise ApiError(400, "Missing required fields", "Name is required")
        out["name"] = data["name"]
    for key in TEXT_FIELDS:
        if key in data:
            out[key] = data[key] if isinstance(data[key], str) else None
    for key in LIST_FIELDS:
        if key in raw:
            out[key] = clean_str_list(raw[key])
    for key in DATE_FIELDS:
        if key in data:
            if data[key] and parse_dt(data[key]) is None:
                raise ApiError(400, "Invalid date", f"{key} must be a valid date")
            out[key] = parse_dt(data[key])
    if "sophistication" in data:
        if data["sophistication"] not in SOPHISTICATION_LEVELS:
            raise ApiError(400, "Invalid sophistication",
                           "Sophistication must be one of: " + ", ".join(SOPHISTICATION_LEVELS))
        out["sophistication"] = data["sophistication"]
    if "resourceLevel" in data:
        if data["resourceLevel"] not in RESOURCE_LEVELS:
            raise ApiError(400, "Invalid resource level",
                           "Resource level must be one of: " + ", ".join(RESOURCE_LEVELS))
        out["resourceLevel"] = data["resourceLevel"]
    if "isActive" in data:
        if not isinstance(data["isActive"], bool):
            raise ApiError(400, "Invalid input", "isActive must be a boolean")
        out["isActive"] = data["isActive"]
    return out

@bp.get("")
@permission_required("canViewThreatActors", "You do not have permission to view threat actors")
def list_actors():
    u = get_current_user()
    page, page_size = page_args()
    filt = {"organizationId": u["organizationId"]}
    q = (request.args.get("q") or "").strip()
    if q:
        rx = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"name": rx}, {"aliases": rx}]
    total = db.actors_coll.count_documents(filt)
    rows = list(
        db.actors_coll.find(filt)
        .sort([("name", 1)])
        .skip((page - 1) * page_size)
        .limit(page_size)
    )
    return jsonify({"threatActors": [_public(a) for a in rows], "pager": build_pager(total, page, page_size)})

@bp.get("/<actor_id>")
@permission_required("canViewThreatActors", "You do not have permission to view threat actors")
def get_actor(actor_id):
    return jsonify({"threatActor": _public(_load(actor_id, get_current_user()))})

@bp.post("")
@permission_required("canManageThreatActors", "You do not have permission to create threat actors")
def create_actor():
    u = get_current_user()
    raw = json_body()
    if not raw.get("name"):
        raise ApiError(400, "Missing required fields", "Name is required")
    fields = _fields_from(raw, sanitize_payload(raw))

    now = utcnow()
    a = {
        "description": "",
        "aliases": [],
        "country": None,
        "firstSeen": None,
        "lastSeen": None,
        "motivation": None,
        "sophistication": "Unknown",
        "resourceLevel": "Unknown",
        "primaryTargets": [],
        "attackPatterns": [],
        "tools": [],
        "malwareFamilies": [],
        "isActive": True,
    }
    a.update(fields)
    a.update({"organizationId": u["organizationId"], "createdBy": str(u["_id"]),
              "createdAt": now, "updatedAt": now})
    r = db.actors_coll.insert_one(a)
    a["_id"] = r.inserted_id
    logger.info("threat actor %s created in org %s", r.inserted_id, u["organizationId"])
    return jsonify({"message": "Threat actor created successfully", "threatActor": _public(a)}), 201

@bp.put("/<actor_id>")
@permission_required("canManageThreatActors", "You do not have permission to update threat actors")
def update_actor(actor_id):
    u = get_current_user()
    a = _load(actor_id, u)
    raw = json_body()
    fields = _fields_from(raw, sanitize_payload(raw))
    if not fields:
        raise ApiError(400, "No fields to update", "At least one field must be provided for update")
    fields["updatedAt"] = utcnow()
    db.actors_coll.update_one({"_id": a["_id"]}, {"$set": fields})
    return jsonify({
        "message": "Threat actor updated successfully",
        "threatActor": _public(db.actors_coll.find_one({"_id": a["_id"]})),
    })

@bp.delete("/<actor_id>")
@permission_required("canManageThreatActors", "You do not have permission to delete threat actors")
def delete_actor(actor_id):
    u = get_current_user()
    a = _load(actor_id, u)
    key = str(a["_id"])
    db.actors_coll.delete_one({"_id": a["_id"]})
    db.incidents_coll.update_many(
        {"organizationId": u["organizationId"], "threatActorIds": key},
        {"$pull": {"threatActorIds": key}},
    )
    return "", 204
