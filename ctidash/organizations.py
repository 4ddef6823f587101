# ctidash/organizations.py
import logging

from flask import Blueprint, jsonify

from . import db
from .config import ASSIGNABLE_ROLES, ORG_STATUSES
from .errors import ApiError
from .notifications import notify_user
from .users import admin_count
from .utils import (
    json_body, login_required, get_current_user, is_admin, public_doc, public_user,
    to_oid, sanitize_payload, full_name, utcnow,
)

logger = logging.getLogger(__name__)

bp = Blueprint("organizations", __name__)

def _public_org(o):
    return public_doc(o, "organizationId")

def _load_org(org_id):
    oid = to_oid(org_id)
    o = db.orgs_coll.find_one({"_id": oid}) if oid else None
    if not o:
        raise ApiError(404, "Organization not found", "The requested organization does not exist")
    return o

def _own_org(u, org_id, admin=False):
    o = _load_org(org_id)
    if u.get("organizationId") != str(o["_id"]):
        raise ApiError(403, "Access denied", "You can only access your own organization")
    if admin and not is_admin(u):
        raise ApiError(403, "Access denied", "Only admins can manage the organization")
    return o

@bp.post("")
@login_required
def create_org():
    u = get_current_user()
    data = sanitize_payload(json_body())
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise ApiError(400, "Missing required fields", "Organization name is required")
    if u.get("organizationId"):
        raise ApiError(409, "Already in organization", "You already belong to an organization")

    now = utcnow()
    o = {
        "name": name,
        "description": data.get("description") or "",
        "status": "active",
        "createdBy": str(u["_id"]),
        "createdAt": now,
        "updatedAt": now,
    }
    r = db.orgs_coll.insert_one(o)
    o["_id"] = r.inserted_id
    db.users_coll.update_one(
        {"_id": u["_id"]},
        {"$set": {"organizationId": str(r.inserted_id), "role": "admin", "updatedAt": now}},
    )
    logger.info("organization %s created by %s", r.inserted_id, u["_id"])
    return jsonify({"message": "Organization created successfully", "organization": _public_org(o)}), 201

@bp.get("")
@login_required
def list_orgs():
    u = get_current_user()
    org = to_oid(u.get("organizationId"))
    rows = list(db.orgs_coll.find({"_id": org}).sort([("name", 1)])) if org else []
    return jsonify({"organizations": [_public_org(o) for o in rows]})

@bp.get("/<org_id>")
@login_required
def get_org(org_id):
    o = _own_org(get_current_user(), org_id)
    return jsonify({"organization": _public_org(o)})

@bp.put("/<org_id>")
@login_required
def update_org(org_id):
    u = get_current_user()
    o = _own_org(u, org_id, admin=True)
    data = sanitize_payload(json_body())
    updates = {}
    if "name" in data:
        if not isinstance(data["name"], str) or not data["name"]:
            raise ApiError(400, "Invalid name", "Organization name cannot be empty")
        updates["name"] = data["name"]
    if "description" in data:
        updates["description"] = data["description"] or ""
    if "status" in data:
        if data["status"] not in ORG_STATUSES:
            raise ApiError(400, "Invalid status", "Status must be active or inactive")
        updates["status"] = data["status"]
    if not updates:
        raise ApiError(400, "No fields to update", "At least one field must be provided for update")

    updates["updatedAt"] = utcnow()
    db.orgs_coll.update_one({"_id": o["_id"]}, {"$set": updates})
    return jsonify({
        "message": "Organization updated successfully",
        "organization": _public_org(db.orgs_coll.find_one({"_id": o["_id"]})),
    })

@bp.delete("/<org_id>")
@login_required
def delete_org(org_id):
    u = get_current_user()
    o = _own_org(u, org_id, admin=True)
    key = str(o["_id"])
    for coll in (db.incidents_coll, db.actors_coll, db.notifications_coll, db.schedules_coll,
                 db.software_coll, db.dismissed_cves_coll):
        coll.delete_many({"organizationId": key})
    db.users_coll.update_many(
        {"organizationId": key},
        {"$set": {"organizationId": None, "role": "unassigned", "updatedAt": utcnow()}},
    )
    db.orgs_coll.delete_one({"_id": o["_id"]})
    logger.info("organization %s deleted by %s", key, u["_id"])
    return "", 204

@bp.post("/<org_id>/members")
@login_required
def add_member(org_id):
    u = get_current_user()
    o = _own_org(u, org_id, admin=True)
    data = json_body()
    email = data.get("email")
    role = data.get("role") or "viewer"
    if not isinstance(email, str) or not email.strip():
        raise ApiError(400, "Missing required fields", "Email is required")
    if role not in ASSIGNABLE_ROLES:
        raise ApiError(400, "Invalid role", "Role must be admin, editor, or viewer")

    member = db.users_coll.find_one({"email": email.strip().lower()})
    if not member:
        raise ApiError(404, "User not found", "No registered user with that email")
    if member.get("organizationId"):
        raise ApiError(409, "Already in organization", "This user already belongs to an organization")

    key = str(o["_id"])
    db.users_coll.update_one(
        {"_id": member["_id"]},
        {"$set": {"organizationId": key, "role": role, "updatedAt": utcnow()}},
    )
    notify_user(member["_id"], key, "Added to organization",
                f"{full_name(u)} added you to {o['name']} as {role}.",
                ntype="system", action_url="/organization", sent_by=str(u["_id"]))
    logger.info("user %s added to org %s as %s", member["_id"], key, role)
    return jsonify({
        "message": "Member added successfully",
        "user": public_user(db.users_coll.find_one({"_id": member["_id"]})),
    }), 201

@bp.delete("/<org_id>/members/<user_id>")
@login_required
def remove_member(org_id, user_id):
    u = get_current_user()
    o = _own_org(u, org_id, admin=True)
    key = str(o["_id"])
    oid = to_oid(user_id)
    member = db.users_coll.find_one({"_id": oid, "organizationId": key}) if oid else None
    if not member:
        raise ApiError(404, "User not found", "User is not a member of this organization")
    if member.get("role") == "admin" and admin_count(key) <= 1:
        raise ApiError(400, "Cannot remove member", "The only admin cannot be removed from the organization")

    db.users_coll.update_one(
        {"_id": member["_id"]},
        {"$set": {"organizationId": None, "role": "unassigned", "updatedAt": utcnow()}},
    )
    return jsonify({"message": "Member removed successfully", "userId": user_id})
