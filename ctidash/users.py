# ctidash/users.py
import logging
import re

from flask import Blueprint, jsonify, request, session
from werkzeug.security import generate_password_hash, check_password_hash

from . import db
from .auth import PASSWORD_RULES
from .config import ASSIGNABLE_ROLES, USER_STATUSES
from .errors import ApiError
from .permissions import derive_permissions
from .utils import (
    json_body, login_required, get_current_user, public_user, to_oid, is_admin, same_org,
    is_valid_email, is_valid_password, has_angle_brackets, strip_tags, build_pager, page_args, utcnow,
)

logger = logging.getLogger(__name__)

bp = Blueprint("users", __name__)

def _load_user(user_id):
    oid = to_oid(user_id)
    target = db.users_coll.find_one({"_id": oid}) if oid else None
    if not target:
        raise ApiError(404, "User not found", "User does not exist")
    return target

def admin_count(org_id):
    return db.users_coll.count_documents({"organizationId": org_id, "role": "admin"})

def is_sole_admin(u):
    org = u.get("organizationId")
    return u.get("role") == "admin" and bool(org) and admin_count(org) <= 1

@bp.get("")
@login_required
def list_users():
    u = get_current_user()
    page, page_size = page_args()
    org = u.get("organizationId")
    if not org or not derive_permissions(u)["canViewOrgUsers"]:
        return jsonify({"users": [], "pager": build_pager(0, page, page_size)})

    filt = {"organizationId": org}
    role = (request.args.get("role") or "").strip()
    if role:
        filt["role"] = role
    q = (request.args.get("q") or "").strip()
    if q:
        rx = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"firstName": rx}, {"lastName": rx}, {"email": rx}]

    total = db.users_coll.count_documents(filt)
    rows = list(
        db.users_coll.find(filt)
        .sort([("lastName", 1), ("firstName", 1)])
        .skip((page - 1) * page_size)
        .limit(page_size)
    )
    return jsonify({"users": [public_user(r) for r in rows], "pager": build_pager(total, page, page_size)})

@bp.get("/me")
@login_required
def me():
    u = get_current_user()
    return jsonify({"user": public_user(u), "permissions": derive_permissions(u)})

@bp.get("/me/permissions")
@login_required
def my_permissions():
    return jsonify({"permissions": derive_permissions(get_current_user())})

@bp.get("/<user_id>")
@login_required
def get_user(user_id):
    u = get_current_user()
    target = _load_user(user_id)
    if target["_id"] != u["_id"] and not same_org(u, target):
        raise ApiError(403, "Access denied", "You can only view users in your organization")
    return jsonify({"user": public_user(target)})

@bp.put("/<user_id>")
@login_required
def update_user(user_id):
    u = get_current_user()
    target = _load_user(user_id)
    is_self = target["_id"] == u["_id"]
    if not is_self and not (is_admin(u) and same_org(u, target)):
        raise ApiError(403, "Access denied", "You can only update your own account or users in your organization")

    data = json_body()
    editable = ("email", "firstName", "lastName", "profilePictureUrl", "password", "status")
    fields = {k: data[k] for k in editable if k in data}
    if not fields:
        raise ApiError(400, "No fields to update", "At least one field must be provided for update")

    updates = {}
    if "email" in fields:
        if not is_valid_email(fields["email"]) or has_angle_brackets(fields["email"]):
            raise ApiError(400, "Invalid email format", "Please provide a valid email address")
        email = fields["email"].strip().lower()
        if db.users_coll.find_one({"email": email, "_id": {"$ne": target["_id"]}}):
            raise ApiError(409, "Email already exists", "An account with this email already exists")
        updates["email"] = email

    for key in ("firstName", "lastName"):
        if key in fields:
            val = fields[key]
            if not isinstance(val, str) or has_angle_brackets(val) or not val.strip():
                raise ApiError(400, "Invalid input", "Input contains invalid characters")
            updates[key] = val.strip()

    if "profilePictureUrl" in fields:
        url = fields["profilePictureUrl"]
        if url is not None and not isinstance(url, str):
            raise ApiError(400, "Invalid input", "profilePictureUrl must be a string")
        updates["profilePictureUrl"] = strip_tags(url) if url else None

    if "password" in fields:
        if not is_self:
            raise ApiError(403, "Access denied", "You can only change your own password")
        new = fields["password"]
        if not is_valid_password(new):
            raise ApiError(400, "Invalid password", PASSWORD_RULES)
        if check_password_hash(target.get("password", ""), new):
            raise ApiError(400, "Invalid password", "New password must be different from current password")
        updates["password"] = generate_password_hash(new)

    if "status" in fields:
        if not is_admin(u):
            raise ApiError(403, "Access denied", "Only admins can change account status")
        if fields["status"] not in USER_STATUSES:
            raise ApiError(400, "Invalid status", "Status must be active or inactive")
        updates["status"] = fields["status"]

    updates["updatedAt"] = utcnow()
    db.users_coll.update_one({"_id": target["_id"]}, {"$set": updates})
    logger.info("user %s updated by %s: %s", target["_id"], u["_id"], sorted(k for k in updates if k != "password"))
    return jsonify({
        "message": "User updated successfully",
        "user": public_user(db.users_coll.find_one({"_id": target["_id"]})),
    })

@bp.put("/<user_id>/role")
@login_required
def update_role(user_id):
    u = get_current_user()
    if not is_admin(u):
        raise ApiError(403, "Access denied", "Only admins can assign user roles")
    role = json_body().get("role")
    if not role:
        raise ApiError(400, "Role required", "Role must be specified")
    if role not in ASSIGNABLE_ROLES:
        raise ApiError(400, "Invalid role", "Role must be admin, editor, or viewer")
    target = _load_user(user_id)
    if not same_org(u, target):
        raise ApiError(403, "Access denied", "You can only modify users in your organization")
    if target["_id"] == u["_id"] and role != "admin" and is_sole_admin(u):
        raise ApiError(400, "Cannot change own role",
                       "You cannot change your own role as you are the only admin in the organization")

    db.users_coll.update_one({"_id": target["_id"]}, {"$set": {"role": role, "updatedAt": utcnow()}})
    logger.info("role of %s set to %s by %s", target["_id"], role, u["_id"])
    return jsonify({
        "message": "User role updated successfully",
        "user": public_user(db.users_coll.find_one({"_id": target["_id"]})),
    })

@bp.delete("/<user_id>")
@login_required
def delete_user(user_id):
    u = get_current_user()
    target = _load_user(user_id)
    is_self = target["_id"] == u["_id"]
    if not is_self and not (is_admin(u) and same_org(u, target)):
        raise ApiError(403, "Access denied", "You can only delete your own account or users in your organization")

    org = target.get("organizationId")
    if is_sole_admin(target) and db.users_coll.count_documents({"organizationId": org}) > 1:
        raise ApiError(400, "Cannot delete account",
                       "Assign another admin before deleting the only admin of the organization")

    db.users_coll.delete_one({"_id": target["_id"]})
    db.notifications_coll.delete_many({"userId": str(target["_id"])})
    if is_self:
        session.pop("uid", None)
    logger.info("user %s deleted by %s", target["_id"], u["_id"])
    return "", 204
