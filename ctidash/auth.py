# ctidash/auth.py
import logging

from flask import Blueprint, jsonify, session
from werkzeug.security import generate_password_hash, check_password_hash

from . import db
from .errors import ApiError
from .utils import (
    json_body, is_valid_email, is_valid_password, has_angle_brackets,
    public_user, issue_token, login_required, get_current_user, utcnow,
)

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

PASSWORD_RULES = "Password must be at least 8 characters and contain uppercase, lowercase, number, and special character"

@bp.post("/register")
def register():
    data = json_body()
    email = data.get("email")
    password = data.get("password")
    first = data.get("firstName")
    last = data.get("lastName")

    if "email" in data and not is_valid_email(email):
        raise ApiError(400, "Invalid email format", "Please provide a valid email address")
    if not email or not password:
        raise ApiError(400, "Missing required fields", "Email and password are required")
    if not isinstance(first, str) or not first.strip() or not isinstance(last, str) or not last.strip():
        raise ApiError(400, "Missing required fields", "First name and last name are required")
    if not is_valid_password(password):
        raise ApiError(400, "Invalid password", PASSWORD_RULES)
    if has_angle_brackets(email, first, last):
        raise ApiError(400, "Invalid input", "Input contains invalid characters")

    email = email.strip().lower()
    if db.users_coll.find_one({"email": email}):
        raise ApiError(409, "Email already exists", "An account with this email already exists")

    now = utcnow()
    u = {
        "email": email,
        "password": generate_password_hash(password),
        "firstName": first.strip(),
        "lastName": last.strip(),
        "googleId": None,
        "profilePictureUrl": None,
        "role": "unassigned",
        "organizationId": None,
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
        "lastLoginAt": now,
    }
    r = db.users_coll.insert_one(u)
    u["_id"] = r.inserted_id
    session["uid"] = str(r.inserted_id)
    logger.info("registered user %s", r.inserted_id)
    return jsonify({
        "message": "User registered successfully",
        "user": public_user(u),
        "token": issue_token(u),
    }), 201

@bp.post("/login")
def login():
    data = json_body()
    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not email.strip() or not isinstance(password, str) or not password:
        raise ApiError(400, "Missing credentials", "Email and password are required")

    u = db.users_coll.find_one({"email": email.strip().lower()})
    if not u or not check_password_hash(u.get("password", ""), password):
        logger.info("failed login for %s", email.strip().lower())
        raise ApiError(401, "Invalid credentials", "Invalid email or password")
    if u.get("status") == "inactive":
        raise ApiError(403, "Account disabled", "This account has been deactivated")

    now = utcnow()
    db.users_coll.update_one({"_id": u["_id"]}, {"$set": {"lastLoginAt": now}})
    u["lastLoginAt"] = now
    session["uid"] = str(u["_id"])
    return jsonify({"message": "Login successful", "token": issue_token(u), "user": public_user(u)})

@bp.post("/logout")
def logout():
    session.pop("uid", None)
    return jsonify({"message": "Logout successful"})

@bp.put("/password")
@login_required
def change_password():
    u = get_current_user()
    data = json_body()
    current = data.get("currentPassword")
    new = data.get("newPassword")

    if "newPassword" in data and not is_valid_password(new):
        raise ApiError(400, "Invalid password format",
                       "Password must be at least 8 characters with lowercase, uppercase, digit, and special character")
    if not isinstance(current, str) or not current.strip() or not isinstance(new, str) or not new.strip():
        raise ApiError(400, "Missing required fields", "Current password and new password are required")
    if not check_password_hash(u.get("password", ""), current):
        raise ApiError(400, "Invalid current password", "The current password is incorrect")
    if current == new:
        raise ApiError(400, "Invalid password", "New password must be different from current password")

    db.users_coll.update_one(
        {"_id": u["_id"]},
        {"$set": {"password": generate_password_hash(new), "updatedAt": utcnow()}},
    )
    logger.info("password changed for user %s", u["_id"])
    return jsonify({"message": "Password updated successfully"})
