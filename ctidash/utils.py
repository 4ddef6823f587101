# ctidash/utils.py
import logging
import math
import re
from datetime import datetime, timezone
from functools import wraps

from bson import ObjectId
from bson.errors import InvalidId
from dateutil import parser as dateparser
from flask import current_app, g, request, session
from itsdangerous import BadSignature, URLSafeTimedSerializer

from . import db
from .errors import ApiError
from .permissions import derive_permissions

logger = logging.getLogger(__name__)

# ---------- time ----------

def utcnow():
    """Naive UTC; this is what pymongo hands back for stored datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_utc_naive(dt):
    if dt is None: return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt

def parse_dt(s):
    if not s: return None
    if isinstance(s, datetime): return to_utc_naive(s)
    try: return to_utc_naive(dateparser.parse(s))
    except (ValueError, OverflowError, TypeError): return None

def iso(dt):
    if not dt: return None
    return to_utc_naive(dt).isoformat(timespec="milliseconds") + "Z"

# ---------- ids / serialization ----------

def to_oid(value):
    if isinstance(value, ObjectId): return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None

def to_json(value):
    if isinstance(value, datetime): return iso(value)
    if isinstance(value, ObjectId): return str(value)
    if isinstance(value, dict): return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)): return [to_json(v) for v in value]
    return value

def public_doc(doc, id_field, drop=()):
    if not doc: return None
    out = to_json({k: v for k, v in doc.items() if k != "_id" and k not in drop})
    out[id_field] = str(doc["_id"])
    return out

def public_user(u):
    return public_doc(u, "userId", drop=("password",))

def full_name(u):
    if not u: return ""
    return f"{u.get('firstName', '')} {u.get('lastName', '')}".strip()

# ---------- request helpers ----------

def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ApiError(400, "Invalid request body", "Request body must be a JSON object")
    return data

def build_pager(total, page, page_size):
    pages = max(1, math.ceil(total / page_size))
    return {"total": total, "page": page, "pages": pages,
            "page_size": page_size, "has_prev": page > 1, "has_next": page < pages,
            "prev": page - 1, "next": page + 1}

def page_args(default_size=20):
    try:
        page = max(1, int(request.args.get("page", 1)))
        page_size = min(100, max(5, int(request.args.get("page_size", default_size))))
    except ValueError:
        raise ApiError(400, "Invalid pagination", "page and page_size must be integers")
    return page, page_size

# ---------- sanitization / validation ----------

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.I | re.S)
_STYLE_RE  = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.I | re.S)
_TAG_RE    = re.compile(r"<[^>]*>")

def strip_tags(s):
    if not isinstance(s, str): return s
    s = _SCRIPT_RE.sub("", s)
    s = _STYLE_RE.sub("", s)
    return _TAG_RE.sub("", s).strip()

def clean_str_list(values):
    if not isinstance(values, list): return []
    out = [strip_tags(v) for v in values if isinstance(v, str)]
    return [v for v in out if v]

def sanitize_payload(obj):
    if isinstance(obj, str):
        return strip_tags(obj)
    if isinstance(obj, list):
        return [sanitize_payload(v) for v in obj]
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(v, list) and all(isinstance(x, str) or x is None for x in v):
                out[k] = clean_str_list(v)
            else:
                out[k] = sanitize_payload(v)
        return out
    return obj

def is_valid_email(email) -> bool:
    if not email or not isinstance(email, str): return False
    email = email.strip()
    if not email or len(email) > 254: return False
    if email.count("@") != 1: return False
    local, domain = email.split("@")
    if not local or not domain: return False
    if len(local) > 64 or len(domain) > 253: return False
    if "." not in domain or len(domain.rsplit(".", 1)[1]) < 2: return False
    return not re.search(r"\s", email)

_PW_SPECIAL = "@$!%*?&"

def is_valid_password(pw) -> bool:
    if not isinstance(pw, str) or len(pw) < 8: return False
    return (any(c.islower() for c in pw) and any(c.isupper() for c in pw)
            and any(c.isdigit() for c in pw) and any(c in _PW_SPECIAL for c in pw))

CVE_RE = re.compile(r"^CVE-\d{4}-\d{4,7}$", re.I)

def is_valid_cve_id(cve_id) -> bool:
    return isinstance(cve_id, str) and bool(CVE_RE.match(cve_id.strip()))

def has_angle_brackets(*values) -> bool:
    return any(isinstance(v, str) and ("<" in v or ">" in v) for v in values)

# ---------- auth ----------

def _serializer():
    return URLSafeTimedSerializer(current_app.secret_key, salt="auth-token")

def issue_token(user) -> str:
    return _serializer().dumps({"uid": str(user["_id"])})

def _uid_from_request():
    header = request.headers.get("Authorization")
    if header is None:
        return session.get("uid")
    if not header.startswith("Bearer ") or not header[7:].strip():
        return None
    try:
        data = _serializer().loads(header[7:].strip(), max_age=current_app.config["TOKEN_MAX_AGE"])
    except BadSignature:
        logger.info("rejected bearer token from %s", request.remote_addr)
        raise ApiError(401, "Invalid token", "The provided token is invalid or expired")
    return data.get("uid")

def get_current_user():
    if "user" in g:
        return g.user
    uid = _uid_from_request()
    if not uid:
        raise ApiError(401, "Authentication required", "No valid authorization header found")
    oid = to_oid(uid)
    u = db.users_coll.find_one({"_id": oid}) if oid else None
    if not u:
        raise ApiError(404, "User not found", "User record not found in database")
    if u.get("status") == "inactive":
        raise ApiError(403, "Account disabled", "This account has been deactivated")
    g.user = u
    return u

def is_admin(u) -> bool:
    return bool(u) and u.get("role") == "admin"

def login_required(view):
    @wraps(view)
    def _wrapped(*args, **kwargs):
        get_current_user()
        return view(*args, **kwargs)
    return _wrapped

def permission_required(flag, message="You do not have permission to perform this action"):
    """Gate a view on one of the flags from ``derive_permissions``; the user must also belong to an organization."""
    def deco(view):
        @wraps(view)
        def _wrapped(*args, **kwargs):
            u = get_current_user()
            if not derive_permissions(u).get(flag) or not u.get("organizationId"):
                logger.info("denied %s for user %s (role=%s)", flag, u["_id"], u.get("role"))
                raise ApiError(403, "Access denied", message)
            return view(*args, **kwargs)
        return _wrapped
    return deco

def same_org(u, doc) -> bool:
    org = u.get("organizationId")
    return bool(org) and doc.get("organizationId") == org
