# ctidash/cves.py
import logging
import math
from datetime import datetime

import requests
from flask import Blueprint, jsonify, request
from pymongo.errors import DuplicateKeyError

from . import db
from .cve_feed import CveNotFound, FeedError, cached_cves, effective_score, get_cve_raw, parse_cve_detail
from .errors import ApiError
from .utils import (
    json_body, permission_required, get_current_user, is_valid_cve_id, parse_dt, strip_tags, to_json, utcnow,
)

logger = logging.getLogger(__name__)

bp = Blueprint("cves", __name__)

def _int_arg(name, default):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        val = int(raw)
    except ValueError:
        val = 0
    if val <= 0:
        raise ApiError(400, f"Invalid {name} parameter. Must be a positive integer.")
    return val

def _float_or_none(raw):
    if raw in (None, ""):
        return None
    try:
        val = float(raw)
    except ValueError:
        return None
    # float() accepts "nan" and "inf"
    return val if math.isfinite(val) else None

def feed_or_error():
    try:
        return cached_cves()
    except (requests.RequestException, FeedError) as e:
        raise ApiError(500, "Failed to fetch latest CVEs", details=str(e))

def _dismissed_ids(org):
    return {d["cve"] for d in db.dismissed_cves_coll.find({"organizationId": org}, {"cve": 1})}

def _normalize_id(cve_id):
    if not is_valid_cve_id(cve_id):
        raise ApiError(400, "Invalid CVE ID", "CVE ID must look like CVE-YYYY-NNNN")
    return cve_id.strip().upper()

def _latest(min_score):
    u = get_current_user()
    limit = _int_arg("limit", 10)
    hidden = _dismissed_ids(u["organizationId"])
    rows = [c for c in feed_or_error() if c["cve"] not in hidden and effective_score(c) >= min_score]
    return jsonify({"cves": rows[:limit]})

@bp.get("/latest")
@permission_required("canViewCVEs", "You do not have permission to view CVEs")
def latest():
    min_score = _float_or_none(request.args.get("minCvssScore"))
    if request.args.get("minCvssScore") and (min_score is None or not 0 <= min_score <= 10):
        raise ApiError(400, "Invalid minCvssScore parameter. Must be a number between 0 and 10.")
    return _latest(min_score or 0)

@bp.get("/latest/filtered")
@permission_required("canViewCVEs", "You do not have permission to view CVEs")
def latest_filtered():
    raw = request.args.get("minCvssScore")
    min_score = 7.5 if raw in (None, "") else _float_or_none(raw)
    if min_score is None or not 0 <= min_score <= 10:
        raise ApiError(400, "Invalid minCvssScore parameter. Must be a number between 0 and 10.")
    return _latest(min_score)

@bp.get("/search")
@permission_required("canViewCVEs", "You do not have permission to view CVEs")
def search():
    if "software" not in request.args:
        raise ApiError(400, "Software parameter is required")
    term = request.args["software"].strip()
    if not term:
        return jsonify({"cves": [], "total": 0, "searchTerm": ""})

    limit = _int_arg("limit", 10)
    min_sev = _float_or_none(request.args.get("minSeverity"))
    max_sev = _float_or_none(request.args.get("maxSeverity"))
    sort_by = request.args.get("sortBy") or "cvss"
    if sort_by not in ("cvss", "published"):
        sort_by = "cvss"
    sort_order = "asc" if request.args.get("sortOrder") == "asc" else "desc"

    needle = term.lower()
    matches = [c for c in feed_or_error() if needle in (c.get("summary") or "").lower()]
    if min_sev is not None:
        matches = [c for c in matches if effective_score(c) >= min_sev]
    if max_sev is not None:
        matches = [c for c in matches if effective_score(c) <= max_sev]
    if sort_by == "cvss":
        matches.sort(key=effective_score, reverse=sort_order == "desc")
    else:
        matches.sort(key=lambda c: parse_dt(c.get("published")) or datetime.min, reverse=sort_order == "desc")

    return jsonify({
        "cves": matches[:limit],
        "total": len(matches),
        "searchTerm": term,
        "filters": {"minSeverity": min_sev, "maxSeverity": max_sev, "sortBy": sort_by, "sortOrder": sort_order},
    })

@bp.get("/dismissed")
@permission_required("canViewCVEs", "You do not have permission to view CVEs")
def list_dismissed():
    u = get_current_user()
    rows = list(db.dismissed_cves_coll.find({"organizationId": u["organizationId"]}).sort([("dismissedAt", -1)]))
    out = []
    for d in rows:
        d.pop("_id", None)
        out.append(to_json(d))
    return jsonify({"dismissedCves": out, "total": len(out)})

@bp.get("/<cve_id>")
@permission_required("canViewCVEs", "You do not have permission to view CVEs")
def cve_detail(cve_id):
    cve_id = _normalize_id(cve_id)
    try:
        data = parse_cve_detail(get_cve_raw(cve_id))
    except CveNotFound:
        data = None
    except requests.RequestException as e:
        logger.error("cve lookup %s failed: %s", cve_id, e)
        raise ApiError(500, "Failed to fetch CVE", details=str(e))
    if not data:
        raise ApiError(404, "CVE not found", f"{cve_id} was not found in the CVE database")
    return jsonify({"cve": data})

@bp.post("/<cve_id>/dismiss")
@permission_required("canManageCVEs", "You do not have permission to manage CVEs")
def dismiss(cve_id):
    u = get_current_user()
    cve_id = _normalize_id(cve_id)
    reason = strip_tags(json_body().get("reason") or "")
    cached = db.cves_coll.find_one({"_id": cve_id}, {"summary": 1, "cvss": 1, "cvss3": 1, "kev": 1})
    doc = {
        "organizationId": u["organizationId"],
        "cve": cve_id,
        "reason": reason if isinstance(reason, str) else "",
        "snapshot": {k: v for k, v in (cached or {}).items() if k != "_id"},
        "dismissedBy": str(u["_id"]),
        "dismissedAt": utcnow(),
    }
    try:
        db.dismissed_cves_coll.insert_one(doc)
    except DuplicateKeyError:
        raise ApiError(409, "Already dismissed", f"{cve_id} is already marked as not at risk")
    return jsonify({"message": "CVE dismissed successfully", "cve": cve_id}), 201

@bp.delete("/<cve_id>/dismiss")
@permission_required("canManageCVEs", "You do not have permission to manage CVEs")
def restore(cve_id):
    u = get_current_user()
    cve_id = _normalize_id(cve_id)
    r = db.dismissed_cves_coll.delete_one({"organizationId": u["organizationId"], "cve": cve_id})
    if not r.deleted_count:
        raise ApiError(404, "Not dismissed", f"{cve_id} is not in the dismissed list")
    return jsonify({"message": "CVE restored successfully", "cve": cve_id})
