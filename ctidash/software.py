# ctidash/software.py
import logging

from flask import Blueprint, jsonify

from . import db
from .config import RELEVANT_CVE_MIN_SCORE
from .cves import feed_or_error
from .cve_feed import effective_score
from .errors import ApiError
from .utils import json_body, permission_required, get_current_user, strip_tags, utcnow

logger = logging.getLogger(__name__)

bp = Blueprint("software", __name__)

def parse_software_list(value):
    """Comma-separated string or list -> trimmed, de-duplicated names in first-seen order."""
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, list):
        parts = [p for p in value if isinstance(p, str)]
    else:
        return []
    seen = {}
    for p in parts:
        name = strip_tags(p)
        if name and name.lower() not in seen:
            seen[name.lower()] = name
    return list(seen.values())

def _items(org):
    doc = db.software_coll.find_one({"organizationId": org})
    return (doc or {}).get("items") or []

def relevant_cves(items, cves, min_score=RELEVANT_CVE_MIN_SCORE):
    needles = [i.lower() for i in items]
    hits = []
    for c in cves:
        summary = (c.get("summary") or "").lower()
        matched = [items[n] for n, needle in enumerate(needles) if needle in summary]
        if matched and effective_score(c) >= min_score:
            hits.append(dict(c, matchedSoftware=matched))
    hits.sort(key=effective_score, reverse=True)
    return hits

@bp.get("")
@permission_required("canViewOrgData", "You must belong to an organization to view its software inventory")
def list_software():
    u = get_current_user()
    return jsonify({"items": _items(u["organizationId"]), "organizationId": u["organizationId"]})

@bp.post("")
@permission_required("canManageSoftwareInventory", "You do not have permission to manage the software inventory")
def add_software():
    u = get_current_user()
    org = u["organizationId"]
    new = parse_software_list(json_body().get("items"))
    if not new:
        raise ApiError(400, "Missing required fields", "Provide at least one software name")
    merged = parse_software_list(_items(org) + new)
    db.software_coll.update_one(
        {"organizationId": org},
        {"$set": {"items": merged, "updatedAt": utcnow(), "updatedBy": str(u["_id"])}},
        upsert=True,
    )
    logger.info("software inventory for org %s now has %d items", org, len(merged))
    return jsonify({"message": "Software inventory updated", "items": merged})

@bp.delete("/<name>")
@permission_required("canManageSoftwareInventory", "You do not have permission to manage the software inventory")
def remove_software(name):
    u = get_current_user()
    org = u["organizationId"]
    items = _items(org)
    kept = [i for i in items if i.lower() != name.strip().lower()]
    if len(kept) == len(items):
        raise ApiError(404, "Software not found", f"{name} is not in the inventory")
    db.software_coll.update_one({"organizationId": org}, {"$set": {"items": kept, "updatedAt": utcnow()}})
    return jsonify({"message": "Software removed", "items": kept})

@bp.get("/relevant-cves")
@permission_required("canViewCVEs", "You do not have permission to view CVEs")
def software_cves():
    u = get_current_user()
    items = _items(u["organizationId"])
    hits = relevant_cves(items, feed_or_error()) if items else []
    return jsonify({"cves": hits, "total": len(hits), "software": items})
