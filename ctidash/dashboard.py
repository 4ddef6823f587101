# ctidash/dashboard.py
from flask import Blueprint, jsonify

from . import db
from .config import (
    INCIDENT_STATUSES, INCIDENT_PRIORITIES, ACTIVE_STATUSES, HIGH_RISK_SOPHISTICATION,
    STATUS_COLORS, PRIORITY_CHART_ORDER,
)
from .utils import permission_required, get_current_user

bp = Blueprint("dashboard", __name__)

def _counts(org, field, keys):
    counts = {k: 0 for k in keys}
    for row in db.incidents_coll.find({"organizationId": org}, {field: 1}):
        if row.get(field) in counts:
            counts[row[field]] += 1
    return counts

def compute_metrics(org):
    status_counts = _counts(org, "status", INCIDENT_STATUSES)
    priority_counts = _counts(org, "priority", list(reversed(INCIDENT_PRIORITIES)))
    return {
        "statusCounts": status_counts,
        "priorityCounts": priority_counts,
        "highPriorityIncidents": db.incidents_coll.count_documents({
            "organizationId": org,
            "priority": {"$in": ["High", "Critical"]},
            "status": {"$in": ACTIVE_STATUSES},
        }),
        "kevCount": db.cves_coll.count_documents({"kev": True}),
        "highRiskThreatActors": db.actors_coll.count_documents({
            "organizationId": org, "sophistication": {"$in": HIGH_RISK_SOPHISTICATION},
        }),
        "totalIncidents": sum(status_counts.values()),
        "totalCVEs": db.cves_coll.count_documents({}),
        "totalThreatActors": db.actors_coll.count_documents({"organizationId": org}),
    }

@bp.get("/metrics")
@permission_required("canViewOrgData", "You must belong to an organization to view the dashboard")
def metrics():
    return jsonify(compute_metrics(get_current_user()["organizationId"]))

@bp.get("/chart-data")
@permission_required("canViewOrgData", "You must belong to an organization to view the dashboard")
def chart_data():
    org = get_current_user()["organizationId"]
    by_status = _counts(org, "status", INCIDENT_STATUSES)
    by_priority = _counts(org, "priority", PRIORITY_CHART_ORDER)
    return jsonify({
        "pieData": {
            "labels": INCIDENT_STATUSES,
            "datasets": [{
                "data": [by_status[s] for s in INCIDENT_STATUSES],
                "backgroundColor": [STATUS_COLORS[s] for s in INCIDENT_STATUSES],
            }],
        },
        "barData": {
            "labels": PRIORITY_CHART_ORDER,
            "datasets": [{
                "label": "Incidents by Priority",
                "data": [by_priority[p] for p in PRIORITY_CHART_ORDER],
            }],
        },
    })
