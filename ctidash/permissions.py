# ctidash/permissions.py
"""Role and organization membership -> capability flags.

The flags are the single source of truth for what a user may see or change;
views check them through ``utils.permission_required`` and clients read them
from ``GET /api/users/me/permissions``.
"""

PERMISSION_FLAGS = [
    "canManageOrgUsers", "canViewOrgUsers", "canEditOrgSettings", "canViewOrgData",
    "canCreateIncidents", "canEditIncidents", "canDeleteIncidents", "canViewIncidents",
    "canViewThreatActors", "canManageThreatActors",
    "canViewCVEs", "canManageCVEs",
    "canViewMySoftware", "canManageSoftwareInventory",
    "isAssigned", "isOrgAdmin", "isSuperAdmin", "hasOrgAccess",
]


def derive_permissions(user):
    perms = {flag: False for flag in PERMISSION_FLAGS}
    perms["canViewMySoftware"] = True
    if not user:
        return perms

    role = user.get("role") or "unassigned"
    is_admin = role == "admin"
    is_editor = role == "editor"
    is_viewer = role == "viewer"
    is_assigned = bool(user.get("organizationId")) and role != "unassigned"
    has_org_access = is_admin or (is_assigned and (is_editor or is_viewer))
    can_mutate = has_org_access and (is_admin or is_editor)

    perms.update(
        canManageOrgUsers=is_admin,
        canViewOrgUsers=is_assigned,
        canEditOrgSettings=is_admin,
        canViewOrgData=has_org_access,
        canCreateIncidents=can_mutate,
        canEditIncidents=can_mutate,
        canDeleteIncidents=can_mutate,
        canViewIncidents=has_org_access,
        canViewThreatActors=has_org_access,
        canManageThreatActors=can_mutate,
        canViewCVEs=has_org_access,
        canManageCVEs=can_mutate,
        canManageSoftwareInventory=can_mutate,
        isAssigned=is_assigned,
        isOrgAdmin=is_admin,
        isSuperAdmin=is_admin,
        hasOrgAccess=has_org_access,
    )
    return perms
