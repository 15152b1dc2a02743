"""
SEIDO - Permission System
Granular permission keys + role presets + FastAPI dependencies.
Permissions are the source of truth. Roles are presets only.
"""

import logging
from typing import Dict, List, Optional
from fastapi import Depends, HTTPException

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL PERMISSION KEYS
# ════════════════════════════════════════════════════════════════════════

ALL_PERMISSION_KEYS = [
    "dashboard.view",

    "interventions.view",
    "interventions.request",
    "interventions.create",
    "interventions.manage",
    "interventions.execute",
    "interventions.validate",

    "quotes.request",
    "quotes.submit",
    "quotes.decide",

    "planning.manage",
    "planning.respond",

    "documents.upload",
    "documents.delete",

    "conversations.access",

    "properties.view",
    "properties.manage",

    "stats.view",
    "activity.view",

    "users.manage",
]

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS (defaults when creating a user with a role)
# ════════════════════════════════════════════════════════════════════════

ROLE_PRESETS: Dict[str, Dict[str, bool]] = {
    "admin": {k: True for k in ALL_PERMISSION_KEYS},

    "gestionnaire": {
        "dashboard.view": True,
        "interventions.view": True, "interventions.request": False, "interventions.create": True,
        "interventions.manage": True, "interventions.execute": True, "interventions.validate": False,
        "quotes.request": True, "quotes.submit": False, "quotes.decide": True,
        "planning.manage": True, "planning.respond": True,
        "documents.upload": True, "documents.delete": True,
        "conversations.access": True,
        "properties.view": True, "properties.manage": True,
        "stats.view": True, "activity.view": True,
        "users.manage": True,
    },

    "prestataire": {
        "dashboard.view": True,
        "interventions.view": True, "interventions.request": False, "interventions.create": False,
        "interventions.manage": False, "interventions.execute": True, "interventions.validate": False,
        "quotes.request": False, "quotes.submit": True, "quotes.decide": False,
        "planning.manage": False, "planning.respond": True,
        "documents.upload": True, "documents.delete": False,
        "conversations.access": True,
        "properties.view": False, "properties.manage": False,
        "stats.view": False, "activity.view": False,
        "users.manage": False,
    },

    "locataire": {
        "dashboard.view": True,
        "interventions.view": True, "interventions.request": True, "interventions.create": False,
        "interventions.manage": False, "interventions.execute": False, "interventions.validate": True,
        "quotes.request": False, "quotes.submit": False, "quotes.decide": False,
        "planning.manage": False, "planning.respond": True,
        "documents.upload": True, "documents.delete": False,
        "conversations.access": True,
        "properties.view": False, "properties.manage": False,
        "stats.view": False, "activity.view": False,
        "users.manage": False,
    },
}

VALID_ROLES = list(ROLE_PRESETS.keys())
MANAGER_ROLES = ("gestionnaire", "admin")


def get_preset_permissions(role: str) -> Dict[str, bool]:
    """Returns the default permissions for a role."""
    return dict(ROLE_PRESETS.get(role, ROLE_PRESETS["locataire"]))


# ════════════════════════════════════════════════════════════════════════
# PERMISSION CHECK HELPERS
# ════════════════════════════════════════════════════════════════════════

def user_has_permission(user: dict, key: str) -> bool:
    """Check if user has a specific permission."""
    if user.get("role") == "admin":
        return True
    perms = user.get("permissions") or get_preset_permissions(user.get("role", "locataire"))
    return perms.get(key, False) is True


def is_manager(user: dict) -> bool:
    return user.get("role") in MANAGER_ROLES


def same_team(user: dict, team_id: Optional[str]) -> bool:
    """
    Isolation par équipe.
    - admin: toutes les équipes
    - autres: team_id identique (une ressource sans équipe est visible)
    """
    if user.get("role") == "admin":
        return True
    if not team_id:
        return True
    return user.get("team_id") == team_id


def enforce_team_access(user: dict, team_id: Optional[str]):
    if not same_team(user, team_id):
        logger.warning(
            f"[PERMISSION_DENIED] user={user.get('email')} team={user.get('team_id')} target_team={team_id}"
        )
        raise HTTPException(
            status_code=403,
            detail="Vous n'êtes pas autorisé à modifier cette intervention"
        )


def build_team_filter(user: dict, field: str = "team_id") -> dict:
    """
    Build a MongoDB filter for team isolation.
    admin -> no filter
    others -> strict filter on their team
    """
    if user.get("role") == "admin":
        return {}
    return {field: user.get("team_id")}


def assigned_user_ids(assignments: List[dict], role: Optional[str] = None) -> List[str]:
    return [
        a["user_id"] for a in assignments
        if a.get("user_id") and (role is None or a.get("role") == role)
    ]


def can_view_intervention(user: dict, intervention: dict, assignments: List[dict]) -> bool:
    """
    - gestionnaire/admin: interventions de leur équipe
    - locataire: interventions où il est assigné (ou tenant_id)
    - prestataire: interventions où il est assigné
    """
    if is_manager(user):
        return same_team(user, intervention.get("team_id"))
    user_id = user.get("id")
    if user.get("role") == "locataire" and intervention.get("tenant_id") == user_id:
        return True
    return user_id in assigned_user_ids(assignments)


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: user: dict = Depends(require_permission("interventions.create"))
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if not user_has_permission(user, permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={permission_key} role={user.get('role')}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission requise: {permission_key}"
            )
        return user

    return _check


def require_role(*roles: str):
    """FastAPI dependency: only the listed roles allowed."""
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=f"Accès réservé: {', '.join(roles)}")
        return user

    return _check
