"""
SEIDO - Routes Auth
Login / Logout / Session / User CRUD with granular permissions.
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import uuid

from models.auth import UserLogin, UserCreate, UserUpdate
from config import db, hash_password, generate_token, now_iso, session_expiry
from services.activity_logger import log_activity, get_activity_logs as fetch_activity_logs
from services.permissions import (
    get_preset_permissions,
    VALID_ROLES,
    ALL_PERMISSION_KEYS,
    ROLE_PRESETS,
    user_has_permission,
    build_team_filter,
    same_team,
)

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Récupère l'utilisateur connecté depuis le token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Non authentifié")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise HTTPException(status_code=401, detail="Session expirée")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Utilisateur non trouvé")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    if not user.get("permissions"):
        user["permissions"] = get_preset_permissions(user.get("role", "locataire"))

    return user


def _require_users_manage(user: dict):
    if not user_has_permission(user, "users.manage"):
        raise HTTPException(status_code=403, detail="Permission requise: users.manage")


def _public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user.get("name", ""),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "role": user.get("role", "locataire"),
        "team_id": user.get("team_id"),
        "permissions": user.get("permissions") or get_preset_permissions(user.get("role", "locataire")),
    }


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(data: UserLogin, request: Request):
    """Connexion utilisateur."""
    user = await db.users.find_one(
        {"email": data.email.lower().strip()},
        {"_id": 0}
    )

    if not user or user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    token = generate_token()
    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": session_expiry()
    })

    await log_activity(
        user=user,
        action="login",
        entity_type="user",
        entity_id=user["id"],
        ip_address=request.client.host if request.client else None
    )

    return {"token": token, "user": _public_user(user)}


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    """Retourne user + permissions."""
    return user


# ==================== USER CRUD ====================

@router.get("/users")
async def list_users(role: str = None, user: dict = Depends(get_current_user)):
    """
    Liste des utilisateurs.
    - users.manage: tous (admin) ou équipe
    - gestionnaire: annuaire de son équipe (pour l'assignation)
    """
    if not user_has_permission(user, "users.manage") and not user_has_permission(user, "interventions.create"):
        raise HTTPException(status_code=403, detail="Permission requise: users.manage")

    query = build_team_filter(user)
    if role:
        query["role"] = role
    users = await db.users.find(query, {"_id": 0, "password": 0}).sort("name", 1).to_list(500)
    return {"users": users, "count": len(users)}


@router.post("/users")
async def create_user(data: UserCreate, user: dict = Depends(get_current_user)):
    """Créer un utilisateur. Requires users.manage."""
    _require_users_manage(user)

    email = data.email.lower().strip()
    if await db.users.find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Cet email existe déjà")

    if data.role == "admin" and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Seul un admin peut créer un admin")

    team_id = data.team_id if user.get("role") == "admin" else user.get("team_id")
    if team_id and not await db.teams.find_one({"id": team_id}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Équipe non trouvée")

    new_user = {
        "id": str(uuid.uuid4()),
        "email": email,
        "password": hash_password(data.password),
        "name": data.name,
        "first_name": data.first_name,
        "last_name": data.last_name,
        "phone": data.phone,
        "role": data.role,
        "team_id": team_id,
        "provider_category": data.provider_category,
        "permissions": data.permissions or get_preset_permissions(data.role),
        "is_active": True,
        "created_at": now_iso(),
        "created_by": user.get("id")
    }

    await db.users.insert_one(new_user)

    await log_activity(
        user=user,
        action="create_user",
        entity_type="user",
        entity_id=new_user["id"],
        entity_name=new_user["email"],
        details={"role": data.role, "team_id": team_id}
    )

    new_user.pop("password", None)
    new_user.pop("_id", None)
    return {"success": True, "user": new_user}


@router.put("/users/{user_id}")
async def update_user(user_id: str, data: UserUpdate, user: dict = Depends(get_current_user)):
    """Mettre à jour un utilisateur. Requires users.manage."""
    _require_users_manage(user)

    target = await db.users.find_one({"id": user_id}, {"_id": 0})
    if not target:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")

    if target.get("role") == "admin" and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Impossible de modifier un admin")

    if not same_team(user, target.get("team_id")):
        raise HTTPException(status_code=403, detail="Utilisateur hors de votre équipe")

    update_data = {
        k: v for k, v in data.model_dump().items()
        if v is not None and k not in ("role", "permissions")
    }
    if user.get("role") != "admin":
        update_data.pop("team_id", None)
    if data.role is not None:
        if data.role == "admin" and user.get("role") != "admin":
            raise HTTPException(status_code=403, detail="Impossible d'attribuer le rôle admin")
        update_data["role"] = data.role
        if data.permissions is None:
            update_data["permissions"] = get_preset_permissions(data.role)
    if data.permissions is not None:
        update_data["permissions"] = data.permissions

    update_data["updated_at"] = now_iso()

    await db.users.update_one({"id": user_id}, {"$set": update_data})

    await log_activity(
        user=user,
        action="update_user",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.get("email"),
        details={k: v for k, v in update_data.items() if k != "updated_at"}
    )

    updated = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    return {"success": True, "user": updated}


@router.delete("/users/{user_id}")
async def deactivate_user(user_id: str, user: dict = Depends(get_current_user)):
    """Désactiver un utilisateur. Requires users.manage."""
    _require_users_manage(user)

    target = await db.users.find_one({"id": user_id}, {"_id": 0})
    if not target:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")

    if user_id == user.get("id"):
        raise HTTPException(status_code=400, detail="Impossible de désactiver votre propre compte")

    if target.get("role") == "admin" and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Impossible de désactiver un admin")

    if not same_team(user, target.get("team_id")):
        raise HTTPException(status_code=403, detail="Utilisateur hors de votre équipe")

    await db.users.update_one(
        {"id": user_id},
        {"$set": {"is_active": False, "deactivated_at": now_iso()}}
    )
    await db.sessions.delete_many({"user_id": user_id})

    await log_activity(
        user=user,
        action="deactivate_user",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.get("email")
    )

    return {"success": True}


# ==================== PERMISSION INTROSPECTION ====================

@router.get("/permission-keys")
async def list_permission_keys(user: dict = Depends(get_current_user)):
    """Returns all permission keys and role presets (for user management UI)."""
    _require_users_manage(user)
    return {
        "keys": ALL_PERMISSION_KEYS,
        "presets": ROLE_PRESETS,
        "roles": VALID_ROLES
    }


# ==================== ACTIVITY LOG ====================

@router.get("/activity-logs")
async def get_activity_logs(
    user_id: str = None,
    entity_type: str = None,
    entity_id: str = None,
    action: str = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(get_current_user)
):
    if not user_has_permission(user, "activity.view"):
        raise HTTPException(status_code=403, detail="Permission requise: activity.view")
    team_id = None if user.get("role") == "admin" else user.get("team_id")
    return await fetch_activity_logs(
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        team_id=team_id,
        limit=min(limit, 500),
        skip=skip,
    )
