"""
SEIDO - Modeles Auth & Utilisateurs
Role + Permission hybrid model.
Roles are presets. Permissions are the real authority.
"""

from enum import Enum
from pydantic import BaseModel, field_validator
from typing import Optional, Dict


class UserRole(str, Enum):
    ADMIN = "admin"
    GESTIONNAIRE = "gestionnaire"
    PRESTATAIRE = "prestataire"
    LOCATAIRE = "locataire"


VALID_ROLES = [r.value for r in UserRole]

# Libellés anglais acceptés en entrée
ROLE_ALIASES = {
    "manager": "gestionnaire",
    "provider": "prestataire",
    "tenant": "locataire",
}


def normalize_role(value: str) -> str:
    """Accepte les libellés FR et EN, retourne le rôle FR stocké en base."""
    role = (value or "").strip().lower()
    return ROLE_ALIASES.get(role, role)


class UserLogin(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str
    password: str
    name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: str = "locataire"
    team_id: Optional[str] = None
    provider_category: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        role = normalize_role(v)
        if role not in VALID_ROLES:
            raise ValueError(f"Role invalide: {v}. Valides: {VALID_ROLES}")
        return role


class UserUpdate(BaseModel):
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    team_id: Optional[str] = None
    provider_category: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None
    is_active: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v is None:
            return v
        role = normalize_role(v)
        if role not in VALID_ROLES:
            raise ValueError(f"Role invalide: {v}")
        return role
