"""
SEIDO - Modèles Patrimoine (équipes, immeubles, lots)

Un immeuble et un lot appartiennent TOUJOURS à une équipe de gestion.
Un lot peut être rattaché à un immeuble ou être indépendant.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = ""


class BuildingCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = ""
    postal_code: Optional[str] = ""
    city: Optional[str] = ""
    team_id: Optional[str] = None


class LotCreate(BaseModel):
    reference: str = Field(..., min_length=1, max_length=100)
    building_id: Optional[str] = None
    category: Optional[str] = "appartement"
    floor: Optional[int] = None
    street: Optional[str] = ""
    postal_code: Optional[str] = ""
    city: Optional[str] = ""
    team_id: Optional[str] = None


class LotContactCreate(BaseModel):
    """Rattachement d'un contact (locataire, propriétaire...) à un lot"""
    user_id: str
    is_primary: bool = False
    start_date: Optional[str] = None
    end_date: Optional[str] = None  # None = contact actif

    @field_validator("end_date")
    @classmethod
    def validate_end_date(cls, v):
        if v is not None and len(v) < 10:
            raise ValueError("end_date doit être une date ISO (YYYY-MM-DD)")
        return v
