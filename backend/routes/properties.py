"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Routes Patrimoine                                                   ║
║                                                                              ║
║  Équipes, immeubles, lots et contacts de lot                                 ║
║  Isolation stricte par équipe (admin: toutes les équipes)                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from models import TeamCreate, BuildingCreate, LotCreate, LotContactCreate
from services.activity_logger import log_activity
from services.permissions import require_permission, require_role, build_team_filter, same_team

router = APIRouter(tags=["Patrimoine"])


def _resolve_team(user: dict, requested: Optional[str]) -> str:
    """admin choisit l'équipe, les autres utilisent la leur"""
    team_id = requested if user.get("role") == "admin" and requested else user.get("team_id")
    if not team_id:
        raise HTTPException(status_code=400, detail="team_id requis")
    return team_id


async def _get_lot_or_404(lot_id: str, user: dict) -> dict:
    lot = await db.lots.find_one({"id": lot_id}, {"_id": 0})
    if not lot:
        raise HTTPException(status_code=404, detail="Lot non trouvé")
    if not same_team(user, lot.get("team_id")):
        raise HTTPException(status_code=403, detail="Accès refusé à ce lot")
    return lot


# ==================== ÉQUIPES ====================

@router.post("/teams")
async def create_team(data: TeamCreate, user: dict = Depends(require_role("admin"))):
    team = {
        "id": str(uuid.uuid4()),
        "name": data.name.strip(),
        "description": data.description or "",
        "created_by": user["id"],
        "created_at": now_iso(),
    }
    await db.teams.insert_one(team)
    team.pop("_id", None)
    await log_activity(user, "create_team", "team", entity_id=team["id"], entity_name=team["name"], team_id=team["id"])
    return {"success": True, "team": team}


@router.get("/teams")
async def list_teams(user: dict = Depends(get_current_user)):
    query = {} if user.get("role") == "admin" else {"id": user.get("team_id")}
    teams = await db.teams.find(query, {"_id": 0}).sort("name", 1).to_list(200)
    return {"teams": teams, "count": len(teams)}


# ==================== IMMEUBLES ====================

@router.post("/buildings")
async def create_building(data: BuildingCreate, user: dict = Depends(require_permission("properties.manage"))):
    team_id = _resolve_team(user, data.team_id)
    building = {
        "id": str(uuid.uuid4()),
        "name": data.name.strip(),
        "address": data.address or "",
        "postal_code": data.postal_code or "",
        "city": data.city or "",
        "team_id": team_id,
        "created_by": user["id"],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.buildings.insert_one(building)
    building.pop("_id", None)
    await log_activity(user, "create_building", "building", entity_id=building["id"], entity_name=building["name"], team_id=team_id)
    return {"success": True, "building": building}


@router.get("/buildings")
async def list_buildings(user: dict = Depends(require_permission("properties.view"))):
    buildings = await db.buildings.find(build_team_filter(user), {"_id": 0}).sort("name", 1).to_list(500)
    for b in buildings:
        b["lots_count"] = await db.lots.count_documents({"building_id": b["id"]})
    return {"buildings": buildings, "count": len(buildings)}


# ==================== LOTS ====================

@router.post("/lots")
async def create_lot(data: LotCreate, user: dict = Depends(require_permission("properties.manage"))):
    team_id = _resolve_team(user, data.team_id)

    if data.building_id:
        building = await db.buildings.find_one({"id": data.building_id}, {"_id": 0})
        if not building:
            raise HTTPException(status_code=404, detail="Immeuble non trouvé")
        if not same_team(user, building.get("team_id")):
            raise HTTPException(status_code=403, detail="Accès refusé à cet immeuble")
        # Un lot hérite de l'équipe de son immeuble
        team_id = building["team_id"]

    lot = {
        "id": str(uuid.uuid4()),
        "reference": data.reference.strip(),
        "building_id": data.building_id,
        "category": data.category or "appartement",
        "floor": data.floor,
        "street": data.street or "",
        "postal_code": data.postal_code or "",
        "city": data.city or "",
        "team_id": team_id,
        "created_by": user["id"],
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.lots.insert_one(lot)
    lot.pop("_id", None)
    await log_activity(user, "create_lot", "lot", entity_id=lot["id"], entity_name=lot["reference"], team_id=team_id)
    return {"success": True, "lot": lot}


@router.get("/lots")
async def list_lots(
    building_id: Optional[str] = Query(None),
    user: dict = Depends(require_permission("properties.view"))
):
    query = build_team_filter(user)
    if building_id:
        query["building_id"] = building_id
    lots = await db.lots.find(query, {"_id": 0}).sort("reference", 1).to_list(1000)
    return {"lots": lots, "count": len(lots)}


# ==================== CONTACTS DE LOT ====================

@router.post("/lots/{lot_id}/contacts")
async def add_lot_contact(lot_id: str, data: LotContactCreate, user: dict = Depends(require_permission("properties.manage"))):
    lot = await _get_lot_or_404(lot_id, user)

    contact_user = await db.users.find_one({"id": data.user_id}, {"_id": 0, "password": 0})
    if not contact_user:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")

    existing = await db.lot_contacts.find_one(
        {"lot_id": lot_id, "user_id": data.user_id, "end_date": None}, {"_id": 0}
    )
    if existing:
        raise HTTPException(status_code=400, detail="Ce contact est déjà rattaché au lot")

    contact = {
        "id": str(uuid.uuid4()),
        "lot_id": lot_id,
        "user_id": data.user_id,
        "is_primary": data.is_primary,
        "start_date": data.start_date or now_iso()[:10],
        "end_date": data.end_date,
        "created_by": user["id"],
        "created_at": now_iso(),
    }
    await db.lot_contacts.insert_one(contact)
    contact.pop("_id", None)

    await log_activity(
        user, "add_lot_contact", "lot", entity_id=lot_id, entity_name=lot.get("reference"),
        details={"user_id": data.user_id, "role": contact_user.get("role")}, team_id=lot.get("team_id")
    )
    contact["user"] = contact_user
    return {"success": True, "contact": contact}


@router.get("/lots/{lot_id}/contacts")
async def list_lot_contacts(lot_id: str, user: dict = Depends(require_permission("properties.view"))):
    await _get_lot_or_404(lot_id, user)
    contacts = await db.lot_contacts.find({"lot_id": lot_id}, {"_id": 0}).to_list(200)
    user_ids = [c["user_id"] for c in contacts]
    users = {
        u["id"]: u for u in await db.users.find(
            {"id": {"$in": user_ids}}, {"_id": 0, "password": 0, "permissions": 0}
        ).to_list(len(user_ids) or 1)
    }
    for c in contacts:
        c["user"] = users.get(c["user_id"])
    return {"contacts": contacts, "count": len(contacts)}
