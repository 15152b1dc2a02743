"""
SEIDO - Assignations d'intervention (intervention_assignments)

Une assignation = (intervention_id, user_id, role) unique.
Rôles: gestionnaire | prestataire | locataire
"""

import uuid
import logging
from typing import List, Optional
from config import db, now_iso

logger = logging.getLogger("assignments")


async def add_assignment(
    intervention_id: str,
    user_id: str,
    role: str,
    assigned_by: Optional[str] = None,
    is_primary: bool = False,
    individual_message: Optional[str] = None,
) -> dict:
    """Idempotent: retourne l'assignation existante si déjà présente"""
    existing = await db.intervention_assignments.find_one(
        {"intervention_id": intervention_id, "user_id": user_id, "role": role}, {"_id": 0}
    )
    if existing:
        if individual_message and existing.get("individual_message") != individual_message:
            await db.intervention_assignments.update_one(
                {"id": existing["id"]},
                {"$set": {"individual_message": individual_message, "updated_at": now_iso()}}
            )
            existing["individual_message"] = individual_message
        return existing

    doc = {
        "id": str(uuid.uuid4()),
        "intervention_id": intervention_id,
        "user_id": user_id,
        "role": role,
        "is_primary": is_primary,
        "individual_message": individual_message,
        "assigned_by": assigned_by,
        "assigned_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.intervention_assignments.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def add_assignments(intervention_id: str, items: List[dict], assigned_by: Optional[str] = None) -> List[dict]:
    """
    Insertion en série, log and continue.
    items: [{user_id, role, is_primary?, individual_message?}]
    """
    created = []
    for item in items:
        try:
            created.append(await add_assignment(
                intervention_id,
                item["user_id"],
                item["role"],
                assigned_by=assigned_by,
                is_primary=item.get("is_primary", False),
                individual_message=item.get("individual_message"),
            ))
        except Exception as e:
            logger.error(f"[ASSIGNMENTS] Échec assignation {item.get('role')}={item.get('user_id')}: {e}")
    return created


async def remove_assignment(intervention_id: str, user_id: str) -> int:
    result = await db.intervention_assignments.delete_many(
        {"intervention_id": intervention_id, "user_id": user_id}
    )
    return result.deleted_count


async def list_assignments_with_users(intervention_id: str) -> List[dict]:
    assignments = await db.intervention_assignments.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).to_list(200)
    user_ids = [a["user_id"] for a in assignments]
    if not user_ids:
        return assignments
    users = {
        u["id"]: u for u in await db.users.find(
            {"id": {"$in": user_ids}},
            {"_id": 0, "id": 1, "name": 1, "first_name": 1, "last_name": 1, "email": 1, "phone": 1, "role": 1, "provider_category": 1}
        ).to_list(len(user_ids))
    }
    for a in assignments:
        a["user"] = users.get(a["user_id"])
    return assignments
