"""
Service de journalisation des activités
"""

import logging
import uuid
from config import db, now_iso

logger = logging.getLogger("activity_logger")


async def log_activity(
    user: dict,
    action: str,
    entity_type: str,
    entity_id: str = None,
    entity_name: str = None,
    details: dict = None,
    team_id: str = None,
    ip_address: str = None
):
    """
    Enregistre une activité dans le journal

    Actions: login, create_user, intervention_created, intervention_approved,
             quote_requested, time_slot_accepted, finalized, ...
    Entity types: user, intervention, quote_request, quote, time_slot, document
    """
    log_entry = {
        "id": str(uuid.uuid4()),
        "user_id": user.get("id", "system"),
        "user_email": user.get("email", "system"),
        "user_name": user.get("name", "Système"),
        "team_id": team_id if team_id is not None else user.get("team_id"),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "entity_name": entity_name,
        "details": details or {},
        "ip_address": ip_address,
        "created_at": now_iso()
    }

    try:
        await db.activity_logs.insert_one(log_entry)
    except Exception as e:
        logger.error(f"[ACTIVITY] Échec journalisation {action} {entity_type}/{entity_id}: {e}")
    log_entry.pop("_id", None)
    return log_entry


async def get_activity_logs(
    user_id: str = None,
    entity_type: str = None,
    entity_id: str = None,
    action: str = None,
    team_id: str = None,
    limit: int = 100,
    skip: int = 0
):
    """
    Récupère les logs d'activité avec filtres optionnels
    """
    query = {}

    if user_id:
        query["user_id"] = user_id
    if entity_type:
        query["entity_type"] = entity_type
    if entity_id:
        query["entity_id"] = entity_id
    if action:
        query["action"] = action
    if team_id:
        query["team_id"] = team_id

    logs = await db.activity_logs.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)

    total = await db.activity_logs.count_documents(query)

    return {"logs": logs, "total": total, "limit": limit, "skip": skip}
