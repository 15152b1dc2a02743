"""
SEIDO - Notifications in-app

Les notifications sont de simples enregistrements (collection notifications).
Aucun envoi email / push: le front les lit via /api/notifications.
"""

import uuid
import logging
from typing import Iterable, List, Optional
from config import db, now_iso

logger = logging.getLogger("notifications")

VALID_PRIORITIES = ["low", "normal", "high", "urgent"]


async def create_notification(
    user_id: str,
    team_id: Optional[str],
    created_by: Optional[str],
    type: str,
    title: str,
    message: str,
    metadata: dict = None,
    related_entity_id: Optional[str] = None,
    related_entity_type: str = "intervention",
    priority: str = "normal",
    is_personal: bool = True,
) -> dict:
    doc = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "team_id": team_id,
        "created_by": created_by,
        "type": type,
        "priority": priority if priority in VALID_PRIORITIES else "normal",
        "title": title,
        "message": message,
        "metadata": metadata or {},
        "related_entity_type": related_entity_type,
        "related_entity_id": related_entity_id,
        "is_personal": is_personal,
        "is_read": False,
        "read_at": None,
        "created_at": now_iso(),
    }
    await db.notifications.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def notify_users(
    user_ids: Iterable[str],
    exclude: Optional[str] = None,
    **kwargs,
) -> List[dict]:
    """
    Fan-out d'une notification vers plusieurs utilisateurs (hors acteur).
    Log and continue: un échec n'interrompt jamais l'opération métier.
    """
    created = []
    for user_id in dict.fromkeys(u for u in user_ids if u):
        if user_id == exclude:
            continue
        try:
            created.append(await create_notification(user_id=user_id, **kwargs))
        except Exception as e:
            logger.error(f"[NOTIFICATIONS] Échec notification user={user_id}: {e}")
    return created


async def team_manager_ids(team_id: Optional[str]) -> List[str]:
    if not team_id:
        return []
    managers = await db.users.find(
        {"team_id": team_id, "role": "gestionnaire", "is_active": {"$ne": False}},
        {"_id": 0, "id": 1}
    ).to_list(200)
    return [m["id"] for m in managers]


async def list_notifications(user_id: str, unread_only: bool = False, limit: int = 50, skip: int = 0) -> dict:
    query = {"user_id": user_id}
    if unread_only:
        query["is_read"] = False
    items = await db.notifications.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)
    unread = await db.notifications.count_documents({"user_id": user_id, "is_read": False})
    return {"notifications": items, "unread_count": unread, "count": len(items)}


async def mark_read(notification_id: str, user_id: str) -> bool:
    result = await db.notifications.update_one(
        {"id": notification_id, "user_id": user_id},
        {"$set": {"is_read": True, "read_at": now_iso()}}
    )
    return result.matched_count > 0


async def mark_all_read(user_id: str) -> int:
    result = await db.notifications.update_many(
        {"user_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": now_iso()}}
    )
    return result.modified_count
