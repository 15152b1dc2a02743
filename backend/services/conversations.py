"""
SEIDO - Fils de conversation d'une intervention

- group                : tous les participants
- tenant_to_managers   : locataire(s) ↔ gestionnaires
- provider_to_managers : un fil par prestataire ↔ gestionnaires
"""

import uuid
import logging
from typing import List, Optional
from config import db, now_iso
from models.conversation import ThreadType
from services.permissions import is_manager, same_team, assigned_user_ids

logger = logging.getLogger("conversations")

THREAD_TITLES = {
    ThreadType.GROUP.value: "Discussion générale",
    ThreadType.TENANT_TO_MANAGERS.value: "Communication avec les gestionnaires",
    ThreadType.PROVIDER_TO_MANAGERS.value: "Communication prestataire / gestionnaires",
}


def _thread_doc(intervention: dict, thread_type: str, created_by: str, provider_id: str = None) -> dict:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "intervention_id": intervention["id"],
        "team_id": intervention.get("team_id"),
        "thread_type": thread_type,
        "title": THREAD_TITLES[thread_type],
        "provider_id": provider_id,
        "participant_ids": [created_by] if created_by else [],
        "message_count": 0,
        "last_message_at": None,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }


async def create_initial_threads(intervention: dict, created_by: str) -> List[dict]:
    threads = [
        _thread_doc(intervention, ThreadType.GROUP.value, created_by),
        _thread_doc(intervention, ThreadType.TENANT_TO_MANAGERS.value, created_by),
    ]
    await db.conversation_threads.insert_many(threads)
    for t in threads:
        t.pop("_id", None)
    logger.info(f"[CONVERSATIONS] Fils initiaux créés intervention={intervention['id']}")
    return threads


async def ensure_provider_thread(intervention: dict, provider_id: str, created_by: str) -> dict:
    existing = await db.conversation_threads.find_one(
        {"intervention_id": intervention["id"], "thread_type": ThreadType.PROVIDER_TO_MANAGERS.value, "provider_id": provider_id},
        {"_id": 0}
    )
    if existing:
        return existing
    thread = _thread_doc(intervention, ThreadType.PROVIDER_TO_MANAGERS.value, created_by, provider_id=provider_id)
    await db.conversation_threads.insert_one(thread)
    thread.pop("_id", None)
    return thread


def can_access_thread(user: dict, thread: dict, intervention: dict, assignments: List[dict]) -> bool:
    if is_manager(user):
        return same_team(user, intervention.get("team_id"))

    user_id = user.get("id")
    thread_type = thread.get("thread_type")

    if user.get("role") == "locataire":
        is_tenant = user_id in assigned_user_ids(assignments, "locataire") or intervention.get("tenant_id") == user_id
        return is_tenant and thread_type in ("group", "tenant_to_managers")

    if user.get("role") == "prestataire":
        if user_id not in assigned_user_ids(assignments, "prestataire"):
            return False
        if thread_type == "group":
            return True
        return thread_type == "provider_to_managers" and thread.get("provider_id") == user_id

    return False


async def list_messages(thread_id: str, limit: int = 200, skip: int = 0) -> List[dict]:
    return await db.conversation_messages.find({"thread_id": thread_id}, {"_id": 0}) \
        .sort("created_at", 1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)


async def post_message(thread: dict, user: dict, content: str, attachments: Optional[list] = None) -> dict:
    now = now_iso()
    message = {
        "id": str(uuid.uuid4()),
        "thread_id": thread["id"],
        "intervention_id": thread["intervention_id"],
        "user_id": user["id"],
        "user_name": user.get("name"),
        "user_role": user.get("role"),
        "content": content.strip(),
        "attachments": attachments or [],
        "created_at": now,
    }
    await db.conversation_messages.insert_one(message)
    message.pop("_id", None)

    await db.conversation_threads.update_one(
        {"id": thread["id"]},
        {
            "$addToSet": {"participant_ids": user["id"]},
            "$inc": {"message_count": 1},
            "$set": {"last_message_at": now, "updated_at": now},
        }
    )
    return message
