"""
Routes Conversations
- Fils d'une intervention (filtrés selon le rôle)
- Messages d'un fil
"""

from fastapi import APIRouter, Depends, HTTPException

from config import db
from models import MessageCreate
from routes.interventions import load_intervention_for_user, notify_participants
from services.conversations import can_access_thread, list_messages, post_message
from services.intervention_state_machine import get_assignments
from services.permissions import require_permission, assigned_user_ids

router = APIRouter(tags=["Conversations"])


async def _load_thread(thread_id: str, user: dict):
    thread = await db.conversation_threads.find_one({"id": thread_id}, {"_id": 0})
    if not thread:
        raise HTTPException(status_code=404, detail="Fil de conversation non trouvé")
    intervention = await db.interventions.find_one({"id": thread["intervention_id"]}, {"_id": 0})
    if not intervention:
        raise HTTPException(status_code=404, detail="Intervention non trouvée")
    assignments = await get_assignments(intervention["id"])
    if not can_access_thread(user, thread, intervention, assignments):
        raise HTTPException(status_code=403, detail="Accès non autorisé à ce fil de conversation")
    return thread, intervention, assignments


@router.get("/interventions/{intervention_id}/threads")
async def list_threads(intervention_id: str, user: dict = Depends(require_permission("conversations.access"))):
    intervention, assignments = await load_intervention_for_user(intervention_id, user)
    threads = await db.conversation_threads.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).sort("created_at", 1).to_list(50)
    visible = [t for t in threads if can_access_thread(user, t, intervention, assignments)]
    return {"threads": visible, "count": len(visible)}


@router.get("/threads/{thread_id}/messages")
async def get_messages(
    thread_id: str,
    limit: int = 200,
    skip: int = 0,
    user: dict = Depends(require_permission("conversations.access"))
):
    thread, _, _ = await _load_thread(thread_id, user)
    messages = await list_messages(thread_id, limit=min(limit, 500), skip=skip)
    return {"thread": thread, "messages": messages, "count": len(messages)}


@router.post("/threads/{thread_id}/messages", status_code=201)
async def send_message(
    thread_id: str,
    data: MessageCreate,
    user: dict = Depends(require_permission("conversations.access"))
):
    thread, intervention, assignments = await _load_thread(thread_id, user)
    if not data.content.strip():
        raise HTTPException(status_code=400, detail="Le message ne peut pas être vide")

    message = await post_message(thread, user, data.content)

    # Destinataires: participants du fil visibles selon son type
    thread_type = thread.get("thread_type")
    recipients = assigned_user_ids(assignments, "gestionnaire")
    if thread_type in ("group", "tenant_to_managers"):
        recipients += assigned_user_ids(assignments, "locataire")
        if intervention.get("tenant_id"):
            recipients.append(intervention["tenant_id"])
    if thread_type == "group":
        recipients += assigned_user_ids(assignments, "prestataire")
    if thread_type == "provider_to_managers" and thread.get("provider_id"):
        recipients.append(thread["provider_id"])

    await notify_participants(
        intervention, user, recipients,
        title="Nouveau message",
        message=f"{user.get('name')}: {data.content.strip()[:100]}",
        type="message",
        metadata={"threadId": thread_id, "threadType": thread_type},
    )
    return {"success": True, "message": message}
