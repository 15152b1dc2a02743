"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Routes Planification                                                ║
║                                                                              ║
║  - intervention-schedule: direct / propose / organize (gestionnaire)         ║
║  - créneaux proposés + réponses des participants (auto-confirmation)         ║
║  - disponibilités libres + matching                                          ║
║  - select-slot: le gestionnaire retient un créneau → planifiee               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from datetime import date as date_cls

from fastapi import APIRouter, Depends, HTTPException

from config import db, now_iso
from models import ScheduleRequest, TimeSlotProposal, SlotResponse, SelectSlot, UserAvailabilityInput
from routes.auth import get_current_user
from routes.interventions import (
    load_intervention_for_user,
    load_intervention_for_manager,
    run_transition,
    notify_participants,
)
from services.activity_logger import log_activity
from services.availability_matcher import find_matches, empty_result, time_to_minutes, minutes_to_time
from services.intervention_rules import append_comment, is_valid_time
from services.intervention_state_machine import (
    is_terminal,
    InterventionTransitionError,
    InterventionPermissionError,
)
from services.permissions import require_permission, is_manager, enforce_team_access, assigned_user_ids
from services.planning import (
    PlanningError,
    SCHEDULE_STATUSES,
    validate_slot,
    validate_availabilities,
    split_participants,
    create_time_slots,
    clear_time_slots,
    get_slots_with_responses,
    record_slot_response,
    withdraw_slot_response,
    try_auto_confirm,
    schedule_selected_slot,
    planning_status_message,
    pending_responder_names,
)

logger = logging.getLogger("planning")

router = APIRouter(tags=["Planification"])

DIRECT_DEFAULT_MINUTES = 60
MAX_PERSISTED_PERFECT = 5
MAX_PERSISTED_PARTIAL = 3


def _default_end_time(start_time: str) -> str:
    """Rendez-vous direct sans heure de fin: une heure, bornée à 23:59"""
    return minutes_to_time(min(time_to_minutes(start_time) + DIRECT_DEFAULT_MINUTES, 23 * 60 + 59))


async def _get_slot_or_404(intervention_id: str, slot_id: str) -> dict:
    slot = await db.intervention_time_slots.find_one(
        {"id": slot_id, "intervention_id": intervention_id}, {"_id": 0}
    )
    if not slot:
        raise HTTPException(status_code=404, detail="Créneau non trouvé")
    return slot


async def _availabilities_with_users(intervention_id: str) -> list:
    availabilities = await db.user_availabilities.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).sort([("date", 1), ("start_time", 1)]).to_list(1000)
    user_ids = list({a["user_id"] for a in availabilities})
    users = {}
    if user_ids:
        for u in await db.users.find(
            {"id": {"$in": user_ids}}, {"_id": 0, "id": 1, "name": 1, "role": 1}
        ).to_list(len(user_ids)):
            users[u["id"]] = u
    for a in availabilities:
        u = users.get(a["user_id"], {})
        a["user_name"] = u.get("name")
        a["user_role"] = u.get("role")
    return availabilities


# ==================== PLANIFICATION (GESTIONNAIRE) ====================

@router.post("/intervention-schedule")
async def schedule_intervention(
    data: ScheduleRequest,
    user: dict = Depends(require_permission("planning.manage"))
):
    """
    direct   : un rendez-vous proposé aux participants
    propose  : plusieurs créneaux proposés
    organize : les participants saisissent leurs disponibilités
    L'intervention reste en "planification" jusqu'à confirmation d'un créneau.
    """
    if not is_manager(user):
        raise HTTPException(status_code=403, detail="Seuls les gestionnaires peuvent planifier les interventions")
    intervention, assignments = await load_intervention_for_manager(data.intervention_id, user)

    if intervention["status"] not in SCHEDULE_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"L'intervention ne peut pas être planifiée (statut actuel: {intervention['status']})"
        )

    planning_type = data.planning_type.value
    parts = [f"Planification: {data.internal_comment.strip()}"] if data.internal_comment else []
    slots = []

    try:
        if planning_type == "direct":
            direct = data.direct_schedule
            if not direct or not direct.date or not direct.start_time:
                raise HTTPException(status_code=400, detail="Date et heure requises pour la planification directe")
            if not is_valid_time(direct.start_time):
                raise PlanningError("Format d'heure invalide (HH:MM attendu)")
            end_time = direct.end_time or _default_end_time(direct.start_time)
            validate_slot(direct.date, direct.start_time, end_time)
            slots = [{"date": direct.date, "start_time": direct.start_time, "end_time": end_time}]
            parts.append(f"Rendez-vous proposé pour le {direct.date} à {direct.start_time}")
        elif planning_type == "propose":
            slots = [
                {"date": s.date, "start_time": s.start_time, "end_time": s.end_time}
                for s in data.proposed_slots
            ]
            if not slots:
                raise HTTPException(status_code=400, detail="Au moins un créneau doit être proposé")
            for s in slots:
                validate_slot(s["date"], s["start_time"], s["end_time"])
            parts.append(f"{len(slots)} créneaux proposés")
        else:
            parts.append("Planification autonome activée")
    except PlanningError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if intervention["status"] == "approuvee":
        intervention = await run_transition(intervention, "planification", user, assignments=assignments)

    update = {
        "scheduling_type": planning_type,
        "manager_comment": append_comment(intervention.get("manager_comment"), parts),
        "updated_at": now_iso(),
    }
    await db.interventions.update_one({"id": intervention["id"]}, {"$set": update})
    intervention.update(update)

    if slots:
        created = await create_time_slots(intervention, slots, user, replace=True, notes=data.internal_comment)
    else:
        await clear_time_slots(intervention["id"])
        created = []

    recipients = assigned_user_ids(assignments, "locataire") + assigned_user_ids(assignments, "prestataire")
    if planning_type == "organize":
        await notify_participants(
            intervention, user, recipients,
            title="Planification autonome",
            message=f"Merci d'indiquer vos disponibilités pour l'intervention \"{intervention.get('title')}\"",
            type="planning",
        )
        message = "Planification autonome activée"
    else:
        await notify_participants(
            intervention, user, recipients,
            title="Nouveau créneau proposé",
            message=f"{len(created)} créneau(x) proposé(s) pour l'intervention \"{intervention.get('title')}\"",
            type="planning",
            metadata={"slotCount": len(created)},
        )
        message = "Créneaux proposés avec succès. En attente de confirmation."

    await log_activity(
        user, "intervention_schedule", "intervention",
        entity_id=intervention["id"], entity_name=intervention.get("reference"),
        details={"planning_type": planning_type, "slots": len(created)},
        team_id=intervention.get("team_id"),
    )
    return {
        "success": True,
        "intervention": {
            "id": intervention["id"],
            "status": intervention["status"],
            "scheduling_type": planning_type,
        },
        "timeSlots": created,
        "message": message,
    }


# ==================== CRÉNEAUX ====================

@router.get("/intervention/{intervention_id}/time-slots")
async def list_time_slots(intervention_id: str, user: dict = Depends(get_current_user)):
    intervention, _ = await load_intervention_for_user(intervention_id, user)
    slots = await get_slots_with_responses(intervention_id)
    return {
        "timeSlots": slots,
        "count": len(slots),
        "planningMessage": planning_status_message(intervention["status"], slots),
        "pendingResponders": pending_responder_names(slots),
    }


@router.post("/intervention/{intervention_id}/time-slots", status_code=201)
async def propose_time_slots(
    intervention_id: str,
    data: TimeSlotProposal,
    user: dict = Depends(require_permission("planning.respond"))
):
    """Tout participant peut proposer des créneaux tant que l'intervention est en planification"""
    intervention, assignments = await load_intervention_for_user(intervention_id, user)
    if is_manager(user):
        enforce_team_access(user, intervention.get("team_id"))
    if intervention["status"] != "planification":
        raise HTTPException(
            status_code=400,
            detail=f"Impossible de proposer des créneaux: statut actuel \"{intervention['status']}\""
        )

    slots = [{"date": s.date, "start_time": s.start_time, "end_time": s.end_time} for s in data.slots]
    try:
        for s in slots:
            validate_slot(s["date"], s["start_time"], s["end_time"])
    except PlanningError as e:
        raise HTTPException(status_code=400, detail=str(e))

    created = await create_time_slots(intervention, slots, user)

    await notify_participants(
        intervention, user, assigned_user_ids(assignments),
        title="Nouveau créneau proposé",
        message=f"{user.get('name')} a proposé {len(created)} créneau(x) pour l'intervention \"{intervention.get('title')}\"",
        type="planning",
    )
    return {"success": True, "timeSlots": created}


@router.post("/intervention/{intervention_id}/time-slots/{slot_id}/response")
async def respond_to_time_slot(
    intervention_id: str,
    slot_id: str,
    data: SlotResponse,
    user: dict = Depends(require_permission("planning.respond"))
):
    intervention, assignments = await load_intervention_for_user(intervention_id, user)
    slot = await _get_slot_or_404(intervention_id, slot_id)

    if intervention["status"] != "planification":
        raise HTTPException(
            status_code=400,
            detail=f"Les créneaux ne sont plus modifiables (statut actuel: {intervention['status']})"
        )

    try:
        response = await record_slot_response(slot, user, data.response.value, data.notes)
    except PlanningError as e:
        raise HTTPException(status_code=400, detail=str(e))

    confirmed = None
    if data.response.value == "accepted":
        confirmed = await try_auto_confirm(intervention, slot, user)

    if confirmed:
        await notify_participants(
            confirmed, user, assigned_user_ids(assignments),
            title="Intervention planifiée",
            message=(f"L'intervention \"{intervention.get('title')}\" est planifiée le "
                     f"{slot['slot_date']} de {slot['start_time']} à {slot['end_time']}"),
            type="planning",
        )
    elif data.response.value == "rejected":
        await notify_participants(
            intervention, user, assigned_user_ids(assignments, "gestionnaire"),
            title="Créneau refusé",
            message=f"{user.get('name')} a refusé le créneau du {slot['slot_date']} ({data.notes.strip()})",
            type="planning",
        )

    return {
        "success": True,
        "response": response,
        "autoConfirmed": bool(confirmed),
        "intervention": {
            "id": intervention_id,
            "status": (confirmed or intervention)["status"],
            "scheduled_date": (confirmed or intervention).get("scheduled_date"),
        },
    }


@router.delete("/intervention/{intervention_id}/time-slots/{slot_id}/response")
async def withdraw_time_slot_response(
    intervention_id: str,
    slot_id: str,
    user: dict = Depends(require_permission("planning.respond"))
):
    intervention, _ = await load_intervention_for_user(intervention_id, user)
    slot = await _get_slot_or_404(intervention_id, slot_id)
    if intervention["status"] != "planification":
        raise HTTPException(
            status_code=400,
            detail=f"Les créneaux ne sont plus modifiables (statut actuel: {intervention['status']})"
        )
    try:
        response = await withdraw_slot_response(slot, user)
    except PlanningError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "response": response}


# ==================== DISPONIBILITÉS ====================

@router.put("/intervention/{intervention_id}/user-availability")
async def save_user_availability(
    intervention_id: str,
    data: UserAvailabilityInput,
    user: dict = Depends(require_permission("planning.respond"))
):
    """Remplace les disponibilités de l'utilisateur pour cette intervention"""
    intervention, _ = await load_intervention_for_user(intervention_id, user)
    if is_terminal(intervention["status"]):
        raise HTTPException(status_code=400, detail="Intervention clôturée: disponibilités non modifiables")

    kept = validate_availabilities([
        {"date": a.date, "start_time": a.start_time, "end_time": a.end_time}
        for a in data.availabilities
    ])
    if data.availabilities and not kept:
        raise HTTPException(status_code=400, detail="Aucune disponibilité valide")

    await db.user_availabilities.delete_many({"intervention_id": intervention_id, "user_id": user["id"]})
    now = now_iso()
    docs = [
        {
            "id": str(uuid.uuid4()),
            "intervention_id": intervention_id,
            "user_id": user["id"],
            "date": a["date"],
            "start_time": a["start_time"],
            "end_time": a["end_time"],
            "created_at": now,
            "updated_at": now,
        }
        for a in kept
    ]
    if docs:
        await db.user_availabilities.insert_many(docs)
        for d in docs:
            d.pop("_id", None)

    logger.info(f"[PLANNING] {len(docs)} disponibilité(s) enregistrée(s) user={user['id']} intervention={intervention_id}")
    return {
        "success": True,
        "availabilities": docs,
        "ignored": len(data.availabilities) - len(kept),
    }


@router.get("/intervention/{intervention_id}/user-availability")
async def list_user_availabilities(intervention_id: str, user: dict = Depends(get_current_user)):
    await load_intervention_for_user(intervention_id, user)
    availabilities = await _availabilities_with_users(intervention_id)
    return {"availabilities": availabilities, "count": len(availabilities)}


@router.post("/intervention/{intervention_id}/match-availabilities")
async def match_availabilities(intervention_id: str, user: dict = Depends(get_current_user)):
    await load_intervention_for_user(intervention_id, user)
    availabilities = await _availabilities_with_users(intervention_id)

    if not availabilities:
        result = empty_result()
        result["suggestions"].append({
            "date": date_cls.today().isoformat(),
            "reason": "Aucune disponibilité saisie",
            "alternatives": [],
        })
        return {"success": True, "message": "Aucune disponibilité trouvée pour cette intervention", "result": result}

    result = find_matches(availabilities)

    to_save = [
        {
            "matched_date": m["date"],
            "matched_start_time": m["start_time"],
            "matched_end_time": m["end_time"],
            "participant_user_ids": m["participant_user_ids"],
            "match_score": m["match_score"],
            "overlap_duration": m["overlap_duration"],
        }
        for m in result["perfectMatches"][:MAX_PERSISTED_PERFECT]
    ] + [
        {
            "matched_date": m["date"],
            "matched_start_time": m["start_time"],
            "matched_end_time": m["end_time"],
            "participant_user_ids": [u["user_id"] for u in m["available_users"]],
            "match_score": m["match_score"],
            "overlap_duration": time_to_minutes(m["end_time"]) - time_to_minutes(m["start_time"]),
        }
        for m in result["partialMatches"][:MAX_PERSISTED_PARTIAL]
    ]
    if to_save:
        now = now_iso()
        try:
            await db.availability_matches.delete_many({"intervention_id": intervention_id})
            await db.availability_matches.insert_many([
                dict(m, id=str(uuid.uuid4()), intervention_id=intervention_id, created_at=now) for m in to_save
            ])
        except Exception as e:
            logger.warning(f"[MATCHING] Impossible d'enregistrer les correspondances: {e}")

    return {"success": True, "message": "Matching des disponibilités terminé", "result": result}


# ==================== SÉLECTION ====================

@router.post("/intervention/{intervention_id}/select-slot")
async def select_slot(
    intervention_id: str,
    data: SelectSlot,
    user: dict = Depends(require_permission("planning.manage"))
):
    intervention, assignments = await load_intervention_for_manager(intervention_id, user)
    selected = {
        "date": data.selected_slot.date,
        "start_time": data.selected_slot.start_time,
        "end_time": data.selected_slot.end_time,
    }

    try:
        validate_slot(selected["date"], selected["start_time"], selected["end_time"])
    except PlanningError as e:
        raise HTTPException(status_code=400, detail=str(e))

    available, conflicting = split_participants(selected, await _availabilities_with_users(intervention_id))

    try:
        updated = await schedule_selected_slot(intervention, selected, user, comment=data.comment)
    except PlanningError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InterventionTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InterventionPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    await notify_participants(
        updated, user, assigned_user_ids(assignments),
        title="Intervention planifiée",
        message=(f"L'intervention \"{intervention.get('title')}\" est planifiée le "
                 f"{selected['date']} de {selected['start_time']} à {selected['end_time']}"),
        type="planning",
        metadata={"scheduledDate": updated.get("scheduled_date")},
    )

    return {
        "success": True,
        "intervention": {
            "id": updated["id"],
            "status": updated["status"],
            "scheduled_date": updated["scheduled_date"],
        },
        "availableParticipants": available,
        "conflictingParticipants": conflicting,
        "message": "Intervention planifiée avec succès",
    }
