"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Planification des interventions                                     ║
║                                                                              ║
║  - Créneaux proposés (intervention_time_slots)                               ║
║  - Réponses des participants (time_slot_responses: pending/accepted/rejected)║
║  - Disponibilités libres (user_availabilities)                               ║
║                                                                              ║
║  AUTO-CONFIRMATION d'un créneau quand:                                       ║
║  - l'intervention est en "planification"                                     ║
║  - aucune réponse "pending" sur le créneau                                   ║
║  - chaque locataire/prestataire assigné a accepté le créneau                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from datetime import date as date_cls
from typing import List, Optional, Dict, Tuple
from config import db, now_iso
from services.intervention_state_machine import apply_transition, get_assignments
from services.intervention_rules import append_comment, is_valid_time, parse_date, scheduled_iso

logger = logging.getLogger("planning")

# Statuts depuis lesquels un créneau peut être retenu
SLOT_SELECTION_STATUSES = ["planification", "approuvee", "planifiee"]
SCHEDULE_STATUSES = ["approuvee", "planification"]
RESPONDER_ROLES = ["locataire", "prestataire"]


class PlanningError(Exception):
    """Erreur métier de planification (→ 400)"""
    pass


# ==================== VALIDATION ====================

def _minutes(value: str) -> int:
    h, m = value.split(":")[:2]
    return int(h) * 60 + int(m)


def validate_time_range(start: str, end: str) -> bool:
    if not is_valid_time(start) or not is_valid_time(end):
        raise PlanningError("Format d'heure invalide (HH:MM attendu)")
    if _minutes(start) >= _minutes(end):
        raise PlanningError("L'heure de fin doit être après l'heure de début")
    return True


def validate_slot(date: Optional[str], start: Optional[str], end: Optional[str], today: date_cls = None) -> bool:
    """Créneau complet, non passé, horaires HH:MM cohérents"""
    if not date or not start or not end:
        raise PlanningError("Créneau sélectionné invalide (date, startTime, endTime requis)")
    parsed = parse_date(date)
    if parsed is None:
        raise PlanningError("Date invalide (YYYY-MM-DD attendu)")
    if parsed < (today or date_cls.today()):
        raise PlanningError("Impossible de planifier dans le passé")
    return validate_time_range(start, end)


def validate_availabilities(items: List[dict], today: date_cls = None) -> List[dict]:
    """
    Filtre les disponibilités saisies.
    Les entrées incomplètes, passées ou incohérentes sont ignorées (loggées).
    """
    today = today or date_cls.today()
    kept = []
    for item in items:
        date, start, end = item.get("date"), item.get("start_time"), item.get("end_time")
        if not date or not start or not end:
            logger.warning(f"[PLANNING] Disponibilité incomplète ignorée: {item}")
            continue
        parsed = parse_date(date)
        if parsed is None or parsed < today:
            logger.warning(f"[PLANNING] Disponibilité passée ignorée: {date}")
            continue
        if not is_valid_time(start) or not is_valid_time(end) or _minutes(start) >= _minutes(end):
            logger.warning(f"[PLANNING] Horaires invalides ignorés: {start}-{end}")
            continue
        kept.append({"date": date, "start_time": start, "end_time": end})
    return kept


def slot_overlaps(slot: dict, availability: dict) -> bool:
    return (
        _minutes(slot["start_time"]) < _minutes(availability["end_time"])
        and _minutes(slot["end_time"]) > _minutes(availability["start_time"])
    )


def split_participants(selected: dict, availabilities: List[dict]) -> Tuple[List[dict], List[dict]]:
    """
    Pour un créneau retenu, sépare les participants disponibles de ceux
    dont la disponibilité du jour ne le recouvre pas.
    """
    available, conflicting = [], []
    for avail in availabilities:
        if avail.get("date") != selected["date"]:
            continue
        user = {
            "id": avail["user_id"],
            "name": avail.get("user_name"),
            "role": avail.get("user_role"),
        }
        if slot_overlaps(selected, avail):
            available.append(user)
        else:
            conflicting.append(user)
    return available, conflicting


# ==================== RÉPONSES ====================

def can_auto_confirm(intervention: dict, slot: dict, responses: List[dict], assignments: List[dict]) -> bool:
    if intervention.get("status") != "planification":
        return False
    if slot.get("status") in ("cancelled", "rejected"):
        return False

    slot_responses = [r for r in responses if r.get("time_slot_id") == slot["id"]]
    if any(r.get("response") == "pending" for r in slot_responses):
        return False

    accepted = {r["user_id"] for r in slot_responses if r.get("response") == "accepted"}
    responders = {a["user_id"] for a in assignments if a.get("role") in RESPONDER_ROLES}
    if not accepted & responders:
        return False
    return (responders - {slot.get("proposed_by")}).issubset(accepted)


def pending_responder_names(slots: List[dict]) -> List[str]:
    """Prénoms (ou premier mot du nom) des participants dont la réponse est en attente"""
    names, seen = [], set()
    for slot in slots or []:
        for r in slot.get("responses") or []:
            if r.get("response") != "pending" or r.get("user_id") in seen:
                continue
            seen.add(r.get("user_id"))
            full_name = r.get("user_name") or ""
            names.append(r.get("user_first_name") or (full_name.split(" ")[0] if full_name else "") or "Participant")
    return names


def planning_status_message(status: str, slots: List[dict]) -> Optional[str]:
    if status != "planification":
        return None
    if not slots:
        return "Planification en cours"

    responses = [r for s in slots for r in (s.get("responses") or [])]
    tenant_ok = any(r.get("user_role") == "locataire" and r.get("response") == "accepted" for r in responses)
    provider_ok = any(r.get("user_role") == "prestataire" and r.get("response") == "accepted" for r in responses)

    if not tenant_ok and not provider_ok:
        return "En attente des disponibilités du locataire et prestataire"
    if not tenant_ok:
        return "En attente des disponibilités du locataire"
    if not provider_ok:
        return "En attente des disponibilités du prestataire"
    return "Créneaux validés, en attente de confirmation finale"


# ==================== ÉCRITURES ====================

async def create_time_slots(
    intervention: dict,
    slots: List[dict],
    proposed_by: dict,
    replace: bool = False,
    notes: Optional[str] = None,
) -> List[dict]:
    """
    Enregistre des créneaux proposés et initialise une réponse "pending"
    pour chaque locataire/prestataire assigné (hors auteur).
    """
    intervention_id = intervention["id"]
    if replace:
        await clear_time_slots(intervention_id)

    now = now_iso()
    docs = []
    for s in slots:
        docs.append({
            "id": str(uuid.uuid4()),
            "intervention_id": intervention_id,
            "slot_date": s["date"],
            "start_time": s["start_time"],
            "end_time": s["end_time"],
            "status": "proposed",
            "is_selected": False,
            "proposed_by": proposed_by.get("id"),
            "proposed_by_role": proposed_by.get("role"),
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        })
    if not docs:
        return []

    await db.intervention_time_slots.insert_many(docs)

    assignments = await get_assignments(intervention_id)
    responders = [
        a for a in assignments
        if a.get("role") in RESPONDER_ROLES and a.get("user_id") != proposed_by.get("id")
    ]
    responses = [
        {
            "id": str(uuid.uuid4()),
            "time_slot_id": d["id"],
            "intervention_id": intervention_id,
            "user_id": a["user_id"],
            "user_role": a["role"],
            "response": "pending",
            "notes": None,
            "created_at": now,
            "updated_at": now,
        }
        for d in docs for a in responders
    ]
    if responses:
        await db.time_slot_responses.insert_many(responses)

    for d in docs:
        d.pop("_id", None)
    logger.info(f"[PLANNING] {len(docs)} créneau(x) créé(s) pour intervention={intervention_id}")
    return docs


async def clear_time_slots(intervention_id: str):
    await db.intervention_time_slots.delete_many({"intervention_id": intervention_id})
    await db.time_slot_responses.delete_many({"intervention_id": intervention_id})


async def get_slots_with_responses(intervention_id: str) -> List[dict]:
    slots = await db.intervention_time_slots.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).sort([("slot_date", 1), ("start_time", 1)]).to_list(100)
    if not slots:
        return []

    responses = await db.time_slot_responses.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).to_list(1000)
    user_ids = list({r["user_id"] for r in responses})
    users = {}
    if user_ids:
        for u in await db.users.find({"id": {"$in": user_ids}}, {"_id": 0, "id": 1, "name": 1, "first_name": 1}).to_list(len(user_ids)):
            users[u["id"]] = u

    by_slot: Dict[str, List[dict]] = {}
    for r in responses:
        u = users.get(r["user_id"], {})
        r["user_name"] = u.get("name")
        r["user_first_name"] = u.get("first_name")
        by_slot.setdefault(r["time_slot_id"], []).append(r)
    for s in slots:
        s["responses"] = by_slot.get(s["id"], [])
    return slots


async def record_slot_response(slot: dict, user: dict, response: str, notes: Optional[str] = None) -> dict:
    """Upsert de la réponse (time_slot_id, user_id)"""
    if slot.get("proposed_by") == user.get("id") and response != "pending":
        raise PlanningError("Vous ne pouvez pas répondre à votre propre créneau")
    if slot.get("status") in ("cancelled", "rejected"):
        raise PlanningError("Ce créneau a été annulé ou rejeté")
    if response == "rejected" and not (notes or "").strip():
        raise PlanningError("Une raison est requise pour rejeter un créneau")

    now = now_iso()
    await db.time_slot_responses.update_one(
        {"time_slot_id": slot["id"], "user_id": user["id"]},
        {
            "$set": {
                "response": response,
                "notes": (notes or "").strip() or None,
                "user_role": user.get("role"),
                "updated_at": now,
            },
            "$setOnInsert": {
                "id": str(uuid.uuid4()),
                "intervention_id": slot["intervention_id"],
                "created_at": now,
            },
        },
        upsert=True,
    )
    return await db.time_slot_responses.find_one(
        {"time_slot_id": slot["id"], "user_id": user["id"]}, {"_id": 0}
    )


async def withdraw_slot_response(slot: dict, user: dict) -> dict:
    existing = await db.time_slot_responses.find_one(
        {"time_slot_id": slot["id"], "user_id": user["id"]}, {"_id": 0}
    )
    if not existing or existing.get("response") == "pending":
        raise PlanningError("Aucune réponse à retirer")
    await db.time_slot_responses.update_one(
        {"id": existing["id"]},
        {"$set": {"response": "pending", "notes": None, "updated_at": now_iso()}}
    )
    existing["response"] = "pending"
    existing["notes"] = None
    return existing


async def try_auto_confirm(intervention: dict, slot: dict, user: dict) -> Optional[dict]:
    """Confirme le créneau si toutes les conditions sont réunies (sinon None)"""
    assignments = await get_assignments(intervention["id"])
    responses = await db.time_slot_responses.find(
        {"time_slot_id": slot["id"]}, {"_id": 0}
    ).to_list(100)
    if not can_auto_confirm(intervention, slot, responses, assignments):
        return None
    try:
        updated = await confirm_slot(intervention, slot, user, assignments=assignments)
    except Exception as e:
        # La réponse reste enregistrée même si la confirmation échoue
        logger.error(f"[AUTO_CONFIRM] Échec intervention={intervention['id']} slot={slot['id']}: {e}")
        return None
    logger.info(f"[AUTO_CONFIRM] intervention={intervention['id']} slot={slot['id']} confirmé")
    return updated


async def confirm_slot(
    intervention: dict,
    slot: dict,
    user: dict,
    assignments: Optional[List[dict]] = None,
) -> dict:
    """
    Retient un créneau proposé: planification → planifiee,
    scheduled_date calculée, autres créneaux annulés.
    """
    scheduled = scheduled_iso(slot["slot_date"], slot["start_time"])
    updated = await apply_transition(
        intervention, "planifiee", user,
        extra={"scheduled_date": scheduled, "selected_slot_id": slot["id"]},
        assignments=assignments,
    )

    now = now_iso()
    await db.intervention_time_slots.update_one(
        {"id": slot["id"]},
        {"$set": {"status": "selected", "is_selected": True, "selected_by": user.get("id"), "updated_at": now}}
    )
    await db.intervention_time_slots.update_many(
        {"intervention_id": intervention["id"], "id": {"$ne": slot["id"]}},
        {"$set": {"status": "cancelled", "is_selected": False, "updated_at": now}}
    )
    return updated


async def schedule_selected_slot(intervention: dict, selected: dict, user: dict, comment: Optional[str] = None) -> dict:
    """
    Sélection manuelle d'un créneau (select-slot).
    approuvee passe par planification, planifiee est une replanification.
    """
    status = intervention.get("status")
    if status not in SLOT_SELECTION_STATUSES:
        raise PlanningError(f'Impossible de planifier: statut actuel "{status}"')
    validate_slot(selected.get("date"), selected.get("start_time"), selected.get("end_time"))

    scheduled = scheduled_iso(selected["date"], selected["start_time"])
    extra = {"scheduled_date": scheduled}
    if comment:
        extra["manager_comment"] = append_comment(
            intervention.get("manager_comment"),
            [f"Planification: {comment}",
             f"Créneau sélectionné: {selected['date']} {selected['start_time']}-{selected['end_time']}"]
        )

    if status == "planifiee":
        logger.info(f"[PLANNING] Replanification intervention={intervention['id']}")
        extra["updated_at"] = now_iso()
        await db.interventions.update_one({"id": intervention["id"]}, {"$set": extra})
        updated = dict(intervention)
        updated.update(extra)
    else:
        if status == "approuvee":
            intervention = await apply_transition(intervention, "planification", user)
        updated = await apply_transition(intervention, "planifiee", user, extra=extra)

    await clear_time_slots(intervention["id"])
    await db.availability_matches.delete_many({"intervention_id": intervention["id"]})
    return updated
