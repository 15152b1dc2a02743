"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Routes Interventions                                                ║
║                                                                              ║
║  Création (locataire / gestionnaire), lecture, actions de statut,            ║
║  assignations, validation locataire, finalisation gestionnaire.              ║
║                                                                              ║
║  Toute transition de statut passe par intervention_state_machine.            ║
║  Les effets de bord (assignations, créneaux, fils, notifications, logs)      ║
║  sont "log and continue": ils ne font jamais échouer la requête.             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query

from config import db, now_iso, APP_URL
from models import (
    TenantInterventionCreate,
    ManagerInterventionCreate,
    ApproveAction,
    ReasonAction,
    CompleteAction,
    AssignUser,
    TenantValidation,
    InterventionFinalize,
    ASSIGNMENT_ROLES,
)
from routes.auth import get_current_user
from services.activity_logger import log_activity
from services.assignments import add_assignment, add_assignments, remove_assignment, list_assignments_with_users
from services.conversations import create_initial_threads, ensure_provider_thread
from services.intervention_rules import (
    map_intervention_type,
    map_urgency,
    generate_reference,
    sanitize_id,
    determine_manager_creation_status,
    has_fixed_datetime,
    is_valid_fixed_datetime,
    fixed_scheduled_date,
    build_manager_comment,
    append_comment,
    format_fr_datetime,
)
from services.intervention_state_machine import (
    apply_transition,
    get_assignments,
    is_terminal,
    InterventionTransitionError,
    InterventionPermissionError,
)
from services.notifications import notify_users, team_manager_ids
from services.permissions import (
    require_permission,
    is_manager,
    enforce_team_access,
    build_team_filter,
    assigned_user_ids,
    can_view_intervention,
)
from services.planning import (
    PlanningError,
    validate_slot,
    create_time_slots,
    get_slots_with_responses,
    validate_availabilities,
    pending_responder_names,
    planning_status_message,
)
from services.quotes import create_quote_request

logger = logging.getLogger("interventions")

router = APIRouter(tags=["Interventions"])

PAYMENT_STATUS_LABELS = {
    "pending": "En attente",
    "approved": "Approuvé",
    "paid": "Payé",
    "disputed": "Contesté",
}


# ==================== HELPERS (partagés avec les autres routes) ====================

async def get_intervention_or_404(intervention_id: str) -> dict:
    intervention = await db.interventions.find_one({"id": intervention_id}, {"_id": 0})
    if not intervention:
        raise HTTPException(status_code=404, detail="Intervention non trouvée")
    return intervention


async def load_intervention_for_user(intervention_id: str, user: dict) -> Tuple[dict, List[dict]]:
    """Intervention + assignations, 403 si l'utilisateur n'y a pas accès"""
    intervention = await get_intervention_or_404(intervention_id)
    assignments = await get_assignments(intervention_id)
    if not can_view_intervention(user, intervention, assignments):
        logger.warning(f"[PERMISSION_DENIED] user={user.get('email')} intervention={intervention_id}")
        raise HTTPException(status_code=403, detail="Accès non autorisé à cette intervention")
    return intervention, assignments


async def load_intervention_for_manager(intervention_id: str, user: dict) -> Tuple[dict, List[dict]]:
    if not is_manager(user):
        raise HTTPException(status_code=403, detail="Accès réservé aux gestionnaires")
    intervention = await get_intervention_or_404(intervention_id)
    enforce_team_access(user, intervention.get("team_id"))
    return intervention, await get_assignments(intervention_id)


async def run_transition(intervention: dict, to_status: str, user: dict, extra: dict = None,
                         assignments: List[dict] = None) -> dict:
    try:
        return await apply_transition(intervention, to_status, user, extra=extra, assignments=assignments)
    except InterventionTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InterventionPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


async def notify_participants(intervention: dict, actor: dict, user_ids, title: str, message: str,
                              priority: str = "normal", type: str = "intervention", metadata: dict = None):
    meta = {
        "interventionId": intervention["id"],
        "interventionTitle": intervention.get("title"),
        "interventionReference": intervention.get("reference"),
        "actorName": actor.get("name"),
        "link": f"{APP_URL}/interventions/{intervention['id']}",
    }
    meta.update(metadata or {})
    return await notify_users(
        user_ids,
        exclude=actor.get("id"),
        team_id=intervention.get("team_id"),
        created_by=actor.get("id"),
        type=type,
        title=title,
        message=message,
        metadata=meta,
        related_entity_id=intervention["id"],
        priority=priority,
    )


def _tenant_ids(intervention: dict, assignments: List[dict]) -> List[str]:
    ids = assigned_user_ids(assignments, "locataire")
    if intervention.get("tenant_id") and intervention["tenant_id"] not in ids:
        ids.append(intervention["tenant_id"])
    return ids


def _stamp(user: dict) -> str:
    return f"Par {user.get('name')} le {format_fr_datetime(datetime.now(timezone.utc))}"


async def _find_active_tenant(lot_id: str) -> Optional[str]:
    """Locataire actif du lot via lot_contacts (end_date nulle ou future)"""
    today = now_iso()[:10]
    contacts = await db.lot_contacts.find(
        {"lot_id": lot_id, "$or": [{"end_date": None}, {"end_date": {"$gt": today}}]},
        {"_id": 0}
    ).sort("is_primary", -1).to_list(100)
    if not contacts:
        return None
    users = await db.users.find(
        {"id": {"$in": [c["user_id"] for c in contacts]}, "role": "locataire"},
        {"_id": 0, "id": 1}
    ).to_list(100)
    tenant_ids = {u["id"] for u in users}
    for c in contacts:
        if c["user_id"] in tenant_ids:
            return c["user_id"]
    return None


async def _existing_user_ids(ids: List[str], roles: Tuple[str, ...]) -> List[str]:
    if not ids:
        return []
    found = await db.users.find(
        {"id": {"$in": ids}, "role": {"$in": list(roles)}}, {"_id": 0, "id": 1}
    ).to_list(len(ids))
    found_ids = {u["id"] for u in found}
    missing = [i for i in ids if i not in found_ids]
    if missing:
        logger.warning(f"[INTERVENTION] Utilisateurs ignorés (inconnus ou rôle invalide): {missing}")
    return [i for i in dict.fromkeys(ids) if i in found_ids]


# ==================== CRÉATION ====================

@router.post("/create-intervention", status_code=201)
async def create_tenant_intervention(
    data: TenantInterventionCreate,
    user: dict = Depends(require_permission("interventions.request"))
):
    """
    Demande d'intervention par un locataire.
    Statut initial: demande. Les gestionnaires de l'équipe sont auto-assignés.
    """
    lot = await db.lots.find_one({"id": data.lot_id}, {"_id": 0})
    if not lot:
        raise HTTPException(status_code=404, detail="Lot non trouvé")

    if user.get("role") == "locataire":
        contact = await db.lot_contacts.find_one({
            "lot_id": data.lot_id,
            "user_id": user["id"],
            "$or": [{"end_date": None}, {"end_date": {"$gt": now_iso()[:10]}}],
        }, {"_id": 0})
        if not contact:
            raise HTTPException(status_code=403, detail="Vous n'êtes pas rattaché à ce logement")

    team_id = lot.get("team_id")
    if not team_id and lot.get("building_id"):
        building = await db.buildings.find_one({"id": lot["building_id"]}, {"_id": 0, "team_id": 1})
        team_id = (building or {}).get("team_id")
    team_id = team_id or data.team_id
    if not team_id:
        raise HTTPException(status_code=400, detail="L'équipe est requise pour créer une intervention")

    now = now_iso()
    intervention = {
        "id": str(uuid.uuid4()),
        "reference": generate_reference(),
        "title": data.title.strip(),
        "description": data.description.strip(),
        "type": map_intervention_type(data.type),
        "urgency": map_urgency(data.urgency),
        "status": "demande",
        "lot_id": lot["id"],
        "building_id": lot.get("building_id"),
        "team_id": team_id,
        "tenant_id": user["id"],
        "created_by": user["id"],
        "requires_quote": False,
        "scheduling_type": None,
        "scheduled_date": None,
        "manager_comment": None,
        "tenant_comment": None,
        "created_at": now,
        "updated_at": now,
    }
    await db.interventions.insert_one(intervention)
    intervention.pop("_id", None)
    logger.info(f"[INTERVENTION] Demande locataire créée {intervention['reference']} lot={lot['id']}")

    manager_ids = await team_manager_ids(team_id)
    await add_assignments(
        intervention["id"],
        [{"user_id": user["id"], "role": "locataire", "is_primary": True}]
        + [{"user_id": m, "role": "gestionnaire", "is_primary": i == 0} for i, m in enumerate(manager_ids)],
        assigned_by=user["id"],
    )

    try:
        await create_initial_threads(intervention, user["id"])
    except Exception as e:
        logger.error(f"[INTERVENTION] Échec création fils de conversation: {e}")

    await notify_participants(
        intervention, user, manager_ids,
        title="Nouvelle demande d'intervention",
        message=f"{user.get('name')} a créé une demande d'intervention \"{intervention['title']}\" (lot {lot.get('reference')})",
        priority="high" if intervention["urgency"] in ("haute", "urgente") else "normal",
    )

    await log_activity(
        user, "intervention_created", "intervention",
        entity_id=intervention["id"], entity_name=intervention["reference"],
        details={"status": "demande", "lot_id": lot["id"]}, team_id=team_id,
    )

    return {"success": True, "intervention": intervention, "message": "Demande d'intervention créée avec succès"}


@router.post("/create-manager-intervention", status_code=201)
async def create_manager_intervention(
    data: ManagerInterventionCreate,
    user: dict = Depends(get_current_user)
):
    """
    Création complète par un gestionnaire:
    logement, locataire auto-détecté, équipe héritée, statut calculé,
    assignations, créneaux, disponibilités, fils de conversation, notifications.
    """
    lot_id = sanitize_id(data.selected_lot_id)
    building_id = sanitize_id(data.selected_building_id)

    if not (data.title or "").strip() or not (data.description or "").strip() or (not lot_id and not building_id):
        raise HTTPException(status_code=400, detail="Champs requis manquants (titre, description, logement)")

    manager_ids = [m for m in (sanitize_id(x) for x in data.selected_manager_ids) if m]
    if not manager_ids:
        raise HTTPException(status_code=400, detail="Au moins un gestionnaire doit être assigné")

    if not is_manager(user):
        raise HTTPException(status_code=403, detail="Accès réservé aux gestionnaires")

    tenant_id = None
    team_id = data.team_id or user.get("team_id")
    lot = building = None

    if lot_id:
        lot = await db.lots.find_one({"id": lot_id}, {"_id": 0})
        if not lot:
            raise HTTPException(status_code=404, detail="Lot non trouvé")
        tenant_id = await _find_active_tenant(lot_id)
        if lot.get("team_id"):
            team_id = lot["team_id"]
        elif lot.get("building_id"):
            parent = await db.buildings.find_one({"id": lot["building_id"]}, {"_id": 0, "team_id": 1})
            team_id = (parent or {}).get("team_id") or team_id
        building_id = lot.get("building_id")
    else:
        building = await db.buildings.find_one({"id": building_id}, {"_id": 0})
        if not building:
            raise HTTPException(status_code=404, detail="Immeuble non trouvé")
        if building.get("team_id"):
            team_id = building["team_id"]

    enforce_team_access(user, team_id)

    manager_ids = await _existing_user_ids(manager_ids, ("gestionnaire", "admin"))
    if not manager_ids:
        raise HTTPException(status_code=400, detail="Au moins un gestionnaire doit être assigné")
    provider_ids = await _existing_user_ids(
        [p for p in (sanitize_id(x) for x in data.selected_provider_ids) if p], ("prestataire",)
    )

    scheduling_type = data.scheduling_type.value if data.scheduling_type else None
    if has_fixed_datetime(scheduling_type, data.fixed_date_time) and not is_valid_fixed_datetime(data.fixed_date_time):
        raise HTTPException(status_code=400, detail="Date ou heure fixe invalide (YYYY-MM-DD et HH:MM attendus)")

    status = determine_manager_creation_status(
        provider_ids, data.expects_quote, tenant_id, manager_ids,
        scheduling_type, data.fixed_date_time,
    )
    logger.info(
        f"[INTERVENTION] Statut déterminé: {status} "
        f"(prestataires={len(provider_ids)} devis={data.expects_quote} locataire={bool(tenant_id)} "
        f"gestionnaires={len(manager_ids)} planning={scheduling_type})"
    )

    now = now_iso()
    intervention = {
        "id": str(uuid.uuid4()),
        "reference": generate_reference(),
        "title": data.title.strip(),
        "description": data.description.strip(),
        "type": map_intervention_type(data.type),
        "urgency": map_urgency(data.urgency),
        "status": status,
        "lot_id": lot_id,
        "building_id": building_id,
        "team_id": team_id,
        "tenant_id": tenant_id,
        "created_by": user["id"],
        "requires_quote": data.expects_quote,
        "scheduling_type": scheduling_type,
        "scheduled_date": fixed_scheduled_date(scheduling_type, data.fixed_date_time),
        "specific_location": data.location,
        "manager_comment": build_manager_comment(
            building_id, lot_id, data.location, data.expects_quote,
            data.global_message, scheduling_type, len(data.time_slots),
        ),
        "tenant_comment": None,
        "created_at": now,
        "updated_at": now,
    }
    await db.interventions.insert_one(intervention)
    intervention.pop("_id", None)
    logger.info(f"[INTERVENTION] Intervention gestionnaire créée {intervention['reference']} status={status}")

    individual = data.message_type == "individual"
    items = [
        {
            "user_id": m, "role": "gestionnaire", "is_primary": i == 0,
            "individual_message": data.individual_messages.get(m) if individual else None,
        }
        for i, m in enumerate(manager_ids)
    ] + [
        {
            "user_id": p, "role": "prestataire", "is_primary": False,
            "individual_message": data.individual_messages.get(p) if individual else None,
        }
        for p in provider_ids
    ]
    if tenant_id:
        items.append({"user_id": tenant_id, "role": "locataire", "is_primary": False})
    await add_assignments(intervention["id"], items, assigned_by=user["id"])

    if scheduling_type == "slots" and data.time_slots:
        valid_slots = []
        for s in data.time_slots:
            try:
                validate_slot(s.date, s.start_time, s.end_time)
            except PlanningError as e:
                logger.warning(f"[INTERVENTION] Créneau ignoré {s.date} {s.start_time}-{s.end_time}: {e}")
                continue
            valid_slots.append({"date": s.date, "start_time": s.start_time, "end_time": s.end_time})
        try:
            await create_time_slots(intervention, valid_slots, user)
        except Exception as e:
            logger.error(f"[INTERVENTION] Échec création créneaux: {e}")

    if data.manager_availabilities:
        kept = validate_availabilities([
            {"date": a.date, "start_time": a.start_time, "end_time": a.end_time}
            for a in data.manager_availabilities
        ])
        if kept:
            try:
                await db.user_availabilities.insert_many([
                    {
                        "id": str(uuid.uuid4()),
                        "intervention_id": intervention["id"],
                        "user_id": user["id"],
                        "date": a["date"],
                        "start_time": a["start_time"],
                        "end_time": a["end_time"],
                        "created_at": now,
                        "updated_at": now,
                    }
                    for a in kept
                ])
            except Exception as e:
                logger.error(f"[INTERVENTION] Échec enregistrement disponibilités gestionnaire: {e}")

    if status == "demande_de_devis":
        for p in provider_ids:
            try:
                await create_quote_request(
                    intervention, p, user,
                    message=(data.individual_messages.get(p) if individual else None) or data.global_message,
                )
            except Exception as e:
                logger.error(f"[INTERVENTION] Échec demande de devis provider={p}: {e}")

    try:
        await create_initial_threads(intervention, user["id"])
        for p in provider_ids:
            await ensure_provider_thread(intervention, p, user["id"])
    except Exception as e:
        logger.error(f"[INTERVENTION] Échec création fils de conversation: {e}")

    recipients = manager_ids + provider_ids + ([tenant_id] if tenant_id else [])
    await notify_participants(
        intervention, user, recipients,
        title="Nouvelle intervention",
        message=f"{user.get('name')} vous a assigné l'intervention \"{intervention['title']}\"",
        priority="high" if intervention["urgency"] in ("haute", "urgente") else "normal",
    )

    await log_activity(
        user, "intervention_created", "intervention",
        entity_id=intervention["id"], entity_name=intervention["reference"],
        details={
            "status": status,
            "managers": len(manager_ids),
            "providers": len(provider_ids),
            "tenant_id": tenant_id,
        },
        team_id=team_id,
    )

    return {
        "success": True,
        "intervention": {
            "id": intervention["id"],
            "reference": intervention["reference"],
            "title": intervention["title"],
            "status": intervention["status"],
            "tenant_id": tenant_id,
            "team_id": team_id,
            "scheduled_date": intervention["scheduled_date"],
            "created_at": intervention["created_at"],
        },
        "message": "Intervention créée avec succès",
    }


# ==================== LECTURE ====================

@router.get("/interventions")
async def list_interventions(
    status: Optional[str] = Query(None),
    urgency: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    lot_id: Optional[str] = Query(None),
    building_id: Optional[str] = Query(None),
    limit: int = Query(100, le=500),
    skip: int = Query(0, ge=0),
    user: dict = Depends(require_permission("interventions.view"))
):
    """
    - gestionnaire/admin: interventions de l'équipe
    - locataire/prestataire: interventions où il est assigné
    """
    if is_manager(user):
        query = build_team_filter(user)
    else:
        mine = await db.intervention_assignments.find(
            {"user_id": user["id"]}, {"_id": 0, "intervention_id": 1}
        ).to_list(5000)
        query = {"$or": [
            {"id": {"$in": [a["intervention_id"] for a in mine]}},
            {"tenant_id": user["id"]},
        ]}

    for field, value in (("status", status), ("urgency", urgency), ("type", type),
                         ("lot_id", lot_id), ("building_id", building_id)):
        if value:
            query[field] = value

    interventions = await db.interventions.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)
    total = await db.interventions.count_documents(query)
    return {"interventions": interventions, "count": len(interventions), "total": total}


@router.get("/interventions/{intervention_id}")
async def get_intervention(intervention_id: str, user: dict = Depends(get_current_user)):
    intervention, _ = await load_intervention_for_user(intervention_id, user)

    slots = await get_slots_with_responses(intervention_id)
    quote_query = {"intervention_id": intervention_id}
    if user.get("role") == "prestataire":
        quote_query["provider_id"] = user["id"]
    quotes = await db.intervention_quotes.find(quote_query, {"_id": 0}).sort("created_at", -1).to_list(100)

    result = dict(intervention)
    result["assignments"] = await list_assignments_with_users(intervention_id)
    result["time_slots"] = slots
    result["quotes"] = quotes
    if is_manager(user):
        result["quote_requests"] = await db.quote_requests.find(
            {"intervention_id": intervention_id}, {"_id": 0}
        ).to_list(100)
    if intervention.get("lot_id"):
        result["lot"] = await db.lots.find_one({"id": intervention["lot_id"]}, {"_id": 0})
    if intervention.get("building_id"):
        result["building"] = await db.buildings.find_one({"id": intervention["building_id"]}, {"_id": 0})
    result["planning_message"] = planning_status_message(intervention["status"], slots)
    result["pending_responders"] = pending_responder_names(slots)
    return {"intervention": result}


# ==================== ACTIONS DE STATUT ====================

@router.post("/interventions/{intervention_id}/approve")
async def approve_intervention(
    intervention_id: str,
    data: ApproveAction = None,
    user: dict = Depends(require_permission("interventions.manage"))
):
    intervention, assignments = await load_intervention_for_manager(intervention_id, user)
    extra = {"approved_by": user["id"], "approved_at": now_iso()}
    if data and data.comment:
        extra["manager_comment"] = append_comment(intervention.get("manager_comment"), [f"Approbation: {data.comment}"])
    updated = await run_transition(intervention, "approuvee", user, extra=extra, assignments=assignments)

    await notify_participants(
        updated, user, _tenant_ids(intervention, assignments),
        title="Demande approuvée",
        message=f"Votre demande \"{intervention.get('title')}\" a été approuvée",
    )
    return {"success": True, "intervention": updated}


@router.post("/interventions/{intervention_id}/reject")
async def reject_intervention(
    intervention_id: str,
    data: ReasonAction,
    user: dict = Depends(require_permission("interventions.manage"))
):
    intervention, assignments = await load_intervention_for_manager(intervention_id, user)
    updated = await run_transition(
        intervention, "rejetee", user,
        extra={"rejection_reason": data.reason.strip(), "rejected_by": user["id"], "rejected_at": now_iso()},
        assignments=assignments,
    )
    await notify_participants(
        updated, user, _tenant_ids(intervention, assignments),
        title="Demande rejetée",
        message=f"Votre demande \"{intervention.get('title')}\" a été rejetée. Motif: {data.reason.strip()}",
    )
    return {"success": True, "intervention": updated}


@router.post("/interventions/{intervention_id}/start-planning")
async def start_planning(intervention_id: str, user: dict = Depends(require_permission("planning.manage"))):
    intervention, assignments = await load_intervention_for_manager(intervention_id, user)
    updated = await run_transition(intervention, "planification", user, assignments=assignments)
    return {"success": True, "intervention": updated}


@router.post("/interventions/{intervention_id}/start")
async def start_intervention(intervention_id: str, user: dict = Depends(require_permission("interventions.execute"))):
    intervention, assignments = await load_intervention_for_user(intervention_id, user)
    if is_manager(user):
        enforce_team_access(user, intervention.get("team_id"))
    updated = await run_transition(
        intervention, "en_cours", user,
        extra={"started_at": now_iso()}, assignments=assignments,
    )
    await notify_participants(
        updated, user, assigned_user_ids(assignments),
        title="Intervention démarrée",
        message=f"L'intervention \"{intervention.get('title')}\" a démarré",
    )
    return {"success": True, "intervention": updated}


@router.post("/interventions/{intervention_id}/complete")
async def complete_intervention(
    intervention_id: str,
    data: CompleteAction = None,
    user: dict = Depends(require_permission("interventions.execute"))
):
    intervention, assignments = await load_intervention_for_user(intervention_id, user)
    if is_manager(user):
        enforce_team_access(user, intervention.get("team_id"))
    extra = {"completed_at": now_iso(), "completed_by": user["id"]}
    if data and data.report:
        extra["provider_report"] = data.report.strip()
    updated = await run_transition(intervention, "cloturee_par_prestataire", user, extra=extra, assignments=assignments)

    await notify_participants(
        updated, user, _tenant_ids(intervention, assignments),
        title="Intervention terminée",
        message=f"L'intervention \"{intervention.get('title')}\" est terminée. Merci de la valider.",
        priority="high",
    )
    await notify_participants(
        updated, user, assigned_user_ids(assignments, "gestionnaire"),
        title="Intervention terminée par le prestataire",
        message=f"L'intervention \"{intervention.get('title')}\" a été clôturée par le prestataire",
    )
    return {"success": True, "intervention": updated}


@router.post("/interventions/{intervention_id}/cancel")
async def cancel_intervention(
    intervention_id: str,
    data: ReasonAction,
    user: dict = Depends(require_permission("interventions.manage"))
):
    intervention, assignments = await load_intervention_for_manager(intervention_id, user)
    updated = await run_transition(
        intervention, "annulee", user,
        extra={"cancellation_reason": data.reason.strip(), "cancelled_by": user["id"], "cancelled_at": now_iso()},
        assignments=assignments,
    )
    # Les créneaux, demandes de devis et devis en cours n'ont plus d'objet
    await db.intervention_time_slots.update_many(
        {"intervention_id": intervention_id, "status": "proposed"},
        {"$set": {"status": "cancelled", "updated_at": now_iso()}}
    )
    await db.quote_requests.update_many(
        {"intervention_id": intervention_id, "status": {"$in": ["sent", "viewed"]}},
        {"$set": {"status": "cancelled", "updated_at": now_iso()}}
    )
    await db.intervention_quotes.update_many(
        {"intervention_id": intervention_id, "status": "pending"},
        {"$set": {"status": "cancelled", "updated_at": now_iso()}}
    )
    await notify_participants(
        updated, user, assigned_user_ids(assignments) + _tenant_ids(intervention, assignments),
        title="Intervention annulée",
        message=f"L'intervention \"{intervention.get('title')}\" a été annulée. Motif: {data.reason.strip()}",
    )
    return {"success": True, "intervention": updated}


# ==================== ASSIGNATIONS ====================

@router.post("/interventions/{intervention_id}/assign")
async def assign_user(
    intervention_id: str,
    data: AssignUser,
    user: dict = Depends(require_permission("interventions.manage"))
):
    intervention, _ = await load_intervention_for_manager(intervention_id, user)

    if data.role not in ASSIGNMENT_ROLES:
        raise HTTPException(status_code=400, detail=f"Rôle d'assignation invalide. Valides: {ASSIGNMENT_ROLES}")
    if is_terminal(intervention["status"]):
        raise HTTPException(status_code=400, detail="Impossible d'assigner sur une intervention clôturée ou annulée")

    target = await db.users.find_one({"id": data.user_id}, {"_id": 0, "password": 0})
    if not target:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")
    if target.get("role") != data.role and not (data.role == "gestionnaire" and target.get("role") == "admin"):
        raise HTTPException(status_code=400, detail=f"L'utilisateur n'a pas le rôle {data.role}")

    assignment = await add_assignment(
        intervention_id, data.user_id, data.role,
        assigned_by=user["id"], individual_message=data.individual_message,
    )

    if data.role == "prestataire":
        try:
            await ensure_provider_thread(intervention, data.user_id, user["id"])
        except Exception as e:
            logger.error(f"[INTERVENTION] Échec fil prestataire: {e}")
    if data.role == "locataire" and not intervention.get("tenant_id"):
        await db.interventions.update_one(
            {"id": intervention_id}, {"$set": {"tenant_id": data.user_id, "updated_at": now_iso()}}
        )

    await notify_participants(
        intervention, user, [data.user_id],
        title="Nouvelle assignation",
        message=f"Vous avez été assigné à l'intervention \"{intervention.get('title')}\"",
        type="assignment",
    )
    await log_activity(
        user, "intervention_assigned", "intervention",
        entity_id=intervention_id, entity_name=intervention.get("reference"),
        details={"user_id": data.user_id, "role": data.role}, team_id=intervention.get("team_id"),
    )
    return {"success": True, "assignment": assignment}


@router.delete("/interventions/{intervention_id}/assign/{user_id}")
async def unassign_user(
    intervention_id: str,
    user_id: str,
    user: dict = Depends(require_permission("interventions.manage"))
):
    intervention, _ = await load_intervention_for_manager(intervention_id, user)
    if not await remove_assignment(intervention_id, user_id):
        raise HTTPException(status_code=404, detail="Assignation non trouvée")

    if intervention.get("tenant_id") == user_id:
        await db.interventions.update_one(
            {"id": intervention_id}, {"$set": {"tenant_id": None, "updated_at": now_iso()}}
        )
    await log_activity(
        user, "intervention_unassigned", "intervention",
        entity_id=intervention_id, entity_name=intervention.get("reference"),
        details={"user_id": user_id}, team_id=intervention.get("team_id"),
    )
    return {"success": True}


# ==================== VALIDATION / FINALISATION ====================

@router.post("/intervention-validate-tenant")
async def validate_by_tenant(
    data: TenantValidation,
    user: dict = Depends(require_permission("interventions.validate"))
):
    """approved → cloturee_par_locataire | contested → planifiee (à refaire)"""
    if user.get("role") != "locataire":
        raise HTTPException(status_code=403, detail="Seuls les locataires peuvent valider une intervention")
    if data.validation_status not in ("approved", "contested"):
        raise HTTPException(status_code=400, detail="validationStatus (approved/contested) est requis")
    contest_reason = (data.contest_reason or "").strip()
    if data.validation_status == "contested" and not contest_reason:
        raise HTTPException(status_code=400, detail="Le motif de contestation est requis")

    intervention = await get_intervention_or_404(data.intervention_id)
    if intervention["status"] != "cloturee_par_prestataire":
        raise HTTPException(
            status_code=400,
            detail=f"L'intervention ne peut pas être validée (statut actuel: {intervention['status']})"
        )

    assignments = await get_assignments(intervention["id"])
    if user["id"] not in _tenant_ids(intervention, assignments):
        raise HTTPException(status_code=403, detail="Vous n'êtes pas le locataire assigné à cette intervention")

    approved = data.validation_status == "approved"
    parts = [f"Validation locataire: {'Approuvée' if approved else 'Contestée'}"]
    if data.tenant_comment:
        parts.append(f"Commentaire: {data.tenant_comment.strip()}")
    if not approved:
        parts.append(f"Motif contestation: {contest_reason}")
    if data.satisfaction_rating:
        parts.append(f"Note satisfaction: {data.satisfaction_rating}/5")
    parts.append(_stamp(user))

    extra = {"tenant_comment": append_comment(intervention.get("tenant_comment"), parts)}
    if approved:
        extra["tenant_validated_at"] = now_iso()
    if data.satisfaction_rating:
        extra["satisfaction_rating"] = data.satisfaction_rating

    new_status = "cloturee_par_locataire" if approved else "planifiee"
    updated = await run_transition(intervention, new_status, user, extra=extra, assignments=assignments)

    if approved:
        title = "Intervention validée par le locataire"
        message = (f"L'intervention \"{intervention.get('title')}\" a été validée par le locataire {user.get('name')}. "
                   f"Elle peut maintenant être finalisée administrativement.")
    else:
        title = "Intervention contestée par le locataire"
        message = (f"L'intervention \"{intervention.get('title')}\" a été contestée par le locataire "
                   f"{user.get('name')}. Motif: {contest_reason}")
    await notify_participants(
        updated, user,
        assigned_user_ids(assignments, "gestionnaire") + assigned_user_ids(assignments, "prestataire"),
        title=title, message=message, priority="normal" if approved else "high",
    )

    return {
        "success": True,
        "intervention": {
            "id": updated["id"],
            "status": updated["status"],
            "tenant_comment": updated["tenant_comment"],
            "updated_at": updated["updated_at"],
        },
        "validationStatus": data.validation_status,
        "message": f"Intervention {'validée' if approved else 'contestée'} avec succès",
    }


@router.post("/intervention-finalize")
async def finalize_intervention(data: InterventionFinalize, user: dict = Depends(get_current_user)):
    """cloturee_par_locataire → cloturee_par_gestionnaire (paiement, montant final)"""
    if not is_manager(user):
        raise HTTPException(status_code=403, detail="Seuls les gestionnaires peuvent finaliser les interventions")

    intervention = await get_intervention_or_404(data.intervention_id)
    if intervention["status"] != "cloturee_par_locataire":
        raise HTTPException(
            status_code=400,
            detail=f"L'intervention ne peut pas être finalisée (statut actuel: {intervention['status']})"
        )
    enforce_team_access(user, intervention.get("team_id"))

    payment_status = data.payment_status.value if data.payment_status else None
    parts = ["Finalisation administrative"]
    if data.finalization_comment:
        parts.append(f"Commentaire: {data.finalization_comment.strip()}")
    if payment_status:
        parts.append(f"Statut paiement: {PAYMENT_STATUS_LABELS.get(payment_status, payment_status)}")
    if data.final_amount is not None:
        parts.append(f"Montant final validé: {data.final_amount}€")
    if data.payment_method:
        parts.append(f"Mode de paiement: {data.payment_method}")
    if data.admin_notes:
        parts.append(f"Notes admin: {data.admin_notes.strip()}")
    parts.append(f"Finalisée par {user.get('name')} le {format_fr_datetime(datetime.now(timezone.utc))}")

    extra = {
        "manager_comment": append_comment(intervention.get("manager_comment"), parts),
        "finalized_at": now_iso(),
        "finalized_by": user["id"],
    }
    if payment_status:
        extra["payment_status"] = payment_status
    if data.final_amount is not None:
        extra["final_amount"] = data.final_amount
    if data.payment_method:
        extra["payment_method"] = data.payment_method

    assignments = await get_assignments(intervention["id"])
    updated = await run_transition(intervention, "cloturee_par_gestionnaire", user, extra=extra, assignments=assignments)

    paid = payment_status in ("paid", "approved")
    await notify_participants(
        updated, user, _tenant_ids(intervention, assignments),
        title="Intervention finalisée",
        message=f"L'intervention \"{intervention.get('title')}\" a été finalisée.",
        metadata={"paymentStatus": payment_status},
    )
    await notify_participants(
        updated, user, assigned_user_ids(assignments, "prestataire"),
        title="Intervention finalisée",
        message=(f"L'intervention \"{intervention.get('title')}\" a été finalisée. "
                 + ("Le paiement a été traité." if paid else "Le statut du paiement sera mis à jour prochainement.")),
        metadata={"paymentStatus": payment_status, "finalAmount": data.final_amount},
    )

    return {
        "success": True,
        "intervention": {
            "id": updated["id"],
            "status": updated["status"],
            "payment_status": updated.get("payment_status"),
            "final_amount": updated.get("final_amount"),
            "payment_method": updated.get("payment_method"),
            "finalized_at": updated["finalized_at"],
        },
        "paymentStatus": payment_status,
        "message": "Intervention finalisée avec succès",
    }
