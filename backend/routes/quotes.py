"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Routes Devis                                                        ║
║                                                                              ║
║  Demandes de devis (gestionnaire → prestataires) et devis chiffrés           ║
║  (prestataire → gestionnaire).                                               ║
║                                                                              ║
║  Une demande envoyée sur une intervention "approuvee" la fait passer         ║
║  en "demande_de_devis". L'approbation d'un devis la fait passer en           ║
║  "planification" et rejette les autres devis en attente.                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from config import db, now_iso
from models import QuoteRequestCreate, QuoteRequestUpdate, QuoteSubmit, QuoteApprove, QuoteReject
from routes.auth import get_current_user
from routes.interventions import (
    get_intervention_or_404,
    load_intervention_for_user,
    load_intervention_for_manager,
    run_transition,
    notify_participants,
)
from services.activity_logger import log_activity
from services.assignments import add_assignment
from services.conversations import ensure_provider_thread
from services.intervention_state_machine import (
    InterventionTransitionError,
    InterventionPermissionError,
)
from services.permissions import require_permission, is_manager, same_team, build_team_filter, assigned_user_ids
from services.quotes import (
    QuoteRequestError,
    get_eligible_providers,
    create_quote_request,
    mark_request_viewed,
    build_request_update,
    submit_quote,
    approve_quote,
    reject_quote,
)

logger = logging.getLogger("quotes")

router = APIRouter(tags=["Devis"])

QUOTE_REQUEST_STATUSES = ["approuvee", "demande_de_devis"]
UPDATE_MESSAGES = {
    "cancel": "Demande de devis annulée",
    "resend": "Demande de devis renvoyée",
}


async def _get_quote_request_or_404(request_id: str) -> dict:
    quote_request = await db.quote_requests.find_one({"id": request_id}, {"_id": 0})
    if not quote_request:
        raise HTTPException(status_code=404, detail="Demande de devis non trouvée")
    return quote_request


async def _get_quote_or_404(quote_id: str) -> dict:
    quote = await db.intervention_quotes.find_one({"id": quote_id}, {"_id": 0})
    if not quote:
        raise HTTPException(status_code=404, detail="Devis non trouvé")
    return quote


def _require_team_manager(user: dict, team_id: Optional[str], detail: str):
    if not is_manager(user) or not same_team(user, team_id):
        raise HTTPException(status_code=403, detail=detail)


# ==================== DEMANDES DE DEVIS ====================

@router.post("/intervention-quote-request")
async def request_quotes(
    data: QuoteRequestCreate,
    user: dict = Depends(require_permission("quotes.request"))
):
    """
    Envoie une demande de devis à un ou plusieurs prestataires.
    Les prestataires ayant déjà une demande active ou un devis en cours sont ignorés.
    """
    provider_ids = data.target_provider_ids()
    if not data.intervention_id or not provider_ids:
        raise HTTPException(status_code=400, detail="interventionId et au moins un prestataire sont requis")

    intervention, assignments = await load_intervention_for_manager(data.intervention_id, user)
    if intervention["status"] not in QUOTE_REQUEST_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Impossible de demander un devis: statut actuel \"{intervention['status']}\""
        )

    users = await db.users.find(
        {"id": {"$in": provider_ids}}, {"_id": 0, "password": 0}
    ).to_list(len(provider_ids))
    by_id = {u["id"]: u for u in users}

    missing = [pid for pid in provider_ids if pid not in by_id]
    if missing:
        raise HTTPException(status_code=404, detail=f"Prestataire(s) non trouvé(s): {', '.join(missing)}")

    not_providers = [u for u in users if u.get("role") != "prestataire"]
    if not_providers:
        raise HTTPException(
            status_code=400,
            detail=f"Les utilisateurs suivants ne sont pas des prestataires: {', '.join(u.get('name') or u['id'] for u in not_providers)}"
        )

    eligibility = await get_eligible_providers(intervention["id"], provider_ids)
    ineligible = [
        {"id": pid, "name": by_id[pid].get("name"), "reason": eligibility["ineligible_reasons"][pid]}
        for pid in eligibility["ineligible_ids"]
    ]
    if not eligibility["eligible_ids"]:
        details = ", ".join(f"{i['name']} ({i['reason']})" for i in ineligible)
        raise HTTPException(
            status_code=400,
            detail=f"Aucun prestataire éligible pour recevoir une demande de devis. {details}"
        )

    quote_fields = {"quote_deadline": data.deadline, "quote_notes": data.additional_notes, "requires_quote": True}
    if intervention["status"] == "approuvee":
        intervention = await run_transition(
            intervention, "demande_de_devis", user, extra=quote_fields, assignments=assignments
        )
    else:
        quote_fields["updated_at"] = now_iso()
        await db.interventions.update_one({"id": intervention["id"]}, {"$set": quote_fields})
        intervention.update(quote_fields)

    created = []
    for pid in eligibility["eligible_ids"]:
        message = data.individual_messages.get(pid) or data.additional_notes
        try:
            created.append(await create_quote_request(intervention, pid, user, deadline=data.deadline, message=message))
        except Exception as e:
            logger.error(f"[QUOTES] Échec création demande provider={pid}: {e}")
            continue
        await add_assignment(intervention["id"], pid, "prestataire", assigned_by=user["id"], individual_message=message)
        try:
            await ensure_provider_thread(intervention, pid, user["id"])
        except Exception as e:
            logger.error(f"[QUOTES] Échec fil prestataire provider={pid}: {e}")

    await notify_participants(
        intervention, user, [qr["provider_id"] for qr in created],
        title="Nouvelle demande de devis",
        message=f"{user.get('name')} vous demande un devis pour l'intervention \"{intervention.get('title')}\"",
        type="quote_request",
        metadata={"deadline": data.deadline},
    )

    await log_activity(
        user, "quote_requested", "intervention",
        entity_id=intervention["id"], entity_name=intervention.get("reference"),
        details={"providers": [qr["provider_id"] for qr in created], "ineligible": [i["id"] for i in ineligible]},
        team_id=intervention.get("team_id"),
    )

    names = ", ".join(by_id[qr["provider_id"]].get("name") or qr["provider_id"] for qr in created)
    return {
        "success": True,
        "message": f"Demande de devis envoyée à {len(created)} prestataire(s) avec succès: {names}",
        "quoteRequests": created,
        "ineligibleProviders": ineligible,
        "intervention": {"id": intervention["id"], "status": intervention["status"]},
    }


@router.get("/quote-requests")
async def list_quote_requests(
    intervention_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user: dict = Depends(get_current_user)
):
    """prestataire: ses demandes | gestionnaire: demandes de l'équipe"""
    if user.get("role") == "prestataire":
        query = {"provider_id": user["id"]}
    elif is_manager(user):
        query = build_team_filter(user)
    else:
        raise HTTPException(status_code=403, detail="Accès non autorisé aux demandes de devis")
    if intervention_id:
        query["intervention_id"] = intervention_id
    if status:
        query["status"] = status

    requests = await db.quote_requests.find(query, {"_id": 0}).sort("created_at", -1).to_list(500)
    return {"quoteRequests": requests, "count": len(requests)}


@router.get("/quote-requests/{request_id}")
async def get_quote_request(request_id: str, user: dict = Depends(get_current_user)):
    quote_request = await _get_quote_request_or_404(request_id)

    if user.get("role") == "prestataire":
        if quote_request["provider_id"] != user["id"]:
            raise HTTPException(status_code=403, detail="Vous n'êtes pas autorisé à consulter cette demande de devis")
        quote_request = await mark_request_viewed(quote_request)
    elif not is_manager(user) or not same_team(user, quote_request.get("team_id")):
        raise HTTPException(status_code=403, detail="Vous n'êtes pas autorisé à consulter cette demande de devis")

    intervention = await db.interventions.find_one(
        {"id": quote_request["intervention_id"]},
        {"_id": 0, "id": 1, "reference": 1, "title": 1, "description": 1, "type": 1, "urgency": 1, "status": 1}
    )
    quote_request["intervention"] = intervention
    return {"quoteRequest": quote_request}


@router.patch("/quote-requests/{request_id}")
async def update_quote_request(request_id: str, data: QuoteRequestUpdate, user: dict = Depends(get_current_user)):
    """action=cancel | resend, sinon mise à jour de la deadline / du message"""
    quote_request = await _get_quote_request_or_404(request_id)
    _require_team_manager(user, quote_request.get("team_id"),
                          "Seuls les gestionnaires de l'équipe peuvent modifier cette demande")

    try:
        update = build_request_update(
            quote_request, data.action,
            {"deadline": data.deadline, "individual_message": data.individual_message},
        )
    except QuoteRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await db.quote_requests.update_one({"id": request_id}, {"$set": update})
    quote_request.update(update)

    if data.action == "resend":
        intervention = await get_intervention_or_404(quote_request["intervention_id"])
        await notify_participants(
            intervention, user, [quote_request["provider_id"]],
            title="Demande de devis renvoyée",
            message=f"Une demande de devis vous a été renvoyée pour l'intervention \"{intervention.get('title')}\"",
            type="quote_request",
        )

    await log_activity(
        user, f"quote_request_{data.action or 'update'}", "quote_request",
        entity_id=request_id, details={k: v for k, v in update.items() if k != "updated_at"},
        team_id=quote_request.get("team_id"),
    )
    return {
        "success": True,
        "quoteRequest": quote_request,
        "message": UPDATE_MESSAGES.get(data.action, "Demande de devis mise à jour"),
    }


@router.delete("/quote-requests/{request_id}")
async def delete_quote_request(request_id: str, user: dict = Depends(get_current_user)):
    quote_request = await _get_quote_request_or_404(request_id)
    _require_team_manager(user, quote_request.get("team_id"),
                          "Seuls les gestionnaires de l'équipe peuvent supprimer cette demande")

    if quote_request.get("status") == "responded":
        raise HTTPException(
            status_code=400,
            detail="Impossible de supprimer une demande de devis qui a reçu une réponse"
        )

    await db.quote_requests.delete_one({"id": request_id})
    await log_activity(
        user, "quote_request_deleted", "quote_request",
        entity_id=request_id, team_id=quote_request.get("team_id"),
    )
    return {"success": True, "message": "Demande de devis supprimée"}


# ==================== DEVIS ====================

@router.get("/interventions/{intervention_id}/quotes")
async def list_quotes(intervention_id: str, user: dict = Depends(get_current_user)):
    await load_intervention_for_user(intervention_id, user)
    query = {"intervention_id": intervention_id}
    if user.get("role") == "prestataire":
        query["provider_id"] = user["id"]
    elif not is_manager(user):
        query["status"] = "approved"
    quotes = await db.intervention_quotes.find(query, {"_id": 0}).sort("created_at", -1).to_list(100)
    return {"quotes": quotes, "count": len(quotes)}


@router.post("/interventions/{intervention_id}/quotes", status_code=201)
async def submit_intervention_quote(
    intervention_id: str,
    data: QuoteSubmit,
    user: dict = Depends(require_permission("quotes.submit"))
):
    if user.get("role") != "prestataire":
        raise HTTPException(status_code=403, detail="Seuls les prestataires peuvent soumettre un devis")
    intervention, assignments = await load_intervention_for_user(intervention_id, user)

    try:
        quote = await submit_quote(intervention, user, data.model_dump())
    except QuoteRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await notify_participants(
        intervention, user, assigned_user_ids(assignments, "gestionnaire"),
        title="Nouveau devis reçu",
        message=f"{user.get('name')} a soumis un devis de {data.amount}€ pour l'intervention \"{intervention.get('title')}\"",
        type="quote",
        metadata={"quoteId": quote["id"], "amount": data.amount},
    )
    await log_activity(
        user, "quote_submitted", "intervention",
        entity_id=intervention_id, entity_name=intervention.get("reference"),
        details={"quote_id": quote["id"], "amount": data.amount}, team_id=intervention.get("team_id"),
    )
    return {"success": True, "quote": quote, "message": "Devis soumis avec succès"}


@router.post("/quotes/{quote_id}/approve")
async def approve_intervention_quote(
    quote_id: str,
    data: QuoteApprove = None,
    user: dict = Depends(require_permission("quotes.decide"))
):
    quote = await _get_quote_or_404(quote_id)
    intervention, _ = await load_intervention_for_manager(quote["intervention_id"], user)

    try:
        result = await approve_quote(quote, intervention, user, notes=data.notes if data else None)
    except QuoteRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InterventionTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InterventionPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    await notify_participants(
        result["intervention"], user, [quote["provider_id"]],
        title="Devis approuvé",
        message=f"Votre devis de {quote['amount']}€ pour l'intervention \"{intervention.get('title')}\" a été approuvé",
        type="quote",
        metadata={"quoteId": quote_id},
    )
    await log_activity(
        user, "quote_approved", "intervention",
        entity_id=intervention["id"], entity_name=intervention.get("reference"),
        details={"quote_id": quote_id, "amount": quote["amount"], "rejected_count": result["rejected_count"]},
        team_id=intervention.get("team_id"),
    )
    return {"success": True, **result}


@router.post("/quotes/{quote_id}/reject")
async def reject_intervention_quote(
    quote_id: str,
    data: QuoteReject,
    user: dict = Depends(require_permission("quotes.decide"))
):
    quote = await _get_quote_or_404(quote_id)
    intervention, _ = await load_intervention_for_manager(quote["intervention_id"], user)

    try:
        updated = await reject_quote(quote, user, data.reason)
    except QuoteRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await notify_participants(
        intervention, user, [quote["provider_id"]],
        title="Devis rejeté",
        message=f"Votre devis pour l'intervention \"{intervention.get('title')}\" a été rejeté. Motif: {data.reason}",
        type="quote",
        metadata={"quoteId": quote_id},
    )
    await log_activity(
        user, "quote_rejected", "intervention",
        entity_id=intervention["id"], entity_name=intervention.get("reference"),
        details={"quote_id": quote_id, "reason": data.reason}, team_id=intervention.get("team_id"),
    )
    return {"success": True, "quote": updated}
