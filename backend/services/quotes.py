"""
SEIDO - Devis

Éligibilité des prestataires, cycle de vie des demandes de devis
et décisions du gestionnaire sur les devis soumis.

Un prestataire n'est PAS éligible à une nouvelle demande s'il a déjà:
- une demande sent / viewed / responded sur l'intervention
- un devis pending / approved sur l'intervention
"""

import uuid
import logging
from typing import List, Dict, Optional
from config import db, now_iso
from models.quote import ACTIVE_REQUEST_STATUSES, BLOCKING_QUOTE_STATUSES
from services.intervention_state_machine import apply_transition, is_terminal

logger = logging.getLogger("quotes")

REQUEST_REASONS = {
    "sent": "a déjà une demande de devis en attente",
    "viewed": "a déjà consulté une demande de devis",
    "responded": "a déjà répondu à une demande de devis",
}

QUOTE_REASONS = {
    "pending": "a déjà un devis en attente",
    "approved": "a déjà un devis approuvé",
}

RESENDABLE_STATUSES = ["cancelled", "expired"]


class QuoteRequestError(Exception):
    """Opération sur demande de devis / devis refusée (→ 400)"""
    pass


def compute_eligibility(
    requested_ids: List[str],
    existing_requests: List[dict],
    existing_quotes: List[dict],
) -> Dict[str, object]:
    ineligible: Dict[str, str] = {}

    for req in existing_requests:
        if req.get("status") in ACTIVE_REQUEST_STATUSES:
            ineligible[req["provider_id"]] = REQUEST_REASONS[req["status"]]

    for quote in existing_quotes:
        pid = quote.get("provider_id")
        if pid in ineligible:
            continue
        if quote.get("status") in BLOCKING_QUOTE_STATUSES:
            ineligible[pid] = QUOTE_REASONS[quote["status"]]

    eligible = [pid for pid in requested_ids if pid not in ineligible]
    return {
        "eligible_ids": eligible,
        "ineligible_ids": [pid for pid in requested_ids if pid in ineligible],
        "ineligible_reasons": {pid: r for pid, r in ineligible.items() if pid in requested_ids},
    }


async def get_eligible_providers(intervention_id: str, requested_ids: List[str]) -> Dict[str, object]:
    query = {"intervention_id": intervention_id, "provider_id": {"$in": requested_ids}}
    requests = await db.quote_requests.find(query, {"_id": 0, "provider_id": 1, "status": 1}).to_list(500)
    quotes = await db.intervention_quotes.find(query, {"_id": 0, "provider_id": 1, "status": 1}).to_list(500)

    result = compute_eligibility(requested_ids, requests, quotes)
    logger.info(
        f"[QUOTES] Éligibilité intervention={intervention_id} "
        f"demandés={len(requested_ids)} éligibles={len(result['eligible_ids'])}"
    )
    return result


# ==================== DEMANDES ====================

async def create_quote_request(
    intervention: dict,
    provider_id: str,
    created_by: dict,
    deadline: Optional[str] = None,
    message: Optional[str] = None,
) -> dict:
    now = now_iso()
    doc = {
        "id": str(uuid.uuid4()),
        "intervention_id": intervention["id"],
        "team_id": intervention.get("team_id"),
        "provider_id": provider_id,
        "status": "sent",
        "individual_message": message,
        "deadline": deadline,
        "sent_at": now,
        "viewed_at": None,
        "responded_at": None,
        "created_by": created_by.get("id"),
        "created_at": now,
        "updated_at": now,
    }
    await db.quote_requests.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def mark_request_viewed(quote_request: dict) -> dict:
    if quote_request.get("status") != "sent":
        return quote_request
    now = now_iso()
    await db.quote_requests.update_one(
        {"id": quote_request["id"], "status": "sent"},
        {"$set": {"status": "viewed", "viewed_at": now, "updated_at": now}}
    )
    return dict(quote_request, status="viewed", viewed_at=now, updated_at=now)


def build_request_update(quote_request: dict, action: Optional[str], fields: dict) -> dict:
    """Champs à mettre à jour pour PATCH (cancel / resend / mise à jour libre)"""
    now = now_iso()
    if action == "cancel":
        if quote_request.get("status") == "cancelled":
            raise QuoteRequestError("Cette demande de devis est déjà annulée")
        return {"status": "cancelled", "updated_at": now}
    if action == "resend":
        if quote_request.get("status") not in RESENDABLE_STATUSES:
            raise QuoteRequestError("Seules les demandes annulées ou expirées peuvent être renvoyées")
        return {
            "status": "sent",
            "sent_at": now,
            "viewed_at": None,
            "responded_at": None,
            "updated_at": now,
        }
    if action:
        raise QuoteRequestError(f"Action inconnue: {action}")
    update = {k: v for k, v in fields.items() if v is not None}
    update["updated_at"] = now
    return update


# ==================== DEVIS ====================

async def submit_quote(intervention: dict, provider: dict, data: dict) -> dict:
    """
    Soumission d'un devis par un prestataire.
    La demande associée passe en "responded".
    """
    if intervention.get("status") not in ("demande_de_devis", "approuvee", "planification"):
        raise QuoteRequestError(
            f"Un devis ne peut pas être soumis au statut '{intervention.get('status')}'"
        )

    query = {"intervention_id": intervention["id"], "provider_id": provider["id"]}
    if data.get("quote_request_id"):
        query["id"] = data["quote_request_id"]
    quote_request = await db.quote_requests.find_one(
        dict(query, status={"$in": ["sent", "viewed"]}), {"_id": 0}
    )
    if not quote_request:
        raise QuoteRequestError("Aucune demande de devis en attente pour ce prestataire")

    existing = await db.intervention_quotes.find_one(
        {"intervention_id": intervention["id"], "provider_id": provider["id"], "status": "pending"},
        {"_id": 0, "id": 1}
    )
    if existing:
        raise QuoteRequestError("Un devis est déjà en attente pour ce prestataire")

    now = now_iso()
    quote = {
        "id": str(uuid.uuid4()),
        "intervention_id": intervention["id"],
        "team_id": intervention.get("team_id"),
        "provider_id": provider["id"],
        "quote_request_id": quote_request["id"],
        "amount": data["amount"],
        "description": data["description"],
        "valid_until": data.get("valid_until"),
        "estimated_duration": data.get("estimated_duration"),
        "status": "pending",
        "submitted_at": now,
        "reviewed_at": None,
        "reviewed_by": None,
        "review_comments": None,
        "rejection_reason": None,
        "created_at": now,
        "updated_at": now,
    }
    await db.intervention_quotes.insert_one(quote)
    quote.pop("_id", None)

    await db.quote_requests.update_one(
        {"id": quote_request["id"]},
        {"$set": {"status": "responded", "responded_at": now, "updated_at": now}}
    )
    logger.info(f"[QUOTES] Devis soumis intervention={intervention['id']} provider={provider['id']} amount={data['amount']}")
    return quote


async def approve_quote(quote: dict, intervention: dict, user: dict, notes: Optional[str] = None) -> dict:
    """
    Approuve un devis:
    - les autres devis pending de l'intervention sont rejetés
    - estimated_cost de l'intervention = montant du devis
    - demande_de_devis → planification
    """
    if quote.get("status") != "pending":
        raise QuoteRequestError("Seuls les devis en attente peuvent être approuvés")
    if is_terminal(intervention.get("status")):
        raise QuoteRequestError(
            f"Impossible d'approuver un devis: intervention au statut \"{intervention.get('status')}\""
        )

    # Transition avant toute écriture sur les devis
    now = now_iso()
    extra = {"estimated_cost": quote["amount"]}
    if intervention.get("status") == "demande_de_devis":
        updated = await apply_transition(intervention, "planification", user, extra=extra)
    else:
        extra["updated_at"] = now
        await db.interventions.update_one({"id": intervention["id"]}, {"$set": extra})
        updated = dict(intervention, **extra)

    await db.intervention_quotes.update_one(
        {"id": quote["id"]},
        {"$set": {
            "status": "approved",
            "reviewed_at": now,
            "reviewed_by": user.get("id"),
            "review_comments": notes,
            "updated_at": now,
        }}
    )
    rejected = await db.intervention_quotes.update_many(
        {"intervention_id": intervention["id"], "status": "pending", "id": {"$ne": quote["id"]}},
        {"$set": {
            "status": "rejected",
            "rejection_reason": "Un autre devis a été approuvé",
            "reviewed_at": now,
            "reviewed_by": user.get("id"),
            "updated_at": now,
        }}
    )

    logger.info(
        f"[QUOTES] Devis approuvé quote={quote['id']} intervention={intervention['id']} "
        f"autres_rejetés={rejected.modified_count}"
    )
    return {
        "quote": dict(quote, status="approved", reviewed_at=now, reviewed_by=user.get("id"), review_comments=notes),
        "intervention": updated,
        "rejected_count": rejected.modified_count,
    }


async def reject_quote(quote: dict, user: dict, reason: str) -> dict:
    if quote.get("status") != "pending":
        raise QuoteRequestError("Seuls les devis en attente peuvent être rejetés")
    now = now_iso()
    update = {
        "status": "rejected",
        "rejection_reason": reason,
        "reviewed_at": now,
        "reviewed_by": user.get("id"),
        "updated_at": now,
    }
    await db.intervention_quotes.update_one({"id": quote["id"]}, {"$set": update})
    logger.info(f"[QUOTES] Devis rejeté quote={quote['id']}")
    return dict(quote, **update)
