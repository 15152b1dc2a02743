"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Intervention State Machine                                          ║
║                                                                              ║
║  RÈGLES STRICTES DE TRANSITION DE STATUT                                     ║
║                                                                              ║
║  Toute modification de "status" d'une intervention passe par                 ║
║  apply_transition() (sauf la création).                                      ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - rejetee / annulee / cloturee_par_gestionnaire sont TERMINAUX              ║
║  - en_cours / cloturee_par_prestataire IMPLIQUE un prestataire assigné       ║
║  - cloturee_par_locataire: seul un locataire assigné peut valider            ║
║  - chaque transition est journalisée dans activity_logs                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Dict, Any, List, Optional
from config import db, now_iso
from services.activity_logger import log_activity
from services.permissions import assigned_user_ids

logger = logging.getLogger("intervention_state_machine")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_TRANSITIONS = {
    "demande": ["rejetee", "approuvee"],
    "rejetee": [],  # TERMINAL
    "approuvee": ["demande_de_devis", "planification", "annulee"],
    "demande_de_devis": ["planification", "annulee"],
    "planification": ["planifiee", "annulee"],
    "planifiee": ["en_cours", "annulee"],
    "en_cours": ["cloturee_par_prestataire", "annulee"],
    "cloturee_par_prestataire": ["cloturee_par_locataire", "planifiee"],  # contestation -> replanifier
    "cloturee_par_locataire": ["cloturee_par_gestionnaire"],
    "cloturee_par_gestionnaire": [],  # TERMINAL
    "annulee": [],  # TERMINAL
}

TERMINAL_STATUSES = [s for s, nxt in VALID_TRANSITIONS.items() if not nxt]

# Rôles autorisés à faire ENTRER une intervention dans un statut
TRANSITION_ROLES = {
    "approuvee": ["gestionnaire", "admin"],
    "rejetee": ["gestionnaire", "admin"],
    "demande_de_devis": ["gestionnaire", "admin"],
    "planification": ["gestionnaire", "admin"],
    "planifiee": ["gestionnaire", "admin", "prestataire", "locataire"],
    "en_cours": ["prestataire", "gestionnaire", "admin"],
    "cloturee_par_prestataire": ["prestataire", "gestionnaire", "admin"],
    "cloturee_par_locataire": ["locataire"],
    "cloturee_par_gestionnaire": ["gestionnaire", "admin"],
    "annulee": ["gestionnaire", "admin"],
}

# Statuts qui exigent un prestataire assigné
PROVIDER_REQUIRED_STATUSES = ["en_cours", "cloturee_par_prestataire"]


class InterventionTransitionError(Exception):
    """Transition de statut interdite"""
    pass


class InterventionPermissionError(Exception):
    """Rôle non autorisé pour cette transition"""
    pass


def validate_transition(from_status: str, to_status: str) -> bool:
    valid_next = VALID_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise InterventionTransitionError(
            f"Transition invalide: '{from_status}' → '{to_status}'. "
            f"Transitions possibles: {valid_next or 'aucune (statut terminal)'}"
        )
    return True


def check_transition_role(user: dict, to_status: str) -> bool:
    allowed = TRANSITION_ROLES.get(to_status, [])
    if user.get("role") not in allowed:
        raise InterventionPermissionError(
            f"Le rôle '{user.get('role')}' ne peut pas passer une intervention en '{to_status}'"
        )
    return True


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


async def get_assignments(intervention_id: str) -> List[dict]:
    return await db.intervention_assignments.find(
        {"intervention_id": intervention_id}, {"_id": 0}
    ).to_list(200)


async def apply_transition(
    intervention: dict,
    to_status: str,
    user: dict,
    extra: Optional[Dict[str, Any]] = None,
    assignments: Optional[List[dict]] = None,
) -> dict:
    """
    🔒 Passe une intervention dans un nouveau statut.

    1. Valide la transition et le rôle
    2. Vérifie les invariants d'assignation
    3. Met à jour le document (status, updated_at, champs extra)
    4. Journalise l'activité

    Raises:
        InterventionTransitionError, InterventionPermissionError
    """
    from_status = intervention.get("status")
    intervention_id = intervention["id"]

    validate_transition(from_status, to_status)
    check_transition_role(user, to_status)

    if assignments is None:
        assignments = await get_assignments(intervention_id)

    if to_status in PROVIDER_REQUIRED_STATUSES:
        providers = assigned_user_ids(assignments, "prestataire")
        if not providers:
            raise InterventionTransitionError(
                f"Aucun prestataire assigné: impossible de passer en '{to_status}'"
            )
        if user.get("role") == "prestataire" and user.get("id") not in providers:
            raise InterventionPermissionError("Vous n'êtes pas assigné à cette intervention")

    if user.get("role") == "locataire":
        tenants = assigned_user_ids(assignments, "locataire")
        if user.get("id") not in tenants and intervention.get("tenant_id") != user.get("id"):
            raise InterventionPermissionError("Vous n'êtes pas assigné à cette intervention")

    now = now_iso()
    update = {"status": to_status, "updated_at": now}
    if extra:
        update.update(extra)

    result = await db.interventions.update_one(
        {"id": intervention_id, "status": from_status},
        {"$set": update}
    )
    if result.matched_count == 0:
        # Statut modifié entre la lecture et l'écriture
        raise InterventionTransitionError(
            f"L'intervention {intervention_id} n'est plus au statut '{from_status}'"
        )

    logger.info(
        f"[STATE_MACHINE] intervention={intervention_id} {from_status} → {to_status} "
        f"by={user.get('email')}"
    )

    await log_activity(
        user, f"intervention_{to_status}", "intervention",
        entity_id=intervention_id,
        entity_name=intervention.get("reference") or intervention.get("title"),
        details={"from_status": from_status, "to_status": to_status},
        team_id=intervention.get("team_id"),
    )

    updated = dict(intervention)
    updated.update(update)
    return updated
