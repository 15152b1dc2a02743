"""
Routes Cron
Déclenchement externe des tâches planifiées (en plus du scheduler interne).
Protégé par CRON_SECRET: header "Authorization: Bearer <secret>".
"""

from fastapi import APIRouter, HTTPException, Request
import logging

from config import CRON_SECRET
from services.reminders import send_intervention_reminders

logger = logging.getLogger("cron")

router = APIRouter(prefix="/cron", tags=["Cron"])


def _check_cron_secret(request: Request):
    if not CRON_SECRET:
        return
    if request.headers.get("authorization") != f"Bearer {CRON_SECRET}":
        logger.warning("[CRON] Appel refusé: secret invalide")
        raise HTTPException(status_code=401, detail="Non autorisé")


@router.get("/intervention-reminders")
async def run_intervention_reminders(request: Request):
    _check_cron_secret(request)
    results = await send_intervention_reminders()
    logger.info(f"[CRON] Rappels envoyés: {len(results)}")
    return {"success": True, "sent": len(results), "results": results}
