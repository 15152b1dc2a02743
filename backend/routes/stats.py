"""
Routes pour les statistiques du tableau de bord
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from services.permissions import require_permission
from services.stats import dashboard_stats

router = APIRouter(prefix="/stats", tags=["Statistiques"])


@router.get("/dashboard")
async def get_dashboard_stats(
    team_id: Optional[str] = Query(None),
    user: dict = Depends(require_permission("stats.view"))
):
    """
    Compteurs des interventions de l'équipe.
    admin: toutes les équipes, ou celle passée en team_id
    """
    if user.get("role") != "admin":
        team_id = user.get("team_id")
    return await dashboard_stats(team_id=team_id)
