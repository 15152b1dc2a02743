"""
SEIDO - Statistiques du tableau de bord
"""

from datetime import datetime, timezone
from typing import Optional
from config import db, iso_at
from models.intervention import VALID_STATUSES


async def _group_count(match: dict, field: str) -> dict:
    pipeline = [
        {"$match": match},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ]
    out = {}
    async for doc in db.interventions.aggregate(pipeline):
        out[doc["_id"] or "inconnu"] = doc["count"]
    return out


async def dashboard_stats(team_id: Optional[str] = None, now: datetime = None) -> dict:
    now = now or datetime.now(timezone.utc)
    now_str = iso_at(now)
    month_start = iso_at(now.replace(day=1, hour=0, minute=0, second=0, microsecond=0))

    base = {"team_id": team_id} if team_id else {}

    total = await db.interventions.count_documents(base)
    by_status = {s: 0 for s in VALID_STATUSES}
    by_status.update(await _group_count(base, "status"))

    pending_quotes = await db.intervention_quotes.count_documents({**base, "status": "pending"})
    upcoming = await db.interventions.count_documents(
        {**base, "status": "planifiee", "scheduled_date": {"$gte": now_str}}
    )
    overdue = await db.interventions.count_documents(
        {**base, "status": "planifiee", "scheduled_date": {"$lt": now_str}}
    )
    completed_this_month = await db.interventions.count_documents(
        {**base, "status": "cloturee_par_gestionnaire", "finalized_at": {"$gte": month_start}}
    )

    return {
        "total": total,
        "by_status": by_status,
        "by_urgency": await _group_count(base, "urgency"),
        "by_type": await _group_count(base, "type"),
        "pending_quotes": pending_quotes,
        "upcoming": upcoming,
        "overdue": overdue,
        "completed_this_month": completed_this_month,
    }
