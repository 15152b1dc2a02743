"""
SEIDO - Rappels de rendez-vous d'intervention (24h + 1h)

Exécuté toutes les heures (scheduler ou GET /api/cron/intervention-reminders).
Fenêtres larges pour tolérer l'intervalle du cron:
- 24h: [now+23h, now+25h)
- 1h : [now+50min, now+70min)

Destinataires:
- tous les gestionnaires de l'équipe → notification non personnelle
- locataires / prestataires / gestionnaires assignés (hors créateur) → personnelle
Une intervention ne reçoit qu'un rappel par fenêtre (dédoublonnage sur metadata.reminderType).
"""

import logging
from datetime import datetime, timezone, timedelta
from typing import List, Dict, Any
from config import db, iso_at
from services.notifications import create_notification, team_manager_ids

logger = logging.getLogger("reminders")

REMINDER_WINDOWS = [
    {"type": "24h", "from_minutes": 23 * 60, "to_minutes": 25 * 60},
    {"type": "1h", "from_minutes": 50, "to_minutes": 70},
]


def window_bounds(now: datetime, window: dict):
    start = now + timedelta(minutes=window["from_minutes"])
    end = now + timedelta(minutes=window["to_minutes"])
    return iso_at(start), iso_at(end)


def _display_name(user: dict, fallback: str) -> str:
    full = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
    return full or user.get("name") or fallback


async def already_reminded(intervention_id: str, reminder_type: str) -> bool:
    existing = await db.notifications.find_one({
        "type": "reminder",
        "related_entity_type": "intervention",
        "related_entity_id": intervention_id,
        "metadata.reminderType": reminder_type,
    }, {"_id": 0, "id": 1})
    return existing is not None


async def _send_for_intervention(intervention: dict, reminder_type: str) -> int:
    assignments = await db.intervention_assignments.find(
        {"intervention_id": intervention["id"]}, {"_id": 0}
    ).to_list(200)
    user_ids = list({a["user_id"] for a in assignments})
    users = {}
    if user_ids:
        for u in await db.users.find({"id": {"$in": user_ids}}, {"_id": 0, "password": 0}).to_list(len(user_ids)):
            users[u["id"]] = u

    provider = next((users.get(a["user_id"]) for a in assignments if a["role"] == "prestataire"), None)
    tenant = next((users.get(a["user_id"]) for a in assignments if a["role"] == "locataire"), None)
    provider_name = _display_name(provider, "Prestataire") if provider else "Prestataire"
    tenant_name = _display_name(tenant, "Locataire") if tenant else None

    scheduled = datetime.fromisoformat(intervention["scheduled_date"])
    slot = None
    if intervention.get("selected_slot_id"):
        slot = await db.intervention_time_slots.find_one({"id": intervention["selected_slot_id"]}, {"_id": 0})
    if slot and slot.get("start_time") and slot.get("end_time"):
        time_label = f"de {slot['start_time']} à {slot['end_time']}"
    else:
        time_label = f"à {scheduled.strftime('%H:%M')}"
    date_label = scheduled.strftime("%d/%m/%Y")

    title = f"🔔 Rappel : intervention dans {reminder_type}"
    label = intervention.get("title") or intervention.get("reference")
    common = {
        "team_id": intervention.get("team_id"),
        "created_by": None,
        "type": "reminder",
        "title": title,
        "related_entity_id": intervention["id"],
    }
    count = 0

    for manager_id in await team_manager_ids(intervention.get("team_id")):
        try:
            await create_notification(
                user_id=manager_id,
                message=f"L'intervention \"{label}\" est planifiée le {date_label} {time_label}",
                metadata={
                    "reminderType": reminder_type,
                    "scheduled_date": intervention["scheduled_date"],
                    "provider_name": provider_name,
                    "tenant_name": tenant_name,
                },
                is_personal=False,
                **common,
            )
            count += 1
        except Exception as e:
            logger.error(f"[REMINDERS] Échec rappel gestionnaire={manager_id}: {e}")

    for a in assignments:
        if a["user_id"] == intervention.get("created_by"):
            continue
        role = a["role"]
        if role == "locataire":
            message = f"Votre rendez-vous avec {provider_name} est prévu le {date_label} {time_label}"
        elif role == "prestataire":
            message = f"Votre intervention \"{label}\" est prévue le {date_label} {time_label}"
        else:
            message = f"L'intervention \"{label}\" que vous suivez est prévue le {date_label} {time_label}"
        try:
            await create_notification(
                user_id=a["user_id"],
                message=message,
                metadata={
                    "reminderType": reminder_type,
                    "scheduled_date": intervention["scheduled_date"],
                    "assigned_role": role,
                },
                is_personal=True,
                **common,
            )
            count += 1
        except Exception as e:
            logger.error(f"[REMINDERS] Échec rappel user={a['user_id']}: {e}")

    return count


async def send_intervention_reminders(now: datetime = None) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    results = []

    for window in REMINDER_WINDOWS:
        start, end = window_bounds(now, window)
        interventions = await db.interventions.find(
            {"status": "planifiee", "scheduled_date": {"$gte": start, "$lt": end}},
            {"_id": 0}
        ).to_list(1000)

        if not interventions:
            logger.info(f"[REMINDERS] Aucune intervention dans la fenêtre {window['type']}")
            continue

        for intervention in interventions:
            if await already_reminded(intervention["id"], window["type"]):
                logger.info(f"[REMINDERS] Déjà envoyé intervention={intervention['id']} type={window['type']}")
                continue
            try:
                count = await _send_for_intervention(intervention, window["type"])
            except Exception as e:
                logger.error(f"[REMINDERS] Échec intervention={intervention['id']}: {e}")
                continue
            results.append({
                "interventionId": intervention["id"],
                "reminderType": window["type"],
                "inApp": count,
            })

    logger.info(f"[REMINDERS] Terminé: {len(results)} intervention(s) rappelée(s)")
    return results
