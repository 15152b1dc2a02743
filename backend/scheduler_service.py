"""
Scheduler pour les tâches automatiques SEIDO
- Rappels d'intervention (24h / 1h avant) toutes les heures
- Purge des sessions expirées chaque nuit à 3h
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Gestionnaire de tâches planifiées"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="Europe/Paris")

    def start(self):
        """Démarre le scheduler avec toutes les tâches"""
        # Rappels à chaque heure pile
        self.scheduler.add_job(
            self.send_reminders,
            CronTrigger(minute=0),
            id="intervention_reminders",
            name="Rappels d'intervention",
            replace_existing=True
        )

        # Purge des sessions expirées
        self.scheduler.add_job(
            self.purge_expired_sessions,
            CronTrigger(hour=3, minute=0),
            id="purge_sessions",
            name="Purge des sessions expirées",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Scheduler démarré avec succès")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler arrêté")

    # ==================== TÂCHES PLANIFIÉES ====================

    async def send_reminders(self):
        from services.reminders import send_intervention_reminders

        try:
            results = await send_intervention_reminders()
            logger.info(f"[SCHEDULER] Rappels envoyés: {len(results)}")
        except Exception as e:
            logger.error(f"[SCHEDULER] Erreur rappels d'intervention: {e}")

    async def purge_expired_sessions(self):
        from config import db, now_iso

        try:
            result = await db.sessions.delete_many({"expires_at": {"$lte": now_iso()}})
            logger.info(f"[SCHEDULER] Sessions expirées supprimées: {result.deleted_count}")
        except Exception as e:
            logger.error(f"[SCHEDULER] Erreur purge sessions: {e}")


task_scheduler = TaskScheduler()
