"""
SEIDO - API Backend
Gestion des interventions (gestionnaires, prestataires, locataires)

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import db, client, CORS_ORIGINS, SCHEDULER_ENABLED

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("seido")

# Créer l'app
app = FastAPI(
    title="SEIDO",
    description="API de gestion des interventions",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS.split(','),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import (
    auth,
    properties,
    interventions,
    quotes,
    planning,
    documents,
    conversations,
    notifications,
    cron,
    stats,
)

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(properties.router, prefix="/api")
app.include_router(interventions.router, prefix="/api")
app.include_router(quotes.router, prefix="/api")
app.include_router(planning.router, prefix="/api")
app.include_router(documents.router, prefix="/api")
app.include_router(conversations.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(cron.router, prefix="/api")
app.include_router(stats.router, prefix="/api")

# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "SEIDO API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("🚀 SEIDO API démarrée")

    await db.users.create_index("email", unique=True)
    await db.users.create_index("team_id")
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.lots.create_index("building_id")
    await db.lot_contacts.create_index([("lot_id", 1), ("user_id", 1)])
    await db.interventions.create_index("id", unique=True)
    await db.interventions.create_index("reference")
    await db.interventions.create_index([("team_id", 1), ("status", 1)])
    await db.interventions.create_index("scheduled_date")
    await db.intervention_assignments.create_index(
        [("intervention_id", 1), ("user_id", 1), ("role", 1)], unique=True
    )
    await db.intervention_time_slots.create_index("intervention_id")
    await db.time_slot_responses.create_index([("time_slot_id", 1), ("user_id", 1)], unique=True)
    await db.user_availabilities.create_index([("intervention_id", 1), ("user_id", 1)])
    await db.quote_requests.create_index([("intervention_id", 1), ("provider_id", 1)])
    await db.intervention_quotes.create_index([("intervention_id", 1), ("status", 1)])
    await db.intervention_documents.create_index("intervention_id")
    await db.conversation_threads.create_index("intervention_id")
    await db.conversation_messages.create_index([("thread_id", 1), ("created_at", 1)])
    await db.notifications.create_index([("user_id", 1), ("is_read", 1)])
    await db.activity_logs.create_index("created_at")

    logger.info("✅ Index MongoDB créés")

    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
