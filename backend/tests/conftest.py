"""
SEIDO - Fixtures de test

La base MongoDB est remplacée par mongomock-motor AVANT l'import des routes
et services (qui font `from config import db`).
"""

import os
import sys
import asyncio
import tempfile
import uuid

import pytest

BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, BACKEND_DIR)

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DOCUMENTS_DIR", tempfile.mkdtemp(prefix="seido-docs-"))

import config  # noqa: E402
from mongomock_motor import AsyncMongoMockClient  # noqa: E402

config.db = AsyncMongoMockClient()["seido_test"]

from fastapi.testclient import TestClient  # noqa: E402
from server import app  # noqa: E402

PASSWORD = "SeidoTest2026!"

COLLECTIONS = [
    "users", "sessions", "teams", "buildings", "lots", "lot_contacts",
    "interventions", "intervention_assignments", "intervention_time_slots",
    "time_slot_responses", "user_availabilities", "availability_matches",
    "quote_requests", "intervention_quotes", "intervention_documents",
    "conversation_threads", "conversation_messages", "notifications", "activity_logs",
]


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def auth_h(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def clean_db():
    async def wipe():
        for name in COLLECTIONS:
            await config.db[name].delete_many({})
    _db_op(wipe())
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    return config.db


def create_user(role, team_id=None, name=None, email=None):
    """Insère un utilisateur avec les permissions du rôle"""
    from services.permissions import get_preset_permissions

    user = {
        "id": str(uuid.uuid4()),
        "email": email or f"{role}_{uuid.uuid4().hex[:8]}@test.local",
        "password": config.hash_password(PASSWORD),
        "name": name or f"{role.capitalize()} Test",
        "first_name": (name or role.capitalize()).split(" ")[0],
        "role": role,
        "team_id": team_id,
        "permissions": get_preset_permissions(role),
        "is_active": True,
        "created_at": config.now_iso(),
    }
    _db_op(config.db.users.insert_one(user))
    user.pop("_id", None)
    return user


def login(client, user):
    r = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert r.status_code == 200, r.text
    return r.json()["token"]


@pytest.fixture
def world(client):
    """
    Une équipe avec immeuble, lot, gestionnaire, prestataire et locataire
    rattaché au lot. Chaque entrée expose user + headers.
    """
    team = {"id": str(uuid.uuid4()), "name": "Équipe Test", "created_at": config.now_iso()}
    _db_op(config.db.teams.insert_one(team))
    team.pop("_id", None)

    building = {"id": str(uuid.uuid4()), "name": "Résidence Test", "team_id": team["id"], "created_at": config.now_iso()}
    lot = {
        "id": str(uuid.uuid4()), "reference": "A-101", "building_id": building["id"],
        "team_id": team["id"], "created_at": config.now_iso(),
    }
    _db_op(config.db.buildings.insert_one(building))
    _db_op(config.db.lots.insert_one(lot))

    manager = create_user("gestionnaire", team["id"], name="Marie Gestion")
    provider = create_user("prestataire", team["id"], name="Paul Plombier")
    tenant = create_user("locataire", team["id"], name="Lucie Locataire")

    _db_op(config.db.lot_contacts.insert_one({
        "id": str(uuid.uuid4()), "lot_id": lot["id"], "user_id": tenant["id"],
        "is_primary": True, "start_date": "2024-01-01", "end_date": None,
        "created_at": config.now_iso(),
    }))

    return {
        "team": team,
        "building": building,
        "lot": lot,
        "manager": manager,
        "provider": provider,
        "tenant": tenant,
        "manager_h": auth_h(login(client, manager)),
        "provider_h": auth_h(login(client, provider)),
        "tenant_h": auth_h(login(client, tenant)),
    }


def future_day(days=5):
    from datetime import date, timedelta
    return (date.today() + timedelta(days=days)).isoformat()


def tenant_request(client, world, title="Fuite sous l'évier"):
    """Demande locataire → intervention au statut demande"""
    r = client.post("/api/create-intervention", headers=world["tenant_h"], json={
        "lot_id": world["lot"]["id"],
        "title": title,
        "description": "L'eau coule sous l'évier de la cuisine",
        "type": "plumbing",
        "urgency": "high",
    })
    assert r.status_code == 201, r.text
    return r.json()["intervention"]


def approved_intervention(client, world):
    intervention = tenant_request(client, world)
    r = client.post(f"/api/interventions/{intervention['id']}/approve", headers=world["manager_h"], json={})
    assert r.status_code == 200, r.text
    return r.json()["intervention"]
