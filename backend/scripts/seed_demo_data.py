"""
SEIDO - Seed Demo Data (dev/staging only)
Creates one team with a building, two lots and 5 test accounts
(admin, 2 gestionnaires, prestataire, locataire) with predictable credentials.
Run: python scripts/seed_demo_data.py
Reset: python scripts/seed_demo_data.py --reset
"""

import asyncio
import os
import sys
import uuid

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient  # noqa: E402

from config import MONGO_URL, DB_NAME, hash_password, now_iso  # noqa: E402
from services.permissions import get_preset_permissions  # noqa: E402

# Same password for all test accounts
TEST_PASSWORD = "SeidoTest2026!"

DEMO_TEAM_ID = "demo-team"
DEMO_BUILDING_ID = "demo-building"

TEST_USERS = [
    {"email": "admin@test.local",        "name": "Admin Seido",     "role": "admin"},
    {"email": "gestionnaire@test.local", "name": "Marie Gestion",   "role": "gestionnaire"},
    {"email": "gestionnaire2@test.local", "name": "Hugo Gestion",   "role": "gestionnaire"},
    {"email": "prestataire@test.local",  "name": "Paul Plombier",   "role": "prestataire"},
    {"email": "locataire@test.local",    "name": "Lucie Locataire", "role": "locataire"},
]

DEMO_LOTS = [
    {"id": "demo-lot-a101", "reference": "A-101", "floor": 1},
    {"id": "demo-lot-a202", "reference": "A-202", "floor": 2},
]


async def reset(db):
    """Delete all test.local users and the demo portfolio"""
    users = await db.users.find({"email": {"$regex": "@test\\.local$"}}, {"_id": 0, "id": 1}).to_list(100)
    user_ids = [u["id"] for u in users]
    result = await db.users.delete_many({"id": {"$in": user_ids}})
    await db.sessions.delete_many({"user_id": {"$in": user_ids}})
    await db.lot_contacts.delete_many({"lot_id": {"$in": [lot["id"] for lot in DEMO_LOTS]}})
    await db.lots.delete_many({"team_id": DEMO_TEAM_ID})
    await db.buildings.delete_many({"team_id": DEMO_TEAM_ID})
    await db.teams.delete_many({"id": DEMO_TEAM_ID})
    print(f"Deleted {result.deleted_count} test users and the demo portfolio")


async def seed(db):
    """Create/update the demo team, portfolio and test users"""
    now = now_iso()
    await db.teams.update_one(
        {"id": DEMO_TEAM_ID},
        {"$set": {"name": "Agence Démo", "description": "Équipe de démonstration"},
         "$setOnInsert": {"id": DEMO_TEAM_ID, "created_at": now}},
        upsert=True,
    )
    await db.buildings.update_one(
        {"id": DEMO_BUILDING_ID},
        {"$set": {"name": "Résidence des Tilleuls", "address": "12 rue des Tilleuls",
                  "postal_code": "69003", "city": "Lyon", "team_id": DEMO_TEAM_ID, "updated_at": now},
         "$setOnInsert": {"id": DEMO_BUILDING_ID, "created_at": now}},
        upsert=True,
    )
    for lot in DEMO_LOTS:
        await db.lots.update_one(
            {"id": lot["id"]},
            {"$set": {"reference": lot["reference"], "floor": lot["floor"], "category": "appartement",
                      "building_id": DEMO_BUILDING_ID, "team_id": DEMO_TEAM_ID, "updated_at": now},
             "$setOnInsert": {"id": lot["id"], "created_at": now}},
            upsert=True,
        )

    ids = {}
    for u in TEST_USERS:
        existing = await db.users.find_one({"email": u["email"]}, {"_id": 0, "id": 1})
        doc = {
            "email": u["email"],
            "password": hash_password(TEST_PASSWORD),
            "name": u["name"],
            "first_name": u["name"].split(" ")[0],
            "last_name": " ".join(u["name"].split(" ")[1:]),
            "role": u["role"],
            "team_id": None if u["role"] == "admin" else DEMO_TEAM_ID,
            "permissions": get_preset_permissions(u["role"]),
            "is_active": True,
        }
        if existing:
            await db.users.update_one({"email": u["email"]}, {"$set": doc})
            ids[u["email"]] = existing["id"]
            print(f"  Updated: {u['email']} ({u['role']})")
        else:
            doc["id"] = str(uuid.uuid4())
            doc["created_at"] = now
            await db.users.insert_one(doc)
            ids[u["email"]] = doc["id"]
            print(f"  Created: {u['email']} ({u['role']})")

    tenant_id = ids["locataire@test.local"]
    await db.lot_contacts.update_one(
        {"lot_id": DEMO_LOTS[0]["id"], "user_id": tenant_id},
        {"$set": {"is_primary": True, "end_date": None},
         "$setOnInsert": {"id": str(uuid.uuid4()), "start_date": now[:10], "created_at": now}},
        upsert=True,
    )
    print(f"  Tenant attached to lot {DEMO_LOTS[0]['reference']}")


async def main():
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    if "--reset" in sys.argv:
        await reset(db)
        print("Reset complete. Run without --reset to re-seed.")
    else:
        await reset(db)
        await seed(db)
        print(f"\n{len(TEST_USERS)} test users seeded. Password for all: {TEST_PASSWORD}")
        print("Reset: python scripts/seed_demo_data.py --reset")

    client.close()


if __name__ == "__main__":
    asyncio.run(main())
