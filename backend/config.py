"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone, timedelta
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'seido')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Application
CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
APP_URL = os.environ.get('APP_URL', 'https://seido.app')
SESSION_DAYS = int(os.environ.get('SESSION_DAYS', '7'))
CRON_SECRET = os.environ.get('CRON_SECRET', '')
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() in ('1', 'true', 'yes')

# Stockage des documents d'intervention
DOCUMENTS_DIR = Path(os.environ.get('DOCUMENTS_DIR', str(ROOT_DIR / 'storage' / 'documents')))


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

def iso_at(dt: datetime) -> str:
    """
    Sérialise une date au format stocké en base.
    Secondes pleines + offset UTC pour que les comparaisons de chaînes
    ($gte / $lt) restent chronologiques.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()

def session_expiry() -> str:
    """Date d'expiration d'une nouvelle session"""
    return iso_at(datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS))
