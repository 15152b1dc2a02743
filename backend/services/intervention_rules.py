"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Règles métier de création d'intervention                            ║
║                                                                              ║
║  STATUT INITIAL (création par gestionnaire):                                 ║
║  CAS 1: prestataires assignés + devis requis        → demande_de_devis       ║
║  CAS 2: pas de locataire + seul gestionnaire + pas de prestataire            ║
║         + date/heure fixe                           → planifiee              ║
║  CAS 3: tous les autres cas                         → planification          ║
║                                                                              ║
║  Création par locataire: TOUJOURS "demande"                                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
import random
import string
from datetime import datetime, date as date_cls, timezone
from typing import Optional, List

from config import iso_at
from models.intervention import InterventionType, InterventionUrgency

TYPE_MAPPING = {
    "maintenance": "autre",
    "plumbing": "plomberie",
    "electrical": "electricite",
    "heating": "chauffage",
    "locksmith": "serrurerie",
    "painting": "peinture",
    "cleaning": "menage",
    "gardening": "jardinage",
    "other": "autre",
}
# Valeurs déjà correctes
TYPE_MAPPING.update({t.value: t.value for t in InterventionType})

URGENCY_MAPPING = {
    "low": "basse",
    "medium": "normale",
    "high": "haute",
    "urgent": "urgente",
    "critique": "urgente",
}
URGENCY_MAPPING.update({u.value: u.value for u in InterventionUrgency})

REFERENCE_ALPHABET = string.digits + string.ascii_uppercase

# Heures toujours sur deux chiffres (les dates stockées sont comparées en chaînes)
TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")


def map_intervention_type(value: Optional[str]) -> str:
    return TYPE_MAPPING.get((value or "").strip().lower(), InterventionType.AUTRE.value)


def map_urgency(value: Optional[str]) -> str:
    return URGENCY_MAPPING.get((value or "").strip().lower(), InterventionUrgency.NORMALE.value)


def generate_reference(now: datetime = None) -> str:
    """INT-YYMMDD-XXXX (4 caractères base 36 en majuscules)"""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(random.choice(REFERENCE_ALPHABET) for _ in range(4))
    return f"INT-{now.strftime('%y%m%d')}-{suffix}"


def sanitize_id(value) -> Optional[str]:
    """Les IDs peuvent arriver sous forme 'undefined' / 'null' depuis le front"""
    if value is None:
        return None
    value = str(value).strip()
    if not value or value in ("undefined", "null"):
        return None
    return value


def is_valid_time(value: Optional[str]) -> bool:
    return bool(value) and bool(TIME_RE.match(value))


def parse_date(value: Optional[str]) -> Optional[date_cls]:
    try:
        return date_cls.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return None


def scheduled_iso(date_value: str, time_value: str) -> str:
    """Date YYYY-MM-DD + heure HH:MM → scheduled_date ISO UTC"""
    return iso_at(datetime.fromisoformat(f"{parse_date(date_value).isoformat()}T{time_value}"))


def has_fixed_datetime(scheduling_type: Optional[str], fixed_date_time) -> bool:
    if scheduling_type != "fixed" or fixed_date_time is None:
        return False
    return bool(getattr(fixed_date_time, "date", None) and getattr(fixed_date_time, "time", None))


def is_valid_fixed_datetime(fixed_date_time) -> bool:
    return parse_date(fixed_date_time.date) is not None and is_valid_time(fixed_date_time.time)


def fixed_scheduled_date(scheduling_type: Optional[str], fixed_date_time) -> Optional[str]:
    if not has_fixed_datetime(scheduling_type, fixed_date_time):
        return None
    if not is_valid_fixed_datetime(fixed_date_time):
        return None
    return scheduled_iso(fixed_date_time.date, fixed_date_time.time)


def determine_manager_creation_status(
    provider_ids: List[str],
    expects_quote: bool,
    tenant_id: Optional[str],
    manager_ids: List[str],
    scheduling_type: Optional[str],
    fixed_date_time=None,
) -> str:
    """Arbre de décision du statut initial d'une intervention créée par un gestionnaire."""
    has_providers = bool(provider_ids)

    if has_providers and expects_quote:
        return "demande_de_devis"

    if (
        not tenant_id
        and len(manager_ids) == 1
        and not has_providers
        and has_fixed_datetime(scheduling_type, fixed_date_time)
    ):
        return "planifiee"

    return "planification"


def build_manager_comment(
    building_id: Optional[str],
    lot_id: Optional[str],
    location: Optional[str],
    expects_quote: bool,
    global_message: Optional[str],
    scheduling_type: Optional[str],
    time_slot_count: int = 0,
) -> Optional[str]:
    parts = []
    if building_id and not lot_id:
        parts.append("Intervention sur bâtiment entier")
    if location:
        parts.append(f"Localisation: {location}")
    if expects_quote:
        parts.append("Devis requis")
    if global_message:
        parts.append(f"Instructions: {global_message}")
    if scheduling_type == "flexible":
        parts.append("Horaire flexible")
    if scheduling_type == "slots":
        parts.append(f"{time_slot_count} créneaux proposés")
    return " | ".join(parts) if parts else None


def append_comment(existing: Optional[str], parts: List[str]) -> str:
    """Concatène des commentaires horodatés séparés par ' | '"""
    existing = existing or ""
    addition = " | ".join(p for p in parts if p)
    return existing + (" | " if existing and addition else "") + addition


def format_fr_datetime(dt: datetime) -> str:
    return dt.strftime("%d/%m/%Y à %H:%M")
