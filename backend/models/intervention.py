"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Modèle Intervention                                                 ║
║                                                                              ║
║  CYCLE DE VIE (11 statuts):                                                  ║
║  demande → approuvee → (demande_de_devis) → planification → planifiee        ║
║  → en_cours → cloturee_par_prestataire → cloturee_par_locataire              ║
║  → cloturee_par_gestionnaire                                                 ║
║  Sorties: rejetee (depuis demande), annulee (avant clôture)                  ║
║                                                                              ║
║  Les routes historiques (create-manager-intervention, validate-tenant,       ║
║  finalize) acceptent le camelCase du front ET le snake_case.                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from enum import Enum
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class InterventionStatus(str, Enum):
    DEMANDE = "demande"
    REJETEE = "rejetee"
    APPROUVEE = "approuvee"
    DEMANDE_DE_DEVIS = "demande_de_devis"
    PLANIFICATION = "planification"
    PLANIFIEE = "planifiee"
    EN_COURS = "en_cours"
    CLOTUREE_PAR_PRESTATAIRE = "cloturee_par_prestataire"
    CLOTUREE_PAR_LOCATAIRE = "cloturee_par_locataire"
    CLOTUREE_PAR_GESTIONNAIRE = "cloturee_par_gestionnaire"
    ANNULEE = "annulee"


class InterventionType(str, Enum):
    PLOMBERIE = "plomberie"
    ELECTRICITE = "electricite"
    CHAUFFAGE = "chauffage"
    SERRURERIE = "serrurerie"
    PEINTURE = "peinture"
    MENAGE = "menage"
    JARDINAGE = "jardinage"
    AUTRE = "autre"


class InterventionUrgency(str, Enum):
    BASSE = "basse"
    NORMALE = "normale"
    HAUTE = "haute"
    URGENTE = "urgente"


class SchedulingType(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    FLEXIBLE = "flexible"
    SLOTS = "slots"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    DISPUTED = "disputed"


VALID_STATUSES = [s.value for s in InterventionStatus]
ASSIGNMENT_ROLES = ["gestionnaire", "prestataire", "locataire"]

_SHORT_HOUR_RE = re.compile(r"^[0-9]:[0-5][0-9]$")


def pad_hour(value):
    """Heure sur un chiffre (9:30) complétée en 09:30, le reste est validé plus loin"""
    if isinstance(value, str):
        value = value.strip()
        if _SHORT_HOUR_RE.match(value):
            return "0" + value
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ==================== CRÉATION ====================

class FixedDateTime(BaseModel):
    date: Optional[str] = None   # YYYY-MM-DD
    time: Optional[str] = None   # HH:MM

    @field_validator("time")
    @classmethod
    def normalize_time(cls, v):
        return pad_hour(v)


class SlotInput(_CamelModel):
    date: Optional[str] = None
    start_time: Optional[str] = Field(None, alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v):
        return pad_hour(v)


class TenantInterventionCreate(BaseModel):
    """Demande d'intervention par un locataire (statut initial: demande)"""
    lot_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    type: Optional[str] = None
    urgency: Optional[str] = None
    team_id: Optional[str] = None


class ManagerInterventionCreate(_CamelModel):
    """Création d'intervention par un gestionnaire (wizard complet)"""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    urgency: Optional[str] = "normale"
    location: Optional[str] = None

    selected_building_id: Optional[str] = Field(None, alias="selectedBuildingId")
    selected_lot_id: Optional[str] = Field(None, alias="selectedLotId")

    selected_manager_ids: List[str] = Field(default_factory=list, alias="selectedManagerIds")
    selected_provider_ids: List[str] = Field(default_factory=list, alias="selectedProviderIds")

    scheduling_type: Optional[SchedulingType] = Field(None, alias="schedulingType")
    fixed_date_time: Optional[FixedDateTime] = Field(None, alias="fixedDateTime")
    time_slots: List[SlotInput] = Field(default_factory=list, alias="timeSlots")
    manager_availabilities: List[SlotInput] = Field(default_factory=list, alias="managerAvailabilities")

    message_type: Optional[str] = Field(None, alias="messageType")
    global_message: Optional[str] = Field(None, alias="globalMessage")
    individual_messages: Dict[str, str] = Field(default_factory=dict, alias="individualMessages")

    expects_quote: bool = Field(False, alias="expectsQuote")
    team_id: Optional[str] = Field(None, alias="teamId")


# ==================== ACTIONS DE STATUT ====================

class ApproveAction(BaseModel):
    comment: Optional[str] = Field(None, max_length=2000)


class ReasonAction(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)

    @model_validator(mode="after")
    def strip_reason(self):
        self.reason = self.reason.strip()
        if not self.reason:
            raise ValueError("Le motif est requis")
        return self


class CompleteAction(BaseModel):
    report: Optional[str] = Field(None, max_length=5000)


class AssignUser(BaseModel):
    user_id: str
    role: str
    individual_message: Optional[str] = None


class TenantValidation(_CamelModel):
    intervention_id: str = Field(..., alias="interventionId")
    validation_status: str = Field(..., alias="validationStatus")  # approved | contested
    contest_reason: Optional[str] = Field(None, alias="contestReason")
    tenant_comment: Optional[str] = Field(None, alias="tenantComment", max_length=2000)
    satisfaction_rating: Optional[int] = Field(None, alias="satisfactionRating", ge=1, le=5)


class InterventionFinalize(_CamelModel):
    intervention_id: str = Field(..., alias="interventionId")
    finalization_comment: Optional[str] = Field(None, alias="finalizationComment", max_length=5000)
    payment_status: Optional[PaymentStatus] = Field(None, alias="paymentStatus")
    final_amount: Optional[float] = Field(None, alias="finalAmount", gt=0, le=1_000_000)
    payment_method: Optional[str] = Field(None, alias="paymentMethod", max_length=100)
    admin_notes: Optional[str] = Field(None, alias="adminNotes", max_length=2000)
