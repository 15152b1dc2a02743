"""
SEIDO - Modèles Devis

Deux objets distincts:
- quote_requests: la DEMANDE envoyée à un prestataire (sent → viewed → responded)
- intervention_quotes: le DEVIS chiffré soumis par le prestataire
  (pending → approved | rejected)
"""

from enum import Enum
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field, model_validator


class QuoteRequestStatus(str, Enum):
    SENT = "sent"
    VIEWED = "viewed"
    RESPONDED = "responded"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class QuoteStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Demande encore "en cours" côté prestataire
ACTIVE_REQUEST_STATUSES = [s.value for s in (QuoteRequestStatus.SENT, QuoteRequestStatus.VIEWED, QuoteRequestStatus.RESPONDED)]
BLOCKING_QUOTE_STATUSES = [QuoteStatus.PENDING.value, QuoteStatus.APPROVED.value]


class QuoteRequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intervention_id: str = Field(..., alias="interventionId")
    provider_id: Optional[str] = Field(None, alias="providerId")  # mono-prestataire (legacy)
    provider_ids: Optional[List[str]] = Field(None, alias="providerIds")
    deadline: Optional[str] = None
    additional_notes: Optional[str] = Field(None, alias="additionalNotes", max_length=2000)
    individual_messages: Dict[str, str] = Field(default_factory=dict, alias="individualMessages")

    def target_provider_ids(self) -> List[str]:
        if self.provider_ids:
            return list(dict.fromkeys(self.provider_ids))
        return [self.provider_id] if self.provider_id else []


class QuoteRequestUpdate(BaseModel):
    """PATCH /quote-requests/{id}: action cancel | resend, ou mise à jour libre"""
    action: Optional[str] = None
    deadline: Optional[str] = None
    individual_message: Optional[str] = Field(None, max_length=2000)


class QuoteSubmit(BaseModel):
    amount: float = Field(..., gt=0, le=1_000_000)
    description: str = Field(..., min_length=1, max_length=5000)
    valid_until: Optional[str] = None
    estimated_duration: Optional[int] = Field(None, ge=1, le=480)  # minutes
    quote_request_id: Optional[str] = None


class QuoteApprove(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class QuoteReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)

    @model_validator(mode="after")
    def strip_reason(self):
        self.reason = self.reason.strip()
        if not self.reason:
            raise ValueError("Le motif de rejet est requis")
        return self
