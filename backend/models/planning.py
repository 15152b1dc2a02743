"""
SEIDO - Modèles Planification (créneaux, disponibilités, réponses)
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

from .intervention import SlotInput


class SlotResponseValue(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PlanningType(str, Enum):
    DIRECT = "direct"        # date fixée par le gestionnaire
    PROPOSE = "propose"      # créneaux proposés aux participants
    ORGANIZE = "organize"    # les participants saisissent leurs disponibilités


class TimeSlotProposal(BaseModel):
    slots: List[SlotInput] = Field(..., min_length=1, max_length=20)


class SlotResponse(BaseModel):
    response: SlotResponseValue
    notes: Optional[str] = Field(None, max_length=1000)


class SelectSlot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    selected_slot: SlotInput = Field(..., alias="selectedSlot")
    comment: Optional[str] = Field(None, max_length=2000)


class UserAvailabilityInput(BaseModel):
    availabilities: List[SlotInput] = Field(default_factory=list, max_length=50)


class ScheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intervention_id: str = Field(..., alias="interventionId")
    planning_type: PlanningType = Field(..., alias="planningType")
    direct_schedule: Optional[SlotInput] = Field(None, alias="directSchedule")
    proposed_slots: List[SlotInput] = Field(default_factory=list, alias="proposedSlots")
    internal_comment: Optional[str] = Field(None, alias="internalComment", max_length=2000)
