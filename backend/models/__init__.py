"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SEIDO - Models Package                                                      ║
║                                                                              ║
║  Exporte tous les modèles pour import facile                                 ║
║  from models import InterventionStatus, ManagerInterventionCreate, etc.      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import (
    UserRole,
    VALID_ROLES,
    normalize_role,
    UserLogin,
    UserCreate,
    UserUpdate,
)

# Patrimoine
from .property import (
    TeamCreate,
    BuildingCreate,
    LotCreate,
    LotContactCreate,
)

# Intervention
from .intervention import (
    InterventionStatus,
    InterventionType,
    InterventionUrgency,
    SchedulingType,
    PaymentStatus,
    VALID_STATUSES,
    ASSIGNMENT_ROLES,
    FixedDateTime,
    SlotInput,
    TenantInterventionCreate,
    ManagerInterventionCreate,
    ApproveAction,
    ReasonAction,
    CompleteAction,
    AssignUser,
    TenantValidation,
    InterventionFinalize,
)

# Devis
from .quote import (
    QuoteRequestStatus,
    QuoteStatus,
    ACTIVE_REQUEST_STATUSES,
    BLOCKING_QUOTE_STATUSES,
    QuoteRequestCreate,
    QuoteRequestUpdate,
    QuoteSubmit,
    QuoteApprove,
    QuoteReject,
)

# Planification
from .planning import (
    SlotResponseValue,
    PlanningType,
    TimeSlotProposal,
    SlotResponse,
    SelectSlot,
    UserAvailabilityInput,
    ScheduleRequest,
)

# Conversations
from .conversation import (
    ThreadType,
    MessageCreate,
)

__all__ = [
    # Auth
    "UserRole",
    "VALID_ROLES",
    "normalize_role",
    "UserLogin",
    "UserCreate",
    "UserUpdate",
    # Patrimoine
    "TeamCreate",
    "BuildingCreate",
    "LotCreate",
    "LotContactCreate",
    # Intervention
    "InterventionStatus",
    "InterventionType",
    "InterventionUrgency",
    "SchedulingType",
    "PaymentStatus",
    "VALID_STATUSES",
    "ASSIGNMENT_ROLES",
    "FixedDateTime",
    "SlotInput",
    "TenantInterventionCreate",
    "ManagerInterventionCreate",
    "ApproveAction",
    "ReasonAction",
    "CompleteAction",
    "AssignUser",
    "TenantValidation",
    "InterventionFinalize",
    # Devis
    "QuoteRequestStatus",
    "QuoteStatus",
    "ACTIVE_REQUEST_STATUSES",
    "BLOCKING_QUOTE_STATUSES",
    "QuoteRequestCreate",
    "QuoteRequestUpdate",
    "QuoteSubmit",
    "QuoteApprove",
    "QuoteReject",
    # Planification
    "SlotResponseValue",
    "PlanningType",
    "TimeSlotProposal",
    "SlotResponse",
    "SelectSlot",
    "UserAvailabilityInput",
    "ScheduleRequest",
    # Conversations
    "ThreadType",
    "MessageCreate",
]
