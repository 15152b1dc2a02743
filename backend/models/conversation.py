"""
SEIDO - Modèles Conversations
"""

from enum import Enum
from pydantic import BaseModel, Field


class ThreadType(str, Enum):
    GROUP = "group"
    TENANT_TO_MANAGERS = "tenant_to_managers"
    PROVIDER_TO_MANAGERS = "provider_to_managers"


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
