"""
Base data models
Shared model base classes and common fields
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class TimestampMixin(BaseModel):
    """Timestamp mixin"""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BaseEntity(BaseModel):
    """Base entity model"""

    model_config = {"from_attributes": True}


class FrozenEntity(BaseModel):
    """Immutable entity, updates go through model_copy"""

    model_config = {"from_attributes": True, "frozen": True}

