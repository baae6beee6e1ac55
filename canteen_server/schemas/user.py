"""
User request/response schemas
"""

from pydantic import BaseModel, Field
from typing import Optional
from ..models.user import Role


class UserProfileResponse(BaseModel):
    """User profile"""
    user_id: int = Field(..., description="User ID")
    cin: str = Field(..., description="Identity number")
    full_name: str = Field(..., description="Full name")
    email: Optional[str] = Field(None, description="Email")
    role: Role = Field(..., description="Role")
    balance: int = Field(..., description="Balance (millimes)")
    is_active: bool = Field(..., description="Whether the account is active")


class UserStatusRequest(BaseModel):
    """Activate or deactivate an account"""
    is_active: bool = Field(..., description="New active flag")
