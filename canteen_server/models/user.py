"""
User (account) data models
"""

from pydantic import BaseModel, Field
from enum import Enum
from typing import Dict, Optional
from .base import BaseEntity, TimestampMixin


class Role(str, Enum):
    """Account role"""
    ADMIN = "admin"
    PAYMENT_STAFF = "payment_staff"
    VERIFICATION_STAFF = "verification_staff"
    STUDENT = "student"
    TEACHER = "teacher"
    NORMAL_USER = "normal_user"


# Legacy numeric role codes, kept only for import/export of old records
ROLE_CODES: Dict[int, Role] = {
    0: Role.ADMIN,
    1: Role.PAYMENT_STAFF,
    2: Role.VERIFICATION_STAFF,
    3: Role.STUDENT,
    4: Role.TEACHER,
    5: Role.NORMAL_USER,
}


def role_from_code(code: int) -> Role:
    """Resolve a legacy numeric role code"""
    try:
        return ROLE_CODES[code]
    except KeyError:
        raise ValueError(f"Unknown role code: {code}")


def role_code(role: Role) -> int:
    """Numeric code of a role"""
    for code, value in ROLE_CODES.items():
        if value == role:
            return code
    raise ValueError(f"Role without code: {role}")


class UserCreate(BaseModel):
    """User creation model"""
    cin: str = Field(..., min_length=1, max_length=32, description="Citizen/student identity number")
    first_name: str = Field(..., min_length=1, max_length=100, description="First name")
    last_name: str = Field(..., min_length=1, max_length=100, description="Last name")
    email: Optional[str] = Field(None, max_length=200, description="Email")
    role: Role = Field(Role.STUDENT, description="Role")


class User(BaseEntity, TimestampMixin):
    """Full user model"""
    id: int = Field(..., description="User ID")
    cin: str = Field(..., description="Citizen/student identity number")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    email: Optional[str] = Field(None, description="Email")
    role: Role = Field(..., description="Role")
    balance: int = Field(0, description="Balance (millimes)")
    is_active: bool = Field(True, description="Whether the account is active")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class StudentInfo(BaseModel):
    """Student summary shown to staff at the counter"""
    user_id: int = Field(..., description="User ID")
    cin: str = Field(..., description="Identity number")
    full_name: str = Field(..., description="Full name")
    current_balance: int = Field(..., description="Current balance (millimes)")
    is_active: bool = Field(True, description="Whether the account is active")

    @classmethod
    def from_user(cls, user: User) -> "StudentInfo":
        return cls(
            user_id=user.id,
            cin=user.cin,
            full_name=user.full_name,
            current_balance=user.balance,
            is_active=user.is_active,
        )
