"""User schemas used for registration and responses."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr


UserRole = Literal[
    "super_admin",
    "management_admin",
    "academic_coordinator",
    "teacher",
    "finance_manager",
    "support_staff",
]


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: Optional[str] = None


class UserRead(BaseModel):
    id: int
    email: EmailStr
    full_name: Optional[str] = None
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class UserRoleUpdate(BaseModel):
    role: UserRole
