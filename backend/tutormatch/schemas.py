"""Pydantic request schemas used by the controllers.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests.
"""

from pydantic import BaseModel, Field
from typing import Literal, Optional

Role = Literal["admin", "staff"]


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class AccountIn(BaseModel):
    """Payload for creating an account.

    `username` may be left out when the URL names the account.
    """
    username: Optional[str] = Field(default=None, min_length=1, max_length=64)
    password: str = Field(min_length=6)
    role: Role = "staff"
    branch: Optional[str] = None


class PasswordUpdateIn(BaseModel):
    """The signed-in user's current password and the replacement."""
    current_password: str
    new_password: str = Field(min_length=6)


class RoleUpdateIn(BaseModel):
    username: str
    role: Role


class BranchUpdateIn(BaseModel):
    username: str
    branch: Optional[str] = None


class PersonIn(BaseModel):
    """Shared fields for tutor and student creation."""
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    branch: Optional[str] = None


class TutorIn(PersonIn):
    pass


class StudentIn(PersonIn):
    pass


class MatchIn(BaseModel):
    """Tutor/student pair for creating or updating a match."""
    tutor_id: int
    student_id: int
