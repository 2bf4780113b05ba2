"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Tutors and students are matched one to one through `Match` rows; a match
is never deleted, it is dissolved so exports keep the history.
"""

from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"

MATCH_ACTIVE = "active"
MATCH_DISSOLVED = "dissolved"


def _now():
    return datetime.now(timezone.utc)


class Account(SQLModel, table=True):
    """A staff member allowed to sign in.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: `admin` or `staff`; only admins manage accounts
    - `branch`: the office the account works for, if any
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: str = Field(default=ROLE_STAFF)
    branch: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)

    def public(self) -> dict:
        """The account as stored in the session and returned by the API."""
        return {"id": self.id, "username": self.username, "role": self.role, "branch": self.branch}


class Tutor(SQLModel, table=True):
    """A volunteer tutor. `active` is cleared when the tutor exits the program."""
    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str = Field(index=True)
    last_name: str = Field(index=True)
    email: Optional[str] = None
    phone: Optional[str] = None
    branch: Optional[str] = Field(default=None, index=True)
    active: bool = True
    created_at: datetime = Field(default_factory=_now)


class Student(SQLModel, table=True):
    """A student waiting for or working with a tutor."""
    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str = Field(index=True)
    last_name: str = Field(index=True)
    email: Optional[str] = None
    phone: Optional[str] = None
    branch: Optional[str] = Field(default=None, index=True)
    active: bool = True
    created_at: datetime = Field(default_factory=_now)


class Match(SQLModel, table=True):
    """A pairing of one tutor with one student."""
    __tablename__ = "tutor_match"
    id: Optional[int] = Field(default=None, primary_key=True)
    tutor_id: int = Field(foreign_key='tutor.id', index=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    status: str = Field(default=MATCH_ACTIVE, index=True)
    created_at: datetime = Field(default_factory=_now)
    dissolved_at: Optional[datetime] = None
