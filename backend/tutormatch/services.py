"""Business logic services used by the controllers.

Services are intentionally thin: they perform validation, execute the
small amount of domain logic the application has and persist aggregates
via repositories.
"""

import csv
import io
import logging
from typing import Iterable, List, Optional
from passlib.context import CryptContext
from sqlmodel import Session
from . import models, repositories

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

logger = logging.getLogger("tutormatch.services")


class AuthService:
    """Account related operations (register, authenticate, password changes)."""
    def __init__(self, session: Session):
        self.session = session
        self.account_repo = repositories.AccountRepository(session)

    def register(self, username: str, password: str, role: str = models.ROLE_STAFF, branch: Optional[str] = None) -> models.Account:
        """Create a new account with a hashed password.

        Raises ValueError if the username is taken.
        """
        if self.account_repo.get_by_username(username):
            raise ValueError(f"username '{username}' already exists")
        hashed = PWD_CTX.hash(password)
        account = models.Account(username=username, password_hash=hashed, role=role, branch=branch)
        return self.account_repo.create(account)

    def authenticate(self, username: str, password: str) -> Optional[models.Account]:
        """Verify credentials and return the account on success.

        Returns `None` if authentication fails.
        """
        account = self.account_repo.get_by_username(username)
        if not account:
            return None
        if not PWD_CTX.verify(password, account.password_hash):
            return None
        return account

    def change_password(self, account: models.Account, current_password: str, new_password: str) -> models.Account:
        """Replace the password after checking the current one; ValueError if it is wrong."""
        if not PWD_CTX.verify(current_password, account.password_hash):
            raise ValueError("current password is incorrect")
        account.password_hash = PWD_CTX.hash(new_password)
        return self.account_repo.save(account)

    def ensure_admin(self, username: Optional[str], password: Optional[str]) -> Optional[models.Account]:
        """Seed the bootstrap admin when no accounts exist yet."""
        if not username or not password:
            return None
        if self.account_repo.count() > 0:
            return None
        logger.info("creating bootstrap admin account '%s'", username)
        return self.register(username, password, role=models.ROLE_ADMIN)


TUTOR_COLUMNS = ["id", "first_name", "last_name", "email", "phone", "branch", "active", "created_at"]
STUDENT_COLUMNS = TUTOR_COLUMNS
MATCH_COLUMNS = ["id", "tutor_id", "tutor_name", "student_id", "student_name", "status", "created_at", "dissolved_at"]


def _to_csv(columns: List[str], rows: Iterable[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: ("" if v is None else v) for k, v in row.items()})
    return buf.getvalue()


def _full_name(person) -> str:
    if person is None:
        return ""
    return f"{person.first_name} {person.last_name}"


class ExportService:
    """Render tutors, students and matches as CSV text."""
    def __init__(self, session: Session):
        self.session = session

    def tutors_csv(self) -> str:
        tutors = repositories.TutorRepository(self.session).list()
        return _to_csv(TUTOR_COLUMNS, (t.model_dump() for t in tutors))

    def students_csv(self) -> str:
        students = repositories.StudentRepository(self.session).list()
        return _to_csv(STUDENT_COLUMNS, (s.model_dump() for s in students))

    def matches_csv(self) -> str:
        tutor_repo = repositories.TutorRepository(self.session)
        student_repo = repositories.StudentRepository(self.session)
        rows = []
        for m in repositories.MatchRepository(self.session).list():
            row = m.model_dump()
            row['tutor_name'] = _full_name(tutor_repo.get(m.tutor_id))
            row['student_name'] = _full_name(student_repo.get(m.student_id))
            rows.append(row)
        return _to_csv(MATCH_COLUMNS, rows)
