"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (accounts,
tutors, students, matches). Repositories return SQLModel objects and
perform commits/refreshes where appropriate.
"""

from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import func, or_
from . import models


class AccountRepository:
    """CRUD operations for `Account` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, account: models.Account) -> models.Account:
        """Persist a new account and return the managed instance."""
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def save(self, account: models.Account) -> models.Account:
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def get_by_username(self, username: str) -> Optional[models.Account]:
        """Return an `Account` by username or `None` if not found."""
        stmt = select(models.Account).where(models.Account.username == username)
        return self.session.exec(stmt).first()

    def get(self, account_id: int) -> Optional[models.Account]:
        return self.session.get(models.Account, account_id)

    def list(self) -> List[models.Account]:
        stmt = select(models.Account).order_by(models.Account.username)
        return self.session.exec(stmt).all()

    def count(self) -> int:
        return self.session.exec(select(func.count()).select_from(models.Account)).one()

    def delete(self, account: models.Account) -> None:
        self.session.delete(account)
        self.session.commit()


class _PersonRepository:
    """Shared queries for tutors and students, which have the same shape."""
    model = None

    def __init__(self, session: Session):
        self.session = session

    def create(self, person):
        self.session.add(person)
        self.session.commit()
        self.session.refresh(person)
        return person

    def save(self, person):
        self.session.add(person)
        self.session.commit()
        self.session.refresh(person)
        return person

    def get(self, person_id: int):
        return self.session.get(self.model, person_id)

    def list(self) -> list:
        stmt = select(self.model).order_by(self.model.last_name, self.model.first_name)
        return self.session.exec(stmt).all()

    def search_by_name(self, prefix: str, limit: int = 10) -> list:
        """Return active records whose first, last or full name starts with `prefix`.

        The comparison is case-insensitive. `%` and `_` in the prefix are
        matched literally.
        """
        escaped = prefix.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"{escaped}%"
        full_name = func.lower(self.model.first_name + " " + self.model.last_name)
        stmt = (
            select(self.model)
            .where(
                self.model.active == True,  # noqa: E712
                or_(
                    func.lower(self.model.first_name).like(pattern, escape="\\"),
                    func.lower(self.model.last_name).like(pattern, escape="\\"),
                    full_name.like(pattern, escape="\\"),
                ),
            )
            .order_by(self.model.last_name, self.model.first_name)
            .limit(limit)
        )
        return self.session.exec(stmt).all()


class TutorRepository(_PersonRepository):
    """CRUD and lookup operations for `Tutor` records."""
    model = models.Tutor


class StudentRepository(_PersonRepository):
    """CRUD and lookup operations for `Student` records."""
    model = models.Student


class MatchRepository:
    """Persist tutor/student pairings."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, match: models.Match) -> models.Match:
        self.session.add(match)
        self.session.commit()
        self.session.refresh(match)
        return match

    def save(self, match: models.Match) -> models.Match:
        self.session.add(match)
        self.session.commit()
        self.session.refresh(match)
        return match

    def get(self, match_id: int) -> Optional[models.Match]:
        return self.session.get(models.Match, match_id)

    def list(self) -> List[models.Match]:
        stmt = select(models.Match).order_by(models.Match.id)
        return self.session.exec(stmt).all()

    def find_active_pair(self, tutor_id: int, student_id: int) -> Optional[models.Match]:
        """Return the active match between this tutor and student, if any."""
        stmt = select(models.Match).where(
            models.Match.tutor_id == tutor_id,
            models.Match.student_id == student_id,
            models.Match.status == models.MATCH_ACTIVE,
        )
        return self.session.exec(stmt).first()

    def list_active_for_tutor(self, tutor_id: int) -> List[models.Match]:
        stmt = select(models.Match).where(
            models.Match.tutor_id == tutor_id,
            models.Match.status == models.MATCH_ACTIVE,
        )
        return self.session.exec(stmt).all()

    def dissolve(self, match: models.Match, commit: bool = True) -> models.Match:
        """Mark a match dissolved and stamp the time it ended."""
        match.status = models.MATCH_DISSOLVED
        match.dissolved_at = datetime.now(timezone.utc)
        self.session.add(match)
        if commit:
            self.session.commit()
            self.session.refresh(match)
        return match
