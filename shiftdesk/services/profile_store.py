from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from shiftdesk.core.authorization import Role
from shiftdesk.core.errors import NotFound
from shiftdesk.database import SessionLocal
from shiftdesk.models.profile import Profile
from shiftdesk.services.shift_ledger import store_errors


@dataclass(frozen=True)
class ProfileRecord:
    id: int
    display_name: str
    avatar_url: Optional[str]
    role: Role

    @classmethod
    def from_row(cls, row: Profile) -> "ProfileRecord":
        return cls(
            id=int(row.id),
            display_name=row.display_name or "",
            avatar_url=row.avatar_url,
            role=Role.parse(row.role or Role.EMPLOYEE.value),
        )


class ProfileStore:
    """Read-only view over employee profiles."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def list(self) -> List[ProfileRecord]:
        db = self._session_factory()
        try:
            with store_errors("profiles.list"):
                rows = db.query(Profile).order_by(Profile.display_name.asc(), Profile.id.asc()).all()
                return [ProfileRecord.from_row(r) for r in rows]
        finally:
            db.close()

    def get(self, profile_id: int) -> ProfileRecord:
        db = self._session_factory()
        try:
            with store_errors("profiles.get"):
                row = db.get(Profile, int(profile_id))
                if row is None:
                    raise NotFound("Employee not found")
                return ProfileRecord.from_row(row)
        finally:
            db.close()
