from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException


class Role(Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class Actor:
    employee_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def require_role(role: Role):
    from shiftdesk.deps.auth import require_actor

    def dependency(actor: Actor = Depends(require_actor)) -> Actor:
        rank = {
            Role.EMPLOYEE: 1,
            Role.ADMIN: 2,
        }

        if rank[actor.role] < rank[role]:
            raise HTTPException(status_code=403, detail="Insufficient role")

        return actor

    return dependency
