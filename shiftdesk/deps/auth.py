from typing import Optional

from fastapi import HTTPException, Request

from shiftdesk.core.authorization import Actor, Role
from shiftdesk.services.auth_service import verify_token


def _parse_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Invalid Authorization header")

    return parts[1].strip()


def actor_from_token(token: Optional[str]) -> Actor:
    """Raises ValueError for anything that is not a valid, well-formed token."""
    if not token:
        raise ValueError("Missing token")

    claims = verify_token(token)
    try:
        return Actor(employee_id=int(claims["sub"]), role=Role.parse(claims["role"]))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token claims") from exc


def require_actor(request: Request) -> Actor:
    token = _parse_bearer_token(request)

    try:
        actor = actor_from_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    request.state.actor = actor
    return actor
