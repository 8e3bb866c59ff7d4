import os

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from shiftdesk.deps.services import get_shift_service
from shiftdesk.services.auth_service import create_access_token
from shiftdesk.services.shift_service import ShiftService

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenRequest(BaseModel):
    employee_id: int


@router.post("/token")
def issue_token(payload: TokenRequest, service: ShiftService = Depends(get_shift_service)):
    env = os.getenv("ENV", "dev").lower()
    if env not in {"dev", "local", "test"}:
        raise HTTPException(status_code=404, detail="Not Found")

    profile = service.get_profile(payload.employee_id)
    try:
        token = create_access_token(employee_id=profile.id, role=profile.role)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "access_token": token,
        "token_type": "bearer",
        "role": profile.role.value,
    }
