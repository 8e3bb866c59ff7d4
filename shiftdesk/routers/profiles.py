from typing import List

from fastapi import APIRouter, Depends

from shiftdesk.core.authorization import Actor
from shiftdesk.deps.auth import require_actor
from shiftdesk.deps.services import get_shift_service
from shiftdesk.schemas.profile import ProfileResponse
from shiftdesk.services.profile_store import ProfileRecord
from shiftdesk.services.shift_service import ShiftService

router = APIRouter(prefix="/profiles", tags=["Profiles"])


def _to_response(profile: ProfileRecord) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        display_name=profile.display_name,
        avatar_url=profile.avatar_url,
        role=profile.role.value,
    )


@router.get("", response_model=List[ProfileResponse])
def list_profiles(
    _actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    return [_to_response(p) for p in service.list_profiles()]


@router.get("/{profile_id}", response_model=ProfileResponse)
def get_profile(
    profile_id: int,
    _actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    return _to_response(service.get_profile(profile_id))
