"""Global AI settings routes."""

from fastapi import APIRouter

from vox.api.deps import CurrentUser, DbSession
from vox.schemas.base import Envelope
from vox.schemas.settings import GlobalSettings, GlobalSettingsUpdate
from vox.services.settings_store import get_global_settings, save_global_settings

router = APIRouter(prefix="/api/ai/settings", tags=["settings"])


@router.get("/global", response_model=Envelope[GlobalSettings])
async def read_global_settings(
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[GlobalSettings]:
    """Global settings, or defaults when the user never saved any."""
    return Envelope(data=await get_global_settings(db, current_user.id))


@router.post("/global", response_model=Envelope[GlobalSettings])
@router.patch("/global", response_model=Envelope[GlobalSettings])
async def update_global_settings(
    data: GlobalSettingsUpdate,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[GlobalSettings]:
    """Apply the sent fields to the global settings. Referenced agents must be the user's."""
    return Envelope(data=await save_global_settings(db, current_user.id, data))
