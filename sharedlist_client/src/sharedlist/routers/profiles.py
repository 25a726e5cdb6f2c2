from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from ..auth import require_session
from ..schemas import NicknamesOut
from ..services import Services, get_services

router = APIRouter(
    prefix="/api/v1/profiles",
    tags=["profiles"],
)


# PUBLIC_INTERFACE
@router.get(
    "/nicknames",
    response_model=NicknamesOut,
    summary="Resolve Nicknames",
    description="Resolve user ids to nicknames. Unknown ids are left out of the result.",
)
async def resolve_nicknames(
    ids: List[str] = Query(..., description="User ids to resolve"),
    user_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> NicknamesOut:
    await services.nicknames.ensure_nicknames(ids)
    return NicknamesOut(nicknames=services.nicknames.names_for(ids))
