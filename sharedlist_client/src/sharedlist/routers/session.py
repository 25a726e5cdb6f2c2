from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..auth import require_session
from ..schemas import NicknameRequest, SessionOut, SignInRequest
from ..services import Services, get_services
from ..session import AuthSession

router = APIRouter(
    prefix="/api/v1/session",
    tags=["session"],
)


def _session_out(session: AuthSession) -> SessionOut:
    return SessionOut(
        is_authenticated=session.is_authenticated,
        user_id=session.user_id,
        user_email=session.user_email,
        nickname=session.nickname,
        is_nickname_set=session.is_nickname_set,
    )


# PUBLIC_INTERFACE
@router.get("/", response_model=SessionOut, summary="Get Session")
async def get_session(services: Services = Depends(get_services)) -> SessionOut:
    """
    Return the current sign-in state of this client.
    """
    return _session_out(services.session)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=SessionOut,
    summary="Sign In",
    description=(
        "Hand over the user id produced by the external sign-in provider. "
        "Starts observing the user's lists."
    ),
)
async def sign_in(payload: SignInRequest, services: Services = Depends(get_services)) -> SessionOut:
    await services.session.sign_in(payload.user_id, payload.email)
    services.lists.observe_lists(services.session.user_id)
    return _session_out(services.session)


# PUBLIC_INTERFACE
@router.delete("/", status_code=status.HTTP_204_NO_CONTENT, summary="Sign Out")
async def sign_out(services: Services = Depends(get_services)) -> None:
    """
    Sign out and stop observing lists.
    """
    services.lists.observe_lists("")
    services.session.sign_out()
    return None


# PUBLIC_INTERFACE
@router.put("/nickname", response_model=SessionOut, summary="Set Nickname")
async def set_nickname(
    payload: NicknameRequest,
    user_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> SessionOut:
    """
    Set the nickname other members see.
    """
    await services.session.set_nickname(payload.nickname)
    return _session_out(services.session)


# PUBLIC_INTERFACE
@router.delete(
    "/account",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Account",
    description="Leave every list (deleting lists left without members) and wipe local data.",
)
async def delete_account(
    user_id: str = Depends(require_session),
    services: Services = Depends(get_services),
) -> None:
    await services.session.delete_account(services.lists)
    return None
