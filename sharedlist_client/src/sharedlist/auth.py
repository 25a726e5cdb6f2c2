from __future__ import annotations

from fastapi import Depends

from .errors import NotSignedInError
from .services import Services, get_services


# PUBLIC_INTERFACE
def require_session(services: Services = Depends(get_services)) -> str:
    """
    FastAPI dependency that returns the signed in user id.

    The sign-in provider is external; a session exists once its user id was
    handed over through ``POST /api/v1/session/``.

    Raises:
        NotSignedInError (401) if nobody is signed in on this client.
    """
    session = services.session
    if not session.is_authenticated or not session.user_id:
        raise NotSignedInError("Not signed in")
    return session.user_id
