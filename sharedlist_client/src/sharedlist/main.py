from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Type

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    NotSignedInError,
    RemoteStoreError,
    SharedListError,
)
from .logging_config import setup_logging
from .routers import lists as lists_router
from .routers import profiles as profiles_router
from .routers import session as session_router
from .services import Services
from .settings import get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "session", "description": "Sign-in state, nickname and account deletion."},
    {
        "name": "lists",
        "description": "Shared lists and their todos, kept in sync with the remote store.",
    },
    {"name": "profiles", "description": "Nickname lookup for list members."},
]

_ERROR_STATUS: Dict[Type[SharedListError], int] = {
    InvalidInputError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    NotSignedInError: 401,
    RemoteStoreError: 502,
}


# PUBLIC_INTERFACE
def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app around a Services bundle (a default one from
    settings when omitted). The persisted session is restored on startup.
    """
    settings = services.settings if services is not None else get_settings()
    setup_logging(settings.log_level)
    services = services or Services.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await services.start()
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(
        title="SharedList Client",
        description="Shared to-do lists synchronized through a remote document store.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.services = services

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": exc.errors(),
            },
        )

    @app.exception_handler(SharedListError)
    async def shared_list_exception_handler(request: Request, exc: SharedListError) -> JSONResponse:
        """
        Map typed client errors onto HTTP statuses with the same envelope.
        """
        status_code = next(
            (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
            400,
        )
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.code, "message": exc.message, "detail": exc.detail},
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "preferences": settings.preferences_backend}

    app.include_router(session_router.router)
    app.include_router(lists_router.router)
    app.include_router(profiles_router.router)
    return app


app = create_app()
