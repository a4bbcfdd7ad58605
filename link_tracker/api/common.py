"""Dependencies and error mapping shared by the lifecycle routers."""

from typing import Annotated, NoReturn

import httpx
from fastapi import Depends, HTTPException, status

from ..core import PermissionDeniedError, SessionDep, get_settings
from ..services.lifecycle_engine import (
    ConcurrencyError,
    EscalationNotFoundError,
    InvalidInputError,
    InvalidTransitionError,
    LifecycleConfig,
    LifecycleEngine,
    LifecycleError,
    RcaNotFoundError,
    ReportNotFoundError,
)
from ..services.media_store import MediaStore, MediaStoreError, get_media_store
from ..services.mttr_alerts import AlertConfig, MttrAlertEngine

MediaStoreDep = Annotated[MediaStore, Depends(get_media_store)]


def get_lifecycle_engine(session: SessionDep, media_store: MediaStoreDep) -> LifecycleEngine:
    return LifecycleEngine(
        session,
        media_store=media_store,
        config=LifecycleConfig.from_settings(get_settings()),
    )


def get_alert_http_client() -> httpx.AsyncClient | None:
    """Webhook client for breach alerts; None opens a client per delivery."""
    return None


def get_alert_engine(
    session: SessionDep,
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_alert_http_client)],
) -> MttrAlertEngine:
    return MttrAlertEngine(
        session,
        config=AlertConfig.from_settings(get_settings()),
        http_client=http_client,
    )


# Errors every lifecycle endpoint maps through raise_http_error
HANDLED_ERRORS = (LifecycleError, PermissionDeniedError, MediaStoreError)

LifecycleEngineDep = Annotated[LifecycleEngine, Depends(get_lifecycle_engine)]
AlertEngineDep = Annotated[MttrAlertEngine, Depends(get_alert_engine)]


def raise_http_error(error: Exception) -> NoReturn:
    """Translate a lifecycle error into the matching HTTP error."""
    if isinstance(error, (EscalationNotFoundError, ReportNotFoundError, RcaNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, InvalidInputError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(error), "field": error.field},
        )
    if isinstance(error, InvalidTransitionError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ConcurrencyError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, MediaStoreError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Image upload failed: {error}",
        )
    raise error
