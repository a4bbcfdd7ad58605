"""API routes for the current user's notification feed."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..core import CurrentUserDep, SessionDep
from ..models import NotificationKind
from ..schemas import NotificationListResponse, NotificationResponse
from ..services.notifications import NotificationNotFoundError, NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_service(session: SessionDep) -> NotificationService:
    return NotificationService(session)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


class MarkAllReadResponse(BaseModel):
    marked: int


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    unread_only: bool = Query(default=False),
    kind: NotificationKind | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
):
    """List my notifications, newest first."""
    notifications = await service.list_for_recipient(
        current_user.id, unread_only=unread_only, kind=kind, limit=limit
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=await service.unread_count(current_user.id),
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    """Mark one of my notifications read."""
    try:
        notification = await service.mark_read(notification_id, current_user.id)
    except NotificationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )
    return NotificationResponse.model_validate(notification)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
):
    """Mark all of my notifications read."""
    marked = await service.mark_all_read(current_user.id)
    return MarkAllReadResponse(marked=marked)
