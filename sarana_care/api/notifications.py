"""
Notification API Routes: the signed-in user's derived notifications.

Notifications are not stored. GET runs one fetch cycle against the
complaint table and returns what is visible; the other routes record
read/cleared flags in the user's ledger.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..core import CurrentUserDep, SessionDep, get_settings
from ..schemas.notifications import NotificationListResponse, NotificationOut
from ..services.complaints import ComplaintService, DatabaseComplaintSource
from ..services.notification_ledger import SqlLedgerStore
from ..services.notifications import Notification
from ..services.reconciler import (
    NotificationContext,
    NotificationContextRegistry,
    NotificationNotFoundError,
    NotificationReconciler,
)

router = APIRouter(prefix="/me/notifications", tags=["notifications"])


def get_context_registry(request: Request) -> NotificationContextRegistry:
    return request.app.state.notification_contexts


def get_reconciler(
    current_user: CurrentUserDep,
    session: SessionDep,
) -> NotificationReconciler:
    settings = get_settings()
    source = DatabaseComplaintSource(
        ComplaintService(session),
        current_user.user,
        limit=settings.notification_window,
    )
    return NotificationReconciler(SqlLedgerStore(session), source, settings)


async def get_notification_context(
    current_user: CurrentUserDep,
    registry: Annotated[NotificationContextRegistry, Depends(get_context_registry)],
) -> NotificationContext:
    return registry.get(str(current_user.id))


ReconcilerDep = Annotated[NotificationReconciler, Depends(get_reconciler)]
ContextDep = Annotated[NotificationContext, Depends(get_notification_context)]


# =============================================================================
# HELPERS
# =============================================================================


def notification_to_response(notification: Notification) -> NotificationOut:
    return NotificationOut(
        id=notification.key,
        complaint_id=notification.complaint_id,
        status=notification.status,
        kind=notification.kind,
        title=notification.title,
        message=notification.message,
        time=notification.time,
        event_at=notification.event_at,
        is_read=notification.is_read,
    )


def build_list_response(ctx: NotificationContext, applied: bool = True) -> NotificationListResponse:
    return NotificationListResponse(
        notifications=[notification_to_response(n) for n in ctx.visible],
        unread_count=ctx.unread_count,
        fetch_count=ctx.fetch_count,
        applied=applied,
    )


async def ensure_fetched(reconciler: NotificationReconciler, ctx: NotificationContext) -> None:
    """Actions need a visible list; run a first cycle for a fresh context."""
    if ctx.fetch_count == 0:
        await reconciler.refresh(ctx)


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.get("", response_model=NotificationListResponse)
async def list_notifications(reconciler: ReconcilerDep, ctx: ContextDep):
    """Run a fetch cycle and return the visible notifications.

    If complaints cannot be loaded the previous list is returned with
    ``applied`` set to false.
    """
    result = await reconciler.refresh(ctx)
    return build_list_response(ctx, applied=result.applied)


@router.post("/read-all", response_model=NotificationListResponse)
async def mark_all_read(reconciler: ReconcilerDep, ctx: ContextDep):
    await ensure_fetched(reconciler, ctx)
    await reconciler.mark_all_read(ctx)
    return build_list_response(ctx)


@router.post("/{key}/read", response_model=NotificationOut)
async def mark_read(key: str, reconciler: ReconcilerDep, ctx: ContextDep):
    await ensure_fetched(reconciler, ctx)
    try:
        notification = await reconciler.mark_read(ctx, key)
    except NotificationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {key} not found",
        )
    return notification_to_response(notification)


@router.delete("", response_model=NotificationListResponse)
async def clear_all(reconciler: ReconcilerDep, ctx: ContextDep):
    await ensure_fetched(reconciler, ctx)
    await reconciler.clear_all(ctx)
    return build_list_response(ctx)


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(key: str, reconciler: ReconcilerDep, ctx: ContextDep):
    await ensure_fetched(reconciler, ctx)
    try:
        await reconciler.delete(ctx, key)
    except NotificationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {key} not found",
        )
