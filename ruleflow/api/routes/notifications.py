"""In-app notification API routes."""

from fastapi import APIRouter, HTTPException, Query

from ruleflow.api.deps import NotificationStoreDep, PaginationDep, UserDep
from ruleflow.schemas.common import APIResponse
from ruleflow.schemas.notification import MarkAllReadResponse, NotificationList

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=APIResponse[NotificationList])
async def list_notifications(
    store: NotificationStoreDep,
    user_id: UserDep,
    pagination: PaginationDep,
    unread_only: bool = Query(default=False, description="Only unread notifications"),
) -> APIResponse[NotificationList]:
    """List the caller's notifications, newest first."""
    items, total, unread_count = await store.list_by_user(
        user_id,
        unread_only=unread_only,
        limit=pagination.page_size,
        offset=pagination.offset,
    )
    return APIResponse(data=NotificationList(items=items, total=total, unread_count=unread_count))


@router.put("/read-all", response_model=APIResponse[MarkAllReadResponse])
async def mark_all_read(
    store: NotificationStoreDep,
    user_id: UserDep,
) -> APIResponse[MarkAllReadResponse]:
    updated = await store.mark_all_read(user_id)
    return APIResponse(data=MarkAllReadResponse(updated=updated))


@router.put("/{notification_id}/read", response_model=APIResponse)
async def mark_read(
    notification_id: str,
    store: NotificationStoreDep,
    user_id: UserDep,
) -> APIResponse:
    if not await store.mark_read(notification_id, user_id):
        raise HTTPException(status_code=404, detail=f"Notification {notification_id} not found")
    return APIResponse(message="Notification marked as read")


@router.delete("/{notification_id}", response_model=APIResponse)
async def delete_notification(
    notification_id: str,
    store: NotificationStoreDep,
    user_id: UserDep,
) -> APIResponse:
    if not await store.delete(notification_id, user_id):
        raise HTTPException(status_code=404, detail=f"Notification {notification_id} not found")
    return APIResponse(message=f"Notification {notification_id} deleted")
