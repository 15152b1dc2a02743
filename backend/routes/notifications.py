"""
Routes Notifications (in-app)
"""

from fastapi import APIRouter, Depends, HTTPException

from routes.auth import get_current_user
from services.notifications import list_notifications, mark_read, mark_all_read

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    limit: int = 50,
    skip: int = 0,
    user: dict = Depends(get_current_user)
):
    return await list_notifications(user["id"], unread_only=unread_only, limit=min(limit, 200), skip=skip)


@router.post("/read-all")
async def read_all_notifications(user: dict = Depends(get_current_user)):
    updated = await mark_all_read(user["id"])
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read")
async def read_notification(notification_id: str, user: dict = Depends(get_current_user)):
    if not await mark_read(notification_id, user["id"]):
        raise HTTPException(status_code=404, detail="Notification non trouvée")
    return {"success": True}
