from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import authentication
import database
import notification_service
from schema import NotificationOut, dump

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/")
def list_notifications(
    unread_only: bool = Query(True, alias="unreadOnly"),
    token: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    notifications, unread = notification_service.list_for_user(db, token.id, unread_only)
    return {
        "success": True,
        "data": {
            "notifications": [dump(NotificationOut, n) for n in notifications],
            "unreadCount": unread,
        },
    }


@router.put("/read-all")
def mark_all_notifications_read(
    token: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    updated = notification_service.mark_all_read(db, token.id)
    return {"success": True, "message": "All notifications marked as read", "data": {"updated": updated}}


@router.put("/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    token: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    notification = notification_service.mark_read(db, notification_id, token.id)
    return {"success": True, "message": "Notification marked as read", "data": dump(NotificationOut, notification)}
