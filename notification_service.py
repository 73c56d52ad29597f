import logging
from typing import Any, Dict, List, Tuple

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, joinedload

import models
from realtime import EventPublisher

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 50


def create_notification(db: Session, sender_id: int, receiver_id: int, kind: str, message: str) -> models.Notification:
    """Adds the durable record to the caller's transaction; the caller commits."""
    notification = models.Notification(
        sender_id=sender_id,
        receiver_id=receiver_id,
        type=kind,
        message=message,
        is_read=False,
    )
    db.add(notification)
    db.flush()
    return notification


def push(publisher: EventPublisher, room: str, event: str, data: Dict[str, Any]):
    # delivery is best-effort, the stored notification is the source of truth
    try:
        publisher.publish(room, event, data)
    except Exception:
        logger.exception("Real-time push of %s to room %s failed", event, room)


def unread_count(db: Session, user_id: int) -> int:
    return (
        db.query(models.Notification)
        .filter(models.Notification.receiver_id == user_id, models.Notification.is_read.is_(False))
        .count()
    )


def list_for_user(db: Session, user_id: int, unread_only: bool = True) -> Tuple[List[models.Notification], int]:
    query = (
        db.query(models.Notification)
        .options(joinedload(models.Notification.sender))
        .filter(models.Notification.receiver_id == user_id)
    )
    if unread_only:
        query = query.filter(models.Notification.is_read.is_(False))
    notifications = (
        query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .limit(NOTIFICATION_LIMIT)
        .all()
    )
    return notifications, unread_count(db, user_id)


def mark_read(db: Session, notification_id: int, user_id: int) -> models.Notification:
    notification = db.get(models.Notification, notification_id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if notification.receiver_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to mark this notification as read",
        )
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    updated = (
        db.query(models.Notification)
        .filter(models.Notification.receiver_id == user_id, models.Notification.is_read.is_(False))
        .update({models.Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated
