from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from centerlms.core.current_user import get_current_user
from centerlms.core.deps import get_db
from centerlms.models.notification import Notification
from centerlms.models.user import User
from centerlms.schemas.notification import NotificationOut

router = APIRouter()


@router.get("", response_model=list[NotificationOut])
def my_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    query = db.query(Notification).filter(Notification.user_id == me.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    notification = db.get(Notification, notification_id)
    # someone else's notification is reported as missing
    if notification is None or notification.user_id != me.id:
        raise HTTPException(status_code=404, detail="Notification not found")

    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification
