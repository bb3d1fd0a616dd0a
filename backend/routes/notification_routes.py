from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db, transaction
from services.notification_service import NotificationService


router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


def notification_to_dict(n) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "is_read": n.is_read,
        "reference_type": n.reference_type,
        "reference_id": n.reference_id,
        "created_at": n.created_at,
    }


@router.get("")
def list_notifications(unread_only: bool = False, user_id: int = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    """Fetch the user's notifications, newest first."""
    return [notification_to_dict(n) for n in NotificationService.get_all(db, user_id, unread_only)]


@router.put("/{notification_id}/read")
def mark_as_read(notification_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    """Mark a notification as read."""
    with transaction(db):
        NotificationService.mark_read(db, user_id, notification_id)
    return {"status": "success"}


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, user_id: int = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    """Delete a notification."""
    with transaction(db):
        NotificationService.delete(db, user_id, notification_id)
    return {"status": "success"}
