"""
notification_service.py — In-app notifications
Streak milestones and goal completions leave a persistent notification for UI
consumption. Creating one is best effort: it runs in a savepoint and a failure
is logged without touching the surrounding unit of work.
"""

import logging

from sqlalchemy.orm import Session

from config import STREAK_MILESTONES
from errors import NotFoundError
from models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    def get_all(db: Session, user_id: int, unread_only: bool = False) -> list[Notification]:
        query = db.query(Notification).filter_by(user_id=user_id)
        if unread_only:
            query = query.filter_by(is_read=False)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    @staticmethod
    def _get_owned(db: Session, user_id: int, notification_id: int) -> Notification:
        n = db.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
        if not n:
            raise NotFoundError("Notification")
        return n

    @staticmethod
    def mark_read(db: Session, user_id: int, notification_id: int) -> Notification:
        n = NotificationService._get_owned(db, user_id, notification_id)
        n.is_read = True
        return n

    @staticmethod
    def delete(db: Session, user_id: int, notification_id: int) -> bool:
        n = NotificationService._get_owned(db, user_id, notification_id)
        db.delete(n)
        return True

    # ------------------------------------------------------------------
    @staticmethod
    def notify(db: Session, user_id: int, type: str, title: str, message: str,
               reference_type: str | None = None, reference_id: int | None = None) -> Notification | None:
        try:
            with db.begin_nested():
                n = Notification(
                    user_id=user_id, type=type, title=title, message=message,
                    reference_type=reference_type, reference_id=reference_id,
                )
                db.add(n)
            return n
        except Exception as e:
            logger.error(f"Could not create {type} notification for user {user_id}: {e}")
            return None

    @staticmethod
    def streak_milestone(db: Session, routine, previous_streak: int) -> Notification | None:
        """Notify once when the current streak climbs past a milestone."""
        reached = [m for m in STREAK_MILESTONES if previous_streak < m <= routine.current_streak]
        if not reached:
            return None
        milestone = max(reached)
        return NotificationService.notify(
            db, routine.user_id, "streak",
            title=f"{milestone} day streak: {routine.name}",
            message=f"You've kept '{routine.name}' going for {milestone} in a row.",
            reference_type="routine", reference_id=routine.id,
        )

    @staticmethod
    def goal_completed(db: Session, goal) -> Notification | None:
        return NotificationService.notify(
            db, goal.user_id, "celebration",
            title=f"Goal completed: {goal.title}",
            message=f"You reached {goal.current_value:g} of {goal.target_value:g}.",
            reference_type="goal", reference_id=goal.id,
        )
