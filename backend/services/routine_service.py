"""
routine_service.py — Routine templates
Create, edit, pause, archive, reorder and delete routines. Editing how a
routine is scored re-scores today's and future logs and rebuilds the streak;
deleting one withdraws its whole contribution from linked goals first.
"""

import logging
from datetime import datetime, timezone

from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from config import DEFAULT_GRADUAL_THRESHOLD
from database import transaction
from domain import CompletionMode, RoutineStatus, ValueType, enum_value, parse_schedule
from errors import NotFoundError, ValidationError
from models.routine import RoutineTemplate
from models.routine_log import RoutineLog
from services.completion_service import CompletionService
from services.goal_service import GoalService
from services.routine_log_service import RoutineLogService
from services.streak_service import StreakService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name", "description", "icon", "value_type", "config", "schedule",
    "completion_mode", "gradual_threshold", "status", "order",
}
# Changing any of these changes what a stored log scores
SCORING_FIELDS = {"value_type", "config", "completion_mode", "gradual_threshold"}


def _schedule_dict(raw) -> dict:
    try:
        return parse_schedule(raw).model_dump()
    except SchemaError as e:
        raise ValidationError(f"Invalid schedule: {e.errors()[0]['msg']}") from e


def _threshold(raw) -> int:
    if raw is None:
        return DEFAULT_GRADUAL_THRESHOLD
    return min(max(int(raw), 1), 100)


class RoutineService:
    @staticmethod
    def create(db: Session, user_id: int, data: dict) -> RoutineTemplate:
        if not data.get("name"):
            raise ValidationError("Routine name is required")

        with transaction(db):
            routine = RoutineTemplate(
                user_id=user_id,
                name=data["name"],
                description=data.get("description"),
                icon=data.get("icon"),
                value_type=enum_value(ValueType, data.get("value_type", ValueType.BOOLEAN), "value_type"),
                config=data.get("config") or {},
                schedule=_schedule_dict(data.get("schedule") or StreakService.every_day()),
                completion_mode=enum_value(CompletionMode, data.get("completion_mode", CompletionMode.STRICT), "completion_mode"),
                gradual_threshold=_threshold(data.get("gradual_threshold")),
                status=RoutineStatus.ACTIVE.value,
                order=data.get("order", 0),
            )
            db.add(routine)
        db.refresh(routine)
        logger.info(f"Created routine {routine.id} ({routine.value_type}) for user {user_id}")
        return routine

    @staticmethod
    def get_all(db: Session, user_id: int, status: str | None = None) -> list[RoutineTemplate]:
        query = db.query(RoutineTemplate).filter_by(user_id=user_id)
        if status and status != "all":
            query = query.filter_by(status=status)
        elif not status:
            query = query.filter(RoutineTemplate.status != RoutineStatus.ARCHIVED.value)
        return query.order_by(RoutineTemplate.order, RoutineTemplate.created_at.desc()).all()

    @staticmethod
    def get_by_id(db: Session, user_id: int, routine_id: int) -> RoutineTemplate:
        routine = db.query(RoutineTemplate).filter_by(id=routine_id, user_id=user_id).first()
        if not routine:
            raise NotFoundError("Routine")
        return routine

    @staticmethod
    def update(db: Session, user_id: int, routine_id: int, data: dict,
               timezone_offset: int | None = None, now: datetime | None = None) -> RoutineTemplate:
        unknown = set(data) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update routine fields: {', '.join(sorted(unknown))}")
        now = now or datetime.now(timezone.utc)

        with transaction(db):
            routine = RoutineLogService._get_routine_for_update(db, user_id, routine_id)
            for k, v in data.items():
                if k == "value_type":
                    v = enum_value(ValueType, v, k)
                elif k == "completion_mode":
                    v = enum_value(CompletionMode, v, k)
                elif k == "status":
                    v = enum_value(RoutineStatus, v, k)
                elif k == "schedule":
                    v = _schedule_dict(v)
                elif k == "gradual_threshold":
                    v = _threshold(v)
                elif k == "config":
                    v = v or {}
                setattr(routine, k, v)

            if SCORING_FIELDS & set(data):
                RoutineService._rescore_from(db, routine, StreakService.reference_today(now, timezone_offset))
            if (SCORING_FIELDS | {"schedule"}) & set(data):
                db.flush()
                RoutineLogService.recalculate_streaks(db, routine, timezone_offset, now)
        db.refresh(routine)
        return routine

    @staticmethod
    def _rescore_from(db: Session, routine: RoutineTemplate, today):
        """Re-score logs dated today or later. Older logs keep their scores."""
        logs = db.query(RoutineLog).filter(
            RoutineLog.routine_id == routine.id, RoutineLog.date >= today
        ).all()
        for log in logs:
            completion = CompletionService.score(routine, log.data)
            log.completion_percentage = completion.completion_percentage
            log.counts_for_streak = completion.counts_for_streak
        if logs:
            logger.info(f"Re-scored {len(logs)} log(s) of routine {routine.id} from {today}")

    @staticmethod
    def _set_status(db: Session, user_id: int, routine_id: int, status: RoutineStatus) -> RoutineTemplate:
        with transaction(db):
            routine = RoutineLogService._get_routine_for_update(db, user_id, routine_id)
            routine.status = status.value
            routine.archived_at = datetime.now(timezone.utc) if status == RoutineStatus.ARCHIVED else None
        db.refresh(routine)
        return routine

    @staticmethod
    def pause(db: Session, user_id: int, routine_id: int) -> RoutineTemplate:
        return RoutineService._set_status(db, user_id, routine_id, RoutineStatus.PAUSED)

    @staticmethod
    def resume(db: Session, user_id: int, routine_id: int) -> RoutineTemplate:
        return RoutineService._set_status(db, user_id, routine_id, RoutineStatus.ACTIVE)

    @staticmethod
    def archive(db: Session, user_id: int, routine_id: int) -> RoutineTemplate:
        return RoutineService._set_status(db, user_id, routine_id, RoutineStatus.ARCHIVED)

    @staticmethod
    def unarchive(db: Session, user_id: int, routine_id: int) -> RoutineTemplate:
        return RoutineService._set_status(db, user_id, routine_id, RoutineStatus.ACTIVE)

    @staticmethod
    def delete(db: Session, user_id: int, routine_id: int, now: datetime | None = None) -> bool:
        """Withdraw the routine's contribution from linked goals, then drop it and its logs."""
        with transaction(db):
            routine = RoutineLogService._get_routine_for_update(db, user_id, routine_id)
            total = CompletionService.total_delta(routine.value_type, [log.data for log in routine.logs])
            if total != 0:
                GoalService.apply_routine_delta(db, user_id, routine.id, -total, now=now)
            routine.linked_goals = []
            db.delete(routine)
        logger.info(f"Deleted routine {routine_id} for user {user_id} (withdrew {total:g})")
        return True

    @staticmethod
    def reorder(db: Session, user_id: int, routine_ids: list[int]) -> list[RoutineTemplate]:
        with transaction(db):
            routines = {
                r.id: r for r in db.query(RoutineTemplate).filter(
                    RoutineTemplate.id.in_(routine_ids), RoutineTemplate.user_id == user_id
                ).all()
            }
            if len(routines) != len(set(routine_ids)):
                raise NotFoundError("Routine")
            for position, rid in enumerate(routine_ids):
                routines[rid].order = position
        return RoutineService.get_all(db, user_id, status="all")
