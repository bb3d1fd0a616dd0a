"""
routine_log_service.py — Routine logs and streak snapshots
One log per (user, routine, day). Every write is a single transaction:
score -> goal delta -> upsert log -> rebuild the routine's streak snapshot.
If any step fails nothing is kept.
"""

import logging
import calendar
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import Session

from database import transaction
from domain import ValueType
from errors import NotFoundError, ValidationError
from models.routine import RoutineTemplate
from models.routine_log import RoutineLog
from services.completion_service import CompletionService
from services.goal_service import GoalService
from services.notification_service import NotificationService
from services.streak_service import StreakService

logger = logging.getLogger(__name__)


class RoutineLogService:
    @staticmethod
    def normalize_day(day) -> date:
        """Any ISO string, datetime or date -> the UTC calendar day it falls on."""
        if isinstance(day, str):
            try:
                day = datetime.fromisoformat(day.replace("Z", "+00:00")) if "T" in day else date.fromisoformat(day)
            except ValueError as e:
                raise ValidationError(f"Invalid date: {day}") from e
        if isinstance(day, datetime):
            if day.tzinfo is not None:
                day = day.astimezone(timezone.utc)
            return day.date()
        return day

    @staticmethod
    def _payload(data) -> dict:
        if data is None:
            return {}
        if hasattr(data, "model_dump"):
            data = data.model_dump()
        return {"value": data.get("value"), "notes": data.get("notes")}

    @staticmethod
    def validate_payload(routine: RoutineTemplate, payload: dict):
        """Reject values the routine's type cannot score."""
        value = payload.get("value")
        if value is None:
            return
        vt = ValueType(routine.value_type)
        is_number = isinstance(value, (int, float)) and not isinstance(value, bool)

        if vt == ValueType.BOOLEAN and not isinstance(value, bool):
            raise ValidationError("Boolean routines take true/false")
        if vt in (ValueType.COUNTER, ValueType.DURATION, ValueType.SCALE) and not is_number:
            raise ValidationError(f"{vt.value.capitalize()} routines take a number")
        if vt == ValueType.CHECKLIST and not isinstance(value, list):
            raise ValidationError("Checklist routines take a list of checked flags")
        if vt in (ValueType.TEXT, ValueType.TIME) and not isinstance(value, str):
            raise ValidationError(f"{vt.value.capitalize()} routines take a string")
        if vt == ValueType.SCALE:
            config = routine.config or {}
            lo, hi = config.get("min"), config.get("max")
            if (lo is not None and value < lo) or (hi is not None and value > hi):
                raise ValidationError(f"Scale value must be between {lo} and {hi}")

    @staticmethod
    def _get_routine_for_update(db: Session, user_id: int, routine_id: int) -> RoutineTemplate:
        routine = db.query(RoutineTemplate).filter_by(id=routine_id, user_id=user_id).with_for_update().first()
        if not routine:
            raise NotFoundError("Routine")
        return routine

    @staticmethod
    def _get_log_for_update(db: Session, user_id: int, log_id: int) -> RoutineLog:
        log = db.query(RoutineLog).filter_by(id=log_id, user_id=user_id).with_for_update().first()
        if not log:
            raise NotFoundError("Routine log")
        return log

    @staticmethod
    def _upsert_row(db: Session, values: dict) -> RoutineLog:
        """INSERT ... ON CONFLICT (user_id, routine_id, date) DO UPDATE, then load the row."""
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise ValidationError(f"Routine log upsert is not supported on {dialect}")

        stmt = (
            insert(RoutineLog)
            .values(**values)
            .on_conflict_do_update(
                index_elements=["user_id", "routine_id", "date"],
                set_={
                    "data": values["data"],
                    "completion_percentage": values["completion_percentage"],
                    "counts_for_streak": values["counts_for_streak"],
                    "logged_at": values["logged_at"],
                },
            )
            .returning(RoutineLog.id)
        )
        log_id = db.execute(stmt).scalar_one()
        return db.get(RoutineLog, log_id, populate_existing=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    @staticmethod
    def upsert_log(db: Session, user_id: int, routine_id: int, day, data,
                   timezone_offset: int | None = None, now: datetime | None = None) -> RoutineLog:
        now = now or datetime.now(timezone.utc)
        log_day = RoutineLogService.normalize_day(day)
        payload = RoutineLogService._payload(data)

        with transaction(db):
            routine = RoutineLogService._get_routine_for_update(db, user_id, routine_id)
            RoutineLogService.validate_payload(routine, payload)
            completion = CompletionService.score(routine, payload)

            existing = db.query(RoutineLog).filter_by(
                user_id=user_id, routine_id=routine.id, date=log_day
            ).first()
            delta = CompletionService.compute_delta(
                routine.value_type, existing.data if existing else None, payload
            )
            if delta != 0:
                GoalService.apply_routine_delta(db, user_id, routine.id, delta, now=now)

            log = RoutineLogService._upsert_row(db, {
                "user_id": user_id,
                "routine_id": routine.id,
                "date": log_day,
                "data": payload,
                "completion_percentage": completion.completion_percentage,
                "counts_for_streak": completion.counts_for_streak,
                "logged_at": now,
            })
            RoutineLogService.recalculate_streaks(db, routine, timezone_offset, now)

        logger.info(
            f"Logged routine {routine_id} for user {user_id} on {log_day}: "
            f"{completion.completion_percentage}% (delta {delta:g})"
        )
        return log

    @staticmethod
    def update_log(db: Session, user_id: int, log_id: int, data: dict,
                   timezone_offset: int | None = None, now: datetime | None = None) -> RoutineLog:
        now = now or datetime.now(timezone.utc)
        changes = RoutineLogService._payload(data) if hasattr(data, "model_dump") else dict(data or {})

        with transaction(db):
            log = RoutineLogService._get_log_for_update(db, user_id, log_id)
            routine = RoutineLogService._get_routine_for_update(db, user_id, log.routine_id)

            old = dict(log.data or {})
            new = {
                "value": changes["value"] if "value" in changes else old.get("value"),
                "notes": changes["notes"] if "notes" in changes else old.get("notes"),
            }
            RoutineLogService.validate_payload(routine, new)
            completion = CompletionService.score(routine, new)

            delta = CompletionService.compute_delta(routine.value_type, old, new)
            if delta != 0:
                GoalService.apply_routine_delta(db, user_id, routine.id, delta, now=now)

            log.data = new
            log.completion_percentage = completion.completion_percentage
            log.counts_for_streak = completion.counts_for_streak
            log.logged_at = now
            db.flush()
            RoutineLogService.recalculate_streaks(db, routine, timezone_offset, now)
        return log

    @staticmethod
    def delete_log(db: Session, user_id: int, log_id: int,
                   timezone_offset: int | None = None, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)

        with transaction(db):
            log = RoutineLogService._get_log_for_update(db, user_id, log_id)
            routine = RoutineLogService._get_routine_for_update(db, user_id, log.routine_id)

            delta = CompletionService.compute_delta(routine.value_type, log.data, None)
            if delta != 0:
                GoalService.apply_routine_delta(db, user_id, routine.id, delta, now=now)

            db.delete(log)
            db.flush()
            RoutineLogService.recalculate_streaks(db, routine, timezone_offset, now)

        logger.info(f"Deleted routine log {log_id} for user {user_id} (delta {delta:g})")
        return True

    # ------------------------------------------------------------------
    # Streaks
    # ------------------------------------------------------------------
    @staticmethod
    def recalculate_streaks(db: Session, routine: RoutineTemplate,
                            timezone_offset: int | None = None, now: datetime | None = None):
        """Rebuild the routine's streak snapshot from every counting log."""
        days = [
            d for (d,) in db.query(RoutineLog.date)
            .filter_by(user_id=routine.user_id, routine_id=routine.id, counts_for_streak=True)
            .order_by(RoutineLog.date.desc())
            .all()
        ]
        previous = routine.current_streak or 0

        if not days:
            routine.current_streak = 0
            routine.longest_streak = 0
            routine.total_completions = 0
            routine.last_completed_date = None
            routine.banked_skips = 0
            return

        today = StreakService.reference_today(now, timezone_offset)
        result = StreakService.calculate(routine.schedule, days, today)
        routine.current_streak = result.current
        routine.longest_streak = result.longest
        routine.total_completions = len(days)
        routine.last_completed_date = days[0]
        routine.banked_skips = 0

        NotificationService.streak_milestone(db, routine, previous)

    @staticmethod
    def get_streak_snapshot(db: Session, user_id: int, routine_id: int) -> dict:
        routine = db.query(RoutineTemplate).filter_by(id=routine_id, user_id=user_id).first()
        if not routine:
            raise NotFoundError("Routine")
        return routine.streak_snapshot()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @staticmethod
    def get_logs(db: Session, user_id: int, routine_id: int | None = None, day=None,
                 start=None, end=None) -> list[RoutineLog]:
        query = db.query(RoutineLog).filter_by(user_id=user_id)
        if routine_id is not None:
            query = query.filter_by(routine_id=routine_id)
        if day is not None:
            query = query.filter(RoutineLog.date == RoutineLogService.normalize_day(day))
        else:
            if start is not None:
                query = query.filter(RoutineLog.date >= RoutineLogService.normalize_day(start))
            if end is not None:
                query = query.filter(RoutineLog.date <= RoutineLogService.normalize_day(end))
        return query.order_by(RoutineLog.date.desc(), RoutineLog.routine_id).all()

    @staticmethod
    def _period_start(period: str, today: date, created: date) -> date:
        if period == "week":
            return today - timedelta(days=7)
        if period in ("month", "year"):
            year, month = today.year, today.month
            if period == "year":
                year -= 1
            else:
                year, month = (year - 1, 12) if month == 1 else (year, month - 1)
            return date(year, month, min(today.day, calendar.monthrange(year, month)[1]))
        return created

    @staticmethod
    def get_stats(db: Session, user_id: int, routine_id: int, period: str = "month", start=None, end=None,
                  timezone_offset: int | None = None, now: datetime | None = None) -> dict:
        """
        Completion rate over a period (week, month, year, or since the routine
        was created) or an explicit start..end range, the completion trend of
        the last 7 days ending today, the 10 newest logs in range and the
        streak snapshot.
        """
        routine = db.query(RoutineTemplate).filter_by(id=routine_id, user_id=user_id).first()
        if not routine:
            raise NotFoundError("Routine")
        today = StreakService.reference_today(now, timezone_offset)

        if start is not None and end is not None:
            range_start = RoutineLogService.normalize_day(start)
            range_end = RoutineLogService.normalize_day(end)
        else:
            created = routine.created_at.date() if routine.created_at else today
            range_start = RoutineLogService._period_start(period, today, min(created, today))
            range_end = today
        if range_start > range_end:
            raise ValidationError("Stats range start must not be after its end")

        logs = RoutineLogService.get_logs(db, user_id, routine_id=routine.id, start=range_start, end=range_end)
        completed = sum(1 for l in logs if l.counts_for_streak)
        rate = round(completed / len(logs) * 100, 1) if logs else 0.0

        week_start = today - timedelta(days=6)
        by_day = {
            l.date: l.completion_percentage
            for l in RoutineLogService.get_logs(db, user_id, routine_id=routine.id, start=week_start, end=today)
        }
        trend = [by_day.get(week_start + timedelta(days=i), 0.0) for i in range(7)]

        snapshot = routine.streak_snapshot()
        return {
            "start": range_start,
            "end": range_end,
            "completion_rate": rate,
            "current_streak": snapshot["current_streak"],
            "longest_streak": snapshot["longest_streak"],
            "total_completions": snapshot["total_completions"],
            "weekly_trend": trend,
            "recent_logs": logs[:10],
        }
