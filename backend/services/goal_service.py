"""
goal_service.py — Goal tracking and progress accumulation
Running totals, per-day progress logs, goal streaks, auto-completion and
roll-up of progress deltas through the parent chain.
"""

import calendar
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from database import transaction
from domain import GoalPeriod, GoalStatus, GoalTrackingType, enum_value
from errors import GoalCycleError, NotFoundError, ValidationError
from models.goal import Goal, GoalProgressLog, goal_routines
from models.routine import RoutineTemplate
from services.completion_service import CompletionService
from services.notification_service import NotificationService
from services.streak_service import StreakService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "title", "description", "period", "parent_goal_id", "tracking_type",
    "target_value", "status", "deadline", "notes",
}


class GoalService:
    @staticmethod
    def compute_deadline(period: str, start: date) -> date | None:
        """End of the period that contains `start`; indefinite goals have none."""
        period = GoalPeriod(period)
        if period == GoalPeriod.WEEKLY:
            return start + timedelta(days=6 - start.weekday())
        if period == GoalPeriod.MONTHLY:
            return date(start.year, start.month, calendar.monthrange(start.year, start.month)[1])
        if period == GoalPeriod.YEARLY:
            return date(start.year, 12, 31)
        return None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @staticmethod
    def get_by_id(db: Session, user_id: int, goal_id: int) -> Goal:
        goal = db.query(Goal).filter_by(id=goal_id, user_id=user_id).first()
        if not goal:
            raise NotFoundError("Goal")
        return goal

    @staticmethod
    def _get_for_update(db: Session, user_id: int, goal_id: int) -> Goal:
        goal = db.query(Goal).filter_by(id=goal_id, user_id=user_id).with_for_update().first()
        if not goal:
            raise NotFoundError("Goal")
        return goal

    @staticmethod
    def _owned_routines(db: Session, user_id: int, routine_ids) -> list[RoutineTemplate]:
        ids = set(routine_ids or [])
        if not ids:
            return []
        routines = db.query(RoutineTemplate).filter(
            RoutineTemplate.id.in_(ids), RoutineTemplate.user_id == user_id
        ).all()
        if len(routines) != len(ids):
            raise NotFoundError("Routine")
        return routines

    @staticmethod
    def _routine_contribution(routine: RoutineTemplate) -> float:
        return CompletionService.total_delta(routine.value_type, [log.data for log in routine.logs])

    @staticmethod
    def _check_parent(db: Session, user_id: int, goal_id: int | None, parent_id: int | None):
        """Reject a parent that is missing, or whose ancestor chain reaches goal_id."""
        if parent_id is None:
            return
        seen = set()
        cursor = GoalService.get_by_id(db, user_id, parent_id)
        while cursor is not None:
            if cursor.id == goal_id or cursor.id in seen:
                raise GoalCycleError(cursor.id)
            seen.add(cursor.id)
            if cursor.parent_goal_id is None:
                break
            cursor = db.query(Goal).filter_by(id=cursor.parent_goal_id, user_id=user_id).first()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    @staticmethod
    def create(db: Session, user_id: int, data: dict, today: date | None = None) -> Goal:
        today = today or StreakService.reference_today()
        period = GoalPeriod(enum_value(GoalPeriod, data.get("period", GoalPeriod.INDEFINITE), "period"))
        start = data.get("start_date") or today

        with transaction(db):
            GoalService._check_parent(db, user_id, None, data.get("parent_goal_id"))
            goal = Goal(
                user_id=user_id,
                title=data.get("title"),
                description=data.get("description"),
                period=period.value,
                parent_goal_id=data.get("parent_goal_id"),
                tracking_type=enum_value(GoalTrackingType, data.get("tracking_type", GoalTrackingType.VALUE), "tracking_type"),
                target_value=data.get("target_value"),
                status=enum_value(GoalStatus, data.get("status", GoalStatus.ACTIVE), "status"),
                start_date=start,
                deadline=data.get("deadline") or GoalService.compute_deadline(period, start),
                current_value=0.0,
                streak_current=0,
                streak_longest=0,
                total_completions=0,
            )
            goal.linked_routines = GoalService._owned_routines(db, user_id, data.get("linked_routines"))

            # Credit what already-logged routines would have contributed
            retro = GoalService._owned_routines(db, user_id, data.get("retroactive_routines"))
            goal.current_value += sum(GoalService._routine_contribution(r) for r in retro)

            db.add(goal)
        db.refresh(goal)
        logger.info(f"Created goal {goal.id} for user {user_id} ({goal.period}, deadline {goal.deadline})")
        return goal

    @staticmethod
    def get_all(db: Session, user_id: int, status: str | None = None) -> list[Goal]:
        query = db.query(Goal).filter_by(user_id=user_id)
        if status and status != "all":
            query = query.filter_by(status=status)
        elif not status:
            query = query.filter(Goal.status != GoalStatus.ARCHIVED.value)
        return query.order_by(Goal.deadline.is_(None), Goal.deadline, Goal.created_at.desc()).all()

    @staticmethod
    def update(db: Session, user_id: int, goal_id: int, data: dict) -> Goal:
        unknown = set(data) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update goal fields: {', '.join(sorted(unknown))}")

        with transaction(db):
            goal = GoalService._get_for_update(db, user_id, goal_id)
            if "parent_goal_id" in data:
                GoalService._check_parent(db, user_id, goal.id, data["parent_goal_id"])
            for k, v in data.items():
                if k == "period":
                    v = enum_value(GoalPeriod, v, k)
                elif k == "status":
                    v = enum_value(GoalStatus, v, k)
                elif k == "tracking_type":
                    v = enum_value(GoalTrackingType, v, k)
                setattr(goal, k, v)
            if "period" in data and "deadline" not in data:
                goal.deadline = GoalService.compute_deadline(goal.period, goal.start_date or StreakService.reference_today())
        db.refresh(goal)
        return goal

    @staticmethod
    def delete(db: Session, user_id: int, goal_id: int) -> bool:
        with transaction(db):
            goal = GoalService._get_for_update(db, user_id, goal_id)
            # Children survive as roots
            db.query(Goal).filter_by(parent_goal_id=goal.id).update(
                {Goal.parent_goal_id: None}, synchronize_session="fetch"
            )
            db.delete(goal)
        return True

    @staticmethod
    def link_routine(db: Session, user_id: int, goal_id: int, routine_id: int, retroactive: bool = False) -> Goal:
        with transaction(db):
            goal = GoalService._get_for_update(db, user_id, goal_id)
            routine = GoalService._owned_routines(db, user_id, [routine_id])[0]
            if routine not in goal.linked_routines:
                goal.linked_routines.append(routine)
                if retroactive:
                    goal.current_value = (goal.current_value or 0.0) + GoalService._routine_contribution(routine)
        db.refresh(goal)
        return goal

    @staticmethod
    def unlink_routine(db: Session, user_id: int, goal_id: int, routine_id: int) -> Goal:
        with transaction(db):
            goal = GoalService._get_for_update(db, user_id, goal_id)
            goal.linked_routines = [r for r in goal.linked_routines if r.id != routine_id]
        db.refresh(goal)
        return goal

    @staticmethod
    def get_hierarchy(db: Session, user_id: int) -> dict:
        """Build tree structure from parent pointers."""
        goals = GoalService.get_all(db, user_id, status="all")
        goals_dict = {g.id: {
            "id": g.id, "title": g.title, "period": g.period, "status": g.status,
            "progress": round(g.current_value / g.target_value * 100, 1) if g.target_value else 0,
            "children": []
        } for g in goals}

        roots = []
        for g in goals:
            if g.parent_goal_id and g.parent_goal_id in goals_dict:
                goals_dict[g.parent_goal_id]["children"].append(goals_dict[g.id])
            else:
                roots.append(goals_dict[g.id])
        return {"hierarchy": roots}

    @staticmethod
    def get_streak_snapshot(db: Session, user_id: int, goal_id: int) -> dict:
        goal = GoalService.get_by_id(db, user_id, goal_id)
        return {
            "current_streak": goal.streak_current,
            "longest_streak": goal.streak_longest,
            "total_completions": goal.total_completions,
            "last_completed_date": goal.last_log_date,
        }

    # ------------------------------------------------------------------
    # Progress accumulation
    # ------------------------------------------------------------------
    @staticmethod
    def update_progress(db: Session, user_id: int, goal_id: int, value: float | None = None,
                        mode: str = "add", notes: str | None = None,
                        now: datetime | None = None) -> Goal:
        """
        Record progress for today and roll the resulting delta up through every
        ancestor. The goal and all ancestors are written in one transaction.
        """
        if mode not in ("add", "set"):
            raise ValidationError(f"Unknown progress mode: {mode}")
        now = now or datetime.now(timezone.utc)
        today = StreakService.reference_today(now)

        with transaction(db):
            goal = GoalService._get_for_update(db, user_id, goal_id)
            delta = GoalService._record_progress(db, goal, value, mode, notes, today, now)
            GoalService._roll_up(db, user_id, goal, delta, today, now, visited={goal.id})
        db.refresh(goal)
        return goal

    @staticmethod
    def apply_routine_delta(db: Session, user_id: int, routine_id: int, delta: float,
                            now: datetime | None = None) -> list[Goal]:
        """
        Push a routine log's delta into every goal linked to the routine
        and on up their parent chains. Runs inside the caller's transaction.
        """
        if delta == 0:
            return []
        now = now or datetime.now(timezone.utc)
        today = StreakService.reference_today(now)

        goals = (
            db.query(Goal)
            .join(goal_routines, goal_routines.c.goal_id == Goal.id)
            .filter(
                goal_routines.c.routine_id == routine_id,
                Goal.user_id == user_id,
            )
            .order_by(Goal.id)
            .with_for_update(of=Goal)
            .all()
        )
        for goal in goals:
            db.flush()
            db.execute(
                update(Goal)
                .where(Goal.id == goal.id)
                .values(current_value=Goal.current_value + delta, last_update=now)
                .execution_options(synchronize_session=False)
            )
            db.refresh(goal)
            GoalService._check_completion(db, goal)
            GoalService._roll_up(db, user_id, goal, delta, today, now, visited={goal.id})
        return goals

    @staticmethod
    def _record_progress(db: Session, goal: Goal, value, mode: str, notes, today: date, now: datetime) -> float:
        """Upsert today's progress entry, update totals and streak. Returns the delta."""
        if notes:
            goal.notes = notes

        log_value = float(value) if value is not None else 1.0
        is_boolean = goal.tracking_type == GoalTrackingType.BOOLEAN.value

        entry = next((l for l in goal.progress_logs if l.date == today), None)
        if entry is not None:
            old = entry.value
            if mode == "add":
                new = 1.0 if is_boolean else old + log_value
            else:
                new = log_value
            entry.value = new
            delta = new - old
        else:
            delta = log_value
            goal.progress_logs.append(GoalProgressLog(date=today, value=log_value))
            goal.total_completions = (goal.total_completions or 0) + 1

        goal.current_value = (goal.current_value or 0.0) + delta

        days = [l.date for l in goal.progress_logs if l.value > 0]
        streak = StreakService.calculate(StreakService.every_day(), days, today)
        goal.streak_current = streak.current
        goal.streak_longest = streak.longest
        goal.last_log_date = today
        goal.last_update = now

        GoalService._check_completion(db, goal)
        return delta

    @staticmethod
    def _check_completion(db: Session, goal: Goal):
        # One-way: dropping below target later does not reopen the goal
        if goal.period == GoalPeriod.INDEFINITE.value or goal.status != GoalStatus.ACTIVE.value:
            return
        if goal.target_value and goal.target_value > 0 and (goal.current_value or 0) >= goal.target_value:
            goal.status = GoalStatus.COMPLETED.value
            logger.info(f"Goal {goal.id} completed ({goal.current_value:g}/{goal.target_value:g})")
            NotificationService.goal_completed(db, goal)

    @staticmethod
    def _roll_up(db: Session, user_id: int, goal: Goal, delta: float, today: date, now: datetime, visited: set):
        parent_id = goal.parent_goal_id
        while parent_id is not None and delta != 0:
            if parent_id in visited:
                raise GoalCycleError(parent_id)
            visited.add(parent_id)
            parent = GoalService._get_for_update(db, user_id, parent_id)
            delta = GoalService._record_progress(db, parent, delta, "add", None, today, now)
            parent_id = parent.parent_goal_id
