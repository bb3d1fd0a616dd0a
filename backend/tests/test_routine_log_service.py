import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from database import run_with_retry
from errors import NotFoundError, TransactionAbortError, ValidationError
from models.goal import Goal
from models.notification import Notification
from models.routine import RoutineTemplate
from models.routine_log import RoutineLog
from services.goal_service import GoalService
from services.routine_log_service import RoutineLogService
from services.routine_service import RoutineService
from services.streak_service import StreakService

WEEKDAYS = {"type": "specific_days", "days": [1, 2, 3, 4, 5]}


def noon(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc)


def make_routine(db, user_id, **overrides):
    data = {"name": "Water", "value_type": "counter", "config": {"target": 8}, "schedule": WEEKDAYS}
    data.update(overrides)
    return RoutineService.create(db, user_id, data)


def make_goal(db, user_id, routine_ids, **overrides):
    data = {"title": "Drink 100 glasses", "period": "indefinite", "target_value": 100,
            "linked_routines": routine_ids}
    data.update(overrides)
    return GoalService.create(db, user_id, data)


class TestUpsertLog:
    def test_creates_scored_log(self, db, user_id):
        routine = make_routine(db, user_id)
        log = RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 4},
                                           now=noon(date(2024, 1, 1)))
        assert log.completion_percentage == 50
        assert log.counts_for_streak is False
        assert log.data == {"value": 4, "notes": None}

    def test_same_day_updates_single_log(self, db, user_id):
        routine = make_routine(db, user_id)
        day = date(2024, 1, 1)
        RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 4}, now=noon(day))
        log = RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 8}, now=noon(day))

        assert db.query(RoutineLog).filter_by(routine_id=routine.id).count() == 1
        assert log.completion_percentage == 100
        assert log.counts_for_streak is True

    def test_iso_timestamp_maps_to_utc_day(self, db, user_id):
        routine = make_routine(db, user_id)
        log = RoutineLogService.upsert_log(db, user_id, routine.id, "2024-01-01T23:30:00-05:00", {"value": 8})
        assert log.date == date(2024, 1, 2)

    def test_unknown_routine(self, db, user_id):
        with pytest.raises(NotFoundError):
            RoutineLogService.upsert_log(db, user_id, 999, date(2024, 1, 1), {"value": 1})

    def test_other_users_routine_is_not_found(self, db, user_id, other_user_id):
        routine = make_routine(db, other_user_id)
        with pytest.raises(NotFoundError):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 1})

    def test_incompatible_value_is_rejected(self, db, user_id):
        routine = make_routine(db, user_id)
        with pytest.raises(ValidationError):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": "lots"})
        assert db.query(RoutineLog).count() == 0

    def test_scale_out_of_range_is_rejected(self, db, user_id):
        routine = make_routine(db, user_id, value_type="scale", config={"min": 1, "max": 5})
        with pytest.raises(ValidationError):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 9})


class TestGoalPropagation:
    def test_deltas_reach_linked_goal(self, db, user_id):
        routine = make_routine(db, user_id)
        goal = make_goal(db, user_id, [routine.id])
        day = date(2024, 1, 1)

        RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 3}, now=noon(day))
        db.refresh(goal)
        assert goal.current_value == 3

        RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 5}, now=noon(day))
        db.refresh(goal)
        assert goal.current_value == 5

    def test_create_then_delete_leaves_goal_unchanged(self, db, user_id):
        routine = make_routine(db, user_id)
        goal = make_goal(db, user_id, [routine.id])
        day = date(2024, 1, 1)

        log = RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 6}, now=noon(day))
        RoutineLogService.delete_log(db, user_id, log.id, now=noon(day))

        db.refresh(goal)
        assert goal.current_value == 0
        assert db.query(RoutineLog).count() == 0

    def test_update_log_applies_difference(self, db, user_id):
        routine = make_routine(db, user_id)
        goal = make_goal(db, user_id, [routine.id])
        day = date(2024, 1, 1)

        log = RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 2, "notes": "am"}, now=noon(day))
        log = RoutineLogService.update_log(db, user_id, log.id, {"value": 7}, now=noon(day))

        assert log.data == {"value": 7, "notes": "am"}
        db.refresh(goal)
        assert goal.current_value == 7

    def test_update_log_can_clear_notes(self, db, user_id):
        routine = make_routine(db, user_id)
        day = date(2024, 1, 1)

        log = RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 2, "notes": "am"}, now=noon(day))
        log = RoutineLogService.update_log(db, user_id, log.id, {"notes": None}, now=noon(day))
        assert log.data == {"value": 2, "notes": None}

    def test_completed_goal_gets_inverse_delta(self, db, user_id):
        routine = make_routine(db, user_id)
        goal = make_goal(db, user_id, [routine.id], period="weekly", target_value=5)
        day = date(2024, 1, 1)

        log = RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 5}, now=noon(day))
        db.refresh(goal)
        assert goal.status == "completed"
        assert goal.current_value == 5

        RoutineLogService.delete_log(db, user_id, log.id, now=noon(day))
        db.refresh(goal)
        assert goal.current_value == 0
        # Completion is one-way
        assert goal.status == "completed"

    def test_archived_goals_still_track_contributions(self, db, user_id):
        routine = make_routine(db, user_id)
        goal = make_goal(db, user_id, [routine.id], status="archived")
        day = date(2024, 1, 1)

        RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 3}, now=noon(day))
        db.refresh(goal)
        assert goal.current_value == 3
        assert goal.status == "archived"

    def test_delta_rolls_up_to_parent(self, db, user_id):
        routine = make_routine(db, user_id)
        parent = make_goal(db, user_id, [], title="Healthy year")
        child = make_goal(db, user_id, [routine.id], parent_goal_id=parent.id)
        day = date(2024, 1, 1)

        RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 4}, now=noon(day))
        db.refresh(child)
        db.refresh(parent)
        assert child.current_value == 4
        assert parent.current_value == 4

    def test_failure_rolls_back_everything(self, db, user_id, monkeypatch):
        routine = make_routine(db, user_id)
        goal = make_goal(db, user_id, [routine.id])

        def boom(*args, **kwargs):
            raise RuntimeError("streak store unavailable")

        monkeypatch.setattr(StreakService, "calculate", staticmethod(boom))
        with pytest.raises(TransactionAbortError):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 3})

        db.refresh(goal)
        assert goal.current_value == 0
        assert db.query(RoutineLog).count() == 0


class TestStreaks:
    def test_snapshot_rebuilt_on_each_write(self, db, user_id):
        routine = make_routine(db, user_id)
        now = noon(date(2024, 1, 4))
        for day in (1, 2, 3):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, day), {"value": 8}, now=now)

        snapshot = RoutineLogService.get_streak_snapshot(db, user_id, routine.id)
        assert snapshot["current_streak"] == 3
        assert snapshot["longest_streak"] == 3
        assert snapshot["total_completions"] == 3
        assert snapshot["last_completed_date"] == date(2024, 1, 3)
        assert snapshot["banked_skips"] == 0

    def test_partial_logs_do_not_count_in_strict_mode(self, db, user_id):
        routine = make_routine(db, user_id)
        now = noon(date(2024, 1, 3))
        RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 8}, now=now)
        RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 2), {"value": 7}, now=now)
        RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 3), {"value": 8}, now=now)

        db.refresh(routine)
        assert routine.current_streak == 1
        assert routine.longest_streak == 1
        assert routine.total_completions == 2

    def test_deleting_last_log_resets_snapshot(self, db, user_id):
        routine = make_routine(db, user_id)
        day = date(2024, 1, 1)
        log = RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 8}, now=noon(day))
        RoutineLogService.delete_log(db, user_id, log.id, now=noon(day))

        db.refresh(routine)
        assert routine.streak_snapshot()["current_streak"] == 0
        assert routine.last_completed_date is None

    def test_timezone_offset_decides_today(self, db, user_id):
        routine = make_routine(db, user_id, schedule={"type": "specific_days", "days": [0, 1, 2, 3, 4, 5, 6]})
        # 02:00 UTC on the 3rd is still the 2nd at UTC-5
        now = datetime(2024, 1, 3, 2, 0, tzinfo=timezone.utc)
        RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 8},
                                     timezone_offset=300, now=now)
        db.refresh(routine)
        assert routine.current_streak == 1

    def test_milestone_notifies_once(self, db, user_id):
        routine = make_routine(db, user_id, schedule={"type": "specific_days", "days": [0, 1, 2, 3, 4, 5, 6]})
        start = date(2024, 1, 1)
        for i in range(7):
            day = start + timedelta(days=i)
            RoutineLogService.upsert_log(db, user_id, routine.id, day, {"value": 8}, now=noon(day))
        # Re-logging the same day keeps the streak at 7
        RoutineLogService.upsert_log(db, user_id, routine.id, start + timedelta(days=6), {"value": 9},
                                     now=noon(start + timedelta(days=6)))

        notes = db.query(Notification).filter_by(user_id=user_id, type="streak").all()
        assert len(notes) == 1
        assert notes[0].reference_id == routine.id


class TestGetLogs:
    def test_filters_by_range(self, db, user_id):
        routine = make_routine(db, user_id)
        for day in (1, 2, 3, 4):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, day), {"value": 1})

        logs = RoutineLogService.get_logs(db, user_id, routine_id=routine.id,
                                          start=date(2024, 1, 2), end=date(2024, 1, 3))
        assert [l.date for l in logs] == [date(2024, 1, 3), date(2024, 1, 2)]

    def test_single_day(self, db, user_id):
        routine = make_routine(db, user_id)
        RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, 1), {"value": 1})
        assert len(RoutineLogService.get_logs(db, user_id, day="2024-01-01")) == 1

    def test_missing_log_update_and_delete(self, db, user_id):
        with pytest.raises(NotFoundError):
            RoutineLogService.update_log(db, user_id, 42, {"value": 1})
        with pytest.raises(NotFoundError):
            RoutineLogService.delete_log(db, user_id, 42)


class TestStats:
    NOW = noon(date(2024, 1, 10))

    def _logged_routine(self, db, user_id):
        routine = make_routine(db, user_id)
        for day, value in ((4, 8), (8, 4), (9, 8), (10, 8)):
            RoutineLogService.upsert_log(db, user_id, routine.id, date(2024, 1, day), {"value": value}, now=self.NOW)
        return routine

    def test_week(self, db, user_id):
        routine = self._logged_routine(db, user_id)
        stats = RoutineLogService.get_stats(db, user_id, routine.id, period="week", now=self.NOW)

        assert stats["start"] == date(2024, 1, 3)
        assert stats["end"] == date(2024, 1, 10)
        assert stats["completion_rate"] == 75.0
        assert stats["weekly_trend"] == [100, 0, 0, 0, 50, 100, 100]
        assert [l.date.day for l in stats["recent_logs"]] == [10, 9, 8, 4]
        assert stats["total_completions"] == 3
        assert stats["current_streak"] == routine.current_streak

    def test_month_reaches_back_one_calendar_month(self, db, user_id):
        routine = self._logged_routine(db, user_id)
        stats = RoutineLogService.get_stats(db, user_id, routine.id, now=self.NOW)
        assert stats["start"] == date(2023, 12, 10)
        assert len(stats["recent_logs"]) == 4

    def test_explicit_range(self, db, user_id):
        routine = self._logged_routine(db, user_id)
        stats = RoutineLogService.get_stats(db, user_id, routine.id, start="2024-01-08", end="2024-01-09",
                                            now=self.NOW)
        assert stats["completion_rate"] == 50.0
        # The trend always covers the last 7 days
        assert stats["weekly_trend"][-1] == 100

    def test_no_logs(self, db, user_id):
        routine = make_routine(db, user_id)
        stats = RoutineLogService.get_stats(db, user_id, routine.id, period="all", now=self.NOW)
        assert stats["completion_rate"] == 0
        assert stats["weekly_trend"] == [0] * 7
        assert stats["recent_logs"] == []

    def test_reversed_range(self, db, user_id):
        routine = make_routine(db, user_id)
        with pytest.raises(ValidationError):
            RoutineLogService.get_stats(db, user_id, routine.id, start=date(2024, 1, 9), end=date(2024, 1, 1))

    def test_unknown_routine(self, db, user_id):
        with pytest.raises(NotFoundError):
            RoutineLogService.get_stats(db, user_id, 404)


def test_concurrent_upserts_leave_one_log(db, session_factory, user_id):
    routine = make_routine(db, user_id)
    goal = make_goal(db, user_id, [routine.id])
    routine_id, goal_id = routine.id, goal.id
    db.close()

    day = date(2024, 1, 1)
    errors = []

    def worker():
        session = session_factory()
        try:
            run_with_retry(lambda: RoutineLogService.upsert_log(
                session, user_id, routine_id, day, {"value": 5}, now=noon(day)
            ))
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    check = session_factory()
    try:
        assert check.query(RoutineLog).filter_by(routine_id=routine_id).count() == 1
        # Only the first write changes the value; the rest have delta 0
        assert check.get(Goal, goal_id).current_value == 5
        assert check.get(RoutineTemplate, routine_id).total_completions == 0
    finally:
        check.close()
