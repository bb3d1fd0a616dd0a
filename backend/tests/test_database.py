from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from database import is_retryable, run_with_retry, transaction
from errors import ConflictError, TransactionAbortError
from models.routine import RoutineTemplate
from models.routine_log import RoutineLog


class PgError(Exception):
    def __init__(self, pgcode):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _routine(db, user_id):
    routine = RoutineTemplate(user_id=user_id, name="Read", value_type="boolean", schedule={"type": "specific_days"})
    with transaction(db):
        db.add(routine)
    return routine


class TestTransactionErrorMapping:
    def test_unique_violation_is_a_conflict(self, db, user_id):
        routine = _routine(db, user_id)
        with pytest.raises(ConflictError):
            with transaction(db):
                for _ in range(2):
                    db.add(RoutineLog(user_id=user_id, routine_id=routine.id, date=date(2024, 1, 1), data={}))
        assert db.query(RoutineLog).count() == 0

    def test_not_null_violation_aborts(self, db, user_id):
        with pytest.raises(TransactionAbortError):
            with transaction(db):
                db.add(RoutineTemplate(user_id=user_id, name=None, value_type="boolean", schedule={}))
        assert db.query(RoutineTemplate).count() == 0

    def test_foreign_key_violation_aborts(self, db, user_id):
        with pytest.raises(TransactionAbortError):
            with transaction(db):
                db.add(RoutineLog(user_id=user_id, routine_id=999, date=date(2024, 1, 1), data={}))

    def test_locked_database_is_a_conflict(self, db):
        with pytest.raises(ConflictError):
            with transaction(db):
                raise OperationalError("UPDATE goals", {}, Exception("database is locked"))

    def test_missing_table_aborts(self, db):
        with pytest.raises(TransactionAbortError):
            with transaction(db):
                raise OperationalError("SELECT 1", {}, Exception("no such table: goals"))


class TestIsRetryable:
    @pytest.mark.parametrize("code", ["23505", "40001", "40P01"])
    def test_postgres_conflicts(self, code):
        assert is_retryable(IntegrityError("INSERT", {}, PgError(code)))

    @pytest.mark.parametrize("code", ["23503", "23502", "42P01"])
    def test_postgres_other_failures(self, code):
        assert not is_retryable(IntegrityError("INSERT", {}, PgError(code)))


def test_run_with_retry_gives_up_after_attempts():
    calls = []

    def work():
        calls.append(1)
        raise ConflictError()

    with pytest.raises(ConflictError):
        run_with_retry(work, attempts=3, backoff_seconds=0)
    assert len(calls) == 3


def test_run_with_retry_does_not_retry_aborts():
    calls = []

    def work():
        calls.append(1)
        raise TransactionAbortError()

    with pytest.raises(TransactionAbortError):
        run_with_retry(work, attempts=3, backoff_seconds=0)
    assert len(calls) == 1
