from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import Optional, Union

from auth import get_current_user
from database import get_db, run_with_retry
from domain import LogData
from services.routine_log_service import RoutineLogService

router = APIRouter(prefix="/api/v1/routine-logs", tags=["Routine Logs"])


class LogUpsert(BaseModel):
    routine_id: int
    date: str
    data: LogData = LogData()
    timezone_offset: Optional[int] = None


class LogUpdate(BaseModel):
    value: Optional[Union[bool, float, list[bool], str]] = None
    notes: Optional[str] = None
    timezone_offset: Optional[int] = None


def log_to_dict(log) -> dict:
    return {
        "id": log.id,
        "routine_id": log.routine_id,
        "date": log.date,
        "data": log.data,
        "completion_percentage": log.completion_percentage,
        "counts_for_streak": log.counts_for_streak,
        "logged_at": log.logged_at,
    }


@router.get("")
def list_logs(routine_id: Optional[int] = None, day: Optional[date] = None,
              start: Optional[date] = None, end: Optional[date] = None,
              user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    logs = RoutineLogService.get_logs(db, user_id, routine_id=routine_id, day=day, start=start, end=end)
    return [log_to_dict(l) for l in logs]


@router.post("")
def upsert_log(log_data: LogUpsert, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    log = run_with_retry(lambda: RoutineLogService.upsert_log(
        db, user_id, log_data.routine_id, log_data.date, log_data.data,
        timezone_offset=log_data.timezone_offset,
    ))
    routine_streak = RoutineLogService.get_streak_snapshot(db, user_id, log_data.routine_id)
    return {"status": "success", "data": log_to_dict(log), "streak": routine_streak}


@router.put("/{log_id}")
def update_log(log_id: int, log_data: LogUpdate, user_id: int = Depends(get_current_user),
               db: Session = Depends(get_db)):
    changes = log_data.model_dump(exclude_unset=True, exclude={"timezone_offset"})
    log = run_with_retry(lambda: RoutineLogService.update_log(
        db, user_id, log_id, changes, timezone_offset=log_data.timezone_offset,
    ))
    return {"status": "success", "data": log_to_dict(log)}


@router.delete("/{log_id}")
def delete_log(log_id: int, timezone_offset: Optional[int] = None,
               user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    run_with_retry(lambda: RoutineLogService.delete_log(db, user_id, log_id, timezone_offset=timezone_offset))
    return {"status": "success"}
