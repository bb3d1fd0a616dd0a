from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from datetime import date
from typing import Literal, Optional

from auth import get_current_user
from database import get_db, run_with_retry
from domain import CompletionMode, RoutineStatus, Schedule, ValueType
from routes.routine_log_routes import log_to_dict
from services.routine_log_service import RoutineLogService
from services.routine_service import RoutineService

router = APIRouter(prefix="/api/v1/routines", tags=["Routines"])


class RoutineCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = None
    value_type: ValueType = ValueType.BOOLEAN
    config: dict = Field(default_factory=dict)
    schedule: Optional[Schedule] = None
    completion_mode: CompletionMode = CompletionMode.STRICT
    gradual_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    order: int = 0


class RoutineUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = None
    value_type: Optional[ValueType] = None
    config: Optional[dict] = None
    schedule: Optional[Schedule] = None
    completion_mode: Optional[CompletionMode] = None
    gradual_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    status: Optional[RoutineStatus] = None
    order: Optional[int] = None


class RoutineOrder(BaseModel):
    routine_ids: list[int]


def routine_to_dict(r) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "description": r.description,
        "icon": r.icon,
        "value_type": r.value_type,
        "config": r.config,
        "schedule": r.schedule,
        "completion_mode": r.completion_mode,
        "gradual_threshold": r.gradual_threshold,
        "status": r.status,
        "order": r.order,
        "archived_at": r.archived_at,
        "created_at": r.created_at,
        **r.streak_snapshot(),
    }


@router.get("")
def list_routines(status: Optional[str] = None, user_id: int = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    return [routine_to_dict(r) for r in RoutineService.get_all(db, user_id, status)]


@router.post("")
def create_routine(routine_data: RoutineCreate, user_id: int = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    data = routine_data.model_dump(exclude_unset=True, mode="json")
    routine = RoutineService.create(db, user_id, data)
    return {"status": "success", "data": routine_to_dict(routine)}


@router.put("/order")
def reorder_routines(order: RoutineOrder, user_id: int = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    routines = run_with_retry(lambda: RoutineService.reorder(db, user_id, order.routine_ids))
    return [routine_to_dict(r) for r in routines]


@router.get("/{routine_id}")
def get_routine(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return routine_to_dict(RoutineService.get_by_id(db, user_id, routine_id))


@router.put("/{routine_id}")
def update_routine(routine_id: int, routine_data: RoutineUpdate, timezone_offset: Optional[int] = None,
                   user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    data = routine_data.model_dump(exclude_unset=True, mode="json")
    routine = run_with_retry(
        lambda: RoutineService.update(db, user_id, routine_id, data, timezone_offset=timezone_offset)
    )
    return {"status": "success", "data": routine_to_dict(routine)}


@router.delete("/{routine_id}")
def delete_routine(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    run_with_retry(lambda: RoutineService.delete(db, user_id, routine_id))
    return {"status": "success"}


@router.post("/{routine_id}/pause")
def pause_routine(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    routine = run_with_retry(lambda: RoutineService.pause(db, user_id, routine_id))
    return routine_to_dict(routine)


@router.post("/{routine_id}/resume")
def resume_routine(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    routine = run_with_retry(lambda: RoutineService.resume(db, user_id, routine_id))
    return routine_to_dict(routine)


@router.post("/{routine_id}/archive")
def archive_routine(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    routine = run_with_retry(lambda: RoutineService.archive(db, user_id, routine_id))
    return routine_to_dict(routine)


@router.post("/{routine_id}/unarchive")
def unarchive_routine(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    routine = run_with_retry(lambda: RoutineService.unarchive(db, user_id, routine_id))
    return routine_to_dict(routine)


@router.get("/{routine_id}/streak")
def routine_streak(routine_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return RoutineLogService.get_streak_snapshot(db, user_id, routine_id)


@router.get("/{routine_id}/stats")
def routine_stats(routine_id: int, period: Literal["week", "month", "year", "all"] = "month",
                  start: Optional[date] = None, end: Optional[date] = None, timezone_offset: Optional[int] = None,
                  user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    stats = RoutineLogService.get_stats(db, user_id, routine_id, period=period, start=start, end=end,
                                        timezone_offset=timezone_offset)
    stats["recent_logs"] = [log_to_dict(l) for l in stats["recent_logs"]]
    return stats
