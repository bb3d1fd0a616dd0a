from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Literal, Optional

from auth import get_current_user
from database import get_db, run_with_retry
from domain import GoalPeriod, GoalStatus, GoalTrackingType
from services.goal_service import GoalService

router = APIRouter(prefix="/api/v1/goals", tags=["Goals"])


class GoalCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    period: GoalPeriod = GoalPeriod.INDEFINITE
    tracking_type: GoalTrackingType = GoalTrackingType.VALUE
    target_value: Optional[float] = None
    start_date: Optional[date] = None
    deadline: Optional[date] = None
    parent_goal_id: Optional[int] = None
    status: GoalStatus = GoalStatus.ACTIVE
    linked_routines: list[int] = Field(default_factory=list)
    retroactive_routines: list[int] = Field(default_factory=list)


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    period: Optional[GoalPeriod] = None
    tracking_type: Optional[GoalTrackingType] = None
    target_value: Optional[float] = None
    deadline: Optional[date] = None
    parent_goal_id: Optional[int] = None
    status: Optional[GoalStatus] = None
    notes: Optional[str] = None


class GoalProgress(BaseModel):
    value: Optional[float] = None
    mode: Literal["add", "set"] = "add"
    notes: Optional[str] = None


def goal_to_dict(g) -> dict:
    return {
        "id": g.id,
        "title": g.title,
        "description": g.description,
        "period": g.period,
        "parent_goal_id": g.parent_goal_id,
        "tracking_type": g.tracking_type,
        "target_value": g.target_value,
        "current_value": g.current_value,
        "status": g.status,
        "start_date": g.start_date,
        "deadline": g.deadline,
        "completed_at": g.completed_at,
        "streak_current": g.streak_current,
        "streak_longest": g.streak_longest,
        "total_completions": g.total_completions,
        "last_log_date": g.last_log_date,
        "notes": g.notes,
        "linked_routines": [r.id for r in g.linked_routines],
        "created_at": g.created_at,
    }


@router.get("")
def list_goals(status: Optional[str] = None, user_id: int = Depends(get_current_user),
               db: Session = Depends(get_db)):
    return [goal_to_dict(g) for g in GoalService.get_all(db, user_id, status)]


@router.post("")
def create_goal(goal_data: GoalCreate, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    data = goal_data.model_dump(exclude_unset=True)
    goal = GoalService.create(db, user_id, data)
    return {"status": "success", "data": goal_to_dict(goal)}


@router.get("/hierarchy")
def goal_hierarchy(user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return GoalService.get_hierarchy(db, user_id)


@router.get("/{goal_id}")
def get_goal(goal_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return goal_to_dict(GoalService.get_by_id(db, user_id, goal_id))


@router.put("/{goal_id}")
def update_goal(goal_id: int, goal_data: GoalUpdate, user_id: int = Depends(get_current_user),
                db: Session = Depends(get_db)):
    data = goal_data.model_dump(exclude_unset=True)
    goal = run_with_retry(lambda: GoalService.update(db, user_id, goal_id, data))
    return {"status": "success", "data": goal_to_dict(goal)}


@router.delete("/{goal_id}")
def delete_goal(goal_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    run_with_retry(lambda: GoalService.delete(db, user_id, goal_id))
    return {"status": "success"}


@router.post("/{goal_id}/progress")
def update_goal_progress(goal_id: int, progress: GoalProgress, user_id: int = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    goal = run_with_retry(lambda: GoalService.update_progress(
        db, user_id, goal_id, value=progress.value, mode=progress.mode, notes=progress.notes,
    ))
    return {"status": "success", "data": goal_to_dict(goal)}


@router.get("/{goal_id}/streak")
def goal_streak(goal_id: int, user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    return GoalService.get_streak_snapshot(db, user_id, goal_id)


@router.post("/{goal_id}/routines/{routine_id}")
def link_routine(goal_id: int, routine_id: int, retroactive: bool = False,
                 user_id: int = Depends(get_current_user), db: Session = Depends(get_db)):
    goal = run_with_retry(lambda: GoalService.link_routine(db, user_id, goal_id, routine_id, retroactive=retroactive))
    return {"status": "success", "data": goal_to_dict(goal)}


@router.delete("/{goal_id}/routines/{routine_id}")
def unlink_routine(goal_id: int, routine_id: int, user_id: int = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    goal = run_with_retry(lambda: GoalService.unlink_routine(db, user_id, goal_id, routine_id))
    return {"status": "success", "data": goal_to_dict(goal)}
