from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Date, Float, ForeignKey, Table, UniqueConstraint, event,
)
from sqlalchemy.orm import relationship
from database import Base


goal_routines = Table(
    "goal_routines",
    Base.metadata,
    Column("goal_id", Integer, ForeignKey("goals.id", ondelete="CASCADE"), primary_key=True),
    Column("routine_id", Integer, ForeignKey("routine_templates.id", ondelete="CASCADE"), primary_key=True),
)


class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)  # owner, verified by the auth layer
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    period = Column(String(20), nullable=False, default="indefinite")  # weekly/monthly/yearly/indefinite
    parent_goal_id = Column(Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)
    tracking_type = Column(String(20), default="value")  # boolean/value/checklist
    target_value = Column(Float, nullable=True)  # e.g., 5.0 for "5 projects"
    status = Column(String(20), default="active", index=True)  # active/completed/archived/failed
    start_date = Column(Date, nullable=True)
    deadline = Column(Date, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Progress
    current_value = Column(Float, default=0.0, nullable=False)
    streak_current = Column(Integer, default=0, nullable=False)
    streak_longest = Column(Integer, default=0, nullable=False)
    total_completions = Column(Integer, default=0, nullable=False)
    last_log_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    last_update = Column(DateTime, nullable=True)

    progress_logs = relationship(
        "GoalProgressLog", back_populates="goal", cascade="all, delete-orphan",
        order_by="GoalProgressLog.date",
    )
    linked_routines = relationship("RoutineTemplate", secondary=goal_routines, back_populates="linked_goals")


class GoalProgressLog(Base):
    __tablename__ = "goal_progress_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    value = Column(Float, default=0.0, nullable=False)

    goal = relationship("Goal", back_populates="progress_logs")

    __table_args__ = (
        UniqueConstraint("goal_id", "date", name="uq_goal_progress_day"),
    )


@event.listens_for(Goal.status, "set")
def _sync_completed_at(target, value, oldvalue, initiator):
    # completed_at is set exactly when status is "completed"
    if value == "completed":
        if target.completed_at is None:
            target.completed_at = datetime.now(timezone.utc)
    else:
        target.completed_at = None
