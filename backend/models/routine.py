from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Date, JSON
from sqlalchemy.orm import relationship
from database import Base


class RoutineTemplate(Base):
    __tablename__ = "routine_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)  # owner, verified by the auth layer
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(10), nullable=True)  # emoji
    value_type = Column(String(20), nullable=False)  # boolean/counter/duration/scale/checklist/text/time
    config = Column(JSON, nullable=False, default=dict)  # {"items": [...], "target": 8, "unit": "glasses", ...}
    schedule = Column(JSON, nullable=False)  # {"type": "specific_days", "days": [1, 2, 3, 4, 5]}
    completion_mode = Column(String(10), default="strict")  # strict/gradual
    gradual_threshold = Column(Integer, default=80)
    status = Column(String(20), default="active", index=True)  # active/paused/archived
    order = Column(Integer, default=0)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Streak snapshot, rewritten from the full log history after every log change
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    total_completions = Column(Integer, default=0, nullable=False)
    last_completed_date = Column(Date, nullable=True)
    banked_skips = Column(Integer, default=0, nullable=False)

    logs = relationship("RoutineLog", back_populates="routine", cascade="all, delete-orphan", passive_deletes=True)
    linked_goals = relationship("Goal", secondary="goal_routines", back_populates="linked_routines")

    def streak_snapshot(self) -> dict:
        return {
            "current_streak": self.current_streak or 0,
            "longest_streak": self.longest_streak or 0,
            "total_completions": self.total_completions or 0,
            "last_completed_date": self.last_completed_date,
            "banked_skips": self.banked_skips or 0,
        }
