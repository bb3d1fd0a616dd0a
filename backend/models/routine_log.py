from datetime import datetime, timezone

from sqlalchemy import Column, Integer, Date, DateTime, Boolean, Float, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base


class RoutineLog(Base):
    __tablename__ = "routine_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)  # owner, verified by the auth layer
    routine_id = Column(Integer, ForeignKey("routine_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)  # UTC day, the natural key
    data = Column(JSON, nullable=False, default=dict)  # {"value": ..., "notes": ...}
    completion_percentage = Column(Float, default=0.0, nullable=False)
    counts_for_streak = Column(Boolean, default=False, nullable=False)
    logged_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    routine = relationship("RoutineTemplate", back_populates="logs")

    __table_args__ = (
        UniqueConstraint("user_id", "routine_id", "date", name="uq_routine_log_day"),
    )
