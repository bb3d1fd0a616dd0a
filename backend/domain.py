"""
domain.py — Value types, schedules and small result records shared by the
routine/goal services. Schedules are stored as JSON on the routine row and
parsed back into one of the three schedule models below.
"""

from enum import Enum
from typing import Annotated, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from errors import ValidationError


class ValueType(str, Enum):
    BOOLEAN = "boolean"
    COUNTER = "counter"
    DURATION = "duration"
    SCALE = "scale"
    CHECKLIST = "checklist"
    TEXT = "text"
    TIME = "time"


class CompletionMode(str, Enum):
    STRICT = "strict"
    GRADUAL = "gradual"


class RoutineStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class GoalPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    INDEFINITE = "indefinite"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    FAILED = "failed"


class GoalTrackingType(str, Enum):
    BOOLEAN = "boolean"
    VALUE = "value"
    CHECKLIST = "checklist"


# ---------------------------------------------------------------------------
# Schedules (tagged on "type")
# ---------------------------------------------------------------------------

class SpecificDaysSchedule(BaseModel):
    type: Literal["specific_days"] = "specific_days"
    days: list[int] = Field(default_factory=list)  # 0 = Sunday ... 6 = Saturday
    dates: list[int] = Field(default_factory=list)  # day of month 1-31

    @field_validator("days")
    @classmethod
    def _check_days(cls, v):
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @field_validator("dates")
    @classmethod
    def _check_dates(cls, v):
        if any(d < 1 or d > 31 for d in v):
            raise ValueError("dates must be between 1 and 31")
        return sorted(set(v))


class FrequencySchedule(BaseModel):
    type: Literal["frequency"] = "frequency"
    count: int = Field(ge=1)
    period: Literal["week", "month"] = "week"


class IntervalSchedule(BaseModel):
    type: Literal["interval"] = "interval"
    value: int = Field(default=1, ge=1)
    unit: Literal["day", "week", "month"] = "day"


Schedule = Annotated[
    Union[SpecificDaysSchedule, FrequencySchedule, IntervalSchedule],
    Field(discriminator="type"),
]

_schedule_adapter = TypeAdapter(Schedule)


def parse_schedule(raw) -> Union[SpecificDaysSchedule, FrequencySchedule, IntervalSchedule]:
    """Accept a stored dict (or an already-parsed schedule) and return the model."""
    if isinstance(raw, (SpecificDaysSchedule, FrequencySchedule, IntervalSchedule)):
        return raw
    return _schedule_adapter.validate_python(raw or {"type": "specific_days"})


# ---------------------------------------------------------------------------
# Log payloads and results
# ---------------------------------------------------------------------------

class LogData(BaseModel):
    """What the user recorded for one routine on one day."""
    value: Optional[Union[bool, float, list[bool], str]] = None
    notes: Optional[str] = None


class Completion(NamedTuple):
    completion_percentage: float
    counts_for_streak: bool


class StreakResult(NamedTuple):
    current: int
    longest: int


def enum_value(enum_cls, raw, field: str) -> str:
    """Stored string for `raw`, or a ValidationError naming the field."""
    try:
        return enum_cls(raw).value
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {raw}") from e
