"""
schedule_service.py — Calendar membership for routine schedules
Answers "was this day due?" and "may this gap be skipped without breaking the streak?".
"""

from datetime import date, timedelta

from domain import SpecificDaysSchedule, IntervalSchedule

# Interval units expressed in days
INTERVAL_UNIT_DAYS = {"day": 1, "week": 7, "month": 30}


class ScheduleService:
    @staticmethod
    def is_due_on(schedule, day: date) -> bool:
        """Only specific-day schedules are due on calendar days; the rest are judged by elapsed time."""
        if not isinstance(schedule, SpecificDaysSchedule):
            return False
        if schedule.days:
            # date.weekday() is Monday=0, schedules use Sunday=0
            return (day.weekday() + 1) % 7 in schedule.days
        if schedule.dates:
            return day.day in schedule.dates
        return False

    @staticmethod
    def interval_days(schedule: IntervalSchedule) -> int:
        return schedule.value * INTERVAL_UNIT_DAYS[schedule.unit]

    @staticmethod
    def is_gap_safe(schedule, recent: date, gap_days: int) -> bool:
        """
        True when the `gap_days - 1` days strictly between `recent - gap_days`
        and `recent` can be missed without breaking continuity.
        """
        if isinstance(schedule, IntervalSchedule):
            return gap_days <= ScheduleService.interval_days(schedule)

        cursor = recent
        for _ in range(1, gap_days):
            cursor -= timedelta(days=1)
            if ScheduleService.is_due_on(schedule, cursor):
                return False
        return True
