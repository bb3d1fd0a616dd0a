"""
streak_service.py — Streak reconstruction
Rebuilds current/longest streaks from the full set of counting days every time.
Nothing is carried over between calls, so the same days and the same "today"
always give the same answer.

Two algorithms:
  * day-gap (specific_days, interval): adjacent completions are continuous when
    the days between them were not due (or fit inside the interval).
  * period-quota (frequency): ISO weeks or calendar months succeed when they
    hold at least `count` completions.
"""

from collections import Counter
from datetime import date, datetime, timedelta, timezone

from config import FREQUENCY_LOOKBACK_PERIODS
from domain import FrequencySchedule, SpecificDaysSchedule, StreakResult, parse_schedule
from services.schedule_service import ScheduleService


class StreakService:
    @staticmethod
    def reference_today(now: datetime | None = None, timezone_offset: int | None = None) -> date:
        """
        The caller's local calendar day. `timezone_offset` is in minutes behind
        UTC (browser convention: UTC-5 -> 300, UTC+2 -> -120).
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        if timezone_offset is not None:
            now = now - timedelta(minutes=timezone_offset)
        return now.date()

    @staticmethod
    def every_day() -> SpecificDaysSchedule:
        """Implicit schedule for goals: every day is due."""
        return SpecificDaysSchedule(days=[0, 1, 2, 3, 4, 5, 6])

    @staticmethod
    def normalize(days) -> list[date]:
        """One entry per calendar day, newest first."""
        unique = {d.date() if isinstance(d, datetime) else d for d in days}
        return sorted(unique, reverse=True)

    @staticmethod
    def calculate(schedule, days, today: date) -> StreakResult:
        schedule = parse_schedule(schedule)
        unique = StreakService.normalize(days)
        if not unique:
            return StreakResult(0, 0)

        if isinstance(schedule, FrequencySchedule):
            return StreakService._frequency_streaks(schedule, unique, today)
        return StreakService._day_gap_streaks(schedule, unique, today)

    # ------------------------------------------------------------------
    @staticmethod
    def _is_continuous(schedule, recent: date, older: date) -> bool:
        gap = (recent - older).days
        return gap == 1 or (gap > 1 and ScheduleService.is_gap_safe(schedule, recent, gap))

    @staticmethod
    def _day_gap_streaks(schedule, unique: list[date], today: date) -> StreakResult:
        longest = 0
        run = 1
        for recent, older in zip(unique, unique[1:]):
            if StreakService._is_continuous(schedule, recent, older):
                run += 1
            else:
                longest = max(longest, run)
                run = 1
        longest = max(longest, run)

        # Alive if the latest completion was today, yesterday, or only
        # non-due days separate it from today.
        gap_now = (today - unique[0]).days
        alive = gap_now <= 1 or ScheduleService.is_gap_safe(schedule, today, gap_now)
        if not alive:
            return StreakResult(0, longest)

        current = 1
        for recent, older in zip(unique, unique[1:]):
            if not StreakService._is_continuous(schedule, recent, older):
                break
            current += 1
        return StreakResult(current, longest)

    # ------------------------------------------------------------------
    @staticmethod
    def _period_key(day: date, period: str) -> tuple:
        if period == "month":
            return (day.year, day.month)
        iso = day.isocalendar()
        return (iso[0], iso[1])

    @staticmethod
    def _lookback_keys(today: date, period: str, count: int) -> list[tuple]:
        """Period keys from the current period backwards."""
        if period == "month":
            keys = []
            for i in range(count):
                months = today.year * 12 + (today.month - 1) - i
                keys.append((months // 12, months % 12 + 1))
            return keys
        return [StreakService._period_key(today - timedelta(weeks=i), "week") for i in range(count)]

    @staticmethod
    def _frequency_streaks(schedule: FrequencySchedule, unique: list[date], today: date) -> StreakResult:
        counts = Counter(StreakService._period_key(d, schedule.period) for d in unique)
        keys = StreakService._lookback_keys(today, schedule.period, FREQUENCY_LOOKBACK_PERIODS)

        current = 0
        longest = 0
        run = 0
        alive = True
        for i, key in enumerate(keys):
            if counts.get(key, 0) >= schedule.count:
                run += 1
                if alive:
                    current += 1
            elif i == 0:
                # The in-progress period neither extends nor breaks the streak
                continue
            else:
                alive = False
                longest = max(longest, run)
                run = 0

        return StreakResult(current, max(longest, run, current))
