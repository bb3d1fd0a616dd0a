"""
completion_service.py — Scoring routine logs
Turns what the user recorded into a completion percentage, decides whether the
day counts toward the streak, and computes the numeric delta that linked goals
receive when a log is created, edited or deleted.
"""

from config import DEFAULT_GRADUAL_THRESHOLD
from domain import Completion, CompletionMode, ValueType


def _value(data):
    if data is None:
        return None
    if isinstance(data, dict):
        return data.get("value")
    return getattr(data, "value", None)


def _numeric(value) -> float:
    if value is None or isinstance(value, (list, dict)):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _checked_count(value) -> int:
    if not isinstance(value, list):
        return 0
    return sum(1 for v in value if v)


def _filled_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


# ------------------------------------------------------------------
# Per-type scorers: (value, config) -> percentage
# ------------------------------------------------------------------

def _score_boolean(value, config) -> float:
    return 100.0 if value else 0.0


def _score_checklist(value, config) -> float:
    items = config.get("items") or []
    if not items:
        return 0.0
    checked = min(_checked_count(value), len(items))
    return 100.0 * checked / len(items)


def _score_target(value, config) -> float:
    if value is None:
        return 0.0
    target = max(_numeric(config.get("target")), 1.0)
    ratio = min(_numeric(value) / target, 1.0)
    return 100.0 * max(ratio, 0.0)


def _score_scale(value, config) -> float:
    return 100.0 if value is not None else 0.0


def _score_text(value, config) -> float:
    return 100.0 if _filled_text(value) else 0.0


_SCORERS = {
    ValueType.BOOLEAN: _score_boolean,
    ValueType.CHECKLIST: _score_checklist,
    ValueType.COUNTER: _score_target,
    ValueType.DURATION: _score_target,
    ValueType.SCALE: _score_scale,
    ValueType.TEXT: _score_text,
    ValueType.TIME: _score_text,
}


# ------------------------------------------------------------------
# Per-type deltas: (old value, new value) -> signed contribution
# ------------------------------------------------------------------

def _delta_numeric(old, new) -> float:
    return _numeric(new) - _numeric(old)


def _delta_boolean(old, new) -> float:
    old_b, new_b = bool(old), bool(new)
    if old_b == new_b:
        return 0.0
    return 1.0 if new_b else -1.0


def _delta_checklist(old, new) -> float:
    return float(_checked_count(new) - _checked_count(old))


def _delta_none(old, new) -> float:
    return 0.0


_DELTAS = {
    ValueType.BOOLEAN: _delta_boolean,
    ValueType.CHECKLIST: _delta_checklist,
    ValueType.COUNTER: _delta_numeric,
    ValueType.DURATION: _delta_numeric,
    ValueType.SCALE: _delta_numeric,
    ValueType.TEXT: _delta_none,
    ValueType.TIME: _delta_none,
}

# Adding a ValueType without a scorer and a delta rule fails at import time
if set(_SCORERS) != set(ValueType) or set(_DELTAS) != set(ValueType):
    raise RuntimeError("Every ValueType needs a scorer and a delta rule")


class CompletionService:
    @staticmethod
    def compute_completion(value_type, data, config: dict | None) -> float:
        """Percentage in [0, 100], one decimal. Unknown types raise ValueError."""
        scorer = _SCORERS[ValueType(value_type)]
        pct = scorer(_value(data), config or {})
        return round(pct, 1)

    @staticmethod
    def counts_for_streak(percentage: float, mode, threshold: int | None = None) -> bool:
        if CompletionMode(mode or CompletionMode.STRICT) == CompletionMode.STRICT:
            return percentage == 100
        threshold = threshold or DEFAULT_GRADUAL_THRESHOLD
        threshold = min(max(threshold, 1), 100)
        return percentage >= threshold

    @staticmethod
    def score(routine, data) -> Completion:
        """Score `data` with the routine's current type, config and completion mode."""
        pct = CompletionService.compute_completion(routine.value_type, data, routine.config)
        counts = CompletionService.counts_for_streak(pct, routine.completion_mode, routine.gradual_threshold)
        return Completion(pct, counts)

    @staticmethod
    def compute_delta(value_type, old_data, new_data) -> float:
        """Signed goal contribution of replacing old_data with new_data. None means absent."""
        try:
            rule = _DELTAS[ValueType(value_type)]
        except ValueError:
            return 0.0
        return rule(_value(old_data), _value(new_data))

    @staticmethod
    def total_delta(value_type, datas) -> float:
        """Combined contribution of a set of logs, as if each had just been created."""
        return sum(CompletionService.compute_delta(value_type, None, d) for d in datas)
