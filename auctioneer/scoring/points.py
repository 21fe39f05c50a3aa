"""Points tables and pure scoring helpers.

Every helper is total: an absent, non-numeric or out-of-table rank scores 0 and
no helper ever returns a negative value.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

# 50 - 44 - 40 - 36 - 32 - 30 - 28 - 26 - 24 - 22 - 20 - 18 - 16 - 14 - 12 - 10 - 8 - 6 - 4 - 2
TOP_20_POINTS: dict[int, int] = {
    1: 50, 2: 44, 3: 40, 4: 36, 5: 32,
    6: 30, 7: 28, 8: 26, 9: 24, 10: 22,
    11: 20, 12: 18, 13: 16, 14: 14, 15: 12,
    16: 10, 17: 8, 18: 6, 19: 4, 20: 2,
}

TEAM_CLASSIFICATION_POINTS: dict[int, int] = {1: 5, 2: 4, 3: 3, 4: 2, 5: 1}

COMBATIVITY_BONUS = 25
DEFAULT_MOUNTAIN_MULTIPLIER = 4
DEFAULT_SPRINT_MULTIPLIER = 2
DEFAULT_TOTAL_STAGES = 21

ONE_DAY_STAGE = "result"
FINAL_GC_STAGE = "tour-gc"


def _rank(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        rank = int(value)
    except (TypeError, ValueError):
        return None
    return rank if rank > 0 else None


def _non_negative(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def normalize_points(value: Any) -> int | float:
    """Store integral values as int and round the rest to two decimals."""
    number = _non_negative(value)
    try:
        quantized = Decimal(str(number)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return 0
    if quantized == quantized.to_integral_value():
        return int(quantized)
    return float(quantized)


def position_points(rank: Any) -> int:
    position = _rank(rank)
    if position is None:
        return 0
    return TOP_20_POINTS.get(position, 0)


def passthrough_points(ranking_points: Any) -> int | float:
    return normalize_points(ranking_points)


def mountain_points(points_earned: Any, multiplier: int = DEFAULT_MOUNTAIN_MULTIPLIER) -> int | float:
    return normalize_points(_non_negative(points_earned) * max(multiplier, 0))


def sprint_points(points_earned: Any, multiplier: int = DEFAULT_SPRINT_MULTIPLIER) -> int | float:
    return normalize_points(_non_negative(points_earned) * max(multiplier, 0))


def team_classification_points(team_rank: Any, active_riders: int = 1) -> int:
    position = _rank(team_rank)
    if position is None:
        return 0
    return TEAM_CLASSIFICATION_POINTS.get(position, 0) * max(active_riders, 0)


def combativity_bonus(was_combative: Any) -> int:
    return COMBATIVITY_BONUS if was_combative is True else 0


def stage_number(stage: Any) -> int | None:
    if isinstance(stage, int) and not isinstance(stage, bool):
        return stage
    text = str(stage).strip().lower()
    if text.startswith("stage-"):
        text = text[len("stage-"):]
    return int(text) if text.isdigit() else None


def is_final_stage(stage: Any, total_stages: int = DEFAULT_TOTAL_STAGES) -> bool:
    if str(stage).strip().lower() == FINAL_GC_STAGE:
        return True
    return stage_number(stage) == total_stages


def gc_multiplier(
    stage: Any,
    total_stages: int = DEFAULT_TOTAL_STAGES,
    rest_days: list[int] | None = None,
) -> int:
    """GC standings score 1x on the first rest day, 2x on the second and 3x at the finish."""
    if is_final_stage(stage, total_stages):
        return 3
    number = stage_number(stage)
    if number is None:
        return 0
    days = list(rest_days or [])
    if days and number == days[0]:
        return 1
    if len(days) > 1 and number == days[1]:
        return 2
    return 0


def classification_multiplier(
    classification: str, stage: Any, total_stages: int = DEFAULT_TOTAL_STAGES
) -> int:
    # Points, mountains and youth jerseys are awarded once, after the last stage.
    if classification in {"points", "mountains", "youth"}:
        return 1 if is_final_stage(stage, total_stages) else 0
    return 0
