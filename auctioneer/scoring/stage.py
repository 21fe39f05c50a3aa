"""Combine the points helpers into one athlete's score for one race result."""

from __future__ import annotations

from ..models import FinisherResult, Game, RaceResultEvent, ScoringMode
from . import points
from .counting import find_counting_race

CLASSIFICATION_KEYS = {
    "points": "points_classification",
    "mountains": "mountains_classification",
    "youth": "youth_classification",
}


def score_finisher(
    event: RaceResultEvent, finisher: FinisherResult, game: Game
) -> tuple[int | float, dict[str, int | float]]:
    """Return ``(total, breakdown)``; breakdown only lists non-zero components."""
    if game.scoring_mode is ScoringMode.SEASON_ALL_RACES:
        value = points.passthrough_points(finisher.ranking_points)
        breakdown = {"ranking_points": value} if value else {}
        return value, breakdown

    race = find_counting_race(event.race_slug, game)
    total_stages = race.total_stages if race else points.DEFAULT_TOTAL_STAGES
    rest_days = race.rest_days if race else []
    mountain_multiplier = race.mountain_multiplier if race else points.DEFAULT_MOUNTAIN_MULTIPLIER
    sprint_multiplier = race.sprint_multiplier if race else points.DEFAULT_SPRINT_MULTIPLIER

    athlete_id = finisher.athlete_id
    breakdown: dict[str, int | float] = {
        "stage_result": points.position_points(finisher.position),
    }

    gc_factor = points.gc_multiplier(event.stage, total_stages, rest_days)
    if gc_factor:
        gc_rank = event.classifications.get("gc", {}).get(athlete_id)
        breakdown["gc"] = points.position_points(gc_rank) * gc_factor

    for classification, key in CLASSIFICATION_KEYS.items():
        if points.classification_multiplier(classification, event.stage, total_stages):
            rank = event.classifications.get(classification, {}).get(athlete_id)
            breakdown[key] = points.position_points(rank)

    if finisher.team:
        team_rank = event.classifications.get("team", {}).get(finisher.team)
        breakdown["team_classification"] = points.team_classification_points(team_rank)

    breakdown["mountain_points"] = points.mountain_points(finisher.mountain_points, mountain_multiplier)
    breakdown["sprint_points"] = points.sprint_points(finisher.sprint_points, sprint_multiplier)
    breakdown["combativity"] = points.combativity_bonus(finisher.combative)

    breakdown = {key: value for key, value in breakdown.items() if value}
    return points.normalize_points(sum(breakdown.values())), breakdown
