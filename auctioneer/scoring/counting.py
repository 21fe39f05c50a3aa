"""Decide whether a race or stage contributes points to a game."""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from ..models import SCORING_STATUSES, CountingRace, Game, ScoringMode
from .points import FINAL_GC_STAGE, ONE_DAY_STAGE, stage_number

_YEAR_SUFFIX = re.compile(r"[_-]\d{4}$")

SKIP_STATUS = "game not in scoring status"
SKIP_RACE = "race does not count"


def normalize_slug(slug: str) -> str:
    return _YEAR_SUFFIX.sub("", (slug or "").strip().lower())


def find_counting_race(race_slug: str, game: Game) -> CountingRace | None:
    wanted = normalize_slug(race_slug)
    for race in game.counting_races:
        if normalize_slug(race.slug) == wanted:
            return race
        if race.race_id and normalize_slug(race.race_id) == wanted:
            return race
    return None


def _stage_matches(race: CountingRace, stage: Any) -> bool:
    if not race.stages:
        return True
    if str(stage).strip().lower() in {ONE_DAY_STAGE, FINAL_GC_STAGE}:
        return True
    return stage_number(stage) in race.stages


def _date_matches(race: CountingRace, race_date: date | None) -> bool:
    if race_date is None:
        return True
    if race.start_date and race_date < race.start_date:
        return False
    if race.end_date and race_date > race.end_date:
        return False
    return True


def explain_skip(
    race_slug: str, stage: Any, game: Game, race_date: date | None = None
) -> str | None:
    """Return why the race does not count for the game, or None when it counts."""
    if game.status not in SCORING_STATUSES:
        return SKIP_STATUS
    if game.scoring_mode is ScoringMode.SEASON_ALL_RACES:
        return None
    race = find_counting_race(race_slug, game)
    if race is None or not _stage_matches(race, stage) or not _date_matches(race, race_date):
        return SKIP_RACE
    return None


def should_count(
    race_slug: str, stage: Any, game: Game, race_date: date | None = None
) -> bool:
    return explain_skip(race_slug, stage, game, race_date) is None
