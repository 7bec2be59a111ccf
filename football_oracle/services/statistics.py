from __future__ import annotations

from typing import Any

from loguru import logger

from football_oracle.services.api_football import FootballAPI


def matches_played(stats: dict[str, Any] | None) -> int:
    if not isinstance(stats, dict):
        return 0
    played = (stats.get("fixtures") or {}).get("played")
    if isinstance(played, dict):
        raw = played.get("total", 0)
    else:
        raw = played
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def _has_played(stats: dict[str, Any]) -> bool:
    return matches_played(stats) > 0


class StatisticsResolver:
    """Team statistics with a one-hop fallback to the previous season.

    A season that has not kicked off yet comes back either empty or with zero
    matches played; in both cases the previous season is used instead.
    """

    def __init__(self, api: FootballAPI) -> None:
        self.api = api

    def resolve(self, team_id: int, league_id: int, season: int) -> dict[str, Any] | None:
        # Zero-played records are stored but never reused: the season may have started since.
        primary = self.api.get_team_statistics(
            team_id, league_id, season, accept_cached=_has_played
        )
        if primary is not None and _has_played(primary):
            return primary

        logger.info(
            "Season {} not started for team={} league={}; trying season {}.",
            season,
            team_id,
            league_id,
            season - 1,
        )
        previous = self.api.get_team_statistics(team_id, league_id, season - 1)
        if previous is not None:
            return previous
        return primary
