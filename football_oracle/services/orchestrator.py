from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from loguru import logger

from football_oracle.services.api_football import FootballAPI, season_for_date
from football_oracle.services.cache import NeverExpire, PersistentCache
from football_oracle.services.config import _env_int
from football_oracle.services.narrative import NarrativeGenerator, NarrativeResult
from football_oracle.services.statistics import StatisticsResolver


class AnalysisUnavailableError(Exception):
    """No prediction exists upstream for the fixture, so nothing can be analyzed."""

    def __init__(self, fixture_id: int) -> None:
        super().__init__(f"No analysis available for fixture {fixture_id}")
        self.fixture_id = fixture_id


@dataclass(frozen=True)
class MatchAnalysis:
    fixture_id: int
    prediction: dict[str, Any]
    home_stats: dict[str, Any] | None
    away_stats: dict[str, Any] | None
    narrative: NarrativeResult


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class MatchAnalyzer:
    def __init__(
        self,
        api: FootballAPI,
        resolver: StatisticsResolver,
        narrator: NarrativeGenerator,
        max_workers: int | None = None,
    ) -> None:
        self.api = api
        self.resolver = resolver
        self.narrator = narrator
        self.max_workers = max_workers or _env_int("ANALYSIS_MAX_WORKERS", default=4, minimum=1, maximum=32)

    def _season(self, *blocks: dict[str, Any] | None) -> int:
        for block in blocks:
            if not isinstance(block, dict):
                continue
            season = _int_or_none((block.get("league") or {}).get("season"))
            if season:
                return season
        return season_for_date(self.api.clock().date())

    def _league_id(self, *blocks: dict[str, Any] | None) -> int | None:
        for block in blocks:
            if not isinstance(block, dict):
                continue
            league_id = _int_or_none((block.get("league") or {}).get("id"))
            if league_id:
                return league_id
        return None

    def _resolve_side(self, side: str, team_id: int | None, league_id: int | None, season: int) -> Any:
        if team_id is None or league_id is None:
            logger.warning(f"Missing {side} team or league id; skipping statistics lookup.")
            return None
        return self.resolver.resolve(team_id, league_id, season)

    @staticmethod
    def _settled(future: Future, fixture_id: int, side: str) -> dict[str, Any] | None:
        exc = future.exception()
        if exc is not None:
            logger.warning(f"{side.title()} statistics failed for fixture_id={fixture_id}: {exc}")
            return None
        return future.result()

    def analyze(self, fixture_id: int, fixture: dict[str, Any] | None = None) -> MatchAnalysis:
        prediction = self.api.get_prediction(fixture_id)
        if prediction is None:
            raise AnalysisUnavailableError(fixture_id)

        info = fixture if isinstance(fixture, dict) else prediction
        teams = info.get("teams") or {}
        league_id = self._league_id(fixture, prediction)
        season = self._season(fixture, prediction)

        with ThreadPoolExecutor(max_workers=2) as executor:
            home_future = executor.submit(
                self._resolve_side,
                "home",
                _int_or_none((teams.get("home") or {}).get("id")),
                league_id,
                season,
            )
            away_future = executor.submit(
                self._resolve_side,
                "away",
                _int_or_none((teams.get("away") or {}).get("id")),
                league_id,
                season,
            )
            wait([home_future, away_future])

        home_stats = self._settled(home_future, fixture_id, "home")
        away_stats = self._settled(away_future, fixture_id, "away")

        narrative = self.narrator.generate(
            fixture_id, info, home_stats, away_stats, prediction=prediction
        )
        return MatchAnalysis(
            fixture_id=fixture_id,
            prediction=prediction,
            home_stats=home_stats,
            away_stats=away_stats,
            narrative=narrative,
        )

    def analyze_many(
        self,
        fixture_ids: list[int],
        fixtures: dict[int, dict[str, Any]] | None = None,
    ) -> dict[int, MatchAnalysis | None]:
        fixtures = fixtures or {}
        results: dict[int, MatchAnalysis | None] = {}
        if not fixture_ids:
            return results

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(fixture_ids))) as executor:
            futures = {
                fixture_id: executor.submit(self.analyze, fixture_id, fixtures.get(fixture_id))
                for fixture_id in fixture_ids
            }
            wait(list(futures.values()))

        for fixture_id, future in futures.items():
            exc = future.exception()
            if isinstance(exc, AnalysisUnavailableError):
                results[fixture_id] = None
            elif exc is not None:
                logger.warning(f"Analysis failed for fixture_id={fixture_id}: {exc}")
                results[fixture_id] = None
            else:
                results[fixture_id] = future.result()
        return results


def build_analyzer(api: FootballAPI | None = None) -> MatchAnalyzer:
    api = api or FootballAPI()
    narrative_cache = PersistentCache(api.store, NeverExpire(), clock=api.clock)
    return MatchAnalyzer(
        api=api,
        resolver=StatisticsResolver(api),
        narrator=NarrativeGenerator(narrative_cache),
    )
