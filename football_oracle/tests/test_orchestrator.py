from __future__ import annotations

import datetime as dt
import threading
from types import SimpleNamespace

import pytest

from football_oracle.services.api_football import FootballAPI
from football_oracle.services.cache import (
    DailyCutoff,
    NeverExpire,
    PersistentCache,
    prediction_key,
)
from football_oracle.services.narrative import NarrativeGenerator, NarrativeStatus
from football_oracle.services.orchestrator import (
    AnalysisUnavailableError,
    MatchAnalyzer,
    build_analyzer,
)
from football_oracle.services.persistent_store import MemoryStore
from football_oracle.services.statistics import StatisticsResolver

NOW = dt.datetime(2025, 9, 20, 12, 0, tzinfo=dt.UTC)


class FakeResponse:
    def __init__(self, payload: dict) -> None:
        self._payload = payload
        self.status_code = 200

    def raise_for_status(self) -> None:
        return None

    def json(self) -> dict:
        return self._payload


class FakeModels:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def generate_content(self, model: str, contents: str):  # noqa: ARG002
        self.calls.append(contents)
        return SimpleNamespace(text="Both sides will sit deep early.")


def _prediction() -> dict:
    return {
        "predictions": {"advice": "Winner : Arsenal", "winner": {"id": 42, "name": "Arsenal"}},
        "league": {"id": 39, "season": 2025},
        "teams": {"home": {"id": 42, "name": "Arsenal"}, "away": {"id": 49, "name": "Chelsea"}},
        "comparison": {},
        "h2h": [],
    }


def _stats(team_id: int) -> dict:
    return {"team": {"id": team_id}, "fixtures": {"played": {"total": 4}}, "form": "WDWL"}


def _build(monkeypatch, handler):
    store = MemoryStore()
    api = FootballAPI(
        api_key="demo-key",
        cache=PersistentCache(store, DailyCutoff(6), clock=lambda: NOW),
        clock=lambda: NOW,
    )
    calls: list[tuple[str, dict]] = []
    calls_lock = threading.Lock()

    def fake_get(url, params, timeout):  # noqa: ARG001
        path = url.split(api.base_url + "/", 1)[-1]
        with calls_lock:
            calls.append((path, dict(params)))
        return handler(path, params)

    monkeypatch.setattr(api.session, "get", fake_get)

    models = FakeModels()
    narrator = NarrativeGenerator(
        PersistentCache(store, NeverExpire(), clock=lambda: NOW),
        api_key="gemini-key",
        client_factory=lambda key: SimpleNamespace(models=models),
    )
    analyzer = MatchAnalyzer(api, StatisticsResolver(api), narrator, max_workers=4)
    return analyzer, calls, models


def test_cached_prediction_fans_out_to_both_statistics_then_narrates(monkeypatch) -> None:
    barrier = threading.Barrier(2, timeout=5)

    def handler(path, params):
        if path == "teams/statistics":
            # Both sides must be in flight at the same time to pass the barrier.
            barrier.wait()
            return FakeResponse({"errors": [], "response": _stats(params["team"])})
        raise AssertionError(f"unexpected upstream call: {path}")

    analyzer, calls, models = _build(monkeypatch, handler)
    analyzer.api.cache.set(prediction_key(555), _prediction())

    result = analyzer.analyze(555)

    stats_calls = [params for path, params in calls if path == "teams/statistics"]
    assert len(calls) == 2
    assert sorted(params["team"] for params in stats_calls) == [42, 49]
    assert all(params["league"] == 39 and params["season"] == 2025 for params in stats_calls)
    assert len(models.calls) == 1
    assert "Arsenal vs Chelsea" in models.calls[0]
    assert result.prediction is not None
    assert result.home_stats["team"]["id"] == 42
    assert result.away_stats["team"]["id"] == 49
    assert result.narrative.status is NarrativeStatus.GENERATED
    assert result.narrative.text


def test_missing_prediction_stops_the_pipeline(monkeypatch) -> None:
    def handler(path, params):  # noqa: ARG001
        if path == "predictions":
            return FakeResponse({"errors": [], "response": []})
        raise AssertionError(f"unexpected upstream call: {path}")

    analyzer, calls, models = _build(monkeypatch, handler)

    with pytest.raises(AnalysisUnavailableError):
        analyzer.analyze(777)

    assert [path for path, _ in calls] == ["predictions"]
    assert models.calls == []


def test_one_failed_side_does_not_cancel_the_other(monkeypatch) -> None:
    def handler(path, params):  # noqa: ARG001
        raise AssertionError(f"unexpected upstream call: {path}")

    analyzer, _, models = _build(monkeypatch, handler)
    analyzer.api.cache.set(prediction_key(555), _prediction())

    def flaky_resolve(team_id, league_id, season):  # noqa: ARG001
        if team_id == 42:
            raise RuntimeError("boom")
        return _stats(team_id)

    monkeypatch.setattr(analyzer.resolver, "resolve", flaky_resolve)

    result = analyzer.analyze(555)

    assert result.home_stats is None
    assert result.away_stats["team"]["id"] == 49
    assert result.narrative.status is NarrativeStatus.INSUFFICIENT_DATA
    assert models.calls == []


def test_fixture_snapshot_supplies_league_and_season(monkeypatch) -> None:
    def handler(path, params):
        if path == "teams/statistics":
            return FakeResponse({"errors": [], "response": _stats(params["team"])})
        raise AssertionError(f"unexpected upstream call: {path}")

    analyzer, calls, _ = _build(monkeypatch, handler)
    prediction = _prediction()
    prediction.pop("league")
    analyzer.api.cache.set(prediction_key(900), prediction)
    fixture = {
        "fixture": {"id": 900},
        "league": {"id": 140, "season": 2024},
        "teams": {"home": {"id": 529, "name": "Barcelona"}, "away": {"id": 541, "name": "Real Madrid"}},
    }

    analyzer.analyze(900, fixture)

    assert sorted(params["team"] for _, params in calls) == [529, 541]
    assert {(params["league"], params["season"]) for _, params in calls} == {(140, 2024)}


def test_null_league_and_team_blocks_skip_statistics(monkeypatch) -> None:
    def handler(path, params):  # noqa: ARG001
        raise AssertionError(f"unexpected upstream call: {path}")

    analyzer, calls, models = _build(monkeypatch, handler)
    prediction = _prediction()
    prediction["league"] = None
    prediction["teams"] = {"home": None, "away": None}
    analyzer.api.cache.set(prediction_key(901), prediction)

    result = analyzer.analyze(901)

    assert calls == []
    assert result.home_stats is None
    assert result.away_stats is None
    assert result.narrative.status is NarrativeStatus.INSUFFICIENT_DATA
    assert models.calls == []


def test_analyze_many_keeps_pipelines_independent(monkeypatch) -> None:
    def handler(path, params):
        if path == "predictions":
            return FakeResponse({"errors": [], "response": []})
        if path == "teams/statistics":
            return FakeResponse({"errors": [], "response": _stats(params["team"])})
        raise AssertionError(f"unexpected upstream call: {path}")

    analyzer, _, models = _build(monkeypatch, handler)
    analyzer.api.cache.set(prediction_key(555), _prediction())

    results = analyzer.analyze_many([555, 777])

    assert results[777] is None
    assert results[555].narrative.status is NarrativeStatus.GENERATED
    assert len(models.calls) == 1


def test_build_analyzer_shares_store_between_caches() -> None:
    api = FootballAPI(
        api_key="",
        cache=PersistentCache(MemoryStore(), DailyCutoff(6), clock=lambda: NOW),
        clock=lambda: NOW,
    )

    analyzer = build_analyzer(api)

    assert analyzer.narrator.cache.store is api.store
    assert isinstance(analyzer.narrator.cache.policy, NeverExpire)
