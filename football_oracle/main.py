from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from football_oracle.services.config import _parse_csv_env
from football_oracle.services.insights import (
    evaluate_prediction,
    parse_percent,
    recent_head_to_head,
    statistics_table,
)
from football_oracle.services.orchestrator import AnalysisUnavailableError, build_analyzer


class NarrativeResponse(BaseModel):
    text: str
    status: str
    degraded: bool = False


class ProbabilityResponse(BaseModel):
    home: float = 0.0
    draw: float = 0.0
    away: float = 0.0


class StatisticsRowResponse(BaseModel):
    label: str
    home_team_home: str
    home_team_away: str
    away_team_home: str
    away_team_away: str


class AnalysisResponse(BaseModel):
    status: str = "success"
    fixture_id: int
    prediction: dict[str, Any]
    probabilities: ProbabilityResponse
    home_stats: dict[str, Any] | None = None
    away_stats: dict[str, Any] | None = None
    narrative: NarrativeResponse
    prediction_correct: bool | None = None
    statistics_table: list[StatisticsRowResponse] = Field(default_factory=list)
    head_to_head: list[dict[str, Any]] = Field(default_factory=list)


class FixturesResponse(BaseModel):
    status: str = "success"
    date: str
    league: int | None = None
    total: int
    fixtures: list[dict[str, Any]]


app = FastAPI(
    title="Football Oracle API",
    version="1.0.0",
    description="Cached fixtures, predictions and tactical reports for a single client.",
)

cors_origins = _parse_csv_env("CORS_ORIGINS", "http://localhost:5173")
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

analyzer = build_analyzer()


def _find_fixture(date: str | None, fixture_id: int) -> dict[str, Any] | None:
    # Without a date only today's list is searched; empty days are never cached.
    date_text = date or analyzer.api.clock().date().isoformat()
    for match in analyzer.api.get_fixtures_by_date(date_text):
        if (match.get("fixture") or {}).get("id") == fixture_id:
            return match
    return None


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, Any]:
    budget = analyzer.api.budget_status()
    return {
        "status": "ready",
        "api_key_configured": bool(analyzer.api.api_key),
        "narrative_configured": analyzer.narrator.configured,
        "narrative_model": analyzer.narrator.model,
        "cache_backend": analyzer.api.store.backend,
        "cache_policy": analyzer.api.cache.policy.name,
        "api_daily_limit": budget["limit"],
        "api_daily_used": budget["used"],
        "api_daily_remaining": budget["remaining"],
        "api_budget_date": budget["date"],
    }


@app.get("/api/fixtures", response_model=FixturesResponse)
def get_fixtures(
    date: str | None = Query(default=None, description="Fixture date in ISO format YYYY-MM-DD"),
    league: int | None = Query(default=None, ge=1),
) -> FixturesResponse:
    if date:
        try:
            dt.date.fromisoformat(date)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="date must be in YYYY-MM-DD format"
            ) from exc
    else:
        date = analyzer.api.clock().date().isoformat()

    if league is None:
        fixtures = analyzer.api.get_fixtures_by_date(date)
    else:
        fixtures = analyzer.api.fixtures_for_league(date, league)

    return FixturesResponse(date=date, league=league, total=len(fixtures), fixtures=fixtures)


@app.get("/api/fixtures/{fixture_id}/analysis", response_model=AnalysisResponse)
def get_analysis(
    fixture_id: int,
    date: str | None = Query(default=None, description="Fixture date used to locate the fixture snapshot"),
) -> AnalysisResponse:
    fixture = _find_fixture(date, fixture_id)
    try:
        result = analyzer.analyze(fixture_id, fixture)
    except AnalysisUnavailableError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    percent = (result.prediction.get("predictions") or {}).get("percent") or {}
    return AnalysisResponse(
        status="degraded" if result.narrative.degraded else "success",
        fixture_id=result.fixture_id,
        prediction=result.prediction,
        probabilities=ProbabilityResponse(
            home=parse_percent(percent.get("home")),
            draw=parse_percent(percent.get("draw")),
            away=parse_percent(percent.get("away")),
        ),
        home_stats=result.home_stats,
        away_stats=result.away_stats,
        narrative=NarrativeResponse(
            text=result.narrative.text,
            status=result.narrative.status.value,
            degraded=result.narrative.degraded,
        ),
        prediction_correct=evaluate_prediction(result.prediction, fixture),
        statistics_table=[
            StatisticsRowResponse(**row)
            for row in statistics_table(result.home_stats, result.away_stats)
        ],
        head_to_head=recent_head_to_head(result.prediction),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("football_oracle.main:app", host="127.0.0.1", port=8000, reload=True)
