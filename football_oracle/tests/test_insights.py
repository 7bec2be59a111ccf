from __future__ import annotations

import pytest

from football_oracle.services.insights import (
    evaluate_prediction,
    parse_percent,
    recent_head_to_head,
    statistics_table,
)

PREDICTION = {
    "predictions": {"winner": {"id": 42, "name": "Arsenal"}},
    "teams": {"home": {"id": 42}, "away": {"id": 49}},
}


def _finished(home: int | None, away: int | None, status: str = "FT") -> dict:
    return {
        "fixture": {"status": {"short": status}},
        "goals": {"home": home, "away": away},
        "teams": {"home": {"id": 42}, "away": {"id": 49}},
    }


@pytest.mark.parametrize(
    "fixture,expected",
    [
        (_finished(2, 0), True),
        (_finished(0, 1), False),
        (_finished(1, 1), False),
        (_finished(1, 0, status="2H"), None),
        (_finished(None, None), None),
        (None, None),
    ],
)
def test_evaluate_prediction(fixture, expected) -> None:
    assert evaluate_prediction(PREDICTION, fixture) is expected


def test_draw_is_correct_when_no_winner_predicted() -> None:
    prediction = {"predictions": {"winner": {"id": None}}, "teams": PREDICTION["teams"]}
    assert evaluate_prediction(prediction, _finished(2, 2)) is True


def test_parse_percent() -> None:
    assert parse_percent("45%") == 45.0
    assert parse_percent(" 10 % ") == 10.0
    assert parse_percent(None) == 0.0
    assert parse_percent("n/a") == 0.0


def test_statistics_table_fills_missing_values_with_zero() -> None:
    home = {
        "fixtures": {"played": {"home": 3, "away": 2, "total": 5}, "wins": {"home": 2, "away": 1}},
        "goals": {"for": {"total": {"home": 7, "away": 3}, "average": {"home": "2.3", "away": "1.5"}}},
    }
    away = {"fixtures": {"played": {"home": 2, "away": 3}}}

    rows = statistics_table(home, away)

    assert len(rows) == 8
    assert rows[0] == {
        "label": "Games played",
        "home_team_home": "3",
        "home_team_away": "2",
        "away_team_home": "2",
        "away_team_away": "3",
    }
    assert rows[1]["home_team_home"] == "2"
    assert rows[1]["away_team_home"] == "0"
    assert rows[6]["home_team_home"] == "2.3"
    assert statistics_table(home, None) == []


def test_recent_head_to_head_limits_to_three() -> None:
    h2h = [
        {"teams": {"home": {"name": f"H{i}"}, "away": {"name": f"A{i}"}}, "goals": {"home": i, "away": 0}}
        for i in range(5)
    ]

    encounters = recent_head_to_head({"h2h": h2h})

    assert [row["home_team"] for row in encounters] == ["H0", "H1", "H2"]
    assert encounters[2]["home_goals"] == 2
    assert recent_head_to_head({}) == []


def test_null_upstream_blocks_are_treated_as_missing() -> None:
    assert evaluate_prediction(PREDICTION, {"fixture": None, "goals": {"home": 1, "away": 0}}) is None
    assert evaluate_prediction({"predictions": None, "teams": None}, _finished(1, 1)) is True

    encounters = recent_head_to_head({"h2h": [{"teams": None, "goals": None}]})

    assert encounters == [{"home_team": "", "away_team": "", "home_goals": None, "away_goals": None}]
