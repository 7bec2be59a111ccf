from __future__ import annotations

from typing import Any

STATISTICS_ROWS = [
    ("Games played", "fixtures.played"),
    ("Wins", "fixtures.wins"),
    ("Draws", "fixtures.draws"),
    ("Loss", "fixtures.loses"),
    ("Goals For", "goals.for.total"),
    ("Goals Against", "goals.against.total"),
    ("Goals For Avg", "goals.for.average"),
    ("Goals Against Avg", "goals.against.average"),
]


def parse_percent(value: Any) -> float:
    text = str(value or "").strip().rstrip("%").strip()
    try:
        return float(text)
    except ValueError:
        return 0.0


def evaluate_prediction(prediction: dict[str, Any], fixture: dict[str, Any] | None) -> bool | None:
    """Back-test a prediction against a finished fixture.

    Returns None unless the fixture is full-time with both goals known; a draw
    counts as correct only when no winner was predicted.
    """
    if not isinstance(fixture, dict):
        return None
    status = str(((fixture.get("fixture") or {}).get("status") or {}).get("short") or "")
    if status != "FT":
        return None

    goals = fixture.get("goals") or {}
    home_goals, away_goals = goals.get("home"), goals.get("away")
    if home_goals is None or away_goals is None:
        return None

    teams = prediction.get("teams") or fixture.get("teams") or {}
    if home_goals > away_goals:
        actual_winner = (teams.get("home") or {}).get("id")
    elif away_goals > home_goals:
        actual_winner = (teams.get("away") or {}).get("id")
    else:
        actual_winner = None

    predicted_winner = ((prediction.get("predictions") or {}).get("winner") or {}).get("id")
    return predicted_winner == actual_winner


def _lookup(stats: dict[str, Any] | None, path: str, split: str) -> str:
    current: Any = stats
    for part in path.split("."):
        if not isinstance(current, dict):
            return "0"
        current = current.get(part)
    if not isinstance(current, dict):
        return "0"
    value = current.get(split)
    return "0" if value is None else str(value)


def statistics_table(
    home_stats: dict[str, Any] | None,
    away_stats: dict[str, Any] | None,
) -> list[dict[str, str]]:
    if not home_stats or not away_stats:
        return []
    return [
        {
            "label": label,
            "home_team_home": _lookup(home_stats, path, "home"),
            "home_team_away": _lookup(home_stats, path, "away"),
            "away_team_home": _lookup(away_stats, path, "home"),
            "away_team_away": _lookup(away_stats, path, "away"),
        }
        for label, path in STATISTICS_ROWS
    ]


def recent_head_to_head(prediction: dict[str, Any], limit: int = 3) -> list[dict[str, Any]]:
    rows = prediction.get("h2h")
    if not isinstance(rows, list):
        return []
    encounters: list[dict[str, Any]] = []
    for match in rows[:limit]:
        if not isinstance(match, dict):
            continue
        teams = match.get("teams") or {}
        goals = match.get("goals") or {}
        encounters.append(
            {
                "home_team": str((teams.get("home") or {}).get("name") or ""),
                "away_team": str((teams.get("away") or {}).get("name") or ""),
                "home_goals": goals.get("home"),
                "away_goals": goals.get("away"),
            }
        )
    return encounters
