from __future__ import annotations

import datetime as dt
import json
import re
import threading
import time
from typing import Any, Callable

import requests
from loguru import logger

from football_oracle.services.cache import (
    Clock,
    PersistentCache,
    build_policy,
    fixtures_key,
    prediction_key,
    statistics_key,
    utc_now,
)
from football_oracle.services.config import (
    DEFAULT_CACHE_PATH,
    _env_float,
    _env_int,
    _env_text,
)
from football_oracle.services.persistent_store import KeyValueStore, open_store

DEFAULT_BASE_URL = "https://v3.football.api-sports.io"
BUDGET_KEY = "api_budget"
CACHED_PREFIXES = ("fixtures_", "pred_", "stats_")
_STATUS_429 = re.compile(r"\b429\b")


def _is_daily_limit_error_text(raw_error: str) -> bool:
    text = str(raw_error or "").strip().lower()
    if not text:
        return False
    return (
        "request limit" in text
        or "daily api call budget reached" in text
        or _STATUS_429.search(text) is not None
        or "too many requests" in text
    )


def _is_rate_limited_response(exc: requests.exceptions.RequestException) -> bool:
    # Exception text carries the request URL, whose ids may contain "429".
    response = getattr(exc, "response", None)
    return response is not None and response.status_code == 429


def season_for_date(date_value: dt.date) -> int:
    return date_value.year if date_value.month >= 7 else date_value.year - 1


def relative_dates(today: dt.date) -> dict[str, str]:
    return {
        "yesterday": (today - dt.timedelta(days=1)).isoformat(),
        "today": today.isoformat(),
        "tomorrow": (today + dt.timedelta(days=1)).isoformat(),
    }


class FootballAPI:
    def __init__(
        self,
        api_key: str | None = None,
        cache: PersistentCache | None = None,
        store: KeyValueStore | None = None,
        clock: Clock | None = None,
        min_request_interval_seconds: float | None = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else _env_text("API_SPORTS_KEY")).strip()
        self.base_url = _env_text("API_SPORTS_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
        self.timeout_seconds = _env_float("REQUEST_TIMEOUT_SECONDS", default=10.0, minimum=1.0, maximum=120.0)
        self.min_request_interval_seconds = (
            min_request_interval_seconds
            if min_request_interval_seconds is not None
            else _env_float("MIN_REQUEST_INTERVAL_SECONDS", default=0.0, minimum=0.0, maximum=10.0)
        )
        self.max_daily_api_calls = _env_int("MAX_DAILY_API_CALLS", default=100, minimum=1, maximum=10000)
        self.clock = clock or utc_now

        if cache is None:
            store = store or open_store(_env_text("CACHE_URL", DEFAULT_CACHE_PATH))
            cache = PersistentCache(
                store,
                build_policy(
                    _env_text("CACHE_POLICY", "daily"),
                    ttl_hours=_env_int("CACHE_TTL_HOURS", default=24, minimum=1, maximum=24 * 30),
                    cutoff_hour=_env_int("CACHE_CUTOFF_HOUR_UTC", default=6, minimum=0, maximum=23),
                ),
                clock=self.clock,
            )
        self.cache = cache
        self.store = store or cache.store

        self.session = requests.Session()
        session_headers = {
            "x-rapidapi-host": self.base_url.split("://", 1)[-1],
            "Accept": "application/json",
        }
        if self.api_key:
            session_headers["x-apisports-key"] = self.api_key
        self.session.headers.update(session_headers)

        self._last_request_monotonic = 0.0
        self._throttle_lock = threading.Lock()
        self._budget_lock = threading.Lock()

        if not self.api_key:
            logger.warning("API_SPORTS_KEY is not configured. Only cached data will be served.")

    def _throttle(self) -> None:
        if self.min_request_interval_seconds <= 0:
            return

        with self._throttle_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_monotonic
            wait_for = self.min_request_interval_seconds - elapsed
            if wait_for > 0:
                time.sleep(wait_for)
            self._last_request_monotonic = time.monotonic()

    @staticmethod
    def _has_upstream_errors(upstream_errors: Any) -> bool:
        if isinstance(upstream_errors, dict):
            return any(bool(value) for value in upstream_errors.values())
        return bool(upstream_errors)

    @staticmethod
    def _format_upstream_errors(upstream_errors: Any) -> str:
        if isinstance(upstream_errors, dict):
            non_empty = {key: value for key, value in upstream_errors.items() if value}
            return str(non_empty)
        return str(upstream_errors)

    def _today_iso(self) -> str:
        return self.clock().astimezone(dt.UTC).date().isoformat()

    def _read_budget(self) -> dict[str, Any]:
        raw = self.store.get_item(BUDGET_KEY)
        today = self._today_iso()
        payload: dict[str, Any] = {}
        if raw:
            try:
                loaded = json.loads(raw)
            except ValueError:
                loaded = None
            if isinstance(loaded, dict):
                payload = loaded

        if str(payload.get("date", "")).strip() != today:
            return {"date": today, "count": 0}

        try:
            count = int(payload.get("count", 0) or 0)
        except (TypeError, ValueError):
            count = 0
        return {"date": today, "count": max(0, min(self.max_daily_api_calls, count))}

    def _write_budget(self, budget: dict[str, Any]) -> None:
        payload = {
            "date": budget["date"],
            "count": int(budget["count"]),
            "max_daily_api_calls": self.max_daily_api_calls,
        }
        self.store.set_item(BUDGET_KEY, json.dumps(payload))

    def _consume_api_budget(self) -> bool:
        with self._budget_lock:
            budget = self._read_budget()
            if budget["count"] >= self.max_daily_api_calls:
                return False
            budget["count"] += 1
            self._write_budget(budget)
            return True

    def _lock_api_budget_for_today(self) -> None:
        with self._budget_lock:
            self._write_budget({"date": self._today_iso(), "count": self.max_daily_api_calls})
        logger.warning("Upstream request limit reached. API budget locked until the next UTC day.")

    def budget_status(self) -> dict[str, Any]:
        with self._budget_lock:
            budget = self._read_budget()
        remaining = max(0, self.max_daily_api_calls - budget["count"])
        return {
            "date": budget["date"],
            "used": budget["count"],
            "limit": self.max_daily_api_calls,
            "remaining": remaining,
        }

    def _request_json_once(
        self, path: str, params: dict[str, Any]
    ) -> tuple[dict[str, Any] | None, str | None]:
        if not self.api_key:
            return None, "API_SPORTS_KEY is not configured"

        if not self._consume_api_budget():
            return None, f"Daily API call budget reached ({self.max_daily_api_calls})"

        self._throttle()

        try:
            response = self.session.get(
                f"{self.base_url}/{path}",
                params=params,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as exc:
            if _is_rate_limited_response(exc):
                self._lock_api_budget_for_today()
            return None, str(exc)
        except ValueError as exc:
            return None, str(exc)

        if not isinstance(payload, dict):
            return None, "malformed response body"

        upstream_errors = payload.get("errors")
        if self._has_upstream_errors(upstream_errors):
            formatted_error = self._format_upstream_errors(upstream_errors)
            if _is_daily_limit_error_text(formatted_error):
                self._lock_api_budget_for_today()
            return None, formatted_error

        return payload, None

    def get_fixtures_by_date(self, date: str) -> list[dict[str, Any]]:
        try:
            dt.date.fromisoformat(date)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring fixtures request with invalid date={date!r}")
            return []

        cache_key = fixtures_key(date)
        cached = self.cache.get(cache_key)
        if isinstance(cached, list):
            return cached

        payload, error_message = self._request_json_once("fixtures", {"date": date})
        if payload is None:
            logger.warning(f"Fixtures fetch failed for date={date}: {error_message}")
            return []

        rows = payload.get("response")
        if not isinstance(rows, list):
            logger.warning(f"Fixtures payload malformed for date={date}")
            return []

        fixtures = [row for row in rows if isinstance(row, dict)]
        if fixtures:
            self.cache.set(cache_key, fixtures)
            logger.info(f"Cached {len(fixtures)} fixtures for {date}.")
        else:
            # Not cached: a later request re-checks for late-arriving fixtures.
            logger.info(f"No fixtures published yet for {date}.")
        return fixtures

    def fixtures_for_league(self, date: str, league_id: int) -> list[dict[str, Any]]:
        return [
            match
            for match in self.get_fixtures_by_date(date)
            if (match.get("league") or {}).get("id") == league_id
        ]

    def get_prediction(self, fixture_id: int) -> dict[str, Any] | None:
        cache_key = prediction_key(fixture_id)
        cached = self.cache.get(cache_key)
        if isinstance(cached, dict):
            return cached

        payload, error_message = self._request_json_once("predictions", {"fixture": fixture_id})
        if payload is None:
            logger.warning(f"Prediction fetch failed for fixture_id={fixture_id}: {error_message}")
            return None

        rows = payload.get("response")
        if not isinstance(rows, list):
            logger.warning(f"Prediction payload malformed for fixture_id={fixture_id}")
            return None
        if not rows or not isinstance(rows[0], dict):
            logger.info(f"No prediction available yet for fixture_id={fixture_id}.")
            return None

        prediction = rows[0]
        self.cache.set(cache_key, prediction)
        return prediction

    def get_team_statistics(
        self,
        team_id: int,
        league_id: int,
        season: int,
        accept_cached: Callable[[dict[str, Any]], bool] | None = None,
    ) -> dict[str, Any] | None:
        cache_key = statistics_key(team_id, league_id, season)
        cached = self.cache.get(cache_key)
        if isinstance(cached, dict) and (accept_cached is None or accept_cached(cached)):
            return cached

        payload, error_message = self._request_json_once(
            "teams/statistics",
            {"league": league_id, "season": season, "team": team_id},
        )
        if payload is None:
            logger.warning(
                "Statistics fetch failed for team={} league={} season={}: {}",
                team_id,
                league_id,
                season,
                error_message,
            )
            return None

        stats = payload.get("response")
        if not isinstance(stats, dict) or not stats:
            logger.info(
                "No statistics for team={} league={} season={}.",
                team_id,
                league_id,
                season,
            )
            return None

        self.cache.set(cache_key, stats)
        return stats

    def purge_expired(self) -> int:
        return sum(self.cache.purge_expired(prefix) for prefix in CACHED_PREFIXES)
