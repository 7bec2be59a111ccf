from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from football_oracle.services.persistent_store import KeyValueStore

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def to_epoch_ms(moment: dt.datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.UTC)
    return int(moment.timestamp() * 1000)


def fixtures_key(date: str) -> str:
    return f"fixtures_{date}"


def prediction_key(fixture_id: int) -> str:
    return f"pred_{int(fixture_id)}"


def statistics_key(team_id: int, league_id: int, season: int) -> str:
    return f"stats_{int(team_id)}_{int(league_id)}_{int(season)}"


def narrative_key(fixture_id: int) -> str:
    return f"narrative_{int(fixture_id)}"


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    timestamp: int

    def to_json(self) -> str:
        return json.dumps({"data": self.data, "timestamp": self.timestamp}, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> CacheEntry:
        payload = json.loads(raw)
        if not isinstance(payload, dict) or "data" not in payload:
            raise ValueError("cache entry is missing its data field")
        timestamp = payload.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("cache entry timestamp is not numeric")
        return cls(data=payload["data"], timestamp=int(timestamp))


class FreshnessPolicy:
    name = "base"

    def is_fresh(self, timestamp: int, now: dt.datetime) -> bool:
        raise NotImplementedError


class RollingTTL(FreshnessPolicy):
    """Valid while less than ``ttl`` has elapsed since insertion."""

    name = "ttl"

    def __init__(self, ttl: dt.timedelta = dt.timedelta(hours=24)) -> None:
        if ttl <= dt.timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl

    def is_fresh(self, timestamp: int, now: dt.datetime) -> bool:
        return to_epoch_ms(now) - timestamp < int(self.ttl.total_seconds() * 1000)


class DailyCutoff(FreshnessPolicy):
    """Valid only when written at or after the most recent daily cutoff in UTC.

    Upstream data refreshes once a day at ``cutoff_hour``; an entry written
    shortly before the cutoff therefore expires as soon as the cutoff passes.
    """

    name = "daily"

    def __init__(self, cutoff_hour: int = 6) -> None:
        if not 0 <= cutoff_hour <= 23:
            raise ValueError("cutoff_hour must be within 0..23")
        self.cutoff_hour = cutoff_hour

    def last_cutoff(self, now: dt.datetime) -> dt.datetime:
        now_utc = now.astimezone(dt.UTC) if now.tzinfo else now.replace(tzinfo=dt.UTC)
        cutoff = now_utc.replace(hour=self.cutoff_hour, minute=0, second=0, microsecond=0)
        if now_utc < cutoff:
            cutoff -= dt.timedelta(days=1)
        return cutoff

    def is_fresh(self, timestamp: int, now: dt.datetime) -> bool:
        return timestamp >= to_epoch_ms(self.last_cutoff(now))


class NeverExpire(FreshnessPolicy):
    name = "never"

    def is_fresh(self, timestamp: int, now: dt.datetime) -> bool:  # noqa: ARG002
        return True


def build_policy(name: str, ttl_hours: int = 24, cutoff_hour: int = 6) -> FreshnessPolicy:
    normalized = str(name or "").strip().lower()
    if normalized == "ttl":
        return RollingTTL(dt.timedelta(hours=ttl_hours))
    if normalized not in {"", "daily"}:
        logger.warning(f"Unknown CACHE_POLICY={name!r}. Using daily cutoff policy.")
    return DailyCutoff(cutoff_hour)


class PersistentCache:
    def __init__(
        self,
        store: KeyValueStore,
        policy: FreshnessPolicy,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.policy = policy
        self.clock = clock or utc_now

    def _read_entry(self, key: str) -> CacheEntry | None:
        raw = self.store.get_item(key)
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning(f"Discarding corrupt cache entry key={key}: {exc}")
            self.store.remove_item(key)
            return None

    def get(self, key: str) -> Any | None:
        entry = self._read_entry(key)
        if entry is None:
            logger.debug(f"Cache miss key={key}")
            return None

        if not self.policy.is_fresh(entry.timestamp, self.clock()):
            logger.debug(f"Cache entry expired key={key} policy={self.policy.name}")
            self.store.remove_item(key)
            return None

        logger.debug(f"Cache hit key={key}")
        return entry.data

    def set(self, key: str, data: Any) -> None:
        entry = CacheEntry(data=data, timestamp=to_epoch_ms(self.clock()))
        self.store.set_item(key, entry.to_json())

    def delete(self, key: str) -> None:
        self.store.remove_item(key)

    def purge_expired(self, prefix: str) -> int:
        removed = 0
        now = self.clock()
        for key in self.store.keys(prefix):
            entry = self._read_entry(key)
            if entry is None:
                removed += 1
                continue
            if not self.policy.is_fresh(entry.timestamp, now):
                self.store.remove_item(key)
                removed += 1
        if removed:
            logger.info(f"Purged {removed} expired cache entries (prefix={prefix!r}).")
        return removed
