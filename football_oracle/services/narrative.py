from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable

from google import genai
from loguru import logger

from football_oracle.services.cache import PersistentCache, narrative_key
from football_oracle.services.config import _env_text, gemini_api_key

DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"

MISSING_CREDENTIALS_TEXT = (
    "Tactical report unavailable: the Gemini API key is not configured. "
    "Set GEMINI_API_KEY in the environment."
)
INSUFFICIENT_DATA_TEXT = "Insufficient data: team statistics are missing for this fixture."
OFFLINE_TEXT = "Tactical intelligence offline. Try again later."
EMPTY_RESPONSE_TEXT = "Analysis complete."


class NarrativeStatus(str, enum.Enum):
    GENERATED = "generated"
    CACHED = "cached"
    MISSING_CREDENTIALS = "missing_credentials"
    INSUFFICIENT_DATA = "insufficient_data"
    OFFLINE = "offline"
    EMPTY_RESPONSE = "empty_response"


@dataclass(frozen=True)
class NarrativeResult:
    text: str
    status: NarrativeStatus

    @property
    def degraded(self) -> bool:
        return self.status not in {NarrativeStatus.GENERATED, NarrativeStatus.CACHED}


def _default_client_factory(api_key: str) -> Any:
    return genai.Client(api_key=api_key)


def _team_name(info: dict[str, Any], side: str) -> str:
    name = str(((info.get("teams") or {}).get(side) or {}).get("name") or "").strip()
    return name or ("Home" if side == "home" else "Away")


def _form(stats: dict[str, Any] | None) -> str:
    if not isinstance(stats, dict):
        return "N/A"
    return str(stats.get("form") or "").strip() or "N/A"


def build_prompt(
    fixture_info: dict[str, Any],
    home_stats: dict[str, Any] | None,
    away_stats: dict[str, Any] | None,
    prediction: dict[str, Any] | None = None,
    language: str = "English",
) -> str:
    source = prediction if isinstance(prediction, dict) else fixture_info
    predictions = (source.get("predictions") or {}) if isinstance(source, dict) else {}
    advice = str(predictions.get("advice") or "N/A").strip()
    percent = predictions.get("percent") or {}

    lines = [
        f"Analyze this football match in {language}.",
        f"Match: {_team_name(fixture_info, 'home')} vs {_team_name(fixture_info, 'away')}",
        f"Home form: {_form(home_stats)}",
        f"Away form: {_form(away_stats)}",
        f"Advice: {advice}",
    ]
    if percent:
        lines.append(
            "Win probabilities: home {} / draw {} / away {}".format(
                percent.get("home", "N/A"),
                percent.get("draw", "N/A"),
                percent.get("away", "N/A"),
            )
        )
    lines.append("Write one professional, concise paragraph on tactics and what to expect.")
    return "\n".join(lines)


class NarrativeGenerator:
    def __init__(
        self,
        cache: PersistentCache,
        api_key: str | None = None,
        model: str | None = None,
        language: str | None = None,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self.cache = cache
        self.api_key = (api_key if api_key is not None else gemini_api_key()).strip()
        self.model = model or _env_text("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)
        self.language = language or _env_text("NARRATIVE_LANGUAGE", "English")
        self.client_factory = client_factory or _default_client_factory
        self._client: Any = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self.client_factory(self.api_key)
        return self._client

    def generate(
        self,
        fixture_id: int,
        fixture_info: dict[str, Any],
        home_stats: dict[str, Any] | None,
        away_stats: dict[str, Any] | None,
        prediction: dict[str, Any] | None = None,
    ) -> NarrativeResult:
        cache_key = narrative_key(fixture_id)
        cached = self.cache.get(cache_key)
        if isinstance(cached, str) and cached:
            return NarrativeResult(cached, NarrativeStatus.CACHED)

        if not self.api_key:
            logger.warning("GEMINI_API_KEY is not configured. Skipping narrative generation.")
            return NarrativeResult(MISSING_CREDENTIALS_TEXT, NarrativeStatus.MISSING_CREDENTIALS)

        if home_stats is None or away_stats is None:
            return NarrativeResult(INSUFFICIENT_DATA_TEXT, NarrativeStatus.INSUFFICIENT_DATA)

        prompt = build_prompt(
            fixture_info, home_stats, away_stats, prediction=prediction, language=self.language
        )
        try:
            response = self._get_client().models.generate_content(
                model=self.model,
                contents=prompt,
            )
            text = str(getattr(response, "text", "") or "").strip()
        except Exception as exc:
            logger.warning(f"Narrative generation failed for fixture_id={fixture_id}: {exc}")
            return NarrativeResult(OFFLINE_TEXT, NarrativeStatus.OFFLINE)

        if not text:
            return NarrativeResult(EMPTY_RESPONSE_TEXT, NarrativeStatus.EMPTY_RESPONSE)

        self.cache.set(cache_key, text)
        return NarrativeResult(text, NarrativeStatus.GENERATED)
