from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


class Settings:
    """
    Central configuration for RepCoach.

    Values are loaded once from environment variables (with sensible defaults)
    and then exposed via typed properties.
    """

    def __init__(self) -> None:
        # OpenAI / model configuration
        self._openai_api_key = os.getenv("OPENAI_API_KEY")
        self._openai_base_url = os.getenv("OPENAI_BASE_URL") or None
        self._openai_model = os.getenv("REPCOACH_OPENAI_MODEL", "gpt-4o-mini")
        self._temperature = float(os.getenv("REPCOACH_TEMPERATURE", "0.7"))

        # Workout log location
        self._data_dir = Path(os.getenv("REPCOACH_DATA_DIR", "runtime/data"))

        # Session lifecycle
        self._session_timeout_seconds = float(
            os.getenv("REPCOACH_SESSION_TIMEOUT_SECONDS", str(30 * 60))
        )
        self._sweep_interval_seconds = float(
            os.getenv("REPCOACH_SWEEP_INTERVAL_SECONDS", str(5 * 60))
        )
        self._heartbeat_seconds = float(os.getenv("REPCOACH_HEARTBEAT_SECONDS", "30"))
        self._history_days = int(os.getenv("REPCOACH_HISTORY_DAYS", "30"))

        # Both unset by default: no regeneration cap, no upstream timeout.
        self._max_regenerations = _optional_int("REPCOACH_MAX_REGENERATIONS")
        self._generation_timeout_seconds = _optional_float(
            "REPCOACH_GENERATION_TIMEOUT_SECONDS"
        )

        self._log_level = os.getenv("REPCOACH_LOG_LEVEL", "INFO").upper()

    # ------------------------------------------------------------------
    # OpenAI / model settings
    # ------------------------------------------------------------------

    @property
    def openai_api_key(self) -> str:
        if not self._openai_api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set. Please export it in your environment "
                "or define it in a .env file."
            )
        return self._openai_api_key

    @property
    def openai_base_url(self) -> Optional[str]:
        return self._openai_base_url

    @property
    def openai_model(self) -> str:
        return self._openai_model

    @property
    def temperature(self) -> float:
        return self._temperature

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    # ------------------------------------------------------------------
    # Sessions / streaming
    # ------------------------------------------------------------------

    @property
    def session_timeout_seconds(self) -> float:
        return self._session_timeout_seconds

    @property
    def sweep_interval_seconds(self) -> float:
        return self._sweep_interval_seconds

    @property
    def heartbeat_seconds(self) -> float:
        return self._heartbeat_seconds

    @property
    def history_days(self) -> int:
        return self._history_days

    @property
    def max_regenerations(self) -> Optional[int]:
        return self._max_regenerations

    @property
    def generation_timeout_seconds(self) -> Optional[float]:
        return self._generation_timeout_seconds

    @property
    def log_level(self) -> str:
        return self._log_level


settings = Settings()
