"""Session configuration and logging setup.

All tunables live on :class:`SessionConfig`. Hosts either construct it directly
or call :meth:`SessionConfig.from_env` to pick up ``TRIVIA_*`` overrides
(a ``.env`` file in the working directory is loaded first).
"""
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class SessionConfig(BaseModel):
    """Timing, storage and input limits for a trivia session."""

    # --- Phase durations ---
    default_question_seconds: int = Field(25, ge=1, le=3600)
    default_category_seconds: int = Field(20, ge=1, le=3600)
    default_answer_seconds: int = Field(10, ge=1, le=3600)
    grace_ms: int = Field(1000, ge=0, le=60_000)

    # --- Scoring ---
    max_wager: int = Field(3, ge=0, le=3)

    # --- Storage ---
    storage_prefix: str = Field("quiz_state_v2_solo", min_length=1, max_length=100)

    # --- Player ---
    name_max_length: int = Field(24, ge=1, le=255)

    # --- Clock loop ---
    ui_update_interval_ms: int = Field(180, ge=0)
    persist_interval_ms: int = Field(1000, ge=0)
    tick_interval_ms: int = Field(16, ge=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "SessionConfig":
        """Build a config from ``TRIVIA_*`` environment variables.

        Unknown or malformed values are ignored in favour of the defaults.
        """
        load_dotenv(env_file)
        overrides: dict[str, object] = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"TRIVIA_{name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            if field.annotation is int:
                try:
                    overrides[name] = int(raw.strip())
                except ValueError:
                    logger.warning(f"Ignoring malformed TRIVIA_{name.upper()}={raw!r}")
                    continue
            else:
                overrides[name] = raw.strip()
        try:
            return cls(**overrides)
        except ValueError as e:
            logger.warning(f"Invalid session config from environment, using defaults: {e}")
            return cls()


def setup_logging() -> None:
    """Configure root logging for host applications embedding the session."""
    load_dotenv()
    level = os.getenv("TRIVIA_LOG_LEVEL", "INFO").upper()
    log_file = os.getenv("TRIVIA_LOG_FILE", "")
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
