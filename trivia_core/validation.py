"""
Input validation schemas using Pydantic v2
Coerces raw question data and validates action payloads
"""

import logging
import math
from typing import Any, Dict, List, Optional, Self

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .answers import AnswerMode

logger = logging.getLogger(__name__)

# ==================== ROUND INPUT ====================


class RoundInput(BaseModel):
    """Lenient model for one question record.

    Malformed fields are defaulted instead of rejected (order 0, points 1,
    mode "text") so that a bad record never makes the session unplayable.
    """

    id: Optional[str] = None
    order: float = 0
    category: str = "—"
    prompt: str = ""
    points: int = 1
    answerMode: str = Field(
        AnswerMode.TEXT.value, validation_alias=AliasChoices("answerMode", "answer_mode")
    )
    timeSeconds: Optional[int] = Field(
        None, validation_alias=AliasChoices("timeSeconds", "time_seconds")
    )
    media: Optional[Any] = None
    answer: Optional[Any] = None
    acceptNumbers: List[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices("acceptNumbers", "accept_numbers"),
    )
    acceptNumber: Optional[Any] = Field(
        None, validation_alias=AliasChoices("acceptNumber", "accept_number")
    )
    fact: Optional[str] = None
    options: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, bool):
            return None
        return InputSanitizer.sanitize_string(str(v), 100) or None

    @field_validator("order", mode="before")
    @classmethod
    def coerce_order(cls, v: Any) -> float:
        """Missing or non-numeric order sorts as 0"""
        if v is None or isinstance(v, bool):
            return 0
        try:
            parsed = float(v)
        except (TypeError, ValueError):
            logger.debug(f"Malformed round order {v!r}, defaulting to 0")
            return 0
        return parsed if math.isfinite(parsed) else 0

    @field_validator("category", "prompt", mode="before")
    @classmethod
    def coerce_text(cls, v: Any, info) -> str:
        if v is None:
            return "—" if info.field_name == "category" else ""
        text = str(v).strip()
        if not text and info.field_name == "category":
            return "—"
        return text

    @field_validator("points", mode="before")
    @classmethod
    def coerce_points(cls, v: Any) -> int:
        """Points are the multiplier base and never drop below 1"""
        if v is None or isinstance(v, bool):
            return 1
        try:
            parsed = int(v)
        except (TypeError, ValueError, OverflowError):
            logger.debug(f"Malformed round points {v!r}, defaulting to 1")
            return 1
        return parsed if parsed >= 1 else 1

    @field_validator("answerMode", mode="before")
    @classmethod
    def coerce_mode(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() in AnswerMode.values():
            return v.strip().lower()
        if v is not None:
            logger.debug(f"Unknown answer mode {v!r}, defaulting to text")
        return AnswerMode.TEXT.value

    @field_validator("timeSeconds", mode="before")
    @classmethod
    def coerce_time_seconds(cls, v: Any) -> Optional[int]:
        if v is None or isinstance(v, bool):
            return None
        try:
            parsed = int(v)
        except (TypeError, ValueError, OverflowError):
            return None
        return parsed if parsed > 0 else None

    @field_validator("fact", mode="before")
    @classmethod
    def coerce_fact(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("acceptNumbers", "options", mode="before")
    @classmethod
    def coerce_list(cls, v: Any, info) -> list:
        if not isinstance(v, (list, tuple)):
            return []
        if info.field_name == "options":
            return [str(item) for item in v if item is not None]
        return list(v)


# ==================== ACTIONS ====================

ALLOWED_ACTIONS = {
    "NAME",
    "NEXT",
    "PREVIOUS",
    "ARM_POWER_UP",
    "SET_WAGER",
    "SUBMIT_ANSWER",
    "MARK_ANSWER",
    "SET_MODAL_OPEN",
    "SET_VISIBILITY",
    "MEDIA_READY",
    "SET_START_TIME",
    "RESET",
    "TICK",
}


class ValidatedAction(BaseModel):
    """Action payload accepted by TriviaSession.dispatch()"""

    type: str = Field(..., min_length=1, max_length=50, description="Action type")

    name: Optional[str] = Field(None, max_length=255, description="Player name")
    amount: Optional[int] = Field(None, description="Wager amount (clamped to 0-3)")
    value: Optional[Any] = Field(None, description="Raw answer value")
    correct: Optional[bool] = None
    flag: Optional[bool] = None
    startedAt: Optional[int] = Field(None, ge=0, description="Epoch ms")
    now: Optional[int] = Field(None, ge=0, description="Epoch ms")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Validate action type is one of allowed types"""
        v = v.strip().upper()
        if v not in ALLOWED_ACTIONS:
            raise ValueError(f"type must be one of {sorted(ALLOWED_ACTIONS)}, got {v}")
        return v

    @model_validator(mode="after")
    def validate_action_fields(self) -> Self:
        """Validate required fields based on action type"""
        action = self.type

        if action == "NAME":
            if self.name is None or not self.name.strip():
                raise ValueError("NAME requires a non-empty name")

        elif action == "SET_WAGER":
            if self.amount is None:
                raise ValueError("SET_WAGER requires amount")

        elif action == "MARK_ANSWER":
            if self.correct is None:
                raise ValueError("MARK_ANSWER requires correct")

        elif action in {"SET_MODAL_OPEN", "SET_VISIBILITY", "MEDIA_READY"}:
            if self.flag is None:
                raise ValueError(f"{action} requires flag")

        elif action == "SET_START_TIME":
            if self.startedAt is None:
                raise ValueError("SET_START_TIME requires startedAt")

        return self


class InputSanitizer:
    """Utility class for input sanitization"""

    @staticmethod
    def sanitize_string(value: str, max_length: int = 255) -> str:
        """Sanitize string input"""
        if not isinstance(value, str):
            return str(value)[:max_length]

        # Strip whitespace
        value = value.strip()

        # Remove null bytes
        value = value.replace("\0", "")

        # Limit length
        value = value[:max_length]

        return value.strip()

    @staticmethod
    def sanitize_player_name(name: Any, max_length: int = 24) -> str:
        """Trim a player-entered name; control characters are dropped"""
        if name is None:
            return ""
        text = name if isinstance(name, str) else str(name)
        text = "".join(ch for ch in text if ch.isprintable())
        return InputSanitizer.sanitize_string(text, max_length)

    @staticmethod
    def validate_action(action_dict: Dict[str, Any]) -> ValidatedAction:
        """
        Validate an action dictionary

        Returns:
            ValidatedAction: Validated action object

        Raises:
            ValueError: If validation fails
        """
        try:
            return ValidatedAction(**action_dict)
        except Exception as e:
            logger.warning(f"Action validation failed: {e}")
            raise ValueError(f"Invalid action: {str(e)}")


# ==================== EXPORT ====================

__all__ = [
    "ALLOWED_ACTIONS",
    "RoundInput",
    "ValidatedAction",
    "InputSanitizer",
]
