"""Answer mode dispatch.

Routes a raw answer to the evaluation strategy of its round's mode:

- numeric: parsed and compared against the round's accepted numbers here,
  never handed to the external validator
- catalog / scoreline: delegated to an injected :class:`Validator`
- text: never auto-scored; the player marks it in the ANSWER phase

Every mode must have an entry in ``_STRATEGIES``; the module refuses to import
otherwise.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

if TYPE_CHECKING:
    from .catalog import Round

logger = logging.getLogger(__name__)


class AnswerMode(str, Enum):
    CATALOG = "catalog"
    SCORELINE = "scoreline"
    NUMERIC = "numeric"
    TEXT = "text"

    @classmethod
    def values(cls) -> frozenset[str]:
        return frozenset(m.value for m in cls)

    @classmethod
    def parse(cls, raw: Any) -> "AnswerMode":
        try:
            return cls(raw)
        except ValueError:
            return cls.TEXT


@dataclass(frozen=True)
class AnswerCheck:
    correct: bool
    canonical: str | None = None


class Validator(Protocol):
    def validate(self, round: "Round", raw_value: Any) -> AnswerCheck | Mapping[str, Any]:
        ...


def normalize_numeric_answer(raw: Any) -> float | None:
    """Parse a numeric answer to a finite number, or None for "no answer".

    Accepts plain numbers, numeric strings and the stored ``{"value": n}`` shape.
    """
    if isinstance(raw, Mapping):
        raw = raw.get("value")
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return None
        try:
            value = float(stripped)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(value):
        return None
    return value


def format_number(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def is_explicit_no_answer(mode: AnswerMode | str, raw_value: Any) -> bool:
    """True when an auto-scored mode received nothing to score.

    Free text is never "no answer": it always goes to manual marking.
    """
    mode = AnswerMode.parse(mode)
    if mode is AnswerMode.NUMERIC:
        return normalize_numeric_answer(raw_value) is None
    if mode is AnswerMode.SCORELINE:
        if raw_value is None:
            return True
        if isinstance(raw_value, str):
            return raw_value.strip() == ""
        if isinstance(raw_value, Mapping):
            return raw_value.get("home") is None and raw_value.get("away") is None
        return False
    if mode is AnswerMode.CATALOG:
        if isinstance(raw_value, Mapping):
            raw_value = raw_value.get("name")
        if raw_value is None:
            return True
        return isinstance(raw_value, str) and raw_value.strip() == ""
    return False


def stored_answer(mode: AnswerMode | str, raw_value: Any) -> Any:
    """Shape a raw submission the way it is kept in ``rawAnswers``."""
    mode = AnswerMode.parse(mode)
    if mode is AnswerMode.NUMERIC:
        value = normalize_numeric_answer(raw_value)
        return {"value": value}
    if mode is AnswerMode.SCORELINE:
        if isinstance(raw_value, Mapping):
            return {"home": raw_value.get("home"), "away": raw_value.get("away")}
        return "" if raw_value is None else raw_value
    if mode is AnswerMode.CATALOG:
        if isinstance(raw_value, Mapping):
            name = raw_value.get("name")
            return str(name) if name else ""
        return "" if raw_value is None else raw_value
    return "" if raw_value is None else raw_value


def answer_text(raw_value: Any) -> str:
    """Display string for a stored answer; empty when nothing was given."""
    if isinstance(raw_value, Mapping):
        if raw_value.get("home") is not None and raw_value.get("away") is not None:
            return f"{raw_value['home']} - {raw_value['away']}"
        value = raw_value.get("value")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return format_number(float(value))
        return ""
    if raw_value is None:
        return ""
    return str(raw_value)


def accepted_numbers(round: "Round") -> list[float]:
    candidates = list(round.accept_numbers)
    if not candidates:
        single = round.accept_number if round.accept_number is not None else round.answer
        candidates = [single]
    accepted = []
    for candidate in candidates:
        value = normalize_numeric_answer(candidate)
        if value is not None:
            accepted.append(value)
    return accepted


def check_numeric(round: "Round", raw_value: Any) -> AnswerCheck:
    got = normalize_numeric_answer(raw_value)
    if got is None:
        return AnswerCheck(correct=False, canonical=None)
    return AnswerCheck(correct=got in accepted_numbers(round), canonical=format_number(got))


def _coerce_check(result: Any) -> AnswerCheck:
    if isinstance(result, AnswerCheck):
        return result
    if isinstance(result, Mapping):
        canonical = result.get("canonical")
        return AnswerCheck(
            correct=bool(result.get("correct")),
            canonical=None if canonical is None else str(canonical),
        )
    return AnswerCheck(correct=bool(result))


def _external(round: "Round", raw_value: Any, validator: Validator | None) -> AnswerCheck | None:
    if validator is None:
        logger.debug(f"No validator configured for {round.answer_mode.value} round {round.id}")
        return None
    try:
        return _coerce_check(validator.validate(round, raw_value))
    except Exception as e:
        logger.warning(f"Validator failed for round {round.id}: {e}")
        return None


def _numeric(round: "Round", raw_value: Any, validator: Validator | None) -> AnswerCheck | None:
    return check_numeric(round, raw_value)


def _manual(round: "Round", raw_value: Any, validator: Validator | None) -> AnswerCheck | None:
    return None


_STRATEGIES: dict[AnswerMode, Callable[["Round", Any, Validator | None], AnswerCheck | None]] = {
    AnswerMode.CATALOG: _external,
    AnswerMode.SCORELINE: _external,
    AnswerMode.NUMERIC: _numeric,
    AnswerMode.TEXT: _manual,
}

_missing = set(AnswerMode) - set(_STRATEGIES)
if _missing:
    raise RuntimeError(f"answer modes without a strategy: {sorted(m.value for m in _missing)}")


def evaluate(round: "Round", raw_value: Any, validator: Validator | None = None) -> AnswerCheck | None:
    """Evaluate a submission; None means it needs manual marking."""
    return _STRATEGIES[round.answer_mode](round, raw_value, validator)
