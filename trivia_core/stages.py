"""Stage state machine (pure, no I/O).

NAME -> INTRO -> CATEGORY -> QUESTION -> ANSWER -> CATEGORY of the next round,
or RESULTS after the last round. advance() and retreat() are the only
transition functions; both return a new state and leave rejected moves as
unchanged copies.

Guards such as "ANSWER may only be left once the round is marked" belong to
the caller; the machine executes whatever it is asked to.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from enum import Enum
from typing import Any, Dict

from .scoring import default_player, default_power_up, reopen_wager

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    NAME = "name"
    INTRO = "intro"
    CATEGORY = "category"
    QUESTION = "question"
    ANSWER = "answer"
    # Reserved: no transition leads here.
    FINALE = "finale"
    RESULTS = "results"

    @classmethod
    def parse(cls, raw: Any, default: "Stage") -> "Stage":
        try:
            return cls(raw)
        except ValueError:
            return default


TIMED_STAGES = (Stage.CATEGORY, Stage.QUESTION, Stage.ANSWER)


def default_state(player_name: str = "", start_stage: Stage | str | None = None) -> Dict[str, Any]:
    """Create a fresh session state.

    Without an explicit start stage the session opens on INTRO when a name is
    known and on NAME otherwise.
    """
    if start_stage is None:
        stage = Stage.INTRO if player_name else Stage.NAME
    else:
        stage = Stage.parse(start_stage, Stage.INTRO)
    return {
        "stage": stage.value,
        "roundIndex": 0,
        "player": default_player(player_name),
        "lastCorrect": False,
        "powerUp": default_power_up(),
        "wager": {"amount": 0},
        "wagerResolved": False,
        "outcomes": {},
        "rawAnswers": {},
        "startedAt": None,
        "nameSaved": False,
        "finishReported": False,
    }


def clamp_index(index: Any, last_index: int) -> int:
    if isinstance(index, bool) or not isinstance(index, int):
        return 0
    return min(max(index, 0), max(last_index, 0))


def current_stage(state: Dict[str, Any]) -> Stage:
    return Stage.parse(state.get("stage"), Stage.INTRO)


def _enter(
    state: Dict[str, Any], stage: Stage, index: int, last_index: int, now: int | None
) -> Dict[str, Any]:
    state["stage"] = stage.value
    state["roundIndex"] = clamp_index(index, last_index)
    if stage is Stage.INTRO and state.get("startedAt") is None and now is not None:
        state["startedAt"] = now
    if stage is Stage.CATEGORY and state["roundIndex"] == last_index:
        state = reopen_wager(state, state["roundIndex"])
    return state


def advance(state: Dict[str, Any], last_index: int, now: int | None = None) -> Dict[str, Any]:
    """Move one step forward."""
    new_state = deepcopy(state)
    stage = current_stage(new_state)
    index = clamp_index(new_state.get("roundIndex", 0), last_index)

    if stage is Stage.NAME:
        return _enter(new_state, Stage.INTRO, 0, last_index, now)
    if stage is Stage.INTRO:
        # Leaving INTRO always starts the clock, even if INTRO was restored without one.
        if new_state.get("startedAt") is None and now is not None:
            new_state["startedAt"] = now
        return _enter(new_state, Stage.CATEGORY, 0, last_index, now)
    if stage is Stage.CATEGORY:
        return _enter(new_state, Stage.QUESTION, index, last_index, now)
    if stage is Stage.FINALE:
        return _enter(new_state, Stage.QUESTION, index, last_index, now)
    if stage is Stage.QUESTION:
        return _enter(new_state, Stage.ANSWER, index, last_index, now)
    if stage is Stage.ANSWER:
        if index < last_index:
            return _enter(new_state, Stage.CATEGORY, index + 1, last_index, now)
        return _enter(new_state, Stage.RESULTS, index, last_index, now)

    logger.debug(f"advance() from {stage.value} ignored")
    return new_state


def retreat(state: Dict[str, Any], last_index: int, now: int | None = None) -> Dict[str, Any]:
    """Move one step back.

    CATEGORY has no undo target of its own: it steps back to the previous
    round's ANSWER, or to INTRO on the first round.
    """
    new_state = deepcopy(state)
    stage = current_stage(new_state)
    index = clamp_index(new_state.get("roundIndex", 0), last_index)

    if stage is Stage.QUESTION:
        return _enter(new_state, Stage.CATEGORY, index, last_index, now)
    if stage is Stage.ANSWER:
        return _enter(new_state, Stage.QUESTION, index, last_index, now)
    if stage is Stage.FINALE:
        return _enter(new_state, Stage.CATEGORY, index, last_index, now)
    if stage is Stage.RESULTS:
        return _enter(new_state, Stage.ANSWER, index, last_index, now)
    if stage is Stage.CATEGORY:
        if index > 0:
            return _enter(new_state, Stage.ANSWER, index - 1, last_index, now)
        return _enter(new_state, Stage.INTRO, 0, last_index, now)

    logger.debug(f"retreat() from {stage.value} ignored")
    return new_state
