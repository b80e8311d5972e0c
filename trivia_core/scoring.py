"""Scoring rules (pure, no I/O).

All functions take a session state dict and return a new one; the input is
never mutated. Rules:

- A correct non-final round scores ``base * points``, doubled when the
  power-up is armed for that round.
- The 3rd and every further consecutive correct answer adds a flat +1 streak
  bonus on top (never doubled).
- A wrong answer or no answer resets the streak; it never subtracts points.
- The final round ignores points, power-up and streak: the wager (0-3) is won
  or lost outright, once per attempt.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Dict

from .catalog import Round

logger = logging.getLogger(__name__)

OUTCOME_CORRECT = "correct"
OUTCOME_WRONG = "wrong"
OUTCOME_FINAL_CORRECT = "final-correct"
OUTCOME_FINAL_WRONG = "final-wrong"
OUTCOMES = (OUTCOME_CORRECT, OUTCOME_WRONG, OUTCOME_FINAL_CORRECT, OUTCOME_FINAL_WRONG)

STREAK_BONUS_THRESHOLD = 3
STREAK_BONUS_POINTS = 1
POWER_UP_MULTIPLIER = 2
MAX_WAGER = 3


def default_player(name: str = "") -> Dict[str, Any]:
    return {"name": name, "score": 0, "streak": 0, "maxStreak": 0}


def default_power_up() -> Dict[str, Any]:
    return {"available": True, "armedRoundIndex": None}


def next_streak(prior_streak: int, last_was_correct: bool) -> int:
    return prior_streak + 1 if last_was_correct else 1


def streak_bonus(streak: int) -> int:
    return STREAK_BONUS_POINTS if streak >= STREAK_BONUS_THRESHOLD else 0


def award_delta(base: int, points: int, doubled: bool, new_streak: int) -> int:
    """Points for one correct answer; the streak bonus is added after doubling."""
    return base * points * (POWER_UP_MULTIPLIER if doubled else 1) + streak_bonus(new_streak)


def wager_delta(amount: int, correct: bool) -> int:
    return amount if correct else -amount


def is_power_up_armed_for(state: Dict[str, Any], round_index: int) -> bool:
    power_up = state.get("powerUp") or {}
    return power_up.get("armedRoundIndex") == round_index


def clamp_wager(amount: Any, max_wager: int = MAX_WAGER) -> int:
    if isinstance(amount, bool):
        return 0
    try:
        value = int(amount)
    except (TypeError, ValueError):
        return 0
    return min(max_wager, max(0, value))


def award(
    state: Dict[str, Any],
    round: Round,
    round_index: int,
    base: int = 1,
    *,
    use_power_up: bool = True,
) -> Dict[str, Any]:
    """Apply a correct answer to the player."""
    new_state = deepcopy(state)
    player = new_state.setdefault("player", default_player())
    doubled = use_power_up and is_power_up_armed_for(new_state, round_index)
    streak = next_streak(player.get("streak", 0), bool(new_state.get("lastCorrect")))
    delta = award_delta(base, round.points or 1, doubled, streak)
    player["score"] = player.get("score", 0) + delta
    player["streak"] = streak
    player["maxStreak"] = max(player.get("maxStreak", 0), streak)
    new_state["lastCorrect"] = True
    logger.debug(f"Round {round_index}: +{delta} (streak {streak}, x2={doubled})")
    return new_state


def penalize(state: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a wrong answer or no answer: the streak is broken, the score kept."""
    new_state = deepcopy(state)
    player = new_state.setdefault("player", default_player())
    player["streak"] = 0
    new_state["lastCorrect"] = False
    return new_state


def record_outcome(state: Dict[str, Any], round_index: int, outcome: str) -> Dict[str, Any]:
    """Write a round's outcome label unless one is already recorded."""
    new_state = deepcopy(state)
    outcomes = new_state.setdefault("outcomes", {})
    if outcome not in OUTCOMES:
        logger.debug(f"Ignoring unknown outcome {outcome!r} for round {round_index}")
        return new_state
    if round_index in outcomes:
        logger.debug(f"Round {round_index} already recorded as {outcomes[round_index]!r}")
        return new_state
    outcomes[round_index] = outcome
    return new_state


def can_arm_power_up(state: Dict[str, Any], round_index: int, is_final: bool) -> bool:
    power_up = state.get("powerUp") or {}
    return (
        bool(power_up.get("available"))
        and power_up.get("armedRoundIndex") is None
        and not is_final
        and state.get("stage") == "category"
    )


def arm_power_up(state: Dict[str, Any], round_index: int, is_final: bool) -> Dict[str, Any]:
    """Arm the one-time x2 for ``round_index``; a no-op once it has been used."""
    new_state = deepcopy(state)
    if not can_arm_power_up(new_state, round_index, is_final):
        logger.debug(f"Power-up arm rejected for round {round_index}")
        return new_state
    new_state["powerUp"] = {"available": False, "armedRoundIndex": round_index}
    return new_state


def set_wager(state: Dict[str, Any], amount: Any, max_wager: int = MAX_WAGER) -> Dict[str, Any]:
    new_state = deepcopy(state)
    if new_state.get("wagerResolved"):
        logger.debug("Wager already settled, amount change ignored")
        return new_state
    new_state["wager"] = {"amount": clamp_wager(amount, max_wager)}
    return new_state


def settle_wager(state: Dict[str, Any], round_index: int, correct: bool) -> Dict[str, Any]:
    """Win or lose the wager once per final-round attempt."""
    new_state = deepcopy(state)
    if new_state.get("wagerResolved"):
        logger.debug("Wager already settled, ignoring repeated settlement")
        return new_state
    amount = clamp_wager((new_state.get("wager") or {}).get("amount", 0))
    player = new_state.setdefault("player", default_player())
    player["score"] = player.get("score", 0) + wager_delta(amount, correct)
    new_state["wagerResolved"] = True
    outcomes = new_state.setdefault("outcomes", {})
    outcomes[round_index] = OUTCOME_FINAL_CORRECT if correct else OUTCOME_FINAL_WRONG
    return new_state


def reopen_wager(state: Dict[str, Any], round_index: int) -> Dict[str, Any]:
    """Start a fresh final-round attempt: undo a prior settlement, zero the wager."""
    new_state = deepcopy(state)
    outcomes = new_state.setdefault("outcomes", {})
    previous = outcomes.get(round_index)
    if new_state.get("wagerResolved") and previous in (OUTCOME_FINAL_CORRECT, OUTCOME_FINAL_WRONG):
        amount = clamp_wager((new_state.get("wager") or {}).get("amount", 0))
        player = new_state.setdefault("player", default_player())
        player["score"] = player.get("score", 0) - wager_delta(
            amount, previous == OUTCOME_FINAL_CORRECT
        )
        del outcomes[round_index]
        new_state.setdefault("rawAnswers", {}).pop(round_index, None)
        logger.info(f"Final round re-opened, settlement of {previous!r} reverted")
    new_state["wager"] = {"amount": 0}
    new_state["wagerResolved"] = False
    return new_state
