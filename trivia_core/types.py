"""Type definitions for session state and actions."""
from __future__ import annotations

from typing import Any, Dict, Optional, TypedDict


class PlayerState(TypedDict):
    """The single player of a session."""
    name: str
    score: int
    streak: int
    maxStreak: int


class PowerUpState(TypedDict):
    """One-time score-doubling power-up."""
    available: bool
    armedRoundIndex: Optional[int]


class WagerState(TypedDict):
    """Points risked on the final round (0-3)."""
    amount: int


class SessionState(TypedDict, total=False):
    """
    TypedDict representing one play-through.

    Keys are camelCase because the same dict is handed to the view layer and
    persisted field by field.
    """
    # Progress
    stage: str  # 'name' | 'intro' | 'category' | 'question' | 'answer' | 'results'
    roundIndex: int

    # Player
    player: PlayerState
    lastCorrect: bool  # previous scored event was a correct answer

    # Power-up / final wager
    powerUp: PowerUpState
    wager: WagerState
    wagerResolved: bool

    # History, keyed by round index
    outcomes: Dict[int, str]  # 'correct' | 'wrong' | 'final-correct' | 'final-wrong'
    rawAnswers: Dict[int, Any]

    # Timing
    startedAt: Optional[int]  # epoch ms

    # One-shot guards
    nameSaved: bool
    finishReported: bool


class ActionPayload(TypedDict, total=False):
    """
    TypedDict for actions sent to TriviaSession.dispatch().

    Fields vary by action type.
    """
    type: str

    # NAME
    name: Optional[str]
    # SET_WAGER
    amount: Optional[int]
    # SUBMIT_ANSWER
    value: Any
    # MARK_ANSWER
    correct: Optional[bool]
    # SET_MODAL_OPEN / SET_VISIBILITY / MEDIA_READY
    flag: Optional[bool]
    # SET_START_TIME
    startedAt: Optional[int]
    # TICK
    now: Optional[int]

