from .answers import (
    AnswerCheck,
    AnswerMode,
    Validator,
    evaluate,
    is_explicit_no_answer,
    normalize_numeric_answer,
)
from .catalog import CategorySummary, Round, build, is_final, summarize
from .config import SessionConfig, setup_logging
from .results import FinishReport, ResultRow, build_finish_report, reconstruct
from .scoring import (
    arm_power_up,
    award,
    penalize,
    settle_wager,
)
from .session import (
    ActionOutcome,
    MediaReadiness,
    SessionSink,
    TriviaSession,
    run_clock,
)
from .stages import Stage, advance, default_state, retreat
from .store import JsonFileBackend, MemoryBackend, SessionStore, StorageBackend
from .timer import DeadlineTimer, arm_deadline
from .types import ActionPayload, PlayerState, SessionState
from .validation import InputSanitizer, RoundInput, ValidatedAction

__all__ = [
    "ActionOutcome",
    "ActionPayload",
    "AnswerCheck",
    "AnswerMode",
    "CategorySummary",
    "DeadlineTimer",
    "FinishReport",
    "InputSanitizer",
    "JsonFileBackend",
    "MediaReadiness",
    "MemoryBackend",
    "PlayerState",
    "ResultRow",
    "Round",
    "RoundInput",
    "SessionConfig",
    "SessionSink",
    "SessionState",
    "SessionStore",
    "Stage",
    "StorageBackend",
    "TriviaSession",
    "ValidatedAction",
    "Validator",
    "advance",
    "arm_deadline",
    "arm_power_up",
    "award",
    "build",
    "build_finish_report",
    "default_state",
    "evaluate",
    "is_explicit_no_answer",
    "is_final",
    "normalize_numeric_answer",
    "penalize",
    "reconstruct",
    "retreat",
    "run_clock",
    "settle_wager",
    "setup_logging",
    "summarize",
]
