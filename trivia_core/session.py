"""Trivia session runtime.

:class:`TriviaSession` owns one play-through. It wires the pure pieces
together and is the only place with side effects:

- every transition is persisted through :class:`SessionStore` (a reload
  rebuilds the session exactly, timers included)
- entering CATEGORY / QUESTION / ANSWER arms a wall-clock deadline; leaving
  the phase deletes it and bumps a phase token, so a late expiry is a no-op
- a round's outcome is persisted before the stage moves past it
- the finish report and the name notification fire at most once

The view layer reads :attr:`TriviaSession.state` (a copy) and drives the
session through the action methods or :meth:`TriviaSession.dispatch`.
"""
from __future__ import annotations

import asyncio
import logging
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Protocol

from . import catalog
from .answers import AnswerMode, Validator, evaluate, is_explicit_no_answer, stored_answer
from .catalog import Round
from .config import SessionConfig
from .results import FinishReport, ResultRow, build_finish_report, reconstruct
from .scoring import (
    OUTCOME_CORRECT,
    OUTCOME_WRONG,
    arm_power_up,
    award,
    penalize,
    record_outcome,
    set_wager,
    settle_wager,
)
from .stages import TIMED_STAGES, Stage, advance, clamp_index, current_stage, default_state, retreat
from .store import SessionStore, StorageBackend
from .timer import Clock, DeadlineTimer, arm_deadline, now_ms
from .types import ActionPayload, SessionState
from .validation import InputSanitizer

logger = logging.getLogger(__name__)


class MediaReadiness(Protocol):
    def is_ready(self, round: Round) -> bool:
        ...


class SessionSink(Protocol):
    def report(self, report: FinishReport) -> None:
        ...


@dataclass
class ActionOutcome:
    """Result of dispatching an action."""

    state: Dict[str, Any]
    applied: bool
    reason: str | None = None


class TriviaSession:
    def __init__(
        self,
        rounds: Iterable[Any] | None,
        *,
        backend: StorageBackend | None = None,
        version: str | None = None,
        config: SessionConfig | None = None,
        validator: Validator | None = None,
        sink: SessionSink | None = None,
        media: MediaReadiness | None = None,
        player_name: str | None = None,
        start_stage: Stage | str | None = None,
        started_at_override: int | None = None,
        room_code: str | None = None,
        on_name_saved: Callable[[str], None] | None = None,
        on_timer_update: Callable[[int], None] | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.config = config or SessionConfig()
        self.rounds: tuple[Round, ...] = catalog.build(rounds)
        self.version = version or catalog.fingerprint(self.rounds)
        self.store = SessionStore(backend, version=self.version, prefix=self.config.storage_prefix)
        self.room_code = room_code
        self._validator = validator
        self._sink = sink
        self._media = media
        self._on_name_saved = on_name_saved
        self._on_timer_update = on_timer_update
        self._clock = clock

        self._modal_open = False
        self._hidden = False
        self._media_ready: Dict[int, bool] = {}
        self._timer: DeadlineTimer | None = None
        self._timer_key: tuple[str, int] | None = None
        self._phase_token = 0

        name = InputSanitizer.sanitize_player_name(player_name, self.config.name_max_length)
        self._state = self.store.load_state(default_state(name, start_stage))
        self._state["roundIndex"] = clamp_index(self._state.get("roundIndex"), self.last_index)
        if name and self._state["player"].get("name") != name:
            self._state["player"]["name"] = name
        if started_at_override and self._state.get("startedAt") is None:
            self._state["startedAt"] = int(started_at_override)
        self._persist()

        known_name = self._state["player"].get("name")
        if self.stage is Stage.NAME and known_name:
            self._accept_name(known_name)
            self._transition(advance(self._state, self.last_index, self._clock()))
        self._mark_started()
        self._sync_timer()
        logger.info(
            f"Session {self.store.namespace} ready: {len(self.rounds)} rounds, "
            f"stage={self.stage.value}, round={self.round_index}"
        )

    # ==================== read-only view ====================

    @property
    def state(self) -> SessionState:
        return deepcopy(self._state)

    @property
    def stage(self) -> Stage:
        return current_stage(self._state)

    @property
    def round_index(self) -> int:
        return self._state.get("roundIndex", 0)

    @property
    def last_index(self) -> int:
        return catalog.last_index(self.rounds)

    @property
    def current_round(self) -> Round | None:
        if not self.rounds:
            return None
        return self.rounds[self.round_index]

    @property
    def is_final_round(self) -> bool:
        return catalog.is_final(self.round_index, self.rounds)

    @property
    def score(self) -> int:
        return self._state["player"].get("score", 0)

    @property
    def timer(self) -> DeadlineTimer | None:
        return self._timer

    def can_advance(self) -> bool:
        """Whether the view should enable "next" in the current stage."""
        if self.stage is Stage.RESULTS:
            return False
        if self.stage is Stage.ANSWER:
            if self.is_final_round:
                return bool(self._state.get("wagerResolved"))
            return self.round_index in self._state.get("outcomes", {})
        return True

    def results(self) -> list[ResultRow]:
        return reconstruct(
            self.rounds,
            self._state.get("outcomes"),
            self._state.get("powerUp"),
            self._state.get("wager"),
            self._state.get("rawAnswers"),
        )

    def finish_report(self, now: int | None = None) -> FinishReport:
        return build_finish_report(
            self.results(),
            self._state.get("startedAt"),
            self._clock() if now is None else now,
            self.room_code,
        )

    # ==================== actions ====================

    def submit_name(self, name: str) -> bool:
        if self.stage is not Stage.NAME:
            return self._reject("NAME outside the name stage")
        cleaned = InputSanitizer.sanitize_player_name(name, self.config.name_max_length)
        if not cleaned:
            return self._reject("empty name")
        self._state["player"]["name"] = cleaned
        self._accept_name(cleaned)
        self._transition(advance(self._state, self.last_index, self._clock()))
        return True

    def next(self) -> bool:
        if self.stage is Stage.RESULTS:
            return self._reject("advance past results")
        if self.stage is Stage.NAME and not self._state["player"].get("name"):
            return self._reject("advance without a name")
        if not self.rounds and self.stage is Stage.INTRO:
            new_state = deepcopy(self._state)
            new_state["stage"] = Stage.RESULTS.value
            self._transition(new_state)
            return True
        self._transition(advance(self._state, self.last_index, self._clock()))
        return True

    def previous(self) -> bool:
        if self.stage in (Stage.NAME, Stage.INTRO):
            return self._reject(f"retreat from {self.stage.value}")
        self._transition(retreat(self._state, self.last_index, self._clock()))
        return True

    def arm_power_up(self) -> bool:
        new_state = arm_power_up(self._state, self.round_index, self.is_final_round)
        if new_state["powerUp"] == self._state.get("powerUp"):
            return self._reject("power-up unavailable")
        self._state = new_state
        self._persist()
        logger.info(f"Power-up armed for round {self.round_index}")
        return True

    def set_wager(self, amount: Any) -> bool:
        if self.stage is not Stage.CATEGORY or not self.is_final_round:
            return self._reject("wager outside the final category stage")
        self._state = set_wager(self._state, amount, self.config.max_wager)
        self._persist()
        return True

    def submit_answer(self, value: Any) -> bool:
        """Record the player's answer for the active round and reveal it."""
        r = self.current_round
        if self.stage is not Stage.QUESTION or r is None:
            return self._reject("answer outside the question stage")
        index = self.round_index
        new_state = deepcopy(self._state)

        if index in new_state.get("outcomes", {}):
            logger.debug(f"Round {index} already scored, revealing without re-scoring")
        else:
            stored = stored_answer(r.answer_mode, value)
            new_state.setdefault("rawAnswers", {})[index] = stored
            if r.answer_mode is not AnswerMode.TEXT and is_explicit_no_answer(r.answer_mode, stored):
                new_state = self._score(new_state, index, False)
            else:
                check = evaluate(r, stored, self._validator)
                if check is not None:
                    new_state = self._score(new_state, index, check.correct)

        # The outcome is stored before the stage moves on.
        self._state = new_state
        self._persist()
        self._transition(advance(self._state, self.last_index, self._clock()))
        return True

    def mark_answer(self, correct: bool) -> bool:
        """Manually mark the revealed round, then move on."""
        if self.stage is not Stage.ANSWER or self.current_round is None:
            return self._reject("marking outside the answer stage")
        index = self.round_index
        if self.is_final_round:
            if self._state.get("wagerResolved"):
                return self._reject("wager already settled")
        elif index in self._state.get("outcomes", {}):
            return self._reject(f"round {index} already marked")
        self._state = self._score(self._state, index, bool(correct))
        self._persist()
        self._transition(advance(self._state, self.last_index, self._clock()))
        return True

    def set_modal_open(self, is_open: bool) -> bool:
        self._modal_open = bool(is_open)
        if self._timer is not None:
            self._timer.set_modal_open(self._modal_open, self._clock())
        return True

    def set_visibility(self, hidden: bool) -> bool:
        self._hidden = bool(hidden)
        if self._timer is not None:
            self._timer.set_hidden(self._hidden, self._clock())
        return True

    def set_media_ready(self, ready: bool = True) -> bool:
        self._media_ready[self.round_index] = bool(ready)
        if self._timer is not None and self.stage is Stage.QUESTION:
            self._timer.set_media_ready(bool(ready), self._clock())
        return True

    def set_start_time(self, started_at: int) -> bool:
        """Adopt an externally coordinated start time unless one is already set."""
        if self._state.get("startedAt") is not None:
            return self._reject("start time already set")
        self._state["startedAt"] = int(started_at)
        self._persist()
        return True

    def reset(self) -> bool:
        """Discard the play-through and every persisted key of this session."""
        name = self._state["player"].get("name", "")
        name_saved = bool(self._state.get("nameSaved"))
        self.store.reset()
        self._state = default_state(name)
        self._state["nameSaved"] = name_saved
        self._media_ready.clear()
        self._timer = None
        self._timer_key = None
        self._mark_started()
        self._persist()
        self._sync_timer()
        logger.info(f"Session {self.store.namespace} reset")
        return True

    def tick(self, now: int | None = None) -> int | None:
        """Poll the active timer; returns the remaining ms or None without one."""
        if self._timer is None:
            return None
        return self._timer.poll(self._clock() if now is None else now)

    def dispatch(self, action: ActionPayload | Dict[str, Any]) -> ActionOutcome:
        try:
            validated = InputSanitizer.validate_action(action)
        except ValueError as e:
            return ActionOutcome(state=self.state, applied=False, reason=str(e))

        kind = validated.type
        if kind == "NAME":
            applied = self.submit_name(validated.name or "")
        elif kind == "NEXT":
            applied = self.next()
        elif kind == "PREVIOUS":
            applied = self.previous()
        elif kind == "ARM_POWER_UP":
            applied = self.arm_power_up()
        elif kind == "SET_WAGER":
            applied = self.set_wager(validated.amount)
        elif kind == "SUBMIT_ANSWER":
            applied = self.submit_answer(validated.value)
        elif kind == "MARK_ANSWER":
            applied = self.mark_answer(bool(validated.correct))
        elif kind == "SET_MODAL_OPEN":
            applied = self.set_modal_open(bool(validated.flag))
        elif kind == "SET_VISIBILITY":
            applied = self.set_visibility(bool(validated.flag))
        elif kind == "MEDIA_READY":
            applied = self.set_media_ready(bool(validated.flag))
        elif kind == "SET_START_TIME":
            applied = self.set_start_time(validated.startedAt)
        elif kind == "RESET":
            applied = self.reset()
        else:  # TICK
            self.tick(validated.now)
            applied = True

        return ActionOutcome(
            state=self.state, applied=applied, reason=None if applied else f"{kind} rejected"
        )

    # ==================== internals ====================

    def _reject(self, reason: str) -> bool:
        logger.debug(f"Rejected: {reason} (stage={self.stage.value}, round={self.round_index})")
        return False

    def _score(self, state: Dict[str, Any], index: int, correct: bool) -> Dict[str, Any]:
        if catalog.is_final(index, self.rounds):
            return settle_wager(state, index, correct)
        r = self.rounds[index]
        state = award(state, r, index) if correct else penalize(state)
        return record_outcome(state, index, OUTCOME_CORRECT if correct else OUTCOME_WRONG)

    def _mark_started(self) -> None:
        if self.stage is Stage.INTRO and self._state.get("startedAt") is None:
            self._state["startedAt"] = self._clock()
            self._persist()

    def _persist(self) -> None:
        if self._timer is not None:
            self._timer.flush()
        self.store.save_state(self._state)

    def _accept_name(self, name: str) -> None:
        if self._state.get("nameSaved"):
            return
        self._state["nameSaved"] = True
        self._persist()
        if self._on_name_saved is None:
            return
        try:
            self._on_name_saved(name)
        except Exception as e:
            logger.warning(f"Name-change callback failed: {e}")

    def _transition(self, new_state: Dict[str, Any]) -> None:
        previous = (self._state.get("stage"), self._state.get("roundIndex"))
        self._state = new_state
        self._persist()
        current = (self._state.get("stage"), self._state.get("roundIndex"))
        if previous != current:
            prev_stage, prev_index = previous
            if prev_stage in {s.value for s in TIMED_STAGES}:
                self.store.clear_deadline(prev_stage, prev_index)
            logger.info(f"Stage {prev_stage}#{prev_index} -> {current[0]}#{current[1]}")
            if self.stage is Stage.RESULTS:
                self._report_finish()
        self._sync_timer()

    def _report_finish(self) -> None:
        if self._state.get("finishReported"):
            return
        self._state["finishReported"] = True
        self._persist()
        report = self.finish_report()
        logger.info(
            f"Run finished: score={report.final_score}, maxStreak={report.max_streak}, "
            f"duration={report.duration_seconds}s"
        )
        if self._sink is None:
            return
        try:
            self._sink.report(report)
        except Exception as e:
            logger.warning(f"Session sink failed to accept finished run: {e}")

    def _phase_duration_ms(self, stage: Stage) -> int:
        if stage is Stage.CATEGORY:
            seconds = self.config.default_category_seconds
        elif stage is Stage.QUESTION:
            r = self.current_round
            seconds = (r.time_seconds if r is not None else None) or self.config.default_question_seconds
        else:
            seconds = self.config.default_answer_seconds
        return seconds * 1000

    def _is_media_ready(self, index: int) -> bool:
        if index in self._media_ready:
            return self._media_ready[index]
        r = self.rounds[index]
        if not r.has_media or self._media is None:
            return True
        try:
            return bool(self._media.is_ready(r))
        except Exception as e:
            logger.warning(f"Media readiness check failed for round {r.id}: {e}")
            return True

    def _sync_timer(self) -> None:
        key = (self._state.get("stage"), self.round_index)
        if self._timer_key == key:
            return
        self._phase_token += 1
        self._timer = None
        self._timer_key = key

        stage = self.stage
        index = self.round_index
        if stage not in TIMED_STAGES or not self.rounds:
            return
        if stage is Stage.ANSWER and self.is_final_round:
            return

        now = self._clock()
        duration = self._phase_duration_ms(stage)
        deadline = arm_deadline(self.store, stage.value, index, duration, self.config.grace_ms, now)
        token = self._phase_token
        phase = stage.value
        timer = DeadlineTimer(
            duration,
            deadline,
            on_expire=lambda: self._on_expire(token),
            on_deadline_change=lambda dl: self.store.set_deadline(phase, index, dl),
            on_update=self._on_timer_update,
            clock=self._clock,
            update_interval_ms=self.config.ui_update_interval_ms,
            persist_interval_ms=self.config.persist_interval_ms,
        )
        timer.set_modal_open(self._modal_open, now)
        timer.set_hidden(self._hidden, now)
        if stage is Stage.QUESTION:
            timer.set_media_ready(self._is_media_ready(index), now)
        self._timer = timer

    def _on_expire(self, token: int) -> None:
        if token != self._phase_token:
            logger.debug(f"Stale expiry ignored (token {token}, current {self._phase_token})")
            return
        stage = self.stage
        logger.info(f"Time up in {stage.value} of round {self.round_index}")
        if stage is Stage.CATEGORY:
            self.next()
        elif stage is Stage.QUESTION:
            self.submit_answer("")
        elif stage is Stage.ANSWER and not self.is_final_round:
            index = self.round_index
            if index not in self._state.get("outcomes", {}):
                # an unmarked round closes as wrong, so a late mark is rejected
                self._state = self._score(self._state, index, False)
                self._persist()
            self.next()


async def run_clock(
    session: TriviaSession,
    *,
    stop: asyncio.Event | None = None,
    interval_ms: int | None = None,
) -> None:
    """Tick the session's timers until RESULTS or until ``stop`` is set."""
    interval = (session.config.tick_interval_ms if interval_ms is None else interval_ms) / 1000
    try:
        while session.stage is not Stage.RESULTS:
            if stop is not None and stop.is_set():
                break
            session.tick()
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.debug("Session clock cancelled")
        raise
