"""Results ledger reconstructed from recorded outcomes.

Single source of truth for the results table and the finished-run report:
the streak is re-derived from the outcome sequence alone, never read from the
live player state, so the ledger can be regenerated at any time.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Sequence

from .answers import answer_text
from .catalog import Round
from .scoring import (
    OUTCOME_CORRECT,
    OUTCOME_FINAL_CORRECT,
    OUTCOME_FINAL_WRONG,
    OUTCOME_WRONG,
    award_delta,
    clamp_wager,
    streak_bonus,
    wager_delta,
)


@dataclass(frozen=True)
class ResultRow:
    index: int  # 1-based
    round_id: str
    category: str
    prompt: str
    points: int
    is_final: bool
    outcome: str | None
    correct: bool | None
    x2_applied: bool
    bonus: int
    streak: int
    user_answer: Any
    answer_text: str
    delta: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        """Row in the shape reported to external collaborators."""
        return {
            "i": self.index,
            "category": self.category,
            "points": self.points,
            "isFinal": self.is_final,
            "correct": self.correct,
            "x2": self.x2_applied,
            "answerText": self.answer_text,
            "streakPoints": self.bonus,
            "delta": self.delta,
            "total": self.total,
        }


@dataclass(frozen=True)
class FinishReport:
    final_score: int
    max_streak: int
    duration_seconds: int
    round_results: tuple[ResultRow, ...]
    room_code: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finalScore": self.final_score,
            "maxStreak": self.max_streak,
            "durationSeconds": self.duration_seconds,
            "roomCode": self.room_code,
            "roundResults": [row.to_dict() for row in self.round_results],
        }


def _lookup(mapping: Mapping | None, index: int) -> Any:
    if not mapping:
        return None
    if index in mapping:
        return mapping[index]
    return mapping.get(str(index))


def reconstruct(
    rounds: Sequence[Round],
    outcomes: Mapping[int, str] | None,
    power_up: Mapping[str, Any] | None,
    wager: Mapping[str, Any] | None,
    raw_answers: Mapping[int, Any] | None,
) -> list[ResultRow]:
    """Replay the rounds in order and rebuild the per-round ledger.

    Idempotent and side-effect free: identical inputs always give identical rows.
    """
    if not rounds:
        return []
    last = len(rounds) - 1
    armed = (power_up or {}).get("armedRoundIndex")
    amount = clamp_wager((wager or {}).get("amount", 0))

    rows: list[ResultRow] = []
    running = 0
    streak = 0
    for i, r in enumerate(rounds):
        label = _lookup(outcomes, i)
        is_final = i == last
        base = r.points or 1
        x2_applied = not is_final and armed == i
        user_answer = _lookup(raw_answers, i)

        delta = 0
        bonus = 0
        correct: bool | None = None
        if is_final:
            if label == OUTCOME_FINAL_CORRECT:
                correct = True
                delta = wager_delta(amount, True)
            elif label == OUTCOME_FINAL_WRONG:
                correct = False
                delta = wager_delta(amount, False)
            else:
                label = None
        else:
            if label == OUTCOME_CORRECT:
                correct = True
                streak += 1
                bonus = streak_bonus(streak)
                delta = award_delta(1, base, x2_applied, streak)
            elif label == OUTCOME_WRONG:
                correct = False
                streak = 0
            else:
                label = None
                streak = 0

        running += delta
        rows.append(
            ResultRow(
                index=i + 1,
                round_id=r.id,
                category=r.category or "—",
                prompt=r.prompt,
                points=base,
                is_final=is_final,
                outcome=label,
                correct=correct,
                x2_applied=x2_applied,
                bonus=bonus,
                streak=streak,
                user_answer=user_answer,
                answer_text=answer_text(user_answer),
                delta=delta,
                total=running,
            )
        )
    return rows


def build_finish_report(
    rows: Sequence[ResultRow],
    started_at: int | None,
    now: int,
    room_code: str | None = None,
) -> FinishReport:
    """Summarize a finished run from its reconstructed ledger."""
    duration = max(0, round((now - started_at) / 1000)) if started_at else 0
    return FinishReport(
        final_score=rows[-1].total if rows else 0,
        max_streak=max((row.streak for row in rows), default=0),
        duration_seconds=duration,
        round_results=tuple(rows),
        room_code=room_code,
    )
