"""Round catalog: the ordered, immutable list of rounds for a session.

- build() coerces raw question records and sorts them by ``order``
  (stable, so ties keep their input position)
- summarize() groups rounds by category for the intro preview
- The last round is the final round: no power-up, wager settlement instead of points
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .answers import AnswerMode
from .validation import RoundInput

logger = logging.getLogger(__name__)

_FINAL_PREFIX = re.compile(r"^\s*Τελική\s+ερώτηση\s*[—–\-:]\s*", re.IGNORECASE)


@dataclass(frozen=True)
class Round:
    id: str
    order: float
    category: str
    prompt: str
    points: int
    answer_mode: AnswerMode
    time_seconds: int | None = None
    media: Any = None
    answer: Any = None
    accept_numbers: tuple = ()
    accept_number: Any = None
    fact: str | None = None
    options: tuple[str, ...] = ()

    @property
    def has_media(self) -> bool:
        return bool(self.media)


@dataclass(frozen=True)
class CategorySummary:
    category: str
    count: int
    points: tuple[int, ...]


def _to_round(raw: Any, position: int) -> Round | None:
    if isinstance(raw, Round):
        return raw
    if not isinstance(raw, dict):
        logger.warning(f"Skipping round #{position}: expected a mapping, got {type(raw).__name__}")
        return None
    try:
        parsed = RoundInput.model_validate(raw)
    except ValueError as e:
        logger.warning(f"Skipping malformed round #{position}: {e}")
        return None
    return Round(
        id=parsed.id or f"q{position + 1}",
        order=parsed.order,
        category=parsed.category,
        prompt=parsed.prompt,
        points=parsed.points,
        answer_mode=AnswerMode.parse(parsed.answerMode),
        time_seconds=parsed.timeSeconds,
        media=parsed.media,
        answer=parsed.answer,
        accept_numbers=tuple(parsed.acceptNumbers),
        accept_number=parsed.acceptNumber,
        fact=parsed.fact,
        options=tuple(parsed.options),
    )


def build(rounds: Iterable[Any] | None) -> tuple[Round, ...]:
    """Coerce and order raw rounds. Never raises; bad input yields fewer rounds."""
    if rounds is None or isinstance(rounds, (str, bytes, dict)):
        return ()
    try:
        items = list(rounds)
    except TypeError:
        logger.warning("Round data is not iterable, starting with an empty catalog")
        return ()
    built = []
    for position, raw in enumerate(items):
        parsed = _to_round(raw, position)
        if parsed is not None:
            built.append(parsed)
    # sorted() is stable: equal orders keep their original position
    return tuple(sorted(built, key=lambda r: r.order))


def summarize(rounds: Sequence[Round]) -> list[CategorySummary]:
    """Group rounds by category in first-seen order with their distinct point values."""
    groups: dict[str, dict[str, Any]] = {}
    for r in rounds:
        entry = groups.setdefault(r.category or "—", {"count": 0, "points": set()})
        entry["count"] += 1
        entry["points"].add(r.points or 1)
    return [
        CategorySummary(category=name, count=e["count"], points=tuple(sorted(e["points"])))
        for name, e in groups.items()
    ]


def last_index(rounds: Sequence[Round]) -> int:
    return max(len(rounds) - 1, 0)


def is_final(round_index: int, rounds: Sequence[Round]) -> bool:
    return bool(rounds) and round_index == len(rounds) - 1


def final_category(rounds: Sequence[Round]) -> str | None:
    return rounds[-1].category if rounds else None


def intro_categories(rounds: Sequence[Round]) -> list[CategorySummary]:
    """Category preview without the final round's category."""
    final_name = final_category(rounds)
    return [c for c in summarize(rounds) if c.category != final_name]


def final_topic_label(rounds: Sequence[Round]) -> str:
    raw = final_category(rounds) or ""
    return _FINAL_PREFIX.sub("", raw).strip() or raw


def fingerprint(rounds: Sequence[Round]) -> str:
    """Stable content hash used to version persisted state."""
    payload = [
        [r.id, r.order, r.category, r.prompt, r.points, r.answer_mode.value, r.time_seconds]
        for r in rounds
    ]
    raw = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]
