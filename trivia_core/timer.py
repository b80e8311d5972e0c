"""Wall-clock deadline timer for timed session phases.

Remaining time is always re-derived as ``deadline - now``; nothing counts down
by decrement, so a suspended process or a sleeping tab never drifts. Pausing
records when the pause started and, on resume, pushes the deadline forward by
the paused duration.
"""
from __future__ import annotations

import logging
import math
import time
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .store import SessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def arm_deadline(
    store: "SessionStore",
    phase: str,
    round_index: int,
    duration_ms: int,
    grace_ms: int,
    now: int,
) -> int:
    """Return the persisted deadline for ``(phase, round_index)`` or arm a new one.

    A stored deadline is honored only while it is still in the future, so a
    reload resumes the running countdown instead of granting a full new one.
    """
    stored = store.get_deadline(phase, round_index)
    if stored is not None and stored > now:
        return stored
    deadline = now + duration_ms + grace_ms
    store.set_deadline(phase, round_index, deadline)
    return deadline


class DeadlineTimer:
    """Countdown towards an absolute epoch-ms deadline.

    Pause is the OR of independent signals (a blocking modal, a hidden host
    view, media that is not ready yet). ``on_expire`` fires once per arm cycle.
    """

    def __init__(
        self,
        total_ms: int,
        deadline_ms: int,
        *,
        on_expire: Callable[[], None] | None = None,
        on_deadline_change: Callable[[int], None] | None = None,
        on_update: Callable[[int], None] | None = None,
        clock: Clock = now_ms,
        update_interval_ms: int = 180,
        persist_interval_ms: int = 1000,
    ) -> None:
        self.total_ms = total_ms
        self.deadline_ms = deadline_ms
        self.paused_since: int | None = None
        self.fired = False
        self._on_expire = on_expire
        self._on_deadline_change = on_deadline_change
        self._on_update = on_update
        self._clock = clock
        self._update_interval_ms = update_interval_ms
        self._persist_interval_ms = persist_interval_ms
        self._last_update: int | None = None
        self._last_persist: int | None = None
        self._persist_pending = False
        self._signals: dict[str, bool] = {"modal": False, "hidden": False, "media": False}

    # ---- observation ----

    @property
    def paused(self) -> bool:
        return self.paused_since is not None

    def remaining(self, now: int | None = None) -> int:
        """Milliseconds left; frozen at the pause instant while paused."""
        if now is None:
            now = self._clock()
        reference = self.paused_since if self.paused_since is not None else now
        return max(0, self.deadline_ms - reference)

    def progress(self, now: int | None = None) -> float:
        if self.total_ms <= 0:
            return 0.0
        return min(1.0, self.remaining(now) / self.total_ms)

    def display_text(self, now: int | None = None) -> str:
        secs = math.ceil(self.remaining(now) / 1000)
        minutes, seconds = divmod(secs, 60)
        if minutes > 0:
            return f"{minutes}:{seconds:02d}"
        return str(seconds)

    # ---- pause handling ----

    def set_paused(self, is_paused: bool, now: int | None = None) -> None:
        if now is None:
            now = self._clock()
        if is_paused:
            if self.paused_since is None:
                self.paused_since = now
            return
        if self.paused_since is None:
            return
        paused_for = max(0, now - self.paused_since)
        self.paused_since = None
        if paused_for:
            self.deadline_ms += paused_for
            self._persist(now)

    def set_signal(self, name: str, active: bool, now: int | None = None) -> None:
        self._signals[name] = bool(active)
        self.set_paused(any(self._signals.values()), now)

    def set_modal_open(self, is_open: bool, now: int | None = None) -> None:
        self.set_signal("modal", is_open, now)

    def set_hidden(self, is_hidden: bool, now: int | None = None) -> None:
        self.set_signal("hidden", is_hidden, now)

    def set_media_ready(self, is_ready: bool, now: int | None = None) -> None:
        self.set_signal("media", not is_ready, now)

    # ---- lifecycle ----

    def rearm(self, deadline_ms: int, total_ms: int | None = None) -> None:
        self.deadline_ms = deadline_ms
        if total_ms is not None:
            self.total_ms = total_ms
        self.fired = False
        self._last_update = None

    def poll(self, now: int | None = None) -> int:
        """Observe the timer; fires expiry once when time is up and not paused."""
        if now is None:
            now = self._clock()
        remaining = self.remaining(now)
        if self._persist_pending:
            self._persist(now)
        if self.paused:
            return remaining
        if self._on_update is not None and (
            self._last_update is None
            or now - self._last_update >= self._update_interval_ms
            or remaining <= 0
        ):
            self._last_update = now
            self._on_update(remaining)
        if remaining <= 0 and not self.fired:
            self.fired = True
            logger.debug(f"Deadline {self.deadline_ms} expired at {now}")
            if self._on_expire is not None:
                self._on_expire()
        return remaining

    def flush(self) -> None:
        """Write a pending deadline change immediately."""
        if self._persist_pending:
            self._write_deadline(self._clock())

    def _persist(self, now: int) -> None:
        if self._last_persist is not None and now - self._last_persist < self._persist_interval_ms:
            self._persist_pending = True
            return
        self._write_deadline(now)

    def _write_deadline(self, now: int) -> None:
        self._persist_pending = False
        self._last_persist = now
        if self._on_deadline_change is not None:
            self._on_deadline_change(self.deadline_ms)
