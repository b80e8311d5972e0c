"""Persistent session store.

Every session field is its own key ``<prefix>:<version>:<field>`` in a
string-valued backend (the same shape as browser ``localStorage``). The version
tag is part of every key, so a changed round catalog never reads back
incompatible state. Backend failures are logged and absorbed: the store keeps an
in-memory shadow and serves the affected keys from it.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Protocol

logger = logging.getLogger(__name__)

# Session fields persisted individually; dict-valued ones keyed by round index.
STATE_FIELDS = (
    "stage",
    "roundIndex",
    "player",
    "lastCorrect",
    "powerUp",
    "wager",
    "wagerResolved",
    "outcomes",
    "rawAnswers",
    "startedAt",
    "nameSaved",
    "finishReported",
)
_INDEX_KEYED_FIELDS = {"outcomes", "rawAnswers"}
_PLAYER_COUNTERS = ("score", "streak", "maxStreak")


class StorageBackend(Protocol):
    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def keys(self) -> Iterable[str]:
        ...


class MemoryBackend:
    """Process-local backend; survives session objects, not the process."""

    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self.data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove_item(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self.data.keys())


class JsonFileBackend:
    """Backend kept in a single JSON object file, rewritten atomically."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def keys(self) -> Iterable[str]:
        return list(self._load().keys())


def _restore_index_keys(value: Any) -> Dict[int, Any]:
    # JSON object keys come back as strings
    if not isinstance(value, dict):
        return {}
    restored: Dict[int, Any] = {}
    for raw_key, item in value.items():
        try:
            restored[int(raw_key)] = item
        except (TypeError, ValueError):
            continue
    return restored


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _clean_player(player: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    for counter in _PLAYER_COUNTERS:
        if not _is_int(player.get(counter)):
            logger.warning(f"Ignoring stored player.{counter} {player.get(counter)!r}")
            player[counter] = defaults.get(counter, 0)
    if not isinstance(player.get("name"), str):
        player["name"] = defaults.get("name", "")
    return player


class SessionStore:
    """Namespaced, versioned key-value access to session fields."""

    def __init__(
        self,
        backend: StorageBackend | None = None,
        *,
        version: str,
        prefix: str = "quiz_state_v2_solo",
    ) -> None:
        self.backend: StorageBackend = backend if backend is not None else MemoryBackend()
        self.namespace = f"{prefix}:{version}"
        self._shadow: Dict[str, Any] = {}
        self._degraded: set[str] = set()

    # ---- keys ----

    def key(self, field: str) -> str:
        return f"{self.namespace}:{field}"

    @staticmethod
    def deadline_field(phase: str, round_index: int) -> str:
        return f"{phase}DeadlineMs:{round_index}"

    # ---- raw access ----

    def get(self, field: str, default: Any = None) -> Any:
        key = self.key(field)
        if key in self._degraded:
            return self._from_shadow(key, default)
        try:
            raw = self.backend.get_item(key)
        except Exception as e:
            logger.warning(f"Storage read failed for {key}: {e}")
            return self._from_shadow(key, default)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding corrupt stored value for {key}")
            return default

    def _from_shadow(self, key: str, default: Any) -> Any:
        if key in self._shadow:
            return deepcopy(self._shadow[key])
        return default

    def set(self, field: str, value: Any) -> None:
        key = self.key(field)
        self._shadow[key] = deepcopy(value)
        try:
            self.backend.set_item(key, json.dumps(value, ensure_ascii=False))
        except Exception as e:
            logger.warning(f"Storage write failed for {key}, keeping it in memory: {e}")
            self._degraded.add(key)
            return
        self._degraded.discard(key)

    def delete(self, field: str) -> None:
        key = self.key(field)
        self._shadow.pop(key, None)
        self._degraded.discard(key)
        try:
            self.backend.remove_item(key)
        except Exception as e:
            logger.warning(f"Storage delete failed for {key}: {e}")

    # ---- deadlines ----

    def get_deadline(self, phase: str, round_index: int) -> int | None:
        value = self.get(self.deadline_field(phase, round_index))
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value)

    def set_deadline(self, phase: str, round_index: int, deadline_ms: int) -> None:
        self.set(self.deadline_field(phase, round_index), int(deadline_ms))

    def clear_deadline(self, phase: str, round_index: int) -> None:
        self.delete(self.deadline_field(phase, round_index))

    # ---- whole state ----

    def load_state(self, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Read every persisted field over ``defaults``."""
        state = deepcopy(defaults)
        for field in STATE_FIELDS:
            sentinel = object()
            value = self.get(field, sentinel)
            if value is sentinel:
                continue
            expected = defaults.get(field)
            if expected is not None and not isinstance(value, type(expected)):
                logger.warning(f"Ignoring stored {field} of unexpected type {type(value).__name__}")
                continue
            if field == "startedAt" and not _is_int(value):
                logger.warning(f"Ignoring stored startedAt {value!r}")
                continue
            if isinstance(expected, dict) and field not in _INDEX_KEYED_FIELDS:
                value = {**expected, **value}
            if field == "player":
                value = _clean_player(value, expected)
            if field in _INDEX_KEYED_FIELDS:
                value = _restore_index_keys(value)
            state[field] = value
        return state

    def save_state(self, state: Dict[str, Any], fields: Iterable[str] = STATE_FIELDS) -> None:
        for field in fields:
            if field in state:
                self.set(field, state[field])

    def reset(self) -> None:
        """Remove every key under this namespace, including stale deadlines."""
        prefix = f"{self.namespace}:"
        try:
            keys = [k for k in self.backend.keys() if k.startswith(prefix)]
        except Exception as e:
            logger.warning(f"Storage listing failed during reset: {e}")
            keys = []
        keys.extend(k for k in list(self._shadow) if k not in keys)
        for key in keys:
            try:
                self.backend.remove_item(key)
            except Exception as e:
                logger.warning(f"Storage delete failed for {key}: {e}")
        self._shadow.clear()
        self._degraded.clear()
