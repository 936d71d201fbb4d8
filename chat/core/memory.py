from __future__ import annotations

"""Server-side session memory.

Each session owns an append-only log of turns. Exchanges are only ever
written as a user/assistant pair, and the pair is written under a lock that
is scoped to its session, so two turns racing in one session cannot collide
on sequence numbers while different sessions never wait on each other.

``history_window`` caps how many of the most recent turns ``read_turns``
returns (rounded down to whole exchanges) for building prompts. ``None`` or
``0`` means unbounded. ``read_all`` ignores the window.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import ValidationError

from chat.errors import MemoryReadFailure, MemoryWriteFailure
from chat.models import Turn


DEFAULT_SESSION_KEY = "default"

logger = logging.getLogger("fragchat.memory")


class SessionMemory(Protocol):
    def read_turns(self, session_key: str) -> List[Turn]:
        """Return the session's most recent turns, cut to the history window."""
        ...

    def read_all(self, session_key: str) -> List[Turn]:
        """Return every turn of the session in order, empty if the session is unknown."""
        ...

    def append_pair(self, session_key: str, user_turn: Turn, assistant_turn: Turn) -> Tuple[Turn, Turn]:
        """Store both turns or neither; return them as stored."""
        ...


def _check_pair(user_turn: Turn, assistant_turn: Turn) -> None:
    if user_turn.role != "user" or assistant_turn.role != "assistant":
        raise MemoryWriteFailure(
            f"Expected a user/assistant pair, got {user_turn.role}/{assistant_turn.role}"
        )
    if assistant_turn.sequence_no != user_turn.sequence_no + 1:
        raise MemoryWriteFailure(
            "Reply sequence_no must follow its user turn "
            f"({user_turn.sequence_no} -> {assistant_turn.sequence_no})"
        )


def _rebase_pair(user_turn: Turn, assistant_turn: Turn, next_seq: int) -> Tuple[Turn, Turn]:
    # Another turn in the same session landed first; the later write goes after it.
    if user_turn.sequence_no == next_seq:
        return user_turn, assistant_turn
    logger.info(
        "Rebasing exchange from seq=%s to seq=%s after a concurrent append",
        user_turn.sequence_no,
        next_seq,
    )
    return (
        user_turn.model_copy(update={"sequence_no": next_seq}),
        assistant_turn.model_copy(update={"sequence_no": next_seq + 1}),
    )


def _apply_window(turns: List[Turn], history_window: Optional[int]) -> List[Turn]:
    if not history_window or history_window <= 0:
        return list(turns)
    keep = max(2, history_window - history_window % 2)
    return list(turns[-keep:])


def _whole_pairs(turns: List[Turn], source: str) -> List[Turn]:
    kept: List[Turn] = []
    i = 0
    while i < len(turns):
        user = turns[i]
        reply = turns[i + 1] if i + 1 < len(turns) else None
        last_seq = kept[-1].sequence_no if kept else 0
        if (
            reply is not None
            and user.role == "user"
            and reply.role == "assistant"
            and reply.sequence_no == user.sequence_no + 1
            and user.sequence_no > last_seq
        ):
            kept.extend((user, reply))
            i += 2
            continue
        logger.warning("Dropping unpaired turn seq=%s in %s", user.sequence_no, source)
        i += 1
    return kept


class _SessionLocks:
    """One lock per session, forgotten as soon as nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, Any]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def for_session(self, session_key: str) -> Any:
        with self._guard:
            lock = self._locks.get(session_key)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_key] = lock
            return lock


class InMemorySessionMemory:
    """Process-local memory; everything is lost on restart."""

    def __init__(self, history_window: Optional[int] = None) -> None:
        self.history_window = history_window
        self._sessions: Dict[str, List[Turn]] = {}
        self._locks = _SessionLocks()

    def read_all(self, session_key: str) -> List[Turn]:
        with self._locks.for_session(session_key):
            return list(self._sessions.get(session_key, ()))

    def read_turns(self, session_key: str) -> List[Turn]:
        return _apply_window(self.read_all(session_key), self.history_window)

    def append_pair(self, session_key: str, user_turn: Turn, assistant_turn: Turn) -> Tuple[Turn, Turn]:
        _check_pair(user_turn, assistant_turn)
        with self._locks.for_session(session_key):
            log = self._sessions.setdefault(session_key, [])
            next_seq = log[-1].sequence_no + 1 if log else 1
            pair = _rebase_pair(user_turn, assistant_turn, next_seq)
            log.extend(pair)
        return pair


class JsonFileSessionMemory:
    """One JSON file per session under ``directory``.

    Writes go to a temp file in the same directory and are renamed into
    place, so a failed write leaves the previous log intact.
    """

    def __init__(self, directory: str | os.PathLike, history_window: Optional[int] = None) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.history_window = history_window
        self._locks = _SessionLocks()

    def _path(self, session_key: str) -> Path:
        digest = hashlib.sha256(session_key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _load(self, session_key: str) -> List[Turn]:
        path = self._path(session_key)
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise MemoryReadFailure(f"Could not read {path.name}: {exc}") from exc
        items = data.get("turns") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise MemoryReadFailure(f"{path.name} does not hold a turn log")

        turns: List[Turn] = []
        for item in items:
            try:
                turns.append(Turn.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed turn in %s: %r", path.name, item)
        # A turn whose partner was unreadable goes too, so the log stays in whole exchanges.
        return _whole_pairs(turns, path.name)

    def _write(self, session_key: str, turns: List[Turn]) -> None:
        path = self._path(session_key)
        payload = {"session_key": session_key, "turns": [t.model_dump() for t in turns]}
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def read_all(self, session_key: str) -> List[Turn]:
        with self._locks.for_session(session_key):
            return self._load(session_key)

    def read_turns(self, session_key: str) -> List[Turn]:
        return _apply_window(self.read_all(session_key), self.history_window)

    def append_pair(self, session_key: str, user_turn: Turn, assistant_turn: Turn) -> Tuple[Turn, Turn]:
        _check_pair(user_turn, assistant_turn)
        with self._locks.for_session(session_key):
            try:
                turns = self._load(session_key)
                next_seq = turns[-1].sequence_no + 1 if turns else 1
                pair = _rebase_pair(user_turn, assistant_turn, next_seq)
                self._write(session_key, turns + list(pair))
            except (OSError, ValueError, MemoryReadFailure) as exc:
                raise MemoryWriteFailure(f"Could not persist exchange: {exc}") from exc
        return pair
