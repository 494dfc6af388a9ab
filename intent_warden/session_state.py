"""Session -> active intent registry.

One active intent per session; declaring a new one replaces the old. All
mutations go through one lock so concurrent hook stages never lose an
update. Two store backends: ``InMemorySessionStore`` for tests and
``PersistentSessionStore``, which mirrors the whole table to a side file
on every mutation and reloads it at start.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple
from xml.sax.saxutils import escape

from .intents import IntentSource, format_intent_as_xml
from .models import DECLARABLE_STATUSES, Intent, SessionState
from .state_store import load_state, save_state

logger = logging.getLogger(__name__)

_QUOTE = {'"': "&quot;"}


class UnknownIntentError(LookupError):
    pass


class IntentStatusError(ValueError):
    pass


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[SessionState]:
        ...

    def put(self, session_id: str, state: SessionState) -> None:
        ...

    def delete(self, session_id: str) -> None:
        ...

    def clear(self) -> None:
        ...

    def items(self) -> Iterator[Tuple[str, SessionState]]:
        ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self._table: Dict[str, SessionState] = {}

    def get(self, session_id: str) -> Optional[SessionState]:
        return self._table.get(session_id)

    def put(self, session_id: str, state: SessionState) -> None:
        self._table[session_id] = state

    def delete(self, session_id: str) -> None:
        self._table.pop(session_id, None)

    def clear(self) -> None:
        self._table.clear()

    def items(self) -> Iterator[Tuple[str, SessionState]]:
        return iter(list(self._table.items()))


class PersistentSessionStore(InMemorySessionStore):
    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._table.update(self._load())

    @classmethod
    def for_workspace(cls, workspace_root: str | Path) -> "PersistentSessionStore":
        return cls(Path(workspace_root) / ".orchestration" / "session_state.json")

    def _load(self) -> Dict[str, SessionState]:
        try:
            raw = load_state(self.path)
        except Exception as e:
            logger.warning("Session state %s unreadable, starting empty: %s", self.path, e)
            return {}

        table: Dict[str, SessionState] = {}
        for session_id, entry in raw.items():
            try:
                table[str(session_id)] = SessionState.from_dict(entry if isinstance(entry, dict) else {})
            except ValueError as e:
                logger.warning("Dropping malformed session %r from %s: %s", session_id, self.path, e)
        if table:
            logger.info("Restored %d session(s) from %s", len(table), self.path)
        return table

    def _commit(self, table: Dict[str, SessionState]) -> None:
        """Save ``table`` and then make it current.

        Unserializable state raises with the previous table untouched. A
        disk error is logged and the table still takes effect in memory.
        """
        data = {sid: st.to_dict() for sid, st in table.items()}
        try:
            save_state(self.path, data)
        except OSError as e:
            logger.error("Failed to persist session state to %s: %s", self.path, e)
        self._table = table

    def put(self, session_id: str, state: SessionState) -> None:
        table = dict(self._table)
        table[session_id] = state
        self._commit(table)

    def delete(self, session_id: str) -> None:
        table = dict(self._table)
        table.pop(session_id, None)
        self._commit(table)

    def clear(self) -> None:
        self._commit({})


class SessionRegistry:
    """Process-wide session table, injected into the pipeline.

    When bound to an ``IntentSource`` the registry refuses to declare an
    intent that does not exist or is not ``active``/``pending``.
    """

    def __init__(self, store: Optional[SessionStore] = None, *, intents: Optional[IntentSource] = None) -> None:
        self.store: SessionStore = store if store is not None else InMemorySessionStore()
        self.intents = intents
        self._lock = threading.RLock()

    def _resolve(self, intent_id: str) -> Optional[Intent]:
        if self.intents is None:
            return None
        intent = self.intents.find_intent(intent_id)
        if intent is None:
            raise UnknownIntentError(f"Intent not found: {intent_id}")
        if not intent.declarable:
            raise IntentStatusError(
                f"Intent {intent_id} has status {intent.status!r}; "
                f"only {', '.join(DECLARABLE_STATUSES)} intents can be declared"
            )
        return intent

    def declare_intent(
        self,
        session_id: str,
        intent_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SessionState:
        if not session_id:
            raise ValueError("session_id must not be empty")
        intent_id = (intent_id or "").strip()
        if not intent_id:
            raise ValueError("intent_id must not be empty")
        self._resolve(intent_id)

        state = SessionState(intent_id=intent_id, timestamp=time.time(), metadata=dict(metadata or {}))
        with self._lock:
            previous = self.store.get(session_id)
            self.store.put(session_id, state)
        if previous is not None and previous.intent_id != intent_id:
            logger.info("Session %s switched intent %s -> %s", session_id, previous.intent_id, intent_id)
        else:
            logger.info("Session %s declared intent %s", session_id, intent_id)
        return state

    def get_active_intent(self, session_id: str) -> Optional[str]:
        with self._lock:
            state = self.store.get(session_id)
        return state.intent_id if state is not None else None

    def get_session_state(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            state = self.store.get(session_id)
            if state is None:
                return None
            return SessionState(intent_id=state.intent_id, timestamp=state.timestamp, metadata=dict(state.metadata))

    def clear_intent(self, session_id: str) -> None:
        with self._lock:
            self.store.delete(session_id)
        logger.info("Session %s cleared its intent", session_id)

    def update_metadata(self, session_id: str, metadata: Dict[str, Any]) -> bool:
        """Merge ``metadata`` into an existing session; False if there is none."""
        with self._lock:
            state = self.store.get(session_id)
            if state is None:
                return False
            merged = dict(state.metadata)
            merged.update(metadata)
            self.store.put(session_id, SessionState(intent_id=state.intent_id, timestamp=state.timestamp, metadata=merged))
        return True

    def all_sessions(self) -> Dict[str, str]:
        with self._lock:
            return {sid: st.intent_id for sid, st in self.store.items()}

    def clear_all(self) -> None:
        with self._lock:
            self.store.clear()

    def select_active_intent(self, session_id: str, intent_id: str) -> str:
        """Declaration boundary for the host's intent-selection tool.

        Returns the ``<intent_context>`` block on success and an
        ``<error>`` block otherwise.
        """
        if self.intents is None:
            self.declare_intent(session_id, intent_id)
            return f'<intent_context intent_id="{escape(intent_id, _QUOTE)}"></intent_context>'
        available = self.intents.list_intents()
        if not available:
            return f"<error>No intents found in {self.intents.path}</error>"
        try:
            self.declare_intent(session_id, intent_id)
        except UnknownIntentError:
            ids = ", ".join(i.id for i in available)
            return f"<error>Intent not found: {escape(intent_id)}. Available intents: {ids}</error>"
        except ValueError as e:
            return f"<error>{escape(str(e))}</error>"
        intent = self.intents.find_intent(intent_id)
        return format_intent_as_xml(intent) if intent else ""
