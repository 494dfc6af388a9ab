"""Read-only access to the intent declaration file (active_intents.yaml).

The file is owned by humans; this module only parses it. Any schema
violation yields an empty intent set and a warning, never an exception.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from xml.sax.saxutils import escape

from .models import INTENT_STATUSES, Intent
from .scope import is_in_scope, normalize_path
from .state_store import load_yaml_file

logger = logging.getLogger(__name__)


class IntentSchemaError(ValueError):
    pass


def _str_list(raw: Dict[str, Any], key: str) -> List[str]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise IntentSchemaError(f"{key} must be a list of strings")
    return list(value)


def parse_intent(raw: Any) -> Intent:
    if not isinstance(raw, dict):
        raise IntentSchemaError(f"intent entry must be a mapping, got {type(raw).__name__}")
    intent_id = raw.get("id")
    if not isinstance(intent_id, str) or not intent_id.strip():
        raise IntentSchemaError("intent entry missing id")
    status = str(raw.get("status") or "pending").strip().lower()
    if status not in INTENT_STATUSES:
        raise IntentSchemaError(f"intent {intent_id}: unknown status {status!r}")
    context = raw.get("context") or ""
    metadata = raw.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise IntentSchemaError(f"intent {intent_id}: metadata must be a mapping")
    return Intent(
        id=intent_id.strip(),
        name=str(raw.get("name") or intent_id),
        status=status,
        owned_scope=_str_list(raw, "owned_scope"),
        constraints=_str_list(raw, "constraints"),
        acceptance_criteria=_str_list(raw, "acceptance_criteria"),
        context=str(context),
        related_files=_str_list(raw, "related_files"),
        metadata=dict(metadata),
    )


def parse_intents_document(doc: Any) -> List[Intent]:
    """Accept either a bare list of intents or ``{"intents": [...]}``."""
    if doc is None:
        return []
    if isinstance(doc, dict):
        if "intents" not in doc:
            raise IntentSchemaError("mapping document must carry an 'intents' list")
        doc = doc["intents"] or []
    if not isinstance(doc, list):
        raise IntentSchemaError(f"intents must be a list, got {type(doc).__name__}")

    intents = [parse_intent(entry) for entry in doc]
    ids = [i.id for i in intents]
    if len(set(ids)) != len(ids):
        raise IntentSchemaError("duplicate intent ids")
    return intents


class IntentSource:
    """Intent file reader with mtime-based reload."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._cache_key: Optional[Tuple[int, int]] = None
        self._intents: List[Intent] = []

    @classmethod
    def for_workspace(cls, workspace_root: str | Path) -> "IntentSource":
        return cls(Path(workspace_root) / ".orchestration" / "active_intents.yaml")

    def has_intent_context(self) -> bool:
        return self.path.is_file()

    def _load(self) -> List[Intent]:
        try:
            doc = load_yaml_file(self.path)
            return parse_intents_document(doc)
        except Exception as e:
            logger.warning("Ignoring unreadable intent file %s: %s", self.path, e)
            return []

    def list_intents(self) -> List[Intent]:
        with self._lock:
            try:
                st = self.path.stat()
            except OSError:
                self._cache_key = None
                self._intents = []
                return []
            key = (st.st_mtime_ns, st.st_size)
            if key != self._cache_key:
                self._intents = self._load()
                self._cache_key = key
                logger.debug("Loaded %d intents from %s", len(self._intents), self.path)
            return list(self._intents)

    def find_intent(self, intent_id: str) -> Optional[Intent]:
        for intent in self.list_intents():
            if intent.id == intent_id:
                return intent
        return None

    def load_intent_context(self, intent_id: str) -> str:
        intent = self.find_intent(intent_id)
        if intent is None:
            return f'<intent_context intent_id="{_attr(intent_id)}" error="Intent not found"></intent_context>'
        return format_intent_as_xml(intent)


def validate_intent_scope(path: str, intent: Intent) -> bool:
    return is_in_scope(normalize_path(path), intent.owned_scope)


def _attr(text: str) -> str:
    return escape(str(text), {'"': "&quot;", "'": "&apos;"})


_TAG_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def _tag(key: Any) -> str:
    tag = _TAG_UNSAFE.sub("_", str(key)) or "_"
    return tag if (tag[0].isalpha() or tag[0] == "_") else "_" + tag


def format_intent_as_xml(intent: Intent) -> str:
    parts = [
        f'<intent_context intent_id="{_attr(intent.id)}">',
        f"  <title>{_attr(intent.name)}</title>",
        f"  <context>{_attr(intent.context)}</context>",
    ]

    if intent.related_files:
        parts.append("  <related_files>")
        for f in intent.related_files:
            parts.append(f"    <file>{_attr(f)}</file>")
        parts.append("  </related_files>")

    metadata: Dict[str, Any] = {
        "status": intent.status,
        "owned_scope": ", ".join(intent.owned_scope),
        "constraints": "; ".join(intent.constraints),
        "acceptance_criteria": "; ".join(intent.acceptance_criteria),
    }
    metadata.update(intent.metadata)
    parts.append("  <metadata>")
    for key, value in metadata.items():
        tag = _tag(key)
        parts.append(f"    <{tag}>{_attr(str(value))}</{tag}>")
    parts.append("  </metadata>")

    parts.append("</intent_context>")
    return "\n".join(parts)
