from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ReasonCode(str, enum.Enum):
    NO_ACTIVE_INTENT = "NO_ACTIVE_INTENT"
    INTENT_MISMATCH = "INTENT_MISMATCH"
    INTENT_NOT_FOUND = "INTENT_NOT_FOUND"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    OPTIMISTIC_LOCK_FAIL = "OPTIMISTIC_LOCK_FAIL"
    HITL_REJECTED = "HITL_REJECTED"
    HITL_TIMEOUT = "HITL_TIMEOUT"


class RiskLevel(str, enum.Enum):
    SAFE = "safe"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.SAFE: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ToolSafety(str, enum.Enum):
    SAFE = "SAFE"
    DESTRUCTIVE = "DESTRUCTIVE"


INTENT_STATUSES = ("pending", "active", "blocked", "completed")
DECLARABLE_STATUSES = ("pending", "active")


@dataclass(frozen=True)
class Intent:
    id: str
    name: str
    status: str
    owned_scope: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)
    context: str = ""
    related_files: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def declarable(self) -> bool:
        return self.status in DECLARABLE_STATUSES


@dataclass
class SessionState:
    intent_id: str
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"intent_id": self.intent_id, "timestamp": self.timestamp}
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SessionState":
        intent_id = raw.get("intent_id") or raw.get("intentId")
        if not isinstance(intent_id, str) or not intent_id:
            raise ValueError("session entry missing intent_id")
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("session metadata must be a mapping")
        return cls(
            intent_id=intent_id,
            timestamp=float(raw.get("timestamp") or 0.0),
            metadata=dict(metadata),
        )


@dataclass(frozen=True)
class CommandClassification:
    command: str
    risk_level: RiskLevel
    requires_approval: bool
    reason: str
    mitigation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "command": self.command,
            "risk_level": self.risk_level.value,
            "requires_approval": self.requires_approval,
            "reason": self.reason,
        }
        if self.mitigation:
            out["mitigation"] = self.mitigation
        return out


@dataclass(frozen=True)
class HookResult:
    """Outcome of one hook, or of a whole hook chain.

    ``continue_`` is False only for an explicit denial; ``reason_code``
    then carries the machine-readable ``ReasonCode``.
    """

    continue_: bool = True
    reason: Optional[str] = None
    reason_code: Optional[ReasonCode] = None
    modified_args: Optional[Dict[str, Any]] = None
    context_to_inject: Optional[str] = None

    @property
    def denied(self) -> bool:
        return not self.continue_

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"continue": self.continue_}
        if self.reason is not None:
            out["reason"] = self.reason
        if self.reason_code is not None:
            out["reason_code"] = self.reason_code.value
        if self.modified_args is not None:
            out["modified_args"] = self.modified_args
        if self.context_to_inject is not None:
            out["context_to_inject"] = self.context_to_inject
        return out


ALLOW = HookResult()


def format_rejection(code: ReasonCode, message: str) -> str:
    return f"{code.value}: {message}"


def deny(code: ReasonCode, message: str, *, context_to_inject: Optional[str] = None) -> HookResult:
    return HookResult(
        continue_=False,
        reason=format_rejection(code, message),
        reason_code=code,
        context_to_inject=context_to_inject,
    )


@dataclass
class ToolInvocationContext:
    """Per-call context handed to every pre-stage validator.

    ``notes`` is scratch space validators use to pass findings (risk
    classification, prior file fingerprints) down the chain and on to the
    post stage.
    """

    session_id: str
    tool_name: str
    args: Dict[str, Any]
    cwd: str
    timestamp: float = field(default_factory=time.time)
    claimed_intent_id: Optional[str] = None
    notes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PostInvocationContext:
    session_id: str
    tool_name: str
    args: Dict[str, Any]
    cwd: str
    result: Any
    success: bool
    duration_ms: float
    error: Optional[str] = None
    started_at: float = 0.0
    notes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TraceRecord:
    timestamp: str
    task_id: str
    tool_name: str
    params: Dict[str, Any]
    content_hashes: Dict[str, str]
    related_intents: List[str]
    vcs_revision: str
    contributor: Dict[str, str]
    success: bool
    duration_ms: float
    file_paths: List[str] = field(default_factory=list)
    mutation_type: Optional[str] = None
    approval: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "tool_name": self.tool_name,
            "params": self.params,
            "content_hashes": self.content_hashes,
            "related": [{"type": "intent", "id": i} for i in self.related_intents],
            "vcs": {"revision_id": self.vcs_revision},
            "contributor": self.contributor,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "file_paths": self.file_paths,
        }
        if self.mutation_type is not None:
            out["mutation_type"] = self.mutation_type
        if self.approval is not None:
            out["approval"] = self.approval
        if self.error is not None:
            out["error"] = self.error
        if self.result is not None:
            out["result"] = self.result
        return out
