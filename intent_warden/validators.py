"""Pre-stage validators, in canonical order.

Each validator is a small object with a ``hook_id`` and a
``run(ctx) -> HookResult``. Denials are returned, never raised; an
exception escaping ``run`` is a fault the pipeline logs and skips.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from .fs import Workspace, WorkspaceViolation
from .hitl import ApprovalGate
from .intents import IntentSource
from .models import (
    ALLOW,
    HookResult,
    Intent,
    ReasonCode,
    ToolInvocationContext,
    ToolSafety,
    deny,
)
from .patch import PatchError
from .scope import is_in_scope
from .security import classify_invocation, classify_tool, explain_risk
from .session_state import SessionRegistry
from .tools import is_path_bearing, target_paths
from .trace import compute_content_hash

logger = logging.getLogger(__name__)

EXPECTED_HASH_KEYS = ("expected_content_hash", "expected_hash")


class Validator(Protocol):
    hook_id: str

    def run(self, ctx: ToolInvocationContext) -> HookResult:
        ...


def _protocol_error(tool_name: str) -> str:
    return (
        "<intent_protocol_error>\n"
        f"You attempted to use {tool_name} without declaring an active intent.\n"
        "Select an intent with select_active_intent(intent_id) before any "
        "file write, patch or shell command. Every mutating operation must be "
        "traceable to a declared intent.\n"
        "</intent_protocol_error>"
    )


class IntentDeclaredValidator:
    hook_id = "10_intent_declared"

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    def run(self, ctx: ToolInvocationContext) -> HookResult:
        if classify_tool(ctx.tool_name, ctx.args) is not ToolSafety.DESTRUCTIVE:
            return ALLOW
        active = self.registry.get_active_intent(ctx.session_id)
        if active is None:
            return deny(
                ReasonCode.NO_ACTIVE_INTENT,
                f"{ctx.tool_name} requires an active intent; call select_active_intent first",
                context_to_inject=_protocol_error(ctx.tool_name),
            )
        ctx.notes["intent_id"] = active
        return ALLOW


class IntentConsistencyValidator:
    hook_id = "20_intent_consistency"

    def __init__(self, registry: SessionRegistry, intents: Optional[IntentSource] = None) -> None:
        self.registry = registry
        self.intents = intents

    def run(self, ctx: ToolInvocationContext) -> HookResult:
        if classify_tool(ctx.tool_name, ctx.args) is not ToolSafety.DESTRUCTIVE:
            return ALLOW
        active = self.registry.get_active_intent(ctx.session_id)
        if active is None:
            return deny(ReasonCode.NO_ACTIVE_INTENT, f"no active intent for session {ctx.session_id}")

        claimed = ctx.claimed_intent_id or ctx.args.get("intent_id")
        if claimed and str(claimed) != active:
            return deny(
                ReasonCode.INTENT_MISMATCH,
                f"caller claims intent {claimed} but session {ctx.session_id} declared {active}",
            )

        if self.intents is not None:
            intent = self.intents.find_intent(active)
            if intent is None or not intent.declarable:
                status = "missing" if intent is None else intent.status
                return deny(
                    ReasonCode.INTENT_NOT_FOUND,
                    f"active intent {active} is {status}; select an active or pending intent",
                )
            ctx.notes["intent"] = intent
        ctx.notes["intent_id"] = active
        return ALLOW


class ScopeValidator:
    hook_id = "30_scope"

    def __init__(self, registry: SessionRegistry, intents: IntentSource) -> None:
        self.registry = registry
        self.intents = intents

    def _intent(self, ctx: ToolInvocationContext) -> Optional[Intent]:
        intent = ctx.notes.get("intent")
        if isinstance(intent, Intent):
            return intent
        active = self.registry.get_active_intent(ctx.session_id)
        return self.intents.find_intent(active) if active else None

    def run(self, ctx: ToolInvocationContext) -> HookResult:
        if not is_path_bearing(ctx.tool_name):
            return ALLOW

        try:
            paths = target_paths(ctx.tool_name, ctx.args)
        except PatchError as e:
            return deny(ReasonCode.SCOPE_VIOLATION, f"cannot determine target files: {e}")
        if not paths:
            return deny(ReasonCode.SCOPE_VIOLATION, f"{ctx.tool_name} called without a path parameter")

        intent = self._intent(ctx)
        if intent is None:
            return deny(ReasonCode.INTENT_NOT_FOUND, "active intent not found in the intent file")

        ws = Workspace.from_path(ctx.cwd)
        rels: List[str] = []
        for path in paths:
            try:
                rel = ws.relative(path)
            except WorkspaceViolation:
                return deny(ReasonCode.SCOPE_VIOLATION, f"{path} is outside the workspace")
            if not is_in_scope(rel, intent.owned_scope):
                return deny(
                    ReasonCode.SCOPE_VIOLATION,
                    f"{rel} is outside the owned_scope of intent {intent.id}",
                )
            rels.append(rel)
        ctx.notes["target_paths"] = rels
        return ALLOW


class RiskGateValidator:
    hook_id = "40_risk_gate"

    def __init__(self, gate: Optional[ApprovalGate]) -> None:
        self.gate = gate

    def run(self, ctx: ToolInvocationContext) -> HookResult:
        classification = classify_invocation(ctx.tool_name, ctx.args, ctx.cwd)
        ctx.notes["classification"] = classification
        if not classification.requires_approval:
            return ALLOW

        approval: Dict[str, Any] = {"required": True, "risk_level": classification.risk_level.value}
        ctx.notes["approval"] = approval
        if self.gate is None:
            approval["approved"] = False
            return deny(ReasonCode.HITL_REJECTED, f"no approver configured; {explain_risk(classification)}")

        decision = self.gate.decide(classification)
        approval["approved"] = decision.approved
        if decision.timed_out:
            return deny(ReasonCode.HITL_TIMEOUT, f"{decision.detail}; {explain_risk(classification)}")
        if not decision.approved:
            return deny(ReasonCode.HITL_REJECTED, f"approval denied; {explain_risk(classification)}")
        return HookResult(context_to_inject=f"Approved {classification.risk_level.value}-risk operation: {classification.command}")


def _expected_hashes(args: Dict[str, Any], rels: List[str], raw_paths: List[str]) -> Dict[str, Optional[str]]:
    """Caller-supplied prior fingerprints keyed by workspace-relative path.

    A bare string applies to the single target; a mapping may be keyed by
    either spelling of the path. An empty string means "file must not exist".
    """
    for key in EXPECTED_HASH_KEYS:
        if key not in args or args[key] is None:
            continue
        value = args[key]
        if isinstance(value, str):
            if len(rels) != 1:
                raise ValueError(f"{key} is a single hash but the call touches {len(rels)} files")
            return {rels[0]: value.strip().lower() or None}
        if isinstance(value, dict):
            out: Dict[str, Optional[str]] = {}
            for rel, raw in zip(rels, raw_paths):
                h = value.get(rel, value.get(raw))
                if h is not None:
                    out[rel] = str(h).strip().lower() or None
            return out
        raise ValueError(f"{key} must be a string or a mapping")
    return {}


class OptimisticLockValidator:
    """Compares caller-expected fingerprints with what is on disk right now.

    Meant to run inside the path-keyed critical section that also covers
    the write; the pipeline arranges that.
    """

    hook_id = "50_optimistic_lock"

    def run(self, ctx: ToolInvocationContext) -> HookResult:
        if not is_path_bearing(ctx.tool_name):
            return ALLOW
        raw_paths = target_paths(ctx.tool_name, ctx.args)
        ws = Workspace.from_path(ctx.cwd)
        rels = [ws.relative(p) for p in raw_paths]

        prior: Dict[str, Optional[bytes]] = {}
        for rel in rels:
            prior[rel] = ws.read_bytes(rel)
        ctx.notes["prior_content"] = prior

        for rel, expected in _expected_hashes(ctx.args, rels, raw_paths).items():
            data = prior.get(rel)
            current = compute_content_hash(data) if data is not None else None
            if current != expected:
                return deny(
                    ReasonCode.OPTIMISTIC_LOCK_FAIL,
                    f"{rel} changed since it was read (expected {expected or 'absent'}, "
                    f"found {current or 'absent'}); re-read the file and retry",
                )
        return ALLOW
