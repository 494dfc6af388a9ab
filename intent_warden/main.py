from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import WardenConfig, load_config
from .hitl import ApprovalGate, auto_policy_gate, console_gate
from .intents import IntentSource
from .observers import TraceObserver
from .pipeline import HookPipeline
from .session_state import InMemorySessionStore, PersistentSessionStore, SessionRegistry
from .trace import TraceWriter
from .validators import (
    IntentConsistencyValidator,
    IntentDeclaredValidator,
    OptimisticLockValidator,
    RiskGateValidator,
    ScopeValidator,
)

logger = logging.getLogger(__name__)


@dataclass
class Warden:
    """Everything a host needs, wired once per process."""

    config: WardenConfig
    intents: IntentSource
    registry: SessionRegistry
    writer: TraceWriter
    pipeline: HookPipeline

    def close(self) -> None:
        self.pipeline.shutdown()


def gate_for_config(cfg: WardenConfig) -> ApprovalGate:
    mode = cfg.hitl_mode
    if mode == "approve":
        logger.warning("hitl.mode=approve: risky operations are approved without a human")
        return auto_policy_gate(True, timeout_s=cfg.hitl_timeout_s)
    if mode == "deny":
        return auto_policy_gate(False, timeout_s=cfg.hitl_timeout_s)
    return console_gate(timeout_s=cfg.hitl_timeout_s)


def build_validators(registry: SessionRegistry, intents: IntentSource, gate: Optional[ApprovalGate]):
    return [
        IntentDeclaredValidator(registry),
        IntentConsistencyValidator(registry, intents),
        ScopeValidator(registry, intents),
        RiskGateValidator(gate),
    ]


def build_pipeline(
    cfg: WardenConfig,
    registry: SessionRegistry,
    intents: IntentSource,
    writer: TraceWriter,
    gate: Optional[ApprovalGate],
) -> HookPipeline:
    """Canonical validator order, the trace observer and the fingerprint check."""
    return HookPipeline(
        validators=build_validators(registry, intents, gate),
        observers=[TraceObserver(writer, registry, intents, contributor=cfg.contributor)],
        lock_check=OptimisticLockValidator(),
        max_workers=cfg.observer_workers,
    )


def build_warden(
    cfg: WardenConfig,
    *,
    gate: Optional[ApprovalGate] = None,
    registry: Optional[SessionRegistry] = None,
    intents: Optional[IntentSource] = None,
) -> Warden:
    intents = intents or IntentSource(cfg.intents_file)
    if registry is None:
        store = PersistentSessionStore(cfg.session_state_path) if cfg.persist_sessions else InMemorySessionStore()
        registry = SessionRegistry(store, intents=intents)
    writer = TraceWriter(path=cfg.trace_log)
    gate = gate if gate is not None else gate_for_config(cfg)

    pipeline = build_pipeline(cfg, registry, intents, writer, gate)
    logger.info(
        "Warden ready (workspace=%s, intents=%s, trace=%s)",
        cfg.workspace,
        cfg.intents_file,
        cfg.trace_log,
    )
    return Warden(config=cfg, intents=intents, registry=registry, writer=writer, pipeline=pipeline)


def open_warden(workspace: str | Path, config_path: Optional[str | Path] = None, **kwargs) -> Warden:
    return build_warden(load_config(workspace, config_path), **kwargs)
