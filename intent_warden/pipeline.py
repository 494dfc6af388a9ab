"""Hook pipeline: ordered pre-stage validators and post-stage observers.

Pre-stage: validators run in order; the first explicit denial short
circuits. A validator that raises is logged and treated as abstaining.

Post-stage: observers run on a worker pool after the executor returns, so
the caller's result is never held up; faults are logged and funneled to
``faults`` / ``on_fault``, never re-raised.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .fs import Workspace, WorkspaceViolation
from .locking import PathLockTable
from .models import HookResult, PostInvocationContext, ToolInvocationContext
from .observers import Observer
from .patch import PatchError
from .tools import is_mutating, is_path_bearing, target_paths
from .trace import capture_written
from .validators import Validator

logger = logging.getLogger(__name__)

Executor = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class PipelineFault:
    stage: str
    hook_id: str
    error: str
    session_id: str
    tool_name: str


@dataclass
class InvocationOutcome:
    hook_result: HookResult
    executed: bool = False
    result: Any = None
    success: bool = False
    duration_ms: float = 0.0
    post: Optional["Future[HookResult]"] = None

    @property
    def denied(self) -> bool:
        return self.hook_result.denied


@dataclass
class HookPipeline:
    validators: Sequence[Validator]
    observers: Sequence[Observer] = ()
    lock_check: Optional[Validator] = None
    locks: PathLockTable = field(default_factory=PathLockTable)
    max_workers: int = 4
    on_fault: Optional[Callable[[PipelineFault], None]] = None

    def __post_init__(self) -> None:
        self.validators = list(self.validators)
        self.observers = list(self.observers)
        self.faults: List[PipelineFault] = []
        self._faults_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max(1, int(self.max_workers)), thread_name_prefix="warden-post")
        self._pending: List["Future[HookResult]"] = []
        self._pending_lock = threading.Lock()

    # ---- faults -------------------------------------------------------

    def _record_fault(self, stage: str, hook_id: str, err: BaseException, session_id: str, tool_name: str) -> None:
        fault = PipelineFault(
            stage=stage,
            hook_id=hook_id,
            error=f"{type(err).__name__}: {err}",
            session_id=session_id,
            tool_name=tool_name,
        )
        with self._faults_lock:
            self.faults.append(fault)
        if self.on_fault is not None:
            try:
                self.on_fault(fault)
            except Exception:
                logger.exception("on_fault callback failed")

    # ---- pre stage ----------------------------------------------------

    def _fold(self, ctx: ToolInvocationContext, hooks: Sequence[Validator]) -> HookResult:
        modified: Optional[Dict[str, Any]] = None
        injected: List[str] = []

        for hook in hooks:
            hook_id = getattr(hook, "hook_id", type(hook).__name__)
            try:
                res = hook.run(ctx)
            except Exception as e:
                logger.exception("Validator %s failed for %s; abstaining", hook_id, ctx.tool_name)
                self._record_fault("pre", hook_id, e, ctx.session_id, ctx.tool_name)
                continue

            if res.denied:
                logger.info("Denied %s for session %s by %s: %s", ctx.tool_name, ctx.session_id, hook_id, res.reason)
                return res

            if res.modified_args:
                modified = dict(modified or {})
                modified.update(res.modified_args)
                ctx.args = {**ctx.args, **res.modified_args}
            if res.context_to_inject:
                injected.append(res.context_to_inject)

        return HookResult(
            continue_=True,
            modified_args=modified,
            context_to_inject="\n".join(injected) if injected else None,
        )

    @staticmethod
    def _merge(first: HookResult, second: HookResult) -> HookResult:
        if second.denied:
            return second
        modified = None
        if first.modified_args or second.modified_args:
            modified = {**(first.modified_args or {}), **(second.modified_args or {})}
        injected = [c for c in (first.context_to_inject, second.context_to_inject) if c]
        return HookResult(
            continue_=True,
            modified_args=modified,
            context_to_inject="\n".join(injected) if injected else None,
        )

    def _context(
        self,
        session_id: str,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        cwd: str,
        claimed_intent_id: Optional[str],
    ) -> ToolInvocationContext:
        return ToolInvocationContext(
            session_id=session_id,
            tool_name=tool_name,
            args=dict(args or {}),
            cwd=str(cwd),
            claimed_intent_id=claimed_intent_id,
        )

    def run_pre_hooks(
        self,
        session_id: str,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        cwd: str,
        *,
        claimed_intent_id: Optional[str] = None,
    ) -> HookResult:
        """Pre-hook boundary for hosts that execute tools themselves."""
        ctx = self._context(session_id, tool_name, args, cwd, claimed_intent_id)
        return self._pre(ctx)

    def _pre(self, ctx: ToolInvocationContext) -> HookResult:
        res = self._fold(ctx, self.validators)
        if res.denied or self.lock_check is None:
            return res
        return self._merge(res, self._fold(ctx, [self.lock_check]))

    # ---- post stage ---------------------------------------------------

    def _run_observers(self, ctx: PostInvocationContext) -> HookResult:
        injected: List[str] = []
        for obs in self.observers:
            hook_id = getattr(obs, "hook_id", type(obs).__name__)
            try:
                res = obs.run(ctx)
            except Exception as e:
                logger.exception("Observer %s failed for %s", hook_id, ctx.tool_name)
                self._record_fault("post", hook_id, e, ctx.session_id, ctx.tool_name)
                continue
            if res is not None and res.context_to_inject:
                injected.append(res.context_to_inject)
        return HookResult(context_to_inject="\n".join(injected) if injected else None)

    def _submit(self, ctx: PostInvocationContext) -> "Future[HookResult]":
        fut = self._pool.submit(self._run_observers, ctx)
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(fut)
        return fut

    def run_post_hooks(
        self,
        session_id: str,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        result: Any,
        success: bool,
        duration_ms: float,
        *,
        cwd: str,
        error: Optional[str] = None,
        notes: Optional[Dict[str, Any]] = None,
    ) -> "Future[HookResult]":
        """Post-hook boundary. Returns immediately; the advisory result arrives on the future."""
        ctx = PostInvocationContext(
            session_id=session_id,
            tool_name=tool_name,
            args=dict(args or {}),
            cwd=str(cwd),
            result=result,
            success=bool(success),
            duration_ms=float(duration_ms),
            error=error,
            notes=dict(notes or {}),
        )
        return self._submit(ctx)

    # ---- full cycle ---------------------------------------------------

    def _lock_keys(self, tool_name: str, args: Dict[str, Any], cwd: str) -> List[str]:
        if not is_path_bearing(tool_name):
            return []
        try:
            raw = target_paths(tool_name, args)
        except PatchError:
            return []
        ws = Workspace.from_path(cwd)
        keys: List[str] = []
        for p in raw:
            try:
                keys.append(str(ws.resolve_rel(p)))
            except WorkspaceViolation:
                keys.append(os.path.abspath(os.path.expanduser(p)))
        return keys

    def _capture_written(self, ctx: ToolInvocationContext) -> None:
        if not is_mutating(ctx.tool_name):
            return
        rels = ctx.notes.get("target_paths")
        if rels is None:
            if not is_path_bearing(ctx.tool_name):
                return
            try:
                ws = Workspace.from_path(ctx.cwd)
                rels = [ws.relative(p) for p in target_paths(ctx.tool_name, ctx.args)]
            except (PatchError, WorkspaceViolation):
                return
        try:
            hashes, written = capture_written(
                ctx.cwd,
                rels,
                start_line=ctx.args.get("start_line"),
                end_line=ctx.args.get("end_line"),
            )
        except (OSError, WorkspaceViolation) as e:
            logger.warning("Could not fingerprint %s output for %s: %s", ctx.tool_name, ctx.session_id, e)
            return
        ctx.notes["target_paths"] = list(rels)
        ctx.notes["written_hashes"] = hashes
        ctx.notes["written_content"] = written

    def invoke(
        self,
        session_id: str,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        cwd: str,
        executor: Executor,
        *,
        claimed_intent_id: Optional[str] = None,
    ) -> InvocationOutcome:
        """Validate, execute and audit one tool call.

        The fingerprint check and the executor share one critical section
        per target path, so two sessions racing on a file cannot both pass
        the check. The written bytes are fingerprinted before that section
        ends, so the trace hashes what this call wrote even when another
        session writes the same file before the observers run. Executor
        exceptions propagate after the post stage has been scheduled.
        """
        ctx = self._context(session_id, tool_name, args, cwd, claimed_intent_id)

        pre = self._fold(ctx, self.validators)
        if pre.denied:
            return InvocationOutcome(hook_result=pre)

        with self.locks.hold(self._lock_keys(ctx.tool_name, ctx.args, ctx.cwd)):
            if self.lock_check is not None:
                pre = self._merge(pre, self._fold(ctx, [self.lock_check]))
                if pre.denied:
                    return InvocationOutcome(hook_result=pre)

            started = time.time()
            t0 = time.perf_counter()
            try:
                result = executor(dict(ctx.args))
            except Exception as e:
                duration_ms = (time.perf_counter() - t0) * 1000.0
                post_ctx = PostInvocationContext(
                    session_id=ctx.session_id,
                    tool_name=ctx.tool_name,
                    args=ctx.args,
                    cwd=ctx.cwd,
                    result=None,
                    success=False,
                    duration_ms=duration_ms,
                    error=f"{type(e).__name__}: {e}",
                    started_at=started,
                    notes=ctx.notes,
                )
                self._submit(post_ctx)
                raise
            duration_ms = (time.perf_counter() - t0) * 1000.0
            success = not (isinstance(result, dict) and result.get("success") is False)
            if success:
                self._capture_written(ctx)

        post_ctx = PostInvocationContext(
            session_id=ctx.session_id,
            tool_name=ctx.tool_name,
            args=ctx.args,
            cwd=ctx.cwd,
            result=result,
            success=success,
            duration_ms=duration_ms,
            started_at=started,
            notes=ctx.notes,
        )
        fut = self._submit(post_ctx)
        return InvocationOutcome(
            hook_result=pre,
            executed=True,
            result=result,
            success=success,
            duration_ms=duration_ms,
            post=fut,
        )

    # ---- lifecycle ----------------------------------------------------

    def wait_for_observers(self, timeout: Optional[float] = None) -> bool:
        with self._pending_lock:
            pending = list(self._pending)
        done, not_done = wait(pending, timeout=timeout)
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
        return not not_done

    def shutdown(self, wait_for_observers: bool = True) -> None:
        self._pool.shutdown(wait=wait_for_observers)

    def __enter__(self) -> "HookPipeline":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
