from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from .fs import Workspace
from .intents import IntentSource
from .models import ALLOW, HookResult, Intent, PostInvocationContext
from .scope import is_in_scope
from .session_state import SessionRegistry
from .tools import is_mutating, target_paths
from .trace import TraceWriter, capture_written, classify_mutation, compute_git_sha

logger = logging.getLogger(__name__)


class Observer(Protocol):
    hook_id: str

    def run(self, ctx: PostInvocationContext) -> HookResult:
        ...


def _decode(data: Optional[bytes]) -> Optional[str]:
    return data.decode("utf-8", errors="replace") if data is not None else None


class TraceObserver:
    """Writes one trace record per completed mutating invocation."""

    hook_id = "90_trace"

    def __init__(
        self,
        writer: TraceWriter,
        registry: SessionRegistry,
        intents: Optional[IntentSource] = None,
        *,
        contributor: Optional[Dict[str, str]] = None,
    ) -> None:
        self.writer = writer
        self.registry = registry
        self.intents = intents
        self.contributor = dict(contributor or {"type": "ai", "id": "unknown"})

    def _paths(self, ctx: PostInvocationContext) -> List[str]:
        rels = ctx.notes.get("target_paths")
        if rels:
            return list(rels)
        ws = Workspace.from_path(ctx.cwd)
        return [ws.relative(p) for p in target_paths(ctx.tool_name, ctx.args)]

    def _intent(self, intent_id: str, ctx: PostInvocationContext) -> Optional[Intent]:
        intent = ctx.notes.get("intent")
        if isinstance(intent, Intent) and intent.id == intent_id:
            return intent
        return self.intents.find_intent(intent_id) if self.intents is not None else None

    def run(self, ctx: PostInvocationContext) -> HookResult:
        if not is_mutating(ctx.tool_name):
            return ALLOW

        paths = self._paths(ctx)
        hashes: Dict[str, str] = {}
        written: Dict[str, Optional[bytes]] = {}
        if ctx.success and "written_hashes" in ctx.notes:
            hashes = dict(ctx.notes["written_hashes"])
            written = dict(ctx.notes.get("written_content") or {})
        elif ctx.success:
            # host ran the tool itself; the disk is all we have
            hashes, written = capture_written(
                ctx.cwd,
                paths,
                start_line=ctx.args.get("start_line"),
                end_line=ctx.args.get("end_line"),
            )

        intent_id = ctx.notes.get("intent_id") or self.registry.get_active_intent(ctx.session_id)
        related: List[str] = []
        if intent_id:
            intent = self._intent(intent_id, ctx)
            if not paths or (intent is not None and all(is_in_scope(p, intent.owned_scope) for p in paths)):
                related.append(intent_id)
            else:
                logger.warning(
                    "Trace for %s on %s omits intent %s: not every path is in its scope",
                    ctx.tool_name,
                    ", ".join(paths),
                    intent_id,
                )

        mutation_type = None
        prior = ctx.notes.get("prior_content") or {}
        if ctx.success and len(paths) == 1 and paths[0] in prior:
            mutation_type = classify_mutation(_decode(prior[paths[0]]), _decode(written.get(paths[0])))

        record = self.writer.build_record(
            ctx,
            related_intents=related,
            content_hashes=hashes,
            file_paths=paths,
            vcs_revision=compute_git_sha(ctx.cwd),
            contributor=self.contributor,
            mutation_type=mutation_type,
            approval=ctx.notes.get("approval"),
        )
        self.writer.append(record)
        logger.debug("Trace appended for %s (%s)", ctx.tool_name, ctx.session_id)
        return ALLOW
