"""Append-only agent trace log (agent_trace.jsonl).

One JSON object per line, one line per completed mutating invocation.
Appends are serialized through a lock and written with a single
``write`` call so concurrent completions never interleave partial lines.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .fs import Workspace
from .models import PostInvocationContext, TraceRecord

logger = logging.getLogger(__name__)

UNKNOWN_REVISION = "unknown"

_SENSITIVE_KEYS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"api[_-]?key",
        r"anthropic",
        r"openai",
        r"password",
        r"passwd",
        r"pwd",
        r"token",
        r"secret",
        r"bearer",
        r"credential",
        r"authorization",
    )
]
MAX_PARAM_CHARS = 1000
MAX_RESULT_CHARS = 5000


def compute_content_hash(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _read_ref(git_dir: Path, ref: str) -> Optional[str]:
    loose = git_dir / ref
    if loose.is_file():
        return loose.read_text(encoding="utf-8").strip() or None
    packed = git_dir / "packed-refs"
    if packed.is_file():
        for line in packed.read_text(encoding="utf-8").splitlines():
            if line.startswith("#") or line.startswith("^"):
                continue
            parts = line.split()
            if len(parts) == 2 and parts[1] == ref:
                return parts[0]
    return None


def compute_git_sha(cwd: Union[str, Path]) -> str:
    """Revision of the workspace's HEAD, read straight from .git; "unknown" when absent."""
    git_dir = Path(cwd) / ".git"
    try:
        if git_dir.is_file():
            # worktree / submodule: "gitdir: <path>"
            pointer = git_dir.read_text(encoding="utf-8").strip()
            if pointer.startswith("gitdir:"):
                git_dir = (Path(cwd) / pointer.split(":", 1)[1].strip()).resolve()
        head = (git_dir / "HEAD").read_text(encoding="utf-8").strip()
    except OSError:
        return UNKNOWN_REVISION
    if head.startswith("ref: "):
        try:
            return _read_ref(git_dir, head[5:].strip()) or UNKNOWN_REVISION
        except OSError:
            return UNKNOWN_REVISION
    return head or UNKNOWN_REVISION


def _is_sensitive_key(key: str) -> bool:
    return any(rx.search(key) for rx in _SENSITIVE_KEYS)


def _clip(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[:limit] + "..."


def sanitize_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Redact secret-looking keys and clip long strings (one level deep)."""
    out: Dict[str, Any] = {}
    for k, v in (params or {}).items():
        if _is_sensitive_key(str(k)):
            out[k] = "[REDACTED]"
        elif isinstance(v, str):
            out[k] = _clip(v, MAX_PARAM_CHARS)
        elif isinstance(v, dict):
            nested: Dict[str, Any] = {}
            for nk, nv in v.items():
                if _is_sensitive_key(str(nk)):
                    nested[nk] = "[REDACTED]"
                elif isinstance(nv, str):
                    nested[nk] = _clip(nv, MAX_PARAM_CHARS)
                else:
                    nested[nk] = nv
            out[k] = nested
        else:
            out[k] = v
    return out


def sanitize_result(result: Any) -> Any:
    if isinstance(result, bytes):
        result = result.decode("utf-8", errors="replace")
    if isinstance(result, str):
        text = result
        for rx in _SENSITIVE_KEYS:
            text = rx.sub("[REDACTED]", text)
        return _clip(text, MAX_RESULT_CHARS)
    if isinstance(result, (list, tuple)):
        return [sanitize_result(r) for r in result]
    if isinstance(result, dict):
        return {
            k: "[REDACTED]" if _is_sensitive_key(str(k)) else sanitize_result(v)
            for k, v in result.items()
        }
    return result


def classify_mutation(old: Optional[str], new: Optional[str]) -> str:
    if old is None and new is None:
        return "unknown"
    if not old or not old.strip():
        return "new_feature"
    if not new or not new.strip():
        return "deletion"

    old_lines = [l for l in old.split("\n") if l.strip()]
    new_lines = [l for l in new.split("\n") if l.strip()]
    delta = abs(len(new_lines) - len(old_lines))
    delta_pct = (delta / len(old_lines)) * 100 if old_lines else 100.0

    if delta_pct < 20 and delta < 10:
        return "bug_fix"
    if delta_pct < 50:
        return "enhancement"

    old_set = {l.strip() for l in old_lines}
    preserved = sum(1 for l in new_lines if l.strip() in old_set)
    preservation = (preserved / len(old_lines)) * 100 if old_lines else 0.0
    if preservation > 60:
        return "refactor"
    return "new_feature"


def _line_byte_range(data: bytes, start_line: int, end_line: int) -> tuple[int, int]:
    """Byte offsets of 1-based inclusive lines [start_line, end_line]."""
    lines = data.splitlines(keepends=True)
    start_line = max(1, start_line)
    end_line = min(len(lines), max(start_line, end_line))
    start = sum(len(l) for l in lines[: start_line - 1])
    end = start + sum(len(l) for l in lines[start_line - 1 : end_line])
    return start, end


def region_hashes(
    path: str,
    data: bytes,
    *,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
) -> Dict[str, str]:
    """Map ``"<path>:<start>-<end>"`` (byte offsets) to the SHA-256 of that range."""
    if start_line is not None:
        start, end = _line_byte_range(data, int(start_line), int(end_line if end_line is not None else start_line))
    else:
        start, end = 0, len(data)
    return {f"{path}:{start}-{end}": compute_content_hash(data[start:end])}


def capture_written(
    cwd: Union[str, Path],
    paths: Iterable[str],
    *,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
) -> Tuple[Dict[str, str], Dict[str, Optional[bytes]]]:
    """Region hashes and raw bytes of ``paths`` as they are on disk now.

    The pipeline calls this while the path locks are still held, so the
    hashes describe exactly what that invocation wrote.
    """
    ws = Workspace.from_path(cwd)
    hashes: Dict[str, str] = {}
    written: Dict[str, Optional[bytes]] = {}
    for rel in paths:
        data = ws.read_bytes(rel)
        written[rel] = data
        if data is not None:
            hashes.update(region_hashes(rel, data, start_line=start_line, end_line=end_line))
    return hashes, written


def utc_timestamp(ts: Optional[float] = None) -> str:
    when = dt.datetime.now(dt.timezone.utc) if ts is None else dt.datetime.fromtimestamp(ts, dt.timezone.utc)
    return when.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class TraceWriter:
    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "_lock", threading.Lock())

    @classmethod
    def default_for_workspace(cls, workspace_root: Union[str, Path]) -> "TraceWriter":
        p = (Path(workspace_root) / ".orchestration").resolve()
        return cls(path=p / "agent_trace.jsonl")

    def build_record(
        self,
        ctx: PostInvocationContext,
        *,
        related_intents: Iterable[str],
        content_hashes: Dict[str, str],
        file_paths: Iterable[str] = (),
        vcs_revision: str = UNKNOWN_REVISION,
        contributor: Optional[Dict[str, str]] = None,
        mutation_type: Optional[str] = None,
        approval: Optional[Dict[str, Any]] = None,
    ) -> TraceRecord:
        return TraceRecord(
            timestamp=utc_timestamp(),
            task_id=ctx.session_id,
            tool_name=ctx.tool_name,
            params=sanitize_params(ctx.args),
            content_hashes=dict(content_hashes),
            related_intents=list(related_intents),
            vcs_revision=vcs_revision,
            contributor=dict(contributor or {"type": "ai", "id": "unknown"}),
            success=ctx.success,
            duration_ms=round(float(ctx.duration_ms), 3),
            file_paths=list(file_paths),
            mutation_type=mutation_type,
            approval=approval,
            error=ctx.error,
            result=sanitize_result(ctx.result),
        )

    def append(self, record: Union[TraceRecord, Dict[str, Any]]) -> None:
        payload = record.to_dict() if isinstance(record, TraceRecord) else dict(record)
        line = json.dumps(payload, sort_keys=True, default=str) + "\n"
        lock: threading.Lock = getattr(self, "_lock")
        with lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()


def read_trace_log(
    path: Union[str, Path],
    record_filter: Optional[Callable[[Dict[str, Any]], bool]] = None,
) -> List[Dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        return []
    records: List[Dict[str, Any]] = []
    for ln in p.read_text(encoding="utf-8").splitlines():
        if not ln.strip():
            continue
        try:
            obj = json.loads(ln)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed trace line in %s", p)
            continue
        if isinstance(obj, dict) and (record_filter is None or record_filter(obj)):
            records.append(obj)
    return records


def analyze_trace_metrics(records: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    total = 0
    tool_counts: Dict[str, int] = {}
    durations: List[float] = []
    approvals_required = 0
    approvals_granted = 0
    failures = 0

    for r in records:
        total += 1
        name = str(r.get("tool_name", "unknown"))
        tool_counts[name] = tool_counts.get(name, 0) + 1
        d = r.get("duration_ms")
        if isinstance(d, (int, float)):
            durations.append(float(d))
        if r.get("success") is False:
            failures += 1
        approval = r.get("approval") or {}
        if approval.get("required"):
            approvals_required += 1
            if approval.get("approved"):
                approvals_granted += 1

    return {
        "total_tools": total,
        "tool_counts": tool_counts,
        "avg_duration_ms": (sum(durations) / len(durations)) if durations else 0.0,
        "approval_rate": (approvals_granted / approvals_required) if approvals_required else 0.0,
        "failures": failures,
    }
