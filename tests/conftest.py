import textwrap
from pathlib import Path

import pytest

from intent_warden.config import WardenConfig
from intent_warden.hitl import auto_policy_gate
from intent_warden.main import build_warden

INTENTS_YAML = textwrap.dedent(
    """\
    intents:
      - id: INT-001
        name: JWT authentication
        status: active
        owned_scope:
          - "src/auth/**"
          - "src/middleware/jwt.ts"
        constraints:
          - "Must not use external auth providers"
        acceptance_criteria:
          - "Tokens expire after 1h"
        context: "Replace session cookies with JWT"
        related_files:
          - src/auth/login.ts
      - id: INT-002
        name: Docs refresh
        status: pending
        owned_scope:
          - "docs/*.md"
      - id: INT-003
        name: Old migration
        status: completed
        owned_scope:
          - "**"
      - id: INT-004
        name: Unscoped
        status: active
    """
)


def write_intents(root: Path, text: str = INTENTS_YAML) -> Path:
    p = root / ".orchestration" / "active_intents.yaml"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def file_writer(root: Path):
    """Minimal host executor: writes args['content'] to args['path']."""

    def _exec(args):
        target = root / args["path"]
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(args.get("content", ""), encoding="utf-8")
        return {"success": True}

    return _exec


@pytest.fixture
def workspace(tmp_path):
    write_intents(tmp_path)
    return tmp_path


@pytest.fixture
def make_warden(workspace):
    built = []

    def _make(gate=None, approve=False, **raw):
        raw.setdefault("sessions", {"persist": False})
        cfg = WardenConfig(raw=raw, workspace=workspace)
        w = build_warden(cfg, gate=gate if gate is not None else auto_policy_gate(approve, timeout_s=5))
        built.append(w)
        return w

    yield _make
    for w in built:
        w.close()
