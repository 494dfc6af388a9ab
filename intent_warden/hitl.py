"""Human-in-the-loop approval gate.

The gate blocks the calling pre-stage until a decision arrives or the
timeout expires. It never raises: no decision, a timeout, or a failing
decider all resolve to denial.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

from .models import CommandClassification
from .security import explain_risk

logger = logging.getLogger(__name__)

Decider = Callable[[CommandClassification], bool]

DEFAULT_TIMEOUT_S = 60.0


@dataclass(frozen=True)
class ApprovalDecision:
    approved: bool
    timed_out: bool = False
    detail: str = ""


class ApprovalGate:
    """Runs ``decider`` on a daemon thread and waits at most ``timeout_s``.

    A decider stuck on input cannot keep the process alive; its late
    answer is discarded.
    """

    def __init__(self, decider: Decider, *, timeout_s: float = DEFAULT_TIMEOUT_S, name: str = "hitl") -> None:
        self.decider = decider
        self.timeout_s = float(timeout_s)
        self.name = name

    def decide(self, classification: CommandClassification, *, timeout_s: Optional[float] = None) -> ApprovalDecision:
        timeout = self.timeout_s if timeout_s is None else float(timeout_s)
        done = threading.Event()
        box: dict = {}

        def _run() -> None:
            try:
                box["approved"] = self.decider(classification) is True
            except Exception as e:
                logger.exception("Approval decider failed for %r", classification.command)
                box["error"] = str(e)
            finally:
                done.set()

        t = threading.Thread(target=_run, name=f"{self.name}-approval", daemon=True)
        t.start()

        if not done.wait(timeout if timeout > 0 else None):
            logger.warning("Approval timed out after %.1fs: %s", timeout, classification.command)
            return ApprovalDecision(approved=False, timed_out=True, detail=f"no decision within {timeout:g}s")
        if "error" in box:
            return ApprovalDecision(approved=False, detail=f"decider failed: {box['error']}")

        approved = bool(box.get("approved"))
        logger.info("Approval %s: %s", "granted" if approved else "rejected", classification.command)
        return ApprovalDecision(approved=approved, detail="approved" if approved else "rejected")

    def request_approval(self, classification: CommandClassification) -> bool:
        return self.decide(classification).approved


def auto_policy_gate(approve: bool, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> ApprovalGate:
    return ApprovalGate(lambda _c: approve, timeout_s=timeout_s, name="auto-approve" if approve else "auto-deny")


def console_decider(stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> Decider:
    """Interactive yes/no prompt on the controlling terminal."""

    def _ask(classification: CommandClassification) -> bool:
        out = stdout or sys.stderr
        inp = stdin or sys.stdin
        out.write(f"\n{explain_risk(classification)}\n  command: {classification.command}\n")
        out.write("Approve? [y/N] ")
        out.flush()
        line = inp.readline()
        return line.strip().lower() in {"y", "yes"}

    return _ask


def console_gate(*, timeout_s: float = DEFAULT_TIMEOUT_S) -> ApprovalGate:
    return ApprovalGate(console_decider(), timeout_s=timeout_s, name="console")
