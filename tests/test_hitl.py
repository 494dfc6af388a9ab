import io
import threading
import time

from intent_warden.hitl import ApprovalGate, auto_policy_gate, console_decider
from intent_warden.security import classify_command

RISKY = classify_command("git push --force")


class TestApprovalGate:
    def test_approve(self):
        d = ApprovalGate(lambda c: True, timeout_s=5).decide(RISKY)
        assert d.approved and not d.timed_out

    def test_reject(self):
        d = ApprovalGate(lambda c: False, timeout_s=5).decide(RISKY)
        assert not d.approved and not d.timed_out

    def test_truthy_but_not_true_is_rejection(self):
        assert ApprovalGate(lambda c: "yes", timeout_s=5).request_approval(RISKY) is False

    def test_timeout(self):
        release = threading.Event()
        gate = ApprovalGate(lambda c: release.wait(5), timeout_s=0.05)
        t0 = time.monotonic()
        try:
            d = gate.decide(RISKY)
        finally:
            release.set()
        assert d.timed_out and not d.approved
        assert time.monotonic() - t0 < 2

    def test_per_call_timeout_override(self):
        release = threading.Event()
        gate = ApprovalGate(lambda c: release.wait(5), timeout_s=60)
        try:
            assert gate.decide(RISKY, timeout_s=0.05).timed_out
        finally:
            release.set()

    def test_decider_exception_is_rejection(self):
        def broken(c):
            raise RuntimeError("no tty")

        d = ApprovalGate(broken, timeout_s=5).decide(RISKY)
        assert not d.approved and not d.timed_out
        assert "no tty" in d.detail

    def test_decider_receives_classification(self):
        seen = []
        ApprovalGate(lambda c: seen.append(c) or True, timeout_s=5).decide(RISKY)
        assert seen == [RISKY]

    def test_auto_policy_gate(self):
        assert auto_policy_gate(True).request_approval(RISKY) is True
        assert auto_policy_gate(False).request_approval(RISKY) is False


class TestConsoleDecider:
    def test_yes(self):
        out = io.StringIO()
        assert console_decider(io.StringIO("y\n"), out)(RISKY) is True
        assert "git push --force" in out.getvalue()
        assert "CRITICAL" in out.getvalue()

    def test_anything_else_is_no(self):
        assert console_decider(io.StringIO("sure\n"), io.StringIO())(RISKY) is False
        assert console_decider(io.StringIO(""), io.StringIO())(RISKY) is False
