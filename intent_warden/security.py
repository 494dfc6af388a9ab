"""Risk classification for tool invocations and shell commands.

Pure and total: every input yields exactly one tier. Unknown tools are
``SAFE``; a command that matches any detector is never downgraded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern

from .fs import Workspace
from .models import CommandClassification, RiskLevel, ToolSafety
from .scope import normalize_path
from .tools import MUTATING_TOOLS, SHELL_TOOLS, command_text, target_paths


@dataclass(frozen=True)
class Detector:
    level: RiskLevel
    pattern: Pattern[str]
    reason: str
    mitigation: Optional[str] = None


def _d(level: RiskLevel, rx: str, reason: str, mitigation: Optional[str] = None) -> Detector:
    return Detector(level=level, pattern=re.compile(rx, re.IGNORECASE), reason=reason, mitigation=mitigation)


_CMD_START = r"(?:^|[;&|(`]\s*|\$\(\s*)"
_RM_RECURSIVE = r"\brm\s+(?:-[a-zA-Z]+\s+|--[\w-]+\s+)*(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\b"
_WIDE_TARGET = r"(?:/|/\*|\*|~|~/|~/\*|\.|\.\.|\./\*|\$HOME|\"\$HOME\")(?=\s|$|[;&|)])"

# Ordered most severe first; the first match decides the tier.
DETECTORS: List[Detector] = [
    # -- critical --
    _d(
        RiskLevel.CRITICAL,
        _RM_RECURSIVE + r"(?:\s+(?:-[a-zA-Z]+|--[\w-]+))*\s+" + _WIDE_TARGET,
        "recursive deletion of root, home or wildcard path",
        "Delete a specific directory by explicit path instead of a wildcard or root",
    ),
    _d(
        RiskLevel.CRITICAL,
        r"\bgit\s+push\b[^;&|]*(?:\s--force(?:-with-lease)?\b|\s-[a-zA-Z]*f[a-zA-Z]*\b|\s\+\S+)",
        "forced push rewrites shared history",
        "Push to a new branch and open a review instead of force-pushing",
    ),
    _d(
        RiskLevel.CRITICAL,
        _CMD_START + r"(?:sudo|doas|su|pkexec)(?=\s|$)",
        "privilege escalation",
        "Run the command without elevated privileges inside the workspace",
    ),
    _d(
        RiskLevel.CRITICAL,
        r"\bdd\s+[^;&|]*\b(?:if=/dev/(?:zero|u?random)|of=/dev/)",
        "raw device read/write with dd",
    ),
    _d(
        RiskLevel.CRITICAL,
        r">\s*/dev/(?:sd[a-z]|hd[a-z]|nvme\d|disk\d|mmcblk\d)",
        "redirect into a raw block device",
    ),
    _d(RiskLevel.CRITICAL, r"\bmkfs(?:\.\w+)?\b", "filesystem formatting"),
    _d(
        RiskLevel.CRITICAL,
        r"\|\s*(?:sudo\s+)?(?:ba|z|k|da|fi)?sh\b|\b(?:ba|z)?sh\s+<\(\s*(?:curl|wget)\b",
        "piping remote or generated content into a shell",
        "Download the script to a file, review it, then run it explicitly",
    ),
    _d(
        RiskLevel.CRITICAL,
        r"\b(?:npm|pnpm)\s+(?:install|i|add)\b[^;&|]*\s(?:-g|--global)\b"
        r"|\byarn\s+global\s+add\b"
        r"|\bpip3?\s+install\b[^;&|]*--break-system-packages\b"
        r"|\bgem\s+install\b",
        "unscoped global package installation",
        "Install the package as a project-local dependency",
    ),
    _d(
        RiskLevel.CRITICAL,
        r"\bdrop\s+(?:table|database|schema)\b"
        r"|\btruncate\s+(?:table\s+)?\w+"
        r"|\bdelete\s+from\s+[\w.\"`]+\s*(?:;|$|\"|')",
        "destructive SQL statement",
        "Add a WHERE clause or take a backup before destructive SQL",
    ),
    _d(
        RiskLevel.CRITICAL,
        r"\bchmod\s+(?:-[a-zA-Z]+\s+)*0?777\b",
        "world-writable permissions",
        "Use 755 for directories and 644 for files",
    ),
    _d(RiskLevel.CRITICAL, r":\(\)\s*\{\s*:\|:&\s*\};:", "fork bomb"),
    # -- high --
    _d(
        RiskLevel.HIGH,
        _CMD_START + r"(?:rm|rmdir|unlink|shred|del|erase|rd|Remove-Item)(?=\s|$)",
        "file deletion",
        "Delete explicitly named files only",
    ),
    _d(RiskLevel.HIGH, r"\bfind\b[^;&|]*\s-delete\b", "file deletion via find -delete"),
    _d(
        RiskLevel.HIGH,
        r"\bgit\s+(?:reset\s+--hard\b|clean\s+-[a-zA-Z]*f|checkout\s+--\s+\.|branch\s+-D\b)",
        "discards uncommitted or branch work",
        "Stash the changes before resetting",
    ),
    # -- medium --
    _d(
        RiskLevel.MEDIUM,
        _CMD_START + r"(?:chmod|chown|chgrp|icacls|setfacl)(?=\s|$)",
        "permission change",
    ),
    _d(
        RiskLevel.MEDIUM,
        r"\bcurl\b[^|;&]*(?:\s-[a-zA-Z]*[oO]\b|\s--output\b|\s>)"
        r"|\bwget\b"
        r"|\bInvoke-WebRequest\b[^|;&]*-OutFile\b",
        "network download written to local disk",
        "Review the downloaded file before using it",
    ),
    _d(
        RiskLevel.MEDIUM,
        r"\b(?:npm|pnpm)\s+(?:install|i|add)\b"
        r"|\byarn\s+add\b"
        r"|\bpip3?\s+install\b"
        r"|\bpoetry\s+add\b"
        r"|\buv\s+(?:add|pip\s+install)\b"
        r"|\bcargo\s+(?:install|add)\b"
        r"|\bgo\s+install\b"
        r"|\b(?:apt|apt-get|brew|dnf|yum)\s+install\b",
        "package installation",
        "Pin the package version and review the lockfile diff",
    ),
]


def classify_tool(tool_name: str, args: Optional[Mapping[str, Any]] = None) -> ToolSafety:
    if tool_name in MUTATING_TOOLS:
        return ToolSafety.DESTRUCTIVE
    return ToolSafety.SAFE


def classify_command(command: str) -> CommandClassification:
    text = (command or "").strip()
    for det in DETECTORS:
        if det.pattern.search(text):
            return CommandClassification(
                command=text,
                risk_level=det.level,
                requires_approval=True,
                reason=det.reason,
                mitigation=det.mitigation,
            )
    return CommandClassification(
        command=text,
        risk_level=RiskLevel.SAFE,
        requires_approval=False,
        reason="no risky pattern matched",
    )


def is_dangerous_command(command: str) -> bool:
    return classify_command(command).risk_level is RiskLevel.CRITICAL


_SAFER = [
    (re.compile(r"\brm\s+-[a-zA-Z]*[rR]"), "rm -r <explicit/path/to/dir>  (name the directory; avoid / and *)"),
    (re.compile(r"\bchmod\s+(?:-[a-zA-Z]+\s+)*0?777\b"), "chmod 755 <dir>  or  chmod 644 <file>"),
    (
        re.compile(r"\|\s*(?:sudo\s+)?(?:ba|z)?sh\b"),
        "curl -fsSLo script.sh <url> && less script.sh && sh script.sh",
    ),
    (re.compile(r"\bgit\s+push\b.*--force\b"), "git push --force-with-lease  (or push to a new branch)"),
    (re.compile(r"\bnpm\s+(?:install|i)\b.*(?:-g|--global)\b"), "npm install --save-dev <pkg>"),
]


def suggest_safer_alternative(command: str) -> Optional[str]:
    for rx, alt in _SAFER:
        if rx.search(command or ""):
            return alt
    return None


SENSITIVE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(?:^|/)\.env(?:\.|$)", re.IGNORECASE),
    re.compile(r"(?:^|/)\.ssh/(?:id_rsa|id_ed25519|id_ecdsa|authorized_keys)", re.IGNORECASE),
    re.compile(r"(?:^|/)\.aws/credentials", re.IGNORECASE),
    re.compile(r"(?:^|/)\.git/config$", re.IGNORECASE),
    re.compile(r"(?:^|/)node_modules/", re.IGNORECASE),
]


def is_sensitive_file(path: str) -> bool:
    p = normalize_path(path)
    return any(rx.search(p) for rx in SENSITIVE_PATTERNS)


def is_path_outside_workspace(path: str, cwd: str) -> bool:
    return not Workspace.from_path(cwd).contains(path)


def classify_file_operation(path: str, operation: str, cwd: str) -> CommandClassification:
    label = f"{operation} {path}"
    if is_path_outside_workspace(path, cwd):
        return CommandClassification(
            command=label,
            risk_level=RiskLevel.CRITICAL,
            requires_approval=True,
            reason="target is outside the workspace",
            mitigation="Keep file operations under the workspace root",
        )
    if operation != "read" and is_sensitive_file(path):
        return CommandClassification(
            command=label,
            risk_level=RiskLevel.HIGH,
            requires_approval=True,
            reason="target is a sensitive file",
        )
    if operation == "delete":
        return CommandClassification(
            command=label,
            risk_level=RiskLevel.HIGH,
            requires_approval=True,
            reason="file deletion",
        )
    return CommandClassification(
        command=label,
        risk_level=RiskLevel.SAFE,
        requires_approval=False,
        reason="ordinary workspace file operation",
    )


def classify_invocation(tool_name: str, args: Dict[str, Any], cwd: str) -> CommandClassification:
    """Most severe classification across everything the invocation touches."""
    if tool_name in SHELL_TOOLS:
        return classify_command(command_text(args))

    worst = CommandClassification(
        command=tool_name,
        risk_level=RiskLevel.SAFE,
        requires_approval=False,
        reason="no risk detected",
    )
    if tool_name not in MUTATING_TOOLS:
        return worst
    for path in target_paths(tool_name, args):
        c = classify_file_operation(path, "write", cwd)
        if c.risk_level.rank > worst.risk_level.rank:
            worst = c
    return worst


_EXPLAIN = {
    RiskLevel.CRITICAL: "CRITICAL: {reason}. This could cause data loss or system damage.",
    RiskLevel.HIGH: "HIGH RISK: {reason}. Proceed with caution.",
    RiskLevel.MEDIUM: "MEDIUM RISK: {reason}. Review before executing.",
    RiskLevel.SAFE: "Safe: {reason}",
}


def explain_risk(classification: CommandClassification) -> str:
    text = _EXPLAIN[classification.risk_level].format(reason=classification.reason)
    if classification.mitigation:
        text += f" Suggestion: {classification.mitigation}"
    return text
