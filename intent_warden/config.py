from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .logging_utils import parse_level
from .state_store import load_yaml_file

logger = logging.getLogger(__name__)

DEFAULT_ORCHESTRATION_DIR = ".orchestration"
DEFAULT_CONFIG_NAME = "warden.yaml"
HITL_MODES = ("prompt", "deny", "approve")


@dataclass(frozen=True)
class WardenConfig:
    raw: Dict[str, Any] = field(default_factory=dict)
    workspace: Path = field(default_factory=Path.cwd)

    def _section(self, name: str) -> Dict[str, Any]:
        value = self.raw.get(name)
        return value if isinstance(value, dict) else {}

    def _path(self, value: Any, default: Path) -> Path:
        p = Path(str(value)).expanduser() if value else default
        return p if p.is_absolute() else self.workspace / p

    @property
    def orchestration_dir(self) -> Path:
        return self._path(self._section("paths").get("orchestration_dir"), Path(DEFAULT_ORCHESTRATION_DIR))

    @property
    def intents_file(self) -> Path:
        return self._path(self._section("paths").get("intents_file"), self.orchestration_dir / "active_intents.yaml")

    @property
    def session_state_path(self) -> Path:
        return self._path(self._section("paths").get("session_state"), self.orchestration_dir / "session_state.json")

    @property
    def trace_log(self) -> Path:
        return self._path(self._section("paths").get("trace_log"), self.orchestration_dir / "agent_trace.jsonl")

    @property
    def log_file(self) -> Path:
        return self._path(self._section("paths").get("log_file"), self.orchestration_dir / "intent-warden.log")

    @property
    def log_level(self) -> int:
        raw = self._section("logging").get("level", "INFO")
        level = parse_level(raw, -1)
        if level < 0:
            logger.warning("logging.level=%r is not a level name; using INFO", raw)
            return logging.INFO
        return level

    @property
    def persist_sessions(self) -> bool:
        return bool(self._section("sessions").get("persist", True))

    @property
    def hitl_timeout_s(self) -> float:
        raw = self._section("hitl").get("timeout_seconds", 60)
        try:
            return float(raw)
        except (TypeError, ValueError):
            logger.warning("hitl.timeout_seconds=%r is not a number; using 60", raw)
            return 60.0

    @property
    def hitl_mode(self) -> str:
        mode = str(self._section("hitl").get("mode") or "prompt").lower()
        if mode not in HITL_MODES:
            logger.warning("Unknown hitl.mode %r; falling back to deny", mode)
            return "deny"
        return mode

    @property
    def contributor(self) -> Dict[str, str]:
        c = self._section("contributor")
        return {
            "type": str(c.get("type") or "ai"),
            "id": str(c.get("id") or c.get("model_id") or "unknown"),
        }

    @property
    def observer_workers(self) -> int:
        try:
            return max(1, int(self._section("observers").get("max_workers", 4)))
        except (TypeError, ValueError):
            return 4


def default_config_path(workspace: str | Path) -> Path:
    return Path(workspace) / DEFAULT_ORCHESTRATION_DIR / DEFAULT_CONFIG_NAME


def load_config(workspace: str | Path, path: Optional[str | Path] = None) -> WardenConfig:
    """Load warden.yaml; a missing or malformed file yields defaults."""
    ws = Path(workspace).expanduser().resolve()
    p = Path(path).expanduser() if path else default_config_path(ws)
    if not p.exists():
        if path:
            logger.warning("Config %s not found; using defaults", p)
        return WardenConfig(raw={}, workspace=ws)

    try:
        raw = load_yaml_file(p) or {}
    except Exception as e:
        logger.warning("Config %s unreadable (%s); using defaults", p, e)
        return WardenConfig(raw={}, workspace=ws)

    if not isinstance(raw, dict):
        logger.warning("Config %s must contain a mapping; using defaults", p)
        return WardenConfig(raw={}, workspace=ws)

    return WardenConfig(raw=raw, workspace=ws)
