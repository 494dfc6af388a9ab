from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


class WorkspaceViolation(ValueError):
    pass


@dataclass(frozen=True)
class Workspace:
    root: Path

    @classmethod
    def from_path(cls, root: str | Path) -> "Workspace":
        p = Path(root).expanduser()
        try:
            p = p.resolve()
        except OSError:
            # If resolve fails (non-existent), normalize as absolute.
            p = p.absolute()
        return cls(root=p)

    def resolve_rel(self, rel: str | Path) -> Path:
        """Resolve an agent-supplied path, rejecting anything outside the root.

        Symlinks are followed, so the result names the file that will really
        be written. Absolute paths are accepted only when they already point
        inside the workspace.
        """
        rp = Path(os.path.expanduser(str(rel)))
        try:
            candidate = (rp if rp.is_absolute() else self.root / rp).resolve()
        except (OSError, RuntimeError) as e:
            # symlink loop
            raise WorkspaceViolation(f"Cannot resolve path: {rel}") from e
        try:
            candidate.relative_to(self.root)
        except ValueError as e:
            raise WorkspaceViolation(f"Path escapes workspace: {rel}") from e
        return candidate

    def relative(self, rel: str | Path) -> str:
        """Workspace-relative POSIX form of ``rel`` (used for scope matching)."""
        p = self.resolve_rel(rel)
        return p.relative_to(self.root).as_posix()

    def contains(self, rel: str | Path) -> bool:
        try:
            self.resolve_rel(rel)
        except WorkspaceViolation:
            return False
        return True

    def read_bytes(self, rel: str | Path) -> Optional[bytes]:
        """Current on-disk bytes, or None when the file does not exist yet."""
        p = self.resolve_rel(rel)
        if not p.is_file():
            return None
        return p.read_bytes()
