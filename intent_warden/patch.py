from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal


PatchOp = Literal["add", "update", "delete", "move"]


class PatchError(RuntimeError):
    pass


_HEADERS = {
    "*** Add File:": "add",
    "*** Update File:": "update",
    "*** Delete File:": "delete",
    "*** Move to:": "move",
}


@dataclass(frozen=True)
class PatchTarget:
    op: PatchOp
    path: str


def parse_patch_targets(text: str) -> List[PatchTarget]:
    """Collect every file a patch touches.

    Supported envelope:
      *** Begin Patch
      *** Add File: path/rel.txt
      +line
      *** Update File: other.py
      *** Move to: renamed.py
      @@
      -old
      +new
      *** Delete File: gone.txt
      *** End Patch

    A rename ("Move to") touches both the source and the destination.
    """

    lines = text.splitlines()
    if not lines or lines[0].strip() != "*** Begin Patch":
        raise PatchError("Patch must start with '*** Begin Patch'")
    if lines[-1].strip() != "*** End Patch":
        raise PatchError("Patch must end with '*** End Patch'")

    targets: List[PatchTarget] = []
    for ln in lines[1:-1]:
        if not ln.startswith("*** "):
            continue
        stripped = ln.strip()
        if stripped == "*** End of File":
            continue
        for prefix, op in _HEADERS.items():
            if stripped.startswith(prefix):
                path = stripped.split(":", 1)[1].strip()
                if not path:
                    raise PatchError(f"Empty path in header: {stripped}")
                targets.append(PatchTarget(op=op, path=path))  # type: ignore[arg-type]
                break
        else:
            raise PatchError(f"Unknown patch header: {stripped}")

    if not targets:
        raise PatchError("Missing patch header (Add File / Update File / Delete File)")
    return targets


def patch_target_paths(text: str) -> List[str]:
    seen: List[str] = []
    for t in parse_patch_targets(text):
        if t.path not in seen:
            seen.append(t.path)
    return seen
