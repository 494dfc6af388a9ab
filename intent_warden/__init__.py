"""Intent Warden: intent-scoped governance for coding-agent tool calls.

Every mutating tool call (file write, patch, shell command) passes through
a hook pipeline before and after it runs:
- It must be attributed to a declared intent
- Its target files must fall inside that intent's owned scope
- Risky commands wait for a human yes/no
- Each executed call leaves a content-hashed line in agent_trace.jsonl

The warden never executes tools itself; the host does.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = []
