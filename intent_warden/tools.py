from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Mapping

from .patch import patch_target_paths

# Tools that never mutate the workspace: no intent, no approval.
READ_ONLY_TOOLS: FrozenSet[str] = frozenset(
    {
        "read_file",
        "list_files",
        "search_files",
        "list_code_definition_names",
        "codebase_search",
        "ask_followup_question",
        "attempt_completion",
        "select_active_intent",
        "switch_mode",
        "new_task",
        "update_todo_list",
        "fetch_instructions",
        "access_mcp_resource",
        "browser_action",
    }
)

# Tools that always require an active intent.
MUTATING_TOOLS: FrozenSet[str] = frozenset(
    {
        "write_to_file",
        "execute_command",
        "edit",
        "search_and_replace",
        "search_replace",
        "edit_file",
        "apply_patch",
        "apply_diff",
        "insert_content",
    }
)

SHELL_TOOLS: FrozenSet[str] = frozenset({"execute_command"})

PATH_TOOLS: FrozenSet[str] = frozenset(
    {
        "write_to_file",
        "edit",
        "search_and_replace",
        "search_replace",
        "edit_file",
        "apply_diff",
        "insert_content",
    }
)

PATCH_TOOLS: FrozenSet[str] = frozenset({"apply_patch"})

PATH_ARG_KEYS = ("path", "file", "file_path", "target_file")
PATCH_ARG_KEYS = ("patch", "input", "diff")


def is_mutating(tool_name: str) -> bool:
    return tool_name in MUTATING_TOOLS


def is_path_bearing(tool_name: str) -> bool:
    return tool_name in PATH_TOOLS or tool_name in PATCH_TOOLS


def first_str(args: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def target_paths(tool_name: str, args: Mapping[str, Any]) -> List[str]:
    """Paths a path-bearing tool will write, as the agent spelled them.

    Raises PatchError for unparseable apply_patch input.
    """
    if tool_name in PATCH_TOOLS:
        text = first_str(args, PATCH_ARG_KEYS)
        return patch_target_paths(text) if text else []
    if tool_name in PATH_TOOLS:
        path = first_str(args, PATH_ARG_KEYS)
        return [path] if path else []
    return []


def command_text(args: Dict[str, Any]) -> str:
    return first_str(args, ("command", "cmd"))
