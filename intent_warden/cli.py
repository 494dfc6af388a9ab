from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from .config import load_config
from .logging_utils import configure_logging
from .main import Warden, build_warden
from .security import classify_command, explain_risk, suggest_safer_alternative
from .session_state import IntentStatusError, UnknownIntentError
from .trace import analyze_trace_metrics, read_trace_log

EXIT_DENIED = 2


def _warden_from_args(args: argparse.Namespace) -> Warden:
    cfg = load_config(args.workspace or Path.cwd(), args.config)
    level = logging.DEBUG if args.verbose else cfg.log_level
    configure_logging(log_path=args.log or str(cfg.log_file), level=level, also_console=not args.quiet)
    return build_warden(cfg)


def _print_json(obj: Any) -> None:
    sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")


def cmd_intents(args: argparse.Namespace) -> int:
    w = _warden_from_args(args)
    w.close()
    intents = w.intents.list_intents()
    if not intents:
        print(f"No intents found in {w.intents.path}")
        return 1
    for it in intents:
        scope = ", ".join(it.owned_scope) or "(no scope)"
        print(f"{it.id}\t{it.status}\t{it.name}\t{scope}")
    return 0


def cmd_declare(args: argparse.Namespace) -> int:
    w = _warden_from_args(args)
    w.close()
    try:
        w.registry.declare_intent(args.session, args.intent)
    except (UnknownIntentError, IntentStatusError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    print(w.intents.load_intent_context(args.intent))
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    w = _warden_from_args(args)
    w.close()
    w.registry.clear_intent(args.session)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    w = _warden_from_args(args)
    w.close()
    if args.session:
        state = w.registry.get_session_state(args.session)
        _print_json(state.to_dict() if state else None)
        return 0 if state else 1
    _print_json(w.registry.all_sessions())
    return 0


def cmd_classify(args: argparse.Namespace) -> int:
    command = " ".join(args.command).strip()
    if not command:
        raise SystemExit("classify: provide a command")
    c = classify_command(command)
    out: Dict[str, Any] = c.to_dict()
    out["explanation"] = explain_risk(c)
    alt = suggest_safer_alternative(command)
    if alt:
        out["safer_alternative"] = alt
    _print_json(out)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    w = _warden_from_args(args)
    try:
        tool_args = json.loads(args.args) if args.args else {}
    except json.JSONDecodeError as e:
        raise SystemExit(f"--args must be JSON: {e}")
    if not isinstance(tool_args, dict):
        raise SystemExit("--args must be a JSON object")
    try:
        res = w.pipeline.run_pre_hooks(
            args.session,
            args.tool,
            tool_args,
            str(w.config.workspace),
            claimed_intent_id=args.intent,
        )
    finally:
        w.close()
    _print_json(res.to_dict())
    return EXIT_DENIED if res.denied else 0


def cmd_trace(args: argparse.Namespace) -> int:
    cfg = load_config(args.workspace or Path.cwd(), args.config)
    records = read_trace_log(cfg.trace_log)
    if args.session:
        records = [r for r in records if r.get("task_id") == args.session]
    if args.metrics:
        _print_json(analyze_trace_metrics(records))
        return 0
    for r in records[-args.tail:] if args.tail else records:
        sys.stdout.write(json.dumps(r, sort_keys=True) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="intent-warden")
    p.add_argument("--workspace", help="Workspace root (defaults to the current directory)")
    p.add_argument("--config", help="Config path (defaults to <workspace>/.orchestration/warden.yaml)")
    p.add_argument("--log", help="Log file (defaults to <workspace>/.orchestration/intent-warden.log)")
    p.add_argument("-q", "--quiet", action="store_true", help="Do not echo warnings to the console")
    p.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG regardless of logging.level")

    sub = p.add_subparsers(dest="subcmd", required=True)

    sp = sub.add_parser("intents", help="List intents from the intent file")
    sp.set_defaults(func=cmd_intents)

    sp = sub.add_parser("declare", help="Declare the active intent for a session")
    sp.add_argument("session")
    sp.add_argument("intent")
    sp.set_defaults(func=cmd_declare)

    sp = sub.add_parser("clear", help="Clear the active intent of a session")
    sp.add_argument("session")
    sp.set_defaults(func=cmd_clear)

    sp = sub.add_parser("status", help="Show session -> intent table")
    sp.add_argument("session", nargs="?")
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("classify", help="Classify a shell command by risk")
    sp.add_argument("command", nargs=argparse.REMAINDER)
    sp.set_defaults(func=cmd_classify)

    sp = sub.add_parser("check", help="Run the pre-execution hooks for one tool call")
    sp.add_argument("session")
    sp.add_argument("tool")
    sp.add_argument("--args", default="{}", help="Tool arguments as a JSON object")
    sp.add_argument("--intent", default=None, help="Intent the caller claims to work under")
    sp.set_defaults(func=cmd_check)

    sp = sub.add_parser("trace", help="Print trace records or metrics")
    sp.add_argument("--session", default=None)
    sp.add_argument("--tail", type=int, default=0)
    sp.add_argument("--metrics", action="store_true")
    sp.set_defaults(func=cmd_trace)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
