"""CLI for boardparse - parse board posts and maintain backlinks."""

import argparse
import json
import logging
import platform
import subprocess
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .core.board import BoardConfig
from .core.errors import BoardParseError
from .core.model import BlockGroup, Diagnostic, Node, ParseResult, Reference
from .core.render import node_to_dict, render_html, render_text
from .runtime import build_runtime


def _read_body(source: str | None) -> str:
    """Read a post body from a file, or stdin for None / "-"."""
    if source is None or source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _diag_dict(d: Diagnostic) -> dict[str, Any]:
    return {
        "code": d.code,
        "message": d.message,
        "severity": d.severity,
        "span": [d.span.start, d.span.end] if d.span else None,
    }


def _outline(node: Node, depth: int = 0) -> list[str]:
    pad = "  " * depth
    if isinstance(node, BlockGroup):
        lines = [f"{pad}{node.kind}"]
        for child in node.children:
            lines.extend(_outline(child, depth + 1))
        return lines
    if isinstance(node, Reference):
        where = f"thread {node.thread_id}" if node.thread_id is not None else "this thread"
        return [f"{pad}reference {node.raw} -> post {node.post_id} ({where})"]
    return [f"{pad}{type(node).__name__.lower()} {render_text(node)!r}"]


def _git_commit() -> str:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            cwd=Path(__file__).resolve().parent,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return "unknown"
    return result.stdout.strip() if result.returncode == 0 else "unknown"


def version_text() -> str:
    return "\n".join([
        f"boardparse {__version__}",
        f"python {platform.python_version()}",
        f"platform {platform.system().lower()}-{platform.machine()}",
        f"commit {_git_commit()}",
    ])


class _VersionAction(argparse.Action):
    """Print version details; computed only when asked for."""

    def __init__(self, option_strings: list[str], dest: str, **kwargs: Any):
        super().__init__(option_strings, dest, nargs=0, help="Show version and exit")

    def __call__(
        self,
        parser: argparse.ArgumentParser,
        namespace: Any,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        print(version_text())
        parser.exit()


def cmd_parse(args: argparse.Namespace, rt: Any) -> int:
    """Parse a body without touching storage."""
    text = _read_body(args.file)
    document, diagnostics = rt.parser.parse(text, args.board)

    if args.json:
        print(json.dumps({
            "document": node_to_dict(document),
            "diagnostics": [_diag_dict(d) for d in diagnostics],
        }, indent=2))
    elif args.html:
        print(render_html(document, diagnostics))
    else:
        for line in _outline(document):
            print(line)
        if not args.quiet:
            for d in diagnostics:
                print(f"[{d.severity}] {d.code}: {d.message}")
    return 0


def _print_result(args: argparse.Namespace, post_id: int, result: ParseResult) -> None:
    if args.json:
        print(json.dumps({
            "post": post_id,
            "document": node_to_dict(result.document),
            "references": [
                {"target": r.target, "thread": r.thread} for r in result.references
            ],
            "diagnostics": [_diag_dict(d) for d in result.diagnostics],
            "sync_pending": result.sync_pending,
        }, indent=2))
        return

    print(render_html(result.document, result.diagnostics))
    if args.quiet:
        return
    for r in result.references:
        print(f"  -> >>{r.target} (thread {r.thread})")
    for d in result.diagnostics:
        print(f"  [{d.severity}] {d.code}: {d.message}")
    if result.sync_pending:
        print("  backlink sync queued for retry")


def cmd_post(args: argparse.Namespace, rt: Any) -> int:
    """Create or edit a post and sync its backlinks."""
    text = _read_body(args.file)

    if args.thread is not None:
        if rt.gateway.thread_board(args.thread) is None:
            rt.gateway.register_thread(args.thread, args.board)
        rt.gateway.register_post(args.id, args.thread)
    else:
        exists, _thread = rt.gateway.post_exists(args.id)
        if not exists:
            print(f"Post {args.id} not found (pass --thread to create it)", file=sys.stderr)
            return 1

    previous = rt.gateway.outgoing(args.id)
    result = rt.parser.parse_and_persist(text, args.board, args.id, previous)
    _print_result(args, args.id, result)
    return 0


def cmd_rm(args: argparse.Namespace, rt: Any) -> int:
    """Delete a post and drop its outgoing backlinks."""
    exists, _thread = rt.gateway.post_exists(args.id)
    if not exists:
        print(f"Post {args.id} not found", file=sys.stderr)
        return 1

    report = rt.parser.delete_post(args.id)
    rt.gateway.mark_deleted(args.id)

    if not args.quiet:
        if report is None:
            print(f"Deleted {args.id} (backlink removal queued)")
        else:
            print(f"Deleted {args.id} (-{len(report.removals)} backlinks)")
    return 0


def cmd_backlinks(args: argparse.Namespace, rt: Any) -> int:
    """Show posts that reference a post."""
    refs = rt.gateway.backlinks(args.id)

    if args.json:
        print(json.dumps([{"source": r.source, "thread": r.thread} for r in refs], indent=2))
    else:
        for r in refs:
            print(f">>{r.source}")
        if not refs and not args.quiet:
            print(f"No backlinks for {args.id}")
    return 0


def cmd_seed(args: argparse.Namespace, rt: Any) -> int:
    """Register threads and posts from a YAML fixture."""
    from .adapters.yaml_seed import apply_seed, load_seed

    counts = apply_seed(load_seed(Path(args.file)), rt.gateway)
    if not args.quiet:
        print(f"Threads: {counts['threads']}")
        print(f"Posts: {counts['posts']}")
    return 0


def _board_dict(config: BoardConfig) -> dict[str, Any]:
    return {
        "allowed_markup": sorted(config.allowed_markup),
        "reference_sigil": config.reference_sigil,
        "nesting_policy": config.nesting_policy.value,
        "max_nesting_depth": config.max_nesting_depth,
        "max_body_length": config.max_body_length,
        "delimiters": {k: list(v) for k, v in sorted(config.delimiters.items())},
    }


def cmd_config(args: argparse.Namespace, rt: Any) -> int:
    """Print the effective config of a board."""
    if args.board:
        config = rt.provider.get_board_config(args.board)
    else:
        config = rt.provider.snapshot().defaults
    data = _board_dict(config)

    if args.json:
        print(json.dumps(data, indent=2))
    else:
        source = rt.config.path or "built-in defaults"
        if not args.quiet:
            print(f"# from {source}")
        for key, value in data.items():
            print(f"{key} = {value}")
    return 0


def cmd_watch(args: argparse.Namespace, rt: Any) -> int:
    """Watch the config file and hot-reload board settings."""
    from .watch import watch_config

    debounce_ms = args.debounce_ms or rt.config.watch.debounce_ms
    return watch_config(
        rt.provider,
        debounce_ms=debounce_ms,
        quiet=args.quiet,
        json_output=args.json,
    )


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="boardparse", description="Board post parser"
    )
    parser.add_argument(
        "--version", action=_VersionAction
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: ./boardparse.toml)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to SQLite DB (overrides config)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Minimize output"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug output to stderr"
    )
    parser.add_argument(
        "--json", action="store_true", help="Machine-readable output"
    )

    subparsers = parser.add_subparsers(dest="cmd", required=True)

    # parse command
    parser_parse = subparsers.add_parser("parse", help="Parse a body without storing it")
    parser_parse.add_argument("file", nargs="?", help="Body file (default: stdin)")
    parser_parse.add_argument("--board", default="", help="Board whose grammar applies")
    parser_parse.add_argument("--html", action="store_true", help="Render as HTML")

    # post command
    parser_post = subparsers.add_parser("post", help="Create or edit a post")
    parser_post.add_argument("id", type=int, help="Post ID")
    parser_post.add_argument("file", nargs="?", help="Body file (default: stdin)")
    parser_post.add_argument("--board", default="", help="Board whose grammar applies")
    parser_post.add_argument(
        "--thread", type=int, default=None, help="Thread to create the post in"
    )

    # rm command
    parser_rm = subparsers.add_parser("rm", help="Delete a post")
    parser_rm.add_argument("id", type=int, help="Post ID")

    # backlinks command
    parser_backlinks = subparsers.add_parser("backlinks", help="Show posts referencing a post")
    parser_backlinks.add_argument("id", type=int, help="Post ID")

    # seed command
    parser_seed = subparsers.add_parser("seed", help="Load threads and posts from YAML")
    parser_seed.add_argument("file", help="YAML fixture file")

    # config command
    parser_config = subparsers.add_parser("config", help="Show effective board config")
    parser_config.add_argument("--board", default=None, help="Board ID (default: defaults)")

    # watch command
    parser_watch = subparsers.add_parser("watch", help="Hot-reload the config file")
    parser_watch.add_argument(
        "--debounce-ms", dest="debounce_ms", type=int, default=None,
        help="Debounce window in milliseconds (default: from config)",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    try:
        rt = build_runtime(config_path=args.config, db_path=args.db)
    except BoardParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    handlers = {
        "parse": cmd_parse,
        "post": cmd_post,
        "rm": cmd_rm,
        "backlinks": cmd_backlinks,
        "seed": cmd_seed,
        "config": cmd_config,
        "watch": cmd_watch,
    }

    handler = handlers.get(args.cmd)
    if handler:
        try:
            exit_code = handler(args, rt)
            sys.exit(exit_code)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        print(f"Unknown command: {args.cmd}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
