"""
transform-copilot command line.

    transform-copilot [--project-dir DIR] [--profiles-dir DIR] [--target NAME] <command> ...

Exit codes: 0 success, 1 a node/test/freshness check failed or the
warehouse rejected a statement, 2 the project or invocation is invalid.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set

from transform_copilot import __version__
from transform_copilot.core.config import Settings, configure_logging
from transform_copilot.core.errors import TransformError

log = logging.getLogger("transform.cli")

_RUN_COMMANDS = ("run", "seed", "snapshot", "test", "build")


def _add_global_flags(p: argparse.ArgumentParser, *, suppress: bool) -> None:
    # Subcommands repeat the global flags; SUPPRESS keeps them from
    # overwriting a value given before the command name.
    d = (lambda v: argparse.SUPPRESS) if suppress else (lambda v: v)
    p.add_argument("--project-dir", default=d("."), help="Directory containing transform_project.yml")
    p.add_argument("--profiles-dir", default=d(None), help="Directory containing profiles.yml")
    p.add_argument("--target", "-t", default=d(None), help="Profile output to use")
    p.add_argument("--target-path", default=d(None), help="Artifact directory (default: target)")
    p.add_argument("--vars", default=d(None), help="YAML mapping of project variables")
    p.add_argument("--log-level", default=d(None), help="DEBUG, INFO, WARNING, ERROR")


def _add_selection(p: argparse.ArgumentParser) -> None:
    p.add_argument("--select", "-s", nargs="+", default=None, help="Node selectors")
    p.add_argument("--exclude", nargs="+", default=None, help="Node selectors to exclude")


def _add_dry_run(p: argparse.ArgumentParser) -> None:
    p.add_argument("--dry-run", action="store_true", help="Render SQL in the target dialect without executing")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="transform-copilot", description="SQL transformation workflows")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _add_global_flags(ap, suppress=False)
    sub = ap.add_subparsers(dest="command", metavar="<command>")

    def command(name: str, help_text: str, parent=sub) -> argparse.ArgumentParser:
        p = parent.add_parser(name, help=help_text)
        _add_global_flags(p, suppress=True)
        return p

    p = command("debug", "Check the project, profile and warehouse connection")
    _add_dry_run(p)

    p = command("parse", "Parse the project and write manifest.json")

    p = command("ls", "List selected nodes")
    _add_selection(p)
    p.add_argument("--resource-type", nargs="+", default=None, help="model, seed, snapshot, test, source")
    p.add_argument("--output", choices=["name", "unique_id", "path", "json"], default="unique_id")

    p = command("compile", "Render SQL for selected nodes into target/compiled")
    _add_selection(p)
    _add_dry_run(p)

    for name, help_text in (
        ("run", "Materialize selected models"),
        ("seed", "Load CSV seeds"),
        ("snapshot", "Capture snapshot history"),
        ("test", "Run data tests"),
        ("build", "Seed, run, snapshot and test in lineage order"),
    ):
        p = command(name, help_text)
        _add_selection(p)
        _add_dry_run(p)
        p.add_argument("--threads", type=int, default=None)
        if name in ("run", "seed", "build"):
            p.add_argument("--full-refresh", action="store_true", help="Rebuild incremental models and seeds")

    src = command("source", "Source commands")
    src_sub = src.add_subparsers(dest="subcommand", metavar="<subcommand>")
    p = command("freshness", "Check source freshness", parent=src_sub)
    _add_selection(p)
    _add_dry_run(p)

    docs = command("docs", "Documentation commands")
    docs_sub = docs.add_subparsers(dest="subcommand", metavar="<subcommand>")
    p = command("generate", "Write manifest.json and catalog.json", parent=docs_sub)
    _add_dry_run(p)

    guide = command("guide", "Tutorial commands")
    guide_sub = guide.add_subparsers(dest="subcommand", metavar="<subcommand>")
    p = command("check", "Check Markdown guides", parent=guide_sub)
    p.add_argument("paths", nargs="*", default=["docs"], help="Markdown files or directories")
    p.add_argument("--threshold", type=float, default=None, help="Near-duplicate similarity threshold")
    p.add_argument("--strict", action="store_true", help="Treat warnings as errors")
    p.add_argument("--json", action="store_true", dest="as_json", help="Print findings as JSON")
    return ap


def command_tree(parser: Optional[argparse.ArgumentParser] = None) -> Dict[str, Set[str]]:
    """Top-level commands mapped to their subcommands (empty when none)."""
    parser = parser or build_parser()
    tree: Dict[str, Set[str]] = {}
    for action in parser._actions:
        if not isinstance(action, argparse._SubParsersAction):
            continue
        for name, sub in action.choices.items():
            subs: Set[str] = set()
            for a in sub._actions:
                if isinstance(a, argparse._SubParsersAction):
                    subs |= set(a.choices)
            tree[name] = subs
    return tree


# ------------------------------------------------------------------
# handlers
# ------------------------------------------------------------------
def _session(args, settings: Settings):
    from transform_copilot.core.session import open_session, parse_cli_vars

    profiles_dir = Path(args.profiles_dir) if args.profiles_dir else settings.profiles_dir
    return open_session(
        Path(args.project_dir),
        profiles_dir,
        target=args.target or settings.target,
        cli_vars=parse_cli_vars(args.vars),
        dry_run=getattr(args, "dry_run", False),
        target_path=args.target_path or settings.target_path,
    )


def _cmd_debug(args, settings: Settings) -> int:
    from transform_copilot.core.adapters.registry import create_adapter
    from transform_copilot.core.profiles.loader import load_profile
    from transform_copilot.core.project.loader import load_project

    project = load_project(Path(args.project_dir))
    print(f"project: {project.name} ({project.root})")
    profiles_dir = Path(args.profiles_dir) if args.profiles_dir else settings.profiles_dir
    target = load_profile(profiles_dir, project.config.profile or project.name, args.target or settings.target)
    for k, v in sorted(target.describe().items()):
        print(f"  {k}: {v}")
    adapter = create_adapter(target, dry_run=args.dry_run)
    with adapter:
        adapter.test_connection()
    print(f"connection: OK ({adapter.name})")
    return 0


def _cmd_parse(args, settings: Settings) -> int:
    from transform_copilot.core.docs.generator import build_manifest_payload

    with _session(args, settings) as session:
        path = session.write_artifact("manifest.json", build_manifest_payload(session.manifest, session.graph))
        counts: Dict[str, int] = {}
        for node in session.manifest.all_nodes().values():
            counts[node.resource_type] = counts.get(node.resource_type, 0) + 1
        summary = ", ".join(f"{n} {k}s" for k, n in sorted(counts.items()))
        print(f"Found {summary or 'nothing'}")
        for w in session.manifest.warnings:
            print(f"WARNING: {w}")
        print(f"Wrote {path}")
    return 0


def _cmd_ls(args, settings: Settings) -> int:
    from transform_copilot.core.graph.selector import select_nodes

    with _session(args, settings) as session:
        types = set(args.resource_type) if args.resource_type else None
        selected = select_nodes(session.manifest, session.graph, args.select, args.exclude, resource_types=types)
        if args.select is None and (types is None or "source" in types):
            selected |= set(session.manifest.sources)
            if args.exclude:
                selected -= select_nodes(session.manifest, session.graph, args.exclude)
        for uid in session.graph.topological_sort(selected):
            node = session.manifest.get(uid)
            if args.output == "json":
                print(json.dumps({"unique_id": uid, "name": node.name, "resource_type": node.resource_type}))
            elif args.output == "name":
                print(node.name)
            elif args.output == "path":
                print(node.path)
            else:
                print(uid)
    return 0


def _cmd_compile(args, settings: Settings) -> int:
    from transform_copilot.core.compiler.compiler import write_compiled
    from transform_copilot.core.graph.selector import select_nodes

    with _session(args, settings) as session:
        compiler = session.compiler()
        selected = select_nodes(
            session.manifest,
            session.graph,
            args.select,
            args.exclude,
            resource_types={"model", "snapshot", "test"},
        )
        order = session.graph.topological_sort(selected)
        for uid in order:
            node = session.manifest.get(uid)
            compiled = compiler.compile(node)
            out = write_compiled(session.target_dir, session.project.name, node, compiled.sql)
            log.debug("compiled %s -> %s", uid, out)
        # Attached tests ride along with a single selected model.
        primary = [u for u in order if session.manifest.get(u).resource_type != "test"] or order
        if len(primary) == 1:
            print(compiler.compile(session.manifest.get(primary[0])).sql)
        print(f"Compiled {len(order)} nodes into {session.target_dir / 'compiled'}")
    return 0


def _print_run(run) -> None:
    for r in run.results:
        line = f"{r.status.value.upper():8} {r.unique_id}"
        if r.message:
            line += f"  [{r.message.splitlines()[0]}]"
        print(line)
    counts = run.counts()
    summary = " ".join(f"{k.upper()}={v}" for k, v in sorted(counts.items()))
    print(f"Done. {summary or 'nothing selected'} in {run.elapsed_time:.2f}s")


def _cmd_run(args, settings: Settings) -> int:
    from transform_copilot.core.execution.runner import run_task

    with _session(args, settings) as session:
        run = run_task(
            session,
            args.command,
            select=args.select,
            exclude=args.exclude,
            threads=args.threads or settings.threads,
            full_refresh=getattr(args, "full_refresh", False),
        )
        _print_run(run)
    return 0 if run.success else 1


def _cmd_source(args, settings: Settings) -> int:
    from transform_copilot.core.freshness.checker import PASS, WARN, check_freshness

    with _session(args, settings) as session:
        results = check_freshness(session, select=args.select, exclude=args.exclude)
    for r in results:
        print(f"{r.status.upper():14} {r.unique_id}  [{r.message}]")
    failed = [r for r in results if r.status not in (PASS, WARN)]
    print(f"Done. {len(results)} sources checked, {len(failed)} stale or failing")
    return 1 if failed else 0


def _cmd_docs(args, settings: Settings) -> int:
    from transform_copilot.core.docs.generator import generate_docs

    with _session(args, settings) as session:
        paths = generate_docs(session)
    print(f"Wrote {paths['manifest']}")
    print(f"Wrote {paths['catalog']}")
    return 0


def _cmd_guide(args, settings: Settings) -> int:
    from transform_copilot.core.guide.checker import DEFAULT_DUPLICATE_THRESHOLD, check_guides

    report = check_guides(
        [Path(p) for p in args.paths],
        known_commands=command_tree(),
        duplicate_threshold=args.threshold if args.threshold is not None else DEFAULT_DUPLICATE_THRESHOLD,
        root=Path(args.project_dir),
    )
    if args.as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for f in report.findings:
            print(f"{f.path}:{f.line}: {f.severity}: [{f.code}] {f.message}")
        print(f"Checked {len(report.files)} files: {len(report.errors)} errors, {len(report.warnings)} warnings")
    if not report.ok or (args.strict and report.warnings):
        return 1
    return 0


_HANDLERS = {
    "debug": _cmd_debug,
    "parse": _cmd_parse,
    "ls": _cmd_ls,
    "compile": _cmd_compile,
    "source": _cmd_source,
    "docs": _cmd_docs,
    "guide": _cmd_guide,
}
_HANDLERS.update({c: _cmd_run for c in _RUN_COMMANDS})


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        settings = Settings.from_env()
    except TransformError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return exc.exit_code
    configure_logging(args.log_level or settings.log_level)

    if not args.command:
        ap.print_help()
        return 2
    if args.command in ("source", "docs", "guide") and not getattr(args, "subcommand", None):
        print(f"ERROR: '{args.command}' needs a subcommand", file=sys.stderr)
        return 2

    try:
        return _HANDLERS[args.command](args, settings)
    except TransformError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return exc.exit_code
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
