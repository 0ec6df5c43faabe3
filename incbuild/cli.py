"""CLI entrypoints for incbuild commands."""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

from .config import ConfigError
from .errors import BuildError, CycleError
from .logging import configure_logging
from .models import RunResult
from .orchestrator import BuildOrchestrator, BuildPlan

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2
EXIT_INTERRUPTED = 130


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )


def _add_scope_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--category",
        dest="categories",
        action="append",
        metavar="NAME",
        help="Restrict the run to a build category (repeatable).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Rebuild every category regardless of the manifest.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="incbuild",
        description="Rebuild only what changed, in dependency order, in parallel.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Run the tasks for stale build targets.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_path_argument(build_parser)
    _add_scope_options(build_parser)
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Maximum number of tasks to run at once (defaults to the CPU count).",
    )
    build_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Schedule tasks without running commands or writing the manifest.",
    )
    build_parser.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Treat skipped tasks as a failed run.",
    )
    build_parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write debug-friendly logs to this file.",
    )
    build_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run summary as JSON.",
    )

    plan_parser = subparsers.add_parser(
        "plan",
        help="Show stale files and the task order without executing anything.",
    )
    _add_verbose_option(plan_parser, suppress_default=True)
    _add_path_argument(plan_parser)
    _add_scope_options(plan_parser)

    graph_parser = subparsers.add_parser(
        "graph",
        help="Print dependency graph statistics or the cycle that breaks it.",
    )
    _add_verbose_option(graph_parser, suppress_default=True)
    _add_path_argument(graph_parser)
    graph_parser.add_argument(
        "--json",
        action="store_true",
        help="Export nodes and edges as JSON.",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint for incbuild commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose),
        log_file=getattr(args, "log_file", None),
    )

    orchestrator = BuildOrchestrator()

    try:
        if args.command == "build":
            return _run_build(orchestrator, args)
        if args.command == "plan":
            build_plan = orchestrator.plan(
                args.path, categories=args.categories, force=bool(args.force)
            )
            _print_plan(build_plan)
            return EXIT_OK
        if args.command == "graph":
            return _run_graph(orchestrator, args)
    except CycleError as exc:
        print(f"incbuild {args.command} aborted: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except ConfigError as exc:
        print(f"incbuild configuration error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except (BuildError, FileNotFoundError, NotADirectoryError) as exc:
        print(f"incbuild {args.command} failed: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print(f"incbuild {args.command} aborted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    return EXIT_ERROR  # pragma: no cover - argparse enforces choices


def _run_build(orchestrator: BuildOrchestrator, args: argparse.Namespace) -> int:
    cancel_event = threading.Event()
    previous = _install_interrupt_handler(cancel_event)
    try:
        result = orchestrator.run(
            args.path,
            categories=args.categories,
            force=bool(args.force),
            dry_run=bool(args.dry_run),
            cancel_event=cancel_event,
            max_workers=args.jobs,
            strict=args.strict,
        )
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)
    return EXIT_OK if result.success else EXIT_FAILED


def _run_graph(orchestrator: BuildOrchestrator, args: argparse.Namespace) -> int:
    try:
        build_plan = orchestrator.plan(args.path)
    except CycleError as exc:
        print(f"Cycle: {' -> '.join(exc.cycle)}")
        return EXIT_ERROR
    graph = build_plan.graph
    if args.json:
        print(json.dumps(graph.to_dict(), indent=2))
        return EXIT_OK
    for key, value in graph.statistics().items():
        if isinstance(value, dict):
            value = ", ".join(f"{name}={count}" for name, count in value.items()) or "-"
        elif isinstance(value, float):
            value = f"{value:.2f}"
        print(f"{key}: {value}")
    return EXIT_OK


def _install_interrupt_handler(cancel_event: threading.Event):
    if threading.current_thread() is not threading.main_thread():
        return None

    def _handle(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        print("Cancelling; waiting for running tasks (press Ctrl-C again to abort)", file=sys.stderr)
        cancel_event.set()

    return signal.signal(signal.SIGINT, _handle)


def _print_plan(build_plan: BuildPlan) -> None:
    scope = build_plan.scope
    print(f"{len(scope.stale_files)} stale of {len(build_plan.graph)} files")
    for path in sorted(scope.stale_files):
        print(f"  stale: {path}")
    for path in sorted(scope.removed_files):
        print(f"  removed: {path}")
    if not build_plan.tasks:
        print("Everything is up to date")
        return
    for task in build_plan.tasks:
        depends = f" (after {', '.join(task.depends_on)})" if task.depends_on else ""
        print(f"{task.id}: {len(task.files)} files{depends}")
    if scope.up_to_date:
        print(f"Up to date: {', '.join(scope.up_to_date)}")


def _print_result(result: RunResult) -> None:
    if not result.tasks:
        print("Everything is up to date")
        return
    for report in result.tasks:
        duration = f"{report.duration:.2f}s" if report.duration is not None else "-"
        line = f"{report.status.value:>9}  {report.id}  {duration}"
        if report.error:
            line += f"  {report.error.splitlines()[-1]}"
        print(line)
    print(
        f"{result.outcome.value}: {result.succeeded} succeeded, {result.failed} failed, "
        f"{result.skipped} skipped, {result.cancelled} cancelled in {result.duration:.2f}s"
    )


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
