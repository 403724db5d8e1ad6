"""Command-line interface for inspecting and bounding native thread pools."""

import argparse
import importlib
import json
import logging
import subprocess
import sys

logger = logging.getLogger("threadbudget")


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI usage."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def _import_modules(names: list[str] | None) -> None:
    """Import modules so the native libraries they pull in are loaded before scanning."""
    for name in names or []:
        try:
            importlib.import_module(name)
        except ImportError as e:
            logger.error(f"Could not import {name}: {e}")
            sys.exit(1)
        logger.debug(f"Imported {name}")


def cmd_info(args: argparse.Namespace) -> None:
    """List detected runtimes."""
    from threadbudget.context import get_default_context

    _import_modules(args.imports)
    snapshot = get_default_context().refresh()

    if args.json:
        print(json.dumps(snapshot.to_list(), indent=2))
        return

    if not snapshot.runtimes:
        logger.info("No native concurrency runtimes detected")
        return

    print(f"{'Vendor':<10} {'Kind':<15} {'Threads':>7} {'Max':>5} {'Control':<9} {'Fork':<6} Path")
    print("-" * 80)
    for info in snapshot:
        control = "yes" if info.controllable else "read-only"
        fork = "safe" if info.fork_safe else "unsafe"
        print(
            f"{info.vendor.value:<10} {info.api_kind.value:<15} "
            f"{info.current_limit:>7} {info.native_max:>5} {control:<9} {fork:<6} {info.path}"
        )
        if args.verbose and (info.version or info.threading_layer):
            print(f"  version: {info.version or '?'}  threading layer: {info.threading_layer or '?'}")


def cmd_check(args: argparse.Namespace) -> None:
    """Report conflicts between loaded runtimes."""
    from threadbudget.context import get_default_context
    from threadbudget.types import Severity

    _import_modules(args.imports)
    context = get_default_context()
    context.refresh()
    findings = context.check_conflicts()

    if args.json:
        print(json.dumps([f.to_dict() for f in findings], indent=2))
    elif not findings:
        logger.info("No conflicts found")
    else:
        for finding in findings:
            print(f"[{finding.severity.value.upper()}] {finding.rule_id}: {finding.message}")

    if args.strict and any(f.severity == Severity.FATAL for f in findings):
        sys.exit(1)


def cmd_exec(args: argparse.Namespace) -> None:
    """Run a command with every thread-count variable set to the limit."""
    from threadbudget._threading import thread_env

    argv = list(args.argv)
    if argv and argv[0] == "--":
        argv = argv[1:]
    if not argv:
        logger.error("No command given")
        sys.exit(2)
    if args.limit < 1:
        logger.error(f"--limit must be a positive integer, got {args.limit}")
        sys.exit(2)

    logger.debug(f"Running {argv} with {args.limit} thread(s) per runtime")
    try:
        result = subprocess.run(argv, env=thread_env(args.limit))
    except FileNotFoundError:
        logger.error(f"Command not found: {argv[0]}")
        sys.exit(127)
    sys.exit(result.returncode)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the threadbudget CLI."""
    parser = argparse.ArgumentParser(
        prog="threadbudget",
        description="Inspect and bound native thread pools (OpenMP, BLAS, ...)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # info
    p_info = subparsers.add_parser("info", help="list detected runtimes")
    p_info.add_argument("--json", action="store_true", help="print JSON")
    p_info.add_argument(
        "--import", dest="imports", action="append", metavar="MODULE",
        help="import MODULE before scanning (repeatable)",
    )

    # check
    p_check = subparsers.add_parser("check", help="report runtime conflicts")
    p_check.add_argument("--json", action="store_true", help="print JSON")
    p_check.add_argument("--strict", action="store_true", help="exit 1 on fatal conflicts")
    p_check.add_argument(
        "--import", dest="imports", action="append", metavar="MODULE",
        help="import MODULE before scanning (repeatable)",
    )

    # exec
    p_exec = subparsers.add_parser("exec", help="run a command with bounded thread pools")
    p_exec.add_argument("--limit", type=int, required=True, help="threads per runtime")
    p_exec.add_argument("argv", nargs=argparse.REMAINDER, help="command to run (after --)")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    commands = {
        "info": cmd_info,
        "check": cmd_check,
        "exec": cmd_exec,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
