"""CLI entry point for localagents."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path


def _configure_logging(verbose: bool) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _read_task(raw: str) -> str:
    """Inline task text, or the contents of the file it names."""
    candidate = Path(raw).expanduser()
    try:
        if candidate.is_file():
            return candidate.read_text()
    except OSError:
        pass
    return raw


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the localagents CLI."""
    parser = argparse.ArgumentParser(
        prog="localagents",
        description="Run a TDD agent swarm against local llama.cpp backends",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Generate .localagents/localagents.toml from source defaults",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Decompose and execute a task")
    run_parser.add_argument("task", help="Task text, or a path to a file containing it")
    run_parser.add_argument(
        "--slots",
        type=int,
        default=None,
        help="Override the number of parallel worker slots",
    )
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    probe_parser = subparsers.add_parser("probe", help="Probe backends and print the report")
    probe_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    _args = parser.parse_args(argv)

    if _args.init:
        from localagents.config import init_config

        path = init_config(Path.cwd())
        print(f"Wrote {path}")
        return 0

    if _args.command == "run":
        if _args.slots is not None and _args.slots < 1:
            parser.error("--slots must be a positive integer")
        _configure_logging(_args.verbose)

        from localagents.config import load_config
        from localagents.runner import PipelineRunner

        task = _read_task(_args.task).strip()
        if not task:
            parser.error("task must not be empty")

        runner = PipelineRunner(load_config(Path.cwd()), agent_work_dir=Path.cwd())
        try:
            outcome = runner.run(task, slot_override=_args.slots)
        finally:
            runner.close()
        print(json.dumps(outcome.payload, indent=2))
        return 1 if outcome.aborted else 0

    if _args.command == "probe":
        _configure_logging(_args.verbose)

        from localagents.config import load_config
        from localagents.runner import PipelineRunner

        runner = PipelineRunner(load_config(Path.cwd()), agent_work_dir=Path.cwd())
        try:
            report = runner.probe()
        finally:
            runner.close()
        print(report.model_dump_json(indent=2))
        return 0 if report.ready else 1

    parser.print_help()
    return 0


def _get_version() -> str:
    from localagents import __version__

    return __version__


if __name__ == "__main__":
    sys.exit(main())
