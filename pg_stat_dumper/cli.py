from __future__ import annotations

import argparse
from collections.abc import Callable

from pg_stat_dumper.commands import doctor, sample, workflow


CommandHandler = Callable[[argparse.Namespace], int]


def _add_context_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--context",
        default=".",
        help="Build context holding Dockerfile, pyproject.toml and requirements.lock (default: current directory)",
    )
    parser.add_argument("--dockerfile", default="Dockerfile", help="Dockerfile path relative to the context")


def _add_json_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a JSON report to stdout instead of plain output.",
    )


def _add_workflow_args(parser: argparse.ArgumentParser) -> None:
    _add_context_args(parser)
    _add_json_arg(parser)
    parser.add_argument(
        "--buildkit",
        dest="buildkit",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Build with BuildKit (default: DOCKER_BUILDKIT if set, otherwise on)",
    )
    parser.add_argument("--force-rebuild", action="store_true", help="Ignore the image layer cache")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="psd",
        description="pg_stat_activity sampler and its container build tasks",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    warm_parser = subparsers.add_parser("warm", help="Build the dependency-cache image and print its id")
    _add_workflow_args(warm_parser)

    build_parser_ = subparsers.add_parser(
        "build",
        help="Run warm, then build release wheels into ./dist inside a throwaway container",
    )
    _add_workflow_args(build_parser_)

    doctor_parser = subparsers.add_parser("doctor", help="Check docker and the build inputs")
    _add_context_args(doctor_parser)
    _add_json_arg(doctor_parser)

    sample_parser = subparsers.add_parser("sample", help="Poll pg_stat_activity into a .jsonl.zst file")
    sample_parser.add_argument("--output-dir", default=".", help="Directory for the output file")

    subparsers.add_parser("show", help="Print non-idle pg_stat_activity rows as a table")

    return parser


HANDLERS: dict[str, CommandHandler] = {
    "warm": workflow.run_warm,
    "build": workflow.run_build,
    "doctor": doctor.run,
    "sample": sample.run,
    "show": sample.run_show,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = HANDLERS.get(args.command)
    if handler is None:
        parser.error(f"Unknown command: {args.command}")
    return handler(args)
