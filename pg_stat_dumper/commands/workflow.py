from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

from pg_stat_dumper.runtime import env_flag
from pg_stat_dumper.tasks.graph import TaskContext, run_task
from pg_stat_dumper.tasks.image_build import BUILDKIT_ENV


def resolve_buildkit(flag: bool | None, environ: Mapping[str, str] | None = None) -> bool:
    """An explicit flag wins, then ``DOCKER_BUILDKIT``; with neither, BuildKit is on."""
    if flag is not None:
        return flag
    environ = os.environ if environ is None else environ
    if BUILDKIT_ENV in environ:
        return env_flag(BUILDKIT_ENV, environ)
    return True


def context_from_args(args: Any) -> TaskContext:
    return TaskContext(
        context_dir=Path(getattr(args, "context", ".")).resolve(),
        dockerfile=getattr(args, "dockerfile", "Dockerfile"),
        buildkit=resolve_buildkit(getattr(args, "buildkit", None)),
        force_rebuild=bool(getattr(args, "force_rebuild", False)),
    )


def _run(target: str, args: Any) -> int:
    ctx = context_from_args(args)
    exit_code, results = run_task(target, ctx)

    if getattr(args, "json", False):
        payload = {
            "exit_code": exit_code,
            "image_id": ctx.image_id,
            "target": target,
            "tasks": [result.as_dict() for result in results],
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
    elif target == "warm" and ctx.image_id:
        print(ctx.image_id)
    return exit_code


def run_warm(args: Any) -> int:
    return _run("warm", args)


def run_build(args: Any) -> int:
    return _run("build", args)
