from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from pg_stat_dumper.errors import ContainerRunError, TaskError
from pg_stat_dumper.runtime import log
from pg_stat_dumper.tasks import container_run, image_build
from pg_stat_dumper.tasks.client import get_docker_client


@dataclass
class TaskContext:
    context_dir: Path
    dockerfile: str = image_build.DEFAULT_DOCKERFILE
    buildkit: bool = False
    force_rebuild: bool = False
    image_id: str | None = None


@dataclass(frozen=True)
class TaskDefinition:
    name: str
    depends_on: tuple[str, ...]
    action: Callable[[TaskContext], None]


@dataclass
class TaskResult:
    task: str
    status: str
    exit_code: int | None = None
    duration_sec: float = 0.0
    notes: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "duration_sec": self.duration_sec,
            "exit_code": self.exit_code,
            "notes": list(self.notes),
            "status": self.status,
            "task": self.task,
        }


def warm(ctx: TaskContext) -> None:
    request = image_build.ImageBuildRequest(
        context_dir=str(ctx.context_dir),
        dockerfile=ctx.dockerfile,
        buildkit=ctx.buildkit,
        force_rebuild=ctx.force_rebuild,
    )
    response = image_build.build_image(request)
    ctx.image_id = response.image_id


def build(ctx: TaskContext) -> None:
    if not ctx.image_id:
        raise ContainerRunError("No image available; warm did not produce one.")
    client = get_docker_client(ContainerRunError)
    request = container_run.ContainerRunRequest(image_id=ctx.image_id, host_dir=str(ctx.context_dir))
    container_run.run_container(client, request)


TASKS: dict[str, TaskDefinition] = {
    "warm": TaskDefinition(name="warm", depends_on=(), action=warm),
    "build": TaskDefinition(name="build", depends_on=("warm",), action=build),
}


def resolve_order(target: str, tasks: dict[str, TaskDefinition] | None = None) -> list[str]:
    """Return ``target`` and its dependencies, dependencies first.

    Each task appears once. Unknown names and dependency cycles raise
    ``ValueError``.
    """
    tasks = TASKS if tasks is None else tasks
    order: list[str] = []
    visiting: set[str] = set()

    def _visit(name: str) -> None:
        if name in order:
            return
        if name in visiting:
            raise ValueError(f"Dependency cycle through task '{name}'.")
        definition = tasks.get(name)
        if definition is None:
            raise ValueError(f"Unknown task '{name}'.")
        visiting.add(name)
        for dependency in definition.depends_on:
            _visit(dependency)
        visiting.discard(name)
        order.append(name)

    _visit(target)
    return order


def run_task(
    target: str,
    ctx: TaskContext,
    tasks: dict[str, TaskDefinition] | None = None,
) -> tuple[int, list[TaskResult]]:
    tasks = TASKS if tasks is None else tasks
    order = resolve_order(target, tasks)

    results: list[TaskResult] = []
    for index, name in enumerate(order):
        started = time.perf_counter()
        try:
            tasks[name].action(ctx)
        except TaskError as exc:
            exit_code = exc.status
            note = str(exc)
        except OSError as exc:
            exit_code = 1
            note = str(exc)
        else:
            results.append(
                TaskResult(
                    task=name,
                    status="pass",
                    exit_code=0,
                    duration_sec=round(time.perf_counter() - started, 3),
                )
            )
            continue

        log(f"{name} failed: {note}")
        results.append(
            TaskResult(
                task=name,
                status="fail",
                exit_code=exit_code,
                duration_sec=round(time.perf_counter() - started, 3),
                notes=[note],
            )
        )
        for skipped in order[index + 1 :]:
            results.append(
                TaskResult(task=skipped, status="skipped", notes=["Skipped due to prior failure."])
            )
        return exit_code, results

    return 0, results
