from __future__ import annotations

import codecs
import sys
from pathlib import Path

from docker.errors import DockerException, ImageNotFound
from pydantic import BaseModel, ConfigDict, Field

from pg_stat_dumper.errors import ContainerRunError
from pg_stat_dumper.runtime import log


VOLUME_MOUNT = "/volume"
WHEEL_CACHE = "/wheels"
LOCK_FILE = "requirements.lock"
# offline, pinned to the lock the image was warmed from
DEFAULT_BUILD_COMMAND = [
    "pip",
    "wheel",
    "--no-index",
    "--find-links",
    WHEEL_CACHE,
    "-c",
    LOCK_FILE,
    "--wheel-dir",
    "dist",
    ".",
]


class ContainerRunRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_id: str = Field(..., description="Image to start the container from")
    host_dir: str = Field(..., description="Host directory bound into the container")
    mount_point: str = Field(VOLUME_MOUNT, description="Bind target and working directory")
    command: list[str] = Field(default_factory=lambda: list(DEFAULT_BUILD_COMMAND))


class ContainerRunResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_id: str
    exit_code: int


def _stream_logs(container) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    for chunk in container.logs(stdout=True, stderr=True, stream=True, follow=True):
        if isinstance(chunk, bytes):
            chunk = decoder.decode(chunk)
        sys.stderr.write(chunk)
    sys.stderr.write(decoder.decode(b"", final=True))
    sys.stderr.flush()


def run_container(client, request: ContainerRunRequest) -> ContainerRunResponse:
    host_dir = Path(request.host_dir).resolve()
    if not host_dir.is_dir():
        raise NotADirectoryError(f"Host directory '{host_dir}' is not a directory.")

    log(f"running {' '.join(request.command)} in {request.image_id}")
    container = None
    try:
        container = client.containers.run(
            request.image_id,
            command=request.command,
            working_dir=request.mount_point,
            volumes={str(host_dir): {"bind": request.mount_point, "mode": "rw"}},
            detach=True,
        )
        _stream_logs(container)
        result = container.wait()
    except ImageNotFound as exc:
        raise ContainerRunError(f"Image '{request.image_id}' not found.") from exc
    except DockerException as exc:
        raise ContainerRunError("Docker run failed.") from exc
    finally:
        if container is not None:
            try:
                container.remove(force=True)
            except DockerException as exc:
                log(f"could not remove container {container.id}: {exc}")

    exit_code = result.get("StatusCode") if isinstance(result, dict) else None
    if exit_code is None:
        raise ContainerRunError("Container exited without a status code.")
    if exit_code != 0:
        raise ContainerRunError(f"Container command exited with status {exit_code}.", exit_code=exit_code)
    return ContainerRunResponse(image_id=request.image_id, exit_code=exit_code)
