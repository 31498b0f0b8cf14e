from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional

from docker.errors import APIError, BuildError, DockerException
from pydantic import BaseModel, ConfigDict, Field

from pg_stat_dumper.errors import ImageBuildError
from pg_stat_dumper.runtime import log, stream_command
from pg_stat_dumper.tasks.client import get_docker_client


MANIFEST_FILES = ("pyproject.toml", "requirements.lock")
DEFAULT_DOCKERFILE = "Dockerfile"
BUILDKIT_ENV = "DOCKER_BUILDKIT"


class ImageBuildRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    context_dir: str = Field(..., description="Build context holding the Dockerfile and manifests")
    dockerfile: str = Field(DEFAULT_DOCKERFILE, description="Dockerfile path relative to the context")
    buildkit: bool = Field(False, description="Build with BuildKit through the docker CLI")
    force_rebuild: bool = Field(False, description="Ignore the layer cache")


class ImageBuildResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_id: str
    buildkit: bool


def _validate_context(request: ImageBuildRequest) -> Path:
    context_dir = Path(request.context_dir).resolve()
    if not context_dir.exists():
        raise FileNotFoundError(f"Build context '{context_dir}' does not exist.")
    if not context_dir.is_dir():
        raise NotADirectoryError(f"Build context '{context_dir}' is not a directory.")

    for name in (request.dockerfile, *MANIFEST_FILES):
        path = context_dir / name
        if not path.is_file():
            raise FileNotFoundError(f"Required file '{path}' does not exist.")
    return context_dir


def _consume_build_output(output: Iterable[dict[str, Any]]) -> Optional[str]:
    image_id = None
    for entry in output:
        if "stream" in entry:
            sys.stderr.write(entry["stream"])
        if "error" in entry:
            raise ImageBuildError(str(entry["error"]).strip())
        aux = entry.get("aux")
        if isinstance(aux, dict) and aux.get("ID"):
            image_id = aux["ID"]
    sys.stderr.flush()
    return image_id


def _build_classic(client, context_dir: Path, request: ImageBuildRequest) -> str:
    try:
        output = client.api.build(
            path=str(context_dir),
            dockerfile=request.dockerfile,
            decode=True,
            rm=True,
            forcerm=True,
            nocache=request.force_rebuild,
        )
        image_id = _consume_build_output(output)
    except (BuildError, APIError, DockerException) as exc:
        raise ImageBuildError("Docker build failed.") from exc
    if not image_id:
        raise ImageBuildError("Docker build finished without reporting an image id.")
    return image_id


def _build_with_buildkit(context_dir: Path, request: ImageBuildRequest) -> str:
    env = dict(os.environ)
    env[BUILDKIT_ENV] = "1"
    with tempfile.TemporaryDirectory(prefix="psd-build-") as tmp:
        iid_path = Path(tmp) / "image.iid"
        cmd = ["docker", "build", "--iidfile", str(iid_path), "-f", request.dockerfile]
        if request.force_rebuild:
            cmd.append("--no-cache")
        cmd.append(".")

        exit_code = stream_command(cmd, cwd=context_dir, env=env)
        if exit_code != 0:
            raise ImageBuildError(f"docker build exited with status {exit_code}.", exit_code=exit_code)
        if not iid_path.exists():
            raise ImageBuildError("docker build finished without writing an image id.")
        image_id = iid_path.read_text(encoding="utf-8").strip()
    if not image_id:
        raise ImageBuildError("docker build wrote an empty image id.")
    return image_id


def build_image(request: ImageBuildRequest) -> ImageBuildResponse:
    context_dir = _validate_context(request)

    if request.buildkit:
        log(f"building image from {context_dir} with BuildKit")
        image_id = _build_with_buildkit(context_dir, request)
    else:
        log(f"building image from {context_dir}")
        client = get_docker_client(ImageBuildError)
        image_id = _build_classic(client, context_dir, request)

    log(f"image ready: {image_id}")
    return ImageBuildResponse(image_id=image_id, buildkit=request.buildkit)
