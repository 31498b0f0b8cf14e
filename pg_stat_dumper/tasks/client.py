from __future__ import annotations

import docker
from docker.errors import DockerException

from pg_stat_dumper.errors import TaskError


def docker_available() -> bool:
    try:
        client = docker.from_env()
        client.ping()
        return True
    except DockerException:
        return False


def get_docker_client(error_cls: type[TaskError] = TaskError):
    try:
        client = docker.from_env()
        client.ping()
        return client
    except DockerException as exc:
        raise error_cls("Docker is not available.") from exc
