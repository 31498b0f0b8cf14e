from types import SimpleNamespace

import pytest
from docker.errors import APIError, ImageNotFound

from pg_stat_dumper.errors import ContainerRunError
from pg_stat_dumper.tasks.container_run import (
    DEFAULT_BUILD_COMMAND,
    ContainerRunRequest,
    run_container,
)


class FakeContainer:
    id = "c0ffee"

    def __init__(self, status_code=0, output=(b"Building wheels\n",), wait_error=None):
        self.status_code = status_code
        self.output = list(output)
        self.wait_error = wait_error
        self.removed = False
        self.logs_kwargs = None

    def logs(self, **kwargs):
        self.logs_kwargs = kwargs
        return iter(self.output)

    def wait(self):
        if self.wait_error is not None:
            raise self.wait_error
        return {"StatusCode": self.status_code, "Error": None}

    def remove(self, force=False):
        self.removed = force


class FakeContainers:
    def __init__(self, container=None, error=None):
        self.container = container
        self.error = error
        self.image = None
        self.kwargs = None

    def run(self, image, **kwargs):
        self.image = image
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.container


def _client(containers: FakeContainers) -> SimpleNamespace:
    return SimpleNamespace(containers=containers)


def test_run_binds_host_dir_and_removes_container(tmp_path, capsys):
    container = FakeContainer()
    containers = FakeContainers(container)

    response = run_container(
        _client(containers),
        ContainerRunRequest(image_id="sha256:abc", host_dir=str(tmp_path)),
    )

    assert response.exit_code == 0
    assert containers.image == "sha256:abc"
    assert containers.kwargs["command"] == DEFAULT_BUILD_COMMAND
    assert containers.kwargs["working_dir"] == "/volume"
    assert containers.kwargs["volumes"] == {str(tmp_path.resolve()): {"bind": "/volume", "mode": "rw"}}
    assert containers.kwargs["detach"] is True
    assert container.logs_kwargs["follow"] is True
    assert container.removed is True
    assert "Building wheels" in capsys.readouterr().err


def test_non_zero_exit_is_propagated_and_container_removed(tmp_path):
    container = FakeContainer(status_code=3, output=["error: failed to build\n"])

    with pytest.raises(ContainerRunError) as excinfo:
        run_container(
            _client(FakeContainers(container)),
            ContainerRunRequest(image_id="sha256:abc", host_dir=str(tmp_path)),
        )

    assert excinfo.value.exit_code == 3
    assert excinfo.value.status == 3
    assert excinfo.value.task == "build"
    assert container.removed is True


def test_wait_failure_still_removes_container(tmp_path):
    container = FakeContainer(wait_error=APIError("connection reset"))

    with pytest.raises(ContainerRunError, match="Docker run failed"):
        run_container(
            _client(FakeContainers(container)),
            ContainerRunRequest(image_id="sha256:abc", host_dir=str(tmp_path)),
        )
    assert container.removed is True


def test_missing_image(tmp_path):
    containers = FakeContainers(error=ImageNotFound("no such image"))

    with pytest.raises(ContainerRunError, match="not found"):
        run_container(
            _client(containers),
            ContainerRunRequest(image_id="sha256:gone", host_dir=str(tmp_path)),
        )


def test_host_dir_must_exist(tmp_path):
    with pytest.raises(NotADirectoryError):
        run_container(
            _client(FakeContainers(FakeContainer())),
            ContainerRunRequest(image_id="sha256:abc", host_dir=str(tmp_path / "missing")),
        )


def test_custom_command_and_mount_point(tmp_path):
    containers = FakeContainers(FakeContainer())
    run_container(
        _client(containers),
        ContainerRunRequest(
            image_id="sha256:abc",
            host_dir=str(tmp_path),
            mount_point="/src",
            command=["pip", "wheel", "--wheel-dir", "out", "."],
        ),
    )
    assert containers.kwargs["working_dir"] == "/src"
    assert containers.kwargs["command"] == ["pip", "wheel", "--wheel-dir", "out", "."]


def test_default_build_is_offline_and_pinned_to_the_lock(tmp_path):
    containers = FakeContainers(FakeContainer())
    run_container(
        _client(containers),
        ContainerRunRequest(image_id="sha256:abc", host_dir=str(tmp_path)),
    )

    command = containers.kwargs["command"]
    assert command[:2] == ["pip", "wheel"]
    assert "--no-index" in command
    assert command[command.index("--find-links") + 1] == "/wheels"
    assert command[command.index("-c") + 1] == "requirements.lock"
    assert command[-1] == "."


def test_multibyte_characters_split_across_chunks_survive(tmp_path, capsys):
    container = FakeContainer(output=[b"caf\xc3", b"\xa9\n"])

    run_container(
        _client(FakeContainers(container)),
        ContainerRunRequest(image_id="sha256:abc", host_dir=str(tmp_path)),
    )

    assert "café\n" in capsys.readouterr().err
