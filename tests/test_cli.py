import json

import pytest

from pg_stat_dumper import cli
from pg_stat_dumper.commands.workflow import resolve_buildkit
from pg_stat_dumper.errors import ImageBuildError
from pg_stat_dumper.tasks import container_run, graph, image_build


def _patch_docker(monkeypatch, calls, *, build_error=None):
    def fake_build_image(request):
        calls.append(("warm", request.buildkit, request.dockerfile, request.force_rebuild))
        if build_error is not None:
            raise build_error
        return image_build.ImageBuildResponse(image_id="sha256:abc", buildkit=request.buildkit)

    def fake_run_container(client, request):
        calls.append(("run", request.image_id))
        return container_run.ContainerRunResponse(image_id=request.image_id, exit_code=0)

    monkeypatch.setattr(graph.image_build, "build_image", fake_build_image)
    monkeypatch.setattr(graph.container_run, "run_container", fake_run_container)
    monkeypatch.setattr(graph, "get_docker_client", lambda error_cls: object())


@pytest.mark.parametrize(
    ("flag", "environ", "expected"),
    [
        (None, {}, True),
        (None, {"DOCKER_BUILDKIT": "1"}, True),
        (None, {"DOCKER_BUILDKIT": "TRUE"}, True),
        (None, {"DOCKER_BUILDKIT": "0"}, False),
        (None, {"DOCKER_BUILDKIT": ""}, False),
        (False, {"DOCKER_BUILDKIT": "1"}, False),
        (True, {"DOCKER_BUILDKIT": "0"}, True),
    ],
)
def test_resolve_buildkit(flag, environ, expected):
    assert resolve_buildkit(flag, environ) is expected


def test_warm_prints_image_id(tmp_path, monkeypatch, capsys):
    calls = []
    _patch_docker(monkeypatch, calls)
    monkeypatch.delenv("DOCKER_BUILDKIT", raising=False)

    code = cli.main(["warm", "--context", str(tmp_path)])

    assert code == 0
    assert capsys.readouterr().out == "sha256:abc\n"
    assert calls == [("warm", True, "Dockerfile", False)]


def test_warm_honours_no_buildkit_and_force_rebuild(tmp_path, monkeypatch):
    calls = []
    _patch_docker(monkeypatch, calls)

    code = cli.main(
        ["warm", "--context", str(tmp_path), "--no-buildkit", "--force-rebuild", "--dockerfile", "Dockerfile.ci"]
    )

    assert code == 0
    assert calls == [("warm", False, "Dockerfile.ci", True)]


def test_build_json_report(tmp_path, monkeypatch, capsys):
    calls = []
    _patch_docker(monkeypatch, calls)

    code = cli.main(["build", "--context", str(tmp_path), "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["image_id"] == "sha256:abc"
    assert payload["target"] == "build"
    assert [row["task"] for row in payload["tasks"]] == ["warm", "build"]
    assert calls[-1] == ("run", "sha256:abc")


def test_build_stops_when_warm_fails(tmp_path, monkeypatch, capsys):
    calls = []
    _patch_docker(
        monkeypatch,
        calls,
        build_error=ImageBuildError("docker build exited with status 2.", exit_code=2),
    )

    code = cli.main(["build", "--context", str(tmp_path), "--json"])

    assert code == 2
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert [row["status"] for row in payload["tasks"]] == ["fail", "skipped"]
    assert payload["image_id"] is None
    assert "[psd] warm failed" in captured.err
    assert not [call for call in calls if call[0] == "run"]


def test_unknown_command_exits_with_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["deploy"])
    assert excinfo.value.code == 2
