from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any

from pg_stat_dumper.runtime import log, run_command
from pg_stat_dumper.tasks.client import docker_available
from pg_stat_dumper.tasks.image_build import MANIFEST_FILES


CHECKS = [
    ["docker", "--version"],
]


def _tool_versions(context_dir: Path) -> tuple[list[dict[str, Any]], int]:
    results: list[dict[str, Any]] = []
    failures = 0
    for cmd in CHECKS:
        tool = cmd[0]
        if shutil.which(tool) is None:
            failures += 1
            results.append(
                {
                    "available": False,
                    "cmd": cmd,
                    "detail": f"{tool} is not on PATH",
                }
            )
            continue

        output = run_command(cmd, cwd=context_dir)
        if output.exit_code != 0:
            failures += 1
        results.append(
            {
                "available": True,
                "cmd": cmd,
                "exit_code": output.exit_code,
                "stdout": output.stdout.strip(),
                "stderr": output.stderr.strip(),
            }
        )
    return results, failures


def run(args: Any) -> int:
    context_dir = Path(getattr(args, "context", ".")).resolve()
    dockerfile = getattr(args, "dockerfile", "Dockerfile")

    tool_versions, failures = _tool_versions(context_dir)
    checks = {"docker_daemon": docker_available()}
    for name in (dockerfile, *MANIFEST_FILES):
        checks[f"file:{name}"] = (context_dir / name).is_file()
    failures += sum(1 for ok in checks.values() if not ok)

    payload = {
        "checks": checks,
        "context_dir": str(context_dir),
        "status": "fail" if failures else "pass",
        "tool_versions": tool_versions,
    }

    if getattr(args, "json", False):
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        for result in tool_versions:
            if result["available"]:
                log(f"{' '.join(result['cmd'])}: {result['stdout'] or result['stderr']}")
            else:
                log(result["detail"])
        for name, ok in sorted(checks.items()):
            log(f"{name}: {'ok' if ok else 'missing'}")

    return 1 if failures else 0
