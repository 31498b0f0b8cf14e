from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping


LOG_PREFIX = "[psd]"
TRUTHY_VALUES = {"1", "true", "yes", "on"}


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def rfc3339_seconds(value: datetime) -> str:
    return value.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def rfc3339_micros(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def log(message: str) -> None:
    print(f"{LOG_PREFIX} {message}", file=sys.stderr, flush=True)


def log_event(message: str) -> None:
    print(f"{utc_now_iso()} {message}", file=sys.stderr, flush=True)


def env_flag(name: str, environ: Mapping[str, str] | None = None) -> bool:
    source = os.environ if environ is None else environ
    value = source.get(name)
    if value is None:
        return False
    return value.strip().lower() in TRUTHY_VALUES


@dataclass
class CommandResult:
    cmd: list[str]
    cwd: str
    exit_code: int
    stdout: str
    stderr: str


def run_command(cmd: list[str], cwd: Path, timeout_sec: int = 120) -> CommandResult:
    completed = subprocess.run(
        cmd,
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=timeout_sec,
        check=False,
    )
    return CommandResult(
        cmd=cmd,
        cwd=str(cwd),
        exit_code=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


def stream_command(cmd: list[str], cwd: Path, env: Mapping[str, str] | None = None) -> int:
    """Run ``cmd`` with inherited stdio and return its exit status.

    The child's stdout is sent to our stderr so stdout stays reserved for
    machine output. A missing executable is reported as status 127, the way
    a shell would.
    """
    try:
        completed = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdout=2,
            check=False,
        )
    except FileNotFoundError:
        log(f"{cmd[0]}: command not found")
        return 127
    return completed.returncode
