from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from pg_stat_dumper.errors import ConfigError


POLL_INTERVAL_ENV = "PSD_POLL_INTERVAL_SECS"
MAX_UPTIME_ENV = "PSD_MAX_UPTIME_SECS"
CONN_STRING_ENV = "PSD_CONN_STRING"

DEFAULT_POLL_INTERVAL_SECS = 53.0
DEFAULT_MAX_UPTIME_SECS = 60.0 * 60.0

MIN_SECONDS = 1.0 / 1e9
MAX_SECONDS = float(1 << 32)


class SamplerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    poll_interval_secs: float = Field(DEFAULT_POLL_INTERVAL_SECS, gt=0)
    max_uptime_secs: float = Field(DEFAULT_MAX_UPTIME_SECS, gt=0)
    conn_string: str = Field(..., min_length=1)


def parse_seconds(raw: str) -> float:
    try:
        secs = float(raw)
    except ValueError as exc:
        raise ConfigError(f"parsing {raw!r} as float") from exc
    # also rejects nan
    if not MIN_SECONDS <= secs <= MAX_SECONDS:
        raise ConfigError("seconds values must roughly be between 1ns and 100 years")
    return secs


def _seconds_from_env(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return parse_seconds(raw)
    except ConfigError as exc:
        raise ConfigError(f"interpreting {name}: {exc}") from exc


def load_config(environ: Mapping[str, str] | None = None) -> SamplerConfig:
    environ = os.environ if environ is None else environ
    conn_string = environ.get(CONN_STRING_ENV)
    if not conn_string:
        raise ConfigError(
            f"{CONN_STRING_ENV} required, e.g.: host=localhost user=postgres sslmode=require"
        )
    return SamplerConfig(
        poll_interval_secs=_seconds_from_env(environ, POLL_INTERVAL_ENV, DEFAULT_POLL_INTERVAL_SECS),
        max_uptime_secs=_seconds_from_env(environ, MAX_UPTIME_ENV, DEFAULT_MAX_UPTIME_SECS),
        conn_string=conn_string,
    )
