from __future__ import annotations

from pathlib import Path
from typing import Any

import psycopg

from pg_stat_dumper import printer
from pg_stat_dumper.config import load_config
from pg_stat_dumper.errors import ConfigError
from pg_stat_dumper.runtime import log
from pg_stat_dumper.sampler import ActivitySource, run_sampler


def run(args: Any) -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        log(str(exc))
        return 1

    output_dir = Path(getattr(args, "output_dir", ".")).resolve()
    try:
        path = run_sampler(config, output_dir)
    except (psycopg.Error, OSError) as exc:
        log(f"sampling failed: {exc}")
        return 1
    log(f"wrote {path}")
    return 0


def run_show(args: Any) -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        log(str(exc))
        return 1

    source = ActivitySource(config.conn_string)
    try:
        source.open()
        columns, rows = source.describe()
    except psycopg.Error as exc:
        log(f"query failed: {exc}")
        return 1
    finally:
        source.close()

    lines = printer.convert_to_strings(columns, rows)
    print(printer.render(lines, [0] * len(columns)), end="")
    return 0
