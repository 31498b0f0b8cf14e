"""Periodic snapshots of ``pg_stat_activity`` into zstd-compressed JSON lines.

Each poll produces one line::

    {"when": "<server now()>", "records": [{"pid": ..., "query": ...}, ...]}

Only non-idle backends are recorded. The output file is named after the
start time, ``stat-activity-<UTC RFC 3339>.jsonl.zst``, and every line is
flushed as its own zstd block so a crash loses at most the current poll.
"""

from __future__ import annotations

import signal
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional

import psycopg
import zstandard
from psycopg.rows import dict_row
from pydantic import BaseModel, ConfigDict

from pg_stat_dumper.config import SamplerConfig
from pg_stat_dumper.runtime import log_event, rfc3339_seconds, utc_now


STATEMENT_TIMEOUT_MS = 5000
COMPRESSION_LEVEL = 9
SECOND_SIGNAL_EXIT_CODE = 6

ACTIVITY_QUERY = (
    "select now(), datid::int, datname, pid, usesysid::int, usename, application_name,"
    " client_addr::varchar, client_hostname, client_port, backend_start, xact_start,"
    " query_start, state_change, wait_event_type, wait_event, state,"
    " backend_xid::varchar, backend_xmin::varchar, query"
    " from pg_stat_activity where state != 'idle' order by backend_start, pid"
)


class ActivityRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    datid: Optional[int] = None
    datname: Optional[str] = None
    pid: Optional[int] = None
    usesysid: Optional[int] = None
    usename: Optional[str] = None
    application_name: Optional[str] = None
    client_addr: Optional[str] = None
    client_hostname: Optional[str] = None
    client_port: Optional[int] = None
    backend_start: Optional[datetime] = None
    xact_start: Optional[datetime] = None
    query_start: Optional[datetime] = None
    state_change: Optional[datetime] = None
    wait_event_type: Optional[str] = None
    wait_event: Optional[str] = None
    state: Optional[str] = None
    backend_xid: Optional[str] = None
    backend_xmin: Optional[str] = None
    query: Optional[str] = None


class Snapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    when: Optional[datetime] = None
    records: list[ActivityRecord]


def snapshot_from_rows(rows: list[dict[str, Any]]) -> Snapshot:
    when = rows[0].get("now") if rows else None
    return Snapshot(when=when, records=[ActivityRecord.model_validate(row) for row in rows])


class ActivitySource:
    """A connection to the server being observed."""

    def __init__(self, conn_string: str, connect: Callable[..., Any] = psycopg.connect) -> None:
        self.conn_string = conn_string
        self._connect = connect
        self.conn = None

    def open(self) -> None:
        self.conn = self._connect(self.conn_string, autocommit=True)
        self.conn.execute(f"set statement_timeout to {STATEMENT_TIMEOUT_MS}")

    def fetch(self) -> list[dict[str, Any]]:
        if self.conn is None:
            raise psycopg.InterfaceError("connection is not open")
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(ACTIVITY_QUERY, prepare=True)
            return cur.fetchall()

    def describe(self) -> tuple[list[tuple[str, str]], list[tuple[Any, ...]]]:
        """Run the activity query once, returning ``(name, type name)`` columns and raw rows."""
        if self.conn is None:
            raise psycopg.InterfaceError("connection is not open")
        with self.conn.cursor() as cur:
            cur.execute(ACTIVITY_QUERY)
            columns = []
            for column in cur.description or []:
                info = self.conn.adapters.types.get(column.type_code)
                columns.append((column.name, info.name if info else str(column.type_code)))
            return columns, cur.fetchall()

    def close(self) -> None:
        conn, self.conn = self.conn, None
        if conn is None or conn.closed:
            return
        try:
            conn.close()
        except psycopg.Error as exc:
            log_event(f"error closing: {exc!r}")


def fetch_with_reconnect(source: ActivitySource) -> list[dict[str, Any]]:
    try:
        return source.fetch()
    except psycopg.Error as exc:
        log_event(f"retrying error: {exc!r}")
    source.close()
    source.open()
    return source.fetch()


class ShutdownRequest:
    """Turns the first SIGINT/SIGTERM into a clean shutdown and the second into an exit."""

    def __init__(self) -> None:
        self.event = threading.Event()
        self.previous: dict[int, Any] = {}

    def handle(self, signum=None, frame=None) -> None:
        if self.event.is_set():
            log_event("second exit request; dying")
            raise SystemExit(SECOND_SIGNAL_EXIT_CODE)
        log_event("started clean shutdown")
        self.event.set()

    def install(self) -> None:
        self.previous = {
            signum: signal.signal(signum, self.handle)
            for signum in (signal.SIGINT, signal.SIGTERM)
        }

    def restore(self) -> None:
        for signum, handler in self.previous.items():
            signal.signal(signum, handler)
        self.previous = {}

    def wait(self, timeout: float) -> bool:
        return self.event.wait(timeout)


def output_path(output_dir: Path, started: datetime | None = None) -> Path:
    started = started or utc_now()
    return output_dir / f"stat-activity-{rfc3339_seconds(started)}.jsonl.zst"


def open_output(path: Path) -> BinaryIO:
    path.parent.mkdir(parents=True, exist_ok=True)
    compressor = zstandard.ZstdCompressor(level=COMPRESSION_LEVEL)
    return compressor.stream_writer(open(path, "wb"))


def write_snapshot(writer, snapshot: Snapshot) -> None:
    writer.write(snapshot.model_dump_json().encode("utf-8"))
    writer.write(b"\n")
    writer.flush(zstandard.FLUSH_BLOCK)


def run_sampler(
    config: SamplerConfig,
    output_dir: Path,
    *,
    source: ActivitySource | None = None,
    shutdown: ShutdownRequest | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> Path:
    source = source or ActivitySource(config.conn_string)
    installed = None
    writer = None
    try:
        source.open()
        started = clock()
        path = output_path(output_dir)
        writer = open_output(path)

        if shutdown is None:
            shutdown = installed = ShutdownRequest()
            installed.install()

        while True:
            rows = fetch_with_reconnect(source)
            write_snapshot(writer, snapshot_from_rows(rows))

            if clock() - started > config.max_uptime_secs:
                break
            if shutdown.wait(config.poll_interval_secs):
                break
    finally:
        if installed is not None:
            installed.restore()
        source.close()
        if writer is not None:
            writer.close()

    log_event("clean exit")
    return path
