from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .errors import AuthenticationError, PersistenceError
from .types import GPUMetric

log = logging.getLogger(__name__)

_SCHEMA_FILE = Path(__file__).with_name("schema.sql")

# gpu_metrics column -> width in bits of the unsigned column it lands in
COLUMN_BITS = {
    "gpu_index": 8,
    "gpu_utilization_percent": 8,
    "gpu_memory_used_mb": 32,
    "gpu_memory_total_mb": 32,
    "temperature_celsius": 8,
    "power_draw_watts": 16,
}

INSERT_SQL = (
    "INSERT INTO gpu_metrics (timestamp, instance_id, gpu_index, gpu_utilization_percent, "
    "gpu_memory_used_mb, gpu_memory_total_mb, temperature_celsius, power_draw_watts) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
)


def narrow(value: int, bits: int) -> int:
    """Unsigned fixed-width conversion: out-of-range values wrap, they are not rejected.

    narrow(300, 8) == 44, narrow(-1, 8) == 255.
    """
    return value & ((1 << bits) - 1)


def format_ts(ts: datetime) -> str:
    """UTC, fixed width, so stored timestamps sort and compare as text."""
    ts = ts.astimezone(timezone.utc)
    return f"{ts.year:04d}" + ts.strftime("-%m-%dT%H:%M:%S.%fZ")


def to_row(instance_id: str, ts: str, gpu: GPUMetric) -> Tuple:
    return (
        ts,
        instance_id,
        narrow(gpu.index, COLUMN_BITS["gpu_index"]),
        narrow(gpu.utilization_percent, COLUMN_BITS["gpu_utilization_percent"]),
        narrow(gpu.memory_used_mb, COLUMN_BITS["gpu_memory_used_mb"]),
        narrow(gpu.memory_total_mb, COLUMN_BITS["gpu_memory_total_mb"]),
        narrow(gpu.temperature_celsius, COLUMN_BITS["temperature_celsius"]),
        narrow(gpu.power_draw_watts, COLUMN_BITS["power_draw_watts"]),
    )


class MetricsDB:
    """SQLite store for instances and gpu_metrics rows.

    Every operation opens its own connection, so one MetricsDB can be shared
    across the API's worker threads.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    # ---------- connections ------------------------------------------------
    def _open_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        """Apply schema.sql if the gpu_metrics table is absent."""
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='gpu_metrics';"
        ).fetchone()
        if row is None:
            with _SCHEMA_FILE.open(encoding="utf-8") as f:
                conn.executescript(f.read())
            conn.commit()

    @contextmanager
    def get_conn(self) -> Iterator[sqlite3.Connection]:
        conn = self._open_conn()
        try:
            self._ensure_schema(conn)
            yield conn
        finally:
            conn.close()

    def ping(self) -> bool:
        try:
            with self.get_conn() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            log.warning("Database ping failed: %s", exc)
            return False
        return True

    # ---------- instances --------------------------------------------------
    def authenticate_instance(self, api_key: str) -> str:
        """Resolve an api key to its instance id; only provisioned instances match."""
        try:
            with self.get_conn() as conn:
                row = conn.execute(
                    "SELECT instance_id FROM instances WHERE api_key = ? AND is_provisioned = 1",
                    (api_key,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise AuthenticationError(f"instance lookup failed: {exc}") from exc
        if row is None:
            raise AuthenticationError("invalid or inactive instance")
        return row["instance_id"]

    def provision_instance(self, instance_id: str, api_key: str, provisioned: bool = True) -> None:
        with self.get_conn() as conn:
            conn.execute(
                "INSERT INTO instances (instance_id, api_key, is_provisioned) VALUES (?, ?, ?) "
                "ON CONFLICT(instance_id) DO UPDATE SET "
                "api_key = excluded.api_key, is_provisioned = excluded.is_provisioned",
                (instance_id, api_key, int(provisioned)),
            )
            conn.commit()

    # ---------- metrics ----------------------------------------------------
    def insert_metrics(self, instance_id: str, timestamp: datetime, gpus: Sequence[GPUMetric]) -> int:
        """Write one row per GPU as a single all-or-nothing batch.

        Returns the number of rows committed. An empty `gpus` is a no-op.
        Any failure rolls the whole batch back and raises PersistenceError.
        """
        if not gpus:
            return 0

        ts = format_ts(timestamp)
        try:
            rows = [to_row(instance_id, ts, g) for g in gpus]
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"failed to build metrics batch: {exc}") from exc

        try:
            with self.get_conn() as conn:
                # `with conn` commits on success and rolls back on any exception
                with conn:
                    conn.executemany(INSERT_SQL, rows)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to insert metrics batch: {exc}") from exc
        return len(gpus)

    def fetch_metrics(self, instance_id: str, limit: int = 100) -> List[sqlite3.Row]:
        """Latest rows for one instance, newest first."""
        with self.get_conn() as conn:
            return conn.execute(
                "SELECT * FROM gpu_metrics WHERE instance_id = ? "
                "ORDER BY timestamp DESC, gpu_index LIMIT ?",
                (instance_id, limit),
            ).fetchall()

    def count_rows(self, instance_id: Optional[str] = None) -> int:
        with self.get_conn() as conn:
            if instance_id is None:
                return conn.execute("SELECT COUNT(*) FROM gpu_metrics").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM gpu_metrics WHERE instance_id = ?", (instance_id,)
            ).fetchone()[0]

    def prune_older_than(self, days: int = 7) -> int:
        """Delete rows older than <days> to keep the DB size bounded."""
        cutoff = format_ts(datetime.now(timezone.utc) - timedelta(days=days))
        with self.get_conn() as conn:
            cur = conn.execute("DELETE FROM gpu_metrics WHERE timestamp < ?", (cutoff,))
            conn.commit()
        return cur.rowcount


__all__ = ["MetricsDB", "narrow", "format_ts", "COLUMN_BITS"]
