import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from gpu_metrics.db import MetricsDB, format_ts, narrow
from gpu_metrics.errors import AuthenticationError, PersistenceError
from gpu_metrics.types import GPUMetric

from conftest import API_KEY, INSTANCE_ID

NOW = datetime(2025, 10, 14, 8, 0, tzinfo=timezone.utc)


def _gpus(n):
    return [
        GPUMetric(index=i, utilization_percent=10 * i, memory_used_mb=100,
                  memory_total_mb=8192, temperature_celsius=50 + i, power_draw_watts=200)
        for i in range(n)
    ]


def test_authenticate_known_key(db):
    assert db.authenticate_instance(API_KEY) == INSTANCE_ID


def test_authenticate_unknown_key(db):
    with pytest.raises(AuthenticationError):
        db.authenticate_instance("nope")


def test_unprovisioned_instance_is_rejected(db):
    db.provision_instance("node-02", "key-node-02", provisioned=False)
    with pytest.raises(AuthenticationError):
        db.authenticate_instance("key-node-02")
    db.provision_instance("node-02", "key-node-02")
    assert db.authenticate_instance("key-node-02") == "node-02"


def test_insert_writes_one_row_per_gpu(db):
    assert db.insert_metrics(INSTANCE_ID, NOW, _gpus(4)) == 4
    rows = db.fetch_metrics(INSTANCE_ID)
    assert len(rows) == 4
    assert [r["gpu_index"] for r in rows] == [0, 1, 2, 3]
    assert {r["timestamp"] for r in rows} == {format_ts(NOW)}
    assert rows[2]["temperature_celsius"] == 52


def test_empty_batch_is_noop(db):
    assert db.insert_metrics(INSTANCE_ID, NOW, []) == 0
    assert db.count_rows() == 0


def test_failure_mid_batch_commits_nothing(db):
    with db.get_conn() as conn:
        conn.execute(
            "CREATE TRIGGER reject_gpu_2 BEFORE INSERT ON gpu_metrics "
            "WHEN NEW.gpu_index = 2 BEGIN SELECT RAISE(ABORT, 'boom'); END"
        )
        conn.commit()

    with pytest.raises(PersistenceError):
        db.insert_metrics(INSTANCE_ID, NOW, _gpus(4))
    assert db.count_rows() == 0


def test_narrow_wraps_like_unsigned_columns():
    assert narrow(255, 8) == 255
    assert narrow(256, 8) == 0
    assert narrow(300, 8) == 44
    assert narrow(-1, 8) == 255
    assert narrow(70000, 16) == 70000 - 65536
    assert narrow(2**32 + 5, 32) == 5


def test_out_of_range_values_are_wrapped_on_insert(db):
    gpu = GPUMetric(index=1, utilization_percent=300, memory_used_mb=10,
                    memory_total_mb=20, temperature_celsius=-1, power_draw_watts=70000)
    db.insert_metrics(INSTANCE_ID, NOW, [gpu])
    row = db.fetch_metrics(INSTANCE_ID)[0]
    assert row["gpu_utilization_percent"] == 44
    assert row["temperature_celsius"] == 255
    assert row["power_draw_watts"] == 4464


def test_prune_older_than(db):
    db.insert_metrics(INSTANCE_ID, datetime.now(timezone.utc) - timedelta(days=10), _gpus(2))
    db.insert_metrics(INSTANCE_ID, datetime.now(timezone.utc), _gpus(3))
    assert db.prune_older_than(7) == 2
    assert db.count_rows(INSTANCE_ID) == 3


def test_ping(db, tmp_path):
    assert db.ping()
    assert not MetricsDB(tmp_path / "missing-dir" / "x.db").ping()


def test_schema_applied_once(tmp_path):
    store = MetricsDB(tmp_path / "fresh.db")
    store.provision_instance("a", "k")
    store.provision_instance("a", "k2")
    conn = sqlite3.connect(tmp_path / "fresh.db")
    try:
        assert conn.execute("SELECT api_key FROM instances").fetchall() == [("k2",)]
    finally:
        conn.close()


def test_format_ts_is_fixed_width():
    early = format_ts(datetime(5, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    assert early == "0005-01-02T03:04:05.000000Z"
    assert len(early) == len(format_ts(NOW))
    assert early < format_ts(NOW)
