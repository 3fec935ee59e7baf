"""Tests for the SQLite snapshot store."""

import json
import sqlite3

from mnno_school.coordination import LocalPersistence


def _raw_write(store, key, value):
    conn = store._get_conn()
    conn.execute("INSERT OR REPLACE INTO snapshots (key, value) VALUES (?, ?)", (key, value))
    conn.commit()


class TestRoundTrip:
    """write() followed by read()."""

    def test_write_then_read_returns_equal_data(self, clock):
        store = LocalPersistence(clock=clock)
        data = [{"id": "c1", "nome": "Acme", "tags": ["a", "b"]}]
        assert store.write("companies:u1", data) is True
        assert store.read("companies:u1", max_age_minutes=10) == data

    def test_missing_key_reads_none(self, clock):
        store = LocalPersistence(clock=clock)
        assert store.read("nope", max_age_minutes=10) is None

    def test_read_after_max_age_returns_none_and_removes(self, clock):
        store = LocalPersistence(clock=clock)
        store.write("k", [1])
        clock.advance(10 * 60 + 1)
        assert store.read("k", max_age_minutes=10) is None
        assert store.keys() == []

    def test_read_just_before_max_age(self, clock):
        store = LocalPersistence(clock=clock)
        store.write("k", [1])
        clock.advance(10 * 60 - 1)
        assert store.read("k", max_age_minutes=10) == [1]

    def test_file_backed_store_survives_reopen(self, tmp_path, clock):
        path = tmp_path / "nested" / "snapshots.db"
        first = LocalPersistence(path, clock=clock)
        first.write("k", ["kept"])
        first.close()

        second = LocalPersistence(path, clock=clock)
        assert second.read("k", max_age_minutes=10) == ["kept"]
        second.close()


class TestEnvelope:
    """The ``{version, data, timestamp}`` envelope is validated on read."""

    def test_stored_envelope_shape(self, clock):
        store = LocalPersistence(version=3, clock=clock)
        store.write("k", ["v"])
        raw = store._get_conn().execute("SELECT value FROM snapshots").fetchone()[0]
        assert json.loads(raw) == {"version": 3, "data": ["v"], "timestamp": clock.now}

    def test_malformed_json_is_removed(self, clock):
        store = LocalPersistence(clock=clock)
        _raw_write(store, "k", "{not json")
        assert store.read("k", max_age_minutes=10) is None
        assert store.keys() == []

    def test_missing_fields_are_removed(self, clock):
        store = LocalPersistence(clock=clock)
        _raw_write(store, "k", json.dumps({"data": [1]}))
        assert store.read("k", max_age_minutes=10) is None
        assert store.keys() == []

    def test_version_mismatch_is_discarded(self, clock):
        old = LocalPersistence(version=1, clock=clock)
        old.write("k", ["v1 shape"])
        conn = old._get_conn()

        new = LocalPersistence(version=2, clock=clock)
        new._conn = conn
        assert new.read("k", max_age_minutes=10) is None
        assert new.keys() == []


class TestFailures:
    """Write failures are logged and treated as misses."""

    def test_oversized_payload_clears_key(self, clock, caplog):
        store = LocalPersistence(max_entry_bytes=100, clock=clock)
        store.write("k", ["small"])
        assert store.write("k", ["x" * 500]) is False
        assert store.read("k", max_age_minutes=10) is None
        assert "Could not persist snapshot k" in caplog.text

    def test_quota_message_reports_encoded_size(self, clock, caplog):
        store = LocalPersistence(max_entry_bytes=100, clock=clock)
        data = ["\u00e9t\u00e9" * 40]
        payload = json.dumps(
            {"version": 1, "data": data, "timestamp": clock.now}, separators=(",", ":")
        )
        assert store.write("k", data) is False
        assert f"{len(payload.encode('utf-8'))} bytes exceeds the 100-byte quota" in caplog.text

    def test_unserializable_payload_is_rejected(self, clock):
        store = LocalPersistence(clock=clock)
        assert store.write("k", [object()]) is False
        assert store.read("k", max_age_minutes=10) is None

    def test_sqlite_error_on_read_is_a_miss(self, clock):
        store = LocalPersistence(clock=clock)
        conn = store._get_conn()
        conn.execute("DROP TABLE snapshots")
        assert store.read("k", max_age_minutes=10) is None

    def test_closed_connection_is_reopened(self, clock):
        store = LocalPersistence(clock=clock)
        store.write("k", [1])
        store.close()
        # An in-memory database does not survive close().
        assert store.read("k", max_age_minutes=10) is None
        assert isinstance(store._get_conn(), sqlite3.Connection)

    def test_unusable_data_dir_is_a_miss(self, tmp_path, clock, caplog):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = LocalPersistence(blocker / "sub" / "snapshots.db", clock=clock)
        assert store.write("k", [1]) is False
        assert store.read("k", max_age_minutes=10) is None
        assert store.keys() == []
        assert "Cannot create snapshot directory" in caplog.text


class TestHousekeeping:
    """Clearing and purging."""

    def test_clear_namespace(self, clock):
        store = LocalPersistence(clock=clock)
        for key in ("companies:u1", "companies:u2", "selection:u1"):
            store.write(key, [key])
        assert store.clear_namespace("companies") == 2
        assert store.keys() == ["selection:u1"]

    def test_clear_all(self, clock):
        store = LocalPersistence(clock=clock)
        store.write("a", [1])
        store.write("b", [2])
        store.clear_all()
        assert store.keys() == []

    def test_purge_expired(self, clock):
        store = LocalPersistence(clock=clock)
        store.write("old", [1])
        clock.advance(20 * 60)
        store.write("new", [2])
        assert store.purge_expired(max_age_minutes=10) == 1
        assert store.keys() == ["new"]
