"""Unit tests for the JSON state and history documents."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from marketplace_alerts.models import (
    LifecycleEntry,
    Marketplace,
    RunError,
    RunSummary,
    StateDocument,
)
from marketplace_alerts.storage import (
    STATE_VERSION,
    HistoryStore,
    PersistenceError,
    StateStore,
    migrate_state,
)

from conftest import RUN_AT


class TestStateStore:
    """Test cases for StateStore."""

    def test_missing_file_is_empty_state(self, tmp_path):
        state = StateStore(tmp_path / "state.json").load()

        assert state.version == STATE_VERSION
        assert state.seen == {}

    def test_save_then_load(self, tmp_path):
        store = StateStore(tmp_path / "data" / "state.json")
        state = StateDocument(version=STATE_VERSION, updated_at=RUN_AT)
        state.bucket(Marketplace.EBAY, "system-8")["123"] = LifecycleEntry(
            first_seen_at=RUN_AT - timedelta(days=1),
            last_seen_at=RUN_AT,
            last_effective_price=420.0,
            url="https://www.ebay.com/itm/123",
            title="Roland System-8",
            missed_runs=1,
        )

        store.save(state)
        loaded = store.load()

        entry = loaded.seen["ebay"]["system-8"]["123"]
        assert loaded.updated_at == RUN_AT
        assert entry.first_seen_at == RUN_AT - timedelta(days=1)
        assert entry.last_effective_price == 420.0
        assert entry.missed_runs == 1
        assert entry.sold_at is None

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        store.save(StateDocument(version=STATE_VERSION))

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_corrupt_document_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(PersistenceError):
            StateStore(path).load()

    def test_malformed_entry_raises(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": 2,
            "seen": {"ebay": {"system-8": {"123": {"url": "x"}}}},
        }))

        with pytest.raises(PersistenceError):
            StateStore(path).load()

    def test_loads_version_1_document(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": 1,
            "updatedAt": "2024-01-09T12:00:00.000Z",
            "seen": {
                "ebay": {},
                "reverb": {
                    "system-8": {
                        "abc": {
                            "firstSeenAt": "2024-01-01T00:00:00.000Z",
                            "lastSeenAt": "2024-01-09T12:00:00.000Z",
                            "lastEffectivePrice": 480,
                            "url": "https://reverb.com/item/abc",
                            "title": "Roland System-8",
                        }
                    }
                },
            },
        }))

        state = StateStore(path).load()

        entry = state.seen["reverb"]["system-8"]["abc"]
        assert state.version == STATE_VERSION
        assert state.updated_at == RUN_AT - timedelta(days=1)
        assert entry.first_seen_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert entry.last_seen_at == RUN_AT - timedelta(days=1)
        assert entry.last_effective_price == 480.0
        assert entry.url == "https://reverb.com/item/abc"
        assert entry.missed_runs == 0
        assert entry.sold_at is None

    def test_migrated_document_is_saved_as_version_2(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": 1,
            "updatedAt": None,
            "seen": {"ebay": {"system-8": {"123": {
                "firstSeenAt": "2024-01-01T00:00:00.000Z",
                "lastSeenAt": "2024-01-02T00:00:00.000Z",
                "lastEffectivePrice": 400,
                "url": "https://www.ebay.com/itm/123",
                "title": "Roland System-8",
            }}}},
        }))
        store = StateStore(path)

        store.save(store.load())

        saved = json.loads(path.read_text())
        entry = saved["seen"]["ebay"]["system-8"]["123"]
        assert saved["version"] == STATE_VERSION
        assert "updatedAt" not in saved
        assert set(entry) == {
            "first_seen_at", "last_seen_at", "last_effective_price",
            "url", "title", "missed_runs", "sold_at",
        }

    def test_failed_write_removes_temp_file(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path)

        with patch("marketplace_alerts.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError, match="disk full"):
                store.save(StateDocument(version=STATE_VERSION))

        assert list(tmp_path.iterdir()) == []

    def test_failed_write_keeps_previous_document(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.save(StateDocument(version=STATE_VERSION, updated_at=RUN_AT))

        with patch("marketplace_alerts.storage.json.dump", side_effect=TypeError("not serializable")):
            with pytest.raises(PersistenceError):
                store.save(StateDocument(version=STATE_VERSION))

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
        assert store.load().updated_at == RUN_AT


class TestMigrateState:
    """Test cases for migrate_state()."""

    def test_defaults_missing_version_to_1(self):
        data = migrate_state({"seen": {"ebay": {"p": {"1": {}}}}})
        assert data["version"] == STATE_VERSION
        assert data["seen"]["ebay"]["p"]["1"] == {"missed_runs": 0, "sold_at": None}

    def test_keeps_existing_v2_fields(self):
        entry = {"missed_runs": 2, "sold_at": None}
        data = migrate_state({"version": 2, "seen": {"ebay": {"p": {"1": entry}}}})
        assert data["seen"]["ebay"]["p"]["1"]["missed_runs"] == 2

    def test_rejects_newer_version(self):
        with pytest.raises(PersistenceError, match="newer"):
            migrate_state({"version": STATE_VERSION + 1, "seen": {}})

    def test_rejects_non_object(self):
        with pytest.raises(PersistenceError):
            migrate_state([])


class TestHistoryStore:
    """Test cases for HistoryStore."""

    def make_summary(self, hours: int = 0) -> RunSummary:
        return RunSummary(
            run_at=RUN_AT + timedelta(hours=hours),
            scanned=10,
            matches=2,
            alerts=1,
            errors=[RunError(stage="search", product_id="system-8", message="boom", marketplace=Marketplace.EBAY)],
        )

    def test_empty_history(self, tmp_path):
        assert HistoryStore(tmp_path / "history.json").recent() == []

    def test_append_and_recent(self, tmp_path):
        store = HistoryStore(tmp_path / "history.json")
        for hours in range(3):
            store.append(self.make_summary(hours))

        records = store.recent(limit=2)

        assert len(records) == 2
        assert records[-1]["run_at"] == (RUN_AT + timedelta(hours=2)).isoformat()
        assert records[0]["errors"][0] == {
            "stage": "search",
            "marketplace": "ebay",
            "product_id": "system-8",
            "message": "boom",
        }

    def test_append_preserves_earlier_records(self, tmp_path):
        store = HistoryStore(tmp_path / "history.json")
        store.append(self.make_summary(0))
        first = store.recent()[0]

        store.append(self.make_summary(1))

        assert store.recent()[0] == first
        assert len(store.recent()) == 2

    def test_recent_with_zero_limit(self, tmp_path):
        store = HistoryStore(tmp_path / "history.json")
        store.append(self.make_summary())
        assert store.recent(limit=0) == []

    def test_non_array_history_raises(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{}")

        with pytest.raises(PersistenceError):
            HistoryStore(path).append(self.make_summary())
