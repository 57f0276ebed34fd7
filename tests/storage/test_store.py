"""Tests for PersistentStore."""

import json
from pathlib import Path

import pytest

from haven.errors import InvalidFormat, NoData, StorageUnavailable
from haven.logging import JSONLLogger
from haven.storage import (
    FernetCipher,
    InMemoryMedium,
    PersistentStore,
    SQLiteMedium,
    StorageInfo,
    is_sensitive_field,
    partition_fields,
)


class TestClassification:
    @pytest.mark.parametrize(
        "name",
        [
            "personal_info",
            "personalInfo",
            "medical_info",
            "emergencyContacts",
            "private_notes",
            "assessment_responses",
            "user_password",
            "contactEmail",
            "phone_number",
            "home_address",
            "ssn",
            "medical_history",
        ],
    )
    def test_sensitive_names(self, name: str):
        assert is_sensitive_field(name) is True

    @pytest.mark.parametrize(
        "name", ["mood", "user_state", "preferences", "pending_recommendations", "session_info"]
    )
    def test_regular_names(self, name: str):
        assert is_sensitive_field(name) is False

    def test_partition_is_disjoint_and_complete(self):
        data = {"mood": "good", "email": "a@b.c", "private_notes": "x", "streak": 3}
        regular, sensitive = partition_fields(data)
        assert regular == {"mood": "good", "streak": 3}
        assert sensitive == {"email": "a@b.c", "private_notes": "x"}
        assert not set(regular) & set(sensitive)
        assert set(regular) | set(sensitive) == set(data)


class TestStoreAndRetrieve:
    def test_store_then_retrieve(self, store: PersistentStore):
        store.store("u1", {"mood": "good"})
        record = store.retrieve("u1")

        assert record["mood"] == "good"
        assert record["_metadata"]

    def test_retrieve_is_superset(self, store: PersistentStore):
        data = {
            "user_state": {"current_mood": "good", "energy_level": "high"},
            "preferences": {"theme": "dark"},
            "personal_info": {"email": "test@example.com"},
        }
        store.store("u1", data)
        record = store.retrieve("u1")

        for key, value in data.items():
            assert record[key] == value

    def test_metadata_contents(self, store: PersistentStore):
        store.store("u1", {"mood": "good"})
        metadata = store.retrieve("u1")["_metadata"]

        assert metadata["user_id"] == "u1"
        assert metadata["version"] == "1.0"
        assert metadata["last_updated"]

    def test_keys_are_namespaced(self, store: PersistentStore, medium: InMemoryMedium):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        assert sorted(medium.keys()) == [
            "haven_u1_meta",
            "haven_u1_regular",
            "haven_u1_sensitive",
        ]

    def test_sensitive_stored_encrypted(self, store: PersistentStore, medium: InMemoryMedium):
        store.store("u1", {"personal_info": {"email": "test@example.com"}})

        raw = medium.get("haven_u1_sensitive")
        assert raw is not None
        assert "test@example.com" not in raw
        assert medium.get("haven_u1_regular") is None

    def test_regular_stored_as_json(self, store: PersistentStore, medium: InMemoryMedium):
        store.store("u1", {"mood": "good"})
        assert json.loads(medium.get("haven_u1_regular")) == {"mood": "good"}

    def test_store_replaces_record(self, store: PersistentStore):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        store.store("u1", {"energy": "low"})

        record = store.retrieve("u1")
        assert "mood" not in record
        assert "email" not in record
        assert record["energy"] == "low"

    def test_store_twice_is_idempotent(self, store: PersistentStore):
        data = {"mood": "good", "private_notes": "n"}
        store.store("u1", data)
        first = store.retrieve("u1")
        store.store("u1", data)
        second = store.retrieve("u1")

        first.pop("_metadata")
        second.pop("_metadata")
        assert first == second

    def test_retrieve_missing_user(self, store: PersistentStore):
        assert store.retrieve("nobody") is None

    def test_retrieve_metadata_only_is_none(self, store: PersistentStore):
        store.store("u1", {})
        assert store.retrieve("u1") is None

    def test_users_are_isolated(self, store: PersistentStore):
        store.store("u1", {"mood": "good"})
        store.store("u2", {"mood": "low"})
        assert store.retrieve("u1")["mood"] == "good"
        assert store.retrieve("u2")["mood"] == "low"

    def test_failed_store_keeps_previous_record(self, store: PersistentStore, event_log: JSONLLogger):
        store.store("u1", {"mood": "old", "email": "a@b.c"})
        meta_before = store.retrieve("u1")["_metadata"]

        with pytest.raises(TypeError):
            store.store("u1", {"mood": "new", "email": object()})

        record = store.retrieve("u1")
        assert record["mood"] == "old"
        assert record["email"] == "a@b.c"
        assert record["_metadata"] == meta_before
        assert len(event_log.read_events("store")) == 1

    def test_store_unavailable_raises(self, store: PersistentStore, medium):
        medium.failing = True
        with pytest.raises(StorageUnavailable):
            store.store("u1", {"mood": "good"})

    def test_retrieve_unavailable_returns_none(self, store: PersistentStore, medium):
        store.store("u1", {"mood": "good"})
        medium.failing = True
        assert store.retrieve("u1") is None

    def test_retrieve_corrupt_json_returns_none(self, store: PersistentStore, medium):
        store.store("u1", {"mood": "good"})
        medium.set("haven_u1_regular", "{not json")
        assert store.retrieve("u1") is None

    def test_corrupt_sensitive_blob_drops_only_sensitive(
        self, store: PersistentStore, medium, event_log: JSONLLogger
    ):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        medium.set("haven_u1_sensitive", "@@garbage@@")

        record = store.retrieve("u1")
        assert record["mood"] == "good"
        assert "email" not in record
        assert event_log.read_events("decrypt_failed")

    def test_store_logs_event(self, store: PersistentStore, event_log: JSONLLogger):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        entries = event_log.read_events("store")
        assert entries[-1]["user_id"] == "u1"
        assert entries[-1]["extra"] == {"regular_fields": 1, "sensitive_fields": 1}

    def test_custom_prefix(self, medium, event_log: JSONLLogger):
        store = PersistentStore(medium, prefix="app_", event_log=event_log)
        store.store("u1", {"mood": "good"})
        assert "app_u1_regular" in medium.keys()

    def test_empty_prefix_rejected(self, medium):
        with pytest.raises(ValueError):
            PersistentStore(medium, prefix="")

    def test_fernet_cipher_store(self, medium, event_log: JSONLLogger):
        store = PersistentStore(medium, cipher=FernetCipher("secret"), event_log=event_log)
        store.store("u1", {"email": "test@example.com"})
        assert store.retrieve("u1")["email"] == "test@example.com"

    def test_sqlite_round_trip(self, tmp_path: Path, event_log: JSONLLogger):
        medium = SQLiteMedium(tmp_path / "haven.db")
        store = PersistentStore(medium, event_log=event_log)
        store.store("u1", {"mood": "good", "phone": "555"})

        reopened = PersistentStore(SQLiteMedium(tmp_path / "haven.db"), event_log=event_log)
        record = reopened.retrieve("u1")
        assert record["mood"] == "good"
        assert record["phone"] == "555"
        medium.close()


class TestEncryption:
    def test_round_trip(self, store: PersistentStore):
        data = {"personal_info": {"email": "test@example.com", "phone": "123-456-7890"}}
        encrypted = store.encrypt(data)

        assert encrypted
        assert "test@example.com" not in encrypted
        assert store.decrypt(encrypted) == data

    def test_decrypt_failure_is_empty(self, store: PersistentStore):
        assert store.decrypt("definitely not ours") == {}


class TestExportImport:
    def test_export_envelope(self, store: PersistentStore):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        envelope = json.loads(store.export("u1"))

        assert envelope["userId"] == "u1"
        assert envelope["version"] == "1.0"
        assert envelope["exportedAt"]
        assert envelope["data"] == {"mood": "good", "email": "a@b.c"}
        assert "_metadata" not in envelope["data"]

    def test_export_without_data_raises(self, store: PersistentStore):
        with pytest.raises(NoData):
            store.export("u1")

    def test_import_round_trip(self, store: PersistentStore):
        store.store("u1", {"mood": "good", "private_notes": "n"})
        exported = store.export("u1")

        store.import_("u2", exported)
        record = store.retrieve("u2")
        assert record["mood"] == "good"
        assert record["private_notes"] == "n"

    def test_import_missing_fields(self, store: PersistentStore):
        with pytest.raises(InvalidFormat):
            store.import_("u1", '{"data":{"mood":"x"}}')

    def test_import_not_json(self, store: PersistentStore):
        with pytest.raises(InvalidFormat):
            store.import_("u1", "not json at all")

    def test_import_not_object(self, store: PersistentStore):
        with pytest.raises(InvalidFormat):
            store.import_("u1", "[1, 2, 3]")

    def test_import_data_not_object(self, store: PersistentStore):
        envelope = json.dumps({"data": ["x"], "userId": "u1", "version": "1.0"})
        with pytest.raises(InvalidFormat):
            store.import_("u1", envelope)

    def test_import_stores_under_given_user(self, store: PersistentStore):
        envelope = json.dumps({"data": {"mood": "x"}, "userId": "other", "version": "1.0"})
        store.import_("u1", envelope)
        assert store.retrieve("u1")["mood"] == "x"
        assert store.retrieve("other") is None

    def test_import_unavailable_raises(self, store: PersistentStore, medium):
        envelope = json.dumps({"data": {"mood": "x"}, "userId": "u1", "version": "1.0"})
        medium.failing = True
        with pytest.raises(StorageUnavailable):
            store.import_("u1", envelope)


class TestDelete:
    def test_delete_then_retrieve(self, store: PersistentStore):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        store.delete("u1")
        assert store.retrieve("u1") is None

    def test_delete_returns_removed_count(self, store: PersistentStore):
        store.store("u1", {"mood": "good", "email": "a@b.c"})
        assert store.delete("u1") == 3

    def test_delete_missing_user(self, store: PersistentStore):
        assert store.delete("nobody") == 0

    def test_delete_removes_stray_keys(self, store: PersistentStore, medium):
        store.store("u1", {"mood": "good"})
        medium.set("haven_u1_legacy_profile", "{}")
        medium.set("haven_old_u1", "{}")

        store.delete("u1")
        assert not [k for k in medium.keys() if k.startswith("haven_")]

    def test_delete_keeps_other_users(self, store: PersistentStore, medium):
        store.store("u1", {"mood": "good"})
        store.store("u10", {"mood": "low"})
        medium.set("unrelated_u1", "keep me")

        store.delete("u1")
        assert store.retrieve("u10")["mood"] == "low"
        assert medium.get("unrelated_u1") == "keep me"

    def test_delete_keeps_users_sharing_a_name_prefix(self, store: PersistentStore, medium):
        store.store("alice", {"mood": "good", "email": "a@b.c"})
        store.store("alice_smith", {"mood": "low", "email": "s@b.c"})
        medium.set("haven_alice_legacy", "{}")

        assert store.delete("alice") == 4
        assert store.retrieve("alice") is None
        survivor = store.retrieve("alice_smith")
        assert survivor["mood"] == "low"
        assert survivor["email"] == "s@b.c"
        assert medium.get("haven_alice_legacy") is None

    def test_delete_unavailable_raises(self, store: PersistentStore, medium):
        medium.failing = True
        with pytest.raises(StorageUnavailable):
            store.delete("u1")


class TestClearAll:
    def test_clear_all(self, store: PersistentStore, medium):
        store.store("u1", {"mood": "good"})
        store.store("u2", {"email": "a@b.c"})
        medium.set("other_app_key", "keep")

        removed = store.clear_all()
        assert removed == 4
        assert medium.keys() == ["other_app_key"]

    def test_clear_all_unavailable_raises(self, store: PersistentStore, medium):
        medium.failing = True
        with pytest.raises(StorageUnavailable):
            store.clear_all()


class TestStorageInfo:
    def test_info_with_data(self, store: PersistentStore):
        store.store("u1", {"mood": "good"})
        info = store.storage_info("u1")

        assert info.has_data is True
        assert info.version == "1.0"
        assert info.last_updated
        assert info.data_size > 0

    def test_info_without_data(self, store: PersistentStore):
        assert store.storage_info("u1") == StorageInfo()

    def test_info_unavailable_is_zeroed(self, store: PersistentStore, medium):
        store.store("u1", {"mood": "good"})
        medium.failing = True
        info = store.storage_info("u1")
        assert info.has_data is False
        assert info.data_size == 0
