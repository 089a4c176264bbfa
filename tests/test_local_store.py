"""Tests for local store reconciliation."""

import tempfile
from pathlib import Path

import pytest

from orgsync.core.local_store import LocalStore, LocalStoreError, MMState, build_entries
from orgsync.core.metadata import MetadataRegistry
from orgsync.models.file_properties import QueriedRecord, RetrievedFile, parse_file_properties


QUERIED = {
    "attributes": {"type": "ApexClass", "url": "/services/data/v58.0/sobjects/ApexClass/01p2"},
    "Id": "01p000000000002",
    "Name": "Bar",
    "NamespacePrefix": None,
    "CreatedDate": "2024-01-01T00:00:00.000+0000",
    "CreatedBy": {"Name": "Grace"},
    "LastModifiedDate": "2024-02-01T00:00:00.000+0000",
    "LastModifiedBy": {"Name": "Linus"},
}


class TestFileProperties:
    """Tests for parsing raw file properties."""

    def test_single_dict_is_accepted(self) -> None:
        result = parse_file_properties({"fullName": "Foo", "fileName": "unpackaged/classes/Foo.cls"})

        assert len(result) == 1
        assert isinstance(result[0], RetrievedFile)

    def test_queried_record(self) -> None:
        (record,) = parse_file_properties([QUERIED])

        assert isinstance(record, QueriedRecord)
        assert record.api_type == "ApexClass"
        assert record.created_by_name == "Grace"
        assert record.last_modified_by_name == "Linus"
        assert record.manageable_state == "unmanaged"

    def test_managed_record(self) -> None:
        (record,) = parse_file_properties([{**QUERIED, "NamespacePrefix": "acme"}])
        assert record.manageable_state == "managed"


class TestBuildEntries:
    """Tests for turning file properties into store entries."""

    def test_retrieved_files_keyed_by_suffix(self, registry: MetadataRegistry) -> None:
        entries = build_entries(
            [
                {"fullName": "Foo", "fileName": "unpackaged/classes/Foo.cls", "type": "ApexClass"},
                {"fullName": "Home", "fileName": "unpackaged/pages/Home.page"},
            ],
            registry,
        )

        assert set(entries) == {"Foo.cls", "Home.page"}
        assert entries["Home.page"].type == "ApexPage"
        assert all(e.mm_state == MMState.CLEAN for e in entries.values())

    def test_manifest_and_unknown_types_skipped(self, registry: MetadataRegistry) -> None:
        entries = build_entries(
            [
                {"fullName": "package.xml", "fileName": "unpackaged/package.xml"},
                {"fullName": "Mystery", "fileName": "unpackaged/mystery/Mystery.zzz"},
            ],
            registry,
        )
        assert entries == {}

    def test_queried_record_gets_synthesized_file_name(self, registry: MetadataRegistry) -> None:
        entries = build_entries([QUERIED], registry)
        entry = entries["Bar.cls"]

        assert entry.file_name == "unpackaged/classes/Bar.cls"
        assert entry.full_name == "Bar"
        assert entry.type == "ApexClass"
        assert entry.created_by_name == "Grace"
        assert entry.manageable_state == "unmanaged"

    def test_folder_member_key_is_compound(self, registry: MetadataRegistry) -> None:
        entries = build_entries(
            [{"fullName": "Shared/Report1", "fileName": "unpackaged/reports/Shared/Report1.report", "type": "Report"}],
            registry,
        )
        assert list(entries) == ["Shared/Report1.report"]

    def test_type_without_suffix_uses_bare_name(self, registry: MetadataRegistry) -> None:
        entries = build_entries(
            [{"fullName": "myCmp", "fileName": "unpackaged/aura/myCmp", "type": "AuraDefinitionBundle"}],
            registry,
        )
        assert list(entries) == ["myCmp"]


class TestLocalStore:
    """Tests for the .local_store file."""

    def test_missing_file_is_empty(self, registry: MetadataRegistry) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = LocalStore(Path(tmpdir) / ".local_store", registry)
            assert store.load() == {}

    def test_empty_file_is_empty(self, registry: MetadataRegistry) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / ".local_store"
            path.write_text("")
            assert LocalStore(path, registry).load() == {}

    def test_malformed_file_raises(self, registry: MetadataRegistry) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / ".local_store"
            path.write_text("{not json")
            with pytest.raises(LocalStoreError):
                LocalStore(path, registry).load()

    def test_replace_then_load(self, registry: MetadataRegistry) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = LocalStore(Path(tmpdir) / "config" / ".local_store", registry)
            store.replace([{"fullName": "Foo", "fileName": "unpackaged/classes/Foo.cls", "id": "01p1"}])

            loaded = store.load()
            assert list(loaded) == ["Foo.cls"]
            assert loaded["Foo.cls"].id == "01p1"
            assert loaded["Foo.cls"].mm_state == "clean"

    def test_update_merges(self, registry: MetadataRegistry) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = LocalStore(Path(tmpdir) / ".local_store", registry)
            store.replace(
                [
                    {"fullName": "Foo", "fileName": "unpackaged/classes/Foo.cls", "id": "old"},
                    {"fullName": "Home", "fileName": "unpackaged/pages/Home.page", "id": "page"},
                ]
            )
            store.update({"fullName": "Foo", "fileName": "unpackaged/classes/Foo.cls", "id": "new"})

            loaded = store.load()
            assert loaded["Foo.cls"].id == "new"
            assert loaded["Home.page"].id == "page"
            assert store.get_entry("Home.page").full_name == "Home"
