"""Tests for the org metadata index and its selections."""

import tempfile
from pathlib import Path

import pytest

from orgsync.core.index import IndexNode, MetadataIndex, MetadataIndexError, build_index
from orgsync.core.metadata import MetadataRegistry


class FakeLister:
    def __init__(self, results: dict[tuple[str, str | None], list[str]]) -> None:
        self.results = results

    def list_metadata(self, xml_name: str, folder: str | None = None) -> list[dict]:
        return [{"fullName": name} for name in self.results.get((xml_name, folder), [])]


SERVER = {
    ("ApexClass", None): ["Foo", "Bar"],
    ("CustomObject", None): ["Account", "Widget__c"],
    ("CustomField", None): ["Account.Name__c", "Account.Tier__c", "Widget__c.Size__c"],
    ("ValidationRule", None): ["Account.Rule1"],
    ("DocumentFolder", None): ["Shared"],
    ("Document", "Shared"): ["Shared/logo.png", "Shared/readme.txt"],
}


@pytest.fixture
def index(registry: MetadataRegistry) -> MetadataIndex:
    return build_index(FakeLister(SERVER), ["ApexClass", "CustomObject", "Document"], registry)


def _selected(index: MetadataIndex) -> set[str]:
    return {node.id for node in index.walk() if node.select}


def _parent_map(index: MetadataIndex) -> dict[str, IndexNode]:
    parents = {}
    for node in index.walk():
        for child in node.children:
            parents[child.id] = node
    return parents


class TestBuildIndex:
    """Tests for building the index from listMetadata results."""

    def test_flat_type(self, index: MetadataIndex) -> None:
        apex = index.find_type("ApexClass")

        assert [c.id for c in apex.children] == ["ApexClass.Bar", "ApexClass.Foo"]
        assert all(c.leaf and c.level == 2 for c in apex.children)

    def test_child_collections(self, index: MetadataIndex) -> None:
        account = index.find("CustomObject.Account")

        assert [c.id for c in account.children] == [
            "CustomObject.Account.fields",
            "CustomObject.Account.validationRules",
        ]
        fields = index.find("CustomObject.Account.fields")
        assert [c.id for c in fields.children] == [
            "CustomObject.Account.fields.Name__c",
            "CustomObject.Account.fields.Tier__c",
        ]
        assert fields.children[0].level == 4

    def test_folders(self, index: MetadataIndex) -> None:
        folder = index.find("Document.Shared")

        assert folder.is_folder
        assert [c.id for c in folder.children] == ["Document.Shared.logo.png", "Document.Shared.readme.txt"]

    def test_unknown_and_child_types_skipped(self, registry: MetadataRegistry) -> None:
        index = build_index(FakeLister(SERVER), ["Bogus", "CustomField", "ApexClass"], registry)
        assert [n.id for n in index.nodes] == ["ApexClass"]

    def test_save_and_load(self, index: MetadataIndex) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / ".org_metadata"
            index.save(path)

            loaded = MetadataIndex.load(path)
            assert loaded.to_list() == index.to_list()
            assert loaded.to_list()[0]["xmlName"] == "ApexClass"

    def test_load_missing(self) -> None:
        assert MetadataIndex.load(Path("/nonexistent/.org_metadata")).nodes == []


class TestSelections:
    """Tests for selecting nodes from a package subscription."""

    def test_flat_member(self, registry: MetadataRegistry) -> None:
        index = MetadataIndex(
            [
                IndexNode(
                    id="ApexClass",
                    text="ApexClass",
                    xml_name="ApexClass",
                    is_folder=True,
                    children=[IndexNode(id="ApexClass.Foo", text="Foo", xml_name="ApexClass", level=2, leaf=True)],
                )
            ]
        )

        ids = index.selection_ids({"ApexClass": ["Foo"]}, registry)
        assert ids == ["ApexClass.Foo"]

    def test_wildcard_selects_whole_subtree(self, index: MetadataIndex, registry: MetadataRegistry) -> None:
        ids = index.apply_selections({"CustomObject": "*"}, registry)

        assert "CustomObject" in ids
        for node in index.find_type("CustomObject").walk():
            assert node.select, node.id
        assert not index.find("ApexClass.Foo").select

    def test_selected_nodes_have_selected_ancestors(
        self, index: MetadataIndex, registry: MetadataRegistry
    ) -> None:
        index.apply_selections(
            {"ApexClass": ["Foo"], "CustomField": ["Widget__c.Size__c"], "Document": ["Shared/logo.png"]},
            registry,
        )

        parents = _parent_map(index)
        for node in index.walk():
            if node.select and node.id in parents:
                assert parents[node.id].select, node.id
        assert {
            "ApexClass",
            "ApexClass.Foo",
            "CustomObject.Widget__c.fields.Size__c",
            "CustomObject.Widget__c",
            "Document.Shared.logo.png",
            "Document.Shared",
        } <= _selected(index)

    def test_folder_member_only_first_slash_replaced(self, index: MetadataIndex, registry: MetadataRegistry) -> None:
        ids = index.selection_ids({"Document": ["Shared/sub/file.txt"]}, registry)
        assert ids == ["Document.Shared.sub/file.txt"]

    def test_member_with_children_selects_two_levels(
        self, index: MetadataIndex, registry: MetadataRegistry
    ) -> None:
        index.apply_selections({"CustomObject": ["Account"]}, registry)

        assert index.find("CustomObject.Account").select
        assert index.find("CustomObject.Account.fields").select
        assert index.find("CustomObject.Account.fields.Tier__c").select
        assert not index.find("CustomObject.Widget__c").select

    def test_unknown_type_raises_before_mutation(self, index: MetadataIndex, registry: MetadataRegistry) -> None:
        with pytest.raises(MetadataIndexError, match="Unrecognized package.xml metadata type: Bogus"):
            index.selection_ids({"ApexClass": "*", "Bogus": ["x"]}, registry)
        assert _selected(index) == set()

    def test_selection_is_reset(self, index: MetadataIndex, registry: MetadataRegistry) -> None:
        index.apply_selections({"ApexClass": "*"}, registry)
        index.apply_selections({"ApexClass": ["Foo"]}, registry)

        assert not index.find("ApexClass.Bar").select
        assert index.find("ApexClass.Foo").select

    def test_explicit_ids(self, index: MetadataIndex, registry: MetadataRegistry) -> None:
        index.apply_selections(None, registry, ids=["Document.Shared.readme.txt"])
        assert _selected(index) == {"Document", "Document.Shared", "Document.Shared.readme.txt"}

    def test_keyword_visibility(self, index: MetadataIndex, registry: MetadataRegistry) -> None:
        index.apply_selections({}, registry, keyword="TIER")

        assert index.find("CustomObject.Account.fields.Tier__c").visibility
        assert index.find("CustomObject.Account.fields").visibility
        assert index.find("CustomObject").visibility
        assert not index.find("CustomObject.Account.fields.Name__c").visibility
        assert not index.find("ApexClass").visibility
