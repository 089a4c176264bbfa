"""Org metadata index.

The index is a tree of everything the server has for the subscribed types:

    ApexClass                              (type)
    ApexClass.Foo                          (member)
    CustomObject.Account                   (member with children)
    CustomObject.Account.fields            (child collection)
    CustomObject.Account.fields.Name__c    (child member)
    Document.Shared                        (folder)
    Document.Shared.logo.png               (member in folder)

Nodes carry ``select`` and ``visibility`` flags used by the project editor.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol

from ..models.settings import read_json, write_json
from .metadata import MetadataRegistry, MetadataType
from .package import WILDCARD, Members


logger = logging.getLogger(__name__)

ORG_METADATA_FILENAME = ".org_metadata"


class MetadataIndexError(Exception):
    """Raised when a selection cannot be computed."""


class MetadataLister(Protocol):
    """The part of the platform client the indexer needs."""

    def list_metadata(self, xml_name: str, folder: str | None = None) -> list[dict[str, Any]]: ...


@dataclass
class IndexNode:
    """One type, folder, member or child collection in the index."""

    id: str
    text: str
    xml_name: str
    level: int = 1
    is_folder: bool = False
    leaf: bool = False
    select: bool = False
    visibility: bool = True
    children: list["IndexNode"] = field(default_factory=list)

    def walk(self) -> Iterator["IndexNode"]:
        """Yield this node and every descendant."""
        yield self
        for child in self.children:
            yield from child.walk()

    def select_subtree(self) -> None:
        for node in self.walk():
            node.select = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "xmlName": self.xml_name,
            "level": self.level,
            "isFolder": self.is_folder,
            "leaf": self.leaf,
            "select": self.select,
            "visibility": self.visibility,
        }
        if self.children:
            result["children"] = [c.to_dict() for c in self.children]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexNode":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            text=data.get("text", data["id"]),
            xml_name=data.get("xmlName", ""),
            level=data.get("level", 1),
            is_folder=data.get("isFolder", False),
            leaf=data.get("leaf", False),
            select=data.get("select", False),
            visibility=data.get("visibility", True),
            children=[cls.from_dict(c) for c in data.get("children") or []],
        )


class MetadataIndex:
    """Selectable tree of server metadata."""

    def __init__(self, nodes: list[IndexNode] | None = None) -> None:
        self.nodes = nodes or []

    @classmethod
    def load(cls, path: Path) -> "MetadataIndex":
        """Load the index from ``.org_metadata``; missing file gives an empty index."""
        if not Path(path).exists():
            return cls()
        data = read_json(path, default=[]) or []
        return cls([IndexNode.from_dict(n) for n in data])

    def save(self, path: Path) -> None:
        write_json(path, self.to_list())

    def to_list(self) -> list[dict[str, Any]]:
        return [n.to_dict() for n in self.nodes]

    def walk(self) -> Iterator[IndexNode]:
        for node in self.nodes:
            yield from node.walk()

    def find(self, node_id: str) -> IndexNode | None:
        for node in self.walk():
            if node.id == node_id:
                return node
        return None

    def find_type(self, xml_name: str) -> IndexNode | None:
        for node in self.nodes:
            if node.xml_name == xml_name and node.id == xml_name:
                return node
        return None

    def clear_selection(self) -> None:
        for node in self.walk():
            node.select = False

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def selection_ids(
        self,
        subscription: Mapping[str, Members],
        registry: MetadataRegistry,
    ) -> list[str]:
        """Compute node ids selected by a package subscription.

        Wildcard types and nested members also get their subtrees selected
        here, since those selections are not expressed as ids.

        Raises:
            MetadataIndexError: If the subscription names an unknown type
        """
        resolved: list[tuple[str, Members, MetadataType]] = []
        for xml_name, members in subscription.items():
            mtype = registry.get_type_by_xml_name(xml_name)
            if mtype is None:
                raise MetadataIndexError(f"Unrecognized package.xml metadata type: {xml_name}")
            resolved.append((xml_name, members, mtype))

        ids: list[str] = []
        for xml_name, members, mtype in resolved:
            if members == WILDCARD:
                ids.append(xml_name)
                for node in self.walk():
                    if node.xml_name == xml_name:
                        node.select_subtree()
                continue

            parent_type = registry.get_parent_type(mtype) if mtype.is_child else None
            for member in members:
                if mtype.in_folder:
                    # Document.FolderName.File.txt
                    ids.append(".".join([xml_name, member.replace("/", ".", 1)]))
                elif parent_type is not None:
                    # CustomObject.Account.fields.Name__c
                    parent_name, _, child_name = member.partition(".")
                    ids.append(".".join([parent_type.xml_name, parent_name, mtype.tag_name or "", child_name]))
                elif mtype.child_xml_names:
                    indexed_type = self.find_type(xml_name)
                    if indexed_type is None:
                        continue
                    member_id = f"{xml_name}.{member}"
                    for node in indexed_type.children:
                        if node.id != member_id:
                            continue
                        # two levels: child collections and their members
                        for child in node.children:
                            child.select = True
                            for grandchild in child.children:
                                grandchild.select = True
                    ids.append(member_id)
                else:
                    ids.append(f"{xml_name}.{member}")
        return ids

    def set_checked(self, ids: list[str]) -> None:
        """Select every node whose id is listed."""
        wanted = set(ids)
        for node in self.walk():
            if node.id in wanted:
                node.select = True

    def ensure_parents_are_checked(self) -> None:
        """Select every ancestor of a selected node."""

        def visit(node: IndexNode) -> bool:
            child_selected = False
            for child in node.children:
                if visit(child):
                    child_selected = True
            if child_selected:
                node.select = True
            return node.select

        for node in self.nodes:
            visit(node)

    def set_visibility(self, keyword: str) -> None:
        """Show nodes whose text matches ``keyword`` plus their ancestors."""
        needle = keyword.lower()

        def visit(node: IndexNode) -> bool:
            visible = needle in node.text.lower()
            for child in node.children:
                if visit(child):
                    visible = True
            node.visibility = visible
            return visible

        for node in self.nodes:
            visit(node)

    def apply_selections(
        self,
        subscription: Mapping[str, Members] | None,
        registry: MetadataRegistry,
        ids: list[str] | None = None,
        keyword: str | None = None,
    ) -> list[str]:
        """Reset and recompute selection (and optionally visibility)."""
        self.clear_selection()
        if ids is None:
            ids = self.selection_ids(subscription or {}, registry)
        self.set_checked(ids)
        self.ensure_parents_are_checked()
        if keyword:
            self.set_visibility(keyword)
        return ids


# -----------------------------------------------------------------------------
# Building the index from the server
# -----------------------------------------------------------------------------

def _leaf(node_id: str, text: str, xml_name: str, level: int) -> IndexNode:
    return IndexNode(id=node_id, text=text, xml_name=xml_name, level=level, leaf=True)


def _index_type(lister: MetadataLister, mtype: MetadataType, registry: MetadataRegistry) -> IndexNode:
    xml_name = mtype.xml_name
    type_node = IndexNode(id=xml_name, text=xml_name, xml_name=xml_name, level=1, is_folder=True)

    if mtype.in_folder:
        folder_type = mtype.folder_xml_name or f"{xml_name}Folder"
        for folder in sorted(lister.list_metadata(folder_type), key=lambda r: r["fullName"]):
            folder_name = folder["fullName"]
            folder_node = IndexNode(
                id=f"{xml_name}.{folder_name}",
                text=folder_name,
                xml_name=xml_name,
                level=2,
                is_folder=True,
            )
            for record in sorted(lister.list_metadata(xml_name, folder_name), key=lambda r: r["fullName"]):
                leaf_name = record["fullName"].split("/", 1)[-1]
                folder_node.children.append(
                    _leaf(f"{xml_name}.{folder_name}.{leaf_name}", leaf_name, xml_name, 3)
                )
            type_node.children.append(folder_node)
        return type_node

    members = sorted(r["fullName"] for r in lister.list_metadata(xml_name))
    if not mtype.child_xml_names:
        type_node.children = [_leaf(f"{xml_name}.{m}", m, xml_name, 2) for m in members]
        return type_node

    member_nodes = {
        m: IndexNode(id=f"{xml_name}.{m}", text=m, xml_name=xml_name, level=2, is_folder=True)
        for m in members
    }
    for child_xml_name in mtype.child_xml_names:
        child_type = registry.get_type_by_xml_name(child_xml_name)
        if child_type is None:
            continue
        tag = child_type.tag_name or child_xml_name
        grouped: dict[str, list[str]] = {}
        for record in lister.list_metadata(child_xml_name):
            parent_name, _, child_name = record["fullName"].partition(".")
            if child_name:
                grouped.setdefault(parent_name, []).append(child_name)
        for parent_name, child_names in grouped.items():
            member_node = member_nodes.get(parent_name)
            if member_node is None:
                continue
            collection = IndexNode(
                id=f"{xml_name}.{parent_name}.{tag}",
                text=tag,
                xml_name=child_xml_name,
                level=3,
                is_folder=True,
            )
            collection.children = [
                _leaf(f"{collection.id}.{name}", name, child_xml_name, 4) for name in sorted(child_names)
            ]
            member_node.children.append(collection)

    type_node.children = list(member_nodes.values())
    return type_node


def build_index(
    lister: MetadataLister,
    subscription: list[str] | Mapping[str, Members],
    registry: MetadataRegistry,
) -> MetadataIndex:
    """Index the server's metadata for every subscribed type."""
    nodes: list[IndexNode] = []
    for xml_name in list(subscription):
        mtype = registry.get_type_by_xml_name(xml_name)
        if mtype is None:
            logger.warning("Skipping unknown metadata type: %s", xml_name)
            continue
        if mtype.is_child:
            logger.debug("Skipping child type %s, indexed under %s", xml_name, mtype.parent_xml_name)
            continue
        logger.debug("indexing %s", xml_name)
        nodes.append(_index_type(lister, mtype, registry))
    return MetadataIndex(nodes)
