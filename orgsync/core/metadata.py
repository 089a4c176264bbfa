"""Metadata type registry.

Answers "which metadata type is this?" by type name, by path, or by file
suffix. The default table ships with the package in
``orgsync/data/metadata_types.yaml``.
"""

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path, PurePosixPath
from typing import Any

import yaml


META_SUFFIX = "-meta.xml"


@dataclass(frozen=True)
class MetadataType:
    """Description of one metadata type."""

    xml_name: str
    directory_name: str | None = None
    suffix: str | None = None
    in_folder: bool = False
    folder_xml_name: str | None = None
    meta_file: bool = False
    child_xml_names: tuple[str, ...] = field(default_factory=tuple)
    parent_xml_name: str | None = None
    tag_name: str | None = None

    @property
    def is_child(self) -> bool:
        return self.parent_xml_name is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetadataType":
        return cls(
            xml_name=data["xml_name"],
            directory_name=data.get("directory_name"),
            suffix=data.get("suffix"),
            in_folder=data.get("in_folder", False),
            folder_xml_name=data.get("folder_xml_name"),
            meta_file=data.get("meta_file", False),
            child_xml_names=tuple(data.get("child_xml_names") or ()),
            parent_xml_name=data.get("parent_xml_name"),
            tag_name=data.get("tag_name"),
        )


class MetadataRegistry:
    """Lookup table of metadata types."""

    def __init__(self, types: list[MetadataType]) -> None:
        self.types = list(types)
        self._by_xml_name = {t.xml_name: t for t in self.types}
        self._by_directory = {t.directory_name: t for t in self.types if t.directory_name}
        self._by_suffix = {t.suffix: t for t in self.types if t.suffix}

    @classmethod
    def load(cls, path: Path) -> "MetadataRegistry":
        """Load a registry from a YAML type table."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls([MetadataType.from_dict(t) for t in data.get("types") or []])

    @classmethod
    def default(cls) -> "MetadataRegistry":
        """Registry built from the bundled type table."""
        table = resources.files("orgsync").joinpath("data", "metadata_types.yaml")
        data = yaml.safe_load(table.read_text(encoding="utf-8")) or {}
        return cls([MetadataType.from_dict(t) for t in data.get("types") or []])

    def get_type_by_xml_name(self, xml_name: str | None) -> MetadataType | None:
        if not xml_name:
            return None
        return self._by_xml_name.get(xml_name)

    def get_type_by_suffix(self, suffix: str | None) -> MetadataType | None:
        if not suffix:
            return None
        return self._by_suffix.get(suffix.lstrip("."))

    def get_type_by_path(self, path: str | None) -> MetadataType | None:
        """Resolve a type from a file path such as ``unpackaged/classes/Foo.cls``.

        The first directory component naming a known type wins; otherwise the
        file suffix is used. A bare suffix (``cls``) is accepted too.
        """
        if not path:
            return None

        path = path.replace("\\", "/")
        if path.endswith(META_SUFFIX):
            path = path[: -len(META_SUFFIX)]

        parts = PurePosixPath(path).parts
        for part in parts[:-1]:
            mtype = self._by_directory.get(part)
            if mtype is not None:
                return mtype

        name = parts[-1] if parts else path
        if "." not in name:
            return self.get_type_by_suffix(name)
        return self.get_type_by_suffix(name.rsplit(".", 1)[1])

    def get_parent_type(self, mtype: MetadataType) -> MetadataType | None:
        return self.get_type_by_xml_name(mtype.parent_xml_name)

    def __contains__(self, xml_name: str) -> bool:
        return xml_name in self._by_xml_name
