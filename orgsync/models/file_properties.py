"""File property records returned by the platform.

Two shapes reach the synchronizer: ``RetrievedFile`` comes from a Metadata API
retrieve (or the retrieve attached to a deploy), ``QueriedRecord`` comes from
an API query and carries nested creator/modifier objects. Raw dictionaries
are parsed once, at the client boundary, by ``parse_file_properties``.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Union


@dataclass(frozen=True)
class RetrievedFile:
    """One entry of a retrieve result's ``fileProperties``."""

    full_name: str
    file_name: str
    type: str = ""
    id: str = ""
    created_by_id: str = ""
    created_by_name: str = ""
    created_date: str = ""
    last_modified_by_id: str = ""
    last_modified_by_name: str = ""
    last_modified_date: str = ""
    manageable_state: str = ""
    namespace_prefix: str = ""

    @property
    def is_manifest(self) -> bool:
        return "package.xml" in self.full_name or self.file_name.endswith("package.xml")

    def to_dict(self) -> dict[str, str]:
        """Convert to the camelCase shape stored in the local store."""
        return {
            "id": self.id,
            "fullName": self.full_name,
            "fileName": self.file_name,
            "type": self.type,
            "createdById": self.created_by_id,
            "createdByName": self.created_by_name,
            "createdDate": self.created_date,
            "lastModifiedById": self.last_modified_by_id,
            "lastModifiedByName": self.last_modified_by_name,
            "lastModifiedDate": self.last_modified_date,
            "manageableState": self.manageable_state,
            "namespacePrefix": self.namespace_prefix,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetrievedFile":
        return cls(
            full_name=data.get("fullName", ""),
            file_name=data.get("fileName", ""),
            type=data.get("type") or "",
            id=data.get("id") or "",
            created_by_id=data.get("createdById") or "",
            created_by_name=data.get("createdByName") or "",
            created_date=data.get("createdDate") or "",
            last_modified_by_id=data.get("lastModifiedById") or "",
            last_modified_by_name=data.get("lastModifiedByName") or "",
            last_modified_date=data.get("lastModifiedDate") or "",
            manageable_state=data.get("manageableState") or "",
            namespace_prefix=data.get("namespacePrefix") or "",
        )


@dataclass(frozen=True)
class QueriedRecord:
    """A record returned by a (tooling) API query, e.g. an ApexClass row."""

    name: str
    api_type: str
    id: str = ""
    created_by_id: str = ""
    created_by_name: str = ""
    created_date: str = ""
    last_modified_by_id: str = ""
    last_modified_by_name: str = ""
    last_modified_date: str = ""
    namespace_prefix: str = ""

    @property
    def manageable_state(self) -> str:
        return "managed" if self.namespace_prefix else "unmanaged"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueriedRecord":
        # query rows come back PascalCase; accept camelCase too
        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        created_by = pick("CreatedBy", "createdBy") or {}
        modified_by = pick("LastModifiedBy", "lastModifiedBy") or {}
        return cls(
            name=pick("Name", "name") or "",
            api_type=data["attributes"].get("type", ""),
            id=pick("Id", "id") or "",
            created_by_id=pick("CreatedById", "createdById") or "",
            created_by_name=created_by.get("Name") or created_by.get("name") or "",
            created_date=pick("CreatedDate", "createdDate") or "",
            last_modified_by_id=pick("LastModifiedById", "lastModifiedById") or "",
            last_modified_by_name=modified_by.get("Name") or modified_by.get("name") or "",
            last_modified_date=pick("LastModifiedDate", "lastModifiedDate") or "",
            namespace_prefix=pick("NamespacePrefix", "namespacePrefix") or "",
        )


FileProperty = Union[RetrievedFile, QueriedRecord]


def parse_file_property(data: dict[str, Any] | FileProperty) -> FileProperty:
    """Parse one raw record into its tagged shape."""
    if isinstance(data, (RetrievedFile, QueriedRecord)):
        return data
    if data.get("attributes"):
        return QueriedRecord.from_dict(data)
    return RetrievedFile.from_dict(data)


def parse_file_properties(
    data: dict[str, Any] | FileProperty | Iterable[dict[str, Any] | FileProperty] | None,
) -> list[FileProperty]:
    """Parse a single record or a list of records.

    The Metadata API returns a bare object instead of a one-element list
    when only one file is involved, so both are accepted.
    """
    if data is None:
        return []
    if isinstance(data, (dict, RetrievedFile, QueriedRecord)):
        data = [data]
    return [parse_file_property(item) for item in data]
