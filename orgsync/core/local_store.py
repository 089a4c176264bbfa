"""Local store: last-synced server state for every local metadata file."""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable

from ..models.file_properties import FileProperty, QueriedRecord, RetrievedFile, parse_file_properties
from ..models.settings import read_json, write_json
from .metadata import MetadataRegistry, MetadataType


logger = logging.getLogger(__name__)

LOCAL_STORE_FILENAME = ".local_store"


class LocalStoreError(Exception):
    """Raised when the local store cannot be read or written."""


class MMState:
    """Synchronization states of a local store entry."""

    CLEAN = "clean"


@dataclass
class LocalStoreEntry:
    """Server properties of one local file as of its last sync."""

    full_name: str
    file_name: str
    type: str
    id: str = ""
    created_by_id: str = ""
    created_by_name: str = ""
    created_date: str = ""
    last_modified_by_id: str = ""
    last_modified_by_name: str = ""
    last_modified_date: str = ""
    manageable_state: str = ""
    namespace_prefix: str = ""
    mm_state: str = MMState.CLEAN

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
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
            "mmState": self.mm_state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalStoreEntry":
        """Create from dictionary."""
        return cls(
            full_name=data.get("fullName", ""),
            file_name=data.get("fileName", ""),
            type=data.get("type", ""),
            id=data.get("id") or "",
            created_by_id=data.get("createdById") or "",
            created_by_name=data.get("createdByName") or "",
            created_date=data.get("createdDate") or "",
            last_modified_by_id=data.get("lastModifiedById") or "",
            last_modified_by_name=data.get("lastModifiedByName") or "",
            last_modified_date=data.get("lastModifiedDate") or "",
            manageable_state=data.get("manageableState") or "",
            namespace_prefix=data.get("namespacePrefix") or "",
            mm_state=data.get("mmState", MMState.CLEAN),
        )


def store_key(name: str, mtype: MetadataType) -> str:
    """Local store key for a member: ``<name>.<suffix>``.

    Folder-scoped members already carry their folder in ``name``. Types
    without a fixed suffix are keyed by name alone.
    """
    return f"{name}.{mtype.suffix}" if mtype.suffix else name


def _entry_for(fp: FileProperty, registry: MetadataRegistry) -> tuple[str, LocalStoreEntry] | None:
    if isinstance(fp, QueriedRecord):
        mtype = registry.get_type_by_xml_name(fp.api_type)
        if mtype is None:
            logger.debug("Could not determine metadata type for: %s", fp)
            return None
        parts = ["unpackaged", mtype.directory_name, store_key(fp.name, mtype)]
        file_name = "/".join(p for p in parts if p)
        entry = LocalStoreEntry(
            full_name=fp.name,
            file_name=file_name,
            type=mtype.xml_name,
            id=fp.id,
            created_by_id=fp.created_by_id,
            created_by_name=fp.created_by_name,
            created_date=fp.created_date,
            last_modified_by_id=fp.last_modified_by_id,
            last_modified_by_name=fp.last_modified_by_name,
            last_modified_date=fp.last_modified_date,
            manageable_state=fp.manageable_state,
            namespace_prefix=fp.namespace_prefix,
        )
        return store_key(fp.name, mtype), entry

    if fp.is_manifest:
        return None

    mtype = registry.get_type_by_xml_name(fp.type) or registry.get_type_by_path(fp.file_name)
    if mtype is None:
        logger.debug("Could not determine metadata type for: %s", fp)
        return None

    entry = LocalStoreEntry(**{**asdict(fp), "type": fp.type or mtype.xml_name})
    return store_key(fp.full_name, mtype), entry


def build_entries(
    properties: Iterable[dict[str, Any] | FileProperty] | dict[str, Any] | FileProperty | None,
    registry: MetadataRegistry,
) -> dict[str, LocalStoreEntry]:
    """Convert file properties into local store entries, all marked clean.

    Records whose type cannot be resolved are skipped, and the manifest is
    never stored.
    """
    entries: dict[str, LocalStoreEntry] = {}
    for fp in parse_file_properties(properties):
        result = _entry_for(fp, registry)
        if result is None:
            continue
        key, entry = result
        entries[key] = entry
    return entries


class LocalStore:
    """Reads and writes ``config/.local_store``."""

    def __init__(self, store_file: Path, registry: MetadataRegistry | None = None) -> None:
        """Initialize store.

        Args:
            store_file: Path to the .local_store file
            registry: Metadata registry used to resolve entry types
        """
        self.store_file = Path(store_file)
        self.registry = registry or MetadataRegistry.default()

    def load(self) -> dict[str, LocalStoreEntry]:
        """Load entries from disk. A missing or empty file is an empty store."""
        if not self.store_file.exists():
            return {}
        try:
            data = read_json(self.store_file, default={})
        except (OSError, json.JSONDecodeError) as e:
            raise LocalStoreError(f"Could not read local store: {e}") from e
        return {key: LocalStoreEntry.from_dict(value) for key, value in (data or {}).items()}

    def _save(self, entries: dict[str, LocalStoreEntry]) -> None:
        try:
            write_json(self.store_file, {k: v.to_dict() for k, v in entries.items()})
        except OSError as e:
            raise LocalStoreError(f"Could not write local store: {e}") from e

    def replace(self, properties: Any) -> dict[str, LocalStoreEntry]:
        """Replace the whole store with entries built from ``properties``."""
        entries = build_entries(properties, self.registry)
        logger.debug("writing %d entries to local store", len(entries))
        self._save(entries)
        return entries

    def update(self, properties: Any) -> dict[str, LocalStoreEntry]:
        """Merge entries built from ``properties`` into the existing store."""
        store = self.load()
        updates = build_entries(properties, self.registry)
        store.update(updates)
        logger.debug("updated %d local store entries", len(updates))
        self._save(store)
        return store

    def get_entry(self, key: str) -> LocalStoreEntry | None:
        return self.load().get(key)
