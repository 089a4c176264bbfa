"""Data models for orgsync."""

from .config import OrgSyncConfig
from .file_properties import (
    FileProperty,
    QueriedRecord,
    RetrievedFile,
    parse_file_properties,
)
from .settings import DebugSettings, ProjectSettings, SessionCache

__all__ = [
    "DebugSettings",
    "FileProperty",
    "OrgSyncConfig",
    "ProjectSettings",
    "QueriedRecord",
    "RetrievedFile",
    "SessionCache",
    "parse_file_properties",
]
