"""Core sync functionality."""

from .auth import Credentials
from .client import DeployResult, PlatformAPIError, PlatformClient, RetrieveResult
from .index import IndexNode, MetadataIndex, build_index
from .keychain import KeychainError, KeychainService
from .local_store import LocalStore, LocalStoreEntry
from .metadata import MetadataRegistry, MetadataType
from .package import PackageDescriptor, PackageError
from .project import Project, ProjectError, ProjectValidationError

__all__ = [
    "Credentials",
    "DeployResult",
    "IndexNode",
    "KeychainError",
    "KeychainService",
    "LocalStore",
    "LocalStoreEntry",
    "MetadataIndex",
    "MetadataRegistry",
    "MetadataType",
    "PackageDescriptor",
    "PackageError",
    "PlatformAPIError",
    "PlatformClient",
    "Project",
    "ProjectError",
    "ProjectValidationError",
    "RetrieveResult",
    "build_index",
]
