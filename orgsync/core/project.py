"""Project state synchronization.

A project is a local directory that mirrors part of an org:

    <workspace>/<name>/
        src/                    metadata files + package.xml
        config/                 .settings, .session, .debug, .local_store, ...
        debug/logs/             downloaded debug logs
        <name>.sublime-project

``Project`` creates, retrieves, refreshes, compiles and edits that tree while
keeping ``config/`` consistent with what the server last reported.
"""

import json
import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable

from ..models.config import OrgSyncConfig
from ..models.settings import (
    DEBUG_FILENAME,
    SESSION_FILENAME,
    SETTINGS_FILENAME,
    DebugSettings,
    ProjectSettings,
    SessionCache,
    read_json,
    write_json,
)
from .auth import Credentials, is_auth_failure
from .client import DeployResult, PlatformAPIError, PlatformClient
from .index import ORG_METADATA_FILENAME, MetadataIndex, MetadataIndexError, build_index
from .keychain import KeychainError, KeychainService
from .lightning import LightningService
from .local_store import LOCAL_STORE_FILENAME, LocalStore, LocalStoreEntry, LocalStoreError
from .logs import LogService
from .metadata import MetadataRegistry
from .package import PackageDescriptor, Subscription


logger = logging.getLogger(__name__)

DEFAULT_PACKAGE = ["ApexClass", "ApexComponent", "ApexPage", "ApexTrigger", "StaticResource"]

DESCRIBE_FILENAME = ".describe"
LIGHTNING_FILENAME = ".lightning"
STAGING_DIRNAME = "unpackaged"

# Orgs without Lightning support answer the Aura query with one of these
LIGHTNING_UNSUPPORTED = (
    "sObject type 'AuraDefinition' is not supported",
    "requested resource does not exist",
)

ClientFactory = Callable[[Credentials, SessionCache | None], PlatformClient]


class ProjectError(Exception):
    """Raised when a project operation fails."""


class ProjectValidationError(ProjectError):
    """Raised when a project cannot be created or opened at the given location."""


def _empty_directory(path: Path) -> None:
    if not path.exists():
        return
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _remove_empty_directories(root: Path) -> None:
    """Delete empty directories below ``root`` (``root`` itself is kept)."""
    if not root.exists():
        return
    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        if Path(dirpath) != root and not os.listdir(dirpath):
            os.rmdir(dirpath)


def _raise(error: OSError) -> None:
    raise error


class Project:
    """A local project mirroring an org."""

    def __init__(
        self,
        name: str | None = None,
        workspace: str | Path | None = None,
        path: str | Path | None = None,
        origin: str | Path | None = None,
        subscription: list[str] | None = None,
        package: Subscription | None = None,
        password: str | None = None,
        client: PlatformClient | None = None,
        keychain: KeychainService | None = None,
        registry: MetadataRegistry | None = None,
        config: OrgSyncConfig | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize project.

        Args:
            name: Project name (directory name inside the workspace)
            workspace: Directory holding projects
            path: Explicit project path (existing projects)
            origin: Directory to import a project from
            subscription: Metadata types the project subscribes to
            package: Package to retrieve for a new project
            password: Org password, stored once the project is created
            client: Platform client (created from settings if not provided)
            keychain: Password store (system keychain if not provided)
            registry: Metadata type registry
            config: Global user configuration
            client_factory: Builds clients from credentials and a cached session
        """
        self.name = name
        self.workspace = Path(workspace) if workspace else None
        self.path = Path(path) if path else None
        self.origin = Path(origin) if origin else None
        self.subscription = subscription
        self.package = package
        self.password = password
        self.id: str | None = None

        self.config = config or OrgSyncConfig.load()
        self.registry = registry or MetadataRegistry.default()
        self.keychain = keychain or KeychainService(enabled=self.config.use_keyring)
        self.client_factory = client_factory or self._default_client_factory
        self._client = client
        self._watched_client: PlatformClient | None = None

        self.settings: ProjectSettings | None = None
        self.package_xml: PackageDescriptor | None = None
        self.local_store: dict[str, LocalStoreEntry] = {}
        self.org_metadata: MetadataIndex | None = None
        self.lightning_index: list[dict[str, Any]] | None = None
        self.log_service = LogService(self)
        self._describe: dict[str, Any] | None = None

        self.valid = False
        self.initialized = False

    def _default_client_factory(
        self, credentials: Credentials, session: SessionCache | None
    ) -> PlatformClient:
        return PlatformClient(
            credentials,
            session=session,
            api_version=self.config.api_version,
            poll_interval=self.config.poll_interval,
            poll_timeout=self.config.poll_timeout,
        )

    @property
    def client(self) -> PlatformClient:
        """Get or create the platform client (credentials from the environment)."""
        if self._client is None:
            self._client = self.client_factory(Credentials.from_env(), None)
            self._client.initialize()
        return self._client

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def _require_path(self) -> Path:
        if self.path is None:
            raise ProjectError("Project path is not set")
        return self.path

    @property
    def config_dir(self) -> Path:
        return self._require_path() / "config"

    @property
    def src_dir(self) -> Path:
        return self._require_path() / "src"

    @property
    def package_xml_path(self) -> Path:
        return self.src_dir / "package.xml"

    @property
    def settings_file(self) -> Path:
        return self.config_dir / SETTINGS_FILENAME

    @property
    def session_file(self) -> Path:
        return self.config_dir / SESSION_FILENAME

    @property
    def debug_file(self) -> Path:
        return self.config_dir / DEBUG_FILENAME

    @property
    def local_store_file(self) -> Path:
        return self.config_dir / LOCAL_STORE_FILENAME

    @property
    def org_metadata_file(self) -> Path:
        return self.config_dir / ORG_METADATA_FILENAME

    @contextmanager
    def _writing(self, what: str, action: str = "write") -> Iterator[None]:
        try:
            yield
        except OSError as e:
            raise ProjectError(f"Could not {action} {what}: {e}") from e

    def _staging_dir(self) -> Path:
        with self._writing("staging directory", action="create"):
            return Path(tempfile.mkdtemp(prefix="mm_"))

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def initialize(self, is_new: bool = False, is_existing_directory: bool = False) -> "Project":
        """Initialize a new project, an imported directory, or an existing project.

        Raises:
            ProjectValidationError: If the location is not usable
            ProjectError: If initialization fails
        """
        try:
            if not is_new:
                self._init_existing()
            elif is_existing_directory:
                self._init_new_project_from_existing_directory()
            else:
                self._init_new()
        except Exception as e:
            logger.error("Could not initiate %s project: %s", "new" if is_new else "existing", e)
            raise
        self.initialized = True
        return self

    def _init_new(self) -> str:
        """Reserve a location and id for a project not yet on disk."""
        if self.workspace is None:
            workspace = self.config.workspace
            logger.debug("workspace not specified, using %s", workspace)
            self.workspace = Path(workspace) if workspace else None
        if self.workspace is None:
            raise ProjectValidationError("Could not set workspace for new project")
        self.workspace.mkdir(parents=True, exist_ok=True)

        self.path = self.workspace / self.name
        if self.path.exists():
            raise ProjectValidationError("Directory already exists!")

        self.id = str(uuid.uuid1())
        return self.id

    def _init_new_project_from_existing_directory(self) -> None:
        """Turn an existing ``src/package.xml`` tree into a project."""
        if self.workspace is None:
            raise ProjectValidationError("Please select a workspace for this project")
        if self.origin is None or not (self.origin / "src").is_dir():
            raise ProjectValidationError("Project must have a top-level src directory")
        if not (self.origin / "src" / "package.xml").is_file():
            raise ProjectValidationError(
                "Project must have a valid package.xml file located in the src directory"
            )

        destination = self.workspace / self.name
        copied = self.origin.resolve() != destination.resolve()
        if copied:
            if destination.exists():
                raise ProjectValidationError(
                    "Project with this name already exists in the selected workspace"
                )
            with self._writing("project into workspace", action="copy"):
                shutil.copytree(self.origin, destination)
        self.path = destination

        try:
            with self._writing("project config directory", action="create"):
                self.config_dir.mkdir(parents=True, exist_ok=True)
            self.set_describe(self.client.describe())
            self.package_xml = PackageDescriptor(self.package_xml_path).init()
            result = self.client.retrieve_unpackaged(self.package_xml.subscription, True, self.path)
            staged = self.path / STAGING_DIRNAME
            if staged.exists():
                shutil.rmtree(staged)
            self.id = str(uuid.uuid1())
            self._init_config()
            self._write_local_store(result.file_properties)
        except Exception as e:
            logger.error("Could not import project into workspace: %s", e)
            if copied and destination.exists():
                shutil.rmtree(destination)
            raise

    def _resolve_location(self) -> Path:
        if self.path is not None:
            path = self.path
        elif self.workspace is not None and self.name:
            path = self.workspace / self.name
        else:
            path = Path.cwd()
        return path

    def _is_valid(self) -> bool:
        return (self._resolve_location() / "config" / SETTINGS_FILENAME).is_file()

    def _init_existing(self) -> None:
        """Open a project that already exists on disk and connect to its org."""
        logger.debug("initializing existing project")
        if not self._is_valid():
            raise ProjectValidationError("This does not seem to be a valid project directory.")

        self.path = self._resolve_location()
        self.workspace = self.path.parent
        self.name = self.path.name
        logger.debug("project %s at %s", self.name, self.path)

        try:
            self.package_xml = PackageDescriptor(self.package_xml_path).init()
            self.settings = ProjectSettings.load(self.settings_file)
            self.id = self.settings.id
            password = self._get_password()
            self.settings = self.settings.with_value("password", password)

            if self._client is None:
                credentials = Credentials(
                    username=self.settings.username,
                    password=password,
                    org_type=self.settings.environment,
                    login_url=self.settings.login_url or None,
                )
                self._client = self.client_factory(credentials, self._get_cached_session())
            self._watch_client(self._client)
            self._client.initialize()
            self._write_session()

            self.local_store = self.get_local_store()
            self.get_org_metadata_index_with_selections()
            self._refresh_describe_from_server()
            self._client.start_log_listener()
            self.valid = True
        except Exception as e:
            if is_auth_failure(str(e)):
                self.valid = False
                SessionCache.clear(self.session_file)
            raise

    def _watch_client(self, client: PlatformClient) -> None:
        """Subscribe to session refreshes and new logs, once per client."""
        if client is self._watched_client:
            return
        client.on_session_refresh(self._on_session_refresh)
        client.on_new_log(self._on_new_log)
        self._watched_client = client

    def _on_session_refresh(self) -> None:
        logger.debug("session refreshed, updating local session cache")
        self._write_session()

    def _on_new_log(self, message: dict[str, Any]) -> None:
        log_id = (message.get("sobject") or {}).get("Id")
        if not log_id:
            return
        try:
            self.log_service.download_log(log_id)
        except (PlatformAPIError, OSError) as e:
            logger.debug("Could not download log: %s", e)

    def poll_logs(self) -> list[Path]:
        """Check the org for new debug logs once.

        New logs are downloaded by the new-log handler registered on open.

        Returns:
            Paths of the logs that were written
        """
        records = self.client.poll_logs()
        paths = [self.log_service.logs_dir / f"{record['Id']}.log" for record in records]
        return [path for path in paths if path.exists()]

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    def retrieve_and_write_to_disk(self) -> None:
        """Retrieve the project's package and write the new project to disk.

        The project directory is removed again if anything fails after it
        has been created.
        """
        if self.path is None and self.workspace is not None and self.name:
            self.path = self.workspace / self.name
        path = self._require_path()
        if path.exists():
            raise ProjectValidationError(
                "Project with this name already exists in the specified workspace."
            )
        if not self.package:
            self.package = list(DEFAULT_PACKAGE)

        self.set_describe(self.client.describe())
        with self._writing("project directory", action="create"):
            path.mkdir(parents=True)
        try:
            with self._writing("project config directory", action="create"):
                self.config_dir.mkdir()
            result = self.client.retrieve_unpackaged(self.package, True, path)
            staged = path / STAGING_DIRNAME
            if staged.exists():
                with self._writing("retrieved metadata into src", action="move"):
                    staged.rename(self.src_dir)
            self._init_config()
            self._write_local_store(result.file_properties)
        except Exception as e:
            logger.error("Could not retrieve and write project to file system: %s", e)
            if path.exists():
                shutil.rmtree(path)
            raise

    def _init_config(self) -> None:
        """Write every file under ``config/`` for a freshly created project.

        Steps run in order and the first failure stops the batch. Files
        already written stay on disk.
        """
        self._write_settings()
        self._write_session()
        self._write_debug()
        self._write_editor_settings()
        self._refresh_describe_from_server()
        self.index_lightning()
        self._store_password()

    def refresh_from_server(self) -> None:
        """Replace ``src/`` with the server copy of the subscribed metadata."""
        logger.debug("refreshing project from server")
        staging = self._staging_dir()
        try:
            self.package_xml = PackageDescriptor(self.package_xml_path).init()
            result = self.client.retrieve_unpackaged(self.package_xml.subscription, True, staging)
            with self._writing("src directory", action="clear"):
                _empty_directory(self.src_dir)
            self.replace_local_files(staging / STAGING_DIRNAME, True)
            self._write_local_store(result.file_properties)
            self.index_lightning()
            with self._writing("empty directories from src", action="remove"):
                _remove_empty_directories(self.src_dir)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def clean(self) -> None:
        """Refresh sources, then the describe snapshot and the metadata index."""
        self.refresh_from_server()
        self._refresh_describe_from_server()
        self.index_metadata()

    def compile(self) -> DeployResult:
        """Deploy ``src/`` and record what the server reports back."""
        staging = self._staging_dir()
        try:
            with self._writing("deploy archive", action="build"):
                shutil.copytree(self.src_dir, staging / STAGING_DIRNAME)
                archive = shutil.make_archive(
                    str(staging / STAGING_DIRNAME), "zip", root_dir=staging, base_dir=STAGING_DIRNAME
                )
                data = Path(archive).read_bytes()
            result = self.client.deploy(data, {"rollbackOnError": True, "performRetrieve": True})
            logger.debug("compile result: %s", result)

            retrieved = result.details.retrieve_result if result.details else None
            if retrieved is not None:
                self.update_local_store(retrieved.file_properties)
            return result
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def edit(self, package: Subscription) -> None:
        """Re-scope the project to ``package`` and retrieve it."""
        logger.debug("editing project, requested package: %s", package)
        staging = self._staging_dir()
        try:
            result = self.client.retrieve_unpackaged(package, True, staging)
            self._write_local_store(result.file_properties)
            with self._writing("src directory", action="clear"):
                _empty_directory(self.src_dir)
            self.replace_local_files(staging / STAGING_DIRNAME, True)
            self.package_xml = PackageDescriptor(self.package_xml_path).init()
            with self._writing("empty directories from src", action="remove"):
                _remove_empty_directories(self.src_dir)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def replace_local_files(self, remote_path: str | Path, replace_package_xml: bool = False) -> None:
        """Copy retrieved files over ``src/`` and remove the staging tree.

        Args:
            remote_path: Staging root, e.g. ``<tmp>/unpackaged``
            replace_package_xml: Also overwrite manifests

        Raises:
            ProjectError: If the staging tree cannot be read or copied
        """
        remote = Path(remote_path)
        if not remote.is_dir():
            raise ProjectError(f"Could not process retrieved metadata: {remote} not found")

        try:
            for dirpath, _dirnames, filenames in os.walk(remote, onerror=_raise):
                destination = self.src_dir / Path(dirpath).relative_to(remote)
                destination.mkdir(parents=True, exist_ok=True)
                for filename in filenames:
                    if filename == "package.xml" and not replace_package_xml:
                        continue
                    logger.debug("refreshing file: %s", filename)
                    target = destination / filename
                    target.unlink(missing_ok=True)
                    shutil.copy2(Path(dirpath) / filename, target)
            shutil.rmtree(remote)
        except OSError as e:
            raise ProjectError(f"Could not process retrieved metadata: {e}") from e

    # -------------------------------------------------------------------------
    # Local store
    # -------------------------------------------------------------------------

    def _store(self) -> LocalStore:
        return LocalStore(self.local_store_file, self.registry)

    def get_local_store(self) -> dict[str, LocalStoreEntry]:
        try:
            return self._store().load()
        except LocalStoreError as e:
            raise ProjectError(str(e)) from e

    def update_local_store(self, file_properties: Any) -> None:
        """Merge file properties into the local store."""
        try:
            self.local_store = self._store().update(file_properties)
        except LocalStoreError as e:
            raise ProjectError(str(e)) from e

    def _write_local_store(self, file_properties: Any) -> None:
        """Replace the local store with entries for ``file_properties``."""
        try:
            self.local_store = self._store().replace(file_properties)
        except LocalStoreError as e:
            raise ProjectError(str(e)) from e

    # -------------------------------------------------------------------------
    # Org metadata index
    # -------------------------------------------------------------------------

    def get_org_metadata_index(self) -> list[dict[str, Any]]:
        """Raw ``.org_metadata`` contents, or ``[]`` if not indexed."""
        try:
            return read_json(self.org_metadata_file, default=[]) or []
        except (OSError, json.JSONDecodeError) as e:
            logger.debug("Could not return org metadata: %s", e)
            return []

    def get_org_metadata_index_with_selections(
        self,
        keyword: str | None = None,
        ids: list[str] | None = None,
        package_location: str | Path | None = None,
    ) -> list[dict[str, Any]]:
        """Org metadata index annotated with the current selection.

        Args:
            keyword: Only nodes matching this (and their ancestors) stay visible
            ids: Node ids to select instead of the package subscription
            package_location: Select from this package.xml instead of the project's

        Raises:
            ProjectError: If the package names an unknown metadata type
        """
        if not self.org_metadata_file.exists():
            logger.debug("org metadata not found, returning empty index")
            return []

        index = MetadataIndex.load(self.org_metadata_file)
        subscription: dict[str, Any] = {}
        if ids is None:
            if package_location:
                subscription = PackageDescriptor(Path(package_location)).init().subscription
            elif self.package_xml is not None:
                subscription = self.package_xml.subscription

        try:
            index.apply_selections(subscription, self.registry, ids=ids, keyword=keyword)
        except MetadataIndexError as e:
            raise ProjectError(str(e)) from e

        self.org_metadata = index
        return index.to_list()

    def index_metadata(self) -> None:
        """Index server metadata for the subscription into ``.org_metadata``."""
        index = build_index(self.client, self.get_subscription(), self.registry)
        with self._writing("org metadata index"):
            index.save(self.org_metadata_file)
        self.org_metadata = index

    def has_indexed_metadata(self) -> bool:
        return self.org_metadata is not None and len(self.org_metadata.nodes) > 0

    # -------------------------------------------------------------------------
    # Lightning and describe
    # -------------------------------------------------------------------------

    def index_lightning(self) -> None:
        """Snapshot the org's Aura definitions into ``.lightning``."""
        logger.debug("indexing lightning to config/%s", LIGHTNING_FILENAME)
        try:
            index = LightningService(self).get_all()
        except PlatformAPIError as e:
            if any(signature in str(e) for signature in LIGHTNING_UNSUPPORTED):
                logger.debug("lightning not available for this org: %s", e)
                return
            logger.error("Could not index lightning: %s", e)
            raise
        self.set_lightning_index(index)

    def set_lightning_index(self, index: list[dict[str, Any]]) -> None:
        with self._writing("lightning index file"):
            write_json(self.config_dir / LIGHTNING_FILENAME, index)
        self.lightning_index = index

    def get_lightning_index(self) -> list[dict[str, Any]]:
        """Lightning snapshot, indexing it first if it does not exist yet."""
        lightning_file = self.config_dir / LIGHTNING_FILENAME
        if not lightning_file.exists():
            self.index_lightning()
        if not lightning_file.exists():
            return []
        return read_json(lightning_file, default=[]) or []

    def get_describe(self) -> dict[str, Any] | None:
        return self._describe

    def set_describe(self, describe: dict[str, Any]) -> None:
        """Keep the describe result, persisting it once ``config/`` exists."""
        if self.path is not None and self.config_dir.exists():
            with self._writing("describe"):
                write_json(self.config_dir / DESCRIBE_FILENAME, describe)
        self._describe = describe

    def _refresh_describe_from_server(self) -> None:
        self.set_describe(self.client.describe())

    # -------------------------------------------------------------------------
    # Config files
    # -------------------------------------------------------------------------

    def _write_settings(self) -> None:
        settings = ProjectSettings(
            project_name=self.name or "",
            username=self.client.username,
            id=self.id or "",
            namespace=self.client.namespace or "",
            environment=self.client.org_type,
            login_url=self.client.login_url,
            workspace=str(self.workspace or ""),
            subscription=tuple(self.subscription or self.config.default_subscription),
            password=None if self.keychain.use_system_keychain() else self.password,
        )
        with self._writing("project settings"):
            settings.save(self.settings_file)
        self.settings = settings

    def _write_session(self) -> None:
        session = SessionCache(
            access_token=self.client.access_token,
            instance_url=self.client.instance_url,
        )
        logger.debug("writing local session")
        with self._writing("session cache"):
            session.save(self.session_file)

    def _write_debug(self) -> None:
        user_id = self.client.user_id
        debug = DebugSettings(users=[user_id] if user_id else [])
        with self._writing("debug settings"):
            debug.save(self.debug_file)

    def _write_editor_settings(self) -> None:
        sublime_settings = {
            "folders": [
                {
                    "folder_exclude_patterns": ["config/.symbols"],
                    "path": ".",
                }
            ],
            "settings": {
                "auto_complete_triggers": [
                    {"characters": ".", "selector": "source - comment"},
                    {"characters": ":", "selector": "text.html - comment"},
                    {"characters": "<", "selector": "text.html - comment"},
                    {"characters": " ", "selector": "text.html - comment"},
                ]
            },
        }
        with self._writing("editor settings"):
            write_json(self._require_path() / f"{self.name}.sublime-project", sublime_settings)

    def _get_cached_session(self) -> SessionCache:
        try:
            return SessionCache.load(self.session_file)
        except json.JSONDecodeError:
            logger.debug("session cache unreadable, starting a new session")
            return SessionCache()

    def get_subscription(self) -> list[str]:
        if self.settings is None:
            return list(self.subscription or self.config.default_subscription)
        return list(self.settings.subscription)

    def update_setting(self, key: str, value: Any) -> None:
        """Rewrite one key of ``.settings``; a ``None`` password is removed."""
        logger.debug("updating project setting [%s]", key)
        try:
            current = ProjectSettings.load(self.settings_file)
        except (OSError, json.JSONDecodeError) as e:
            raise ProjectError(f"Could not read project .settings file: {e}") from e

        updated = current.with_value(key, value)
        with self._writing("project .settings file"):
            updated.save(self.settings_file)
        self.settings = updated

    def update_debug(self, key: str, value: Any) -> None:
        """Rewrite one key of ``.debug``."""
        logger.debug("updating debug setting [%s]", key)
        try:
            debug = DebugSettings.from_dict(read_json(self.debug_file, default={}) or {})
        except (OSError, json.JSONDecodeError) as e:
            raise ProjectError(f"Could not read project .debug file: {e}") from e

        if not hasattr(debug, key):
            raise KeyError(f"Unknown debug setting: {key}")
        setattr(debug, key, value)
        with self._writing("project .debug file"):
            debug.save(self.debug_file)

    def update_creds(self, credentials: Credentials) -> None:
        """Switch the project to new org credentials."""
        client = self.client_factory(credentials, None)
        client.initialize()
        self._client = client

        self._store_password(credentials.password, replace=True)
        self.update_setting("username", credentials.username)
        self.update_setting("environment", credentials.org_type)
        self.update_setting("loginUrl", credentials.login_url or client.login_url)
        self.update_debug("users", [client.user_id] if client.user_id else [])

        if not self.valid:
            self._init_existing()
        self._watch_client(client)
        self._write_session()
        self._get_cached_session()

    # -------------------------------------------------------------------------
    # Passwords
    # -------------------------------------------------------------------------

    def _project_id(self) -> str:
        if self.id:
            return self.id
        if self.settings is None:
            self.settings = ProjectSettings.load(self.settings_file)
        return self.settings.id

    def _store_password(self, password: str | None = None, replace: bool = False) -> None:
        """Put the password in the keychain, or inline in ``.settings`` without one."""
        password = password or self.password
        if self.keychain.use_system_keychain():
            key = self._project_id()
            try:
                if replace:
                    self.keychain.replace_password(key, password or "")
                else:
                    self.keychain.store_password(key, password or "")
            except KeychainError as e:
                raise ProjectError(f"Could not store project password: {e}") from e
            # clear any password previously inlined in .settings
            self.update_setting("password", None)
        else:
            self.update_setting("password", password)

    def _get_password(self) -> str:
        """Password from ``.settings`` if inlined, otherwise from the keychain.

        Raises:
            ProjectError: If no password is available
        """
        if self.settings is not None and self.settings.password:
            return self.settings.password

        if not self.keychain.use_system_keychain():
            raise ProjectError(
                'System keychain is not enabled/supported and there is no "password" '
                "property in project config/.settings file. Please add a \"password\" "
                "property to your project config/.settings file and try your operation."
            )
        try:
            return self.keychain.get_password(self._project_id())
        except KeychainError as e:
            logger.error("%s", e)
            raise ProjectError(
                "Could not retrieve project password from the system keychain. If you "
                'do not wish to use the system keychain, set "use_keyring" to false in '
                "your orgsync config, then specify the org password in your project's "
                "config/.settings file."
            ) from e
