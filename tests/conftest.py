"""Shared fixtures: an in-memory platform client and keychain."""

from pathlib import Path
from typing import Any, BinaryIO

import pytest

from orgsync.core.auth import Credentials
from orgsync.core.client import DeployResult, RetrieveResult
from orgsync.core.keychain import KeychainError
from orgsync.core.metadata import MetadataRegistry
from orgsync.models.config import OrgSyncConfig
from orgsync.models.file_properties import parse_file_properties


PACKAGE_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<Package xmlns="http://soap.sforce.com/2006/04/metadata">
    <types>
        <members>*</members>
        <name>ApexClass</name>
    </types>
    <types>
        <members>*</members>
        <name>ApexPage</name>
    </types>
    <version>58.0</version>
</Package>
"""

SERVER_FILES = {
    "package.xml": PACKAGE_XML,
    "classes/Foo.cls": b"public class Foo {}",
    "classes/Foo.cls-meta.xml": b"<ApexClass/>",
    "pages/Home.page": b"<apex:page/>",
}

SERVER_PROPERTIES = [
    {
        "id": "01p000000000001",
        "fullName": "Foo",
        "fileName": "unpackaged/classes/Foo.cls",
        "type": "ApexClass",
        "createdByName": "Ada",
        "lastModifiedByName": "Ada",
        "lastModifiedDate": "2024-01-02T03:04:05.000Z",
        "manageableState": "unmanaged",
    },
    {
        "id": "066000000000001",
        "fullName": "Home",
        "fileName": "unpackaged/pages/Home.page",
        "type": "ApexPage",
        "manageableState": "unmanaged",
    },
    {"fullName": "package.xml", "fileName": "unpackaged/package.xml"},
]


class FakeClient:
    """Platform client double that serves files from memory.

    ``errors`` maps a method name to the exception it should raise.
    """

    def __init__(
        self,
        files: dict[str, bytes] | None = None,
        file_properties: list[dict[str, Any]] | None = None,
    ) -> None:
        self.credentials = Credentials(username="user@example.com", password="secret")
        self.username = "user@example.com"
        self.namespace = ""
        self.org_type = "production"
        self.login_url = "https://login.salesforce.com"
        self.user_id = "005000000000001"
        self.access_token = "token-1"
        self.instance_url = "https://na1.example.com"

        self.files = dict(SERVER_FILES if files is None else files)
        self.file_properties = list(SERVER_PROPERTIES if file_properties is None else file_properties)
        self.describe_result: dict[str, Any] = {"sobjects": [{"name": "Account"}]}
        self.deploy_result = DeployResult(id="0Af1", done=True, success=True, status="Succeeded")
        self.metadata: dict[tuple[str, str | None], list[dict[str, Any]]] = {}
        self.aura: list[dict[str, Any]] = [{"Id": "0Ad1", "DefType": "COMPONENT"}]
        self.errors: dict[str, Exception] = {}
        self.pending_logs: list[dict[str, Any]] = []

        self.calls: list[str] = []
        self.retrieved: list[Any] = []
        self.deployed: bytes | None = None
        self.deploy_options: dict[str, Any] | None = None
        self.refresh_callbacks: list[Any] = []
        self.log_callbacks: list[Any] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.errors:
            raise self.errors[name]

    def initialize(self) -> "FakeClient":
        self._call("initialize")
        return self

    def describe(self) -> dict[str, Any]:
        self._call("describe")
        return self.describe_result

    def retrieve_unpackaged(self, subscription: Any, extract: bool = True, dest_dir: Path | None = None) -> RetrieveResult:
        self._call("retrieve_unpackaged")
        self.retrieved.append(subscription)
        if extract and dest_dir is not None:
            for rel, content in self.files.items():
                target = Path(dest_dir) / "unpackaged" / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
        return RetrieveResult(
            id="09S000000000001",
            status="Succeeded",
            file_properties=parse_file_properties(self.file_properties),
        )

    def deploy(self, archive: BinaryIO | bytes, options: dict[str, Any]) -> DeployResult:
        self._call("deploy")
        self.deployed = archive if isinstance(archive, bytes) else archive.read()
        self.deploy_options = options
        return self.deploy_result

    def list_metadata(self, xml_name: str, folder: str | None = None) -> list[dict[str, Any]]:
        self._call("list_metadata")
        return self.metadata.get((xml_name, folder), [])

    def tooling_query(self, soql: str) -> list[dict[str, Any]]:
        self._call("tooling_query")
        return self.aura

    def download_log(self, log_id: str) -> str:
        self._call("download_log")
        return f"log body for {log_id}"

    def start_log_listener(self) -> None:
        self._call("start_log_listener")

    def poll_logs(self) -> list[dict[str, Any]]:
        self._call("poll_logs")
        records, self.pending_logs = self.pending_logs, []
        for record in records:
            for callback in self.log_callbacks:
                callback({"sobject": record})
        return records

    def on_session_refresh(self, callback: Any) -> None:
        self.refresh_callbacks.append(callback)

    def on_new_log(self, callback: Any) -> None:
        self.log_callbacks.append(callback)


class FakeKeychain:
    """In-memory stand-in for the system keychain."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.passwords: dict[str, str] = {}

    def use_system_keychain(self) -> bool:
        return self.enabled

    def get_password(self, key: str) -> str:
        if key not in self.passwords:
            raise KeychainError(f"No keychain entry for {key}")
        return self.passwords[key]

    def store_password(self, key: str, password: str) -> None:
        self.passwords[key] = password

    def replace_password(self, key: str, password: str) -> None:
        self.passwords[key] = password


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def fake_keychain() -> FakeKeychain:
    return FakeKeychain()


@pytest.fixture(scope="session")
def registry() -> MetadataRegistry:
    return MetadataRegistry.default()


@pytest.fixture
def config(tmp_path: Path) -> OrgSyncConfig:
    return OrgSyncConfig(workspaces=[str(tmp_path / "ws")])
