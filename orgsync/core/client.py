"""HTTP client for the platform's REST, Tooling and Metadata APIs."""

import base64
import io
import logging
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Callable
from urllib.parse import urlparse
from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

import requests

from ..models.file_properties import FileProperty, parse_file_properties
from ..models.settings import SessionCache
from .auth import Credentials, login_envelope
from .package import WILDCARD, PackageDescriptor, Subscription


logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
METADATA_NS = "http://soap.sforce.com/2006/04/metadata"

# DeployOptions is an xsd:sequence, so elements must go out in this order
DEPLOY_OPTION_ORDER = (
    "allowMissingFiles",
    "autoUpdatePackage",
    "checkOnly",
    "ignoreWarnings",
    "performRetrieve",
    "purgeOnDelete",
    "rollbackOnError",
    "runTests",
    "singlePackage",
    "testLevel",
)

SessionRefreshCallback = Callable[[], None]
NewLogCallback = Callable[[dict[str, Any]], None]


class PlatformAPIError(Exception):
    """Exception raised for platform API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any = None,
        fault_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response
        self.fault_code = fault_code


@dataclass
class RetrieveResult:
    """Outcome of a Metadata API retrieve."""

    id: str = ""
    status: str = ""
    file_properties: list[FileProperty] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class DeployDetails:
    """Component-level details of a deploy."""

    component_successes: list[dict[str, Any]] = field(default_factory=list)
    component_failures: list[dict[str, Any]] = field(default_factory=list)
    run_test_result: dict[str, Any] | None = None
    retrieve_result: RetrieveResult | None = None


@dataclass
class DeployResult:
    """Outcome of a Metadata API deploy, as reported by the server."""

    id: str = ""
    done: bool = False
    success: bool = False
    status: str = ""
    error_message: str | None = None
    number_components_deployed: int = 0
    number_component_errors: int = 0
    details: DeployDetails = field(default_factory=DeployDetails)


# -----------------------------------------------------------------------------
# SOAP helpers
# -----------------------------------------------------------------------------

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _to_python(elem: ET.Element) -> Any:
    """Convert a SOAP element into plain dicts/lists/strings.

    Repeated child tags become lists; single ones stay scalar.
    """
    children = list(elem)
    if not children:
        if elem.get(f"{{{XSI_NS}}}nil") == "true":
            return None
        return elem.text or ""

    result: dict[str, Any] = {}
    for child in children:
        key = _local(child.tag)
        value = _to_python(child)
        if key in result:
            if not isinstance(result[key], list):
                result[key] = [result[key]]
            result[key].append(value)
        else:
            result[key] = value
    return result


def as_list(value: Any) -> list[Any]:
    """Normalize a SOAP value that may be absent, single, or repeated."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def _is_true(value: Any) -> bool:
    return str(value).lower() == "true"


def parse_soap_response(text: str, status_code: int | None = None) -> list[Any]:
    """Return the ``result`` elements of a SOAP response body.

    Raises:
        PlatformAPIError: If the body contains a SOAP fault
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise PlatformAPIError(f"Invalid SOAP response: {e}", status_code) from e

    body = root.find(f"{{{SOAP_ENV_NS}}}Body")
    if body is None:
        raise PlatformAPIError("SOAP response has no body", status_code)

    fault = body.find(f"{{{SOAP_ENV_NS}}}Fault")
    if fault is not None:
        code = _local(fault.findtext("faultcode") or "").split(":")[-1]
        message = fault.findtext("faultstring") or "Unknown SOAP fault"
        if code and not message.startswith(code):
            message = f"{code}: {message}"
        raise PlatformAPIError(message, status_code, fault_code=code)

    results: list[Any] = []
    for response in body:
        for child in response:
            if _local(child.tag) == "result":
                results.append(_to_python(child))
    return results


def _unpackaged_xml(subscription: Subscription, api_version: str) -> str:
    pkg = PackageDescriptor(subscription=subscription, version=api_version)
    parts = []
    for type_name, members in pkg.subscription.items():
        member_list = [WILDCARD] if members == WILDCARD else members
        members_xml = "".join(f"<met:members>{escape(m)}</met:members>" for m in member_list)
        parts.append(f"<met:types>{members_xml}<met:name>{escape(type_name)}</met:name></met:types>")
    return "<met:unpackaged>" + "".join(parts) + f"<met:version>{api_version}</met:version></met:unpackaged>"


def _retrieve_result(data: dict[str, Any]) -> RetrieveResult:
    return RetrieveResult(
        id=data.get("id") or "",
        status=data.get("status") or "",
        file_properties=parse_file_properties(as_list(data.get("fileProperties"))),
        messages=as_list(data.get("messages")),
    )


def _deploy_result(data: dict[str, Any]) -> DeployResult:
    details = data.get("details") or {}
    retrieve = details.get("retrieveResult") if isinstance(details, dict) else None
    return DeployResult(
        id=data.get("id") or "",
        done=_is_true(data.get("done")),
        success=_is_true(data.get("success")),
        status=data.get("status") or "",
        error_message=data.get("errorMessage"),
        number_components_deployed=int(data.get("numberComponentsDeployed") or 0),
        number_component_errors=int(data.get("numberComponentErrors") or 0),
        details=DeployDetails(
            component_successes=as_list(details.get("componentSuccesses")) if details else [],
            component_failures=as_list(details.get("componentFailures")) if details else [],
            run_test_result=details.get("runTestResult") if details else None,
            retrieve_result=_retrieve_result(retrieve) if retrieve else None,
        ),
    )


class PlatformClient:
    """Client for one org connection.

    Holds the access token, re-authenticates once when the server reports an
    expired session, and tells subscribers about the refreshed session.
    """

    def __init__(
        self,
        credentials: Credentials,
        session: SessionCache | None = None,
        api_version: str = "58.0",
        poll_interval: float = 2.0,
        poll_timeout: float = 600.0,
        http: requests.Session | None = None,
    ) -> None:
        """Initialize client.

        Args:
            credentials: Username/password used to (re)authenticate
            session: Cached session to try before logging in
            api_version: Platform API version, e.g. "58.0"
            poll_interval: Seconds between async status checks
            poll_timeout: Give up on async operations after this many seconds
            http: requests.Session to use (one is created if not provided)
        """
        self.credentials = credentials
        self.api_version = api_version
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.http = http or requests.Session()

        session = session or SessionCache()
        self._access_token = session.access_token
        self._instance_url = session.instance_url
        self._user_id: str | None = None
        self._username: str | None = None
        self._namespace: str | None = None

        self._refresh_callbacks: list[SessionRefreshCallback] = []
        self._log_callbacks: list[NewLogCallback] = []
        self._log_baseline: str | None = None
        self._seen_logs: set[str] = set()

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def instance_url(self) -> str | None:
        return self._instance_url

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def username(self) -> str:
        return self._username or self.credentials.username

    @property
    def namespace(self) -> str:
        return self._namespace or ""

    @property
    def org_type(self) -> str:
        return self.credentials.org_type

    @property
    def login_url(self) -> str:
        return self.credentials.endpoint

    def session(self) -> SessionCache:
        """Current session, in the shape cached on disk."""
        return SessionCache(access_token=self._access_token, instance_url=self._instance_url)

    def on_session_refresh(self, callback: SessionRefreshCallback) -> None:
        """Register a callback run after each re-authentication."""
        self._refresh_callbacks.append(callback)

    def on_new_log(self, callback: NewLogCallback) -> None:
        """Register a callback run for each new debug log found by ``poll_logs``."""
        self._log_callbacks.append(callback)

    def _notify(self, callbacks: list[Callable[..., None]], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception as e:
                logger.debug("notification handler failed: %s", e)

    def initialize(self) -> "PlatformClient":
        """Establish an authenticated connection, reusing the cached session if valid."""
        if self._access_token and self._instance_url:
            try:
                self._load_identity()
                logger.debug("reusing cached session for %s", self.username)
            except PlatformAPIError as e:
                if e.status_code not in (401, 403):
                    raise
                logger.debug("cached session rejected, logging in again")
                self.login()
        else:
            self.login()

        records = self.query("SELECT NamespacePrefix FROM Organization")
        self._namespace = (records[0].get("NamespacePrefix") if records else None) or ""
        return self

    def login(self) -> None:
        """Authenticate with username/password through the partner SOAP API."""
        url = f"{self.credentials.endpoint}/services/Soap/u/{self.api_version}"
        logger.debug("logging in to %s as %s", url, self.credentials.username)
        try:
            response = self.http.post(
                url,
                data=login_envelope(self.credentials).encode("utf-8"),
                headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": "login"},
                timeout=30,
            )
        except requests.RequestException as e:
            raise PlatformAPIError(f"Request failed: {e}") from e

        results = parse_soap_response(response.text, response.status_code)
        if not results:
            raise PlatformAPIError("Login returned no result", response.status_code)
        result = results[0]

        server = urlparse(result["serverUrl"])
        self._access_token = result["sessionId"]
        self._instance_url = f"{server.scheme}://{server.netloc}"
        self._user_id = result.get("userId")
        user_info = result.get("userInfo") or {}
        self._username = user_info.get("userName") or self.credentials.username

    def _relogin(self) -> None:
        self._access_token = None
        self.login()
        self._notify(self._refresh_callbacks)

    def _load_identity(self) -> None:
        info = self._rest("GET", "/services/oauth2/userinfo", retry=False)
        self._user_id = info.get("user_id")
        self._username = info.get("preferred_username") or self.credentials.username

    # -------------------------------------------------------------------------
    # REST
    # -------------------------------------------------------------------------

    def _data_path(self, path: str) -> str:
        return f"/services/data/v{self.api_version}{path}"

    def _rest(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json_data: dict[str, Any] | None = None,
        raw: bool = False,
        retry: bool = True,
    ) -> Any:
        """Make an authenticated REST request.

        Args:
            method: HTTP method
            path: API path (without instance URL)
            params: Optional query parameters
            json_data: Optional JSON body
            raw: Return the response text instead of parsed JSON
            retry: Re-authenticate and retry once on an expired session

        Raises:
            PlatformAPIError: On API errors
        """
        if not self._instance_url or not self._access_token:
            raise PlatformAPIError("Client is not connected; call initialize() first")

        try:
            response = self.http.request(
                method=method,
                url=f"{self._instance_url}{path}",
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Accept": "application/json",
                },
                params=params,
                json=json_data,
                timeout=30,
            )
        except requests.RequestException as e:
            raise PlatformAPIError(f"Request failed: {e}") from e

        if response.status_code == 401 and retry:
            self._relogin()
            return self._rest(method, path, params, json_data, raw, retry=False)

        if response.status_code >= 400:
            raise PlatformAPIError(self._rest_error(response), response.status_code, response)

        if raw:
            return response.text
        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _rest_error(response: requests.Response) -> str:
        try:
            errors = response.json()
        except ValueError:
            return f"API error {response.status_code}: {response.text[:500]}"
        if isinstance(errors, list) and errors:
            first = errors[0]
            return f"{first.get('errorCode', 'ERROR')}: {first.get('message', '')}"
        return f"API error {response.status_code}: {response.text[:500]}"

    def describe(self) -> dict[str, Any]:
        """Global describe of the org's objects."""
        return self._rest("GET", self._data_path("/sobjects"))

    def _query(self, path: str, soql: str) -> list[dict[str, Any]]:
        response = self._rest("GET", self._data_path(path), params={"q": soql})
        records = list(response.get("records", []))
        while not response.get("done", True) and response.get("nextRecordsUrl"):
            response = self._rest("GET", response["nextRecordsUrl"])
            records.extend(response.get("records", []))
        return records

    def query(self, soql: str) -> list[dict[str, Any]]:
        return self._query("/query", soql)

    def tooling_query(self, soql: str) -> list[dict[str, Any]]:
        return self._query("/tooling/query", soql)

    # -------------------------------------------------------------------------
    # Debug logs
    # -------------------------------------------------------------------------

    def start_log_listener(self) -> None:
        """Start watching for debug logs created from now on."""
        self._log_baseline = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self._seen_logs.clear()

    def poll_logs(self) -> list[dict[str, Any]]:
        """Check for new debug logs and notify ``on_new_log`` subscribers.

        Returns:
            The newly found ApexLog records
        """
        if self._log_baseline is None:
            self.start_log_listener()

        soql = (
            "SELECT Id, LogUserId, Operation, StartTime FROM ApexLog "
            f"WHERE StartTime >= {self._log_baseline}"
        )
        if self._user_id:
            soql += f" AND LogUserId = '{self._user_id}'"
        soql += " ORDER BY StartTime"

        new_logs = [r for r in self.query(soql) if r.get("Id") not in self._seen_logs]
        for record in new_logs:
            self._seen_logs.add(record["Id"])
            self._notify(self._log_callbacks, {"sobject": record})
        return new_logs

    def download_log(self, log_id: str) -> str:
        """Fetch the body of one debug log."""
        return self._rest("GET", self._data_path(f"/sobjects/ApexLog/{log_id}/Body"), raw=True)

    # -------------------------------------------------------------------------
    # Metadata API
    # -------------------------------------------------------------------------

    def _metadata_call(self, operation: str, body: str, retry: bool = True) -> list[Any]:
        if not self._instance_url or not self._access_token:
            raise PlatformAPIError("Client is not connected; call initialize() first")

        envelope = (
            '<?xml version="1.0" encoding="utf-8"?>'
            f'<soapenv:Envelope xmlns:soapenv="{SOAP_ENV_NS}" xmlns:met="{METADATA_NS}">'
            "<soapenv:Header><met:SessionHeader>"
            f"<met:sessionId>{escape(self._access_token)}</met:sessionId>"
            "</met:SessionHeader></soapenv:Header>"
            f"<soapenv:Body>{body}</soapenv:Body>"
            "</soapenv:Envelope>"
        )
        url = f"{self._instance_url}/services/Soap/m/{self.api_version}"
        try:
            response = self.http.post(
                url,
                data=envelope.encode("utf-8"),
                headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": operation},
                timeout=30,
            )
        except requests.RequestException as e:
            raise PlatformAPIError(f"Request failed: {e}") from e

        try:
            return parse_soap_response(response.text, response.status_code)
        except PlatformAPIError as e:
            if retry and e.fault_code == "INVALID_SESSION_ID":
                self._relogin()
                return self._metadata_call(operation, body, retry=False)
            raise

    def _wait(self, check: Callable[[], dict[str, Any]], what: str) -> dict[str, Any]:
        deadline = time.monotonic() + self.poll_timeout
        while True:
            status = check()
            if _is_true(status.get("done")):
                return status
            if time.monotonic() >= deadline:
                raise PlatformAPIError(f"Timed out waiting for {what}")
            logger.debug("%s in progress: %s", what, status.get("status"))
            time.sleep(self.poll_interval)

    def list_metadata(self, xml_name: str, folder: str | None = None) -> list[dict[str, Any]]:
        """List server members of one metadata type (optionally within a folder)."""
        folder_xml = f"<met:folder>{escape(folder)}</met:folder>" if folder else ""
        body = (
            "<met:listMetadata><met:queries>"
            f"{folder_xml}<met:type>{escape(xml_name)}</met:type>"
            "</met:queries>"
            f"<met:asOfVersion>{self.api_version}</met:asOfVersion>"
            "</met:listMetadata>"
        )
        return [r for r in self._metadata_call("listMetadata", body) if isinstance(r, dict)]

    def retrieve_unpackaged(
        self,
        subscription: Subscription,
        extract: bool = True,
        dest_dir: Path | None = None,
    ) -> RetrieveResult:
        """Retrieve metadata for a subscription.

        When ``extract`` is true the returned zip is unpacked into
        ``dest_dir``, producing ``dest_dir/unpackaged/...``.
        """
        body = (
            "<met:retrieve><met:retrieveRequest>"
            f"<met:apiVersion>{self.api_version}</met:apiVersion>"
            "<met:singlePackage>false</met:singlePackage>"
            f"{_unpackaged_xml(subscription, self.api_version)}"
            "</met:retrieveRequest></met:retrieve>"
        )
        async_id = self._metadata_call("retrieve", body)[0]["id"]
        logger.debug("retrieve started: %s", async_id)

        def check() -> dict[str, Any]:
            return self._metadata_call(
                "checkRetrieveStatus",
                "<met:checkRetrieveStatus>"
                f"<met:asyncProcessId>{async_id}</met:asyncProcessId>"
                "<met:includeZip>true</met:includeZip>"
                "</met:checkRetrieveStatus>",
            )[0]

        status = self._wait(check, "retrieve")
        if status.get("status") == "Failed":
            raise PlatformAPIError(status.get("errorMessage") or "Retrieve failed")

        if extract and dest_dir is not None and status.get("zipFile"):
            archive = base64.b64decode(status["zipFile"])
            Path(dest_dir).mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(io.BytesIO(archive)) as zf:
                zf.extractall(dest_dir)

        return _retrieve_result(status)

    def deploy(self, archive: BinaryIO | bytes, options: dict[str, Any] | None = None) -> DeployResult:
        """Deploy a zipped package and wait for the outcome.

        A failed deploy is returned, not raised; callers inspect ``success``.
        """
        data = archive if isinstance(archive, bytes) else archive.read()
        options = options or {}
        option_xml = ""
        for name in DEPLOY_OPTION_ORDER:
            if name not in options:
                continue
            value = options[name]
            values = value if isinstance(value, list) else [value]
            for v in values:
                text = str(v).lower() if isinstance(v, bool) else escape(str(v))
                option_xml += f"<met:{name}>{text}</met:{name}>"

        body = (
            "<met:deploy>"
            f"<met:ZipFile>{base64.b64encode(data).decode('ascii')}</met:ZipFile>"
            f"<met:DeployOptions>{option_xml}</met:DeployOptions>"
            "</met:deploy>"
        )
        async_id = self._metadata_call("deploy", body)[0]["id"]
        logger.debug("deploy started: %s", async_id)

        def check() -> dict[str, Any]:
            return self._metadata_call(
                "checkDeployStatus",
                "<met:checkDeployStatus>"
                f"<met:asyncProcessId>{async_id}</met:asyncProcessId>"
                "<met:includeDetails>true</met:includeDetails>"
                "</met:checkDeployStatus>",
            )[0]

        return _deploy_result(self._wait(check, "deploy"))
