"""Credentials and login helpers for the platform API."""

import os
from dataclasses import dataclass
from xml.sax.saxutils import escape

from dotenv import load_dotenv


LOGIN_URLS = {
    "production": "https://login.salesforce.com",
    "developer": "https://login.salesforce.com",
    "sandbox": "https://test.salesforce.com",
    "prerelease": "https://prerellogin.pre.salesforce.com",
}

# Login faults that mean the stored credentials are no longer usable
AUTH_FAILURE_SIGNATURES = (
    "INVALID_LOGIN",
    "EXPIRED_PASSWORD",
    "LOGIN_MUST_USE_SECURITY_TOKEN",
)


def is_auth_failure(message: str | None) -> bool:
    """Check whether an error message signals bad or expired credentials."""
    if not message:
        return False
    return any(signature in message for signature in AUTH_FAILURE_SIGNATURES)


@dataclass(frozen=True)
class Credentials:
    """Username/password credentials for one org."""

    username: str
    password: str
    org_type: str = "production"
    login_url: str | None = None

    def __post_init__(self) -> None:
        if not self.username or not self.password:
            raise ValueError(
                "Missing org credentials. Set ORGSYNC_USERNAME and "
                "ORGSYNC_PASSWORD environment variables or pass them directly."
            )

    @classmethod
    def from_env(
        cls,
        username: str | None = None,
        password: str | None = None,
        org_type: str | None = None,
        login_url: str | None = None,
    ) -> "Credentials":
        """Build credentials, filling gaps from the environment (and .env)."""
        load_dotenv()
        return cls(
            username=username or os.getenv("ORGSYNC_USERNAME", ""),
            password=password or os.getenv("ORGSYNC_PASSWORD", ""),
            org_type=org_type or os.getenv("ORGSYNC_ORG_TYPE", "production"),
            login_url=login_url or os.getenv("ORGSYNC_LOGIN_URL") or None,
        )

    @property
    def endpoint(self) -> str:
        """Base login URL, derived from the org type unless set explicitly."""
        if self.login_url:
            return self.login_url.rstrip("/")
        return LOGIN_URLS.get(self.org_type, LOGIN_URLS["production"])


def login_envelope(credentials: Credentials) -> str:
    """SOAP body for a partner API username/password login."""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<env:Envelope xmlns:xsd="http://www.w3.org/2001/XMLSchema" '
        'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        'xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">'
        "<env:Body>"
        '<n1:login xmlns:n1="urn:partner.soap.sforce.com">'
        f"<n1:username>{escape(credentials.username)}</n1:username>"
        f"<n1:password>{escape(credentials.password)}</n1:password>"
        "</n1:login>"
        "</env:Body>"
        "</env:Envelope>"
    )
