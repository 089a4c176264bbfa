"""Per-project state files kept under ``<project>/config``.

Each file is plain JSON. Settings are loaded as an immutable snapshot; any
change goes through ``with_value`` followed by an explicit ``save``.
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any


SETTINGS_FILENAME = ".settings"
SESSION_FILENAME = ".session"
DEBUG_FILENAME = ".debug"

DEFAULT_DEBUG_LEVELS = {
    "Workflow": "INFO",
    "Callout": "INFO",
    "System": "DEBUG",
    "Database": "INFO",
    "ApexCode": "DEBUG",
    "ApexProfiling": "INFO",
    "Validation": "INFO",
    "Visualforce": "DEBUG",
}


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON file, treating an empty file as ``default``."""
    text = Path(path).read_text(encoding="utf-8")
    if not text.strip():
        return default
    return json.loads(text)


def write_json(path: Path, data: Any) -> None:
    """Write JSON with the 4-space layout used for all config files."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4)


# Maps dataclass attribute -> key in .settings
_SETTINGS_KEYS = {
    "project_name": "projectName",
    "username": "username",
    "id": "id",
    "namespace": "namespace",
    "environment": "environment",
    "login_url": "loginUrl",
    "workspace": "workspace",
    "subscription": "subscription",
    "password": "password",
}


@dataclass(frozen=True)
class ProjectSettings:
    """Snapshot of ``config/.settings``."""

    project_name: str = ""
    username: str = ""
    id: str = ""
    namespace: str = ""
    environment: str = "production"
    login_url: str = ""
    workspace: str = ""
    subscription: tuple[str, ...] = ()
    password: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        The password key is omitted entirely when no password is inlined.
        """
        result: dict[str, Any] = {
            "projectName": self.project_name,
            "username": self.username,
            "id": self.id,
            "namespace": self.namespace,
            "environment": self.environment,
            "loginUrl": self.login_url,
            "workspace": self.workspace,
            "subscription": list(self.subscription),
        }
        if self.password is not None:
            result["password"] = self.password
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectSettings":
        """Create from dictionary."""
        return cls(
            project_name=data.get("projectName", ""),
            username=data.get("username", ""),
            id=data.get("id", ""),
            namespace=data.get("namespace") or "",
            environment=data.get("environment", "production"),
            login_url=data.get("loginUrl", ""),
            workspace=data.get("workspace", ""),
            subscription=tuple(data.get("subscription") or ()),
            password=data.get("password"),
        )

    def with_value(self, key: str, value: Any) -> "ProjectSettings":
        """Return a copy with one setting changed.

        ``key`` may be either the attribute name or the JSON key.
        """
        attr = key
        if key not in _SETTINGS_KEYS:
            reverse = {v: k for k, v in _SETTINGS_KEYS.items()}
            if key not in reverse:
                raise KeyError(f"Unknown project setting: {key}")
            attr = reverse[key]
        if attr == "subscription":
            value = tuple(value or ())
        return replace(self, **{attr: value})

    @classmethod
    def load(cls, path: Path) -> "ProjectSettings":
        """Load settings from JSON file."""
        return cls.from_dict(read_json(path, default={}))

    def save(self, path: Path) -> None:
        """Save settings to JSON file."""
        write_json(path, self.to_dict())


@dataclass(frozen=True)
class SessionCache:
    """Cached access token for one authenticated connection."""

    access_token: str | None = None
    instance_url: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.access_token and self.instance_url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "instanceUrl": self.instance_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionCache":
        return cls(
            access_token=data.get("accessToken"),
            instance_url=data.get("instanceUrl"),
        )

    @classmethod
    def load(cls, path: Path) -> "SessionCache":
        """Load the cached session, or an empty one if nothing is cached."""
        if not Path(path).exists():
            return cls()
        return cls.from_dict(read_json(path, default={}))

    def save(self, path: Path) -> None:
        write_json(path, self.to_dict())

    @staticmethod
    def clear(path: Path) -> None:
        """Invalidate the cached session on disk."""
        Path(path).unlink(missing_ok=True)


@dataclass
class DebugSettings:
    """Trace flag settings written to ``config/.debug``."""

    users: list[str] = field(default_factory=list)
    levels: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DEBUG_LEVELS))
    expiration: int = 480  # minutes

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": self.users,
            "levels": self.levels,
            "expiration": self.expiration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DebugSettings":
        return cls(
            users=data.get("users", []),
            levels=data.get("levels") or dict(DEFAULT_DEBUG_LEVELS),
            expiration=data.get("expiration", 480),
        )

    @classmethod
    def load(cls, path: Path) -> "DebugSettings":
        if not Path(path).exists():
            return cls()
        return cls.from_dict(read_json(path, default={}))

    def save(self, path: Path) -> None:
        write_json(path, self.to_dict())
