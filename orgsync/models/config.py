"""Global user configuration for orgsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG_PATH = Path.home() / ".orgsync" / "config.yaml"

DEFAULT_SUBSCRIPTION = [
    "ApexClass",
    "ApexComponent",
    "ApexPage",
    "ApexTrigger",
    "StaticResource",
    "CustomObject",
]


@dataclass
class OrgSyncConfig:
    """User-level settings shared by all projects.

    Loaded from ``~/.orgsync/config.yaml`` unless ``ORGSYNC_CONFIG`` points
    somewhere else.
    """

    workspaces: list[str] = field(default_factory=list)
    default_subscription: list[str] = field(default_factory=lambda: list(DEFAULT_SUBSCRIPTION))
    use_keyring: bool = True
    api_version: str = "58.0"
    poll_interval: float = 2.0  # seconds between async status checks
    poll_timeout: float = 600.0

    @property
    def workspace(self) -> str | None:
        """First configured workspace, used when a new project names none."""
        return self.workspaces[0] if self.workspaces else None

    @staticmethod
    def default_path() -> Path:
        """Resolve the config path, honouring ORGSYNC_CONFIG."""
        override = os.getenv("ORGSYNC_CONFIG")
        return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrgSyncConfig":
        """Create from dictionary."""
        # a single workspace may be written as a plain string
        workspaces = data.get("workspaces", data.get("workspace", []))
        if isinstance(workspaces, str):
            workspaces = [workspaces]

        return cls(
            workspaces=[str(Path(w).expanduser()) for w in workspaces or []],
            default_subscription=data.get("default_subscription") or list(DEFAULT_SUBSCRIPTION),
            use_keyring=data.get("use_keyring", True),
            api_version=str(data.get("api_version", "58.0")),
            poll_interval=float(data.get("poll_interval", 2.0)),
            poll_timeout=float(data.get("poll_timeout", 600.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "workspaces": self.workspaces,
            "default_subscription": self.default_subscription,
            "use_keyring": self.use_keyring,
            "api_version": self.api_version,
            "poll_interval": self.poll_interval,
            "poll_timeout": self.poll_timeout,
        }

    @classmethod
    def load(cls, config_path: Path | None = None) -> "OrgSyncConfig":
        """Load configuration from YAML file, falling back to defaults."""
        config_path = config_path or cls.default_path()
        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = config_path or self.default_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
