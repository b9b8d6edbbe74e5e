"""Root context configuration.

Can be loaded from environment variables, a YAML file, a dict, or built
programmatically. Problems are reported by ``validate()``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class ContextConfig:
    """Configuration for a root context.

    Attributes:
        instance_id: Identifier of the process or service owning the root
        default_timeout_seconds: Timeout applied to the root, if any
        values: Key-value pairs set on the root, in order
        debug: Enable debug logging for contextchain
    """
    instance_id: str = "default"
    default_timeout_seconds: Optional[float] = None
    values: dict[str, Any] = field(default_factory=dict)
    debug: bool = False

    @classmethod
    def from_env(cls, prefix: str = "CONTEXTCHAIN") -> "ContextConfig":
        """Load configuration from environment variables.

        Environment variables:
            {prefix}_INSTANCE_ID: Instance identifier
            {prefix}_DEFAULT_TIMEOUT: Root timeout in seconds
            {prefix}_DEBUG: Enable debug mode
        """
        def get(key: str, default: str = None) -> Optional[str]:
            return os.environ.get(f"{prefix}_{key}", default)

        def get_bool(key: str, default: bool = False) -> bool:
            val = get(key)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        timeout = get("DEFAULT_TIMEOUT")

        return cls(
            instance_id=get("INSTANCE_ID", "default"),
            default_timeout_seconds=float(timeout) if timeout else None,
            debug=get_bool("DEBUG", False),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ContextConfig":
        """Load configuration from a YAML file.

        A missing file yields the defaults.
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "ContextConfig":
        """Create configuration from a dictionary."""
        timeout = data.get("default_timeout_seconds")
        return cls(
            instance_id=data.get("instance_id", "default"),
            default_timeout_seconds=float(timeout) if timeout is not None else None,
            values=dict(data.get("values") or {}),
            debug=bool(data.get("debug", False)),
        )

    @classmethod
    def for_testing(cls, instance_id: str = "test") -> "ContextConfig":
        """Create a configuration suitable for testing."""
        return cls(instance_id=instance_id, debug=True)

    def validate(self) -> list[str]:
        """Validate configuration and return a list of errors."""
        errors = []

        if not self.instance_id or not self.instance_id.strip():
            errors.append("instance_id cannot be empty")

        if self.default_timeout_seconds is not None and self.default_timeout_seconds <= 0:
            errors.append(
                f"default_timeout_seconds must be positive, "
                f"got {self.default_timeout_seconds}"
            )

        bad_keys = [key for key in self.values if not isinstance(key, str)]
        if bad_keys:
            errors.append(f"value keys must be strings, got {bad_keys}")

        return errors
