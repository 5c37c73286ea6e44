"""
Client configuration.

Settings are read from the ``sync`` section of ``~/.atproto-sync/settings.yaml``
and can be overridden with ``ATPROTO_SYNC_*`` environment variables:

```yaml
sync:
  service_url: "https://bsky.social"
  stream_url: "wss://jetstream2.us-east.bsky.network/subscribe"
  wanted_collection: "app.bsky.feed.post"
  request_timeout: 30
  connect_timeout: 10
  max_reconnect_attempts: 10
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".atproto-sync"
DEFAULT_SERVICE_URL = "https://bsky.social"
DEFAULT_STREAM_URL = "wss://jetstream2.us-east.bsky.network/subscribe"
DEFAULT_COLLECTION = "app.bsky.feed.post"

# Remote-imposed maximum number of DIDs in a stream filter
MAX_WANTED_DIDS = 10_000

_ENV_OVERRIDES: dict[str, str] = {
    "service_url": "ATPROTO_SYNC_SERVICE_URL",
    "stream_url": "ATPROTO_SYNC_STREAM_URL",
    "wanted_collection": "ATPROTO_SYNC_COLLECTION",
    "request_timeout": "ATPROTO_SYNC_REQUEST_TIMEOUT",
    "connect_timeout": "ATPROTO_SYNC_CONNECT_TIMEOUT",
    "max_reconnect_attempts": "ATPROTO_SYNC_MAX_RECONNECTS",
    "data_dir": "ATPROTO_SYNC_DATA_DIR",
}


@dataclass
class ClientConfig:
    """Configuration for the request pipeline and the stream subscriber."""

    service_url: str = DEFAULT_SERVICE_URL
    stream_url: str = DEFAULT_STREAM_URL
    wanted_collection: str = DEFAULT_COLLECTION

    request_timeout: float = 30.0  # seconds
    connect_timeout: float = 10.0  # seconds

    cursor_buffer_seconds: int = 5
    max_reconnect_attempts: int = 10
    backoff_base: float = 1.0  # seconds
    backoff_max: float = 60.0  # cap

    filter_capacity: int = MAX_WANTED_DIDS

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    def __post_init__(self) -> None:
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir).expanduser()
        if self.filter_capacity < 1 or self.filter_capacity > MAX_WANTED_DIDS:
            raise ValueError(
                f"filter_capacity must be between 1 and {MAX_WANTED_DIDS}, "
                f"got {self.filter_capacity}"
            )
        if self.max_reconnect_attempts < 0:
            raise ValueError(
                f"max_reconnect_attempts must be >= 0, got {self.max_reconnect_attempts}"
            )

    @property
    def cursor_buffer_us(self) -> int:
        """Safety buffer applied to the resume cursor, in microseconds."""
        return self.cursor_buffer_seconds * 1_000_000

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    @property
    def cursor_path(self) -> Path:
        return self.data_dir / "stream_cursor.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, config_path: Path | None = None) -> ClientConfig:
        """Load configuration from the ``sync`` section of a YAML file.

        Returns defaults when the file is missing or cannot be parsed.
        """
        path = config_path or DEFAULT_DATA_DIR / "settings.yaml"
        if not path.exists():
            return cls()

        try:
            content = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read config {path}: {e}")
            return cls()

        section = content.get("sync", {}) if isinstance(content, dict) else {}
        return cls.from_dict(section or {})

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> ClientConfig:
        """Return a copy with ``ATPROTO_SYNC_*`` environment overrides applied."""
        env = os.environ if environ is None else environ
        types = {f.name: f.type for f in fields(self)}
        overrides: dict[str, Any] = {}

        for name, var in _ENV_OVERRIDES.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            kind = types[name]
            if kind == "float":
                overrides[name] = float(raw)
            elif kind == "int":
                overrides[name] = int(raw)
            elif kind == "Path":
                overrides[name] = Path(raw).expanduser()
            else:
                overrides[name] = raw

        return replace(self, **overrides) if overrides else self

    @classmethod
    def load(cls, config_path: Path | None = None) -> ClientConfig:
        """Load from file, then apply environment overrides."""
        return cls.from_file(config_path).with_env_overrides()
