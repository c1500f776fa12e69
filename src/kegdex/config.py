"""Configuration for kegdex.

Two kinds of configuration live here:

- The keg configuration record (``KegConfig``), stored by each repository as
  YAML. Besides descriptive fields it carries the reindex watermark and the
  tag-filtered index declarations.
- Runtime settings read from the environment (keg location, lock timing).
  Magic numbers are documented here rather than scattered through the code.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import as_utc

# =============================================================================
# Keg configuration record
# =============================================================================

# Current config schema version
CONFIG_VERSION = "2025-07"

# Older version still accepted on read; it is rewritten as CONFIG_VERSION
LEGACY_CONFIG_VERSION = "2023-01"

SUPPORTED_CONFIG_VERSIONS = (CONFIG_VERSION, LEGACY_CONFIG_VERSION)

# Config file names, first is the one written
CONFIG_FILENAMES = ("keg", "keg.yaml", "keg.yml")


class LinkEntry(BaseModel):
    """A named link to another keg."""

    alias: str
    url: str = ""


class IndexEntry(BaseModel):
    """A tag-filtered index declaration."""

    file: str  # e.g. "dex/golang.md"
    summary: str = ""
    tags: str = ""  # Tag query; empty means the entry is informational only


class KegConfig(BaseModel):
    """The keg configuration record."""

    kegv: str = CONFIG_VERSION
    updated: datetime | None = None  # Reindex watermark
    title: str = ""
    url: str = ""
    creator: str = ""
    state: str = ""
    summary: str = ""
    links: list[LinkEntry] = Field(default_factory=list)
    indexes: list[IndexEntry] = Field(default_factory=list)

    @field_validator("kegv")
    @classmethod
    def _known_version(cls, value: str) -> str:
        if value not in SUPPORTED_CONFIG_VERSIONS:
            raise ValueError(f"unsupported kegv {value!r}")
        return CONFIG_VERSION

    @field_validator("updated")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def expand_env(self) -> KegConfig:
        """Return a copy with ``$VAR`` and ``${VAR}`` expanded.

        Only string fields that commonly embed paths or URLs are expanded:
        title, url, creator, state, summary, every link url and every index
        file. Unknown variables are left as written.
        """
        expanded = self.model_copy(deep=True)
        for name in ("title", "url", "creator", "state", "summary"):
            setattr(expanded, name, os.path.expandvars(getattr(expanded, name)))
        for link in expanded.links:
            link.url = os.path.expandvars(link.url)
        for entry in expanded.indexes:
            entry.file = os.path.expandvars(entry.file)
        return expanded

    def to_yaml(self) -> bytes:
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).encode("utf-8")

    @classmethod
    def from_yaml(cls, data: bytes) -> KegConfig:
        """Parse a keg config document.

        Raises:
            ConfigurationError: If the YAML is malformed or fails validation.
        """
        try:
            loaded: Any = yaml.safe_load(data.decode("utf-8")) if data.strip() else {}
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"malformed keg config: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError("malformed keg config: expected a mapping")
        try:
            return cls.model_validate(loaded)
        except ValidationError as e:
            errors = [f"  - {'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ConfigurationError("invalid keg config:\n" + "\n".join(errors)) from e


# =============================================================================
# Runtime settings
# =============================================================================

# Keg directory used by the CLI when --keg is not given
KEG_ROOT_ENV = "KEGDEX_ROOT"

# Seconds to wait for a node lock before giving up
DEFAULT_LOCK_TIMEOUT = 5.0
LOCK_TIMEOUT_ENV = "KEGDEX_LOCK_TIMEOUT"

# Seconds between lock acquisition attempts
DEFAULT_LOCK_RETRY = 0.1
LOCK_RETRY_ENV = "KEGDEX_LOCK_RETRY"


def _float_setting(env_var: str, default: float) -> float:
    raw = os.environ.get(env_var)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{env_var} must be a number of seconds, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{env_var} must be positive, got {raw!r}")
    return value


def get_lock_timeout() -> float:
    return _float_setting(LOCK_TIMEOUT_ENV, DEFAULT_LOCK_TIMEOUT)


def get_lock_retry() -> float:
    return _float_setting(LOCK_RETRY_ENV, DEFAULT_LOCK_RETRY)


def get_keg_root(explicit: str | Path | None = None) -> Path:
    """Resolve the keg directory.

    Args:
        explicit: Path given on the command line, if any.

    Returns:
        The explicit path, else KEGDEX_ROOT, else the current directory.
    """
    if explicit:
        return Path(explicit).expanduser()
    root = os.environ.get(KEG_ROOT_ENV)
    if root:
        return Path(root).expanduser()
    return Path.cwd()
