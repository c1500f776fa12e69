"""Pydantic models for node records."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidError
from .node_id import NodeId, normalize_ids, parse_ids


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_tags(raw: Any) -> list[str]:
    """Normalize a tags value into a sorted, deduplicated list.

    Accepts a comma separated string or a list whose items may themselves
    contain commas. Blank tags are dropped.
    """
    if raw is None:
        return []
    items = [raw] if isinstance(raw, str) else list(raw)
    tags = set()
    for item in items:
        for part in str(item).split(","):
            part = part.strip()
            if part:
                tags.add(part)
    return sorted(tags)


class NodeIndexEntry(BaseModel):
    """One row of the recency-ordered indexes."""

    id: str  # Node path, e.g. "42"
    title: str = ""
    updated: datetime | None = None  # None is the zero timestamp

    @field_validator("updated")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class NodeMeta(BaseModel):
    """Contents of a node's meta.yaml.

    Only ``tags`` is interpreted; any other attribute is kept verbatim.
    """

    model_config = ConfigDict(extra="allow")

    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)

    def attrs(self) -> dict[str, Any]:
        return dict(self.__pydantic_extra__ or {})

    def set_attrs(self, attrs: dict[str, Any]) -> None:
        """Merge attributes (typically content frontmatter) into the meta."""
        for key, value in attrs.items():
            if key == "tags":
                self.tags = normalize_tags(value)
            else:
                setattr(self, key, value)

    def to_yaml(self) -> bytes:
        data = self.model_dump(mode="json")
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).encode("utf-8")

    @classmethod
    def from_yaml(cls, data: bytes) -> NodeMeta:
        """Parse meta.yaml.

        Raises:
            InvalidError: If the document is not a YAML mapping.
        """
        try:
            loaded = yaml.safe_load(data.decode("utf-8")) if data.strip() else {}
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise InvalidError(f"malformed meta: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise InvalidError("malformed meta: expected a mapping")
        return cls.model_validate(loaded)


class NodeStats(BaseModel):
    """Derived node statistics stored in stats.json."""

    title: str = ""
    hash: str = ""  # sha256 of the raw content
    lead: str = ""  # First paragraph after the title
    links: list[str] = Field(default_factory=list)  # Outgoing node paths, ascending
    created: datetime | None = None
    updated: datetime | None = None  # Last content change or explicit touch
    accessed: datetime | None = None
    access_count: int = 0

    @field_validator("links", mode="before")
    @classmethod
    def _normalize_links(cls, value: Any) -> list[str]:
        if not value:
            return []
        return [node_id.path for node_id in normalize_ids(parse_ids([str(v) for v in value]))]

    @field_validator("created", "updated", "accessed")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def incomplete(self) -> bool:
        # Blank and frontmatter-only content have an empty title
        return not self.hash or self.created is None

    def link_ids(self) -> list[NodeId]:
        return parse_ids(self.links)

    def set_links(self, links: list[NodeId]) -> None:
        self.links = [node_id.path for node_id in normalize_ids(links)]

    def set_hash(self, hash: str, now: datetime) -> None:
        """Record a content hash, bumping ``updated`` when it changed."""
        if hash != self.hash:
            self.hash = hash
            self.updated = now

    def ensure_times(self, now: datetime) -> None:
        if self.created is None:
            self.created = now
        if self.updated is None:
            self.updated = now

    def touch(self, now: datetime) -> None:
        self.accessed = now
        self.access_count += 1

    def to_json(self) -> bytes:
        return (self.model_dump_json(indent=2, exclude_none=True) + "\n").encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> NodeStats:
        """Parse stats.json, accepting YAML written by older tools.

        Raises:
            InvalidError: If the data is neither valid JSON nor a YAML mapping.
        """
        if not data.strip():
            return cls()
        try:
            return cls.model_validate_json(data)
        except ValidationError:
            pass
        try:
            loaded = yaml.safe_load(data.decode("utf-8"))
            if not isinstance(loaded, dict):
                raise InvalidError("malformed stats: expected a mapping")
            return cls.model_validate(loaded)
        except (yaml.YAMLError, UnicodeDecodeError, ValidationError) as e:
            raise InvalidError(f"malformed stats: {e}") from e


class ReindexResult(BaseModel):
    """Summary of one reindex pass."""

    nodes: int = 0  # Nodes visited
    refreshed: list[str] = Field(default_factory=list)  # Nodes whose meta/stats were regenerated
    removed: list[str] = Field(default_factory=list)  # Dex entries dropped for vanished nodes
    watermark: datetime | None = None
    rebuild: bool = False
