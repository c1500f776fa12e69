"""Index builder contract and shared serialization helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime

from ..node import NodeData
from ..node_id import NodeId

NODES_INDEX = "dex/nodes.tsv"
TAGS_INDEX = "dex/tags"
LINKS_INDEX = "dex/links"
BACKLINKS_INDEX = "dex/backlinks"
CHANGES_INDEX = "dex/changes.md"

# Core artifact names; never available to custom indexes
RESERVED_INDEXES = frozenset(
    {CHANGES_INDEX, NODES_INDEX, LINKS_INDEX, BACKLINKS_INDEX, TAGS_INDEX}
)

INDEX_TIME_FORMAT = "%Y-%m-%d %H:%M:%SZ"
ZERO_TIME = "0001-01-01 00:00:00Z"
MIN_TIME = datetime.min.replace(tzinfo=UTC)


def format_index_time(value: datetime | None) -> str:
    """Format a timestamp for an index line; None becomes the zero sentinel."""
    if value is None:
        return ZERO_TIME
    return value.astimezone(UTC).strftime(INDEX_TIME_FORMAT)


def parse_index_time(text: str) -> datetime | None:
    """Parse an index timestamp.

    Returns:
        The UTC timestamp, or None for the zero sentinel.

    Raises:
        ValueError: If the text is not a recognised timestamp.
    """
    text = text.strip()
    if text == ZERO_TIME:
        return None
    try:
        return datetime.strptime(text, INDEX_TIME_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def single_line(text: str) -> str:
    """Collapse tabs and line breaks so a value fits in one index field."""
    return text.replace("\t", " ").replace("\r", " ").replace("\n", " ")


def decode_lines(data: bytes) -> list[str]:
    return data.decode("utf-8", errors="replace").splitlines()


class IndexBuilder(ABC):
    """One derived artifact over the node set.

    Builders keep their state in memory and are not thread-safe; the owning
    Dex serializes access.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Canonical artifact name, e.g. ``dex/tags``."""

    @abstractmethod
    def add(self, node: NodeData) -> None:
        """Incorporate or update one node's contribution."""

    @abstractmethod
    def remove(self, node_id: NodeId) -> None:
        """Erase one node's contribution; no-op when absent."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all in-memory state."""

    @abstractmethod
    def load(self, data: bytes) -> None:
        """Replace state from a persisted artifact, skipping malformed lines."""

    @abstractmethod
    def data(self) -> bytes:
        """Canonical serialized form."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
