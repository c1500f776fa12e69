"""Node listing index (dex/nodes.tsv)."""

from __future__ import annotations

import logging

from ..errors import InvalidError
from ..models import NodeIndexEntry
from ..node import NodeData
from ..node_id import NodeId
from .base import (
    NODES_INDEX,
    IndexBuilder,
    decode_lines,
    format_index_time,
    parse_index_time,
    single_line,
)

log = logging.getLogger(__name__)


class NodesIndex(IndexBuilder):
    """Every node with its title and last update, one TSV line each.

    Lines keep insertion order: a loaded index preserves on-disk order and
    re-adding a node replaces its line in place.
    """

    def __init__(self) -> None:
        self._entries: dict[NodeId, NodeIndexEntry] = {}
        self._next = 0

    @property
    def name(self) -> str:
        return NODES_INDEX

    @classmethod
    def parse(cls, data: bytes) -> NodesIndex:
        index = cls()
        index.load(data)
        return index

    def add(self, node: NodeData) -> None:
        self._put(node.id, node.to_entry())

    def _put(self, node_id: NodeId, entry: NodeIndexEntry) -> None:
        self._entries[node_id] = entry
        self._next = max(self._next, node_id.id + 1)

    def remove(self, node_id: NodeId) -> None:
        if self._entries.pop(node_id, None) is None:
            return
        self._next = max((key.id for key in self._entries), default=-1) + 1

    def clear(self) -> None:
        self._entries.clear()
        self._next = 0

    def load(self, data: bytes) -> None:
        self.clear()
        for line in decode_lines(data):
            if not line.strip():
                continue
            parts = line.split("\t", 2)
            if len(parts) < 3:
                log.debug("Skipping nodes line without 3 fields: %r", line)
                continue
            raw_id, raw_updated, title = parts
            try:
                node_id = NodeId.parse(raw_id)
                updated = parse_index_time(raw_updated) if raw_updated.strip() else None
            except (InvalidError, ValueError):
                log.debug("Skipping malformed nodes line: %r", line)
                continue
            self._put(node_id, NodeIndexEntry(id=node_id.path, title=title, updated=updated))

    def data(self) -> bytes:
        lines = []
        for entry in self._entries.values():
            updated = format_index_time(entry.updated) if entry.updated is not None else ""
            lines.append(f"{entry.id}\t{updated}\t{single_line(entry.title)}\n")
        return "".join(lines).encode("utf-8")

    def next_id(self) -> NodeId:
        """Smallest id above every indexed node."""
        return NodeId(self._next)

    def entries(self) -> list[NodeIndexEntry]:
        return list(self._entries.values())

    def get(self, node_id: NodeId) -> NodeIndexEntry | None:
        return self._entries.get(node_id)

    def ids(self) -> list[NodeId]:
        return list(self._entries)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
