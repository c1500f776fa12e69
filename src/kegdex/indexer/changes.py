"""Recency changelog indexes (dex/changes.md and tag-filtered variants)."""

from __future__ import annotations

import logging

from ..errors import InvalidError, ParseError
from ..models import NodeIndexEntry
from ..node import NodeData
from ..node_id import NodeId
from ..tag_expr import TagExpr, evaluate, parse
from .base import (
    CHANGES_INDEX,
    MIN_TIME,
    IndexBuilder,
    decode_lines,
    format_index_time,
    parse_index_time,
    single_line,
)

log = logging.getLogger(__name__)

_LINE_PREFIX = "* "
_TIME_WIDTH = len("0001-01-01 00:00:00Z")
_LINK_SEP = "](../"


def _sort_key(entry: NodeIndexEntry):
    return entry.updated or MIN_TIME


class ChangesIndex(IndexBuilder):
    """Nodes as markdown list items, newest first.

    Sorting is stable, so entries with equal timestamps keep the order in
    which they were added or last updated.
    """

    def __init__(self) -> None:
        self._entries: list[NodeIndexEntry] = []

    @property
    def name(self) -> str:
        return CHANGES_INDEX

    @classmethod
    def parse(cls, data: bytes) -> ChangesIndex:
        index = cls()
        index.load(data)
        return index

    def add(self, node: NodeData) -> None:
        self.upsert(node.to_entry())

    def upsert(self, entry: NodeIndexEntry) -> None:
        for i, existing in enumerate(self._entries):
            if existing.id == entry.id:
                self._entries[i] = entry
                break
        else:
            self._entries.append(entry)
        # list.sort with reverse=True stays stable
        self._entries.sort(key=_sort_key, reverse=True)

    def remove(self, node_id: NodeId) -> None:
        self._entries = [e for e in self._entries if e.id != node_id.path]

    def clear(self) -> None:
        self._entries = []

    def load(self, data: bytes) -> None:
        self.clear()
        for line in decode_lines(data):
            entry = _parse_line(line)
            if entry is None:
                log.debug("Skipping malformed changes line in %s: %r", self.name, line)
                continue
            self._entries.append(entry)

    def data(self) -> bytes:
        lines = [
            f"{_LINE_PREFIX}{format_index_time(e.updated)} [{single_line(e.title)}](../{e.id})\n"
            for e in self._entries
        ]
        return "".join(lines).encode("utf-8")

    def entries(self) -> list[NodeIndexEntry]:
        return list(self._entries)

    def __contains__(self, node_id: object) -> bool:
        if not isinstance(node_id, NodeId):
            return False
        return any(e.id == node_id.path for e in self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def _parse_line(line: str) -> NodeIndexEntry | None:
    if not line.startswith(_LINE_PREFIX):
        return None
    rest = line[len(_LINE_PREFIX) :]
    if len(rest) < _TIME_WIDTH + 2 or rest[_TIME_WIDTH] != " ":
        return None

    link = rest[_TIME_WIDTH + 1 :].rstrip()
    if not link.startswith("[") or not link.endswith(")"):
        return None
    sep = link.rfind(_LINK_SEP)
    if sep < 0:
        return None
    raw_id = link[sep + len(_LINK_SEP) : -1]
    if not raw_id:
        return None

    try:
        node_id = NodeId.parse(raw_id)
        updated = parse_index_time(rest[:_TIME_WIDTH])
    except (InvalidError, ValueError):
        return None
    return NodeIndexEntry(id=node_id.path, title=link[1:sep], updated=updated)


class TagFilteredIndex(ChangesIndex):
    """A changelog limited to nodes matching a tag query.

    Membership is re-evaluated on every add, so a node whose tags stop
    matching is dropped.
    """

    def __init__(self, name: str, query: str) -> None:
        super().__init__()
        try:
            self.expr: TagExpr = parse(query)
        except ParseError as e:
            raise ParseError(
                f"invalid tag expression for {name!r}: {e.message}", e.position
            ) from e
        self._name = name
        self.query = query

    @property
    def name(self) -> str:
        return self._name

    def matches(self, node: NodeData) -> bool:
        universe = {node.path}
        hit = {node.path}

        def resolve(tag: str) -> set[str]:
            return hit if node.has_tag(tag) else set()

        return bool(evaluate(self.expr, universe, resolve))

    def add(self, node: NodeData) -> None:
        if self.matches(node):
            self.upsert(node.to_entry())
        else:
            self.remove(node.id)
