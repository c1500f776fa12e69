"""Outgoing and incoming link indexes (dex/links, dex/backlinks)."""

from __future__ import annotations

from bisect import insort

from ..errors import InvalidError
from ..node import NodeData
from ..node_id import NodeId, normalize_ids, parse_ids
from .base import BACKLINKS_INDEX, LINKS_INDEX, IndexBuilder, decode_lines


class _AdjacencyIndex(IndexBuilder):
    """Node id -> ascending id list, one ``src\\tid id ...`` line per node.

    A node with an empty list keeps its line, which records that the node
    is known to have no edges rather than being unindexed.
    """

    def __init__(self) -> None:
        self._edges: dict[NodeId, list[NodeId]] = {}

    @classmethod
    def parse(cls, data: bytes):
        index = cls()
        index.load(data)
        return index

    def remove(self, node_id: NodeId) -> None:
        self._edges.pop(node_id, None)
        for targets in self._edges.values():
            if node_id in targets:
                targets.remove(node_id)

    def clear(self) -> None:
        self._edges.clear()

    def load(self, data: bytes) -> None:
        self.clear()
        for line in decode_lines(data):
            raw_src, sep, rest = line.partition("\t")
            if not sep:
                continue
            try:
                src = NodeId.parse(raw_src)
            except InvalidError:
                continue
            self._edges[src] = normalize_ids(parse_ids(rest.split()))

    def data(self) -> bytes:
        lines = []
        for src in sorted(self._edges):
            targets = " ".join(t.path for t in self._edges[src])
            lines.append(f"{src.path}\t{targets}\n")
        return "".join(lines).encode("utf-8")

    def get(self, node_id: NodeId) -> list[NodeId]:
        return list(self._edges.get(node_id, []))

    def ids(self) -> list[NodeId]:
        return sorted(self._edges)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._edges


class LinksIndex(_AdjacencyIndex):
    """Node -> nodes it links to."""

    @property
    def name(self) -> str:
        return LINKS_INDEX

    def add(self, node: NodeData) -> None:
        self._edges[node.id] = normalize_ids(node.links())


class BacklinksIndex(_AdjacencyIndex):
    """Node -> nodes linking to it."""

    @property
    def name(self) -> str:
        return BACKLINKS_INDEX

    def add(self, node: NodeData) -> None:
        targets = set(node.links())
        self._edges.setdefault(node.id, [])
        for dst, sources in self._edges.items():
            if dst not in targets and node.id in sources:
                sources.remove(node.id)
        for dst in targets:
            sources = self._edges.setdefault(dst, [])
            if node.id not in sources:
                insort(sources, node.id)
