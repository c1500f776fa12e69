"""Tag membership index (dex/tags)."""

from __future__ import annotations

from bisect import insort

from ..node import NodeData
from ..node_id import NodeId, normalize_ids, parse_ids
from .base import TAGS_INDEX, IndexBuilder, decode_lines


class TagsIndex(IndexBuilder):
    """Maps each tag to the ascending list of nodes carrying it."""

    def __init__(self) -> None:
        self._tags: dict[str, list[NodeId]] = {}

    @property
    def name(self) -> str:
        return TAGS_INDEX

    @classmethod
    def parse(cls, data: bytes) -> TagsIndex:
        index = cls()
        index.load(data)
        return index

    def add(self, node: NodeData) -> None:
        current = set(node.tags())
        for tag in list(self._tags):
            if tag not in current and node.id in self._tags[tag]:
                self._tags[tag].remove(node.id)
                if not self._tags[tag]:
                    del self._tags[tag]
        for tag in current:
            members = self._tags.setdefault(tag, [])
            if node.id not in members:
                insort(members, node.id)

    def remove(self, node_id: NodeId) -> None:
        for tag in list(self._tags):
            members = self._tags[tag]
            if node_id in members:
                members.remove(node_id)
            if not members:
                del self._tags[tag]

    def clear(self) -> None:
        self._tags.clear()

    def load(self, data: bytes) -> None:
        self.clear()
        for line in decode_lines(data):
            fields = line.split()
            if len(fields) < 2:
                continue
            members = parse_ids(fields[1:])
            if members:
                self._tags[fields[0]] = normalize_ids(members)

    def data(self) -> bytes:
        lines = []
        for tag in sorted(self._tags):
            members = self._tags[tag]
            if not members:
                continue
            lines.append(f"{tag} {' '.join(m.path for m in members)}\n")
        return "".join(lines).encode("utf-8")

    def tag_list(self) -> list[str]:
        return sorted(tag for tag, members in self._tags.items() if members)

    def members(self, tag: str) -> list[NodeId]:
        return list(self._tags.get(tag, []))

    def tags_for(self, node_id: NodeId) -> list[str]:
        return sorted(tag for tag, members in self._tags.items() if node_id in members)
