"""In-memory repository, used by tests and for embedding."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from ..config import KegConfig
from ..errors import DestinationExistsError, NotFoundError
from ..node_id import NodeId
from .base import Repository


@dataclass
class _NodeBlobs:
    content: bytes = b""
    meta: bytes | None = None
    stats: bytes | None = None


class MemoryRepository(Repository):
    """Keeps every blob in dictionaries.

    The lock table is shared by all threads using this instance, so it
    also serves as a plain in-process mutex per node.
    """

    def __init__(self, lock_timeout: float | None = None, lock_retry: float | None = None):
        super().__init__(lock_timeout, lock_retry)
        self._nodes: dict[NodeId, _NodeBlobs] = {}
        self._indexes: dict[str, bytes] = {}
        self._config: KegConfig | None = None
        self._guard = threading.Lock()
        self._locked: set[NodeId] = set()

    @property
    def lock_namespace(self) -> str:
        return f"memory:{id(self)}"

    def _node(self, node_id: NodeId) -> _NodeBlobs:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFoundError(f"node {node_id.path} not found") from None

    def read_content(self, node_id: NodeId) -> bytes:
        return self._node(node_id).content

    def write_content(self, node_id: NodeId, data: bytes) -> None:
        self._nodes.setdefault(node_id, _NodeBlobs()).content = bytes(data)

    def read_meta(self, node_id: NodeId) -> bytes:
        meta = self._node(node_id).meta
        if meta is None:
            raise NotFoundError(f"meta for node {node_id.path} not found")
        return meta

    def write_meta(self, node_id: NodeId, data: bytes) -> None:
        self._nodes.setdefault(node_id, _NodeBlobs()).meta = bytes(data)

    def read_stats(self, node_id: NodeId) -> bytes:
        stats = self._node(node_id).stats
        if stats is None:
            raise NotFoundError(f"stats for node {node_id.path} not found")
        return stats

    def write_stats(self, node_id: NodeId, data: bytes) -> None:
        self._nodes.setdefault(node_id, _NodeBlobs()).stats = bytes(data)

    def has_meta(self, node_id: NodeId) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and node.meta is not None

    def has_stats(self, node_id: NodeId) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and node.stats is not None

    def has_node(self, node_id: NodeId) -> bool:
        return node_id in self._nodes

    def list_nodes(self) -> list[NodeId]:
        return sorted(self._nodes)

    def next_id(self) -> NodeId:
        return NodeId(max((n.id for n in self._nodes), default=-1) + 1)

    def move_node(self, src: NodeId, dst: NodeId) -> None:
        if src not in self._nodes:
            raise NotFoundError(f"node {src.path} not found")
        if dst in self._nodes:
            raise DestinationExistsError(f"node {dst.path} already exists")
        self._nodes[dst] = self._nodes.pop(src)

    def delete_node(self, node_id: NodeId) -> None:
        if self._nodes.pop(node_id, None) is None:
            raise NotFoundError(f"node {node_id.path} not found")

    def get_index(self, name: str) -> bytes:
        try:
            return self._indexes[name]
        except KeyError:
            raise NotFoundError(f"index {name} not found") from None

    def write_index(self, name: str, data: bytes) -> None:
        self._indexes[name] = bytes(data)

    def list_indexes(self) -> list[str]:
        return sorted(self._indexes)

    def clear_indexes(self) -> None:
        self._indexes.clear()

    def read_config(self) -> KegConfig:
        if self._config is None:
            raise NotFoundError("keg config not found")
        return self._config.model_copy(deep=True)

    def write_config(self, config: KegConfig) -> None:
        self._config = config.model_copy(deep=True)

    def _try_lock(self, node_id: NodeId) -> bool:
        with self._guard:
            if node_id in self._locked:
                return False
            self._locked.add(node_id)
            return True

    def _unlock(self, node_id: NodeId) -> None:
        with self._guard:
            self._locked.discard(node_id)
