"""Storage backend contract.

A repository stores raw node blobs (content, meta, stats), the named index
artifacts and the keg config. It never interprets node content; parsing and
index maintenance happen in the layers above.

Every write to a node's blobs should happen inside ``node_lock``. Locks are
per (repository, node) and reentrant per calling context: a nested
``node_lock`` for a node already held by the current context runs inline
instead of deadlocking.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TypeVar

from ..config import KegConfig, get_lock_retry, get_lock_timeout
from ..errors import LockTimeoutError
from ..node_id import NodeId

log = logging.getLogger(__name__)

T = TypeVar("T")

# (repository namespace, node) pairs whose lock the current context holds
_held_locks: ContextVar[frozenset[tuple[str, NodeId]]] = ContextVar(
    "kegdex_held_node_locks", default=frozenset()
)


def holds_node_lock(namespace: str, node_id: NodeId) -> bool:
    return (namespace, node_id) in _held_locks.get()


class Repository(ABC):
    """Abstract storage backend.

    Missing nodes, blobs, indexes or config raise NotFoundError.
    """

    def __init__(self, lock_timeout: float | None = None, lock_retry: float | None = None):
        self.lock_timeout = get_lock_timeout() if lock_timeout is None else lock_timeout
        self.lock_retry = get_lock_retry() if lock_retry is None else lock_retry

    @property
    @abstractmethod
    def lock_namespace(self) -> str:
        """Identifies this backing store for lock bookkeeping."""

    # -- node blobs -----------------------------------------------------------

    @abstractmethod
    def read_content(self, node_id: NodeId) -> bytes: ...

    @abstractmethod
    def write_content(self, node_id: NodeId, data: bytes) -> None: ...

    @abstractmethod
    def read_meta(self, node_id: NodeId) -> bytes: ...

    @abstractmethod
    def write_meta(self, node_id: NodeId, data: bytes) -> None: ...

    @abstractmethod
    def read_stats(self, node_id: NodeId) -> bytes: ...

    @abstractmethod
    def write_stats(self, node_id: NodeId, data: bytes) -> None: ...

    @abstractmethod
    def has_meta(self, node_id: NodeId) -> bool: ...

    @abstractmethod
    def has_stats(self, node_id: NodeId) -> bool: ...

    # -- node set -------------------------------------------------------------

    @abstractmethod
    def has_node(self, node_id: NodeId) -> bool: ...

    @abstractmethod
    def list_nodes(self) -> list[NodeId]:
        """All node ids, ascending."""

    @abstractmethod
    def next_id(self) -> NodeId:
        """Allocate the next unused node id."""

    @abstractmethod
    def move_node(self, src: NodeId, dst: NodeId) -> None:
        """Relocate every blob of ``src`` to ``dst``.

        Raises:
            NotFoundError: If src does not exist.
            DestinationExistsError: If dst already exists.
        """

    @abstractmethod
    def delete_node(self, node_id: NodeId) -> None: ...

    # -- indexes --------------------------------------------------------------

    @abstractmethod
    def get_index(self, name: str) -> bytes: ...

    @abstractmethod
    def write_index(self, name: str, data: bytes) -> None: ...

    @abstractmethod
    def list_indexes(self) -> list[str]:
        """Stored index names, sorted."""

    @abstractmethod
    def clear_indexes(self) -> None: ...

    # -- config ---------------------------------------------------------------

    @abstractmethod
    def read_config(self) -> KegConfig: ...

    @abstractmethod
    def write_config(self, config: KegConfig) -> None: ...

    # -- locking --------------------------------------------------------------

    @abstractmethod
    def _try_lock(self, node_id: NodeId) -> bool:
        """Attempt to take the node's lock without waiting."""

    @abstractmethod
    def _unlock(self, node_id: NodeId) -> None: ...

    @contextmanager
    def node_lock(self, node_id: NodeId, timeout: float | None = None) -> Iterator[None]:
        """Hold the node's exclusive section for the duration of the block.

        Args:
            node_id: Node to lock.
            timeout: Seconds to keep retrying. Defaults to ``lock_timeout``.

        Raises:
            LockTimeoutError: If the lock is still taken at the deadline.
        """
        if holds_node_lock(self.lock_namespace, node_id):
            yield
            return

        self._acquire(node_id, self.lock_timeout if timeout is None else timeout)
        token = _held_locks.set(_held_locks.get() | {(self.lock_namespace, node_id)})
        try:
            yield
        finally:
            _held_locks.reset(token)
            self._unlock(node_id)

    def with_node_lock(self, node_id: NodeId, fn: Callable[[], T]) -> T:
        """Run ``fn`` while holding the node's lock and return its result."""
        with self.node_lock(node_id):
            return fn()

    def _acquire(self, node_id: NodeId, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while not self._try_lock(node_id):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockTimeoutError(
                    f"timed out after {timeout:g}s waiting for lock on node {node_id.path}",
                    {"node": node_id.path},
                )
            time.sleep(min(self.lock_retry, remaining))
        log.debug("Locked node %s", node_id.path)
