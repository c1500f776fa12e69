"""The keg coordinator.

``Keg`` ties a repository to its dex. It owns the only Dex instance for the
repository in this process: the dex is loaded lazily on first use and kept
for the lifetime of the Keg, so its correctness depends on one coordinator
per repository per process.

Node writes always happen under the repository's per-node lock. Composed
operations (create, then refresh the new node) rely on the lock being
reentrant within the calling context.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from .config import KegConfig
from .content import parse_content
from .dex import Dex
from .errors import BatchError, DestinationExistsError, InvalidError, NotFoundError
from .models import NodeMeta, NodeStats, ReindexResult, utcnow
from .node import NodeData
from .node_id import ZERO_NODE, NodeId
from .repository import FileRepository, Repository
from .rewrite import rewrite_content

log = logging.getLogger(__name__)

ZERO_NODE_CONTENT = """# Sorry, planned but not yet available

This is a placeholder until content is created for the link that brought you
here. If you need this content sooner, please open an issue describing why
you would like this content created.
"""


def as_node_id(value: NodeId | str | int) -> NodeId:
    """Coerce user input to a NodeId.

    Raises:
        InvalidError: If the value is not a valid node id.
    """
    if isinstance(value, NodeId):
        return value
    if isinstance(value, int):
        return NodeId(value)
    return NodeId.parse(value)


def _as_bytes(content: bytes | str) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


class Keg:
    """Coordinates node writes, reindexing and link rewriting for one repository."""

    def __init__(self, repo: Repository, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock
        self._dex: Dex | None = None

    @classmethod
    def open(cls, root: str | Path, **kwargs) -> Keg:
        """Open a keg stored on disk."""
        return cls(FileRepository(root), **kwargs)

    # =========================================================================
    # Config and dex
    # =========================================================================

    def config(self) -> KegConfig:
        """Stored config, or defaults when the keg has none yet."""
        try:
            return self.repo.read_config()
        except NotFoundError:
            return KegConfig()

    def dex(self) -> Dex:
        """The cached dex, loaded from the repository on first access."""
        if self._dex is None:
            self._dex = Dex.from_repository(self.repo, self.config().expand_env())
        return self._dex

    def init(self, title: str = "") -> KegConfig:
        """Create the config and the zero node if they are missing.

        Returns:
            The keg config after initialization.
        """
        try:
            config = self.repo.read_config()
        except NotFoundError:
            config = KegConfig(title=title)
            self.repo.write_config(config)
            log.info("Wrote default keg config")

        if not self.repo.has_node(ZERO_NODE):
            with self.repo.node_lock(ZERO_NODE):
                self.repo.write_content(ZERO_NODE, ZERO_NODE_CONTENT.encode("utf-8"))
                self._refresh(ZERO_NODE)
            self.dex().write(self.repo)
        return config

    # =========================================================================
    # Node access
    # =========================================================================

    def _read_meta(self, node_id: NodeId) -> NodeMeta | None:
        if not self.repo.has_meta(node_id):
            return None
        try:
            return NodeMeta.from_yaml(self.repo.read_meta(node_id))
        except InvalidError as e:
            log.warning("Ignoring unreadable meta for node %s: %s", node_id.path, e)
            return None

    def _read_stats(self, node_id: NodeId) -> NodeStats | None:
        if not self.repo.has_stats(node_id):
            return None
        try:
            return NodeStats.from_bytes(self.repo.read_stats(node_id))
        except InvalidError as e:
            log.warning("Ignoring unreadable stats for node %s: %s", node_id.path, e)
            return None

    def get(self, node_id: NodeId | str | int) -> NodeData:
        """Load a node with its parsed content, meta and stats.

        Raises:
            NotFoundError: If the node does not exist.
        """
        node_id = as_node_id(node_id)
        content = parse_content(self.repo.read_content(node_id))
        return NodeData(
            node_id,
            content,
            self._read_meta(node_id) or NodeMeta(),
            self._read_stats(node_id) or NodeStats(),
        )

    def _write_records(self, node: NodeData) -> None:
        with self.repo.node_lock(node.id):
            self.repo.write_meta(node.id, node.meta.to_yaml())
            self.repo.write_stats(node.id, node.stats.to_json())

    def _refresh(self, node_id: NodeId) -> NodeData:
        """Regenerate a node's meta and stats from content and re-add it to the dex."""
        node = self.get(node_id)
        node.update_meta(self.clock())
        self._write_records(node)
        self.dex().add(node)
        return node

    def create(self, content: bytes | str) -> NodeId:
        """Store a new node under the next free id and index it."""
        node_id = self.repo.next_id()
        with self.repo.node_lock(node_id):
            self.repo.write_content(node_id, _as_bytes(content))
            self._refresh(node_id)
        self.dex().write(self.repo)
        log.info("Created node %s", node_id.path)
        return node_id

    def update_content(self, node_id: NodeId | str | int, content: bytes | str) -> NodeData:
        """Replace a node's content and refresh its records.

        Raises:
            NotFoundError: If the node does not exist.
        """
        node_id = as_node_id(node_id)
        if not self.repo.has_node(node_id):
            raise NotFoundError(f"node {node_id.path} not found")
        with self.repo.node_lock(node_id):
            self.repo.write_content(node_id, _as_bytes(content))
            node = self._refresh(node_id)
        self.dex().write(self.repo)
        return node

    def touch(self, node_id: NodeId | str | int) -> NodeData:
        """Mark a node as updated now without changing its content."""
        node_id = as_node_id(node_id)
        now = self.clock()
        with self.repo.node_lock(node_id):
            node = self.get(node_id)
            node.update_meta(now)
            node.stats.updated = now
            node.stats.touch(now)
            self._write_records(node)
        self.dex().add(node)
        self.dex().write(self.repo)
        return node

    # =========================================================================
    # Reindex
    # =========================================================================

    def index(self, *, rebuild: bool = False, no_update: bool = False) -> ReindexResult:
        """Bring every node's records and the dex up to date.

        Args:
            rebuild: Clear the dex and regenerate every node's meta and stats.
            no_update: Only regenerate records that are missing; do not
                react to content changes or staleness.

        Returns:
            Summary of the pass.

        Raises:
            BatchError: If any node failed. The dex and the watermark are
                still written; the error names every failing node.
        """
        now = self.clock()
        config = self.config()
        watermark = config.updated
        dex = self.dex()
        ids = self.repo.list_nodes()
        result = ReindexResult(nodes=len(ids), watermark=now, rebuild=rebuild)

        if rebuild:
            dex.clear()
        else:
            present = set(ids)
            for node_id in sorted(set(dex.node_ids()) | set(dex.links.ids())):
                if node_id not in present:
                    dex.remove(node_id)
                    result.removed.append(node_id.path)

        failures: dict[str, Exception] = {}
        for node_id in ids:
            try:
                if self._index_node(node_id, now, watermark, rebuild, not no_update):
                    result.refreshed.append(node_id.path)
            except Exception as e:
                log.warning("Failed to index node %s: %s", node_id.path, e)
                failures[node_id.path] = e

        if rebuild:
            self.repo.clear_indexes()
        dex.write(self.repo)
        config.updated = now
        self.repo.write_config(config)
        log.info(
            "Indexed %d nodes (%d refreshed, %d removed, %d failed)",
            len(ids),
            len(result.refreshed),
            len(result.removed),
            len(failures),
        )

        if failures:
            raise BatchError("reindex", failures)
        return result

    def _index_node(
        self,
        node_id: NodeId,
        now: datetime,
        watermark: datetime | None,
        rebuild: bool,
        incremental: bool,
    ) -> bool:
        """Reindex one node; returns whether its records were regenerated."""
        dex = self.dex()
        meta = self._read_meta(node_id)
        stats = self._read_stats(node_id)
        node = NodeData(
            node_id,
            parse_content(self.repo.read_content(node_id)),
            meta or NodeMeta(),
            stats or NodeStats(),
        )

        missing = meta is None or stats is None
        updated = node.stats.updated
        stale = updated is None or watermark is None or updated > watermark
        needs_refresh = (
            rebuild
            or missing
            or (incremental and (node.content_changed() or stale or node.stats.incomplete))
        )

        if needs_refresh:
            node.update_meta(now)
            self._write_records(node)

        if needs_refresh or not dex.has_node(node_id) or stale or dex.custom:
            dex.add(node)
        return needs_refresh

    # =========================================================================
    # Move and remove
    # =========================================================================

    def move(self, src: NodeId | str | int, dst: NodeId | str | int) -> None:
        """Move a node and rewrite every link pointing at it.

        Raises:
            InvalidError: If either id is malformed or the zero node.
            NotFoundError: If src does not exist.
            DestinationExistsError: If dst already exists.
            BatchError: If some nodes could not be rewritten. Nodes that
                were rewritten stay rewritten.
        """
        src, dst = as_node_id(src), as_node_id(dst)
        if src.is_zero or dst.is_zero:
            raise InvalidError("the zero node cannot be moved or replaced")
        if not self.repo.has_node(src):
            raise NotFoundError(f"node {src.path} not found")
        if self.repo.has_node(dst):
            raise DestinationExistsError(f"node {dst.path} already exists")

        with self.repo.node_lock(src), self.repo.node_lock(dst):
            self.repo.move_node(src, dst)
        log.info("Moved node %s -> %s", src.path, dst.path)

        dex = self.dex()
        dex.remove(src)
        failures = self._rewrite_links(src, dst)
        try:
            self._refresh(dst)
        except Exception as e:
            log.warning("Failed to refresh moved node %s: %s", dst.path, e)
            failures[dst.path] = e
        dex.write(self.repo)

        if failures:
            raise BatchError("move", failures)

    def remove(self, node_id: NodeId | str | int) -> None:
        """Delete a node and redirect links pointing at it to the zero node.

        Raises:
            InvalidError: If the id is malformed or the zero node.
            NotFoundError: If the node does not exist.
            BatchError: If some nodes could not be rewritten.
        """
        node_id = as_node_id(node_id)
        if node_id.is_zero:
            raise InvalidError("the zero node cannot be removed")
        if not self.repo.has_node(node_id):
            raise NotFoundError(f"node {node_id.path} not found")

        with self.repo.node_lock(node_id):
            self.repo.delete_node(node_id)
        log.info("Removed node %s", node_id.path)

        dex = self.dex()
        dex.remove(node_id)
        failures = self._rewrite_links(node_id, ZERO_NODE)
        dex.write(self.repo)

        if failures:
            raise BatchError("remove", failures)

    def _rewrite_links(self, old: NodeId, new: NodeId) -> dict[str, Exception]:
        """Point links at ``old`` to ``new`` in every node.

        Each node is handled on its own; failures are collected and returned
        rather than stopping the scan.
        """
        failures: dict[str, Exception] = {}
        for node_id in self.repo.list_nodes():
            try:
                with self.repo.node_lock(node_id):
                    rewritten = rewrite_content(self.repo.read_content(node_id), old, new)
                    if rewritten is None:
                        continue
                    self.repo.write_content(node_id, rewritten)
                    self._refresh(node_id)
                log.debug("Rewrote links %s -> %s in node %s", old.path, new.path, node_id.path)
            except Exception as e:
                log.warning("Failed to rewrite links in node %s: %s", node_id.path, e)
                failures[node_id.path] = e
        return failures
