"""The dex: every index builder of a keg behind one interface.

The dex owns the five core builders plus any tag-filtered indexes declared in
the keg config. Node updates fan out to all of them; ``write`` persists each
builder's artifact under its name.

A Dex has no internal locking and is meant to be owned by a single
coordinator (see ``kegdex.keg.Keg``).
"""

from __future__ import annotations

import logging
import posixpath

from .config import KegConfig
from .errors import BatchError, KegError, NotFoundError
from .indexer import (
    RESERVED_INDEXES,
    BacklinksIndex,
    ChangesIndex,
    IndexBuilder,
    LinksIndex,
    NodesIndex,
    TagFilteredIndex,
    TagsIndex,
)
from .models import NodeIndexEntry
from .node import NodeData
from .node_id import NodeId
from .repository import Repository
from .tag_expr import evaluate, parse

log = logging.getLogger(__name__)


def custom_index_name(file: str) -> str:
    """Normalize a configured index file to its artifact name under dex/."""
    return f"dex/{posixpath.basename(file.strip())}"


class Dex:
    """Aggregate of a keg's index builders."""

    def __init__(
        self,
        nodes: NodesIndex | None = None,
        tags: TagsIndex | None = None,
        links: LinksIndex | None = None,
        backlinks: BacklinksIndex | None = None,
        changes: ChangesIndex | None = None,
    ):
        self.nodes = nodes if nodes is not None else NodesIndex()
        self.tags = tags if tags is not None else TagsIndex()
        self.links = links if links is not None else LinksIndex()
        self.backlinks = backlinks if backlinks is not None else BacklinksIndex()
        self.changes = changes if changes is not None else ChangesIndex()
        self.custom: dict[str, TagFilteredIndex] = {}

    @classmethod
    def from_repository(cls, repo: Repository, config: KegConfig | None = None) -> Dex:
        """Load the core artifacts and register configured custom indexes.

        A missing or unreadable artifact leaves its builder empty.

        Raises:
            ParseError: If a configured index has an invalid tag query.
        """
        dex = cls()
        for builder in dex.core_builders():
            try:
                builder.load(repo.get_index(builder.name))
            except NotFoundError:
                log.debug("No %s artifact yet, starting empty", builder.name)
            except (KegError, OSError) as e:
                log.warning("Could not read %s, starting empty: %s", builder.name, e)
        if config is not None:
            dex.register_from_config(config)
        return dex

    def core_builders(self) -> list[IndexBuilder]:
        return [self.nodes, self.tags, self.links, self.backlinks, self.changes]

    def builders(self) -> list[IndexBuilder]:
        return [*self.core_builders(), *self.custom.values()]

    def register(self, file: str, query: str) -> TagFilteredIndex | None:
        """Register a tag-filtered index.

        Args:
            file: Artifact path as written in the config.
            query: Tag query; blank means nothing is registered.

        Returns:
            The new builder, or None when the entry was skipped because it
            names a core artifact or has no query.

        Raises:
            ParseError: If the query does not compile.
        """
        name = custom_index_name(file)
        if name == "dex/" or name in RESERVED_INDEXES:
            log.debug("Skipping custom index %s: reserved name", name)
            return None
        if not query.strip():
            return None
        index = TagFilteredIndex(name, query)
        self.custom[name] = index
        return index

    def register_from_config(self, config: KegConfig) -> None:
        for entry in config.indexes:
            self.register(entry.file, entry.tags)

    def add(self, node: NodeData) -> None:
        """Route a node to every builder.

        Every builder is attempted even if one fails; failures are raised
        together afterwards.
        """
        failures: dict[str, Exception] = {}
        for builder in self.builders():
            try:
                builder.add(node)
            except Exception as e:
                log.error("Index %s failed to add node %s: %s", builder.name, node.path, e)
                failures[f"{node.path} ({builder.name})"] = e
        if failures:
            raise BatchError("dex add", failures)

    def remove(self, node_id: NodeId) -> None:
        for builder in self.builders():
            builder.remove(node_id)

    def clear(self) -> None:
        """Reset every builder, keeping custom registrations."""
        for builder in self.builders():
            builder.clear()

    def write(self, repo: Repository) -> None:
        for builder in self.builders():
            repo.write_index(builder.name, builder.data())

    # -- queries --------------------------------------------------------------

    def has_node(self, node_id: NodeId) -> bool:
        return node_id in self.nodes

    def node_ids(self) -> list[NodeId]:
        return sorted(self.nodes.ids())

    def entries(self) -> list[NodeIndexEntry]:
        return self.nodes.entries()

    def tag_list(self) -> list[str]:
        return self.tags.tag_list()

    def outgoing(self, node_id: NodeId) -> list[NodeId]:
        return self.links.get(node_id)

    def incoming(self, node_id: NodeId) -> list[NodeId]:
        return self.backlinks.get(node_id)

    def query(self, expression: str) -> list[NodeId]:
        """Nodes whose tags satisfy a tag query, ascending.

        Raises:
            ParseError: If the query does not compile.
        """
        expr = parse(expression)
        universe = set(self.nodes.ids())

        def resolve(tag: str) -> set[NodeId]:
            return set(self.tags.members(tag)) & universe

        return sorted(evaluate(expr, universe, resolve))

    def index_names(self) -> list[str]:
        return [builder.name for builder in self.builders()]

    def get(self, name: str) -> IndexBuilder:
        for builder in self.builders():
            if builder.name == name:
                return builder
        raise NotFoundError(f"index {name} is not registered")
