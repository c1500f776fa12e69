"""A node's content, meta and stats held together."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .content import NodeContent
from .models import NodeIndexEntry, NodeMeta, NodeStats
from .node_id import NodeId


@dataclass
class NodeData:
    """Everything the indexes need to know about one node."""

    id: NodeId
    content: NodeContent | None = None
    meta: NodeMeta = field(default_factory=NodeMeta)
    stats: NodeStats = field(default_factory=NodeStats)

    @property
    def path(self) -> str:
        return self.id.path

    def tags(self) -> list[str]:
        return list(self.meta.tags)

    def has_tag(self, tag: str) -> bool:
        return tag in self.meta.tags

    def links(self) -> list[NodeId]:
        if self.stats.links or self.content is None:
            return self.stats.link_ids()
        return list(self.content.links)

    def title(self) -> str:
        if self.stats.title or self.content is None:
            return self.stats.title
        return self.content.title

    def updated(self) -> datetime | None:
        return self.stats.updated

    def content_changed(self) -> bool:
        return self.content is not None and self.content.hash != self.stats.hash

    def update_meta(self, now: datetime) -> None:
        """Regenerate stats and meta from the current content.

        Title, lead, links and hash are re-extracted; ``updated`` moves to
        ``now`` only when the hash changed. Frontmatter attributes override
        the stored meta.
        """
        if self.content is None:
            self.stats.ensure_times(now)
            return
        self.stats.title = self.content.title
        self.stats.lead = self.content.lead
        self.stats.set_links(self.content.links)
        self.stats.set_hash(self.content.hash, now)
        self.stats.ensure_times(now)
        if self.content.frontmatter:
            self.meta.set_attrs(self.content.frontmatter)

    def to_entry(self) -> NodeIndexEntry:
        return NodeIndexEntry(id=self.path, title=self.title(), updated=self.updated())
