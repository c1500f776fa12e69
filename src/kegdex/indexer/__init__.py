"""Index builders that make up the dex."""

from .base import (
    BACKLINKS_INDEX,
    CHANGES_INDEX,
    LINKS_INDEX,
    NODES_INDEX,
    RESERVED_INDEXES,
    TAGS_INDEX,
    IndexBuilder,
    format_index_time,
    parse_index_time,
)
from .changes import ChangesIndex, TagFilteredIndex
from .links import BacklinksIndex, LinksIndex
from .nodes import NodesIndex
from .tags import TagsIndex

__all__ = [
    "BACKLINKS_INDEX",
    "CHANGES_INDEX",
    "LINKS_INDEX",
    "NODES_INDEX",
    "RESERVED_INDEXES",
    "TAGS_INDEX",
    "BacklinksIndex",
    "ChangesIndex",
    "IndexBuilder",
    "LinksIndex",
    "NodesIndex",
    "TagFilteredIndex",
    "TagsIndex",
    "format_index_time",
    "parse_index_time",
]
