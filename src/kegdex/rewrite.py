"""Rewriting of relative node links.

Nodes link to each other with relative tokens such as ``../42``. When a node
is moved or removed, every token pointing at it must be rewritten. A token
only matches when the id is followed by whitespace, a closing bracket or
punctuation, or the end of the text, so rewriting ``../5`` leaves ``../52``
alone. Link extraction in ``kegdex.content`` uses the same boundary, so every
link the indexes record is one a move can rewrite.
"""

from __future__ import annotations

import re

from .node_id import NodeId

LINK_BOUNDARY = r"(?=[\s)\]}>.,;:!?'\"#]|\Z)"


def link_pattern(node_id: NodeId) -> re.Pattern[str]:
    return re.compile(r"\.\./" + re.escape(node_id.path) + LINK_BOUNDARY)


def _byte_link_pattern(node_id: NodeId) -> re.Pattern[bytes]:
    return re.compile(
        rb"\.\./" + re.escape(node_id.path.encode("ascii")) + LINK_BOUNDARY.encode("ascii")
    )


def rewrite_links(text: str, old: NodeId, new: NodeId) -> str:
    """Point every ``../<old>`` token in ``text`` at ``new``."""
    replacement = f"../{new.path}"
    return link_pattern(old).sub(lambda _: replacement, text)


def rewrite_content(raw: bytes, old: NodeId, new: NodeId) -> bytes | None:
    """Rewrite links in raw content without decoding it.

    Content that is not UTF-8 is matched byte for byte; it only needs
    rewriting when it actually holds a ``../<old>`` token.

    Returns:
        The rewritten bytes, or None when nothing changed.
    """
    replacement = f"../{new.path}".encode("ascii")
    rewritten, count = _byte_link_pattern(old).subn(lambda _: replacement, raw)
    if not count:
        return None
    return rewritten
