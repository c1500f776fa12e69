"""Markdown content parsing.

Node content is a markdown document with optional YAML frontmatter. From it
we derive the title, the lead paragraph, the outgoing node links and a
content hash used to detect edits between reindex passes.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import frontmatter
import yaml
from markdown_it import MarkdownIt

from .errors import InvalidError
from .node_id import NodeId, normalize_ids
from .rewrite import LINK_BOUNDARY

log = logging.getLogger(__name__)

# Markdown link target pointing at a sibling node: ../42, ../42#section
_LINK_HREF_RE = re.compile(r"^\.\./(0|[1-9][0-9]*)(?:[#?].*)?$")
# Bare token in text, used when the document has no markdown node links
_BARE_LINK_RE = re.compile(r"\.\./(0|[1-9][0-9]*)" + LINK_BOUNDARY)

_md = MarkdownIt("commonmark")


@dataclass
class NodeContent:
    """Parsed node content."""

    raw: bytes
    hash: str
    body: str
    title: str = ""
    lead: str = ""
    links: list[NodeId] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)


def content_hash(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()


def _split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise InvalidError(f"malformed frontmatter: {e}") from e
    metadata = post.metadata if isinstance(post.metadata, dict) else {}
    return dict(metadata), post.content


def extract_title_and_lead(body: str) -> tuple[str, str]:
    """Find the document title and the paragraph that follows it.

    The title is the first level-one heading, or the first non-empty line
    when there is none. The lead is the first paragraph after the title,
    with its lines joined by single spaces.
    """
    lines = body.splitlines()
    title_idx = None
    for i, line in enumerate(lines):
        if line.startswith("# "):
            title_idx = i
            break
    if title_idx is None:
        for i, line in enumerate(lines):
            if line.strip():
                title_idx = i
                break
    if title_idx is None:
        return "", ""

    title = lines[title_idx].lstrip("#").strip()

    paragraph: list[str] = []
    for line in lines[title_idx + 1 :]:
        stripped = line.strip()
        if not stripped:
            if paragraph:
                break
            continue
        if stripped.startswith("#") and not paragraph:
            continue
        paragraph.append(stripped)
    return title, " ".join(paragraph)


def extract_links(body: str) -> list[NodeId]:
    """Collect outgoing node links, deduplicated and ascending."""
    found = []
    for token in _md.parse(body):
        if token.type != "inline" or not token.children:
            continue
        for child in token.children:
            if child.type != "link_open":
                continue
            href = str(child.attrGet("href") or "")
            match = _LINK_HREF_RE.match(href)
            if match:
                found.append(NodeId(int(match.group(1))))

    if not found:
        found = [NodeId(int(m.group(1))) for m in _BARE_LINK_RE.finditer(body)]

    return normalize_ids(found)


def parse_content(raw: bytes) -> NodeContent:
    """Parse raw node content.

    Args:
        raw: README bytes as stored by the repository.

    Returns:
        The parsed content.

    Raises:
        InvalidError: If the content is not UTF-8 or the frontmatter is
            not valid YAML.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidError(f"content is not valid UTF-8: {e}") from e

    meta, body = _split_frontmatter(text)
    title, lead = extract_title_and_lead(body)
    return NodeContent(
        raw=raw,
        hash=content_hash(raw),
        body=body,
        title=title,
        lead=lead,
        links=extract_links(body),
        frontmatter=meta,
    )
