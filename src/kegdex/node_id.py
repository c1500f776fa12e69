"""Node identifiers.

A node id is a non-negative integer, optionally qualified by the alias of the
keg it lives in and optionally suffixed by a 4-digit temporary code that marks
an uncommitted node:

    42          plain id
    42-0117     temporary node
    work/42     node 42 in the keg aliased "work"

Ids order numerically on (id, code, alias), so ``NodeId(10) > NodeId(9)``
even though "10" < "9" as strings.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass

from .errors import InvalidError

_ID_RE = re.compile(r"^[0-9]+$")
_CODE_RE = re.compile(r"^[0-9]{4}$")
KEG_PREFIX = "keg:"


@dataclass(frozen=True, order=True)
class NodeId:
    """Identifier of a single node."""

    id: int
    code: str = ""  # 4-digit temporary code, empty once committed
    alias: str = ""  # owning keg alias, empty for the local keg

    def __post_init__(self) -> None:
        if self.id < 0:
            raise InvalidError(f"invalid node id {self.id}: must be non-negative")
        if self.code and not _CODE_RE.match(self.code):
            raise InvalidError(f"invalid node code {self.code!r}: expected 4 digits")

    @classmethod
    def parse(cls, raw: str) -> NodeId:
        """Parse a node id from its path form.

        Args:
            raw: ``id``, ``id-code`` or ``alias/id[-code]``, optionally
                prefixed by ``keg:``.

        Returns:
            The parsed NodeId.

        Raises:
            InvalidError: If the id part is empty, not numeric, has leading
                zeros, or the code is not exactly four digits.
        """
        text = raw.strip()
        if text.startswith(KEG_PREFIX):
            text = text[len(KEG_PREFIX) :]

        alias = ""
        if "/" in text:
            alias, _, text = text.rpartition("/")
            if not alias:
                raise InvalidError(f"invalid node id {raw!r}: empty alias")

        id_part, sep, code = text.partition("-")
        if not _ID_RE.match(id_part):
            raise InvalidError(f"invalid node id {raw!r}")
        if len(id_part) > 1 and id_part.startswith("0"):
            raise InvalidError(f"invalid node id {raw!r}: leading zeros")
        if sep and not _CODE_RE.match(code):
            raise InvalidError(f"invalid node id {raw!r}: code must be 4 digits")

        return cls(int(id_part), code, alias)

    @classmethod
    def temp(cls, id: int, alias: str = "") -> NodeId:
        """Create a temporary id with a random 4-digit code."""
        return cls(id, f"{random.randint(0, 9999):04d}", alias)

    @property
    def path(self) -> str:
        base = f"{self.id}-{self.code}" if self.code else str(self.id)
        return f"{self.alias}/{base}" if self.alias else base

    @property
    def is_zero(self) -> bool:
        return self.id == 0

    @property
    def is_temp(self) -> bool:
        return bool(self.code)

    def committed(self) -> NodeId:
        """Return this id without its temporary code."""
        return NodeId(self.id, "", self.alias)

    def __str__(self) -> str:
        return self.path


ZERO_NODE = NodeId(0)


def parse_ids(values: list[str]) -> list[NodeId]:
    """Parse ids leniently, dropping anything that is not a valid id."""
    out = []
    for value in values:
        try:
            out.append(NodeId.parse(value))
        except InvalidError:
            continue
    return out


def normalize_ids(ids) -> list[NodeId]:
    """Deduplicate and sort node ids ascending."""
    return sorted(set(ids))
