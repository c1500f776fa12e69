"""Boolean tag queries.

A tag query combines tag names with ``and``/``&&``, ``or``/``||`` and
``not``/``!``, grouped by parentheses:

    golang and (cli or tui)
    'and' or notes && !draft

Keyword operators are case-insensitive. Tags are bare words or quoted
strings (single or double quotes, backslash escapes), so a quoted ``'and'``
is a tag rather than an operator. ``not`` binds tighter than ``and``, which
binds tighter than ``or``.

A query is compiled once with :func:`parse` and evaluated any number of
times against different universes with :func:`evaluate`.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass

from .errors import ParseError

Resolver = Callable[[str], Iterable[Hashable]]

# Characters that end a bare tag word
_WORD_STOP = set("()!&|'\"")

_KEYWORDS = {"and": "and", "or": "or", "not": "not"}


@dataclass(frozen=True)
class Token:
    kind: str  # ident, and, or, not, lparen, rparen
    value: str
    pos: int


def tokenize(raw: str) -> list[Token]:
    """Split a query into tokens.

    Raises:
        ParseError: On a single ``&`` or ``|`` or an unterminated quote.
    """
    text = raw.strip()
    tokens: list[Token] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
        elif ch == "(":
            tokens.append(Token("lparen", ch, i))
            i += 1
        elif ch == ")":
            tokens.append(Token("rparen", ch, i))
            i += 1
        elif ch == "!":
            tokens.append(Token("not", ch, i))
            i += 1
        elif ch in "&|":
            if text[i : i + 2] != ch * 2:
                raise ParseError(f"unexpected token {ch!r} at position {i}", i)
            tokens.append(Token("and" if ch == "&" else "or", ch * 2, i))
            i += 2
        elif ch in "'\"":
            start = i
            i += 1
            chars = []
            while i < n:
                c = text[i]
                if c == "\\" and i + 1 < n:
                    chars.append(text[i + 1])
                    i += 2
                    continue
                if c == ch:
                    break
                chars.append(c)
                i += 1
            else:
                raise ParseError(f"unterminated quoted tag at position {start}", start)
            i += 1
            tokens.append(Token("ident", "".join(chars), start))
        else:
            start = i
            while i < n and not text[i].isspace() and text[i] not in _WORD_STOP:
                i += 1
            word = text[start:i]
            tokens.append(Token(_KEYWORDS.get(word.lower(), "ident"), word, start))

    return tokens


class TagExpr:
    """A compiled tag query node. Instances are immutable."""

    def evaluate(self, universe: set, resolve: Resolver) -> set:
        raise NotImplementedError

    def tags(self) -> list[str]:
        """Literal tag names referenced by this expression, sorted."""
        found: set[str] = set()
        self._collect(found)
        return sorted(found)

    def _collect(self, found: set[str]) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class Tag(TagExpr):
    name: str

    def evaluate(self, universe: set, resolve: Resolver) -> set:
        return set(resolve(self.name))

    def _collect(self, found: set[str]) -> None:
        found.add(self.name)

    def __str__(self) -> str:
        if not self.name or any(c.isspace() or c in _WORD_STOP for c in self.name) or (
            self.name.lower() in _KEYWORDS
        ):
            escaped = self.name.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'
        return self.name


@dataclass(frozen=True)
class Not(TagExpr):
    operand: TagExpr

    def evaluate(self, universe: set, resolve: Resolver) -> set:
        return set(universe) - self.operand.evaluate(universe, resolve)

    def _collect(self, found: set[str]) -> None:
        self.operand._collect(found)

    def __str__(self) -> str:
        return f"(not {self.operand})"


@dataclass(frozen=True)
class And(TagExpr):
    left: TagExpr
    right: TagExpr

    def evaluate(self, universe: set, resolve: Resolver) -> set:
        return self.left.evaluate(universe, resolve) & self.right.evaluate(universe, resolve)

    def _collect(self, found: set[str]) -> None:
        self.left._collect(found)
        self.right._collect(found)

    def __str__(self) -> str:
        return f"({self.left} and {self.right})"


@dataclass(frozen=True)
class Or(TagExpr):
    left: TagExpr
    right: TagExpr

    def evaluate(self, universe: set, resolve: Resolver) -> set:
        return self.left.evaluate(universe, resolve) | self.right.evaluate(universe, resolve)

    def _collect(self, found: set[str]) -> None:
        self.left._collect(found)
        self.right._collect(found)

    def __str__(self) -> str:
        return f"({self.left} or {self.right})"


class _Parser:
    """Recursive descent over the token list."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def parse_or(self) -> TagExpr:
        left = self.parse_and()
        while (tok := self.peek()) is not None and tok.kind == "or":
            self.advance()
            left = Or(left, self.parse_and())
        return left

    def parse_and(self) -> TagExpr:
        left = self.parse_unary()
        while (tok := self.peek()) is not None and tok.kind == "and":
            self.advance()
            left = And(left, self.parse_unary())
        return left

    def parse_unary(self) -> TagExpr:
        tok = self.peek()
        if tok is not None and tok.kind == "not":
            self.advance()
            return Not(self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> TagExpr:
        tok = self.peek()
        if tok is None:
            raise ParseError("unexpected end of expression")
        if tok.kind == "ident":
            self.advance()
            return Tag(tok.value)
        if tok.kind == "lparen":
            self.advance()
            inner = self.parse_or()
            closing = self.peek()
            if closing is None:
                raise ParseError("expected ')' before end of expression")
            if closing.kind != "rparen":
                raise ParseError(
                    f"expected ')' but found {closing.value!r} at position {closing.pos}",
                    closing.pos,
                )
            self.advance()
            return inner
        raise ParseError(f"unexpected token {tok.value!r} at position {tok.pos}", tok.pos)


def parse(raw: str) -> TagExpr:
    """Compile a tag query.

    Args:
        raw: Query text.

    Returns:
        The compiled expression.

    Raises:
        ParseError: If the query is empty, malformed, has unbalanced
            parentheses, or has tokens left after a complete expression.
    """
    tokens = tokenize(raw)
    if not tokens:
        raise ParseError("expression is empty")

    parser = _Parser(tokens)
    expr = parser.parse_or()
    trailing = parser.peek()
    if trailing is not None:
        raise ParseError(
            f"unexpected token {trailing.value!r} at position {trailing.pos}", trailing.pos
        )
    return expr


def evaluate(expr: TagExpr, universe: Iterable[Hashable], resolve: Resolver) -> set:
    """Evaluate a compiled query.

    Args:
        expr: Compiled expression from :func:`parse`.
        universe: Candidate identifiers; ``not`` is taken relative to it.
        resolve: Returns the members carrying a tag, already restricted to
            whatever the caller considers relevant.

    Returns:
        A new set of identifiers; neither argument is mutated.
    """
    return expr.evaluate(set(universe), resolve)
