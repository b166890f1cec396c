"""
odata_engine.odata.filter - $filter parsing
============================================

Tokenizer and recursive-descent parser turning an OData ``$filter``
string into a tree of FilterNode values.

Grammar
-------
::

    filter     := and_expr
    and_expr   := or_expr ( "and" or_expr )*
    or_expr    := unary ( "or" unary )*
    unary      := "not" unary | primary
    primary    := "(" and_expr ")" | function | comparison
    function   := ("contains" | "startswith" | "endswith") "(" NAME "," STRING ")"
                | "substringof" "(" STRING "," NAME ")"
    comparison := NAME ("eq" | "ne" | "gt" | "ge" | "lt" | "le") literal
    literal    := STRING | NUMBER | "true" | "false" | "null"

``and`` is deliberately the outermost connective: ``a or b and c`` groups
as ``(a or b) and c``. Existing clients depend on this grouping.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from odata_engine.core.errors import ODataErrorCode, ODataValidationError

logger = logging.getLogger("odata_engine.filter")


SUPPORTED_OPERATORS = "eq, ne, gt, ge, lt, le, and, or, not"
SUPPORTED_FUNCTIONS = "contains, startswith, endswith, substringof"


class ComparisonOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"

    @property
    def symbol(self) -> str:
        """Operator symbol used by the record store, e.g. ``$gte``."""
        return _OPERATOR_SYMBOLS[self]


_OPERATOR_SYMBOLS = {
    ComparisonOperator.EQ: "$eq",
    ComparisonOperator.NE: "$ne",
    ComparisonOperator.GT: "$gt",
    ComparisonOperator.GE: "$gte",
    ComparisonOperator.LT: "$lt",
    ComparisonOperator.LE: "$lte",
}


class LogicalOperator(str, Enum):
    AND = "and"
    OR = "or"


class StringFunctionName(str, Enum):
    CONTAINS = "contains"
    STARTSWITH = "startswith"
    ENDSWITH = "endswith"
    SUBSTRINGOF = "substringof"

    @property
    def symbol(self) -> str:
        return _FUNCTION_SYMBOLS[self]


_FUNCTION_SYMBOLS = {
    StringFunctionName.CONTAINS: "$contains",
    StringFunctionName.STARTSWITH: "$startsWith",
    StringFunctionName.ENDSWITH: "$endsWith",
    StringFunctionName.SUBSTRINGOF: "$contains",
}


# ---------------------------------------------------------------------------
# Filter tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Comparison:
    field: str
    operator: ComparisonOperator
    value: Any

    def to_where(self) -> Dict[str, Any]:
        return {self.field: {self.operator.symbol: self.value}}


@dataclass(frozen=True)
class Logical:
    operator: LogicalOperator
    operands: Tuple["FilterNode", ...]

    def to_where(self) -> Dict[str, Any]:
        return {"$" + self.operator.value: [op.to_where() for op in self.operands]}


@dataclass(frozen=True)
class Not:
    operand: "FilterNode"

    def to_where(self) -> Dict[str, Any]:
        return {"$not": self.operand.to_where()}


@dataclass(frozen=True)
class StringFunction:
    name: StringFunctionName
    field: str
    argument: str

    def to_where(self) -> Dict[str, Any]:
        return {self.field: {self.name.symbol: self.argument}}


@dataclass(frozen=True)
class InList:
    """Membership test; built internally (e.g. by $expand), never parsed."""

    field: str
    values: Tuple[Any, ...]

    def to_where(self) -> Dict[str, Any]:
        return {self.field: {"$in": list(self.values)}}


FilterNode = Union[Comparison, Logical, Not, StringFunction, InList]


def and_(*nodes: Optional[FilterNode]) -> Optional[FilterNode]:
    """Combine nodes with AND, dropping missing ones."""
    present = [n for n in nodes if n is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return Logical(LogicalOperator.AND, tuple(present))


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

class TokenKind(Enum):
    NAME = "name"
    STRING = "string"
    NUMBER = "number"
    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    EOF = "end of input"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    pos: int
    value: Any = None


_NAME_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_./$]*")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _invalid(message: str) -> ODataValidationError:
    return ODataValidationError(ODataErrorCode.INVALID_FILTER, message, target="$filter")


def _unsupported(text: str, detail: str = "") -> ODataValidationError:
    suffix = f" ({detail})" if detail else ""
    return _invalid(
        f'Unsupported $filter expression: "{text}"{suffix}. '
        f"Supported operators: {SUPPORTED_OPERATORS}. "
        f"Supported functions: {SUPPORTED_FUNCTIONS}."
    )


def validate_balance(text: str) -> None:
    """
    Check parenthesis balance and quote closure over the whole string.

    Quotes toggle on every ``'`` not preceded by a backslash, so the
    OData ``''`` escape is balanced as well.

    Raises
    ------
    ODataValidationError
        InvalidFilter, with the offending position where known
    """
    opened: List[int] = []
    quote_start = -1
    for i, ch in enumerate(text):
        if ch == "'" and (i == 0 or text[i - 1] != "\\"):
            quote_start = -1 if quote_start >= 0 else i
            continue
        if quote_start >= 0:
            continue
        if ch == "(":
            opened.append(i)
        elif ch == ")":
            if not opened:
                raise _invalid(
                    "Invalid $filter expression: Mismatched parentheses. "
                    f"Found closing ')' without matching opening '(' at position {i}."
                )
            opened.pop()

    if opened:
        raise _invalid(
            "Invalid $filter expression: Mismatched parentheses. "
            f"{len(opened)} unclosed opening parenthesis(es), "
            f"outermost at position {opened[0]}."
        )
    if quote_start >= 0:
        raise _invalid(
            f"Invalid $filter expression: Unclosed quoted string starting at position {quote_start}."
        )


def _read_string(text: str, start: int) -> Tuple[str, int]:
    # start points at the opening quote
    out: List[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] == "'":
            out.append("'")
            i += 2
            continue
        if ch == "'":
            if i + 1 < len(text) and text[i + 1] == "'":
                out.append("'")
                i += 2
                continue
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    raise _invalid(f"Invalid $filter expression: Unclosed quoted string starting at position {start}.")


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch == "(":
            tokens.append(Token(TokenKind.LPAREN, ch, i))
            i += 1
        elif ch == ")":
            tokens.append(Token(TokenKind.RPAREN, ch, i))
            i += 1
        elif ch == ",":
            tokens.append(Token(TokenKind.COMMA, ch, i))
            i += 1
        elif ch == "'":
            value, end = _read_string(text, i)
            tokens.append(Token(TokenKind.STRING, text[i:end], i, value))
            i = end
        else:
            m = _NUMBER_RE.match(text, i)
            if m and not _NAME_RE.match(text, m.end()):
                raw = m.group(0)
                value = float(raw) if "." in raw else int(raw)
                tokens.append(Token(TokenKind.NUMBER, raw, i, value))
                i = m.end()
                continue
            m = _NAME_RE.match(text, i)
            if not m:
                raise _unsupported(text, f"unexpected character {ch!r} at position {i}")
            tokens.append(Token(TokenKind.NAME, m.group(0), i))
            i = m.end()
    tokens.append(Token(TokenKind.EOF, "", len(text)))
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

_LITERAL_KEYWORDS = {"true": True, "false": False, "null": None}
_FIELD_FIRST = {
    StringFunctionName.CONTAINS,
    StringFunctionName.STARTSWITH,
    StringFunctionName.ENDSWITH,
}


class _Parser:
    def __init__(self, text: str, tokens: List[Token]) -> None:
        self.text = text
        self.tokens = tokens
        self.i = 0

    # ---------------- token helpers ----------------

    @property
    def current(self) -> Token:
        return self.tokens[self.i]

    def _peek(self, offset: int = 1) -> Token:
        idx = min(self.i + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def _advance(self) -> Token:
        tok = self.tokens[self.i]
        if tok.kind is not TokenKind.EOF:
            self.i += 1
        return tok

    def _keyword(self, word: str) -> bool:
        tok = self.current
        if tok.kind is TokenKind.NAME and tok.text == word:
            self.i += 1
            return True
        return False

    def _expect(self, kind: TokenKind, what: str) -> Token:
        tok = self.current
        if tok.kind is not kind:
            found = tok.text or tok.kind.value
            raise _unsupported(self.text, f"expected {what} at position {tok.pos}, found {found!r}")
        return self._advance()

    # ---------------- grammar ----------------

    def parse(self) -> FilterNode:
        node = self._and_expr()
        if self.current.kind is not TokenKind.EOF:
            raise _unsupported(
                self.text, f"unexpected {self.current.text!r} at position {self.current.pos}"
            )
        return node

    def _and_expr(self) -> FilterNode:
        operands = [self._or_expr()]
        while self._keyword("and"):
            operands.append(self._or_expr())
        if len(operands) == 1:
            return operands[0]
        return Logical(LogicalOperator.AND, tuple(operands))

    def _or_expr(self) -> FilterNode:
        operands = [self._unary()]
        while self._keyword("or"):
            operands.append(self._unary())
        if len(operands) == 1:
            return operands[0]
        return Logical(LogicalOperator.OR, tuple(operands))

    def _unary(self) -> FilterNode:
        if self._keyword("not"):
            return Not(self._unary())
        return self._primary()

    def _primary(self) -> FilterNode:
        tok = self.current
        if tok.kind is TokenKind.LPAREN:
            self._advance()
            node = self._and_expr()
            self._expect(TokenKind.RPAREN, "')'")
            return node
        if tok.kind is TokenKind.NAME and self._peek().kind is TokenKind.LPAREN:
            return self._function()
        if tok.kind is TokenKind.NAME:
            return self._comparison()
        raise _unsupported(self.text, f"unexpected {tok.text or tok.kind.value!r} at position {tok.pos}")

    def _function(self) -> StringFunction:
        name_tok = self._advance()
        try:
            name = StringFunctionName(name_tok.text.lower())
        except ValueError:
            raise _unsupported(
                self.text, f"unknown function {name_tok.text!r} at position {name_tok.pos}"
            ) from None
        self._expect(TokenKind.LPAREN, "'('")
        if name in _FIELD_FIRST:
            field = self._expect(TokenKind.NAME, "a property name").text
            self._expect(TokenKind.COMMA, "','")
            argument = self._expect(TokenKind.STRING, "a quoted string").value
        else:
            argument = self._expect(TokenKind.STRING, "a quoted string").value
            self._expect(TokenKind.COMMA, "','")
            field = self._expect(TokenKind.NAME, "a property name").text
        self._expect(TokenKind.RPAREN, "')'")
        return StringFunction(name, field, argument)

    def _comparison(self) -> Comparison:
        field_tok = self._advance()
        op_tok = self.current
        try:
            operator = ComparisonOperator(op_tok.text.lower()) if op_tok.kind is TokenKind.NAME else None
        except ValueError:
            operator = None
        if operator is None:
            raise _unsupported(
                self.text,
                f"expected a comparison operator after {field_tok.text!r} at position {op_tok.pos}",
            )
        self._advance()
        return Comparison(field_tok.text, operator, self._literal())

    def _literal(self) -> Any:
        tok = self.current
        if tok.kind in (TokenKind.STRING, TokenKind.NUMBER):
            self._advance()
            return tok.value
        if tok.kind is TokenKind.NAME and tok.text.lower() in _LITERAL_KEYWORDS:
            self._advance()
            return _LITERAL_KEYWORDS[tok.text.lower()]
        found = tok.text or tok.kind.value
        raise _unsupported(self.text, f"expected a literal at position {tok.pos}, found {found!r}")


def parse_filter(raw: Optional[str]) -> Optional[FilterNode]:
    """
    Parse an OData ``$filter`` expression.

    Parameters
    ----------
    raw : str
        The raw (already URL-decoded) expression

    Returns
    -------
    FilterNode or None
        The filter tree; None for a blank expression

    Raises
    ------
    ODataValidationError
        InvalidFilter for malformed input; no partial tree is returned

    Examples
    --------
    >>> parse_filter("price gt 100")
    Comparison(field='price', operator=<ComparisonOperator.GT: 'gt'>, value=100)
    """
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    validate_balance(text)
    node = _Parser(text, tokenize(text)).parse()
    logger.debug("parsed $filter %r -> %r", text, node)
    return node
