"""Record-store predicate language: parsing and evaluation, no I/O.

Grammar (a subset of the hosted store's filter syntax)::

    expr       := and_expr ( "||" and_expr )*
    and_expr   := term ( "&&" term )*
    term       := "(" expr ")" | operand OP operand
    operand    := path | "string" | 'string' | number | true | false | null
    OP         := = != ~ !~ > >= < <=

``~`` is a case-insensitive "contains". Paths use dots to walk relations
(``model.brand.name``); resolving them is delegated to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Union

from dealer_mcp.errors import RecordStoreError

OPERATORS = ("!=", ">=", "<=", "!~", "=", "~", ">", "<")


class FilterSyntaxError(RecordStoreError):
    """The filter string could not be parsed."""

    def __init__(self, message: str, *, expression: str, position: int) -> None:
        super().__init__(
            f"Invalid filter at position {position}: {message}",
            code="INVALID_FILTER",
            status=400,
            details={"filter": expression, "position": position},
        )


@dataclass(frozen=True)
class Token:
    kind: str  # ident, string, number, op, and, or, lparen, rparen, keyword, eof
    value: Any
    position: int


@dataclass(frozen=True)
class Field:
    path: str


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Comparison:
    left: Field | Literal
    op: str
    right: Field | Literal


@dataclass(frozen=True)
class AllOf:
    items: tuple[Node, ...]


@dataclass(frozen=True)
class AnyOf:
    items: tuple[Node, ...]


Node = Union[Comparison, AllOf, AnyOf]

_KEYWORDS = {"true": True, "false": False, "null": None}


# ── Tokenizer ───────────────────────────────────────────────────────


def tokenize(expression: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0
    n = len(expression)
    while i < n:
        ch = expression[i]
        if ch.isspace():
            i += 1
            continue
        if expression.startswith("&&", i):
            tokens.append(Token("and", "&&", i))
            i += 2
            continue
        if expression.startswith("||", i):
            tokens.append(Token("or", "||", i))
            i += 2
            continue
        if ch == "(":
            tokens.append(Token("lparen", ch, i))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token("rparen", ch, i))
            i += 1
            continue
        op = next((o for o in OPERATORS if expression.startswith(o, i)), None)
        if op is not None:
            tokens.append(Token("op", op, i))
            i += len(op)
            continue
        if ch in {'"', "'"}:
            start = i
            value, i = _read_string(expression, i)
            tokens.append(Token("string", value, start))
            continue
        if ch.isdigit() or (ch == "-" and i + 1 < n and expression[i + 1].isdigit()):
            start = i
            i += 1
            while i < n and (expression[i].isdigit() or expression[i] == "."):
                i += 1
            raw = expression[start:i]
            try:
                number: int | float = int(raw) if "." not in raw else float(raw)
            except ValueError as exc:
                raise FilterSyntaxError(
                    f"bad number {raw!r}", expression=expression, position=start
                ) from exc
            tokens.append(Token("number", number, start))
            continue
        if ch.isalpha() or ch in {"_", "@"}:
            start = i
            while i < n and (expression[i].isalnum() or expression[i] in {"_", ".", "@"}):
                i += 1
            word = expression[start:i]
            if word in _KEYWORDS:
                tokens.append(Token("keyword", _KEYWORDS[word], start))
            else:
                tokens.append(Token("ident", word, start))
            continue
        raise FilterSyntaxError(
            f"unexpected character {ch!r}", expression=expression, position=i
        )
    tokens.append(Token("eof", None, n))
    return tokens


def _read_string(expression: str, start: int) -> tuple[str, int]:
    quote = expression[start]
    i = start + 1
    chars: list[str] = []
    while i < len(expression):
        ch = expression[i]
        if ch == "\\" and i + 1 < len(expression):
            chars.append(expression[i + 1])
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise FilterSyntaxError("unterminated string", expression=expression, position=start)


# ── Parser ──────────────────────────────────────────────────────────


class _Parser:
    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = tokenize(expression)
        self.pos = 0

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _next(self) -> Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _error(self, message: str, token: Token) -> FilterSyntaxError:
        return FilterSyntaxError(message, expression=self.expression, position=token.position)

    def parse(self) -> Node:
        node = self._expr()
        tok = self._peek()
        if tok.kind != "eof":
            raise self._error(f"unexpected {tok.value!r}", tok)
        return node

    def _expr(self) -> Node:
        items = [self._and_expr()]
        while self._peek().kind == "or":
            self._next()
            items.append(self._and_expr())
        return items[0] if len(items) == 1 else AnyOf(tuple(items))

    def _and_expr(self) -> Node:
        items = [self._term()]
        while self._peek().kind == "and":
            self._next()
            items.append(self._term())
        return items[0] if len(items) == 1 else AllOf(tuple(items))

    def _term(self) -> Node:
        tok = self._peek()
        if tok.kind == "lparen":
            self._next()
            node = self._expr()
            closing = self._next()
            if closing.kind != "rparen":
                raise self._error("expected ')'", closing)
            return node
        left = self._operand()
        op = self._next()
        if op.kind != "op":
            raise self._error("expected comparison operator", op)
        right = self._operand()
        return Comparison(left, op.value, right)

    def _operand(self) -> Field | Literal:
        tok = self._next()
        if tok.kind == "ident":
            return Field(tok.value)
        if tok.kind in {"string", "number", "keyword"}:
            return Literal(tok.value)
        raise self._error("expected field or value", tok)


def parse(expression: str) -> Node | None:
    """Parse a filter string.  Blank input means "match everything" (``None``)."""
    if not expression or not expression.strip():
        return None
    return _Parser(expression).parse()


# ── Evaluation ──────────────────────────────────────────────────────

Resolver = Callable[[dict[str, Any], str], Any]


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return (left in (None, "")) and (right in (None, ""))
    if isinstance(left, bool) or isinstance(right, bool):
        return bool(left) == bool(right) if isinstance(left, bool) and isinstance(right, bool) else False
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None and not (
        isinstance(left, str) and isinstance(right, str)
    ):
        return left_num == right_num
    return str(left) == str(right)


def _ordered(left: Any, right: Any, op: str) -> bool:
    if left is None or right is None:
        return False
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        a: Any
        b: Any
        a, b = left_num, right_num
    else:
        a, b = str(left), str(right)
    if op == ">":
        return a > b
    if op == ">=":
        return a >= b
    if op == "<":
        return a < b
    return a <= b


def _contains(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(right).lower() in str(left).lower()


def _compare_scalar(left: Any, op: str, right: Any) -> bool:
    if op == "=":
        return _equals(left, right)
    if op == "!=":
        return not _equals(left, right)
    if op == "~":
        return _contains(left, right)
    if op == "!~":
        return not _contains(left, right)
    return _ordered(left, right, op)


def _value(operand: Field | Literal, record: dict[str, Any], resolve: Resolver) -> Any:
    if isinstance(operand, Field):
        return resolve(record, operand.path)
    return operand.value


def evaluate(node: Node | None, record: dict[str, Any], resolve: Resolver) -> bool:
    """Evaluate a parsed filter against one record."""
    if node is None:
        return True
    if isinstance(node, AllOf):
        return all(evaluate(item, record, resolve) for item in node.items)
    if isinstance(node, AnyOf):
        return any(evaluate(item, record, resolve) for item in node.items)

    left = _value(node.left, record, resolve)
    right = _value(node.right, record, resolve)
    # Multi-value fields match when any element matches.
    if isinstance(left, list):
        if node.op in {"!=", "!~"}:
            positive = "=" if node.op == "!=" else "~"
            return not any(_compare_scalar(item, positive, right) for item in left)
        return any(_compare_scalar(item, node.op, right) for item in left)
    return _compare_scalar(left, node.op, right)


def compile_filter(expression: str | None) -> Callable[[dict[str, Any], Resolver], bool]:
    """Parse once and return a predicate ``(record, resolve) -> bool``."""
    node = parse(expression or "")

    def _predicate(record: dict[str, Any], resolve: Resolver) -> bool:
        return evaluate(node, record, resolve)

    return _predicate
