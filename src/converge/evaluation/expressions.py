"""Expression language: parse `${...}` interpolations into a small AST."""

from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple, Union
from ..utils.errors import ParseError


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Reference:
    """Dotted name pointing at a resource, data lookup, module or variable."""
    parts: Tuple[str, ...]

    @property
    def text(self) -> str:
        return ".".join(self.parts)


@dataclass(frozen=True)
class Index:
    target: "Expression"
    key: "Expression"


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Expression", ...]


@dataclass(frozen=True)
class ListExpr:
    items: Tuple["Expression", ...]


@dataclass(frozen=True)
class ObjectExpr:
    items: Tuple[Tuple[str, "Expression"], ...]


@dataclass(frozen=True)
class Template:
    """String with interpolations; parts are str or Expression."""
    parts: Tuple[Union[str, "Expression"], ...]


Expression = Union[Literal, Reference, Index, Call, ListExpr, ObjectExpr, Template]

_KEYWORDS = {"true": True, "false": False, "null": None}


def parse_value(value: Any, where: str = "") -> Expression:
    """
    Parse a declared attribute value (YAML scalar, mapping or list).

    Strings are templates; mappings and lists are parsed leaf by leaf.

    Raises:
        ParseError: If an interpolation is malformed
    """
    if isinstance(value, dict):
        return ObjectExpr(tuple((str(k), parse_value(v, where)) for k, v in value.items()))
    if isinstance(value, list):
        return ListExpr(tuple(parse_value(v, where) for v in value))
    if isinstance(value, str):
        return parse_template(value, where)
    return Literal(value)


def parse_template(text: str, where: str = "") -> Expression:
    """
    Parse a string that may contain `${...}` interpolations.

    A string made of exactly one interpolation yields that expression so the
    raw (non-string) value survives. `$${` is an escaped literal `${`.
    """
    parts: List[Union[str, Expression]] = []
    buf: List[str] = []
    pos = 0
    while pos < len(text):
        if text.startswith("$${", pos):
            buf.append("${")
            pos += 3
        elif text.startswith("${", pos):
            if buf:
                parts.append("".join(buf))
                buf = []
            parser = _Parser(text, pos + 2, where)
            expr = parser.parse_expression()
            parser.expect("}")
            parts.append(expr)
            pos = parser.pos
        else:
            buf.append(text[pos])
            pos += 1
    if buf:
        parts.append("".join(buf))

    if not parts:
        return Literal("")
    if len(parts) == 1:
        return Literal(parts[0]) if isinstance(parts[0], str) else parts[0]
    return Template(tuple(parts))


def parse_expression(text: str, where: str = "") -> Expression:
    """Parse a bare expression (no surrounding `${}`)."""
    parser = _Parser(text, 0, where)
    expr = parser.parse_expression()
    parser.skip_ws()
    if parser.pos != len(text):
        parser.fail(f"unexpected trailing input '{text[parser.pos:]}'")
    return expr


def iter_references(expr: Expression) -> Iterator[Reference]:
    """Yield every Reference in an expression tree, left to right."""
    if isinstance(expr, Reference):
        yield expr
    elif isinstance(expr, Index):
        yield from iter_references(expr.target)
        yield from iter_references(expr.key)
    elif isinstance(expr, Call):
        for arg in expr.args:
            yield from iter_references(arg)
    elif isinstance(expr, ListExpr):
        for item in expr.items:
            yield from iter_references(item)
    elif isinstance(expr, ObjectExpr):
        for _, item in expr.items:
            yield from iter_references(item)
    elif isinstance(expr, Template):
        for part in expr.parts:
            if not isinstance(part, str):
                yield from iter_references(part)


class _Parser:
    """Recursive-descent parser over a string, starting at ``pos``."""

    def __init__(self, text: str, pos: int, where: str):
        self.text = text
        self.pos = pos
        self.where = where

    def fail(self, message: str) -> None:
        location = f" in {self.where}" if self.where else ""
        raise ParseError(f"Invalid expression{location} at column {self.pos + 1}: {message} (in '{self.text}')")

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def peek(self) -> Optional[str]:
        self.skip_ws()
        if self.pos >= len(self.text):
            return None
        return self.text[self.pos]

    def expect(self, char: str) -> None:
        if self.peek() != char:
            found = self.peek() or "end of input"
            self.fail(f"expected '{char}', found '{found}'")
        self.pos += 1

    def parse_expression(self) -> Expression:
        expr = self._parse_primary()
        while self.peek() == "[":
            self.pos += 1
            key = self.parse_expression()
            self.expect("]")
            expr = Index(expr, key)
        return expr

    def _parse_primary(self) -> Expression:
        char = self.peek()
        if char is None:
            self.fail("unexpected end of input")
        if char == '"':
            return Literal(self._parse_string())
        if char.isdigit() or (char == "-" and self.text[self.pos + 1:self.pos + 2].isdigit()):
            return Literal(self._parse_number())
        if char == "[":
            self.pos += 1
            return ListExpr(tuple(self._parse_sequence("]")))
        if char == "{":
            self.pos += 1
            return self._parse_object()
        if char.isalpha() or char == "_":
            return self._parse_name()
        self.fail(f"unexpected character '{char}'")

    def _parse_sequence(self, closing: str) -> List[Expression]:
        items = []
        while self.peek() != closing:
            items.append(self.parse_expression())
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != closing:
                self.fail(f"expected ',' or '{closing}'")
        self.pos += 1
        return items

    def _parse_object(self) -> ObjectExpr:
        items = []
        while self.peek() != "}":
            if self.peek() == '"':
                key = self._parse_string()
            else:
                key = self._parse_identifier()
            if self.peek() not in ("=", ":"):
                self.fail("expected '=' or ':' after object key")
            self.pos += 1
            items.append((key, self.parse_expression()))
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != "}":
                self.fail("expected ',' or '}'")
        self.pos += 1
        return ObjectExpr(tuple(items))

    def _parse_name(self) -> Expression:
        name = self._parse_identifier()
        if name in _KEYWORDS:
            return Literal(_KEYWORDS[name])
        if self.peek() == "(":
            self.pos += 1
            return Call(name, tuple(self._parse_sequence(")")))
        parts = [name]
        while self.peek() == ".":
            self.pos += 1
            parts.append(self._parse_identifier())
        return Reference(tuple(parts))

    def _parse_identifier(self) -> str:
        self.skip_ws()
        start = self.pos
        while self.pos < len(self.text) and (self.text[self.pos].isalnum() or self.text[self.pos] in "_-"):
            self.pos += 1
        if start == self.pos:
            self.fail("expected identifier")
        return self.text[start:self.pos]

    def _parse_number(self) -> Union[int, float]:
        self.skip_ws()
        start = self.pos
        if self.text[self.pos] == "-":
            self.pos += 1
        while self.pos < len(self.text) and (self.text[self.pos].isdigit() or self.text[self.pos] == "."):
            self.pos += 1
        raw = self.text[start:self.pos]
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            self.fail(f"invalid number '{raw}'")

    def _parse_string(self) -> str:
        self.pos += 1
        out = []
        escapes = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                nxt = self.text[self.pos + 1]
                out.append(escapes.get(nxt, "\\" + nxt))
                self.pos += 2
            elif char == '"':
                self.pos += 1
                return "".join(out)
            else:
                out.append(char)
                self.pos += 1
        self.fail("unterminated string literal")
