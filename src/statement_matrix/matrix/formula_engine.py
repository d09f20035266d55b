"""Formula engine for calc rows.

Grammar (lowest to highest precedence):

    expression     = or_expr
    or_expr        = and_expr (("||" | OR) and_expr)*
    and_expr       = equality (("&&" | AND) equality)*
    equality       = comparison (("==" | "=" | "!=" | "<>") comparison)*
    comparison     = additive ((">" | "<" | ">=" | "<=") additive)*
    additive       = multiplicative (("+" | "-") multiplicative)*
    multiplicative = power (("*" | "/" | "%") power)*
    power          = unary ("^" power)?
    unary          = ("-" | "+" | "!" | NOT) unary | primary
    primary        = number | string | "[" row_code "]" | identifier
                   | identifier "(" [expression ("," expression)*] ")"
                   | "(" expression ")"

``[code]`` reads that row's value in the column being evaluated.  Bare
identifiers other than TRUE/FALSE evaluate to 0.

Built-ins: VALUE(code[, measure[, period]]), IF(cond, a, b), ABS(x),
ROUND(x, d), SUM/AVG/MIN/MAX/COUNT(args...), and
SUMCHILDREN/AVGCHILDREN/COUNTCHILDREN(code).

Calc rows are evaluated by bounded fixpoint iteration: every calc row, every
column, once per pass, for at most ``MAX_PASSES`` passes, stopping as soon as
a pass changes nothing.  Coercion is total; anything non-numeric becomes NaN
and is stored as "no value".
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from statement_matrix.matrix.models import (
    ColumnKey,
    RowNode,
    coerce_number,
    to_cell_value,
)

logger = logging.getLogger(__name__)

MAX_PASSES = 6


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FormulaError(Exception):
    """Base class for formula failures."""


class FormulaSyntaxError(FormulaError):
    """Raised by the lexer/parser for text that is not a valid formula."""


# ---------------------------------------------------------------------------
# Lexer
# ---------------------------------------------------------------------------


class TokenType(Enum):
    NUMBER = "NUMBER"
    STRING = "STRING"
    REF = "REF"
    IDENTIFIER = "IDENTIFIER"

    PLUS = "+"
    MINUS = "-"
    STAR = "*"
    SLASH = "/"
    PERCENT = "%"
    CARET = "^"

    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="

    AND = "AND"
    OR = "OR"
    NOT = "NOT"

    LPAREN = "("
    RPAREN = ")"
    COMMA = ","

    EOF = "EOF"


@dataclass
class Token:
    type: TokenType
    value: Any
    position: int


_TWO_CHAR_OPS = {
    "&&": TokenType.AND,
    "||": TokenType.OR,
    "==": TokenType.EQ,
    "!=": TokenType.NE,
    "<>": TokenType.NE,
    ">=": TokenType.GE,
    "<=": TokenType.LE,
}

_ONE_CHAR_OPS = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "%": TokenType.PERCENT,
    "^": TokenType.CARET,
    "=": TokenType.EQ,
    ">": TokenType.GT,
    "<": TokenType.LT,
    "!": TokenType.NOT,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
}

_KEYWORDS = {
    "AND": TokenType.AND,
    "OR": TokenType.OR,
    "NOT": TokenType.NOT,
}


class Lexer:
    """Tokenizer for formula text."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.length = len(text)

    def _read_string(self) -> str:
        quote = self.text[self.pos]
        start = self.pos
        self.pos += 1
        chars: list[str] = []
        while self.pos < self.length:
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < self.length:
                chars.append(self.text[self.pos + 1])
                self.pos += 2
            elif char == quote:
                self.pos += 1
                return "".join(chars)
            else:
                chars.append(char)
                self.pos += 1
        raise FormulaSyntaxError(f"Unterminated string starting at position {start}")

    def _read_ref(self) -> str:
        start = self.pos
        end = self.text.find("]", self.pos + 1)
        if end < 0:
            raise FormulaSyntaxError(f"Unterminated row reference at position {start}")
        code = self.text[self.pos + 1:end].strip()
        if not code:
            raise FormulaSyntaxError(f"Empty row reference at position {start}")
        self.pos = end + 1
        return code

    def _read_number(self) -> float:
        start = self.pos
        while self.pos < self.length and (self.text[self.pos].isdigit() or self.text[self.pos] == "."):
            self.pos += 1
        # Exponent, e.g. 1e6 or 2.5E-3
        if self.pos < self.length and self.text[self.pos] in "eE":
            look = self.pos + 1
            if look < self.length and self.text[look] in "+-":
                look += 1
            if look < self.length and self.text[look].isdigit():
                self.pos = look
                while self.pos < self.length and self.text[self.pos].isdigit():
                    self.pos += 1
        literal = self.text[start:self.pos]
        try:
            return float(literal)
        except ValueError:
            raise FormulaSyntaxError(f"Invalid number '{literal}' at position {start}") from None

    def _read_identifier(self) -> str:
        start = self.pos
        while self.pos < self.length and (self.text[self.pos].isalnum() or self.text[self.pos] in "_."):
            self.pos += 1
        return self.text[start:self.pos]

    def next_token(self) -> Token:
        while self.pos < self.length and self.text[self.pos].isspace():
            self.pos += 1
        if self.pos >= self.length:
            return Token(TokenType.EOF, None, self.pos)

        start = self.pos
        char = self.text[self.pos]

        if char in ('"', "'"):
            return Token(TokenType.STRING, self._read_string(), start)
        if char == "[":
            return Token(TokenType.REF, self._read_ref(), start)
        if char.isdigit() or (char == "." and self.pos + 1 < self.length and self.text[self.pos + 1].isdigit()):
            return Token(TokenType.NUMBER, self._read_number(), start)

        two = self.text[self.pos:self.pos + 2]
        if two in _TWO_CHAR_OPS:
            self.pos += 2
            return Token(_TWO_CHAR_OPS[two], two, start)
        if char in _ONE_CHAR_OPS:
            self.pos += 1
            return Token(_ONE_CHAR_OPS[char], char, start)

        if char.isalpha() or char == "_":
            name = self._read_identifier()
            return Token(_KEYWORDS.get(name.upper(), TokenType.IDENTIFIER), name, start)

        raise FormulaSyntaxError(f"Unexpected character '{char}' at position {start}")

    def tokenize(self) -> list[Token]:
        tokens = []
        while True:
            token = self.next_token()
            tokens.append(token)
            if token.type == TokenType.EOF:
                return tokens


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


@dataclass
class Node:
    """Base class for formula AST nodes."""


@dataclass
class NumberLiteral(Node):
    value: float


@dataclass
class StringLiteral(Node):
    value: str


@dataclass
class RowRef(Node):
    code: str


@dataclass
class Identifier(Node):
    name: str


@dataclass
class UnaryOp(Node):
    operator: str
    operand: Node


@dataclass
class BinaryOp(Node):
    left: Node
    operator: str
    right: Node


@dataclass
class FunctionCall(Node):
    name: str  # upper-cased
    args: list[Node] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class Parser:
    """Recursive descent parser producing an AST."""

    _EQUALITY = {TokenType.EQ: "==", TokenType.NE: "!="}
    _COMPARISON = {TokenType.GT: ">", TokenType.LT: "<", TokenType.GE: ">=", TokenType.LE: "<="}
    _ADDITIVE = {TokenType.PLUS: "+", TokenType.MINUS: "-"}
    _MULTIPLICATIVE = {TokenType.STAR: "*", TokenType.SLASH: "/", TokenType.PERCENT: "%"}

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def _current(self) -> Token:
        return self.tokens[min(self.pos, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self._current()
        self.pos += 1
        return token

    def _expect(self, token_type: TokenType) -> Token:
        token = self._current()
        if token.type != token_type:
            raise FormulaSyntaxError(
                f"Expected {token_type.value}, got {token.type.value} at position {token.position}"
            )
        return self._advance()

    def parse(self) -> Node:
        if self._current().type == TokenType.EOF:
            raise FormulaSyntaxError("Empty formula")
        expr = self._parse_or()
        if self._current().type != TokenType.EOF:
            token = self._current()
            raise FormulaSyntaxError(f"Unexpected token {token.type.value} at position {token.position}")
        return expr

    def _parse_binary(self, next_level, operators: dict[TokenType, str]) -> Node:
        left = next_level()
        while self._current().type in operators:
            op = operators[self._advance().type]
            right = next_level()
            left = BinaryOp(left, op, right)
        return left

    def _parse_or(self) -> Node:
        return self._parse_binary(self._parse_and, {TokenType.OR: "OR"})

    def _parse_and(self) -> Node:
        return self._parse_binary(self._parse_equality, {TokenType.AND: "AND"})

    def _parse_equality(self) -> Node:
        return self._parse_binary(self._parse_comparison, self._EQUALITY)

    def _parse_comparison(self) -> Node:
        return self._parse_binary(self._parse_additive, self._COMPARISON)

    def _parse_additive(self) -> Node:
        return self._parse_binary(self._parse_multiplicative, self._ADDITIVE)

    def _parse_multiplicative(self) -> Node:
        return self._parse_binary(self._parse_power, self._MULTIPLICATIVE)

    def _parse_power(self) -> Node:
        base = self._parse_unary()
        if self._current().type == TokenType.CARET:
            self._advance()
            return BinaryOp(base, "^", self._parse_power())
        return base

    def _parse_unary(self) -> Node:
        token = self._current()
        if token.type in (TokenType.MINUS, TokenType.PLUS):
            self._advance()
            return UnaryOp(token.value, self._parse_unary())
        if token.type == TokenType.NOT:
            self._advance()
            return UnaryOp("NOT", self._parse_unary())
        return self._parse_primary()

    def _parse_primary(self) -> Node:
        token = self._current()
        if token.type == TokenType.NUMBER:
            self._advance()
            return NumberLiteral(token.value)
        if token.type == TokenType.STRING:
            self._advance()
            return StringLiteral(token.value)
        if token.type == TokenType.REF:
            self._advance()
            return RowRef(token.value)
        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_or()
            self._expect(TokenType.RPAREN)
            return expr
        if token.type == TokenType.IDENTIFIER:
            self._advance()
            if self._current().type == TokenType.LPAREN:
                return self._parse_call(token.value)
            return Identifier(token.value)
        raise FormulaSyntaxError(f"Unexpected token {token.type.value} at position {token.position}")

    def _parse_call(self, name: str) -> FunctionCall:
        self._expect(TokenType.LPAREN)
        args: list[Node] = []
        if self._current().type != TokenType.RPAREN:
            args.append(self._parse_or())
            while self._current().type == TokenType.COMMA:
                self._advance()
                args.append(self._parse_or())
        self._expect(TokenType.RPAREN)
        return FunctionCall(name.upper(), args)


def parse_formula(text: str) -> Node:
    """Tokenize and parse *text*; raises ``FormulaSyntaxError`` on bad input."""
    if not isinstance(text, str):
        raise FormulaSyntaxError("Formula must be a string")
    body = text.strip()
    if body.startswith("="):
        body = body[1:]
    try:
        return Parser(Lexer(body).tokenize()).parse()
    except RecursionError:
        raise FormulaSyntaxError("Formula is nested too deeply") from None


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return bool(value)
    number = coerce_number(value)
    return not math.isnan(number) and number != 0


def _round_half_away(x: float, digits: int) -> float:
    digits = max(-15, min(15, digits))
    factor = 10.0 ** digits
    scaled = abs(x) * factor
    if math.isinf(scaled):
        return x
    return math.copysign(math.floor(scaled + 0.5) / factor, x)


class FormulaEvaluator:
    """Evaluates parsed formulas against the cell map being built."""

    def __init__(
        self,
        nodes: dict[str, RowNode],
        values: dict[str, dict[str, float | None]],
        columns: list[ColumnKey],
        blank_as_zero: bool = False,
        failed: set[str] | None = None,
    ):
        self.nodes = nodes
        self.values = values
        self.columns = columns
        self.blank_as_zero = blank_as_zero
        self.failed = failed or set()
        self._column_keys = {c.key for c in columns}

    # -- reads --------------------------------------------------------------

    def read(self, code: str, column: ColumnKey) -> float:
        value = self.values.get(code, {}).get(column.key)
        if value is not None:
            return value
        node = self.nodes.get(code)
        if (
            self.blank_as_zero
            and node is not None
            and node.type != "blank"
            and code not in self.failed
        ):
            return 0.0
        return math.nan

    def resolve_column(self, column: ColumnKey, measure: str | None, period: str | None) -> ColumnKey | None:
        """Column addressed by VALUE()'s optional measure/period overrides."""
        leaf = measure or column.leaf
        if not period:
            return ColumnKey(column.levels, leaf)
        if column.levels:
            candidate = ColumnKey((period,) + column.levels[1:], leaf)
            if candidate.key in self._column_keys:
                return candidate
        for col in self.columns:
            if col.leaf == leaf and period in col.levels:
                return col
        return None

    # -- argument helpers ---------------------------------------------------

    def _code_arg(self, node: Node, column: ColumnKey) -> str:
        if isinstance(node, RowRef):
            return node.code
        if isinstance(node, Identifier):
            return node.name
        value = self.evaluate(node, column)
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    def _text_arg(self, args: list[Node], index: int, column: ColumnKey) -> str | None:
        if index >= len(args):
            return None
        text = self._code_arg(args[index], column).strip()
        return text or None

    def _collect(self, args: list[Node], column: ColumnKey) -> list[float]:
        """Numbers from a mix of literals, row references and row-code strings."""
        numbers: list[float] = []
        for arg in args:
            if isinstance(arg, RowRef):
                number = self.read(arg.code, column)
            elif isinstance(arg, StringLiteral) and arg.value in self.nodes:
                number = self.read(arg.value, column)
            else:
                number = coerce_number(self.evaluate(arg, column))
            if not math.isnan(number):
                numbers.append(number)
        return numbers

    def _children_values(self, args: list[Node], column: ColumnKey) -> list[float]:
        if not args:
            return []
        node = self.nodes.get(self._code_arg(args[0], column))
        if node is None:
            return []
        numbers = [self.read(child, column) for child in node.children]
        return [n for n in numbers if not math.isnan(n)]

    # -- evaluation ---------------------------------------------------------

    def evaluate(self, node: Node, column: ColumnKey) -> Any:
        if isinstance(node, NumberLiteral):
            return node.value
        if isinstance(node, StringLiteral):
            return node.value
        if isinstance(node, RowRef):
            return self.read(node.code, column)
        if isinstance(node, Identifier):
            name = node.name.upper()
            if name == "TRUE":
                return True
            if name == "FALSE":
                return False
            return 0.0
        if isinstance(node, UnaryOp):
            operand = self.evaluate(node.operand, column)
            if node.operator == "NOT":
                return not _truthy(operand)
            number = coerce_number(operand)
            return -number if node.operator == "-" else number
        if isinstance(node, BinaryOp):
            return self._binary(node, column)
        if isinstance(node, FunctionCall):
            return self._call(node, column)
        return math.nan

    def _binary(self, node: BinaryOp, column: ColumnKey) -> Any:
        op = node.operator
        if op == "AND":
            return _truthy(self.evaluate(node.left, column)) and _truthy(self.evaluate(node.right, column))
        if op == "OR":
            return _truthy(self.evaluate(node.left, column)) or _truthy(self.evaluate(node.right, column))

        left = self.evaluate(node.left, column)
        right = self.evaluate(node.right, column)

        if op in ("==", "!=", ">", "<", ">=", "<="):
            if isinstance(left, str) and isinstance(right, str):
                a, b = left, right
            else:
                a, b = coerce_number(left), coerce_number(right)
                if math.isnan(a) or math.isnan(b):
                    return op == "!="
            if op == "==":
                return a == b
            if op == "!=":
                return a != b
            if op == ">":
                return a > b
            if op == "<":
                return a < b
            if op == ">=":
                return a >= b
            return a <= b

        a, b = coerce_number(left), coerce_number(right)
        if math.isnan(a) or math.isnan(b):
            return math.nan
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            return math.nan if b == 0 else a / b
        if op == "%":
            return math.nan if b == 0 else math.fmod(a, b)
        if op == "^":
            try:
                return math.pow(a, b)
            except (OverflowError, ValueError):
                return math.nan
        return math.nan

    def _call(self, node: FunctionCall, column: ColumnKey) -> Any:
        name = node.name
        args = node.args

        if name == "IF":
            if not args:
                return math.nan
            if _truthy(self.evaluate(args[0], column)):
                return self.evaluate(args[1], column) if len(args) > 1 else True
            return self.evaluate(args[2], column) if len(args) > 2 else False

        if name == "VALUE":
            if not args:
                return math.nan
            code = self._code_arg(args[0], column)
            target = self.resolve_column(
                column,
                self._text_arg(args, 1, column),
                self._text_arg(args, 2, column),
            )
            return math.nan if target is None else self.read(code, target)

        if name == "ABS":
            return abs(coerce_number(self.evaluate(args[0], column))) if args else math.nan

        if name == "ROUND":
            if not args:
                return math.nan
            x = coerce_number(self.evaluate(args[0], column))
            digits = coerce_number(self.evaluate(args[1], column)) if len(args) > 1 else 0.0
            if math.isnan(x):
                return math.nan
            return _round_half_away(x, 0 if math.isnan(digits) else int(digits))

        if name in ("SUM", "AVG", "AVERAGE", "MIN", "MAX", "COUNT"):
            return _aggregate(name, self._collect(args, column))

        if name in ("SUMCHILDREN", "AVGCHILDREN", "COUNTCHILDREN"):
            return _aggregate(name[: -len("CHILDREN")], self._children_values(args, column))

        return math.nan


def _aggregate(name: str, numbers: list[float]) -> float:
    if name == "COUNT":
        return float(len(numbers))
    if not numbers:
        return math.nan
    if name == "SUM":
        return math.fsum(numbers)
    if name in ("AVG", "AVERAGE"):
        return math.fsum(numbers) / len(numbers)
    if name == "MIN":
        return min(numbers)
    return max(numbers)


# ---------------------------------------------------------------------------
# Fixpoint driver
# ---------------------------------------------------------------------------


@dataclass
class FormulaRun:
    """Outcome of one fixpoint evaluation."""

    passes: int = 0
    converged: bool = True
    errors: set[str] = field(default_factory=set)


def _same(a: float | None, b: float | None) -> bool:
    if a is None or b is None:
        return a is b
    return a == b


def evaluate_calc_rows(
    nodes: dict[str, RowNode],
    order: list[str],
    values: dict[str, dict[str, float | None]],
    columns: list[ColumnKey],
    blank_as_zero: bool = False,
    max_passes: int = MAX_PASSES,
) -> FormulaRun:
    """Evaluate every calc row in *order* until values stop changing.

    Each formula is parsed once.  A formula that fails to parse leaves its
    row empty for every column without affecting other calc rows.  Cyclic
    formulas are not detected; they simply stop at the pass cap.
    """
    run = FormulaRun()
    compiled: list[tuple[str, Node]] = []
    for code in order:
        node = nodes[code]
        if node.type != "calc":
            continue
        values[code] = {}
        if not node.formula:
            run.errors.add(code)
            continue
        try:
            compiled.append((code, parse_formula(node.formula)))
        except FormulaError as exc:
            logger.debug("Formula for row '%s' failed to parse: %s", code, exc)
            run.errors.add(code)

    for code in run.errors:
        values[code] = {col.key: None for col in columns}

    if not compiled:
        return run

    evaluator = FormulaEvaluator(nodes, values, columns, blank_as_zero, run.errors)
    run.converged = False
    # Only passes that changed a value are counted; the final check pass is not.
    for _ in range(max_passes):
        changed = False
        for code, ast in compiled:
            row_values = values[code]
            for col in columns:
                result = to_cell_value(coerce_number(evaluator.evaluate(ast, col)))
                if col.key not in row_values or not _same(row_values[col.key], result):
                    changed = True
                row_values[col.key] = result
        if not changed:
            run.converged = True
            break
        run.passes += 1

    if not run.converged:
        logger.debug("Calc rows did not settle after %d passes", run.passes)
    return run
