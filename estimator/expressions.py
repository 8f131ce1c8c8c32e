"""
Whitelisted arithmetic expressions for calculator formulas.

Formulas in calculator definitions are configuration, but they are still
never executed as Python. A formula is tokenized, parsed into a small AST and
evaluated against a plain mapping of names to values. The only things a
formula can reach are:

    - numbers, quoted strings, ``true`` / ``false``
    - names present in the evaluation context
    - ``+ - * /`` and parentheses
    - comparisons ``< <= > >= == !=`` and ``and`` / ``or`` / ``not``
    - the functions in FUNCTIONS

Parsing happens once per definition (see ``compile_expression``), so syntax
errors and unknown functions surface at registration time; the set of names a
formula reads is available as ``Expression.names`` for ordering checks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from .errors import ExpressionError
from .units import round_half_up


Number = Union[int, float]


class UndefinedNameError(ExpressionError):
    """A formula referenced a name that is not in the evaluation context."""

    def __init__(self, name: str, expression: str = ""):
        super().__init__(f"undefined name '{name}'", expression)
        self.name = name


def _fn_round(value: Number, digits: Number = 0) -> float:
    return round_half_up(value, int(digits))


# name -> (callable, min_args, max_args); max_args None means variadic
FUNCTIONS: Dict[str, Tuple[Callable[..., Any], int, Optional[int]]] = {
    "round": (_fn_round, 1, 2),
    "max": (max, 1, None),
    "min": (min, 1, None),
    "ceil": (math.ceil, 1, 1),
    "floor": (math.floor, 1, 1),
    "abs": (abs, 1, 1),
}

KEYWORDS = {"and", "or", "not", "true", "false"}
COMPARISONS = {"<", "<=", ">", ">=", "==", "!="}


# ---------------------------------------------------------------- tokenizer
@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER, STRING, NAME, OP, EOF
    value: Any
    pos: int


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if ch.isspace():
            i += 1
            continue
        if ch.isdigit() or (ch == "." and i + 1 < n and source[i + 1].isdigit()):
            start = i
            while i < n and (source[i].isdigit() or source[i] == "."):
                i += 1
            if i < n and source[i] in "eE":
                j = i + 1
                if j < n and source[j] in "+-":
                    j += 1
                if j < n and source[j].isdigit():
                    i = j
                    while i < n and source[i].isdigit():
                        i += 1
            text = source[start:i]
            try:
                tokens.append(Token("NUMBER", float(text), start))
            except ValueError:
                raise ExpressionError(f"malformed number '{text}'", source, start)
            continue
        if ch.isalpha() or ch == "_":
            start = i
            while i < n and (source[i].isalnum() or source[i] == "_"):
                i += 1
            tokens.append(Token("NAME", source[start:i], start))
            continue
        if ch in "'\"":
            start = i
            end = source.find(ch, i + 1)
            if end < 0:
                raise ExpressionError("unterminated string", source, start)
            tokens.append(Token("STRING", source[i + 1:end], start))
            i = end + 1
            continue
        two = source[i:i + 2]
        if two in ("<=", ">=", "==", "!="):
            tokens.append(Token("OP", two, i))
            i += 2
            continue
        if ch in "+-*/(),<>":
            tokens.append(Token("OP", ch, i))
            i += 1
            continue
        raise ExpressionError(f"unexpected character '{ch}'", source, i)
    tokens.append(Token("EOF", None, n))
    return tokens


# --------------------------------------------------------------------- AST
class Node:
    def evaluate(self, context: Mapping[str, Any], source: str) -> Any:
        raise NotImplementedError

    def names(self) -> FrozenSet[str]:
        return frozenset()


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, context, source):
        return self.value


@dataclass(frozen=True)
class Name(Node):
    name: str

    def evaluate(self, context, source):
        if self.name not in context:
            raise UndefinedNameError(self.name, source)
        return context[self.name]

    def names(self):
        return frozenset([self.name])


def _require_number(value: Any, op: str, source: str) -> Number:
    if isinstance(value, (int, float)):
        return value
    raise ExpressionError(f"operator '{op}' expects numbers, got {type(value).__name__}", source)


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node

    def evaluate(self, context, source):
        value = self.operand.evaluate(context, source)
        if self.op == "not":
            return not value
        value = _require_number(value, self.op, source)
        return -value if self.op == "-" else +value

    def names(self):
        return self.operand.names()


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, context, source):
        if self.op == "and":
            return bool(self.left.evaluate(context, source)) and bool(self.right.evaluate(context, source))
        if self.op == "or":
            return bool(self.left.evaluate(context, source)) or bool(self.right.evaluate(context, source))

        lhs = self.left.evaluate(context, source)
        rhs = self.right.evaluate(context, source)
        if self.op == "==":
            return lhs == rhs
        if self.op == "!=":
            return lhs != rhs

        lhs = _require_number(lhs, self.op, source)
        rhs = _require_number(rhs, self.op, source)
        if self.op == "+":
            return lhs + rhs
        if self.op == "-":
            return lhs - rhs
        if self.op == "*":
            return lhs * rhs
        if self.op == "/":
            if rhs == 0:
                raise ExpressionError("division by zero", source)
            return lhs / rhs
        if self.op == "<":
            return lhs < rhs
        if self.op == "<=":
            return lhs <= rhs
        if self.op == ">":
            return lhs > rhs
        if self.op == ">=":
            return lhs >= rhs
        raise ExpressionError(f"unknown operator '{self.op}'", source)

    def names(self):
        return self.left.names() | self.right.names()


@dataclass(frozen=True)
class Call(Node):
    func: str
    args: Tuple[Node, ...]

    def evaluate(self, context, source):
        fn = FUNCTIONS[self.func][0]
        values = [_require_number(a.evaluate(context, source), self.func, source) for a in self.args]
        return fn(*values)

    def names(self):
        result: FrozenSet[str] = frozenset()
        for arg in self.args:
            result = result | arg.names()
        return result


# ------------------------------------------------------------------ parser
class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _is_op(self, *ops: str) -> bool:
        return self.current.kind == "OP" and self.current.value in ops

    def _is_keyword(self, word: str) -> bool:
        return self.current.kind == "NAME" and self.current.value == word

    def _expect_op(self, op: str) -> None:
        if not self._is_op(op):
            raise ExpressionError(f"expected '{op}'", self.source, self.current.pos)
        self._advance()

    def parse(self) -> Node:
        if self.current.kind == "EOF":
            raise ExpressionError("empty expression", self.source, 0)
        node = self._or()
        if self.current.kind != "EOF":
            raise ExpressionError(f"unexpected token '{self.current.value}'", self.source, self.current.pos)
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._is_keyword("or"):
            self._advance()
            node = Binary("or", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._is_keyword("and"):
            self._advance()
            node = Binary("and", node, self._not())
        return node

    def _not(self) -> Node:
        if self._is_keyword("not"):
            self._advance()
            return Unary("not", self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        node = self._additive()
        if self.current.kind == "OP" and self.current.value in COMPARISONS:
            op = self._advance().value
            node = Binary(op, node, self._additive())
            if self.current.kind == "OP" and self.current.value in COMPARISONS:
                raise ExpressionError("chained comparisons are not supported", self.source, self.current.pos)
        return node

    def _additive(self) -> Node:
        node = self._term()
        while self._is_op("+", "-"):
            op = self._advance().value
            node = Binary(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._is_op("*", "/"):
            op = self._advance().value
            node = Binary(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._is_op("-", "+"):
            op = self._advance().value
            return Unary(op, self._unary())
        return self._primary()

    def _primary(self) -> Node:
        token = self.current
        if token.kind == "NUMBER" or token.kind == "STRING":
            self._advance()
            return Literal(token.value)
        if token.kind == "NAME":
            self._advance()
            if token.value in ("true", "false"):
                return Literal(token.value == "true")
            if token.value in KEYWORDS:
                raise ExpressionError(f"unexpected keyword '{token.value}'", self.source, token.pos)
            if self._is_op("("):
                return self._call(token)
            return Name(token.value)
        if self._is_op("("):
            self._advance()
            node = self._or()
            self._expect_op(")")
            return node
        if token.kind == "EOF":
            raise ExpressionError("unexpected end of expression", self.source, token.pos)
        raise ExpressionError(f"unexpected token '{token.value}'", self.source, token.pos)

    def _call(self, name_token: Token) -> Node:
        func = name_token.value
        if func not in FUNCTIONS:
            raise ExpressionError(f"unknown function '{func}'", self.source, name_token.pos)
        self._expect_op("(")
        args: List[Node] = []
        if not self._is_op(")"):
            args.append(self._or())
            while self._is_op(","):
                self._advance()
                args.append(self._or())
        self._expect_op(")")

        _, min_args, max_args = FUNCTIONS[func]
        if len(args) < min_args or (max_args is not None and len(args) > max_args):
            raise ExpressionError(f"wrong number of arguments to {func}()", self.source, name_token.pos)
        return Call(func, tuple(args))


# ------------------------------------------------------------------ public
@dataclass(frozen=True)
class Expression:
    """A parsed formula. Immutable and safe to share between evaluations."""

    source: str
    root: Node

    @property
    def names(self) -> FrozenSet[str]:
        return self.root.names()

    def evaluate(self, context: Mapping[str, Any]) -> Any:
        return self.root.evaluate(context, self.source)

    def evaluate_number(self, context: Mapping[str, Any]) -> float:
        """Evaluate and insist on a finite number (booleans count as 0/1)."""
        value = self.evaluate(context)
        if isinstance(value, bool):
            return float(value)
        if not isinstance(value, (int, float)):
            raise ExpressionError(f"expected a number, got {type(value).__name__}", self.source)
        if not math.isfinite(value):
            raise ExpressionError("result is not a finite number", self.source)
        return float(value)


@lru_cache(maxsize=1024)
def _parse_cached(source: str) -> Expression:
    return Expression(source, _Parser(source).parse())


def compile_expression(source: Union[str, Number]) -> Expression:
    """
    Parse a formula. Plain numbers are accepted and become constants.

    Raises:
        ExpressionError: on syntax errors, unknown functions or wrong arity
    """
    if isinstance(source, bool):
        return Expression(str(source).lower(), Literal(source))
    if isinstance(source, (int, float)):
        return Expression(repr(source), Literal(float(source)))
    if not isinstance(source, str):
        raise ExpressionError(f"expression must be a string or number, not {type(source).__name__}")
    return _parse_cached(source.strip())

