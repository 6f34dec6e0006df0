"""
Expression Evaluator - Parses and evaluates substituted pricing formulas.

Formulas reach this module after every {{placeholder}} has been replaced by
a decimal literal. The text is checked against a character whitelist, parsed
by a recursive-descent parser into a small AST and then interpreted. Nothing
here executes host-language code.

Grammar (lowest to highest precedence):
    conditional := logic_or ( "?" conditional ":" conditional )?
    logic_or    := logic_and ( "||" logic_and )*
    logic_and   := equality ( "&&" equality )*
    equality    := relational ( ("==" | "!=" | "===" | "!==") relational )*
    relational  := additive ( ("<" | ">" | "<=" | ">=") additive )*
    additive    := term ( ("+" | "-") term )*
    term        := unary ( ("*" | "/" | "%") unary )*
    unary       := ("-" | "+" | "!") unary | primary
    primary     := NUMBER | "(" conditional ")" | "[" conditional "]"
                 | FUNCTION "(" conditional ( "," conditional )* ")"

Numbers follow IEEE float semantics (1/0 is infinite, 0/0 is NaN); only the
final result has to be finite.
"""
import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .errors import InvalidExpression, EvaluationError


PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

# name → (min args, max args); None means unbounded
FUNCTION_ARITY = {
    "max": (1, None),
    "min": (1, None),
    "floor": (1, 1),
    "ceil": (1, 1),
    "round": (1, 1),
}

MAX_NESTING = 50
MAX_TOKENS = 500

_FUNCTION_NAME = re.compile(r"\b(?:Math\.)?(?:max|min|floor|ceil|round)\b")
_ALLOWED_CHARACTER = re.compile(r"[0-9+\-*/.()\[\]\s?:><=&|!%,]")

_TOKEN = re.compile(r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d*)?|\.\d+)
  | (?P<name>(?:Math\.)?[A-Za-z_]+)
  | (?P<op>===|!==|==|!=|>=|<=|&&|\|\||[-+*/%<>!?:,()\[\]])
""", re.VERBOSE)

_BINARY_LEVELS = (
    ("||",),
    ("&&",),
    ("==", "!=", "===", "!=="),
    ("<", ">", "<=", ">="),
    ("+", "-"),
    ("*", "/", "%"),
)


# ============================================================================
# Placeholders
# ============================================================================

def extract_placeholders(expression: str) -> list[str]:
    """Distinct {{name}} placeholders in order of first appearance."""
    names = []
    for match in PLACEHOLDER_PATTERN.finditer(expression or ""):
        name = match.group(1).strip()
        if name not in names:
            names.append(name)
    return names


def format_number(value: float) -> str:
    """Decimal literal without exponent notation (1e-05 → 0.00001)."""
    return format(Decimal(repr(float(value))), "f")


def substitute(expression: str, values: dict[str, float]) -> str:
    """
    Replace every {{name}} with its resolved value.

    Placeholders without a value are left in place so the whitelist check
    rejects the text.
    """
    def replace(match: re.Match) -> str:
        name = match.group(1).strip()
        if name not in values:
            return match.group(0)
        return format_number(values[name])

    return PLACEHOLDER_PATTERN.sub(replace, expression or "")


# ============================================================================
# AST
# ============================================================================

def _truthy(value: float) -> bool:
    return not (value == 0 or math.isnan(value))


def _divide(left: float, right: float) -> float:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1.0, right)
    return left / right


def _remainder(left: float, right: float) -> float:
    # Sign follows the dividend
    if right == 0 or math.isinf(left) or math.isnan(left) or math.isnan(right):
        return math.nan
    if math.isinf(right):
        return left
    return math.fmod(left, right)


def _extreme(values: tuple, pick) -> float:
    if any(math.isnan(v) for v in values):
        return math.nan
    return float(pick(values))


def _floor(value: float) -> float:
    return float(math.floor(value)) if math.isfinite(value) else value


def _ceil(value: float) -> float:
    return float(math.ceil(value)) if math.isfinite(value) else value


def _round(value: float) -> float:
    # Halves round towards +infinity: round(2.5) == 3, round(-2.5) == -2
    if not math.isfinite(value):
        return value
    whole = math.floor(value)
    return float(whole + 1 if value - whole >= 0.5 else whole)


_BINARY_OPERATIONS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _divide,
    "%": _remainder,
    "<": lambda a, b: 1.0 if a < b else 0.0,
    ">": lambda a, b: 1.0 if a > b else 0.0,
    "<=": lambda a, b: 1.0 if a <= b else 0.0,
    ">=": lambda a, b: 1.0 if a >= b else 0.0,
    "==": lambda a, b: 1.0 if a == b else 0.0,
    "===": lambda a, b: 1.0 if a == b else 0.0,
    "!=": lambda a, b: 1.0 if a != b else 0.0,
    "!==": lambda a, b: 1.0 if a != b else 0.0,
}

_FUNCTIONS = {
    "max": lambda *args: _extreme(args, max),
    "min": lambda *args: _extreme(args, min),
    "floor": _floor,
    "ceil": _ceil,
    "round": _round,
}


@dataclass(frozen=True)
class Number:
    value: float

    def evaluate(self) -> float:
        return self.value


@dataclass(frozen=True)
class Unary:
    op: str
    operand: object

    def evaluate(self) -> float:
        value = self.operand.evaluate()
        if self.op == "-":
            return -value
        if self.op == "!":
            return 0.0 if _truthy(value) else 1.0
        return value


@dataclass(frozen=True)
class Binary:
    op: str
    left: object
    right: object

    def evaluate(self) -> float:
        left = self.left.evaluate()
        # && and || yield an operand, not a boolean
        if self.op == "&&":
            return self.right.evaluate() if _truthy(left) else left
        if self.op == "||":
            return left if _truthy(left) else self.right.evaluate()
        return _BINARY_OPERATIONS[self.op](left, self.right.evaluate())


@dataclass(frozen=True)
class Conditional:
    condition: object
    then: object
    otherwise: object

    def evaluate(self) -> float:
        if _truthy(self.condition.evaluate()):
            return self.then.evaluate()
        return self.otherwise.evaluate()


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple

    def evaluate(self) -> float:
        return _FUNCTIONS[self.name](*(arg.evaluate() for arg in self.args))


# ============================================================================
# Tokenizer / parser
# ============================================================================

@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


def check_characters(expression: str):
    """Raise InvalidExpression if the text holds anything outside the whitelist."""
    # Blank out the allowed function names, keeping offsets intact
    masked = _FUNCTION_NAME.sub(lambda m: " " * len(m.group(0)), expression)
    for position, char in enumerate(masked):
        if not _ALLOWED_CHARACTER.match(char):
            raise InvalidExpression(
                f"Invalid character {char!r} at position {position} in expression: {expression}",
                expression, position
            )


def _tokenize(expression: str) -> list[_Token]:
    tokens = []
    position = 0
    while position < len(expression):
        match = _TOKEN.match(expression, position)
        if match is None:
            raise InvalidExpression(
                f"Unexpected character {expression[position]!r} at position {position}",
                expression, position
            )
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(_Token(kind, match.group(0), position))
        position = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = _tokenize(expression)
        if len(self.tokens) > MAX_TOKENS:
            raise InvalidExpression(
                f"Expression longer than {MAX_TOKENS} tokens", expression
            )
        self.index = 0
        self.depth = 0

    def parse(self):
        if not self.tokens:
            raise InvalidExpression("Empty expression", self.expression, 0)
        node = self._conditional()
        token = self._peek()
        if token is not None:
            self._fail(f"Unexpected {token.text!r}", token)
        return node

    # --- helpers ---

    def _peek(self) -> Optional[_Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise InvalidExpression(
                "Unexpected end of expression", self.expression, len(self.expression)
            )
        self.index += 1
        return token

    def _accept(self, text: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "op" and token.text == text:
            self.index += 1
            return True
        return False

    def _expect(self, text: str):
        token = self._next()
        if token.kind != "op" or token.text != text:
            self._fail(f"Expected {text!r} but found {token.text!r}", token)

    def _fail(self, message: str, token: _Token):
        raise InvalidExpression(
            f"{message} at position {token.position} in expression: {self.expression}",
            self.expression, token.position
        )

    def _enter(self):
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise InvalidExpression(
                f"Expression nested deeper than {MAX_NESTING} levels", self.expression
            )

    def _leave(self):
        self.depth -= 1

    # --- grammar ---

    def _conditional(self):
        condition = self._binary(0)
        if not self._accept("?"):
            return condition
        self._enter()
        then = self._conditional()
        self._expect(":")
        otherwise = self._conditional()
        self._leave()
        return Conditional(condition, then, otherwise)

    def _binary(self, level: int):
        if level == len(_BINARY_LEVELS):
            return self._unary()
        operators = _BINARY_LEVELS[level]
        left = self._binary(level + 1)
        while True:
            token = self._peek()
            if token is None or token.kind != "op" or token.text not in operators:
                return left
            self.index += 1
            left = Binary(token.text, left, self._binary(level + 1))

    def _unary(self):
        token = self._peek()
        if token is not None and token.kind == "op" and token.text in ("-", "+", "!"):
            self.index += 1
            self._enter()
            operand = self._unary()
            self._leave()
            return Unary(token.text, operand)
        return self._primary()

    def _primary(self):
        token = self._next()

        if token.kind == "number":
            return Number(float(token.text))

        if token.kind == "name":
            return self._call(token)

        if token.kind == "op" and token.text in ("(", "["):
            closing = ")" if token.text == "(" else "]"
            self._enter()
            inner = self._conditional()
            self._expect(closing)
            self._leave()
            return inner

        self._fail(f"Unexpected {token.text!r}", token)

    def _call(self, token: _Token):
        name = token.text
        if name.startswith("Math."):
            name = name[len("Math."):]
        if name not in FUNCTION_ARITY:
            self._fail(f"Unknown identifier {token.text!r}", token)

        self._expect("(")
        self._enter()
        args = []
        if not self._accept(")"):
            args.append(self._conditional())
            while self._accept(","):
                args.append(self._conditional())
            self._expect(")")
        self._leave()

        low, high = FUNCTION_ARITY[name]
        if len(args) < low or (high is not None and len(args) > high):
            self._fail(f"{name}() called with {len(args)} argument(s)", token)
        return Call(name, tuple(args))


# ============================================================================
# Public API
# ============================================================================

@dataclass(frozen=True)
class CompiledExpression:
    """A parsed expression ready to be evaluated."""
    source: str
    root: object

    def evaluate(self) -> float:
        value = self.root.evaluate()
        if not isinstance(value, float) or not math.isfinite(value):
            raise EvaluationError(
                f"Expression did not evaluate to a valid number: {value}", self.source
            )
        return value


def parse(expression: str) -> CompiledExpression:
    """Whitelist-check and parse fully substituted expression text."""
    if expression is None:
        raise InvalidExpression("Empty expression")
    check_characters(expression)
    return CompiledExpression(source=expression, root=_Parser(expression).parse())


def evaluate(expression: str) -> float:
    """
    Evaluate fully substituted expression text to a finite number.

    Raises:
        InvalidExpression: disallowed characters or invalid grammar
        EvaluationError: the result is not a finite number
    """
    return parse(expression).evaluate()
