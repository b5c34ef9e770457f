"""
Expression Sandbox

Compiles an oracle-supplied formula in x into a numeric evaluator.

The formula is untrusted data. It passes two gates before anything runs:
1. Token gate: only numbers, the operators + - * / ** ( ) , and names from
   the numeric library survive (a JavaScript-style "Math." prefix is dropped)
2. AST gate: only literals, x, constants, unary/binary arithmetic and
   positional calls to library functions, nested at most MAX_DEPTH deep

The checked tree is turned into nested closures; nothing is handed to eval().
The resulting evaluator never raises and maps every failure to NaN.
"""

import ast
import io
import logging
import math
import operator
import re
import tokenize
from typing import Callable, Dict, Optional

from socratic_calculus_tutor.errors import SandboxRejected

logger = logging.getLogger(__name__)

NAN = float("nan")


def _sign(v: float) -> float:
    if v > 0:
        return 1.0
    if v < 0:
        return -1.0
    return v


def _cbrt(v: float) -> float:
    return math.copysign(abs(v) ** (1.0 / 3.0), v)


def _real_pow(base: float, exponent: float) -> float:
    # A negative base with a fractional exponent has no real value
    result = operator.pow(base, exponent)
    if isinstance(result, complex):
        raise ValueError("complex result")
    return result


FUNCTIONS: Dict[str, Callable[..., float]] = {
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "sinh": math.sinh,
    "cosh": math.cosh,
    "tanh": math.tanh,
    "asinh": math.asinh,
    "acosh": math.acosh,
    "atanh": math.atanh,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "exp": math.exp,
    "abs": abs,
    "pow": math.pow,
    "sqrt": math.sqrt,
    "cbrt": _cbrt,
    "floor": math.floor,
    "ceil": math.ceil,
    "trunc": math.trunc,
    "sign": _sign,
    "min": min,
    "max": max,
    "hypot": math.hypot,
}

CONSTANTS: Dict[str, float] = {
    "PI": math.pi,
    "pi": math.pi,
    "E": math.e,
    "e": math.e,
}

VARIABLE = "x"

ALLOWED_NAMES = frozenset(FUNCTIONS) | frozenset(CONSTANTS) | {VARIABLE}
ALLOWED_OPERATORS = frozenset({"+", "-", "*", "/", "**", "(", ")", ","})

_RAW_CHARACTERS = re.compile(r"^[0-9A-Za-z_\s+\-*/().,]*$")
_MATH_PREFIX = re.compile(r"\bMath\.")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: _real_pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

# Runtime failures that mean "undefined at this x"
_NUMERIC_FAILURES = (ArithmeticError, ValueError, RecursionError)

PROBE_X = 1.0

# Deepest AST accepted; compiled closures recurse once per level
MAX_DEPTH = 100

Node = Callable[[float], float]


# ==================== Gates ====================

def _check_tokens(source: str) -> None:
    """Allow-list every token of the raw text."""
    if not _RAW_CHARACTERS.match(source):
        raise SandboxRejected("expression contains characters outside the numeric alphabet")

    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(source).readline))
    except (tokenize.TokenError, IndentationError, SyntaxError) as e:
        raise SandboxRejected(f"expression cannot be tokenized: {e}") from e

    for tok in tokens:
        if tok.type == tokenize.NAME:
            if tok.string not in ALLOWED_NAMES:
                raise SandboxRejected(f"name '{tok.string}' is not in the numeric library")
        elif tok.type == tokenize.OP:
            if tok.string not in ALLOWED_OPERATORS:
                raise SandboxRejected(f"operator '{tok.string}' is not allowed")
        elif tok.type == tokenize.NUMBER:
            if tok.string[-1] in "jJ":
                raise SandboxRejected("complex literals are not allowed")
        elif tok.type not in (tokenize.NEWLINE, tokenize.NL, tokenize.ENDMARKER, tokenize.INDENT, tokenize.DEDENT):
            raise SandboxRejected(f"unexpected token '{tok.string}'")


def _check_depth(tree: ast.AST) -> None:
    """Reject trees nested deeper than MAX_DEPTH (walked without recursion)."""
    stack = [(tree, 1)]
    while stack:
        node, depth = stack.pop()
        if depth > MAX_DEPTH:
            raise SandboxRejected(f"expression is nested deeper than {MAX_DEPTH} levels")
        stack.extend((child, depth + 1) for child in ast.iter_child_nodes(node))


def _compile_node(node: ast.AST) -> Node:
    """Turn a checked AST node into a closure of x."""
    if isinstance(node, ast.Expression):
        return _compile_node(node.body)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise SandboxRejected("only numeric literals are allowed")
        value = float(node.value)
        return lambda x: value

    if isinstance(node, ast.Name):
        if node.id == VARIABLE:
            return lambda x: x
        if node.id in CONSTANTS:
            value = CONSTANTS[node.id]
            return lambda x: value
        raise SandboxRejected(f"'{node.id}' can only be called, not used as a value")

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        op = _UNARY_OPS[type(node.op)]
        operand = _compile_node(node.operand)
        return lambda x: op(operand(x))

    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        op = _BINARY_OPS[type(node.op)]
        left = _compile_node(node.left)
        right = _compile_node(node.right)
        return lambda x: op(left(x), right(x))

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            raise SandboxRejected("only numeric library functions may be called")
        if node.keywords or any(isinstance(arg, ast.Starred) for arg in node.args):
            raise SandboxRejected("only positional arguments are allowed")
        func = FUNCTIONS[node.func.id]
        args = [_compile_node(arg) for arg in node.args]
        return lambda x: func(*(arg(x) for arg in args))

    raise SandboxRejected(f"{type(node).__name__} is not allowed in an expression")


# ==================== Evaluator ====================

class Evaluator:
    """
    Callable numeric function of x.

    Never raises: domain errors, division by zero, overflow, complex and
    non-finite results all come back as NaN ("undefined at this x").
    """

    def __init__(self, expression: str, node: Node):
        self.expression = expression
        self._node = node

    def __call__(self, x: float) -> float:
        try:
            value = self._node(float(x))
        except (*_NUMERIC_FAILURES, TypeError):
            return NAN
        if isinstance(value, complex):
            return NAN
        value = float(value)
        return value if math.isfinite(value) else NAN

    def __repr__(self) -> str:
        return f"Evaluator({self.expression!r})"


def compile_strict(expression: str) -> Evaluator:
    """
    Compile an expression or raise.

    Raises:
        SandboxRejected: when the text fails either gate or the probe
    """
    if not isinstance(expression, str) or not expression.strip():
        raise SandboxRejected("expression is empty")

    source = _MATH_PREFIX.sub("", expression).strip()
    _check_tokens(source)

    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise SandboxRejected(f"expression is not well formed: {e.msg}") from e
    except (RecursionError, MemoryError) as e:
        raise SandboxRejected("expression is nested too deeply to parse") from e

    _check_depth(tree)
    node = _compile_node(tree)

    # Probe: the raw closure must produce a real number (or a numeric failure)
    try:
        probe = node(PROBE_X)
    except _NUMERIC_FAILURES:
        probe = NAN
    except TypeError as e:
        raise SandboxRejected(f"expression does not evaluate to a number: {e}") from e
    if isinstance(probe, bool) or not isinstance(probe, (int, float, complex)):
        raise SandboxRejected("expression does not evaluate to a number")

    return Evaluator(expression, node)


def compile_expression(expression: str) -> Optional[Evaluator]:
    """
    Compile an expression, returning None when it is rejected.

    Rejection is not an error for the caller: the whiteboard simply renders
    nothing for it.
    """
    try:
        return compile_strict(expression)
    except SandboxRejected as e:
        logger.debug(f"[Sandbox] Rejected {expression!r}: {e}")
        return None


def is_defined(value: float) -> bool:
    """True when an evaluator result is a usable (finite) number."""
    return math.isfinite(value)
