"""Formula builder, structural validator and restricted evaluator.

A formula is an ordered sequence of :class:`FormulaElement` tokens composed in
the UI: parameters, numbers, named constants, operators, parentheses and unary
functions. Evaluation never goes through a host-language ``eval``; the tokens
are compiled by a small recursive-descent parser into an expression tree that
only knows arithmetic, the constant table and the function whitelist.

The compiled tree evaluates with numpy, so the same formula can be computed
for one sample or for a whole series at once.

Typical usage:

    builder = FormulaBuilder()
    builder.add_parameter("Flow|m3/h")
    builder.add_operator("*")
    builder.add_number(2)
    check = builder.validate()
    result = evaluate(builder.elements, {"Flow|m3/h": 10})
    result.value  # 20.0

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import EvaluationError, ValidationError
from .models import ElementType, FormulaDefinition, FormulaElement
from .utils import new_id

logger = logging.getLogger(__name__)

BINARY_OPERATORS: Tuple[str, ...] = ("+", "-", "*", "/", "^")
GROUP_TOKENS: Tuple[str, ...] = ("(", ")")

CONSTANTS: Dict[str, float] = {
    "PI": math.pi,
    "E": math.e,
    "G": 9.80665,  # standard gravity, m/s^2
}


def _round_half_up(values):
    return np.floor(values + 0.5)


FUNCTIONS: Dict[str, Callable] = {
    "SQRT": np.sqrt,
    "ABS": np.abs,
    "SIN": np.sin,
    "COS": np.cos,
    "TAN": np.tan,
    "LOG": np.log10,
    "LN": np.log,
    "EXP": np.exp,
    "ROUND": _round_half_up,
}

Number = Union[float, np.ndarray]


class FormulaErrorCode(str, Enum):
    EMPTY_FORMULA = "EmptyFormula"
    MISMATCHED_PARENS = "MismatchedParens"
    UNEXPECTED_OPERATOR = "UnexpectedOperator"
    MISSING_OPERATOR = "MissingOperator"
    UNCLOSED_PARENS = "UnclosedParens"
    TRAILING_OPERATOR = "TrailingOperator"


@dataclass(frozen=True)
class FormulaValidation:
    valid: bool
    message: str
    code: Optional[FormulaErrorCode] = None


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one sample calculation.

    Attributes:
        value: Computed value, or ``None`` when evaluation failed.
        error: Error description when evaluation failed.
        steps: Human readable calculation trace for the preview panel.
    """

    value: Optional[float] = None
    error: Optional[str] = None
    steps: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


def is_function(value: str) -> bool:
    return value in FUNCTIONS


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(elements: Sequence[FormulaElement]) -> FormulaValidation:
    """Check that an element sequence is a well-formed expression.

    Args:
        elements: Formula tokens in order.

    Returns:
        FormulaValidation with the first problem found, or a valid result.
    """
    if len(elements) == 0:
        return FormulaValidation(False, "Formula is empty", FormulaErrorCode.EMPTY_FORMULA)

    open_parens = 0
    last_was_operator = True  # permits a leading unary minus

    for i, element in enumerate(elements):
        value = element.value
        if value == "(":
            open_parens += 1
            last_was_operator = True
        elif value == ")":
            open_parens -= 1
            if open_parens < 0:
                return FormulaValidation(
                    False, "Mismatched parentheses", FormulaErrorCode.MISMATCHED_PARENS
                )
            last_was_operator = False
        elif element.type == ElementType.OPERATOR and value not in BINARY_OPERATORS:
            # Function tokens behave like a prefix operator.
            last_was_operator = True
        elif element.type == ElementType.OPERATOR:
            if last_was_operator and value != "-":
                return FormulaValidation(
                    False,
                    f"Unexpected operator: {value}",
                    FormulaErrorCode.UNEXPECTED_OPERATOR,
                )
            last_was_operator = True
        else:
            if not last_was_operator and i > 0:
                return FormulaValidation(
                    False, "Missing operator between values", FormulaErrorCode.MISSING_OPERATOR
                )
            last_was_operator = False

    if open_parens != 0:
        return FormulaValidation(False, "Unclosed parentheses", FormulaErrorCode.UNCLOSED_PARENS)

    if last_was_operator:
        return FormulaValidation(
            False, "Formula ends with an operator", FormulaErrorCode.TRAILING_OPERATOR
        )

    return FormulaValidation(True, "Formula is valid")


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


class _Node:
    def evaluate(self, values: Mapping[str, Number]) -> Number:
        raise NotImplementedError


@dataclass(frozen=True)
class _Const(_Node):
    value: float

    def evaluate(self, values):
        return np.float64(self.value)


@dataclass(frozen=True)
class _Param(_Node):
    key: str

    def evaluate(self, values):
        if self.key not in values:
            raise EvaluationError(f"No value for parameter '{self.key}'")
        raw = values[self.key]
        try:
            return np.asarray(raw, dtype=float)
        except (TypeError, ValueError) as exc:
            raise EvaluationError(f"Value for '{self.key}' is not numeric") from exc


@dataclass(frozen=True)
class _Neg(_Node):
    operand: _Node

    def evaluate(self, values):
        return -self.operand.evaluate(values)


@dataclass(frozen=True)
class _Binary(_Node):
    op: str
    left: _Node
    right: _Node

    def evaluate(self, values):
        a = self.left.evaluate(values)
        b = self.right.evaluate(values)
        if self.op == "+":
            return np.add(a, b)
        if self.op == "-":
            return np.subtract(a, b)
        if self.op == "*":
            return np.multiply(a, b)
        if self.op == "/":
            return np.divide(a, b)
        return np.power(a, b)


@dataclass(frozen=True)
class _Call(_Node):
    name: str
    argument: _Node

    def evaluate(self, values):
        return FUNCTIONS[self.name](self.argument.evaluate(values))


class _Parser:
    """Recursive descent over normalized tokens.

    Grammar::

        expr    := term (('+' | '-') term)*
        term    := unary (('*' | '/') unary)*
        unary   := '-' unary | power
        power   := primary ('^' unary)?
        primary := NUMBER | PARAM | FUNC '(' expr ')' | '(' expr ')'
    """

    def __init__(self, tokens: List[Tuple[str, object]]) -> None:
        self._tokens = tokens
        self._pos = 0

    def parse(self) -> _Node:
        node = self._expr()
        if self._pos != len(self._tokens):
            kind, value = self._tokens[self._pos]
            raise EvaluationError(f"Unexpected token '{value}'")
        return node

    def _peek(self) -> Optional[Tuple[str, object]]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _take(self) -> Tuple[str, object]:
        token = self._peek()
        if token is None:
            raise EvaluationError("Unexpected end of formula")
        self._pos += 1
        return token

    def _at_op(self, *ops: str) -> bool:
        token = self._peek()
        return token is not None and token[0] == "op" and token[1] in ops

    def _expr(self) -> _Node:
        node = self._term()
        while self._at_op("+", "-"):
            op = self._take()[1]
            node = _Binary(op, node, self._term())
        return node

    def _term(self) -> _Node:
        node = self._unary()
        while self._at_op("*", "/"):
            op = self._take()[1]
            node = _Binary(op, node, self._unary())
        return node

    def _unary(self) -> _Node:
        if self._at_op("-"):
            self._take()
            return _Neg(self._unary())
        return self._power()

    def _power(self) -> _Node:
        base = self._primary()
        if self._at_op("^"):
            self._take()
            return _Binary("^", base, self._unary())
        return base

    def _primary(self) -> _Node:
        kind, value = self._take()
        if kind == "num":
            return _Const(float(value))
        if kind == "param":
            return _Param(str(value))
        if kind == "func":
            if not self._at_op("("):
                raise EvaluationError(f"Function {value} requires a parenthesized argument")
            self._take()
            argument = self._expr()
            self._expect_close()
            return _Call(str(value), argument)
        if kind == "op" and value == "(":
            node = self._expr()
            self._expect_close()
            return node
        raise EvaluationError(f"Unexpected token '{value}'")

    def _expect_close(self) -> None:
        if not self._at_op(")"):
            raise EvaluationError("Missing closing parenthesis")
        self._take()


def _normalize(elements: Sequence[FormulaElement]) -> List[Tuple[str, object]]:
    tokens: List[Tuple[str, object]] = []
    for element in elements:
        value = element.value.strip() if isinstance(element.value, str) else element.value
        if element.type == ElementType.PARAMETER:
            tokens.append(("param", element.value))
        elif element.type == ElementType.CONSTANT:
            if value not in CONSTANTS:
                raise EvaluationError(f"Unknown constant '{value}'")
            tokens.append(("num", CONSTANTS[value]))
        elif element.type == ElementType.NUMBER:
            try:
                tokens.append(("num", float(value)))
            except (TypeError, ValueError) as exc:
                raise EvaluationError(f"Invalid number '{value}'") from exc
        elif value in FUNCTIONS:
            tokens.append(("func", value))
        elif value in BINARY_OPERATORS or value in GROUP_TOKENS:
            tokens.append(("op", value))
        else:
            raise EvaluationError(f"Unknown operator '{value}'")
    return tokens


@dataclass(frozen=True)
class CompiledFormula:
    """A parsed formula ready to be evaluated repeatedly."""

    root: _Node
    parameters: Tuple[str, ...]

    def evaluate(self, values: Mapping[str, Number]) -> Number:
        """Evaluate with scalar or array values; may return non-finite numbers."""
        with np.errstate(all="ignore"):
            return self.root.evaluate(values)


def compile_formula(elements: Sequence[FormulaElement]) -> CompiledFormula:
    """Parse an element sequence into an expression tree.

    Raises:
        EvaluationError: If the sequence cannot be parsed.
    """
    if len(elements) == 0:
        raise EvaluationError("Formula is empty")
    root = _Parser(_normalize(elements)).parse()
    params: Dict[str, None] = {}
    for element in elements:
        if element.type == ElementType.PARAMETER:
            params.setdefault(element.value, None)
    return CompiledFormula(root=root, parameters=tuple(params))


def _format_number(value: float) -> str:
    return f"{value:.2f}"


def evaluate(
    elements: Sequence[FormulaElement],
    sample_values: Mapping[str, Union[float, str]],
    unit: str = "",
) -> EvaluationResult:
    """Compute a formula for one set of sample values.

    Never raises; failures are reported in the returned result.

    Args:
        elements: Formula tokens.
        sample_values: Value per parameter key. Strings are parsed as floats.
        unit: Optional unit appended to the result step.

    Returns:
        EvaluationResult with the value or the error and a calculation trace.
    """
    expression = " ".join(element.value for element in elements)
    steps: List[str] = [f"Formula: {expression}"]

    values: Dict[str, float] = {}
    for key, raw in sample_values.items():
        try:
            values[key] = float(raw)
        except (TypeError, ValueError):
            continue

    try:
        compiled = compile_formula(elements)
        steps.append(
            "Sample values: "
            + ", ".join(f"{p} = {sample_values.get(p, '?')}" for p in compiled.parameters)
        )
        substituted = " ".join(
            str(sample_values.get(e.value, e.value)) if e.type == ElementType.PARAMETER else e.value
            for e in elements
        )
        steps.append(f"Expression: {substituted}")
        result = compiled.evaluate(values)
        value = float(np.asarray(result, dtype=float))
        if not math.isfinite(value):
            raise EvaluationError("Result is not a finite number")
    except EvaluationError as exc:
        logger.warning("Formula evaluation failed for '%s': %s", expression, exc)
        steps.append("Error: Unable to calculate")
        return EvaluationResult(value=None, error=str(exc), steps=tuple(steps))

    suffix = f" {unit}" if unit else ""
    steps.append(f"Result: {_format_number(value)}{suffix}")
    return EvaluationResult(value=value, error=None, steps=tuple(steps))


def evaluate_series(
    definition: Union[FormulaDefinition, Sequence[FormulaElement]],
    series: Mapping[str, Sequence[float]],
) -> np.ndarray:
    """Evaluate a formula row by row over aligned series.

    Rows that cannot be computed (missing input, non-finite result) are NaN.
    Series of different lengths are truncated to the shortest.

    Returns:
        1-D float array; empty when an input series is missing or the formula
        does not compile.
    """
    elements = definition.elements if isinstance(definition, FormulaDefinition) else definition
    try:
        compiled = compile_formula(elements)
    except EvaluationError as exc:
        logger.warning("Formula does not compile: %s", exc)
        return np.array([], dtype=float)

    arrays: Dict[str, np.ndarray] = {}
    for key in compiled.parameters:
        if key not in series:
            return np.array([], dtype=float)
        arrays[key] = np.asarray(series[key], dtype=float)

    if arrays:
        n = min(len(a) for a in arrays.values())
        arrays = {k: a[:n] for k, a in arrays.items()}
    else:
        n = 1

    try:
        result = np.asarray(compiled.evaluate(arrays), dtype=float)
    except EvaluationError as exc:
        logger.warning("Formula evaluation failed: %s", exc)
        return np.array([], dtype=float)

    result = np.broadcast_to(result, (n,)).copy()
    result[~np.isfinite(result)] = np.nan
    return result


def default_sample_values(parameters: Sequence[str]) -> Dict[str, float]:
    """Sample values used by the preview: 10, 20, 30, ... per parameter."""
    return {param: float((i + 1) * 10) for i, param in enumerate(parameters)}


# ---------------------------------------------------------------------------
# Text <-> elements
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<num>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
    r"|(?P<op>[-+*/^()])"
    r"|(?P<word>[^\s+\-*/^()]+)"
    r")"
)


def parse_expression(text: str) -> Tuple[FormulaElement, ...]:
    """Tokenize expression text into formula elements.

    Words that are function or constant names become operator/constant
    elements; every other word is a parameter reference.

    Raises:
        ValueError: If the text contains characters that cannot be tokenized.
    """
    elements: List[FormulaElement] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"Cannot parse formula near: {text[pos:]!r}")
        pos = match.end()
        if match.group("num") is not None:
            elements.append(_element(ElementType.NUMBER, match.group("num")))
        elif match.group("op") is not None:
            elements.append(_element(ElementType.OPERATOR, match.group("op")))
        else:
            word = match.group("word")
            if word in FUNCTIONS:
                elements.append(_element(ElementType.OPERATOR, word))
            elif word in CONSTANTS:
                elements.append(_element(ElementType.CONSTANT, word))
            else:
                elements.append(_element(ElementType.PARAMETER, word))
    return tuple(elements)


def _element(kind: ElementType, value: str, display_name: str = "") -> FormulaElement:
    return FormulaElement(
        id=new_id("el"), type=kind, value=value, display_name=display_name or value
    )


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass
class FormulaBuilder:
    """Mutable token sequence edited by the formula dialog.

    The builder is a local draft; it never touches a shared master.
    """

    _elements: List[FormulaElement] = field(default_factory=list)

    @classmethod
    def from_definition(cls, definition: FormulaDefinition) -> "FormulaBuilder":
        return cls(list(definition.elements))

    @property
    def elements(self) -> Tuple[FormulaElement, ...]:
        return tuple(self._elements)

    @property
    def expression(self) -> str:
        return " ".join(element.value for element in self._elements)

    @property
    def parameters(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for element in self._elements:
            if element.type == ElementType.PARAMETER:
                seen.setdefault(element.value, None)
        return tuple(seen)

    def add_parameter(self, key: str, display_name: str = "") -> FormulaElement:
        return self._append(_element(ElementType.PARAMETER, key, display_name))

    def add_operator(self, symbol: str) -> FormulaElement:
        if symbol not in BINARY_OPERATORS and symbol not in GROUP_TOKENS:
            raise ValueError(f"Unknown operator: {symbol}")
        return self._append(_element(ElementType.OPERATOR, symbol))

    def add_function(self, name: str, open_paren: bool = False) -> FormulaElement:
        """Append a function token, optionally followed by ``(``."""
        if name not in FUNCTIONS:
            raise ValueError(f"Unknown function: {name}")
        element = self._append(_element(ElementType.OPERATOR, name))
        if open_paren:
            self._append(_element(ElementType.OPERATOR, "("))
        return element

    def add_constant(self, name: str) -> FormulaElement:
        if name not in CONSTANTS:
            raise ValueError(f"Unknown constant: {name}")
        return self._append(_element(ElementType.CONSTANT, name))

    def add_number(self, value: Union[float, str]) -> FormulaElement:
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
        if not math.isfinite(number):
            raise ValueError(f"Not a finite number: {value!r}")
        text = str(value).strip() if isinstance(value, str) else repr(number)
        if text.endswith(".0") and not isinstance(value, str):
            text = text[:-2]
        return self._append(_element(ElementType.NUMBER, text))

    def insert(self, index: int, element: FormulaElement) -> None:
        self._elements.insert(index, element)

    def remove(self, index: int) -> FormulaElement:
        return self._elements.pop(index)

    def remove_element(self, element_id: str) -> None:
        self._elements = [e for e in self._elements if e.id != element_id]

    def move(self, from_index: int, to_index: int) -> None:
        element = self._elements.pop(from_index)
        self._elements.insert(to_index, element)

    def clear(self) -> None:
        self._elements.clear()

    def validate(self) -> FormulaValidation:
        return validate(self._elements)

    def to_definition(
        self, name: str, unit: str = "", description: str = "", formula_id: Optional[str] = None
    ) -> FormulaDefinition:
        """Freeze the draft into a definition.

        Raises:
            ValidationError: If the formula is not valid.
        """
        check = self.validate()
        if not check.valid:
            raise ValidationError(check.message, code=check.code.value)
        return FormulaDefinition(
            id=formula_id or new_id("formula"),
            name=name,
            elements=self.elements,
            unit=unit,
            description=description,
        )

    def _append(self, element: FormulaElement) -> FormulaElement:
        self._elements.append(element)
        return element


def definition_from_expression(
    name: str, expression: str, unit: str = "", formula_id: Optional[str] = None
) -> FormulaDefinition:
    """Build a definition from expression text (e.g. a stored master)."""
    return FormulaDefinition(
        id=formula_id or new_id("formula"),
        name=name,
        elements=parse_expression(expression),
        unit=unit,
    )
