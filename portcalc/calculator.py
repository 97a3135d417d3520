"""Reference program: evaluates a single call expression such as ``f(1, 2 / 3)``."""

from __future__ import annotations

import ast
import logging
import math
import operator
from typing import Any, Callable, Dict, Optional, Union

from .models import ProgramInfo
from .program import Program

LOG = logging.getLogger("portcalc.calculator")

Number = Union[int, float]

_BINARY_OPERATORS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

# Results are printed as JSON; Python refuses to format ints beyond ~4300 digits.
MAX_RESULT_BITS = 4096


class CalculationError(ValueError):
    """Raised when a source string is not a valid call expression."""


def _checked(value: Any) -> Number:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CalculationError(f"Unsupported value: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise CalculationError(f"Non-finite value: {value!r}")
    if isinstance(value, int) and value.bit_length() > MAX_RESULT_BITS:
        raise CalculationError("Integer result too large")
    return value


def _check_power(left: Number, right: Number) -> None:
    # left ** right has at least (bits(left) - 1) * right bits.
    if isinstance(left, int) and isinstance(right, int) and right > 0:
        if (abs(left).bit_length() - 1) * right > MAX_RESULT_BITS:
            raise CalculationError(f"Power too large: {left} ** {right}")


def _evaluate_number(node: ast.AST) -> Number:
    if isinstance(node, ast.Constant):
        return _checked(node.value)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate_number(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate_number(node.left)
        right = _evaluate_number(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        try:
            result = _BINARY_OPERATORS[type(node.op)](left, right)
        except ArithmeticError as exc:
            raise CalculationError(f"Arithmetic error: {exc}") from exc
        return _checked(result)
    raise CalculationError(f"Unsupported expression: {ast.dump(node)}")


def parse_call(source: str) -> Dict[str, Any]:
    """Parse and evaluate ``name(arg, ...)``; raises ``CalculationError``."""
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as exc:
        raise CalculationError(f"Invalid syntax: {exc.msg}") from exc
    except (ValueError, RecursionError, MemoryError) as exc:
        raise CalculationError(f"Unparseable source: {exc}") from exc

    call = tree.body
    if not isinstance(call, ast.Call) or not isinstance(call.func, ast.Name):
        raise CalculationError("Expected a call expression like name(arg, ...)")
    if call.keywords:
        raise CalculationError("Keyword arguments are not supported")

    args = []
    for argument in call.args:
        if isinstance(argument, ast.Starred):
            raise CalculationError("Starred arguments are not supported")
        try:
            args.append(_evaluate_number(argument))
        except RecursionError as exc:
            raise CalculationError("Expression nested too deeply") from exc
    return {"name": call.func.id, "args": args}


def evaluate(flags: str) -> Optional[Dict[str, Any]]:
    """Program update function; ``None`` signals a failed calculation."""
    try:
        result = parse_call(flags)
    except CalculationError as exc:
        LOG.info("Calculation failed for %r: %s", flags, exc)
        return None
    LOG.debug("Calculated %r -> %s", flags, result)
    return result


def build_program() -> Program:
    return Program(
        evaluate,
        info=ProgramInfo(
            name="calculator",
            version="0.1.0",
            title="Call Expression Calculator",
        ),
    )
