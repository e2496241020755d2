"""Arithmetic over named price fields, e.g. ``(colUSDOracle - colUSDPriceFeed) / colUSDPriceFeed``.

Supports decimal literals, ``+ - * /`` and parentheses. A variable bound to
None makes the whole expression None, as does a division by zero.
"""

import re
from decimal import ROUND_DOWN, Context, Decimal, DivisionByZero, InvalidOperation
from typing import Mapping

_TOKEN_RE = re.compile(r"\d+(\.\d+)?|[+\-*/()]|\w+")
_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$")
_NAME_RE = re.compile(r"^\w+$")

_CONTEXT = Context(prec=60, rounding=ROUND_DOWN, traps=[DivisionByZero, InvalidOperation])

PRECEDENCE = {"*": 2, "/": 2, "+": 1, "-": 1}


class ExpressionError(ValueError):
    """Malformed formula or a reference to an unknown variable."""


def tokenize(formula: str) -> list[str]:
    return [m.group(0) for m in _TOKEN_RE.finditer(formula)]


def to_postfix(tokens: list[str]) -> list[str]:
    """Shunting-yard: infix tokens to postfix, operators left-associative."""
    output: list[str] = []
    stack: list[str] = []
    for token in tokens:
        if token in PRECEDENCE:
            while stack and stack[-1] != "(" and PRECEDENCE[stack[-1]] >= PRECEDENCE[token]:
                output.append(stack.pop())
            stack.append(token)
        elif token == "(":
            stack.append(token)
        elif token == ")":
            while stack and stack[-1] != "(":
                output.append(stack.pop())
            if not stack:
                raise ExpressionError("Unbalanced ')'")
            stack.pop()
        else:
            output.append(token)
    while stack:
        op = stack.pop()
        if op == "(":
            raise ExpressionError("Unbalanced '('")
        output.append(op)
    return output


def _apply(op: str, a: Decimal, b: Decimal) -> Decimal:
    if op == "+":
        return _CONTEXT.add(a, b)
    if op == "-":
        return _CONTEXT.subtract(a, b)
    if op == "*":
        return _CONTEXT.multiply(a, b)
    return _CONTEXT.divide(a, b)


def evaluate_expression(
    formula: str, variables: Mapping[str, str | Decimal | None]
) -> Decimal | None:
    """
    Evaluate ``formula`` against ``variables``.

    Returns:
        The result, or None when an input is unknown or a division by zero occurs

    Raises:
        ExpressionError: On a malformed formula or an unknown variable name
    """
    tokens = tokenize(formula)
    if not tokens:
        raise ExpressionError("Empty formula")

    stack: list[Decimal] = []
    for token in to_postfix(tokens):
        if _NUMBER_RE.match(token):
            stack.append(Decimal(token))
        elif token in PRECEDENCE:
            if len(stack) < 2:
                raise ExpressionError(f"Operator {token!r} is missing an operand in {formula!r}")
            b = stack.pop()
            a = stack.pop()
            try:
                stack.append(_apply(token, a, b))
            except (DivisionByZero, InvalidOperation):
                return None
        elif _NAME_RE.match(token):
            if token not in variables:
                raise ExpressionError(f"Variable {token} not found in data")
            value = variables[token]
            if value is None:
                return None
            try:
                stack.append(Decimal(str(value)))
            except InvalidOperation as e:
                raise ExpressionError(f"Variable {token} is not numeric: {value!r}") from e
        else:
            raise ExpressionError(f"Unexpected token {token!r}")

    if len(stack) != 1:
        raise ExpressionError(f"Malformed formula: {formula!r}")
    return stack[0]
