"""
Mathematical Expression Solver

Evaluates mathematical expressions using SymPy's parser. Supports
scientific calculator syntax including factorials (5!), caret
exponentiation (2^16) and degree notation (sin(30 degrees)).
"""

import logging
import re

from sympy import N
from sympy.parsing.sympy_parser import (
    parse_expr,
    standard_transformations,
    implicit_multiplication_application,
    convert_xor,
    factorial_notation,
)

from ..errors import ToolException
from .registry import ErrorPolicy, ToolDescriptor

logger = logging.getLogger(__name__)

TRANSFORMATIONS = (
    standard_transformations
    + (implicit_multiplication_application,)
    + (convert_xor,)  # 2^16 -> 2**16
    + (factorial_notation,)  # 5! -> factorial(5)
)


def preprocess_expression(expression: str) -> str:
    """Rewrite degree notation and ``ceil`` into SymPy-compatible forms."""
    degree_pattern = r"(\d+(?:\.\d+)?)\s*(?:degrees?|deg)\b"
    expression = re.sub(degree_pattern, r"(\1 * pi / 180)", expression, flags=re.IGNORECASE)
    return re.sub(r"\bceil\b", "ceiling", expression)


def calculate(expression: str) -> int | float | complex:
    """
    Evaluate a mathematical expression.

    Returns:
        The numeric result; whole numbers come back as ints and purely
        real results as floats.

    Raises:
        ToolException: The expression is empty or cannot be evaluated.
    """
    if not expression or not expression.strip():
        raise ToolException('Expression is empty. Expected {"expression": "2+2"}')

    try:
        expr = parse_expr(
            preprocess_expression(expression),
            transformations=TRANSFORMATIONS,
            evaluate=True,
        )
        result = complex(N(expr))
    except SyntaxError as e:
        logger.debug("Syntax error parsing expression '%s': %s", expression, e)
        raise ToolException(f"Syntax error: {e}") from e
    except (ValueError, TypeError) as e:
        logger.debug("Value/Type error evaluating '%s': %s", expression, e)
        raise ToolException(str(e)) from e

    if result.imag != 0:
        return result
    real = result.real
    return int(real) if real.is_integer() else real


def _format_calculation(result: dict) -> str:
    return f"{result['expression']} = {result['result']}"


def _handle_calculate(params: dict) -> dict:
    expression = params["expression"]
    return {"expression": expression, "result": calculate(expression)}


CALCULATE_TOOL = ToolDescriptor(
    name="calculate",
    description="Perform mathematical calculations such as 2+2, sqrt(16) or 5!",
    input_schema={"expression": str},
    invoke=_handle_calculate,
    error_policy=ErrorPolicy.CUSTOM_HANDLER,
    error_handler=lambda e: f"Calculation failed: {e}",
    formatter=_format_calculation,
)
