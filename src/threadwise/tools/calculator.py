"""Calculator tools: ``add``, ``subtract``, ``multiply`` and ``divide``."""

from typing import Literal

from pydantic import (
    BaseModel,
    Field,
)

from threadwise.common import format_number
from threadwise.core.schema import ToolResult
from threadwise.tools import ToolRegistry

Operation = Literal["add", "subtract", "multiply", "divide"]


class ArithmeticStep(BaseModel):
    """Operands of a binary arithmetic intent."""

    a: float = Field(..., description="Left operand")
    b: float = Field(..., description="Right operand")


class CalculationResult(ToolResult):
    """Result of a calculator operation; the oracle only sees the number."""

    kind: Literal["calculation"] = "calculation"
    operation: Operation
    result: float

    def render_for_context(self) -> str:
        return format_number(self.result)


def add(step: ArithmeticStep) -> CalculationResult:
    """Add b to a."""
    return CalculationResult(operation="add", result=step.a + step.b)


def subtract(step: ArithmeticStep) -> CalculationResult:
    """Subtract b from a."""
    return CalculationResult(operation="subtract", result=step.a - step.b)


def multiply(step: ArithmeticStep) -> CalculationResult:
    """Multiply a by b."""
    return CalculationResult(operation="multiply", result=step.a * step.b)


def divide(step: ArithmeticStep) -> CalculationResult:
    """Divide a by b."""
    if step.b == 0:
        raise ZeroDivisionError("Division by zero is not allowed.")
    return CalculationResult(operation="divide", result=step.a / step.b)


def register_calculator_tools(registry: ToolRegistry) -> None:
    """Register the four arithmetic intents on *registry*."""
    for fn in (add, subtract, multiply, divide):
        registry.register(fn.__name__, params=ArithmeticStep)(fn)
