"""
Tool registry for threadwise.

A :class:`ToolRegistry` maps an intent to an executor.  Each executor is registered together with a
pydantic model describing the intent's parameters; dispatch validates the oracle's step against that
model before calling the executor, so executors receive typed input.

Executors may be plain functions or coroutines:

    registry = ToolRegistry()

    @registry.register("add", params=ArithmeticStep)
    def add(step: ArithmeticStep) -> CalculationResult:
        ...
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Type,
    TypedDict,
)

from pydantic import BaseModel

from threadwise.core.schema import (
    TERMINAL_INTENTS,
    NextStep,
)

logger = logging.getLogger(__name__)


class ParameterInfo(TypedDict):
    """
    Information about a tool parameter.
    """

    type: str
    required: bool


class ToolSchema(TypedDict):
    """
    Schema for a tool function
    """

    description: str
    parameters: Mapping[str, ParameterInfo]


@dataclass(frozen=True)
class RegisteredTool:
    """An executor and the parameter model of its intent."""

    name: str
    fn: Callable[[Any], Any]
    params: Type[BaseModel] | None = None
    description: str = ""

    def parse(self, step: NextStep) -> Any:
        """
        Restrict *step* to this intent's fields.

        Raises ``pydantic.ValidationError`` when the fields do not match the parameter model.
        Without a model the raw step is passed through.
        """
        if self.params is None:
            return step
        return self.params.model_validate(step.params())

    def schema(self) -> ToolSchema:
        """Describe the tool for the oracle prompt."""
        params: Dict[str, ParameterInfo] = {}
        if self.params is not None:
            for field_name, field in self.params.model_fields.items():
                annotation = field.annotation
                type_name = getattr(annotation, "__name__", None) or str(annotation)
                params[field_name] = ParameterInfo(type=type_name, required=field.is_required())
        return {"description": self.description, "parameters": params}


class ToolRegistry:
    """Mapping from intent to executor."""

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        params: Type[BaseModel] | None = None,
        description: str | None = None,
    ) -> Callable:
        """
        Register an executor for the intent *name*.

        Parameters
        ----------
        name: str
            The intent.  Must be unique and must not be a terminal intent.
        params:
            Pydantic model of the intent's fields.
        description:
            Text shown to the oracle; defaults to the executor's docstring.

        Returns
        -------
        Callable
            A decorator that registers the function and returns it unchanged.

        Raises
        ------
        ValueError
            If *name* is already registered or is a terminal intent.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered.")
        if name in TERMINAL_INTENTS:
            raise ValueError(f"'{name}' is a terminal intent and cannot have a handler.")

        def wrapper(fn: Callable) -> Callable:
            logger.debug("Registering tool '%s'", name)
            doc = description if description is not None else (fn.__doc__ or "")
            self._tools[name] = RegisteredTool(
                name=name, fn=fn, params=params, description=doc.strip()
            )
            return fn

        return wrapper

    def get(self, name: str) -> RegisteredTool | None:
        """Return the tool registered for *name*, if any."""
        return self._tools.get(name)

    def names(self) -> List[str]:
        """Registered intents, in registration order."""
        return list(self._tools)

    def schemas(self) -> Mapping[str, ToolSchema]:
        """Extract parameter information from registered tools."""
        return {name: tool.schema() for name, tool in self._tools.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)
