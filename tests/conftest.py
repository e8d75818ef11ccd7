"""Shared fixtures: a scripted oracle and a registry bound to a fresh cache."""

import logging
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Sequence,
)

import pytest

from threadwise.agent.oracle import (
    ORACLE_LOGGERS,
    BaseOracle,
    OracleChunk,
)
from threadwise.core.errors import OracleError
from threadwise.core.schema import NextStep
from threadwise.memory.result_cache import ResultCache
from threadwise.tools import ToolRegistry
from threadwise.tools.defaults import default_registry


class ScriptedOracle(BaseOracle):
    """
    Oracle that replays a fixed list of decisions.

    *partials* maps a call index to the partial messages streamed before that decision.
    Every serialized history it receives is kept in ``histories``.
    """

    def __init__(
        self,
        steps: Sequence[Mapping[str, Any]],
        partials: Dict[int, List[str]] | None = None,
    ) -> None:
        super().__init__(tool_schemas={})
        self.steps = [NextStep.model_validate(dict(step)) for step in steps]
        self.partials = partials or {}
        self.histories: List[str] = []

    async def decide(self, history: str) -> NextStep:
        self.histories.append(history)
        if not self.steps:
            raise OracleError("Scripted oracle has no more steps")
        return self.steps.pop(0)

    async def stream(self, history: str) -> AsyncIterator[OracleChunk]:
        for partial in self.partials.get(len(self.histories), []):
            yield OracleChunk(partial=partial)
        yield OracleChunk(step=await self.decide(history))


@pytest.fixture
def scripted_oracle() -> Callable[..., ScriptedOracle]:
    """Factory for :class:`ScriptedOracle`."""
    return ScriptedOracle


@pytest.fixture
def cache() -> ResultCache:
    """A result cache with the default TTL."""
    return ResultCache()


@pytest.fixture
def registry(cache: ResultCache) -> ToolRegistry:
    """The default tool registry bound to *cache*."""
    return default_registry(cache)


@pytest.fixture
def oracle_log_levels() -> Iterator[None]:
    """Restore the oracle and tool logger levels changed by a test."""
    loggers = [logging.getLogger(name) for name in ORACLE_LOGGERS]
    previous = [log.level for log in loggers]
    yield
    for log, level in zip(loggers, previous):
        log.setLevel(level)
