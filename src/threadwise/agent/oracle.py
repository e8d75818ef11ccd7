"""
Decision oracle interface for threadwise.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
storage) stays model-agnostic: the loop hands an oracle the serialized thread and gets back a
:class:`~threadwise.core.schema.NextStep`.

We support three back-ends out of the box:

1. **Anthropic** and **OpenAI** via their SDKs (requires env keys); both stream.
2. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.

Additional providers can be added by subclassing :class:`BaseOracle` and registering via
:func:`register_oracle`.

Oracle logging has its own verbosity (``OFF``, ``INFO``, ``DEBUG``), see
:func:`resolve_oracle_log_level`.  The same verbosity governs the tools' loggers.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Type,
)

import httpx
from pydantic import ValidationError

from threadwise.config import settings
from threadwise.core.errors import OracleError
from threadwise.core.schema import (
    DONE_FOR_NOW,
    REQUEST_MORE_INFORMATION,
    NextStep,
)
from threadwise.tools import ToolSchema

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Oracle log verbosity
# ---------------------------------------------------------------------------
ORACLE_LOG_LEVELS: Dict[str, int] = {
    "OFF": logging.CRITICAL + 1,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def resolve_oracle_log_level(debug: bool = False, env_value: str | None = None) -> str:
    """
    Pick the oracle log verbosity.

    The ``ORACLE_LOG`` setting (or *env_value*) wins; otherwise ``--debug`` selects ``INFO`` and
    the default is ``OFF``.
    """
    value = env_value if env_value is not None else settings.ORACLE_LOG
    if value:
        level = value.strip().upper()
        if level not in ORACLE_LOG_LEVELS:
            raise ValueError(
                f"Unknown oracle log level '{value}'; expected one of {', '.join(ORACLE_LOG_LEVELS)}"
            )
        return level
    return "INFO" if debug else "OFF"


# Tool chatter (scraper progress, thoughts) follows the same verbosity as the oracle.
ORACLE_LOGGERS = (__name__, "threadwise.tools")


def set_oracle_log_level(level: str) -> None:
    """Apply *level* to the oracle logger and the tools' loggers."""
    numeric = ORACLE_LOG_LEVELS[level.upper()]
    for name in ORACLE_LOGGERS:
        logging.getLogger(name).setLevel(numeric)


def get_oracle_log_level() -> str:
    """Return the verbosity currently applied to this module's logger."""
    for name, numeric in ORACLE_LOG_LEVELS.items():
        if logger.level == numeric:
            return name
    return logging.getLevelName(logger.getEffectiveLevel())


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_ORACLE_REGISTRY: dict[str, Type["BaseOracle"]] = {}


def register_oracle(name: str) -> Callable:
    """Decorator to register an oracle class under *name*."""

    def wrapper(cls: Type["BaseOracle"]) -> Type["BaseOracle"]:
        _ORACLE_REGISTRY[name] = cls
        return cls

    return wrapper


def load_oracle(
    name: str | None = None, tool_schemas: Mapping[str, ToolSchema] | None = None
) -> "BaseOracle":
    """
    Factory that returns an instantiated oracle.

    Fallback order:
    1. *name* arg
    2. ``settings.ORACLE`` env option
    """
    target = name or settings.ORACLE
    cls = _ORACLE_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Oracle '{target}' is not registered.")
    return cls(tool_schemas=tool_schemas)


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------
@dataclass
class OracleChunk:
    """One item of an oracle stream: a partial message, or the final decision."""

    partial: str | None = None
    step: NextStep | None = None


def _sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Keep only the outermost JSON object
    open_idx = content.find("{")
    if open_idx >= 0:
        depth = 0
        in_string = escaped = False
        for i in range(open_idx, len(content)):
            ch = content[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return content[open_idx : i + 1]
    return content


def parse_next_step(content: str) -> NextStep:
    """Turn raw model output into a :class:`NextStep`, or raise :class:`OracleError`."""
    cleaned = _sanitize_json_string(content)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise OracleError(f"Oracle returned malformed JSON: {content!r}") from exc
    if not isinstance(parsed, dict):
        raise OracleError(f"Oracle returned {type(parsed).__name__}, expected an object")
    try:
        return NextStep.model_validate(parsed)
    except ValidationError as exc:
        raise OracleError(f"Oracle returned an invalid next step: {exc}") from exc


_MESSAGE_PREFIX = re.compile(r'"message"\s*:\s*"((?:[^"\\]|\\.)*)')


def extract_partial_message(buffer: str) -> str | None:
    """
    Best-effort read of the ``message`` field from incomplete JSON.

    Returns the decoded text seen so far, or *None* if the field has not started yet.
    """
    match = _MESSAGE_PREFIX.search(buffer)
    if not match:
        return None
    raw = match.group(1)
    try:
        return json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        # A \uXXXX escape is cut in half; decode up to it.
        cut = raw.rfind("\\")
        try:
            return json.loads(f'"{raw[:cut]}"')
        except json.JSONDecodeError:
            return None


class _PartialTracker:
    """Yields a message prefix only when it grew since the last one."""

    def __init__(self) -> None:
        self._last = ""

    def update(self, buffer: str) -> str | None:
        message = extract_partial_message(buffer)
        if message is None or len(message) <= len(self._last) or not message.startswith(self._last):
            return None
        self._last = message
        return message


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseOracle(ABC):
    """Abstract oracle that converts a serialized thread -> next step."""

    SYSTEM_PROMPT: ClassVar[
        str
    ] = f"""\
You are a helpful assistant that can use tools.
You will be shown the history of the conversation as tagged events and must decide the next step.
Respond with exactly one JSON object and no extra text:
{{"intent": "<intent>", ...parameters of that intent}}
Use "{DONE_FOR_NOW}" with a "message" when you have a final answer for the user.
Use "{REQUEST_MORE_INFORMATION}" with a "message" when you need something from the user.
When a tool fails you will see a tool_error event; decide how to recover.
"""

    def __init__(
        self,
        tool_schemas: Mapping[str, ToolSchema] | None = None,
        timeout: float | None = None,
    ) -> None:
        self.tool_schemas: Mapping[str, ToolSchema] = tool_schemas or {}
        self.timeout = settings.ORACLE_TIMEOUT if timeout is None else timeout

    def _build_prompt(self) -> str:
        """Build the system prompt with the available tool intents."""
        intents: List[str] = [
            f'- {DONE_FOR_NOW}(message: str): final answer for the user',
            f"- {REQUEST_MORE_INFORMATION}(message: str): ask the user a question",
        ]
        for name, schema in self.tool_schemas.items():
            param_desc = ", ".join(
                f"{p}: {info['type']}{'' if info['required'] else ' (optional)'}"
                for p, info in schema["parameters"].items()
            )
            intents.append(f"- {name}({param_desc}): {schema['description']}")
        return self.SYSTEM_PROMPT + "\n\nAvailable intents:\n" + "\n".join(intents)

    @staticmethod
    def _build_user_message(history: str) -> str:
        return f"{history}\n\nWhat should the next step be?"

    def _parse(self, content: str) -> NextStep:
        logger.debug("Oracle raw response: %s", content)
        step = parse_next_step(content)
        logger.info("Oracle determined next step: %s", step.intent)
        return step

    @abstractmethod
    async def decide(self, history: str) -> NextStep:
        """Return the next step for the serialized *history*."""

    async def stream(self, history: str) -> AsyncIterator[OracleChunk]:
        """
        Yield partial messages while the answer is produced, then the final step.

        The default implementation has no partials.
        """
        yield OracleChunk(step=await self.decide(history))


# ---------------------------------------------------------------------------
# Concrete oracles
# ---------------------------------------------------------------------------
@register_oracle("tgi")
class TGIOracle(BaseOracle):
    """TGI-based oracle with httpx client."""

    async def decide(self, history: str) -> NextStep:
        """Call the TGI endpoint and parse its generated text."""
        payload = {
            "inputs": f"{self._build_prompt()}\n\nUser: {self._build_user_message(history)}",
            "parameters": {"max_new_tokens": 512, "temperature": 0.2, "stop": ["User:", "</s>"]},
        }
        logger.debug("Sending to TGI:\n%s", history)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(settings.TGI_ENDPOINT, json=payload)
                resp.raise_for_status()
                content = resp.json()["generated_text"]
        except httpx.HTTPError as exc:
            raise OracleError(f"Error calling TGI endpoint: {exc}") from exc
        except (KeyError, ValueError) as exc:
            raise OracleError(f"Unexpected TGI response: {exc}") from exc
        return self._parse(content)


@register_oracle("openai")
class OpenAIOracle(BaseOracle):
    """OpenAI-based oracle in JSON mode."""

    def _request(self, history: str) -> Dict[str, Any]:
        return {
            "model": settings.OPENAI_MODEL,
            "messages": [
                {"role": "system", "content": self._build_prompt()},
                {"role": "user", "content": self._build_user_message(history)},
            ],
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
        }

    async def decide(self, history: str) -> NextStep:
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=self.timeout)
        logger.debug("Sending to OpenAI:\n%s", history)
        try:
            resp = await client.chat.completions.create(**self._request(history))
        except openai.OpenAIError as exc:
            raise OracleError(f"Error calling OpenAI: {exc}") from exc

        content = resp.choices[0].message.content
        if not content:
            raise OracleError("Empty response from OpenAI")
        return self._parse(content)

    async def stream(self, history: str) -> AsyncIterator[OracleChunk]:
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=self.timeout)
        logger.debug("Streaming from OpenAI:\n%s", history)
        tracker = _PartialTracker()
        buffer = ""
        try:
            chunks = await client.chat.completions.create(**self._request(history), stream=True)
            async for chunk in chunks:
                if not chunk.choices or not chunk.choices[0].delta.content:
                    continue
                buffer += chunk.choices[0].delta.content
                partial = tracker.update(buffer)
                if partial is not None:
                    yield OracleChunk(partial=partial)
        except openai.OpenAIError as exc:
            raise OracleError(f"Error calling OpenAI: {exc}") from exc
        yield OracleChunk(step=self._parse(buffer))


@register_oracle("anthropic")
class AnthropicOracle(BaseOracle):
    """Anthropic Claude-based oracle."""

    def _request(self, history: str) -> Dict[str, Any]:
        return {
            "model": settings.ANTHROPIC_MODEL,
            "max_tokens": 4096,
            "system": self._build_prompt(),
            "messages": [{"role": "user", "content": self._build_user_message(history)}],
            "temperature": 0.2,
        }

    async def decide(self, history: str) -> NextStep:
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=self.timeout)
        logger.debug("Sending to Anthropic:\n%s", history)
        try:
            response = await client.messages.create(**self._request(history))
        except anthropic.AnthropicError as exc:
            raise OracleError(f"Error calling Anthropic: {exc}") from exc

        content = "".join(block.text for block in response.content if block.type == "text")
        return self._parse(content)

    async def stream(self, history: str) -> AsyncIterator[OracleChunk]:
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=self.timeout)
        logger.debug("Streaming from Anthropic:\n%s", history)
        tracker = _PartialTracker()
        buffer = ""
        try:
            async with client.messages.stream(**self._request(history)) as stream:
                async for text in stream.text_stream:
                    buffer += text
                    partial = tracker.update(buffer)
                    if partial is not None:
                        yield OracleChunk(partial=partial)
        except anthropic.AnthropicError as exc:
            raise OracleError(f"Error calling Anthropic: {exc}") from exc
        yield OracleChunk(step=self._parse(buffer))
