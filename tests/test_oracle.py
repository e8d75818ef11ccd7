"""
Oracle output parsing, prompt building and log verbosity.

Run with:
$ pytest -q
"""

import logging

import pytest

from threadwise.agent import oracle as oracle_module
from threadwise.agent.oracle import (
    AnthropicOracle,
    OpenAIOracle,
    TGIOracle,
    _PartialTracker,
    _sanitize_json_string,
    extract_partial_message,
    get_oracle_log_level,
    load_oracle,
    parse_next_step,
    resolve_oracle_log_level,
    set_oracle_log_level,
)
from threadwise.core.errors import OracleError
from threadwise.tools import ToolRegistry


def test_sanitize_strips_fences_and_trailing_text() -> None:
    """Code fences and chatter around the object are removed."""

    raw = 'Sure!\n```json\n{"intent": "add", "a": 1, "b": 2}\n```\nanything else?'
    assert _sanitize_json_string(raw) == '{"intent": "add", "a": 1, "b": 2}'


def test_sanitize_keeps_braces_inside_strings() -> None:
    """Braces inside string values do not end the object."""

    raw = '{"intent": "done_for_now", "message": "use {x} and }"} trailing'
    assert _sanitize_json_string(raw) == '{"intent": "done_for_now", "message": "use {x} and }"}'


def test_parse_next_step_keeps_extra_fields_in_order() -> None:
    """Intent-specific fields survive parsing in the order they were produced."""

    step = parse_next_step('{"intent": "filter_inpi_results", "result_id": "abc", "situacao": "Registro"}')
    assert step.intent == "filter_inpi_results"
    assert list(step.params()) == ["result_id", "situacao"]
    assert not step.is_terminal


@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        '["intent", "add"]',
        '{"a": 1}',
    ],
)
def test_parse_next_step_rejects_bad_output(content: str) -> None:
    """Malformed output, non-objects and missing intents raise *OracleError*."""

    with pytest.raises(OracleError):
        parse_next_step(content)


def test_extract_partial_message() -> None:
    """The message field is read from incomplete JSON."""

    assert extract_partial_message('{"intent": "done_for_now"') is None
    assert extract_partial_message('{"intent": "done_for_now", "message": "Hel') == "Hel"
    assert extract_partial_message('{"message": "line\\nnext') == "line\nnext"
    # A dangling escape is dropped until it is complete
    assert extract_partial_message('{"message": "caf\\u00') == "caf"


def test_partial_tracker_only_emits_growth() -> None:
    """Partials are emitted only when the message grows as a prefix."""

    tracker = _PartialTracker()
    assert tracker.update('{"intent": "done_for_now", "message": "He') == "He"
    assert tracker.update('{"intent": "done_for_now", "message": "He') is None
    assert tracker.update('{"intent": "done_for_now", "message": "Hello') == "Hello"


def test_prompt_lists_terminal_and_tool_intents(registry: ToolRegistry) -> None:
    """The system prompt names both terminal intents and every registered tool."""

    prompt = TGIOracle(tool_schemas=registry.schemas())._build_prompt()
    assert "- done_for_now(message: str)" in prompt
    assert "- request_more_information(message: str)" in prompt
    assert "- add(a: float, b: float): Add b to a." in prompt
    assert "situacao: " in prompt and "(optional)" in prompt


def test_load_oracle() -> None:
    """Oracles are looked up by name, case-insensitively."""

    assert isinstance(load_oracle("tgi"), TGIOracle)
    assert isinstance(load_oracle("OpenAI"), OpenAIOracle)
    assert isinstance(load_oracle("anthropic"), AnthropicOracle)
    with pytest.raises(ValueError):
        load_oracle("nope")


@pytest.mark.parametrize(
    ("debug", "env_value", "expected"),
    [
        (False, "", "OFF"),
        (True, "", "INFO"),
        (True, "debug", "DEBUG"),
        (False, "Info", "INFO"),
        (True, "off", "OFF"),
    ],
)
def test_resolve_oracle_log_level(debug: bool, env_value: str, expected: str) -> None:
    """ORACLE_LOG wins over --debug, which wins over the default."""

    assert resolve_oracle_log_level(debug=debug, env_value=env_value) == expected


def test_resolve_oracle_log_level_rejects_unknown() -> None:
    """Unknown verbosity names are an error."""

    with pytest.raises(ValueError):
        resolve_oracle_log_level(env_value="loud")


@pytest.mark.usefixtures("oracle_log_levels")
def test_set_oracle_log_level() -> None:
    """OFF silences the oracle logger; other levels map to logging levels."""

    set_oracle_log_level("OFF")
    assert get_oracle_log_level() == "OFF"
    assert not oracle_module.logger.isEnabledFor(logging.CRITICAL)
    set_oracle_log_level("debug")
    assert get_oracle_log_level() == "DEBUG"


@pytest.mark.usefixtures("oracle_log_levels")
def test_oracle_log_level_governs_tool_loggers() -> None:
    """Scraper and other tool chatter follow the oracle verbosity."""

    scraper_logger = logging.getLogger("threadwise.tools.inpi")

    set_oracle_log_level("OFF")
    assert not scraper_logger.isEnabledFor(logging.WARNING)
    set_oracle_log_level("INFO")
    assert scraper_logger.isEnabledFor(logging.INFO)
    assert not scraper_logger.isEnabledFor(logging.DEBUG)
