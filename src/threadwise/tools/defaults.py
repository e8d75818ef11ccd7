"""The registry used by the CLI and the HTTP service."""

from threadwise.memory.result_cache import ResultCache
from threadwise.tools import ToolRegistry
from threadwise.tools.calculator import register_calculator_tools
from threadwise.tools.inpi import (
    InpiScraper,
    InpiTools,
)
from threadwise.tools.think import register_think_tool


def default_registry(cache: ResultCache, scraper: InpiScraper | None = None) -> ToolRegistry:
    """Build a registry with the calculator, ``think`` and INPI tools bound to *cache*."""
    registry = ToolRegistry()
    register_calculator_tools(registry)
    register_think_tool(registry)
    InpiTools(cache, scraper).register(registry)
    return registry
