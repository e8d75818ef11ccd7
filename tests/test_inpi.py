"""
INPI trademark tools: HTML parsing, scraping over a mocked transport and the cached-result tools.

Run with:
$ pytest -q
"""

from datetime import date
from typing import List

import httpx
import pytest

from threadwise.agent.tool_executor import dispatch
from threadwise.core.errors import (
    ResultNotFoundError,
    ToolExecutionError,
)
from threadwise.core.schema import (
    TOOL_ERROR,
    NextStep,
)
from threadwise.core.thread import Thread
from threadwise.memory.result_cache import ResultCache
from threadwise.tools.defaults import default_registry
from threadwise.tools.inpi import (
    FetchInpiDataStep,
    FilterInpiResultsStep,
    FindMostRecentTrademarkStep,
    GetInpiDetailsStep,
    InpiFilteredResults,
    InpiScraper,
    InpiTools,
    TrademarkEntry,
    clean_classes,
    extract_total_pages,
    parse_priority_date,
    parse_rows,
)


def _row(numero: str, prioridade: str, marca: str, situacao: str, titular: str, classes: str) -> str:
    return (
        '<tr bgColor="#E0E0E0" class=normal>\n'
        f"<td align=center><a href='/pePI/servlet/MarcasServletController?Action=detail&CodPedido={numero}'>"
        f"{numero}</a></td>\n"
        f"<td align=center>{prioridade}</td>\n"
        "<td>&nbsp;</td>\n"
        f"<td><b>{marca}</b></td>\n"
        "<td>-</td>\n"
        f"<td>{situacao}</td>\n"
        f"<td>{titular}</td>\n"
        f"<td>{classes}</td>\n"
        "</tr>"
    )


PAGE_ONE = (
    "<html><table>"
    + _row("912345678", "10/05/2020", "ACME", "Registro de marca em vigor", "Acme Ltda", "NCL(11) 9")
    + _row("923456789", "01/02/2023", "ACME FOODS", "Arquivado", "Foods SA", "NCL(11) 30")
    + "</table><font>Páginas de Resultados:<br><b>1</b> <a href=\"?page=2\">2</a></font>"
    + "<a href=\"?page=2\">Próxima»</a></html>"
)
PAGE_TWO = (
    "<html><table>"
    + _row("934567890", "-", "ACME TECH", "Registro de marca em vigor", "Acme Ltda", "-")
    + "</table></html>"
)


def _transport(fail_second_page: bool = False) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, text="ok")
        if b"nextPageMarca" in request.content:
            if fail_second_page:
                return httpx.Response(500, text="boom")
            return httpx.Response(200, text=PAGE_TWO)
        assert b"marca=acme" in request.content
        return httpx.Response(200, text=PAGE_ONE)

    return httpx.MockTransport(handler)


def _entries() -> List[TrademarkEntry]:
    return [
        TrademarkEntry(numero="1", prioridade="10/05/2020", situacao="Arquivado", titular="Acme Ltda",
                       classes=["NCL(11) 9"]),
        TrademarkEntry(numero="2", prioridade="31/12/2022", situacao="Registro", titular="Other SA",
                       classes=["NCL(11) 30"]),
        TrademarkEntry(numero="3", prioridade="31/02/2023", situacao="Registro", titular="Acme Ltda"),
        TrademarkEntry(numero="4", prioridade=None, situacao="registro", titular="ACME LTDA",
                       classes=["NCL(11) 9"]),
    ]


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def test_extract_total_pages() -> None:
    """Page count comes from the '...N' link, the pagination block, or defaults to one."""

    assert extract_total_pages('<a href="x?page=40" class="normal">...40</a>') == 40
    assert extract_total_pages(PAGE_ONE) == 2
    assert extract_total_pages("<html></html>") == 1


def test_clean_classes() -> None:
    """Class cells split into one entry per NCL class; '-' means none."""

    assert clean_classes("NCL(11) 9 NCL(11) 42") == ["NCL(11) 9", "NCL(11) 42"]
    assert clean_classes("-") == []


def test_parse_rows() -> None:
    """Rows become entries; '-' cells become None and links become absolute."""

    first, second = parse_rows(PAGE_ONE)
    assert first.numero == "912345678"
    assert first.marca == "ACME"
    assert first.prioridade == "10/05/2020"
    assert first.classes == ["NCL(11) 9"]
    assert first.url.startswith("https://busca.inpi.gov.br/pePI/servlet/")
    assert second.situacao == "Arquivado"

    (third,) = parse_rows(PAGE_TWO)
    assert third.prioridade is None
    assert third.classes is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("10/05/2020", date(2020, 5, 10)),
        ("31/02/2023", None),
        ("2020-05-10", None),
        ("01/01/1800", None),
        (None, None),
    ],
)
def test_parse_priority_date(value, expected) -> None:
    """Only real DD/MM/YYYY dates between 1900 and 2100 parse."""

    assert parse_priority_date(value) == expected


# ---------------------------------------------------------------------------
# Scraper
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_scraper_follows_pagination() -> None:
    """All pages are collected in order."""

    results = await InpiScraper(transport=_transport()).search("acme")
    assert [t.numero for t in results.trademarks] == ["912345678", "923456789", "934567890"]
    assert results.errors == []


@pytest.mark.asyncio
async def test_scraper_reports_page_errors() -> None:
    """A failing page ends the scrape but keeps what was already collected."""

    results = await InpiScraper(transport=_transport(fail_second_page=True)).search("acme")
    assert len(results.trademarks) == 2
    assert len(results.errors) == 1
    assert results.errors[0].startswith("Failed to fetch page 2")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_fetch_caches_full_list(cache: ResultCache) -> None:
    """The oracle gets a summary and a result_id; the list itself stays in the cache."""

    tools = InpiTools(cache, InpiScraper(transport=_transport()))
    summary = await tools.fetch_inpi_data(FetchInpiDataStep(marca="acme"))

    assert summary.summary == "Found 3 trademark(s)."
    assert len(cache.get(summary.result_id)) == 3
    assert summary.render_for_context() == f"result_id: {summary.result_id}\nsummary: Found 3 trademark(s)."


def test_filter_results(cache: ResultCache) -> None:
    """Filters are case-insensitive; situacao and class match exactly, titular by substring."""

    tools = InpiTools(cache)
    result_id = cache.put(_entries())

    result = tools.filter_inpi_results(
        FilterInpiResultsStep(result_id=result_id, situacao="REGISTRO", titular="acme")
    )
    assert [t.numero for t in result.trademarks] == ["3", "4"]

    result = tools.filter_inpi_results(FilterInpiResultsStep(result_id=result_id, classe_ncl="ncl(11) 9"))
    assert [t.numero for t in result.trademarks] == ["1", "4"]

    result = tools.filter_inpi_results(FilterInpiResultsStep(result_id=result_id, titular="nobody"))
    assert result.render_for_context() == "No trademarks matched the filter criteria."


def test_filtered_results_preview_is_limited() -> None:
    """At most five entries are shown, followed by a count of the rest."""

    result = InpiFilteredResults(trademarks=[TrademarkEntry(numero=str(i)) for i in range(7)])
    lines = result.render_for_context().splitlines()
    assert lines[0] == "Found 7 matching trademark(s):"
    assert len(lines) == 7
    assert lines[-1] == "... (and 2 more)"


def test_get_details(cache: ResultCache) -> None:
    """Details are looked up by numero."""

    tools = InpiTools(cache)
    result_id = cache.put(_entries())

    result = tools.get_inpi_details(GetInpiDetailsStep(result_id=result_id, numero="2"))
    assert result.render_for_context().splitlines()[:2] == ["Details for Numero 2:", "Marca: N/A"]
    with pytest.raises(ToolExecutionError):
        tools.get_inpi_details(GetInpiDetailsStep(result_id=result_id, numero="99"))


def test_find_most_recent_skips_invalid_dates(cache: ResultCache) -> None:
    """The latest valid priority date wins; invalid or missing dates are ignored."""

    tools = InpiTools(cache)
    result_id = cache.put(_entries())

    result = tools.find_most_recent_trademark(FindMostRecentTrademarkStep(result_id=result_id))
    assert result.trademark.numero == "2"

    undated = cache.put([TrademarkEntry(numero="5", prioridade="soon")])
    with pytest.raises(ToolExecutionError):
        tools.find_most_recent_trademark(FindMostRecentTrademarkStep(result_id=undated))


def test_unknown_result_id(cache: ResultCache) -> None:
    """Missing or expired ids raise *ResultNotFoundError*."""

    with pytest.raises(ResultNotFoundError) as info:
        InpiTools(cache).find_most_recent_trademark(FindMostRecentTrademarkStep(result_id="gone"))
    assert str(info.value) == "No cached results found for ID: gone"


@pytest.mark.asyncio
async def test_cache_miss_becomes_tool_error(cache: ResultCache) -> None:
    """Through dispatch, an expired result id is reported to the oracle, not raised."""

    thread = Thread()
    registry = default_registry(cache)
    event = await dispatch(NextStep(intent="get_inpi_details", result_id="gone", numero="1"), thread, registry)

    assert event.type == TOOL_ERROR
    assert event.data.message == "No cached results found for ID: gone"
