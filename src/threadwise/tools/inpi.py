"""
Brazilian trademark registry (INPI) tools.

``fetch_inpi_data`` scrapes every result page of the public INPI trademark search, stores the full
list in the :class:`~threadwise.memory.result_cache.ResultCache` and hands the oracle only a summary
and a ``result_id``.  The other tools take that ``result_id`` and work on the cached list:

* ``filter_inpi_results`` - narrow by situacao, titular and NCL class;
* ``get_inpi_details`` - one entry by its process number;
* ``find_most_recent_trademark`` - the entry with the latest priority date.

A missing or expired ``result_id`` raises :class:`~threadwise.core.errors.ResultNotFoundError`, which
the dispatcher records as a ``tool_error`` so the oracle can decide to fetch again.
"""

import logging
import re
from datetime import date
from typing import (
    List,
    Literal,
    Tuple,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from threadwise.config import settings
from threadwise.core.errors import (
    ResultNotFoundError,
    ToolExecutionError,
)
from threadwise.core.schema import ToolResult
from threadwise.memory.result_cache import ResultCache
from threadwise.tools import ToolRegistry

logger = logging.getLogger(__name__)

INPI_BASE_URL = "https://busca.inpi.gov.br"
LOGIN_URL = f"{INPI_BASE_URL}/pePI/servlet/LoginController?action=login"
SEARCH_URL = f"{INPI_BASE_URL}/pePI/servlet/MarcasServletController"

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko)",
    "Referer": f"{INPI_BASE_URL}/pePI/jsp/marcas/Pesquisa_classe_basica.jsp",
    "Origin": INPI_BASE_URL,
}

FILTER_PREVIEW_LIMIT = 5


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------
class TrademarkEntry(BaseModel):
    """One row of the INPI search results; ``-`` cells are stored as *None*."""

    numero: str | None = None
    prioridade: str | None = None
    marca: str | None = None
    situacao: str | None = None
    titular: str | None = None
    classes: List[str] | None = None
    url: str | None = None


class ScrapeResults(BaseModel):
    """Everything one search produced, including non-fatal page errors."""

    trademarks: List[TrademarkEntry] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class InpiFetchSummary(ToolResult):
    """Result of ``fetch_inpi_data``."""

    kind: Literal["inpi_fetch_summary"] = "inpi_fetch_summary"
    result_id: str
    summary: str

    def render_for_context(self) -> str:
        return f"result_id: {self.result_id}\nsummary: {self.summary}"


class InpiFilteredResults(ToolResult):
    """Result of ``filter_inpi_results``."""

    kind: Literal["inpi_filtered_results"] = "inpi_filtered_results"
    trademarks: List[TrademarkEntry]

    def render_for_context(self) -> str:
        if not self.trademarks:
            return "No trademarks matched the filter criteria."
        lines = [f"Found {len(self.trademarks)} matching trademark(s):"]
        for t in self.trademarks[:FILTER_PREVIEW_LIMIT]:
            lines.append(
                f"- Numero: {t.numero or 'N/A'}, Marca: {t.marca or 'N/A'}, "
                f"Situacao: {t.situacao or 'N/A'}, Titular: {t.titular or 'N/A'}"
            )
        if len(self.trademarks) > FILTER_PREVIEW_LIMIT:
            lines.append(f"... (and {len(self.trademarks) - FILTER_PREVIEW_LIMIT} more)")
        return "\n".join(lines)


class TrademarkEntryResult(ToolResult):
    """Result of ``get_inpi_details`` and ``find_most_recent_trademark``."""

    kind: Literal["inpi_trademark_entry"] = "inpi_trademark_entry"
    trademark: TrademarkEntry

    def render_for_context(self) -> str:
        t = self.trademark
        return "\n".join(
            [
                f"Details for Numero {t.numero}:",
                f"Marca: {t.marca or 'N/A'}",
                f"Prioridade: {t.prioridade or 'N/A'}",
                f"Situacao: {t.situacao or 'N/A'}",
                f"Titular: {t.titular or 'N/A'}",
                f"Classes: {', '.join(t.classes) if t.classes else 'N/A'}",
                f"URL: {t.url or 'N/A'}",
            ]
        )


# Step parameters --------------------------------------------------------------
class FetchInpiDataStep(BaseModel):
    """Parameters of ``fetch_inpi_data``."""

    marca: str = Field(..., description="Trademark name to search for")


class FilterInpiResultsStep(BaseModel):
    """Parameters of ``filter_inpi_results``."""

    result_id: str
    situacao: str | None = None
    titular: str | None = None
    classe_ncl: str | None = None


class GetInpiDetailsStep(BaseModel):
    """Parameters of ``get_inpi_details``."""

    result_id: str
    numero: str


class FindMostRecentTrademarkStep(BaseModel):
    """Parameters of ``find_most_recent_trademark``."""

    result_id: str


# ---------------------------------------------------------------------------
# HTML parsing helpers
# ---------------------------------------------------------------------------
_TOTAL_PAGES_LINK = re.compile(r'page=(\d+)" class="normal">\.{3}(\d+)</a>')
_PAGINATION_SECTION = re.compile(r"Páginas de Resultados:<br>([\s\S]*?)</font>")
_PAGE_NUMBER = re.compile(r"page=(\d+)|<b>(\d+)</b>")
_ROW = re.compile(
    r'<tr bgColor="#E0E0E0" class=normal>[\s\S]*?</tr>|<tr bgColor="white" class=normal>[\s\S]*?</tr>'
)
_COLUMN = re.compile(r"<td.*?>([\s\S]*?)</td>")
_LINK_TEXT = re.compile(r"<a.*?>([\s\S]*?)</a>")
_LINK_HREF = re.compile(r"<a\s+href=['\"]([^'\"]+)['\"]")
_BOLD = re.compile(r"<b>([\s\S]*?)</b>")
_TAG = re.compile(r"<[^>]+>")
_NCL_CLASS = re.compile(r"NCL\([\d]+\)[^NCL]+")
_PRIORITY_DATE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_NEXT_PAGE_LINK = ">Próxima»</a>"


def extract_total_pages(content: str) -> int:
    """Return the number of result pages announced by a search page (at least 1)."""
    match = _TOTAL_PAGES_LINK.search(content)
    if match:
        return int(match.group(2))
    section = _PAGINATION_SECTION.search(content)
    if section:
        pages = [int(a or b) for a, b in _PAGE_NUMBER.findall(section.group(1))]
        if pages:
            return max(pages)
    return 1


def clean_classes(text: str) -> List[str]:
    """Split a classes cell into individual ``NCL(n) ...`` entries."""
    classes = _NCL_CLASS.findall(text) or [text]
    cleaned = [re.sub(r"\s+", " ", c.strip()) for c in classes]
    return [c for c in cleaned if c and c != "-"]


def _strip_tags(html: str) -> str:
    return _TAG.sub("", html).strip()


def _or_none(value: str) -> str | None:
    return None if value == "-" else value


def parse_rows(content: str) -> List[TrademarkEntry]:
    """Extract trademark entries from one result page."""
    entries: List[TrademarkEntry] = []
    for row in _ROW.findall(content):
        columns = [col.replace("\u00a0", " ").strip() for col in _COLUMN.findall(row)]
        if len(columns) < 8:
            logger.warning("Skipping row with less than 8 columns")
            continue

        url = None
        href = _LINK_HREF.search(columns[0])
        if href:
            url = href.group(1).strip()
            if url.startswith("/"):
                url = f"{INPI_BASE_URL}{url}"
        link_text = _LINK_TEXT.search(columns[0])
        numero = _strip_tags(link_text.group(1) if link_text else columns[0])

        bold = _BOLD.search(columns[3])
        marca = _strip_tags(bold.group(1) if bold else columns[3])
        classes = clean_classes(_strip_tags(columns[7]))

        entries.append(
            TrademarkEntry(
                numero=_or_none(numero),
                prioridade=_or_none(_strip_tags(columns[1])),
                marca=_or_none(marca),
                situacao=_or_none(_strip_tags(columns[5])),
                titular=_or_none(_strip_tags(columns[6])),
                classes=classes or None,
                url=url,
            )
        )
    return entries


def parse_priority_date(value: str | None) -> date | None:
    """Parse a ``DD/MM/YYYY`` priority date; *None* for anything invalid."""
    if not value:
        return None
    match = _PRIORITY_DATE.match(value)
    if not match:
        logger.warning("Invalid date format encountered: %s", value)
        return None
    day, month, year = (int(part) for part in match.groups())
    if not 1900 <= year <= 2100:
        logger.warning("Date out of range: %s", value)
        return None
    try:
        return date(year, month, day)
    except ValueError:
        logger.warning("Invalid date components: %s", value)
        return None


# ---------------------------------------------------------------------------
# Scraper
# ---------------------------------------------------------------------------
class InpiScraper:
    """Runs a trademark search against INPI and follows its pagination."""

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = settings.SCRAPER_TIMEOUT if timeout is None else timeout
        self._transport = transport

    async def search(self, marca: str) -> ScrapeResults:
        """
        Scrape all result pages for *marca*.

        HTTP failures do not raise: they end the scrape and are reported in ``errors`` next to
        whatever was collected before them.
        """
        results = ScrapeResults()
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=_HEADERS,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            try:
                # Opens the session; the cookie jar keeps it for the searches below.
                await client.get(LOGIN_URL)
                content = await self._post(
                    client,
                    {
                        "buscaExata": "nao",
                        "txt": "Pesquisa+Radical",
                        "marca": marca,
                        "classeInter": "",
                        "registerPerPage": "29",
                        "Action": "searchMarca",
                        "tipoPesquisa": "BY_MARCA_CLASSIF_BASICA",
                    },
                )
            except httpx.HTTPError as exc:
                results.errors.append(f"Request failed during search/pagination: {exc}")
                return results

            total_pages, page = extract_total_pages(content), 1
            logger.info("Total pages found: %d", total_pages)
            while page <= total_pages:
                if page > 1:
                    try:
                        content = await self._post(
                            client, {"Action": "nextPageMarca", "page": str(page)}
                        )
                    except httpx.HTTPError as exc:
                        results.errors.append(f"Failed to fetch page {page}: {exc}")
                        break

                rows = parse_rows(content)
                logger.debug("Found %d rows on page %d", len(rows), page)
                results.trademarks.extend(rows)

                if page < total_pages and _NEXT_PAGE_LINK not in content:
                    logger.warning(
                        "Next-page link missing on page %d of %d; stopping", page, total_pages
                    )
                    break
                page += 1
        return results

    @staticmethod
    async def _post(client: httpx.AsyncClient, data: dict) -> str:
        response = await client.post(SEARCH_URL, data=data)
        response.raise_for_status()
        return response.text


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------
class InpiTools:
    """The four INPI intents, bound to a result cache and a scraper."""

    def __init__(self, cache: ResultCache, scraper: InpiScraper | None = None) -> None:
        self.cache = cache
        self.scraper = scraper or InpiScraper()

    def _cached(self, result_id: str) -> List[TrademarkEntry]:
        trademarks = self.cache.get(result_id)
        if trademarks is None:
            logger.error("No cached results found for ID: %s", result_id)
            raise ResultNotFoundError(result_id)
        return trademarks

    async def fetch_inpi_data(self, step: FetchInpiDataStep) -> InpiFetchSummary:
        """Search INPI for a trademark name; returns a result_id for the other INPI tools."""
        logger.info("Starting INPI fetch for marca: %s", step.marca)
        results = await self.scraper.search(step.marca)
        result_id = self.cache.put(results.trademarks)

        summary = f"Found {len(results.trademarks)} trademark(s)."
        if results.errors:
            summary += f" Encountered errors: {', '.join(results.errors)}"
        logger.info("INPI fetch complete for %s. Result ID: %s", step.marca, result_id)
        return InpiFetchSummary(result_id=result_id, summary=summary)

    def filter_inpi_results(self, step: FilterInpiResultsStep) -> InpiFilteredResults:
        """Filter fetched results by situacao, titular and/or NCL class."""
        situacao = step.situacao.lower() if step.situacao else None
        titular = step.titular.lower() if step.titular else None
        classe = step.classe_ncl.lower() if step.classe_ncl else None

        def matches(t: TrademarkEntry) -> bool:
            if situacao and (t.situacao or "").lower() != situacao:
                return False
            if titular and titular not in (t.titular or "").lower():
                return False
            if classe and not any(c.lower() == classe for c in t.classes or []):
                return False
            return True

        filtered = [t for t in self._cached(step.result_id) if matches(t)]
        logger.info("Filtering %s matched %d trademarks", step.result_id, len(filtered))
        return InpiFilteredResults(trademarks=filtered)

    def get_inpi_details(self, step: GetInpiDetailsStep) -> TrademarkEntryResult:
        """Show every field of one fetched trademark, by its numero."""
        for trademark in self._cached(step.result_id):
            if trademark.numero == step.numero:
                return TrademarkEntryResult(trademark=trademark)
        raise ToolExecutionError(
            f"Trademark with Numero {step.numero} not found in results for ID: {step.result_id}"
        )

    def find_most_recent_trademark(
        self, step: FindMostRecentTrademarkStep
    ) -> TrademarkEntryResult:
        """Find the fetched trademark with the latest prioridade date."""
        trademarks = self._cached(step.result_id)
        if not trademarks:
            raise ToolExecutionError(
                "No trademarks found in the results to determine the most recent."
            )

        latest: Tuple[date, TrademarkEntry] | None = None
        for trademark in trademarks:
            priority = parse_priority_date(trademark.prioridade)
            if priority is None:
                logger.debug("Skipping entry with unparseable date: %s", trademark.numero)
                continue
            if latest is None or priority > latest[0]:
                latest = (priority, trademark)

        if latest is None:
            raise ToolExecutionError(
                "Could not determine the most recent trademark as no valid "
                "'Prioridade' dates were found."
            )
        return TrademarkEntryResult(trademark=latest[1])

    def register(self, registry: ToolRegistry) -> None:
        """Register the four INPI intents on *registry*."""
        registry.register("fetch_inpi_data", params=FetchInpiDataStep)(self.fetch_inpi_data)
        registry.register("filter_inpi_results", params=FilterInpiResultsStep)(
            self.filter_inpi_results
        )
        registry.register("get_inpi_details", params=GetInpiDetailsStep)(self.get_inpi_details)
        registry.register("find_most_recent_trademark", params=FindMostRecentTrademarkStep)(
            self.find_most_recent_trademark
        )
