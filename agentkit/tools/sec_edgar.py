"""
SEC EDGAR Client

Resolves companies through the EDGAR ticker index
(https://www.sec.gov/files/company_tickers.json) and lists recent filings
from the submissions API (https://data.sec.gov/submissions/CIK##########.json).
EDGAR requires a descriptive User-Agent on every request.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import httpx

from agentkit.utilities.retry import http_retry

logger = logging.getLogger(__name__)

TICKERS_URL = "https://www.sec.gov/files/company_tickers.json"
SUBMISSIONS_URL = "https://data.sec.gov/submissions/CIK{cik}.json"
ARCHIVE_URL = "https://www.sec.gov/Archives/edgar/data/{cik}/{accession}/{document}"
FILING_INDEX_URL = "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany&CIK={cik}&type={form}"

MAX_COMPANY_MATCHES = 10


@dataclass
class CompanyMatch:
    cik: str
    name: str
    ticker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Filing:
    form: str
    filing_date: str
    accession_number: str
    primary_document: str
    document_url: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def pad_cik(cik: str | int) -> str:
    return str(cik).strip().lstrip("0").zfill(10)


class SecEdgarClient:
    """Async EDGAR client."""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        if user_agent is None:
            from agentkit.config import get_settings
            user_agent = get_settings().SEC_USER_AGENT
        self.user_agent = user_agent
        self._http_client = http_client
        self.timeout = timeout
        self._tickers: Optional[List[Dict[str, Any]]] = None

    @http_retry()
    async def _get_json(self, client: httpx.AsyncClient, url: str) -> Any:
        response = await client.get(url, headers={"User-Agent": self.user_agent})
        response.raise_for_status()
        return response.json()

    async def _fetch(self, url: str) -> Any:
        if self._http_client is not None:
            return await self._get_json(self._http_client, url)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._get_json(client, url)

    async def _ticker_index(self) -> List[Dict[str, Any]]:
        if self._tickers is None:
            data = await self._fetch(TICKERS_URL)
            self._tickers = list(data.values()) if isinstance(data, dict) else list(data or [])
        return self._tickers

    async def lookup_company(self, query: str) -> List[CompanyMatch]:
        """
        Match a ticker or company name against the EDGAR index.

        An exact ticker match comes first, then exact name matches, then
        substring matches; at most ten results.
        """
        term = query.strip().lower()
        if not term:
            return []

        exact_ticker, exact_name, partial = [], [], []
        for company in await self._ticker_index():
            name = str(company.get("title", ""))
            ticker = str(company.get("ticker", ""))
            match = CompanyMatch(cik=pad_cik(company.get("cik_str", "")), name=name, ticker=ticker or None)
            if ticker.lower() == term:
                exact_ticker.append(match)
            elif name.lower() == term:
                exact_name.append(match)
            elif term in name.lower() or term in ticker.lower():
                partial.append(match)

        matches = (exact_ticker + exact_name + partial)[:MAX_COMPANY_MATCHES]
        logger.info(f"EDGAR lookup '{query}': {len(matches)} match(es)")
        return matches

    async def list_filings(self, cik: str, form_type: Optional[str] = None, limit: int = 10) -> List[Filing]:
        """Recent filings for a CIK, newest first, optionally filtered by form."""
        padded = pad_cik(cik)
        data = await self._fetch(SUBMISSIONS_URL.format(cik=padded))
        recent = (data.get("filings") or {}).get("recent") or {}
        forms = recent.get("form") or []
        dates = recent.get("filingDate") or []
        accessions = recent.get("accessionNumber") or []
        documents = recent.get("primaryDocument") or []

        wanted = form_type.upper() if form_type and form_type.upper() != "ALL" else None
        filings: List[Filing] = []
        for i, form in enumerate(forms):
            if wanted and form.upper() != wanted:
                continue
            accession = accessions[i] if i < len(accessions) else ""
            document = documents[i] if i < len(documents) else ""
            filings.append(Filing(
                form=form,
                filing_date=dates[i] if i < len(dates) else "",
                accession_number=accession,
                primary_document=document,
                document_url=ARCHIVE_URL.format(cik=int(padded), accession=accession.replace("-", ""), document=document),
            ))
            if len(filings) >= limit:
                break
        return filings
