"""
Linkup Web Search Client

Thin async client over the Linkup search API
(https://api.linkup.so/v1/search). Supports the three output types the
agents use:

- sourcedAnswer: an answer string plus its sources
- searchResults: mixed text / image results
- structured: a JSON object matching a caller-supplied JSON schema

Without LINKUP_API_KEY every method returns a fallback payload instead of
raising, so the agents keep working offline.
"""

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from agentkit.utilities.retry import http_retry

logger = logging.getLogger(__name__)

LINKUP_SEARCH_URL = "https://api.linkup.so/v1/search"

FALLBACK_IMAGE_RESULTS: List[Dict[str, str]] = [
    {"name": "VR Avatar 1", "url": "https://images.unsplash.com/photo-1535223289827-42f1e9919769", "type": "image"},
    {"name": "VR Avatar 2", "url": "https://images.unsplash.com/photo-1622979135225-d2ba269cf1ac", "type": "image"},
    {"name": "VR Avatar 3", "url": "https://images.unsplash.com/photo-1617802690992-15d93263d3a9", "type": "image"},
]

COMPANY_PROFILE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "companyName": {"type": "string"},
        "companyType": {"type": "string"},
        "headline": {"type": "string"},
        "summary": {"type": "string"},
        "location": {"type": "string"},
        "website": {"type": "string"},
        "businessModel": {"type": "string"},
        "competitiveLandscape": {"type": "string"},
        "financials": {"type": "string"},
        "swotAnalysis": {
            "type": "object",
            "properties": {
                "strengths": {"type": "array", "items": {"type": "string"}},
                "weaknesses": {"type": "array", "items": {"type": "string"}},
                "opportunities": {"type": "array", "items": {"type": "string"}},
                "threats": {"type": "array", "items": {"type": "string"}},
            },
        },
        "keyPersonnel": {
            "type": "array",
            "items": {"type": "object", "properties": {"name": {"type": "string"}, "title": {"type": "string"}}},
        },
        "allLinks": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["companyName", "companyType", "headline", "summary", "allLinks"],
}

PERSON_PROFILE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "fullName": {"type": "string"},
        "headline": {"type": "string"},
        "summary": {"type": "string"},
        "location": {"type": "string"},
        "workExperience": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "jobTitle": {"type": "string"},
                    "companyName": {"type": "string"},
                    "startDate": {"type": "string"},
                    "endDate": {"type": "string"},
                },
                "required": ["jobTitle", "companyName"],
            },
        },
        "education": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"institution": {"type": "string"}, "degree": {"type": "string"}},
                "required": ["institution"],
            },
        },
        "skills": {"type": "array", "items": {"type": "string"}},
        "keyAchievements": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["fullName", "headline", "summary"],
}


def extract_domain(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


class LinkupError(Exception):
    """Raised internally when the Linkup API returns an error"""


class LinkupClient:
    """Async Linkup API client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        if api_key is None:
            from agentkit.config import get_settings
            api_key = get_settings().LINKUP_API_KEY
        self.api_key = api_key
        self._http_client = http_client
        self.timeout = timeout
        if not api_key:
            logger.info("Linkup API key not configured; using fallback data for Linkup services")

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    @http_retry()
    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> Any:
        response = await client.post(
            LINKUP_SEARCH_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        response.raise_for_status()
        return response.json()

    async def search(self, query: str, output_type: str, depth: str = "standard", **params: Any) -> Any:
        """Call the search endpoint; raises LinkupError on failure."""
        payload: Dict[str, Any] = {"q": query, "depth": depth, "outputType": output_type}
        payload.update({k: v for k, v in params.items() if v is not None})

        logger.info(f"Linkup search ({output_type}, {depth}): {query[:80]}")
        try:
            if self._http_client is not None:
                return await self._post(self._http_client, payload)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await self._post(client, payload)
        except httpx.HTTPStatusError as e:
            raise LinkupError(f"Linkup API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise LinkupError(f"Linkup request failed: {e}") from e

    async def sourced_answer(self, query: str, depth: str = "deep") -> Dict[str, Any]:
        """Returns ``{"answer": str, "sources": [{name, url, snippet}]}``."""
        if not self.has_credentials:
            return {"answer": f'Linkup API key missing; returning fallback response for "{query}"', "sources": []}
        try:
            data = await self.search(query, "sourcedAnswer", depth=depth)
        except LinkupError as e:
            logger.warning(str(e))
            return {"answer": f"Linkup search failed ({e})", "sources": []}
        return {
            "answer": data.get("answer") or f'Linkup search completed but returned no answer for "{query}"',
            "sources": data.get("sources") if isinstance(data.get("sources"), list) else [],
        }

    async def structured_search(
        self,
        query: str,
        schema: Dict[str, Any],
        depth: str = "standard",
        include_images: bool = False,
    ) -> Dict[str, Any]:
        """
        Structured search. On success returns the object Linkup produced; on
        failure returns ``{"ok": False, "error": ..., "schemaSummary": [...]}``.
        """
        if not self.has_credentials:
            return {
                "ok": False,
                "error": "Linkup API key missing",
                "summary": "Linkup structured search unavailable because no API key is configured.",
                "schemaSummary": list((schema.get("properties") or {}).keys()),
            }
        try:
            data = await self.search(
                query,
                "structured",
                depth=depth,
                structuredOutputSchema=json.dumps(schema),
                includeImages=True if include_images else None,
            )
        except LinkupError as e:
            logger.warning(str(e))
            return {"ok": False, "error": str(e), "schemaSummary": list((schema.get("properties") or {}).keys())}
        if not isinstance(data, dict):
            return {"ok": False, "error": "Unexpected structured response"}
        return data

    async def company_profile(self, company_name: str, depth: str = "standard") -> Dict[str, Any]:
        return await self.structured_search(company_name, COMPANY_PROFILE_SCHEMA, depth=depth)

    async def person_profile(self, full_name_and_company: str, depth: str = "standard") -> Dict[str, Any]:
        return await self.structured_search(full_name_and_company, PERSON_PROFILE_SCHEMA, depth=depth)

    async def image_search(self, query: str, depth: str = "standard") -> List[Dict[str, str]]:
        """Image results as ``[{name, url, type}]``; fixed images when unconfigured."""
        if not self.has_credentials:
            return list(FALLBACK_IMAGE_RESULTS)
        try:
            data = await self.search(query, "searchResults", depth=depth, includeImages=True)
        except LinkupError as e:
            logger.warning(str(e))
            return []
        results = data.get("results") if isinstance(data, dict) else None
        return [
            {"name": r.get("name") or "", "url": r.get("url") or "", "type": r.get("type") or "image"}
            for r in (results or [])
            if r.get("type") == "image"
        ]
