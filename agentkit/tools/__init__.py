"""
Tools Module - Clients for the external research APIs used by the agents

- LinkupClient: sourced answers, structured (schema) search and image search
- SecEdgarClient: company lookup and filing lists from SEC EDGAR
- YouTubeClient: video search through the YouTube Data API

Every client degrades to an empty or fallback result when its credentials
are missing, so the agents keep working in local development.
"""

from agentkit.tools.sec_edgar import CompanyMatch, Filing, SecEdgarClient, pad_cik
from agentkit.tools.web_search import (
    COMPANY_PROFILE_SCHEMA,
    PERSON_PROFILE_SCHEMA,
    LinkupClient,
    LinkupError,
    extract_domain,
)
from agentkit.tools.youtube import YouTubeClient

__all__ = [
    # Linkup
    "LinkupClient",
    "LinkupError",
    "COMPANY_PROFILE_SCHEMA",
    "PERSON_PROFILE_SCHEMA",
    "extract_domain",
    # SEC EDGAR
    "SecEdgarClient",
    "CompanyMatch",
    "Filing",
    "pad_cik",
    # YouTube
    "YouTubeClient",
]
