"""
Specialized Agents - Web, Media, SEC and Document agents

Each agent receives the user's query unchanged and returns markdown. Web,
media and SEC results also carry an HTML comment marker holding gallery
JSON that the chat UI renders as cards:

    <!-- SOURCE_GALLERY_DATA
    [{"title": ..., "url": ..., "domain": ...}]
    -->
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from agentkit.agents.base_agent import AgentContext, AgentOutput, BaseAgent
from agentkit.tools.sec_edgar import SecEdgarClient
from agentkit.tools.web_search import LinkupClient, extract_domain
from agentkit.tools.youtube import YouTubeClient
from hub.resilience import require_user
from hub.services import documents as document_service

logger = logging.getLogger(__name__)

MAX_SOURCES = 10
MAX_LISTED_SOURCES = 5


def gallery_marker(tag: str, items: List[Dict[str, Any]]) -> str:
    return f"<!-- {tag}\n{json.dumps(items, indent=2, ensure_ascii=False)}\n-->"


# =============================================================================
# Web
# =============================================================================

class WebAgent(BaseAgent):
    """Answers with a Linkup sourced answer and a source gallery."""

    def __init__(self, linkup: Optional[LinkupClient] = None, **kwargs):
        super().__init__("WebAgent", agent_type="web", **kwargs)
        self.linkup = linkup or LinkupClient()

    async def handle(self, query: str, context: AgentContext) -> AgentOutput:
        result = await self.linkup.sourced_answer(query)
        sources = [
            {"title": s.get("name") or s.get("url", ""), "url": s.get("url", ""), "domain": extract_domain(s.get("url", ""))}
            for s in result["sources"][:MAX_SOURCES]
            if s.get("url")
        ]

        parts = [result["answer"]]
        if sources:
            listed = "\n".join(
                f"{i}. [{s['title']}]({s['url']})" for i, s in enumerate(sources[:MAX_LISTED_SOURCES], start=1)
            )
            parts.append(f"## Sources\n\n{listed}")
            parts.append(gallery_marker("SOURCE_GALLERY_DATA", sources))

        return AgentOutput(text="\n\n".join(parts), sources=sources)


# =============================================================================
# Media
# =============================================================================

class MediaAgent(BaseAgent):
    """YouTube videos plus Linkup image results."""

    def __init__(self, youtube: Optional[YouTubeClient] = None, linkup: Optional[LinkupClient] = None, **kwargs):
        super().__init__("MediaAgent", agent_type="media", **kwargs)
        self.youtube = youtube or YouTubeClient()
        self.linkup = linkup or LinkupClient()

    async def handle(self, query: str, context: AgentContext) -> AgentOutput:
        videos = await self.youtube.search_videos(query)
        images = await self.linkup.image_search(query)

        parts = []
        if videos:
            listed = "\n".join(f"- [{v['title']}]({v['url']}) ({v['channel']})" for v in videos)
            parts.append(f"## Videos\n\n{listed}")
            parts.append(gallery_marker("YOUTUBE_GALLERY_DATA", videos))
        if images:
            rendered = " ".join(f"![{img['name'] or 'Image'}]({img['url']})" for img in images[:MAX_SOURCES])
            parts.append(f"## Images\n\n{rendered}")
        if not parts:
            parts.append(f'No videos or images found for "{query}".')

        return AgentOutput(
            text="\n\n".join(parts),
            sources=[{"title": v["title"], "url": v["url"], "domain": "youtube.com"} for v in videos],
            data={"videos": videos, "images": images},
        )


# =============================================================================
# SEC
# =============================================================================

FORM_PATTERN = re.compile(r"\b(10-K|10-Q|8-K|DEF 14A|S-1)\b", re.IGNORECASE)
TICKER_PATTERN = re.compile(r"\b[A-Z]{1,5}\b")
NON_TICKERS = {"SEC", "EDGAR", "K", "Q", "I", "A", "DEF", "S"}
SEC_STOP_WORDS = {
    "sec", "edgar", "filing", "filings", "file", "latest", "recent", "show", "find", "get", "me", "the",
    "for", "of", "list", "a", "an", "and", "please", "what", "are", "is", "from", "annual", "quarterly",
    "report", "reports", "company", "s", "its", "their",
}


def parse_sec_query(query: str) -> tuple[Optional[str], Optional[str]]:
    """Return (company term, form type) from a free-text filing request."""
    form_match = FORM_PATTERN.search(query)
    form_type = form_match.group(1).upper() if form_match else None
    stripped = FORM_PATTERN.sub(" ", query)

    tickers = [t for t in TICKER_PATTERN.findall(stripped) if t not in NON_TICKERS]
    if tickers:
        return tickers[0], form_type

    words = [w for w in re.findall(r"[A-Za-z0-9&.\-]+", stripped) if w.lower() not in SEC_STOP_WORDS]
    term = " ".join(words).strip(" .-")
    return (term or None), form_type


class SECAgent(BaseAgent):
    """Resolves a company on EDGAR and lists its recent filings."""

    def __init__(self, edgar: Optional[SecEdgarClient] = None, max_filings: int = 5, **kwargs):
        super().__init__("SECAgent", agent_type="sec", **kwargs)
        self.edgar = edgar or SecEdgarClient()
        self.max_filings = max_filings

    async def handle(self, query: str, context: AgentContext) -> AgentOutput:
        term, form_type = parse_sec_query(query)
        if not term:
            return AgentOutput(text="Please tell me which company's SEC filings you want (a ticker or company name).")

        matches = await self.edgar.lookup_company(term)
        if not matches:
            return AgentOutput(text=f'No SEC registrant found matching "{term}".')

        best = matches[0]
        filings = await self.edgar.list_filings(best.cik, form_type=form_type, limit=self.max_filings)
        label = f"{best.name} ({best.ticker})" if best.ticker else best.name

        if not filings:
            what = f"{form_type} filings" if form_type else "recent filings"
            parts = [f"No {what} found for {label}."]
        else:
            listed = "\n".join(
                f"- **{f.form}** filed {f.filing_date}: [{f.primary_document or f.accession_number}]({f.document_url})"
                for f in filings
            )
            parts = [f"## SEC filings for {label}\n\n{listed}"]

        gallery = [
            {"title": f"{best.name} {f.form} ({f.filing_date})", "url": f.document_url, "domain": "sec.gov"}
            for f in filings
        ]
        if gallery:
            parts.append(gallery_marker("SOURCE_GALLERY_DATA", gallery))

        alternatives = matches[1:4]
        if alternatives:
            others = ", ".join(f"{m.name} ({m.ticker})" if m.ticker else m.name for m in alternatives)
            parts.append(f"Other possible matches: {others}")

        return AgentOutput(
            text="\n\n".join(parts),
            sources=gallery,
            data={"company": best.to_dict(), "formType": form_type, "filings": [f.to_dict() for f in filings]},
        )


# =============================================================================
# Documents
# =============================================================================

CREATE_PATTERN = re.compile(r"\b(create|new|make)\b")
EDIT_PATTERN = re.compile(r"\b(add|update|edit|append)\b")
TITLE_PATTERN = re.compile(r"(?:titled|called|named)\s+[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE)


def extract_document_title(query: str) -> str:
    match = TITLE_PATTERN.search(query)
    if match:
        return match.group(1).strip(" .")
    about = re.search(r"\babout\s+(.+)$", query, re.IGNORECASE)
    if about:
        return about.group(1).strip(" .").capitalize()
    return "New Document"


def extract_edit_content(query: str) -> str:
    """Text after the first colon, or the whole request."""
    if ":" in query:
        content = query.split(":", 1)[1].strip()
        if content:
            return content
    return query.strip()


class DocumentAgent(BaseAgent):
    """Creates, finds, reads and appends to the user's documents."""

    def __init__(self, **kwargs):
        super().__init__("DocumentAgent", agent_type="document", **kwargs)

    async def handle(self, query: str, context: AgentContext) -> AgentOutput:
        user_id = require_user(context.user_id)
        session = context.session
        lowered = query.lower()

        if CREATE_PATTERN.search(lowered) and "document" in lowered:
            title = extract_document_title(query)
            document = document_service.create_document(session, user_id, title)
            return AgentOutput(
                text=f'Created document "{document.title}".',
                data={"action": "create", "documentId": document.id, "title": document.title},
            )

        if context.selected_document_id:
            candidates = [document_service.get_document(session, user_id, context.selected_document_id)]
        else:
            candidates = document_service.find_documents_by_title(session, user_id, query)

        if not candidates:
            recent = document_service.list_documents(session, user_id, limit=5)
            if not recent:
                return AgentOutput(text="You don't have any documents yet.", data={"action": "none"})
            listed = "\n".join(f"- {d.title}" for d in recent)
            return AgentOutput(
                text=f"I couldn't find a document matching your request. Your recent documents:\n\n{listed}",
                data={"action": "list", "documentIds": [d.id for d in recent]},
            )

        best = candidates[0]
        if EDIT_PATTERN.search(lowered):
            content = extract_edit_content(query)
            best = document_service.get_document_for_edit(session, user_id, best.id)
            document_service.append_node(session, best, content, author_id=user_id)
            logger.info(f"Appended content to document {best.id}")
            return AgentOutput(
                text=f'Updated "{best.title}" with:\n\n{content}',
                data={"action": "edit", "documentId": best.id},
            )

        chunk = document_service.read_first_chunk(session, user_id, best.id)
        parts = [f"## {best.title}", chunk["chunk"] or "_This document is empty._"]
        if not chunk["isEnd"]:
            parts.append("_(document continues)_")
        if len(candidates) > 1:
            parts.append("Other matching documents: " + ", ".join(d.title for d in candidates[1:]))
        return AgentOutput(text="\n\n".join(parts), data={"action": "read", **chunk})
