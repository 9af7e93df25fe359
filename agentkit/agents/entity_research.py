"""
Entity Research Agent

Researches companies and people with Linkup structured search and caches
the result as an entity context:

1. Cache first: a fresh cached context is served directly (and its access
   count bumped) unless a refresh is forced.
2. Up to two Linkup attempts; the second uses an enhanced query. Each
   result is scored for completeness and a passing result stops early.
3. Key facts are extracted, the context is stored, and the rendering is
   tagged with a quality badge.

Company results also carry CRM fields (see crm_fields.py); the industry,
founding year and notable entities are read from the research by the LLM.

handle() wraps this for free-text requests: it extracts the entities
(LLM JSON, falling back to spaCy ORG/PERSON recognition when the optional
"nlp" extra is installed), researches each and asks the LLM to evaluate the
answer.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agentkit.agents.base_agent import AgentContext, AgentOutput, BaseAgent
from agentkit.agents.crm_fields import CRMInference, extract_crm_fields
from agentkit.config import get_settings
from agentkit.tools.web_search import LinkupClient
from hub.core.models import EntityTypeEnum, from_ms
from hub.services import entity_contexts

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2
PASSING_PERCENTAGE = 60
EMPTY_MARKERS = {"n/a", "not specified"}

COMPANY_CRITICAL_FIELDS = ["summary", "headline", "location", "website", "companyType"]
COMPANY_FIELDS = COMPANY_CRITICAL_FIELDS + ["businessModel", "competitiveLandscape", "financials", "swotAnalysis"]
PERSON_CRITICAL_FIELDS = ["summary", "headline", "fullName"]
PERSON_FIELDS = PERSON_CRITICAL_FIELDS + ["location", "workExperience", "education", "skills"]

COMPANY_LABELS = {"ORG"}
PERSON_LABELS = {"PERSON"}

_nlp_cache: Dict[str, Any] = {}
_nlp_lock = asyncio.Lock()


@dataclass
class CompletenessScore:
    total_fields: int
    populated_fields: int
    completeness_percentage: int
    critical_fields_missing: List[str] = field(default_factory=list)
    is_passing: bool = False


def is_populated(value: Any) -> bool:
    """Present, non-blank, not an empty collection and not a placeholder."""
    if value is None:
        return False
    if isinstance(value, str):
        stripped = value.strip()
        return bool(stripped) and stripped.lower() not in EMPTY_MARKERS
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


def evaluate_completeness(data: Dict[str, Any], entity_type: EntityTypeEnum | str) -> CompletenessScore:
    entity_type = EntityTypeEnum(entity_type)
    if entity_type == EntityTypeEnum.COMPANY:
        fields, critical = COMPANY_FIELDS, COMPANY_CRITICAL_FIELDS
    else:
        fields, critical = PERSON_FIELDS, PERSON_CRITICAL_FIELDS

    populated = sum(1 for name in fields if is_populated(data.get(name)))
    missing = [name for name in critical if not is_populated(data.get(name))]
    percentage = int(100 * populated / len(fields) + 0.5)
    return CompletenessScore(
        total_fields=len(fields),
        populated_fields=populated,
        completeness_percentage=percentage,
        critical_fields_missing=missing,
        is_passing=percentage >= PASSING_PERCENTAGE and not missing,
    )


def _numbered(items: List[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def company_key_facts(result: Dict[str, Any]) -> List[str]:
    facts = []
    if result.get("headline"):
        facts.append(str(result["headline"]))
    if result.get("companyType"):
        facts.append(f"Type: {result['companyType']}")
    if result.get("location"):
        facts.append(f"Location: {result['location']}")
    if result.get("website"):
        facts.append(f"Website: {result['website']}")
    financials = result.get("financials")
    if isinstance(financials, dict):
        if financials.get("marketCap"):
            facts.append(f"Market Cap: {financials['marketCap']}")
        rounds = financials.get("fundingRounds") or []
        if rounds:
            facts.append(f"Latest Funding: {rounds[0].get('roundName', '')} - {rounds[0].get('amount', '')}")
    landscape = result.get("competitiveLandscape")
    if isinstance(landscape, dict) and landscape.get("primaryCompetitors"):
        facts.append(f"Competitors: {', '.join(landscape['primaryCompetitors'][:3])}")
    return facts


def person_key_facts(result: Dict[str, Any]) -> List[str]:
    facts = []
    if result.get("headline"):
        facts.append(str(result["headline"]))
    location = result.get("location")
    if isinstance(location, dict) and location.get("city"):
        facts.append(f"Location: {location['city']}, {location.get('state') or location.get('country') or ''}".rstrip(", "))
    elif isinstance(location, str) and location:
        facts.append(f"Location: {location}")
    jobs = result.get("workExperience") or []
    if jobs:
        facts.append(f"Current: {jobs[0].get('jobTitle', '')} at {jobs[0].get('companyName', '')}")
    schools = result.get("education") or []
    if schools:
        edu = schools[0]
        degree = " ".join(p for p in (edu.get("degree"), edu.get("fieldOfStudy")) if p)
        institution = edu.get("institution", "")
        facts.append(f"Education: {degree} from {institution}" if degree else f"Education: {institution}")
    skills = result.get("skills")
    technical = skills.get("technicalSkills") if isinstance(skills, dict) else skills
    if technical:
        facts.append(f"Skills: {', '.join(technical[:5])}")
    return facts


def render_cached(name: str, cached: Dict[str, Any]) -> str:
    sources = _numbered([f"[{s.get('name', s.get('url'))}]({s.get('url')})" for s in cached["sources"][:5]])
    researched = from_ms(cached["researchedAt"]).strftime("%Y-%m-%d")
    return (
        f"[CACHED - {cached['ageInDays']} days old, {cached['accessCount'] + 1} cache hits]\n\n"
        f"**{name}**\n\n"
        f"{cached['summary']}\n\n"
        f"**Key Facts:**\n{_numbered(cached['keyFacts'])}\n\n"
        f"**Sources:**\n{sources}\n\n"
        f"(Using cached research from {researched})"
    )


def quality_badge(score: Optional[CompletenessScore]) -> str:
    if score is None:
        return ""
    label = "✅ VERIFIED" if score.is_passing else "⚠️ PARTIAL"
    return f"[{label} - {score.completeness_percentage}% complete]"


class EntityResearchAgent(BaseAgent):
    """Company and person research backed by the entity-context cache."""

    def __init__(self, linkup: Optional[LinkupClient] = None, **kwargs):
        super().__init__("EntityResearchAgent", agent_type="research", **kwargs)
        self.linkup = linkup or LinkupClient()

    # -------------------------------------------------------------------------
    # Research primitives
    # -------------------------------------------------------------------------

    def _cached(self, session, name: str, entity_type: EntityTypeEnum, force_refresh: bool) -> Optional[str]:
        if session is None or force_refresh:
            return None
        cached = entity_contexts.get_entity_context(session, name, entity_type)
        if not cached or cached["isStale"]:
            return None
        entity_contexts.update_access_count(session, cached["_id"])
        logger.info(f"Using cached research for {name} ({cached['ageInDays']} days old)")
        return render_cached(name, cached)

    async def _research_with_retry(self, name: str, entity_type: EntityTypeEnum, queries: List[str]):
        """Run up to MAX_ATTEMPTS profile searches. Returns (result, score, error)."""
        result: Dict[str, Any] = {}
        score: Optional[CompletenessScore] = None
        for attempt, query in enumerate(queries[:MAX_ATTEMPTS], start=1):
            logger.info(f"Researching {name}: attempt {attempt}/{MAX_ATTEMPTS}")
            if entity_type == EntityTypeEnum.COMPANY:
                result = await self.linkup.company_profile(query)
            else:
                result = await self.linkup.person_profile(query)

            if not result or result.get("error"):
                error = (result or {}).get("error") or "Unknown error"
                logger.warning(f"Research API error on attempt {attempt}: {error}")
                if attempt == MAX_ATTEMPTS:
                    return None, None, error
                continue

            score = evaluate_completeness(result, entity_type)
            logger.info(
                f"Attempt {attempt} completeness: {score.completeness_percentage}% "
                f"({score.populated_fields}/{score.total_fields} fields)"
            )
            if score.is_passing:
                break
        return result, score, None

    async def infer_crm_details(self, company_name: str, result: Dict[str, Any]) -> Optional[CRMInference]:
        response = await self.llm_client.generate_structured(
            f"Company: {company_name}\n\nResearch:\n{json.dumps(result, default=str)[:6000]}",
            CRMInference,
            system_prompt=(
                "From the research, give the company's industry, founding year and other notable "
                "named entities such as products, partners or regulators. Use null when unknown."
            ),
            provider=self.config.preferred_provider,
            model=self.config.model,
            enable_fallback=self.config.enable_fallback,
        )
        parsed = response.get("parsed")
        if response.get("success") and isinstance(parsed, CRMInference):
            return parsed
        logger.info(f"CRM details not inferred for {company_name}: {response.get('error')}")
        return None

    async def research_company(self, session, user_id: Optional[str], company_name: str,
                               force_refresh: bool = False) -> str:
        cached = self._cached(session, company_name, EntityTypeEnum.COMPANY, force_refresh)
        if cached:
            return cached

        result, score, error = await self._research_with_retry(
            company_name,
            EntityTypeEnum.COMPANY,
            [company_name, f"{company_name} company profile funding investors competitors business model"],
        )
        if error:
            return f"Failed to research {company_name} after {MAX_ATTEMPTS} attempts: {error}"

        facts = company_key_facts(result)
        links = [str(url) for url in (result.get("allLinks") or [])]
        summary = result.get("summary") or f"Research data for {company_name}"
        if session is not None:
            crm = extract_crm_fields(result, company_name, await self.infer_crm_details(company_name, result))
            entity_contexts.store_entity_context(
                session, user_id, company_name, EntityTypeEnum.COMPANY,
                summary=summary,
                key_facts=facts,
                sources=[{"name": url, "url": url} for url in links[:10]],
                linkup_data=result,
                crm_fields=crm.model_dump(mode="json"),
            )

        business_model = result.get("businessModel")
        if isinstance(business_model, dict):
            business_model = business_model.get("monetizationStrategy")
        landscape = result.get("competitiveLandscape")
        competitors = ", ".join(landscape.get("primaryCompetitors", [])[:5]) if isinstance(landscape, dict) else landscape

        return (
            f"[FRESH RESEARCH] {quality_badge(score)}\n\n"
            f"**{company_name}**\n\n"
            f"{result.get('summary') or ''}\n\n"
            f"**Key Facts:**\n{_numbered(facts)}\n\n"
            f"**Business Model:**\n{business_model or 'N/A'}\n\n"
            f"**Competitive Landscape:**\n{competitors or 'N/A'}\n\n"
            f"**Sources:**\n{_numbered(links[:5])}\n\n"
            "(Research cached for future queries)"
        )

    async def research_person(self, session, user_id: Optional[str], full_name: str,
                              company: Optional[str] = None, force_refresh: bool = False) -> str:
        cached = self._cached(session, full_name, EntityTypeEnum.PERSON, force_refresh)
        if cached:
            return cached

        search_name = f"{full_name} {company}" if company else full_name
        result, score, error = await self._research_with_retry(
            full_name,
            EntityTypeEnum.PERSON,
            [search_name, f"{search_name} professional profile work experience education skills"],
        )
        if error:
            return f"Failed to research {full_name} after {MAX_ATTEMPTS} attempts: {error}"

        facts = person_key_facts(result)
        if session is not None:
            entity_contexts.store_entity_context(
                session, user_id, full_name, EntityTypeEnum.PERSON,
                summary=result.get("summary") or f"Research data for {full_name}",
                key_facts=facts,
                sources=[],
                linkup_data=result,
            )

        jobs = "\n".join(
            f"- {job.get('jobTitle', '')} at {job.get('companyName', '')} "
            f"({job.get('startDate') or ''} - {job.get('endDate') or 'Present'})"
            for job in (result.get("workExperience") or [])[:3]
        )
        skills = result.get("skills")
        technical = skills.get("technicalSkills") if isinstance(skills, dict) else skills

        return (
            f"[FRESH RESEARCH] {quality_badge(score)}\n\n"
            f"**{full_name}**\n\n"
            f"{result.get('summary') or ''}\n\n"
            f"**Key Facts:**\n{_numbered(facts)}\n\n"
            f"**Work Experience:**\n{jobs or 'N/A'}\n\n"
            f"**Skills:**\n{', '.join((technical or [])[:10]) or 'N/A'}\n\n"
            "(Research cached for future queries)"
        )

    def ask_about_entity(self, session, entity_name: str, entity_type: EntityTypeEnum | str, question: str) -> str:
        """Answer from the cache: matching key facts, else the summary."""
        entity_type = EntityTypeEnum(entity_type)
        context = entity_contexts.get_entity_context(session, entity_name, entity_type)
        if not context:
            return f"No cached data for {entity_name}. Would you like me to research this {entity_type.value}?"

        entity_contexts.update_access_count(session, context["_id"])

        words = [w for w in question.lower().split() if w]
        relevant = [fact for fact in context["keyFacts"] if any(w in fact.lower() for w in words)]
        answer = "\n".join(relevant) if relevant else context["summary"]

        parts = [f"Based on my research on {entity_name} (cached {context['ageInDays']} days ago):", answer]
        if context["sources"]:
            parts.append("**Sources:** " + ", ".join(s.get("url", "") for s in context["sources"][:3]))
        stale_note = " - Data is stale, consider refreshing" if context["isStale"] else ""
        parts.append(f"(Cache hit #{context['accessCount'] + 1}{stale_note})")
        return "\n\n".join(parts)

    # -------------------------------------------------------------------------
    # Free-text entry point
    # -------------------------------------------------------------------------

    async def extract_entities(self, query: str) -> Dict[str, List[Any]]:
        """Companies and people named in the request."""
        data = await self._llm_json(
            f"Request: {query}",
            system_prompt=(
                "Extract the companies and people named in the request. Respond with JSON only: "
                '{"companies": ["Name"], "people": [{"fullName": "Name", "company": "optional"}]}'
            ),
        )
        if isinstance(data, dict):
            companies = [str(c).strip() for c in data.get("companies") or [] if str(c).strip()]
            people = [p for p in data.get("people") or [] if isinstance(p, dict) and p.get("fullName")]
            if companies or people:
                return {"companies": companies, "people": people}
        return await spacy_entities(query)

    async def self_evaluate(self, query: str, answer: str) -> Dict[str, Any]:
        data = await self._llm_json(
            f"Request: {query}\n\nAnswer:\n{answer[:4000]}",
            system_prompt=(
                "Judge whether the answer fully addresses the request. "
                'Respond with JSON only: {"complete": true|false, "confidence": 0.0-1.0}'
            ),
        )
        evaluation = {"complete": True, "confidence": 0.8}
        if isinstance(data, dict):
            if isinstance(data.get("complete"), bool):
                evaluation["complete"] = data["complete"]
            confidence = data.get("confidence")
            if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) and 0 <= confidence <= 1:
                evaluation["confidence"] = float(confidence)
        return evaluation

    async def handle(self, query: str, context: AgentContext) -> AgentOutput:
        entities = await self.extract_entities(query)
        force_refresh = bool(re.search(r"\b(refresh|latest|update)\b", query.lower()))

        sections = []
        for name in entities["companies"]:
            sections.append(await self.research_company(context.session, context.user_id, name, force_refresh))
        for person in entities["people"]:
            sections.append(await self.research_person(
                context.session, context.user_id, person["fullName"], person.get("company"), force_refresh
            ))

        if not sections:
            return AgentOutput(text="I couldn't identify a company or person to research in your request.")

        text = "\n\n---\n\n".join(sections)
        evaluation = await self.self_evaluate(query, text)
        if not evaluation["complete"]:
            text += f"\n\n_Self-evaluation: the research may be incomplete (confidence {evaluation['confidence']:.0%})._"
        return AgentOutput(text=text, data={"entities": entities, "evaluation": evaluation})


async def _get_nlp(model_name: Optional[str] = None):
    """Lazily load the spaCy pipeline once per model; None when spaCy or the model is missing."""
    model_name = model_name or get_settings().SPACY_MODEL
    async with _nlp_lock:
        if model_name in _nlp_cache:
            return _nlp_cache[model_name]

        nlp = None
        try:
            import spacy

            logger.info(f"Loading spaCy model: {model_name}")
            loop = asyncio.get_running_loop()
            nlp = await loop.run_in_executor(None, spacy.load, model_name)
        except ImportError:
            logger.warning("spaCy not available; install the 'nlp' extra for entity recognition")
        except OSError as e:
            logger.warning(f"spaCy model {model_name} not found: {e}")

        _nlp_cache[model_name] = nlp
        return nlp


async def spacy_entities(query: str) -> Dict[str, List[Any]]:
    """ORG entities become companies and PERSON entities become people."""
    entities: Dict[str, List[Any]] = {"companies": [], "people": []}
    nlp = await _get_nlp()
    if nlp is None:
        return entities

    for ent in nlp(query).ents:
        name = ent.text.strip()
        if not name:
            continue
        if ent.label_ in COMPANY_LABELS and name not in entities["companies"]:
            entities["companies"].append(name)
        elif ent.label_ in PERSON_LABELS and all(p["fullName"] != name for p in entities["people"]):
            entities["people"].append({"fullName": name})
    return entities
