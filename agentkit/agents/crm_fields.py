"""
CRM Fields - Flatten company research into CRM-ready columns

extract_crm_fields() is deterministic: it reads the Linkup company profile
(location, key personnel, funding rounds, competitive landscape) and scores
how many of the CRM columns it could fill. The values a profile does not
carry directly (industry, founding year, notable entities) come from a
CRMInference the caller may obtain from the LLM.

Usage:
    from agentkit.agents.crm_fields import extract_crm_fields

    crm = extract_crm_fields(linkup_result, "Stripe")
    crm.fundingStage, crm.dataQuality
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

FUNDING_PATTERN = re.compile(r"([\d][\d,]*(?:\.\d+)?)\s*(billion|bn|b|million|mm|m|thousand|k)?\b", re.IGNORECASE)
FUNDING_MULTIPLIERS = {
    "billion": 1e9, "bn": 1e9, "b": 1e9,
    "million": 1e6, "mm": 1e6, "m": 1e6,
    "thousand": 1e3, "k": 1e3,
}

# (upper bound exclusive, stage)
FUNDING_STAGES = [
    (2_000_000, "seed"),
    (10_000_000, "series-a"),
    (50_000_000, "series-b"),
    (200_000_000, "series-c"),
]

DataQuality = Literal["verified", "partial", "incomplete"]


class KeyPerson(BaseModel):
    name: str
    title: str = ""


class CRMInference(BaseModel):
    """Details read from the research text by the LLM."""
    industry: Optional[str] = None
    foundingYear: Optional[int] = Field(default=None, ge=1600, le=2100)
    keyEntities: List[str] = Field(default_factory=list)


class CRMFields(BaseModel):
    companyName: str
    description: str = ""
    headline: str = ""

    hqLocation: str = ""
    city: str = ""
    state: str = ""
    country: str = ""

    website: str = ""
    email: str = ""
    phone: str = ""

    founders: List[str] = Field(default_factory=list)
    foundersBackground: str = ""
    keyPeople: List[KeyPerson] = Field(default_factory=list)

    industry: str = "Unknown"
    companyType: str = ""
    foundingYear: Optional[int] = None
    product: str = ""
    targetMarket: str = ""
    businessModel: str = ""

    fundingStage: str = "pre-seed"
    totalFunding: str = "Not disclosed"
    lastFundingDate: str = ""
    investors: List[str] = Field(default_factory=list)
    investorBackground: str = ""

    competitors: List[str] = Field(default_factory=list)
    competitorAnalysis: str = ""

    keyEntities: List[str] = Field(default_factory=list)
    partnerships: List[str] = Field(default_factory=list)

    completenessScore: int = 0
    dataQuality: DataQuality = "incomplete"


def parse_funding_amount(value: Any) -> float:
    """Dollar amount in strings like "$1.5M", "2 billion" or "500,000"; 0 when absent."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = FUNDING_PATTERN.search(str(value or ""))
    if not match:
        return 0.0
    amount = float(match.group(1).replace(",", ""))
    unit = (match.group(2) or "").lower()
    return amount * FUNDING_MULTIPLIERS.get(unit, 1)


def funding_stage(total: float) -> str:
    if total <= 0:
        return "pre-seed"
    for bound, stage in FUNDING_STAGES:
        if total < bound:
            return stage
    return "late-stage"


def format_funding_amount(total: float) -> str:
    if total <= 0:
        return "Not disclosed"
    for divisor, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
        if total >= divisor:
            return f"${total / divisor:.1f}{suffix}"
    return f"${total:g}"


def _date_key(value: Any) -> datetime:
    text = str(value or "").strip()
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        year = re.search(r"\b(1[6-9]\d{2}|20\d{2})\b", text)
        return datetime(int(year.group(1)), 1, 1) if year else datetime.min


def _strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [str(v).strip() for v in values if str(v).strip()]


def _key_people(data: Dict[str, Any]) -> List[KeyPerson]:
    people = []
    for person in data.get("keyPersonnel") or []:
        if isinstance(person, dict) and person.get("name"):
            people.append(KeyPerson(name=str(person["name"]), title=str(person.get("title") or "")))
    return people


def extract_crm_fields(
    linkup_data: Optional[Dict[str, Any]],
    company_name: str,
    inferred: Optional[CRMInference] = None,
) -> CRMFields:
    data = linkup_data or {}
    inferred = inferred or CRMInference()
    financials = data.get("financials") if isinstance(data.get("financials"), dict) else {}
    business = data.get("businessModel") if isinstance(data.get("businessModel"), dict) else {}
    landscape = data.get("competitiveLandscape") if isinstance(data.get("competitiveLandscape"), dict) else {}

    key_people = _key_people(data)
    founders = [p.name for p in key_people if "founder" in p.title.lower() or "ceo" in p.title.lower()]

    rounds = [r for r in financials.get("fundingRounds") or [] if isinstance(r, dict)]
    total = sum(parse_funding_amount(r.get("amount")) for r in rounds)
    dated = sorted((r for r in rounds if r.get("date")), key=lambda r: _date_key(r["date"]), reverse=True)

    location = str(data.get("location") or "")
    parts = [part.strip() for part in location.split(",")]
    city, state, country = (parts + ["", "", ""])[:3]

    product = ", ".join(_strings(data.get("primaryServicesOrProducts")))
    competitors = _strings(landscape.get("primaryCompetitors"))
    investors = _strings(financials.get("investors"))

    filled = [
        data.get("companyName"),
        data.get("summary"),
        data.get("headline"),
        location,
        data.get("website"),
        founders,
        key_people,
        inferred.industry,
        data.get("companyType"),
        inferred.foundingYear,
        product,
        business.get("targetAudience"),
        business.get("monetizationStrategy"),
        total > 0,
        competitors,
        investors,
    ]
    score = round(sum(1 for value in filled if value) / len(filled) * 100)
    quality: DataQuality = "verified" if score >= 80 else "partial" if score >= 50 else "incomplete"

    return CRMFields(
        companyName=company_name,
        description=str(data.get("summary") or ""),
        headline=str(data.get("headline") or ""),
        hqLocation=location,
        city=city,
        state=state,
        country=country,
        website=str(data.get("website") or ""),
        founders=founders,
        foundersBackground=", ".join(founders),
        keyPeople=key_people,
        industry=inferred.industry or "Unknown",
        companyType=str(data.get("companyType") or ""),
        foundingYear=inferred.foundingYear,
        product=product,
        targetMarket=str(business.get("targetAudience") or ""),
        businessModel=str(business.get("monetizationStrategy") or ""),
        fundingStage=funding_stage(total),
        totalFunding=format_funding_amount(total),
        lastFundingDate=str(dated[0]["date"]) if dated else "",
        investors=investors,
        investorBackground=", ".join(investors[:3]),
        competitors=competitors,
        competitorAnalysis="; ".join(_strings(landscape.get("economicMoat"))),
        keyEntities=inferred.keyEntities,
        partnerships=_strings(financials.get("subsidiaries")),
        completenessScore=score,
        dataQuality=quality,
    )
