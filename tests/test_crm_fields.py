"""Tests for flattening company research into CRM fields."""
import pytest

from agentkit.agents.crm_fields import (
    CRMInference,
    extract_crm_fields,
    format_funding_amount,
    funding_stage,
    parse_funding_amount,
)

RICH_PROFILE = {
    "companyName": "Acme Bio",
    "summary": "Gene therapy platform.",
    "headline": "Curing rare disease",
    "location": "Boston, MA, USA",
    "website": "https://acme.bio",
    "companyType": "Private",
    "primaryServicesOrProducts": ["AB-101", "AB-202"],
    "keyPersonnel": [
        {"name": "Jane Roe", "title": "Founder"},
        {"name": "John Doe", "title": "CFO"},
        {"title": "nameless"},
    ],
    "businessModel": {"monetizationStrategy": "Licensing", "targetAudience": "Pharma"},
    "financials": {
        "fundingRounds": [
            {"amount": "$5M", "date": "2021-06-01"},
            {"amount": "$20 million", "date": "2023-02-10"},
            {"amount": "undisclosed"},
        ],
        "investors": ["Alpha", "Beta", "Gamma", "Delta"],
        "subsidiaries": ["Acme EU"],
    },
    "competitiveLandscape": {"primaryCompetitors": ["Beam"], "economicMoat": ["Patents", "Data"]},
}


class TestFunding:

    @pytest.mark.parametrize("value, expected", [
        ("$1.5M", 1_500_000),
        ("2 billion", 2_000_000_000),
        ("USD 500,000", 500_000),
        ("$750K seed", 750_000),
        (3_000_000, 3_000_000),
        ("undisclosed", 0),
        (None, 0),
    ])
    def test_parse(self, value, expected):
        assert parse_funding_amount(value) == expected

    def test_stage_boundaries(self):
        assert funding_stage(0) == "pre-seed"
        assert funding_stage(1_999_999) == "seed"
        assert funding_stage(2_000_000) == "series-a"
        assert funding_stage(49_000_000) == "series-b"
        assert funding_stage(150_000_000) == "series-c"
        assert funding_stage(200_000_000) == "late-stage"

    def test_format(self):
        assert format_funding_amount(0) == "Not disclosed"
        assert format_funding_amount(2_500_000_000) == "$2.5B"
        assert format_funding_amount(25_000_000) == "$25.0M"
        assert format_funding_amount(1_500) == "$1.5K"
        assert format_funding_amount(900) == "$900"


class TestExtractCRMFields:

    def test_rich_profile(self):
        crm = extract_crm_fields(RICH_PROFILE, "Acme Bio", CRMInference(industry="Biotech", foundingYear=2019))

        assert (crm.city, crm.state, crm.country) == ("Boston", "MA", "USA")
        assert crm.founders == ["Jane Roe"]
        assert [p.name for p in crm.keyPeople] == ["Jane Roe", "John Doe"]
        assert crm.product == "AB-101, AB-202"
        assert (crm.totalFunding, crm.fundingStage) == ("$25.0M", "series-b")
        assert crm.lastFundingDate == "2023-02-10"
        assert crm.investorBackground == "Alpha, Beta, Gamma"
        assert crm.competitorAnalysis == "Patents; Data"
        assert crm.partnerships == ["Acme EU"]
        assert crm.completenessScore == 100
        assert crm.dataQuality == "verified"

    def test_empty_profile(self):
        crm = extract_crm_fields(None, "Ghost Co")

        assert crm.companyName == "Ghost Co"
        assert crm.industry == "Unknown"
        assert crm.totalFunding == "Not disclosed"
        assert crm.fundingStage == "pre-seed"
        assert crm.completenessScore == 0
        assert crm.dataQuality == "incomplete"

    def test_partial_quality(self):
        profile = {key: RICH_PROFILE[key] for key in ("companyName", "summary", "headline", "location", "website",
                                                       "companyType", "keyPersonnel")}
        crm = extract_crm_fields(profile, "Acme Bio")
        # 8 of 16 columns filled
        assert crm.completenessScore == 50
        assert crm.dataQuality == "partial"

    def test_unparseable_dates_sort_last(self):
        profile = {"financials": {"fundingRounds": [
            {"amount": "$1M", "date": "sometime"},
            {"amount": "$1M", "date": "March 2020"},
        ]}}
        assert extract_crm_fields(profile, "X").lastFundingDate == "March 2020"
