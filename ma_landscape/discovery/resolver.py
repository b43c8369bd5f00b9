"""
Summary of Benefits source discovery.

For every distinct plan in a year's county documents, search for its
Summary of Benefits PDF and verify each candidate by its text before
accepting it.

Output (under dist_dir/benefits/auto):
    {year}_sources.csv   cmsPlanKey,orgName,marketingName,url (sorted by key)
    missing_{year}.json  plans left unresolved
"""

import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Pattern

import httpx
import pandas as pd
import structlog

from ma_landscape.config import Settings, settings as default_settings
from ma_landscape.discovery.search_client import SerpApiClient
from ma_landscape.documents import TextExtractor, extract_pdf_text, fetch_pdf_bytes
from ma_landscape.errors import ItemError
from ma_landscape.models import DEFAULT_SEGMENT_ID, PlanDescriptor, SourceRecord

logger = structlog.get_logger()

SOURCE_COLUMNS = ["cmsPlanKey", "orgName", "marketingName", "url"]

DOCUMENT_MARKER = re.compile(r"summary\s+of\s+benefits", re.IGNORECASE)


# =============================================================================
# Plan collection
# =============================================================================

def collect_distinct_plans(dist_dir: Path, year: int) -> List[PlanDescriptor]:
    """Distinct plans across a year's county documents; first occurrence wins"""

    by_county_dir = Path(dist_dir) / "years" / str(year) / "by-county"
    if not by_county_dir.is_dir():
        return []

    seen: Dict[str, PlanDescriptor] = {}
    for path in sorted(by_county_dir.glob("*.json")):
        county = json.loads(path.read_text(encoding="utf-8"))
        for carrier in county.get("carriers") or []:
            for plan in carrier.get("plans") or []:
                if not plan.get("contractId") or not plan.get("planId"):
                    continue
                descriptor = PlanDescriptor(
                    year=year,
                    contract_id=plan["contractId"],
                    plan_id=plan["planId"],
                    segment_id=plan.get("segmentId") or DEFAULT_SEGMENT_ID,
                    org_name=carrier.get("orgName") or plan["contractId"],
                    marketing_name=plan.get("marketingName") or "",
                )
                seen.setdefault(descriptor.cms_plan_key, descriptor)

    return list(seen.values())


# =============================================================================
# Query construction & verification
# =============================================================================

def build_queries(plan: PlanDescriptor) -> List[str]:
    """Up to three queries, most specific first"""
    plan3 = str(plan.plan_id).zfill(3)
    queries = [
        f'"Summary of Benefits" {plan.year} {plan.contract_id}-{plan3} filetype:pdf',
        f'"Summary of Benefits" {plan.year} {plan.contract_id} {plan3} "{plan.org_name}" filetype:pdf',
    ]
    if plan.marketing_name:
        queries.append(f'"Summary of Benefits" {plan.year} "{plan.marketing_name}" filetype:pdf')
    return queries


class PlanPatterns(NamedTuple):
    contract_plan: Pattern
    year: Pattern
    marker: Pattern

    def matches(self, text: str) -> bool:
        return bool(
            self.marker.search(text)
            and self.contract_plan.search(text)
            and self.year.search(text)
        )


def plan_patterns(contract_id: str, plan_id: str, year: int) -> PlanPatterns:
    """Patterns a candidate's text must all satisfy: H1234-005 / H1234 005 / h1234005, the year, the marker"""
    contract = re.sub(r"[-\s]", "", contract_id)
    contract_plan = re.escape(contract) + r"\s*[- ]?\s*" + re.escape(str(plan_id).zfill(3))
    return PlanPatterns(
        contract_plan=re.compile(contract_plan, re.IGNORECASE),
        year=re.compile(rf"(?<!\d){year}(?!\d)"),
        marker=DOCUMENT_MARKER,
    )


def prefer_documents(urls: List[str]) -> List[str]:
    """Direct .pdf links first, other pages after, each group in result order"""
    direct = [u for u in urls if ".pdf" in u.lower()]
    return direct + [u for u in urls if ".pdf" not in u.lower()]


# =============================================================================
# Resolver
# =============================================================================

@dataclass
class DiscoveryResult:
    year: int
    resolved: List[SourceRecord]
    missing: List[PlanDescriptor]


class SummaryOfBenefitsResolver:
    """Finds and verifies one Summary of Benefits URL per plan"""

    def __init__(
        self,
        search_client: SerpApiClient,
        http_client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        text_extractor: Optional[TextExtractor] = None,
    ):
        self.settings = settings or default_settings
        self.search_client = search_client
        self.http_client = http_client
        self.text_extractor = text_extractor or (
            lambda data: extract_pdf_text(data, max_pages=self.settings.pdf_max_pages)
        )

    async def candidate_text(self, url: str) -> str:
        data = await fetch_pdf_bytes(
            self.http_client,
            url,
            max_bytes=self.settings.pdf_max_bytes,
            require_pdf=True,
        )
        return self.text_extractor(data)

    async def verify(self, url: str, patterns: PlanPatterns) -> bool:
        """True only when the candidate's text carries plan id, year and marker"""
        try:
            text = await self.candidate_text(url)
        except (ItemError, httpx.HTTPError) as e:
            logger.debug("Candidate rejected", url=url, error=str(e))
            return False
        except Exception as e:
            # pypdf raises a wide range of errors on broken documents
            logger.debug("Candidate unparseable", url=url, error=str(e))
            return False
        return patterns.matches(text)

    async def resolve_one(self, plan: PlanDescriptor) -> Optional[str]:
        patterns = plan_patterns(plan.contract_id, plan.plan_id, plan.year)

        for query in build_queries(plan):
            try:
                urls = await self.search_client.search(query, num=self.settings.search_result_count)
            except (ItemError, httpx.HTTPError) as e:
                logger.warning("Search failed", plan=plan.cms_plan_key, query=query, error=str(e))
                continue

            for url in prefer_documents(urls):
                if await self.verify(url, patterns):
                    return url

        return None

    async def resolve_all(self, plans: List[PlanDescriptor]) -> List[Optional[str]]:
        """Resolve plans with at most `sb_discovery_concurrency` in flight"""

        results: List[Optional[str]] = [None] * len(plans)
        semaphore = asyncio.Semaphore(max(1, self.settings.sb_discovery_concurrency))

        async def resolve_with_semaphore(index: int, plan: PlanDescriptor):
            async with semaphore:
                try:
                    url = await self.resolve_one(plan)
                except Exception as e:
                    logger.error("Resolution task failed", plan=plan.cms_plan_key, error=str(e))
                    url = None
            results[index] = url
            if url:
                logger.info("Source found", plan=plan.cms_plan_key, url=url)
            else:
                logger.info("Source missing", plan=plan.cms_plan_key)

        await asyncio.gather(*(resolve_with_semaphore(i, p) for i, p in enumerate(plans)))
        return results

    async def discover_year(self, plans: List[PlanDescriptor], year: int) -> DiscoveryResult:
        urls = await self.resolve_all(plans)

        resolved, missing = [], []
        for plan, url in zip(plans, urls):
            if url:
                resolved.append(SourceRecord(
                    cms_plan_key=plan.cms_plan_key,
                    org_name=plan.org_name,
                    marketing_name=plan.marketing_name,
                    url=url,
                    year=year,
                ))
            else:
                missing.append(plan)

        resolved.sort(key=lambda s: s.cms_plan_key)
        return DiscoveryResult(year=year, resolved=resolved, missing=missing)


# =============================================================================
# Output
# =============================================================================

def write_sources_csv(path: Path, sources: List[SourceRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([s.to_row() for s in sources], columns=SOURCE_COLUMNS)
    df.to_csv(path, index=False, lineterminator="\n")


def write_discovery_outputs(auto_dir: Path, result: DiscoveryResult) -> None:
    auto_dir = Path(auto_dir)
    write_sources_csv(auto_dir / f"{result.year}_sources.csv", result.resolved)
    missing_path = auto_dir / f"missing_{result.year}.json"
    missing_path.write_text(
        json.dumps([p.to_dict() for p in result.missing], indent=2),
        encoding="utf-8",
    )


async def run_discovery(
    settings: Optional[Settings] = None,
    years: Optional[List[int]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    text_extractor: Optional[TextExtractor] = None,
) -> List[DiscoveryResult]:
    """Discover sources for each year; without a search key, write empty outputs"""

    settings = settings or default_settings
    years = years or settings.get_target_years()
    auto_dir = Path(settings.dist_dir) / "benefits" / "auto"
    auto_dir.mkdir(parents=True, exist_ok=True)

    if not settings.discovery_enabled:
        logger.warning("SERPAPI_KEY not set; skipping auto discovery")
        results = [DiscoveryResult(year=y, resolved=[], missing=[]) for y in years]
        for result in results:
            write_discovery_outputs(auto_dir, result)
        return results

    client = http_client or httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    )

    results = []
    try:
        search_client = SerpApiClient(client, settings.serpapi_key, settings.serpapi_url)
        resolver = SummaryOfBenefitsResolver(search_client, client, settings, text_extractor)

        for year in years:
            plans = collect_distinct_plans(Path(settings.dist_dir), year)
            logger.info("Unique plans found", year=year, plans=len(plans))

            result = await resolver.discover_year(plans, year)
            write_discovery_outputs(auto_dir, result)
            logger.info(
                "Discovery year complete",
                year=year,
                resolved=len(result.resolved),
                missing=len(result.missing),
                search_calls=search_client.calls,
            )
            results.append(result)
    finally:
        if http_client is None:
            await client.aclose()

    return results
