"""
Benefit extraction from Summary of Benefits PDFs.

Sources come from the curated table (data/benefits/{year}_sources.csv) and
the discovered table (dist/benefits/auto/{year}_sources.csv); curated rows
win on key collision.

Output (under dist_dir/benefits):
    by-plan/{cmsPlanKey}.json
    plan-index.json
"""

import asyncio
import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pandas as pd
import structlog

from ma_landscape.benefits.extractors import (
    extract_medical,
    extract_nutrition,
    extract_supplemental,
    normalize,
)
from ma_landscape.config import Settings, settings as default_settings
from ma_landscape.documents import TextExtractor, extract_pdf_text, fetch_pdf_bytes
from ma_landscape.models import BenefitRecord, SourceRecord

logger = structlog.get_logger()


def read_sources_table(path: Path) -> pd.DataFrame:
    """A sources CSV as all-string columns; an absent or empty file reads as empty"""
    if not path.exists():
        return pd.DataFrame()
    try:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        return pd.DataFrame()


def load_sources(year: int, manual_dir: Path, auto_dir: Path) -> List[SourceRecord]:
    """Merge curated then discovered sources for a year; the first row per key wins"""

    merged: Dict[str, SourceRecord] = {}
    for path in (Path(manual_dir) / f"{year}_sources.csv", Path(auto_dir) / f"{year}_sources.csv"):
        df = read_sources_table(path)
        for row in df.to_dict(orient="records"):
            key = (row.get("cmsPlanKey") or "").strip()
            url = (row.get("url") or "").strip()
            if not key or not url or key in merged:
                continue
            merged[key] = SourceRecord(
                cms_plan_key=key,
                org_name=row.get("orgName") or "",
                marketing_name=row.get("marketingName") or "",
                url=url,
                year=year,
            )

    return list(merged.values())


def extract_benefits(source: SourceRecord, text: str) -> BenefitRecord:
    n = normalize(text)
    return BenefitRecord(
        cms_plan_key=source.cms_plan_key,
        source_pdf_url=source.url,
        plan_meta={"orgName": source.org_name, "marketingName": source.marketing_name},
        medical=extract_medical(n),
        nutrition=extract_nutrition(n),
        supplemental=extract_supplemental(n),
    )


class BenefitsBuilder:
    """Fetches, parses and extracts each plan's PDF with bounded concurrency"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        text_extractor: Optional[TextExtractor] = None,
    ):
        self.settings = settings or default_settings
        self.http_client = http_client
        self.text_extractor = text_extractor or (
            lambda data: extract_pdf_text(data, max_pages=self.settings.pdf_max_pages)
        )
        self.out_dir = Path(self.settings.dist_dir) / "benefits"

    async def process_one(self, source: SourceRecord) -> Optional[BenefitRecord]:
        """Extract one plan; any failure skips the plan and returns None"""
        try:
            logger.info("Extracting benefits", plan=source.cms_plan_key, url=source.url)
            data = await fetch_pdf_bytes(
                self.http_client,
                source.url,
                min_bytes=self.settings.pdf_min_bytes,
            )
            record = extract_benefits(source, self.text_extractor(data))

            path = self.out_dir / "by-plan" / f"{source.cms_plan_key}.json"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
            return record
        except Exception as e:
            logger.error("Benefit extraction failed", plan=source.cms_plan_key, error=str(e))
            return None

    async def process_all(self, sources: List[SourceRecord]) -> List[Optional[BenefitRecord]]:
        results: List[Optional[BenefitRecord]] = [None] * len(sources)
        semaphore = asyncio.Semaphore(max(1, self.settings.benefits_concurrency))

        async def process_with_semaphore(index: int, source: SourceRecord):
            async with semaphore:
                results[index] = await self.process_one(source)

        await asyncio.gather(*(process_with_semaphore(i, s) for i, s in enumerate(sources)))
        return results

    def write_plan_index(self, records: List[BenefitRecord]) -> Path:
        extracted_at = datetime.now(timezone.utc).isoformat()
        index = [
            {
                "cmsPlanKey": r.cms_plan_key,
                "orgName": r.plan_meta.get("orgName"),
                "marketingName": r.plan_meta.get("marketingName"),
                "year": int(r.cms_plan_key[:4]),
                "sourcePdfUrl": r.source_pdf_url,
                "extractedAt": extracted_at,
            }
            for r in records
        ]
        path = self.out_dir / "plan-index.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(index, indent=2), encoding="utf-8")
        return path

    async def run(self, sources: List[SourceRecord]) -> Dict[str, Any]:
        # Per-plan documents are fully regenerated each run
        by_plan_dir = self.out_dir / "by-plan"
        if by_plan_dir.exists():
            shutil.rmtree(by_plan_dir)

        if not sources:
            logger.info("No benefits sources; writing empty index")
            self.write_plan_index([])
            return {"generated": 0, "total": 0}

        results = await self.process_all(sources)
        good = [r for r in results if r is not None]
        self.write_plan_index(good)

        logger.info("Benefits generated", generated=len(good), total=len(sources))
        return {"generated": len(good), "total": len(sources)}


async def run_benefits(
    settings: Optional[Settings] = None,
    years: Optional[List[int]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    text_extractor: Optional[TextExtractor] = None,
) -> Dict[str, Any]:
    settings = settings or default_settings
    years = years or settings.get_target_years()

    manual_dir = Path(settings.data_dir) / "benefits"
    auto_dir = Path(settings.dist_dir) / "benefits" / "auto"
    sources = [s for y in years for s in load_sources(y, manual_dir, auto_dir)]

    client = http_client or httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    )
    try:
        builder = BenefitsBuilder(client, settings, text_extractor)
        return await builder.run(sources)
    finally:
        if http_client is None:
            await client.aclose()
