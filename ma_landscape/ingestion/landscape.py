"""
CMS Landscape ingestion.

Land the landscape archive, pick the landscape table, resolve header
aliases once, then normalize -> aggregate -> emit one JSON document per
county for every target year.

Output (under dist_dir):
    years/{year}/by-county/{fips}.json
    years/{year}/county-index.json
    years/{year}/zip-index.json
"""

import json
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

import pandas as pd
import structlog

from ma_landscape.config import Settings, settings as default_settings
from ma_landscape.errors import HeaderResolutionError, MissingInputError
from ma_landscape.ingestion.downloader import SourceDownloader, is_remote
from ma_landscape.ingestion.geography import CountyFipsLookup, GeographyLoader
from ma_landscape.ingestion.zip_handler import ZIPHandler, normalize_header
from ma_landscape.models import (
    DEFAULT_SEGMENT_ID,
    Carrier,
    CountyBucket,
    PlanRecord,
    ZipCandidate,
)

logger = structlog.get_logger()

# Logical field -> accepted header spellings, first match wins
HEADER_ALIASES: Dict[str, List[str]] = {
    "year": ["Contract Year", "Year"],
    "contract_id": ["Contract ID", "Contract Number"],
    "plan_id": ["Plan ID"],
    "segment_id": ["Segment ID"],
    "fips": ["County FIPS", "County Code (FIPS)", "County Code", "County FIPS Code"],
    "state": ["State Abbreviation", "State Code", "State"],
    "county_name": ["County Name"],
    "org_name": ["Organization Marketing Name", "Parent Organization Name"],
    "plan_name": ["Plan Name"],
    "plan_type": ["Plan Type"],
    "snp_type": ["SNP Type", "Special Needs Plan (SNP) Indicator"],
}

REQUIRED_FIELDS = ("year", "contract_id", "plan_id")

# MA / MA-PD contracts
MA_CONTRACT_PREFIXES = ("H", "R")

YEAR_PATTERN = re.compile(r"\d{4}")
EMBEDDED_FIPS_PATTERN = re.compile(r"(?<!\d)(\d{5})(?!\d)")


class HeaderMap(NamedTuple):
    """Actual column name per logical field (None when the release lacks it)"""
    year: str
    contract_id: str
    plan_id: str
    segment_id: Optional[str]
    fips: Optional[str]
    state: Optional[str]
    county_name: Optional[str]
    org_name: Optional[str]
    plan_name: Optional[str]
    plan_type: Optional[str]
    snp_type: Optional[str]


def resolve_header_aliases(columns: Iterable[Any]) -> HeaderMap:
    """Resolve every logical field against the alias table, case/whitespace-insensitive"""

    columns = list(columns)
    by_normalized: Dict[str, Any] = {}
    for column in columns:
        by_normalized.setdefault(normalize_header(column), column)

    resolved: Dict[str, Optional[str]] = {}
    for field_name, aliases in HEADER_ALIASES.items():
        resolved[field_name] = next(
            (by_normalized[normalize_header(a)] for a in aliases if normalize_header(a) in by_normalized),
            None,
        )

    missing = [f for f in REQUIRED_FIELDS if resolved[f] is None]
    if missing:
        raise HeaderResolutionError(missing, [str(c) for c in columns])

    return HeaderMap(**resolved)


# =============================================================================
# Row normalization
# =============================================================================

def _cell(row: Mapping[str, Any], column: Optional[str]) -> str:
    if column is None:
        return ""
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def extract_year(value: Any) -> Optional[int]:
    """Pull a 4-digit year out of cells like "2025" or "CY 2025 Landscape" """
    match = YEAR_PATTERN.search(str(value or ""))
    return int(match.group(0)) if match else None


def clean_fips(value: Any) -> Optional[str]:
    """
    County FIPS from a cell: an embedded 5-digit run wins ("06075 - San
    Francisco County"), otherwise digits are kept and left-padded to 5.
    """
    raw = str(value or "")
    match = EMBEDDED_FIPS_PATTERN.search(raw)
    if match:
        return match.group(1)
    digits = re.sub(r"\D", "", raw)
    if not digits or len(digits) > 5:
        return None
    return digits.zfill(5)


def is_ma_contract(contract_id: str) -> bool:
    return contract_id.upper().startswith(MA_CONTRACT_PREFIXES)


def normalize_row(
    row: Mapping[str, Any],
    headers: HeaderMap,
    year: int,
    lookup: CountyFipsLookup,
) -> Optional[PlanRecord]:
    """Normalize one landscape row for `year`, or None when the row cannot be placed"""

    if extract_year(_cell(row, headers.year)) != year:
        return None

    contract_id = _cell(row, headers.contract_id)
    if not is_ma_contract(contract_id):
        return None

    state = _cell(row, headers.state)
    county_name = _cell(row, headers.county_name)

    county_fips = clean_fips(_cell(row, headers.fips))
    if not county_fips:
        county_fips = lookup.resolve(state, county_name)
        if not county_fips:
            return None

    plan_id = _cell(row, headers.plan_id)
    if not contract_id or not plan_id:
        return None

    return PlanRecord(
        year=year,
        contract_id=contract_id,
        plan_id=plan_id,
        segment_id=_cell(row, headers.segment_id) or DEFAULT_SEGMENT_ID,
        org_name=_cell(row, headers.org_name) or contract_id,
        marketing_name=_cell(row, headers.plan_name),
        plan_type=_cell(row, headers.plan_type) or None,
        snp_type=_cell(row, headers.snp_type) or None,
        county_fips=county_fips,
        state=state,
        county_name=county_name,
    )


# =============================================================================
# Aggregation & emission
# =============================================================================

def aggregate(records: Iterable[PlanRecord]) -> Dict[str, CountyBucket]:
    """Group records county -> carrier in a single pass, keeping first-seen order"""

    buckets: Dict[str, CountyBucket] = {}
    for record in records:
        bucket = buckets.get(record.county_fips)
        if bucket is None:
            bucket = CountyBucket(
                county_fips=record.county_fips,
                state=record.state,
                county_name=record.county_name or "(Unknown)",
            )
            buckets[record.county_fips] = bucket

        key = record.carrier_key
        carrier = bucket.carriers.get(key)
        if carrier is None:
            carrier = Carrier(org_name=key)
            bucket.carriers[key] = carrier
        carrier.add(record)

    return buckets


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def emit_year(
    dist_dir: Path,
    year: int,
    buckets: Dict[str, CountyBucket],
    zip_index: List[ZipCandidate],
) -> Dict[str, Any]:
    """Write county documents, the county index and the ZIP index for one year"""

    year_dir = Path(dist_dir) / "years" / str(year)
    if year_dir.exists():
        shutil.rmtree(year_dir)
    by_county_dir = year_dir / "by-county"
    by_county_dir.mkdir(parents=True, exist_ok=True)

    county_index = []
    for fips, bucket in buckets.items():
        write_json(by_county_dir / f"{fips}.json", bucket.to_dict(year))
        county_index.append({"fips": fips, "state": bucket.state, "name": bucket.county_name})

    county_index.sort(key=lambda c: c["fips"])
    write_json(year_dir / "county-index.json", county_index)
    write_json(year_dir / "zip-index.json", [z.to_dict() for z in zip_index])

    return {"year_dir": str(year_dir), "counties": len(county_index)}


# =============================================================================
# Ingester
# =============================================================================

@dataclass
class YearSummary:
    year: int
    rows_total: int
    rows_kept: int
    rows_dropped: int
    counties: int
    carriers: int
    plans_capped: int


class LandscapeIngester:
    """Runs the Geo Resolver + Ingestion Engine for a set of years"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        downloader: Optional[SourceDownloader] = None,
        geography: Optional[GeographyLoader] = None,
    ):
        self.settings = settings or default_settings
        self.downloader = downloader or SourceDownloader(self.settings)
        self.geography = geography or GeographyLoader(self.downloader, self.settings)
        self.dist_dir = Path(self.settings.dist_dir)

    async def land_archive(self) -> Path:
        """Return a local path to the landscape archive, downloading it when remote"""

        location = self.settings.cms_landscape_url
        if not location:
            raise MissingInputError(
                "Missing CMS_LANDSCAPE_URL (direct link to CMS Landscape zip)."
            )
        if not is_remote(location):
            path = Path(location)
            if not path.exists():
                raise MissingInputError(f"Landscape archive not found: {location}")
            return path

        result = await self.downloader.download_file(location, "cms_landscape.zip")
        return Path(result["local_path"])

    def build_year(
        self,
        df: pd.DataFrame,
        headers: HeaderMap,
        year: int,
        lookup: CountyFipsLookup,
    ) -> Dict[str, CountyBucket]:
        records = (
            normalize_row(row, headers, year, lookup)
            for row in df.to_dict(orient="records")
        )
        return aggregate(r for r in records if r is not None)

    def copy_aliases(self) -> None:
        aliases = Path(self.settings.data_dir) / "aliases.json"
        if aliases.exists():
            self.dist_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(aliases, self.dist_dir / "aliases.json")

    async def run(self, years: Optional[List[int]] = None) -> List[YearSummary]:
        years = years or self.settings.get_target_years()

        archive = await self.land_archive()
        df, source_name = ZIPHandler(archive).detect_table()
        logger.info("Using CMS file inside ZIP", source=source_name, rows=len(df))

        # Resolved once per input; missing year/contract/plan is fatal
        headers = resolve_header_aliases(df.columns)

        lookup = await self.geography.load_county_lookup()
        zip_index = await self.geography.load_zip_index()

        summaries = []
        for year in years:
            buckets = self.build_year(df, headers, year, lookup)
            emit_year(self.dist_dir, year, buckets, zip_index)

            carriers = [c for b in buckets.values() for c in b.carriers.values()]
            kept = sum(len(c.plans) + c.dropped_plans for c in carriers)
            summary = YearSummary(
                year=year,
                rows_total=len(df),
                rows_kept=kept,
                rows_dropped=len(df) - kept,
                counties=len(buckets),
                carriers=len(carriers),
                plans_capped=sum(c.dropped_plans for c in carriers),
            )
            logger.info("Landscape year built", **summary.__dict__)
            summaries.append(summary)

        self.copy_aliases()
        return summaries
