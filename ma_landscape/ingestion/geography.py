"""
Geography resolution for landscape rows.

Two lookups are built once per run:
  - county name + state -> county FIPS, from the per-state Census
    gazetteer files
  - ZCTA (ZIP proxy) -> weighted county candidates, from the national
    ZCTA-to-county relationship file

Authority: Census 2020 Gazetteer Counties, 2020 ZCTA520/County20 relationship file
"""

import asyncio
import io
import re
import unicodedata
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
import structlog

from ma_landscape.config import Settings, settings as default_settings
from ma_landscape.errors import DownloadError, GeographySourceError
from ma_landscape.ingestion.downloader import SourceDownloader
from ma_landscape.models import ZipCandidate

logger = structlog.get_logger()

# 50 states + DC + PR
STATE_FIPS = [
    "01", "02", "04", "05", "06", "08", "09", "10", "11", "12", "13", "15", "16", "17", "18", "19", "20", "21",
    "22", "23", "24", "25", "26", "27", "28", "29", "30", "31", "32", "33", "34", "35", "36", "37", "38", "39",
    "40", "41", "42", "44", "45", "46", "47", "48", "49", "50", "51", "53", "54", "55", "56", "72",
]

# Longest first so "city and borough" is removed before "borough"
LEGAL_SUFFIX_PATTERN = re.compile(
    r"\b(city and borough|census area|independent city|municipality|county|parish|borough)\b"
)

GAZETTEER_COLUMNS = ("USPS", "GEOID", "NAME")
ZCTA_COLUMN = "GEOID_ZCTA5_20"
COUNTY_COLUMN = "GEOID_COUNTY_20"


# =============================================================================
# Key Normalization
# =============================================================================

def normalize_county_name(name: Optional[str]) -> str:
    """
    Create the county part of a lookup key.

    Examples:
        "Los Angeles County" -> "los angeles"
        "Orleans Parish"     -> "orleans"
        "Doña Ana County"    -> "dona ana"
    """
    nfkd = unicodedata.normalize("NFKD", str(name or ""))
    ascii_name = nfkd.encode("ascii", "ignore").decode("ascii").lower()
    stripped = LEGAL_SUFFIX_PATTERN.sub("", ascii_name)
    return " ".join(stripped.split())


def county_key(state_abbr: str, county_name: str) -> str:
    return f"{str(state_abbr).strip().upper()}::{normalize_county_name(county_name)}"


# =============================================================================
# County name -> FIPS
# =============================================================================

def parse_gazetteer(text: str, source: str = "<gazetteer>") -> Dict[str, str]:
    """Parse one tab-delimited gazetteer file into {county_key: geoid}"""

    try:
        df = pd.read_csv(io.StringIO(text), sep="\t", dtype=str, keep_default_na=False)
    except (ValueError, pd.errors.ParserError) as e:
        raise GeographySourceError(f"Malformed gazetteer file {source}: {e}")

    # The last header in Census gazetteer files carries trailing whitespace
    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in GAZETTEER_COLUMNS if c not in df.columns]
    if missing:
        raise GeographySourceError(f"Gazetteer file {source} is missing columns {missing}")

    entries = {}
    for usps, geoid, name in zip(df["USPS"], df["GEOID"], df["NAME"]):
        usps, geoid = usps.strip(), geoid.strip()
        if not usps or not geoid or not name.strip():
            continue
        entries[county_key(usps, name)] = geoid.zfill(5)

    return entries


class CountyFipsLookup:
    """Immutable (state, county name) -> county FIPS map"""

    def __init__(self, entries: Dict[str, str]):
        self._entries = dict(entries)

    @classmethod
    def from_gazetteer_texts(cls, texts: Iterable[Tuple[str, str]]) -> "CountyFipsLookup":
        entries: Dict[str, str] = {}
        for source, text in texts:
            entries.update(parse_gazetteer(text, source))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def resolve(self, state: Optional[str], county_name: Optional[str]) -> Optional[str]:
        """Return the 5-digit FIPS, or None when the pair cannot be placed"""
        if not state or not county_name:
            return None
        return self._entries.get(county_key(state, county_name))


def resolve_county_fips(lookup: CountyFipsLookup, state: str, county_name: str) -> Optional[str]:
    return lookup.resolve(state, county_name)


# =============================================================================
# ZCTA -> county candidates
# =============================================================================

def build_zip_index(text: str) -> List[ZipCandidate]:
    """
    Tally county memberships per ZCTA and convert them to shares.

    Shares are rounded to 3 decimals and sorted descending (ties by FIPS);
    the index itself is sorted by ZCTA so reruns diff cleanly.
    """
    lines = text.splitlines()
    if not lines:
        return []

    header = lines[0].split("|")
    if ZCTA_COLUMN not in header or COUNTY_COLUMN not in header:
        logger.warning("ZCTA crosswalk lacks key columns", header=header[:6])
        return []

    idx_zcta = header.index(ZCTA_COLUMN)
    idx_county = header.index(COUNTY_COLUMN)
    width = max(idx_zcta, idx_county) + 1

    freq: Dict[str, Counter] = defaultdict(Counter)
    skipped = 0
    for line in lines[1:]:
        if not line:
            continue
        cols = line.split("|")
        if len(cols) < width:
            skipped += 1
            continue
        zcta, fips = cols[idx_zcta].strip(), cols[idx_county].strip()
        if not zcta or not fips:
            skipped += 1
            continue
        freq[zcta][fips] += 1

    index = []
    for zcta in sorted(freq):
        counts = freq[zcta]
        total = sum(counts.values())
        counties = [(fips, round(count / total, 3)) for fips, count in counts.items()]
        counties.sort(key=lambda c: (-c[1], c[0]))
        index.append(ZipCandidate(zip=zcta, counties=tuple(counties)))

    logger.info("Built ZIP index", zctas=len(index), skipped_lines=skipped)
    return index


# =============================================================================
# Loader
# =============================================================================

class GeographyLoader:
    """Fetches the Census sources and builds both geography lookups"""

    def __init__(
        self,
        downloader: Optional[SourceDownloader] = None,
        settings: Optional[Settings] = None,
        states: Optional[List[str]] = None,
    ):
        self.settings = settings or default_settings
        self.downloader = downloader or SourceDownloader(self.settings)
        self.states = states or STATE_FIPS

    def gazetteer_location(self, state_fips: str) -> str:
        filename = self.settings.gazetteer_file_template.format(state_fips=state_fips)
        return f"{self.settings.gazetteer_base_url.rstrip('/')}/{filename}"

    async def _fetch_gazetteer(self, state_fips: str) -> Tuple[str, str]:
        location = self.gazetteer_location(state_fips)
        try:
            return location, await self.downloader.fetch_text(location)
        except DownloadError as e:
            raise GeographySourceError(f"Missing gazetteer file for state {state_fips}: {e}")

    async def load_county_lookup(self) -> CountyFipsLookup:
        """Any missing or malformed state file aborts the run"""
        texts = await asyncio.gather(*(self._fetch_gazetteer(st) for st in self.states))
        lookup = CountyFipsLookup.from_gazetteer_texts(texts)
        logger.info("Built county FIPS lookup", states=len(self.states), counties=len(lookup))
        return lookup

    async def load_zip_index(self) -> List[ZipCandidate]:
        try:
            text = await self.downloader.fetch_text(self.settings.zcta_county_url)
        except DownloadError as e:
            raise GeographySourceError(f"Missing ZCTA crosswalk: {e}")
        return build_zip_index(text)
