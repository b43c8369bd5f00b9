"""
Shared fixtures for the landscape pipeline test suite.

Everything runs offline: Census and CMS sources are small synthetic texts,
archives are built in tmp_path, and HTTP goes through httpx.MockTransport.
"""

import pytest

from ma_landscape.config import Settings
from ma_landscape.ingestion.geography import CountyFipsLookup, build_zip_index
from tests.helpers import gazetteer_text


@pytest.fixture
def ca_gazetteer_text() -> str:
    return gazetteer_text([
        ("CA", "06075", "San Francisco County"),
        ("CA", "06037", "Los Angeles County"),
        ("CA", "06059", "Orange County"),
    ])


@pytest.fixture
def county_lookup(ca_gazetteer_text) -> CountyFipsLookup:
    other = gazetteer_text([
        ("LA", "22071", "Orleans Parish"),
        ("AK", "02110", "Juneau City and Borough"),
        ("NM", "35013", "Doña Ana County"),
        ("VA", "51760", "Richmond city"),
    ])
    return CountyFipsLookup.from_gazetteer_texts([("06", ca_gazetteer_text), ("misc", other)])


@pytest.fixture
def zcta_text() -> str:
    return "\n".join([
        "OID_ZCTA5_20|GEOID_ZCTA5_20|NAMELSAD_ZCTA5_20|OID_COUNTY_20|GEOID_COUNTY_20|NAMELSAD_COUNTY_20",
        "1|94110|ZCTA5 94110|11|06075|San Francisco County",
        "2|90620|ZCTA5 90620|12|06059|Orange County",
        "3|90620|ZCTA5 90620|13|06037|Los Angeles County",
        "4|90620|ZCTA5 90620|12|06059|Orange County",
        "garbage line without delimiters",
        "5|90001|ZCTA5 90001|14||",
    ]) + "\n"


@pytest.fixture
def zip_index(zcta_text):
    return build_zip_index(zcta_text)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        target_years="2025",
        cms_landscape_url=None,
        serpapi_key=None,
        dist_dir=str(tmp_path / "dist"),
        data_dir=str(tmp_path / "data"),
        cache_dir=str(tmp_path / "cache"),
        download_max_retries=1,
    )


class FakeGeography:
    """Stands in for GeographyLoader with prebuilt lookups"""

    def __init__(self, lookup, zip_index):
        self.lookup = lookup
        self.zip_index = zip_index

    async def load_county_lookup(self):
        return self.lookup

    async def load_zip_index(self):
        return self.zip_index


@pytest.fixture
def fake_geography(county_lookup, zip_index) -> FakeGeography:
    return FakeGeography(county_lookup, zip_index)
