"""Geo Resolver and landscape ingestion"""

from .geography import CountyFipsLookup, GeographyLoader, build_zip_index, normalize_county_name
from .landscape import (
    HeaderMap, LandscapeIngester, aggregate, emit_year, normalize_row, resolve_header_aliases
)
from .zip_handler import ZIPHandler, detect_table

__all__ = [
    "CountyFipsLookup",
    "GeographyLoader",
    "build_zip_index",
    "normalize_county_name",
    "HeaderMap",
    "LandscapeIngester",
    "aggregate",
    "emit_year",
    "normalize_row",
    "resolve_header_aliases",
    "ZIPHandler",
    "detect_table",
]
