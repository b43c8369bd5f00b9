"""ZIP archive handling and landscape table detection"""

import io
import zipfile
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd
import structlog

from ma_landscape.errors import MissingInputError, TableDetectionError

logger = structlog.get_logger()

CSV_SUFFIXES = (".csv",)
SPREADSHEET_SUFFIXES = (".xlsx", ".xls")

# A candidate table must carry one header from every group
REQUIRED_COLUMN_GROUPS: Dict[str, Tuple[str, ...]] = {
    "year": ("contract year", "year"),
    "county": ("county name", "county fips", "county code", "county code (fips)"),
    "contract": ("contract id", "contract number"),
    "plan": ("plan id",),
}


def normalize_header(header) -> str:
    """Lowercase and collapse whitespace so header matching is forgiving"""
    return " ".join(str(header).split()).lower()


def missing_column_groups(columns: Iterable) -> List[str]:
    headers = {normalize_header(c) for c in columns}
    return [
        group for group, names in REQUIRED_COLUMN_GROUPS.items()
        if not any(name in headers for name in names)
    ]


def has_required_columns(columns: Iterable) -> bool:
    return not missing_column_groups(columns)


class ZIPHandler:
    """Reads candidate tables out of a landscape archive without extracting it"""

    def __init__(self, archive_path: Path):
        self.archive_path = Path(archive_path)
        if not self.archive_path.exists():
            raise MissingInputError(f"ZIP file not found: {self.archive_path}")

    def list_entries(self) -> List[str]:
        """File entries in archive order (directories skipped)"""
        try:
            with zipfile.ZipFile(self.archive_path, "r") as zip_ref:
                return [name for name in zip_ref.namelist() if not name.endswith("/")]
        except zipfile.BadZipFile as e:
            raise TableDetectionError(f"Not a readable ZIP archive: {self.archive_path} ({e})")

    def read_entry(self, name: str) -> bytes:
        with zipfile.ZipFile(self.archive_path, "r") as zip_ref:
            return zip_ref.read(name)

    def read_csv_entry(self, name: str) -> pd.DataFrame:
        """Read a CSV entry as all-string columns, trying common CMS encodings"""

        content = self.read_entry(name)

        for enc in ("utf-8-sig", "cp1252", "latin-1"):
            try:
                df = pd.read_csv(
                    io.BytesIO(content),
                    dtype=str,
                    keep_default_na=False,
                    encoding=enc,
                    skip_blank_lines=True,
                )
                logger.info(
                    "CSV entry read successfully",
                    entry=name,
                    encoding=enc,
                    rows=len(df),
                    columns=len(df.columns),
                )
                return df
            except UnicodeDecodeError:
                continue

        raise ValueError(f"Could not decode {name} with any encoding")

    def read_spreadsheet_entry(self, name: str) -> Dict[str, pd.DataFrame]:
        """Read every sheet of a workbook entry, in workbook order"""

        sheets = pd.read_excel(
            io.BytesIO(self.read_entry(name)),
            sheet_name=None,
            dtype=str,
            keep_default_na=False,
        )
        return {sheet: df.fillna("") for sheet, df in sheets.items()}

    def iter_candidates(self) -> Iterator[Tuple[str, Optional[pd.DataFrame]]]:
        """Yield (descriptor, table) for CSV entries first, then each spreadsheet sheet"""

        entries = self.list_entries()
        csv_entries = [e for e in entries if e.lower().endswith(CSV_SUFFIXES)]
        sheet_entries = [e for e in entries if e.lower().endswith(SPREADSHEET_SUFFIXES)]

        for entry in csv_entries:
            try:
                yield entry, self.read_csv_entry(entry)
            except Exception as e:
                logger.warning("Skipping unreadable CSV entry", entry=entry, error=str(e))
                yield entry, None

        for entry in sheet_entries:
            try:
                sheets = self.read_spreadsheet_entry(entry)
            except Exception as e:
                logger.warning("Skipping unreadable spreadsheet entry", entry=entry, error=str(e))
                yield entry, None
                continue
            for sheet_name, df in sheets.items():
                yield f"{entry}#{sheet_name}", df

    def detect_table(self) -> Tuple[pd.DataFrame, str]:
        """Return the first candidate table carrying all required landscape columns"""

        inspected = []
        for descriptor, df in self.iter_candidates():
            inspected.append(descriptor)
            if df is None or df.empty:
                continue

            missing = missing_column_groups(df.columns)
            if missing:
                logger.info("Candidate table lacks required columns", entry=descriptor, missing=missing)
                continue

            logger.info("Using landscape table", entry=descriptor, rows=len(df))
            return df, descriptor

        raise TableDetectionError(
            "Could not find a Landscape table with required columns in the CMS ZIP.",
            candidates=inspected,
        )


def detect_table(archive_path: Path) -> Tuple[pd.DataFrame, str]:
    return ZIPHandler(archive_path).detect_table()
