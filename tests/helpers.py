"""Builders for synthetic Census/CMS inputs used across the test suite"""

import io
import zipfile
from pathlib import Path
from typing import Dict, List

import pandas as pd

GAZETTEER_HEADER = (
    "USPS\tGEOID\tANSICODE\tNAME\tALAND\tAWATER\tALAND_SQMI\tAWATER_SQMI\tINTPTLAT\t"
    "INTPTLONG                                                                                                               "
)

LANDSCAPE_COLUMNS = [
    "Contract Year",
    "Contract ID",
    "Plan ID",
    "Segment ID",
    "State Abbreviation",
    "County Name",
    "Organization Marketing Name",
    "Plan Name",
    "Plan Type",
    "SNP Type",
]


def gazetteer_text(rows: List[tuple]) -> str:
    lines = [GAZETTEER_HEADER]
    for usps, geoid, name in rows:
        lines.append(f"{usps}\t{geoid}\t00000000\t{name}\t1\t1\t1\t1\t37.0\t-122.0")
    return "\n".join(lines) + "\n"


def landscape_row(**overrides) -> Dict[str, str]:
    row = {
        "Contract Year": "2025",
        "Contract ID": "H0524",
        "Plan ID": "1",
        "Segment ID": "0",
        "State Abbreviation": "CA",
        "County Name": "San Francisco",
        "Organization Marketing Name": "Kaiser Permanente",
        "Plan Name": "Kaiser Permanente Senior Advantage (HMO)",
        "Plan Type": "HMO",
        "SNP Type": "",
    }
    row.update(overrides)
    return row


def write_archive(path: Path, entries: Dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return path


def csv_bytes(rows: List[Dict[str, str]], columns: List[str] = None) -> bytes:
    return pd.DataFrame(rows, columns=columns or LANDSCAPE_COLUMNS).to_csv(index=False).encode("utf-8")


def xlsx_bytes(sheets: Dict[str, pd.DataFrame]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, df in sheets.items():
            df.to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()
