"""
Data model for the landscape pipeline.

Plain dataclasses; `to_dict()` produces the exact JSON shape written to the
dist artifacts, so field order here is part of the output contract.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Carriers keep at most this many plans per county
MAX_PLANS_PER_CARRIER = 20

DEFAULT_SEGMENT_ID = "000"


def to_plan_key(year: int, contract_id: str, plan_id: Any, segment_id: Any = None) -> str:
    """
    Build the canonical cmsPlanKey.

    Examples:
        >>> to_plan_key(2025, "h2458", "2")
        '2025-H2458-002-000'
    """
    segment = str(segment_id or DEFAULT_SEGMENT_ID).zfill(3)
    return f"{year}-{str(contract_id).upper()}-{str(plan_id).zfill(3)}-{segment}"


@dataclass(frozen=True)
class ZipCandidate:
    """ZIP-like code with its counties weighted by relationship share"""
    zip: str
    counties: Tuple[Tuple[str, float], ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"zip": self.zip, "counties": [[fips, share] for fips, share in self.counties]}


@dataclass(frozen=True)
class PlanRecord:
    """One normalized landscape row"""
    year: int
    contract_id: str
    plan_id: str
    segment_id: str
    org_name: str
    marketing_name: str
    plan_type: Optional[str]
    snp_type: Optional[str]
    county_fips: str
    state: str
    county_name: str

    @property
    def carrier_key(self) -> str:
        return self.org_name or self.contract_id

    def plan_summary(self) -> Dict[str, Any]:
        return {
            "contractId": self.contract_id,
            "planId": self.plan_id,
            "segmentId": self.segment_id,
            "marketingName": self.marketing_name,
            "planType": self.plan_type,
            "snpType": self.snp_type,
        }


@dataclass
class Carrier:
    """Plans offered by one organization within one county"""
    org_name: str
    contract_ids: List[str] = field(default_factory=list)
    plans: List[Dict[str, Any]] = field(default_factory=list)
    dropped_plans: int = 0

    def add(self, record: PlanRecord) -> None:
        if record.contract_id not in self.contract_ids:
            self.contract_ids.append(record.contract_id)
        if len(self.plans) < MAX_PLANS_PER_CARRIER:
            self.plans.append(record.plan_summary())
        else:
            self.dropped_plans += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orgName": self.org_name,
            "contractIds": list(self.contract_ids),
            "plans": list(self.plans),
        }


@dataclass
class CountyBucket:
    """All carriers for one county FIPS"""
    county_fips: str
    state: str
    county_name: str
    carriers: Dict[str, Carrier] = field(default_factory=dict)

    def to_dict(self, year: int) -> Dict[str, Any]:
        return {
            "year": year,
            "county_fips": self.county_fips,
            "state": self.state,
            "county_name": self.county_name,
            "carriers": [carrier.to_dict() for carrier in self.carriers.values()],
        }


@dataclass(frozen=True)
class PlanDescriptor:
    """A distinct plan as seen by source discovery"""
    year: int
    contract_id: str
    plan_id: str
    segment_id: str
    org_name: str
    marketing_name: str

    @property
    def cms_plan_key(self) -> str:
        return to_plan_key(self.year, self.contract_id, self.plan_id, self.segment_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "contractId": self.contract_id,
            "planId": self.plan_id,
            "segmentId": self.segment_id,
            "orgName": self.org_name,
            "marketingName": self.marketing_name,
            "cmsPlanKey": self.cms_plan_key,
        }


@dataclass(frozen=True)
class SourceRecord:
    """Verified or manually curated document location for one plan"""
    cms_plan_key: str
    org_name: str
    marketing_name: str
    url: str
    year: Optional[int] = None

    def to_row(self) -> Dict[str, str]:
        return {
            "cmsPlanKey": self.cms_plan_key,
            "orgName": self.org_name,
            "marketingName": self.marketing_name,
            "url": self.url,
        }


@dataclass
class BenefitRecord:
    """Structured extraction result for one plan"""
    cms_plan_key: str
    source_pdf_url: str
    plan_meta: Dict[str, Any]
    medical: Dict[str, Any]
    nutrition: Dict[str, Any]
    supplemental: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cmsPlanKey": self.cms_plan_key,
            "sourcePdfUrl": self.source_pdf_url,
            "planMeta": self.plan_meta,
            "medical": self.medical,
            "nutrition": self.nutrition,
            "supplemental": self.supplemental,
        }
