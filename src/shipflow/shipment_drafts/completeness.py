"""Data completeness checks for shipment draft sections.

Pure functions over the typed sections: nothing here reads or writes state.
The result drives step selection on resume and the booking precondition.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .sections import (
    AddressSection,
    DestinationSection,
    DraftSections,
    PackageEntry,
    RateRefSection,
    SectionName,
    ShipmentInfoSection,
)


ADDRESS_REQUIRED_FIELDS = [
    "company_name",
    "street",
    "city",
    "state",
    "postal_code",
    "country",
    "contact_name",
    "contact_phone",
]

PACKAGE_REQUIRED_FIELDS = [
    "item_description",
    "packaging_type",
    "packaging_quantity",
    "weight",
    "length",
    "width",
    "height",
]

# Package fields that must be finite and strictly positive
PACKAGE_POSITIVE_FIELDS = frozenset({
    "packaging_quantity",
    "weight",
    "length",
    "width",
    "height",
})


@dataclass
class SectionCompleteness:
    """Completeness of one section."""
    complete: bool
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"complete": self.complete, "missing": list(self.missing)}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _result(missing: List[str]) -> SectionCompleteness:
    return SectionCompleteness(complete=not missing, missing=missing)


def check_info(info: ShipmentInfoSection) -> SectionCompleteness:
    missing = []
    if info.shipment_type not in ("courier", "freight"):
        missing.append("shipment_type")
    if info.shipment_date is None:
        missing.append("shipment_date")
    if _is_blank(info.bill_type):
        missing.append("bill_type")
    return _result(missing)


def check_origin(origin: AddressSection) -> SectionCompleteness:
    return _result([f for f in ADDRESS_REQUIRED_FIELDS if _is_blank(getattr(origin, f))])


def check_destination(destination: DestinationSection) -> SectionCompleteness:
    missing = []
    if _is_blank(destination.customer_key):
        missing.append("customer_key")
    missing.extend(f for f in ADDRESS_REQUIRED_FIELDS if _is_blank(getattr(destination, f)))
    return _result(missing)


def check_packages(packages: List[PackageEntry]) -> SectionCompleteness:
    """At least one entry; every entry carries a description and positive measures.

    Missing fields are reported as ``packages[<index>].<field>``.
    """
    if not packages:
        return _result(["packages"])

    missing = []
    for index, entry in enumerate(packages):
        for field_name in PACKAGE_REQUIRED_FIELDS:
            value = getattr(entry, field_name)
            if field_name in PACKAGE_POSITIVE_FIELDS:
                bad = not _is_positive_number(value)
            else:
                bad = _is_blank(value)
            if bad:
                missing.append(f"packages[{index}].{field_name}")
    return _result(missing)


def check_rate_ref(rate_ref: RateRefSection) -> SectionCompleteness:
    if _is_blank(rate_ref.rate_document_id) and not rate_ref.rate_snapshot:
        return _result(["rate_document_id"])
    return _result([])


_CHECKS = {
    SectionName.INFO: check_info,
    SectionName.ORIGIN: check_origin,
    SectionName.DESTINATION: check_destination,
    SectionName.PACKAGES: check_packages,
    SectionName.RATE_REF: check_rate_ref,
}


def evaluate(sections: DraftSections) -> Dict[str, SectionCompleteness]:
    """Evaluate every section, in form order."""
    return {
        name.value: _CHECKS[name](getattr(sections, name.value))
        for name in SectionName
    }


def is_booking_ready(record: Dict[str, SectionCompleteness]) -> bool:
    return all(result.complete for result in record.values())


def first_incomplete_section(record: Dict[str, SectionCompleteness]) -> Optional[str]:
    """Name of the first incomplete section in form order, or None."""
    for name in SectionName:
        result = record.get(name.value)
        if result is not None and not result.complete:
            return name.value
    return None


def missing_fields(record: Dict[str, SectionCompleteness]) -> Dict[str, List[str]]:
    """Missing field names of incomplete sections only."""
    return {
        name: list(result.missing)
        for name, result in record.items()
        if not result.complete
    }
