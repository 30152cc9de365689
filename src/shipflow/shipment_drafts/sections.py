"""Typed schema for the sections of a shipment draft.

Every section has an explicit pydantic model. Payloads coming from the step
form are parsed here, so malformed input is rejected (or normalised) at the
accumulator boundary instead of being merged blindly.

Both snake_case and the form's camelCase field names are accepted; dumps are
always snake_case.
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .exceptions import SectionValidationError


class SectionName(str, Enum):
    """Canonical section names, in form order."""
    INFO = "info"
    ORIGIN = "origin"
    DESTINATION = "destination"
    PACKAGES = "packages"
    RATE_REF = "rate_ref"


# Sections merged key-by-key vs. replaced wholesale
OBJECT_SECTIONS = frozenset({
    SectionName.INFO,
    SectionName.ORIGIN,
    SectionName.DESTINATION,
    SectionName.RATE_REF,
})
SEQUENCE_SECTIONS = frozenset({SectionName.PACKAGES})


class SectionModel(BaseModel):
    """Base for section payloads: unknown keys are rejected."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _blank_to_none(value: Any) -> Any:
    # The form sends "" for untouched numeric inputs
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ShipmentInfoSection(SectionModel):
    """General shipment information (first step)."""
    shipment_type: Optional[Literal["courier", "freight"]] = None
    service_level: Optional[str] = None
    shipment_date: Optional[date] = None
    shipper_reference_number: Optional[str] = None
    bill_type: Optional[str] = None
    earliest_pickup_time: Optional[str] = None
    latest_pickup_time: Optional[str] = None
    earliest_delivery_time: Optional[str] = None
    latest_delivery_time: Optional[str] = None
    dangerous_goods_type: Optional[str] = None
    signature_service_type: Optional[str] = None
    hold_for_pickup: bool = False
    saturday_delivery: bool = False

    @field_validator("shipment_type", "shipment_date", mode="before")
    @classmethod
    def blank_as_unset(cls, value: Any) -> Any:
        return _blank_to_none(value)


class AddressSection(SectionModel):
    """Ship-from address and contact."""
    address_id: Optional[str] = None
    company_name: Optional[str] = None
    attention_name: Optional[str] = None
    street: Optional[str] = None
    street2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    special_instructions: Optional[str] = None


class DestinationSection(AddressSection):
    """Ship-to address, bound to a customer of the operator's company."""
    customer_key: Optional[str] = None


class PackageEntry(SectionModel):
    """One package line of the packages section."""
    item_description: Optional[str] = None
    packaging_type: Optional[int] = None
    packaging_quantity: Optional[float] = None
    weight: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    freight_class: Optional[str] = None
    declared_value: Optional[float] = None
    stackable: bool = False
    unit_system: Literal["imperial", "metric"] = "imperial"

    @field_validator(
        "packaging_type",
        "packaging_quantity",
        "weight",
        "length",
        "width",
        "height",
        "declared_value",
        mode="before",
    )
    @classmethod
    def blank_as_unset(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("freight_class", mode="before")
    @classmethod
    def freight_class_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return _blank_to_none(value)


class RateRefSection(SectionModel):
    """Rate binding: a persisted rate document id and/or the transient snapshot."""
    rate_document_id: Optional[str] = None
    rate_snapshot: Optional[Dict[str, Any]] = None

    @field_validator("rate_document_id", mode="before")
    @classmethod
    def id_as_text(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return str(value) if value is not None else None


class DraftSections(BaseModel):
    """Canonical shape of all sections. Every key is always present."""
    info: ShipmentInfoSection = Field(default_factory=ShipmentInfoSection)
    origin: AddressSection = Field(default_factory=AddressSection)
    destination: DestinationSection = Field(default_factory=DestinationSection)
    packages: List[PackageEntry] = Field(default_factory=list)
    rate_ref: RateRefSection = Field(default_factory=RateRefSection)


SECTION_MODELS = {
    SectionName.INFO: ShipmentInfoSection,
    SectionName.ORIGIN: AddressSection,
    SectionName.DESTINATION: DestinationSection,
    SectionName.PACKAGES: PackageEntry,
    SectionName.RATE_REF: RateRefSection,
}

SectionValue = Union[SectionModel, List[PackageEntry]]


def coerce_section_name(section: Union[str, SectionName]) -> SectionName:
    """Resolve a section name, raising SectionValidationError for unknown names."""
    try:
        return SectionName(section)
    except ValueError:
        raise SectionValidationError(
            str(section),
            [{"type": "unknown_section", "msg": f"Unknown section '{section}'"}]
        )


def normalize_package_list(payload: Any) -> List[Any]:
    """Return package entries as an ordered list.

    Older clients persisted packages as a numeric-keyed mapping
    ({"0": {...}, "1": {...}}); those are ordered by their integer key.
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and all(str(k).isdigit() for k in payload):
        return [payload[k] for k in sorted(payload, key=lambda k: int(k))]
    raise SectionValidationError(
        SectionName.PACKAGES.value,
        [{"type": "list_type", "msg": "Packages must be a list of package entries"}]
    )


def parse_object_section(section: SectionName, payload: Dict[str, Any]) -> SectionModel:
    """Parse a full object-section payload into its model."""
    if not isinstance(payload, dict):
        raise SectionValidationError(
            section.value,
            [{"type": "dict_type", "msg": "Section payload must be an object"}]
        )
    model = SECTION_MODELS[section]
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise SectionValidationError(section.value, _error_list(e))


def parse_packages(payload: Any) -> List[PackageEntry]:
    """Parse the packages section, replacing it wholesale."""
    entries = normalize_package_list(payload)
    parsed = []
    errors = []
    for index, entry in enumerate(entries):
        if isinstance(entry, PackageEntry):
            parsed.append(entry)
            continue
        try:
            parsed.append(PackageEntry.model_validate(entry))
        except ValidationError as e:
            for error in _error_list(e):
                error["loc"] = [index, *error.get("loc", [])]
                errors.append(error)
    if errors:
        raise SectionValidationError(SectionName.PACKAGES.value, errors)
    return parsed


def dump_section(value: SectionValue) -> Any:
    """JSON-ready representation of a section value."""
    if isinstance(value, list):
        return [entry.model_dump(mode="json") for entry in value]
    return value.model_dump(mode="json")


def initial_sections(human_id: Optional[str] = None, today: Optional[date] = None) -> DraftSections:
    """Defaults for a brand-new draft.

    Shipment type courier, ship date today, third-party billing and a single
    12x12x12 box waiting for its weight and description.
    """
    return DraftSections(
        info=ShipmentInfoSection(
            shipment_type="courier",
            service_level="Any",
            shipment_date=today or date.today(),
            shipper_reference_number=human_id,
            bill_type="third_party",
        ),
        packages=[
            PackageEntry(
                packaging_type=244,  # BOX(ES)
                packaging_quantity=1,
                length=12,
                width=12,
                height=12,
            )
        ],
    )


def _error_list(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"type": e["type"], "loc": list(e["loc"]), "msg": e["msg"]}
        for e in error.errors(include_url=False)
    ]
