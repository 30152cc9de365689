"""Selected-rate normalization and persistence.

The rates step submits either the current structured rate shape (nested
carrier/service/pricing/transit objects) or the older flattened shape. Both
are parsed through one tagged union and normalised to CanonicalRate at the
persistence boundary. Rate computation itself happens elsewhere.

One rate document is stored as two rows sharing a rate_document_id: the
structured record and the legacy record still read by older consumers.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Annotated, Any, Dict, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..audit.service import log_audit_event
from ..models.shipment_rate import ShipmentRate
from ..observability.logging_config import get_logger
from .exceptions import RatePersistenceError, SectionValidationError

logger = get_logger(__name__)

RATE_FORMAT_STRUCTURED = "structured"
RATE_FORMAT_LEGACY = "legacy"
RATE_STATUS_SELECTED = "selected_for_booking"


class RatePart(BaseModel):
    """Rate payloads carry carrier-specific extras; unknown keys are kept."""

    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)


class RateCarrier(RatePart):
    name: Optional[str] = None
    key: Optional[str] = None
    scac: Optional[str] = None


class RateService(RatePart):
    name: Optional[str] = None
    code: Optional[str] = None


class RatePricing(RatePart):
    total: Optional[float] = None
    freight: Optional[float] = None
    fuel: Optional[float] = None
    service: Optional[float] = None
    accessorial: Optional[float] = None
    currency: str = "CAD"


class RateTransit(RatePart):
    days: Optional[int] = None
    estimated_delivery: Optional[str] = None
    guaranteed: bool = False


class RateWeight(RatePart):
    billed: Optional[float] = None
    rated: Optional[float] = None


class RateSourceCarrier(RatePart):
    """Carrier system that quoted the rate. Brokered rates name the actual
    trucking carrier in `carrier` but must be booked through this one."""
    key: Optional[str] = None
    name: Optional[str] = None
    system: Optional[str] = None


class RoutedRate(RatePart):
    source_carrier: Optional[RateSourceCarrier] = None
    source_carrier_name: Optional[str] = None
    source_carrier_system: Optional[str] = None
    display_carrier_id: Optional[str] = None

    @field_validator("source_carrier", mode="before")
    @classmethod
    def key_only_source(cls, value: Any) -> Any:
        # Older drafts store the source carrier as a bare key
        if isinstance(value, str):
            return {"key": value} if value.strip() else None
        return value

    def routing_key(self) -> Optional[str]:
        """Carrier key the booking is routed to, before the displayed carrier."""
        source = self.source_carrier or RateSourceCarrier()
        candidates = (
            source.key,
            self.source_carrier_name or source.name,
            self.source_carrier_system or source.system,
            self.display_carrier_id,
        )
        for candidate in candidates:
            key = carrier_key_from_name(candidate)
            if key:
                return key
        return None


class StructuredRate(RoutedRate):
    """Current rate shape produced by the rates step."""
    quote_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("quoteId", "quote_id", "id"))
    carrier: RateCarrier = Field(default_factory=RateCarrier)
    service: RateService = Field(default_factory=RateService)
    pricing: RatePricing = Field(default_factory=RatePricing)
    transit: RateTransit = Field(default_factory=RateTransit)
    weight: RateWeight = Field(default_factory=RateWeight)


class LegacyRate(RoutedRate):
    """Flattened rate shape of older clients."""
    quote_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("quoteId", "quote_id", "id"))
    carrier_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("carrierName", "carrier_name", "carrier"))
    carrier_key: Optional[str] = None
    carrier_scac: Optional[str] = None
    service_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("serviceName", "service_name", "serviceType", "service"))
    service_code: Optional[str] = None
    total_charges: Optional[float] = Field(default=None, validation_alias=AliasChoices("totalCharges", "total_charges", "totalCharge", "total"))
    freight_charges: Optional[float] = None
    fuel_charges: Optional[float] = None
    service_charges: Optional[float] = None
    accessorial_charges: Optional[float] = None
    currency: str = "CAD"
    transit_days: Optional[int] = Field(default=None, validation_alias=AliasChoices("transitDays", "transit_days", "transitTime"))
    estimated_delivery_date: Optional[str] = None
    guaranteed: bool = False
    billed_weight: Optional[float] = None
    rated_weight: Optional[float] = None


def _rate_shape(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if isinstance(value.get("pricing"), dict) or isinstance(value.get("carrier"), dict):
            return RATE_FORMAT_STRUCTURED
        return RATE_FORMAT_LEGACY
    if isinstance(value, StructuredRate):
        return RATE_FORMAT_STRUCTURED
    if isinstance(value, LegacyRate):
        return RATE_FORMAT_LEGACY
    return None


SubmittedRate = Annotated[
    Union[
        Annotated[StructuredRate, Tag(RATE_FORMAT_STRUCTURED)],
        Annotated[LegacyRate, Tag(RATE_FORMAT_LEGACY)],
    ],
    Discriminator(_rate_shape),
]

_submitted_rate_adapter = TypeAdapter(SubmittedRate)


def carrier_key_from_name(name: Optional[str]) -> Optional[str]:
    """'Polaris Transportation' -> 'POLARISTRANSPORTATION'."""
    if not name:
        return None
    return re.sub(r"[^A-Za-z0-9]", "", name).upper() or None


@dataclass(frozen=True)
class CanonicalRate:
    """Rate as stored, independent of the submitted shape."""
    rate_format: str
    carrier_key: Optional[str]
    carrier_name: Optional[str]
    carrier_scac: Optional[str]
    service_name: Optional[str]
    service_code: Optional[str]
    total: Optional[float]
    freight: Optional[float]
    fuel: Optional[float]
    currency: str
    transit_days: Optional[int]
    estimated_delivery: Optional[str]
    guaranteed: bool
    billed_weight: Optional[float]
    rated_weight: Optional[float]
    quote_id: Optional[str] = None

    def to_structured(self) -> Dict[str, Any]:
        return {
            "quoteId": self.quote_id,
            "carrier": {"key": self.carrier_key, "name": self.carrier_name, "scac": self.carrier_scac},
            "service": {"name": self.service_name, "code": self.service_code},
            "pricing": {
                "total": self.total,
                "freight": self.freight,
                "fuel": self.fuel,
                "currency": self.currency,
            },
            "transit": {
                "days": self.transit_days,
                "estimatedDelivery": self.estimated_delivery,
                "guaranteed": self.guaranteed,
            },
            "weight": {"billed": self.billed_weight, "rated": self.rated_weight},
        }

    def to_legacy(self) -> Dict[str, Any]:
        return {
            "quoteId": self.quote_id,
            "carrierKey": self.carrier_key,
            "carrierName": self.carrier_name,
            "carrierScac": self.carrier_scac,
            "serviceName": self.service_name,
            "serviceType": self.service_name,
            "serviceCode": self.service_code,
            "totalCharges": self.total,
            "freightCharges": self.freight,
            "fuelCharges": self.fuel,
            "currency": self.currency,
            "transitDays": self.transit_days,
            "transitTime": self.transit_days,
            "estimatedDeliveryDate": self.estimated_delivery,
            "guaranteed": self.guaranteed,
            "billedWeight": self.billed_weight,
            "ratedWeight": self.rated_weight,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_rate(payload: Any) -> Union[StructuredRate, LegacyRate]:
    """Parse a submitted rate into its tagged shape.

    Raises:
        SectionValidationError: payload matches neither shape
    """
    if not isinstance(payload, dict) or not payload:
        raise SectionValidationError(
            "rate_ref",
            [{"type": "dict_type", "loc": ["rate_snapshot"], "msg": "Rate snapshot must be a non-empty object"}]
        )
    try:
        return _submitted_rate_adapter.validate_python(payload)
    except ValidationError as e:
        raise SectionValidationError(
            "rate_ref",
            [
                {"type": err["type"], "loc": ["rate_snapshot", *err["loc"]], "msg": err["msg"]}
                for err in e.errors(include_url=False)
            ]
        )


def normalize_rate(payload: Any) -> CanonicalRate:
    """Normalise a structured or legacy rate payload."""
    rate = parse_rate(payload)

    if isinstance(rate, StructuredRate):
        return CanonicalRate(
            rate_format=RATE_FORMAT_STRUCTURED,
            carrier_key=(
                rate.routing_key()
                or carrier_key_from_name(rate.carrier.key)
                or carrier_key_from_name(rate.carrier.name)
            ),
            carrier_name=rate.carrier.name,
            carrier_scac=rate.carrier.scac,
            service_name=rate.service.name,
            service_code=rate.service.code,
            total=rate.pricing.total,
            freight=rate.pricing.freight,
            fuel=rate.pricing.fuel,
            currency=rate.pricing.currency,
            transit_days=rate.transit.days,
            estimated_delivery=rate.transit.estimated_delivery,
            guaranteed=rate.transit.guaranteed,
            billed_weight=rate.weight.billed,
            rated_weight=rate.weight.rated,
            quote_id=rate.quote_id,
        )

    return CanonicalRate(
        rate_format=RATE_FORMAT_LEGACY,
        carrier_key=(
            rate.routing_key()
            or carrier_key_from_name(rate.carrier_key)
            or carrier_key_from_name(rate.carrier_name)
        ),
        carrier_name=rate.carrier_name,
        carrier_scac=rate.carrier_scac,
        service_name=rate.service_name,
        service_code=rate.service_code,
        total=rate.total_charges,
        freight=rate.freight_charges,
        fuel=rate.fuel_charges,
        currency=rate.currency,
        transit_days=rate.transit_days,
        estimated_delivery=rate.estimated_delivery_date,
        guaranteed=rate.guaranteed,
        billed_weight=rate.billed_weight,
        rated_weight=rate.rated_weight,
        quote_id=rate.quote_id,
    )


class RateRepositoryPort(ABC):
    """Persistence of rates selected for booking."""

    @abstractmethod
    async def persist(
        self,
        draft_key: UUID,
        snapshot: Dict[str, Any],
        company_key: Optional[str] = None,
    ) -> str:
        """Persist a rate snapshot and return its rate_document_id.

        Raises:
            RatePersistenceError: if the snapshot is invalid or cannot be written
        """
        pass

    @abstractmethod
    async def get(self, rate_document_id: str, record_shape: str = RATE_FORMAT_STRUCTURED) -> Optional[Dict[str, Any]]:
        pass


class SqlAlchemyRateRepository(RateRepositoryPort):
    """Writes both rows of a rate document in one transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def persist(
        self,
        draft_key: UUID,
        snapshot: Dict[str, Any],
        company_key: Optional[str] = None,
    ) -> str:
        try:
            rate = normalize_rate(snapshot)
        except SectionValidationError as e:
            raise RatePersistenceError(f"Rate snapshot is not a valid rate: {e}") from e

        rate_document_id = uuid4()
        rows = [
            ShipmentRate(
                rate_document_id=rate_document_id,
                draft_key=draft_key,
                record_shape=shape,
                rate_format=rate.rate_format,
                carrier_key=rate.carrier_key,
                status=RATE_STATUS_SELECTED,
                payload_json=payload,
                raw_rate_json=snapshot,
            )
            for shape, payload in (
                (RATE_FORMAT_STRUCTURED, rate.to_structured()),
                (RATE_FORMAT_LEGACY, rate.to_legacy()),
            )
        ]

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add_all(rows)
                    await session.flush()
                    if company_key:
                        await log_audit_event(
                            session,
                            company_key=company_key,
                            action="RATE_SELECTED_FOR_BOOKING",
                            entity_type="shipment_rate",
                            entity_id=str(rate_document_id),
                            metadata={
                                "draft_key": str(draft_key),
                                "carrier_key": rate.carrier_key,
                                "rate_format": rate.rate_format,
                            },
                        )
        except SQLAlchemyError as e:
            raise RatePersistenceError(f"Failed to persist selected rate: {e}") from e

        logger.info(
            f"Selected rate persisted as {rate_document_id}",
            extra={"draft_key": str(draft_key), "carrier": rate.carrier_key},
        )
        return str(rate_document_id)

    async def get(self, rate_document_id: str, record_shape: str = RATE_FORMAT_STRUCTURED) -> Optional[Dict[str, Any]]:
        try:
            document_id = UUID(str(rate_document_id))
        except ValueError:
            return None

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ShipmentRate).where(
                        ShipmentRate.rate_document_id == document_id,
                        ShipmentRate.record_shape == record_shape,
                    )
                )
                row = result.scalar_one_or_none()
                return row.to_dict() if row else None
        except SQLAlchemyError as e:
            raise RatePersistenceError(f"Failed to load rate {rate_document_id}: {e}") from e
