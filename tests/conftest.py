"""Pytest fixtures for ShipFlow tests.

Provides reusable fixtures for:
- In-memory SQLite database (aiosqlite) with all tables created
- Draft store and rate repository bound to that database
- Mock carrier gateway and a recording sleep for booking timing
- Complete section payloads as the step form sends them (camelCase)

Usage:
    @pytest.mark.asyncio
    async def test_something(store, owner):
        key = await store.create(owner, "ACME-1", {})
"""

from datetime import date

import pytest
import pytest_asyncio

from shipflow.carriers.capabilities import CarrierCapabilityRegistry
from shipflow.carriers.implementations.mock_gateway import MockCarrierGateway
from shipflow.database import build_engine, build_session_factory, create_tables
from shipflow.shipment_drafts.accumulator import SectionAccumulator
from shipflow.shipment_drafts.identifiers import ShipmentIdGenerator
from shipflow.shipment_drafts.lifecycle import DraftLifecycleManager
from shipflow.shipment_drafts.rates import SqlAlchemyRateRepository
from shipflow.shipment_drafts.sections import initial_sections
from shipflow.shipment_drafts.store import Owner, SqlAlchemyDraftStore

TODAY = date(2026, 10, 19)


class RecordingSleep:
    """Async stand-in for asyncio.sleep.

    Records every delay together with the gateway operations already made at
    that moment, so tests can assert what happened before and after a wait.
    """

    def __init__(self, gateway=None):
        self.gateway = gateway
        self.calls = []

    async def __call__(self, delay):
        seen = [c.operation for c in self.gateway.calls] if self.gateway is not None else []
        self.calls.append((delay, seen))

    @property
    def delays(self):
        return [delay for delay, _ in self.calls]


# ============================================================================
# Section payloads
# ============================================================================

@pytest.fixture
def origin_payload():
    return {
        "companyName": "Acme Widgets",
        "street": "100 King St W",
        "city": "Toronto",
        "state": "ON",
        "postalCode": "M5X 1A9",
        "country": "CA",
        "contactName": "Jo Park",
        "contactPhone": "416-555-0100",
    }


@pytest.fixture
def destination_payload():
    return {
        "customerKey": "CUST01",
        "companyName": "Northwind Supply",
        "street": "55 Rue Sainte-Catherine",
        "city": "Montreal",
        "state": "QC",
        "postalCode": "H2X 1Z4",
        "country": "CA",
        "contactName": "Sam Roy",
        "contactPhone": "514-555-0199",
    }


@pytest.fixture
def packages_payload():
    return [
        {
            "itemDescription": "Widgets",
            "packagingType": 244,
            "packagingQuantity": 1,
            "weight": 10,
            "length": 12,
            "width": 12,
            "height": 12,
        }
    ]


@pytest.fixture
def label_rate():
    """Structured rate of a carrier that needs a label."""
    return {
        "quoteId": "Q-1001",
        "carrier": {"key": "CANPAR", "name": "Canpar"},
        "service": {"name": "Ground", "code": "GRD"},
        "pricing": {"total": 42.5, "freight": 38.0, "fuel": 4.5, "currency": "CAD"},
        "transit": {"days": 2},
    }


@pytest.fixture
def bol_rate():
    """Legacy flattened rate of a carrier that needs a bill of lading."""
    return {
        "carrierName": "Polaris Transportation",
        "serviceName": "LTL Standard",
        "totalCharges": 310.0,
        "transitDays": 3,
    }


@pytest.fixture
def ready_accumulator(origin_payload, destination_payload, packages_payload, label_rate):
    """Accumulator with every section complete and a snapshot-only rate binding."""
    accumulator = SectionAccumulator(initial_sections(human_id="ACME-7KQ2MX", today=TODAY))
    accumulator.update("origin", origin_payload)
    accumulator.update("destination", destination_payload)
    accumulator.update("packages", packages_payload)
    accumulator.update("rate_ref", {"rateSnapshot": label_rate})
    return accumulator


# ============================================================================
# Persistence
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return SqlAlchemyDraftStore(session_factory)


@pytest.fixture
def rate_repository(session_factory):
    return SqlAlchemyRateRepository(session_factory)


@pytest.fixture
def owner():
    return Owner(company_key="ACME", user_key="user-1")


@pytest.fixture
def other_owner():
    return Owner(company_key="ACME", user_key="user-2")


# ============================================================================
# Carriers and orchestration
# ============================================================================

@pytest.fixture
def gateway():
    return MockCarrierGateway()


@pytest.fixture
def capabilities():
    return CarrierCapabilityRegistry.from_lists(
        label_carriers=["CANPAR"],
        bol_carriers=["ESHIPPLUS", "POLARISTRANSPORTATION"],
    )


@pytest.fixture
def recording_sleep(gateway):
    return RecordingSleep(gateway)


@pytest.fixture
def id_generator(store):
    return ShipmentIdGenerator(store)


@pytest.fixture
def lifecycle(store, rate_repository, gateway, capabilities, id_generator, recording_sleep):
    return DraftLifecycleManager(
        store=store,
        rate_repository=rate_repository,
        gateway=gateway,
        capabilities=capabilities,
        id_generator=id_generator,
        sleep=recording_sleep,
        today=lambda: TODAY,
    )
