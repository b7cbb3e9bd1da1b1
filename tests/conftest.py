import asyncio
import os
import sys
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.schemas.billing import InvoiceCreateRequest, ProductLineRequest, ServiceLineRequest
from app.schemas.catalog import ProductItem, ServiceItem, Stylist
from app.services.store import InMemoryStore, build_store, reset_store

FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)
SERVICE_DATE = date(2025, 3, 14)


def fixed_clock() -> datetime:
    return FIXED_NOW


async def _seed_catalog(store: InMemoryStore) -> None:
    catalog = store.catalog
    await catalog.add_stylist(
        Stylist(stylist_id="STY-A", name="Ayanda Dlamini", commission_rate=Decimal("0.25"))
    )
    await catalog.add_stylist(Stylist(stylist_id="STY-B", name="Mia Botha"))
    await catalog.add_service(
        ServiceItem(
            service_id="SRV-CUT",
            name="Precision Cut",
            category="cut",
            price=Decimal("500"),
            duration_minutes=60,
            commission_rate=Decimal("0.30"),
        )
    )
    await catalog.add_service(
        ServiceItem(service_id="SRV-BLOW", name="Blow-dry", category="styling", price=Decimal("300"))
    )
    await catalog.add_product(
        ProductItem(
            product_id="PRD-SHAMPOO",
            name="Moisture Shampoo",
            category="haircare",
            price=Decimal("100"),
            commission_rate=Decimal("0.10"),
            stock=5,
        )
    )
    await catalog.add_product(
        ProductItem(product_id="PRD-CONDITIONER", name="Conditioner", price=Decimal("120"), stock=3)
    )
    await catalog.add_product(
        ProductItem(
            product_id="PRD-DYE",
            name="Colour Tube",
            category="colour",
            price=Decimal("50"),
            is_service_product=True,
            stock=10,
        )
    )


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_store()
    yield
    reset_store()


@pytest.fixture
def store() -> InMemoryStore:
    store = build_store()
    asyncio.run(_seed_catalog(store))
    return store


def invoice_request(**overrides) -> InvoiceCreateRequest:
    """One cut at 500 and two bottles of shampoo at 100 for stylist STY-A."""

    payload = {
        "user_id": "CUST-1",
        "customer_name": "Naledi Khumalo",
        "stylist_id": "STY-A",
        "service_date": SERVICE_DATE,
        "services": [ServiceLineRequest(service_id="SRV-CUT")],
        "products": [ProductLineRequest(product_id="PRD-SHAMPOO", quantity=2)],
    }
    payload.update(overrides)
    return InvoiceCreateRequest(**payload)
