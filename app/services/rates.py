"""Commission rate resolution.

The rate for a line is the first one found in this order:

1. an explicit override supplied with the line (for example a booking-level rate),
2. the rate stored on the catalog service or product,
3. for services only, the stylist's default rate,
4. the settings default for the kind of item: service, retail product or
   service-product (a product consumed while doing a service).

Missing data never raises; the cascade always ends at the settings default and
yields zero only when that default is unset.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Literal, Optional

from app.schemas.settings import InvoiceSettings
from app.services.store import CatalogRepository

logger = logging.getLogger(__name__)

ItemType = Literal["service", "product"]

_ZERO_RATE = Decimal("0")


def settings_default_rate(
    settings: InvoiceSettings,
    item_type: ItemType,
    *,
    is_service_product: bool = False,
) -> Decimal:
    if item_type == "service":
        rate = settings.default_service_commission_rate
    elif is_service_product:
        rate = settings.default_service_product_commission_rate
    else:
        rate = settings.default_product_commission_rate
    return rate if rate is not None else _ZERO_RATE


def resolve_rate(
    item_type: ItemType,
    settings: InvoiceSettings,
    *,
    line_override: Optional[Decimal] = None,
    catalog_rate: Optional[Decimal] = None,
    stylist_rate: Optional[Decimal] = None,
    is_service_product: bool = False,
) -> Decimal:
    if line_override is not None:
        return line_override
    if catalog_rate is not None:
        return catalog_rate
    # products never fall back to the stylist
    if item_type == "service" and stylist_rate:
        return stylist_rate
    return settings_default_rate(settings, item_type, is_service_product=is_service_product)


class RateResolver:
    """Looks up catalog and stylist rates, then applies :func:`resolve_rate`."""

    def __init__(self, catalog: CatalogRepository, settings: InvoiceSettings) -> None:
        self._catalog = catalog
        self._settings = settings

    async def resolve(
        self,
        item_id: str,
        item_type: ItemType,
        stylist_id: str,
        line_override: Optional[Decimal] = None,
    ) -> Decimal:
        if line_override is not None:
            return line_override

        catalog_rate: Optional[Decimal] = None
        is_service_product = False
        if item_type == "service":
            service = await self._catalog.get_service(item_id)
            catalog_rate = service.commission_rate if service else None
        else:
            product = await self._catalog.get_product(item_id)
            if product is not None:
                catalog_rate = product.commission_rate
                is_service_product = product.is_service_product

        stylist_rate: Optional[Decimal] = None
        if item_type == "service" and catalog_rate is None:
            stylist = await self._catalog.get_stylist(stylist_id)
            stylist_rate = stylist.commission_rate if stylist else None

        rate = resolve_rate(
            item_type,
            self._settings,
            catalog_rate=catalog_rate,
            stylist_rate=stylist_rate,
            is_service_product=is_service_product,
        )
        logger.debug("Resolved %s %s rate %s for stylist %s", item_type, item_id, rate, stylist_id)
        return rate
