from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class Stylist(BaseModel):
    stylist_id: str
    name: str
    specialty: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)


class ServiceItem(BaseModel):
    service_id: str
    name: str
    category: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0)
    duration_minutes: Optional[int] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)


class ProductItem(BaseModel):
    product_id: str
    name: str
    category: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0)
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    is_service_product: bool = False  # consumed during a service, not sold over the counter
    stock: int = 0
