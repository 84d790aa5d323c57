from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CustomerBlock:
    name: str | None = None
    phone: str | None = None
    phone_localizer: str | None = None


@dataclass
class DeliveryAddress:
    formatted: str | None = None
    street_name: str | None = None
    street_number: str | None = None
    neighborhood: str | None = None
    complement: str | None = None
    reference: str | None = None
    postal_code: str | None = None
    city: str | None = None
    state: str | None = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def display(self) -> str:
        """Formatted address, else 'street, number - neighborhood, city/state'."""
        if self.formatted:
            return self.formatted
        street = ", ".join(p for p in (self.street_name, self.street_number) if p)
        place = "/".join(p for p in (self.city, self.state) if p)
        tail = ", ".join(p for p in (self.neighborhood, place) if p)
        return " - ".join(p for p in (street, tail) if p)


@dataclass
class NormalizedOrder:
    order_id: str
    display_id: str | None
    created_at: str | None
    merchant_id: str | None
    customer: CustomerBlock
    address: DeliveryAddress
    pickup_code: str | None = None


def _get(d: Dict[str, Any] | None, key: str, default=None):
    if not isinstance(d, dict):
        return default
    return d.get(key, default)


def _coerce_float(v: Any) -> Optional[float]:
    try:
        if v is None or v == "":
            return None
        return float(v)
    except (TypeError, ValueError):
        return None


def _s(v: Any) -> str | None:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def normalize_order(order: Dict[str, Any]) -> NormalizedOrder:
    """
    Flatten the marketplace order-detail document into the fields the
    translator needs. Missing blocks become empty values, never errors.
    """
    customer = _get(order, "customer") or {}
    phone = _get(customer, "phone") or {}
    delivery = _get(order, "delivery") or {}
    addr = _get(delivery, "deliveryAddress") or {}
    coords = _get(addr, "coordinates") or {}

    return NormalizedOrder(
        order_id=str(_get(order, "id") or ""),
        display_id=_s(_get(order, "displayId")),
        created_at=_s(_get(order, "createdAt")),
        merchant_id=_s(_get(_get(order, "merchant"), "id")),
        customer=CustomerBlock(
            name=_s(_get(customer, "name")),
            phone=_s(_get(phone, "number")) if isinstance(phone, dict) else _s(phone),
            phone_localizer=_s(_get(phone, "localizer")),
        ),
        address=DeliveryAddress(
            formatted=_s(_get(addr, "formattedAddress")),
            street_name=_s(_get(addr, "streetName")),
            street_number=_s(_get(addr, "streetNumber")),
            neighborhood=_s(_get(addr, "neighborhood")),
            complement=_s(_get(addr, "complement")),
            reference=_s(_get(addr, "reference")),
            postal_code=_s(_get(addr, "postalCode")),
            city=_s(_get(addr, "city")),
            state=_s(_get(addr, "state")),
            latitude=_coerce_float(_get(coords, "latitude")),
            longitude=_coerce_float(_get(coords, "longitude")),
        ),
        pickup_code=_s(_get(delivery, "pickupCode")),
    )
