"""Record types shared by the capacity and hazard services.

Store rows are plain dicts; these types are built from them at the service
boundary so the core never works on loosely shaped data.
"""

from dataclasses import dataclass, field
from typing import List, Optional

UNIT_CONTAINER = "container"
UNIT_GROUPAGE = "groupage"
UNIT_KINDS = (UNIT_CONTAINER, UNIT_GROUPAGE)

CONTAINER_STATUSES = ("planning", "loading", "departed", "arrived", "completed")
GROUPAGE_STATUS_AVAILABLE = "available"
GROUPAGE_STATUS_FULL = "full"
GROUPAGE_STATUSES = (GROUPAGE_STATUS_AVAILABLE, GROUPAGE_STATUS_FULL)

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED, BOOKING_CANCELLED)


def _to_float(value, default=0.0):
    if value is None or value == "":
        return default
    return float(value)


def _to_int(value, default=0):
    if value is None or value == "":
        return default
    return int(value)


def _to_optional_int(value):
    if value is None or value == "":
        return None
    parsed = int(value)
    return parsed if parsed > 0 else None


def _to_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on", "y"}


def _clean_text(value):
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class CompatibilityRule:
    imdg_class: str
    incompatible_with: frozenset
    description: str


@dataclass
class ProductLine:
    product_id: Optional[int]
    name: str = ""
    quantity: int = 0
    dangerous: bool = False
    imdg_class: Optional[str] = None
    units_per_package: Optional[int] = None
    packages_per_carton: Optional[int] = None
    cartons_per_palette: Optional[int] = None

    @property
    def has_packing_data(self):
        return bool(self.cartons_per_palette)

    @classmethod
    def from_row(cls, row):
        return cls(
            product_id=row.get("product_id"),
            name=_clean_text(row.get("name")),
            quantity=_to_int(row.get("quantity")),
            dangerous=_to_bool(row.get("dangerous")),
            imdg_class=_clean_text(row.get("imdg_class")) or None,
            units_per_package=_to_optional_int(row.get("units_per_package")),
            packages_per_carton=_to_optional_int(row.get("packages_per_carton")),
            cartons_per_palette=_to_optional_int(row.get("cartons_per_palette")),
        )


@dataclass
class Order:
    id: Optional[int]
    order_number: str = ""
    supplier: str = ""
    current_transitaire: str = ""
    weight_kg: float = 0.0
    volume_m3: float = 0.0
    carton_count: int = 0
    is_received: bool = False
    total_value: float = 0.0
    container_id: Optional[int] = None
    products: List[ProductLine] = field(default_factory=list)

    @property
    def has_dangerous_goods(self):
        return any(line.dangerous for line in self.products)

    @classmethod
    def from_row(cls, row, product_rows=None):
        return cls(
            id=row.get("id"),
            order_number=_clean_text(row.get("order_number")),
            supplier=_clean_text(row.get("supplier")),
            current_transitaire=_clean_text(row.get("current_transitaire")),
            weight_kg=_to_float(row.get("weight_kg")),
            volume_m3=_to_float(row.get("volume_m3")),
            carton_count=_to_int(row.get("carton_count")),
            is_received=_to_bool(row.get("is_received")),
            total_value=_to_float(row.get("total_value")),
            container_id=row.get("container_id"),
            products=[ProductLine.from_row(item) for item in (product_rows or [])],
        )


@dataclass
class ShippingUnit:
    """A container or a groupage slot.

    Groupages also track ``available_*`` counters, decremented as bookings
    are created and restored when they are cancelled or deleted.
    """

    id: Optional[int]
    kind: str
    transitaire: str
    max_pallets: int
    max_weight_kg: float
    max_volume_m3: float
    dangerous_goods_allowed: bool = False
    status: str = ""
    reference: str = ""
    available_pallets: Optional[int] = None
    available_weight_kg: Optional[float] = None
    available_volume_m3: Optional[float] = None

    @classmethod
    def from_container_row(cls, row):
        return cls(
            id=row.get("id"),
            kind=UNIT_CONTAINER,
            transitaire=_clean_text(row.get("transitaire")),
            max_pallets=_to_int(row.get("max_pallets")),
            max_weight_kg=_to_float(row.get("max_weight_kg")),
            max_volume_m3=_to_float(row.get("max_volume_m3")),
            dangerous_goods_allowed=_to_bool(row.get("dangerous_goods")),
            status=_clean_text(row.get("status")),
            reference=_clean_text(row.get("number")),
        )

    @classmethod
    def from_groupage_row(cls, row):
        return cls(
            id=row.get("id"),
            kind=UNIT_GROUPAGE,
            transitaire=_clean_text(row.get("transitaire")),
            max_pallets=_to_int(row.get("max_space_pallets")),
            max_weight_kg=_to_float(row.get("max_weight_kg")),
            max_volume_m3=_to_float(row.get("max_volume_m3")),
            dangerous_goods_allowed=_to_bool(row.get("allows_dangerous_goods")),
            status=_clean_text(row.get("status")),
            reference=_clean_text(row.get("reference")),
            available_pallets=_to_int(row.get("available_space_pallets")),
            available_weight_kg=_to_float(row.get("available_weight_kg")),
            available_volume_m3=_to_float(row.get("available_volume_m3")),
        )


@dataclass
class Booking:
    id: Optional[int]
    groupage_id: int
    order_id: int
    palettes_booked: int = 0
    weight_booked: float = 0.0
    volume_booked: float = 0.0
    booking_status: str = BOOKING_PENDING
    has_dangerous_goods: bool = False
    confirmed_by_transitaire: bool = False

    @property
    def is_active(self):
        return self.booking_status != BOOKING_CANCELLED

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row.get("id"),
            groupage_id=row.get("groupage_id"),
            order_id=row.get("order_id"),
            palettes_booked=_to_int(row.get("palettes_booked")),
            weight_booked=_to_float(row.get("weight_booked")),
            volume_booked=_to_float(row.get("volume_booked")),
            booking_status=_clean_text(row.get("booking_status")) or BOOKING_PENDING,
            has_dangerous_goods=_to_bool(row.get("has_dangerous_goods")),
            confirmed_by_transitaire=_to_bool(row.get("confirmed_by_transitaire")),
        )


@dataclass
class LoadTotals:
    total_weight: float = 0.0
    total_volume: float = 0.0
    total_value: float = 0.0
    total_pallets: int = 0

    def to_dict(self):
        return {
            "total_weight": round(self.total_weight, 3),
            "total_volume": round(self.total_volume, 3),
            "total_value": round(self.total_value, 2),
            "total_pallets": self.total_pallets,
        }
