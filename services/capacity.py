import math

from services.models import LoadTotals

FALLBACK_CARTONS_PER_PALLET = 20
CAPACITY_EPSILON = 1e-6


def _ratio(value):
    try:
        parsed = int(value or 0)
    except (TypeError, ValueError):
        return 1
    return parsed if parsed > 0 else 1


def cartons_for_product_line(line):
    quantity = max(int(line.quantity or 0), 0)
    if quantity == 0:
        return 0
    packages = math.ceil(quantity / _ratio(line.units_per_package))
    return math.ceil(packages / _ratio(line.packages_per_carton))


def pallets_for_product_line(line):
    cartons = cartons_for_product_line(line)
    if cartons == 0:
        return 0
    return math.ceil(cartons / _ratio(line.cartons_per_palette))


def pallets_for_order(order):
    """Pallet need of one order.

    Product packing ratios win when every line carries them; otherwise the
    order's carton count is spread over FALLBACK_CARTONS_PER_PALLET. An order
    without any carton still takes one pallet position.
    """

    lines = order.products or []
    if lines and all(line.has_packing_data for line in lines):
        pallets = sum(pallets_for_product_line(line) for line in lines)
        if pallets > 0:
            return pallets

    cartons = max(int(order.carton_count or 0), 0)
    if cartons == 0:
        return 1
    return math.ceil(cartons / FALLBACK_CARTONS_PER_PALLET)


def aggregate_load(orders):
    totals = LoadTotals()
    for order in orders or []:
        totals.total_weight += order.weight_kg or 0.0
        totals.total_volume += order.volume_m3 or 0.0
        totals.total_value += order.total_value or 0.0
        totals.total_pallets += pallets_for_order(order)
    return totals


def aggregate_bookings(bookings, orders_by_id=None):
    orders_by_id = orders_by_id or {}
    totals = LoadTotals()
    for booking in bookings or []:
        if not booking.is_active:
            continue
        totals.total_weight += booking.weight_booked or 0.0
        totals.total_volume += booking.volume_booked or 0.0
        totals.total_pallets += int(booking.palettes_booked or 0)
        order = orders_by_id.get(booking.order_id)
        if order is not None:
            totals.total_value += order.total_value or 0.0
    return totals


def _reject(reason):
    return {"can_book": False, "reason": reason}


def can_book(order, unit, current_load, pallets=None):
    """Check whether ``order`` fits in ``unit`` on top of ``current_load``.

    Rules are evaluated in a fixed order and the first failing one is
    reported. ``pallets`` overrides the derived pallet need (groupage
    bookings reserve an explicit number of pallets).
    """

    if order.current_transitaire != unit.transitaire:
        return _reject(
            "Transitaire différent : commande chez "
            f"{order.current_transitaire or 'non défini'}, "
            f"unité chez {unit.transitaire or 'non défini'}"
        )

    if not order.is_received:
        return _reject("Commande pas encore réceptionnée chez le transitaire")

    if order.has_dangerous_goods and not unit.dangerous_goods_allowed:
        return _reject("Produits dangereux non autorisés dans cette unité")

    new_weight = current_load.total_weight + (order.weight_kg or 0.0)
    if new_weight > unit.max_weight_kg + CAPACITY_EPSILON:
        return _reject(
            f"Poids maximum dépassé : {new_weight / 1000:.1f}T > "
            f"{unit.max_weight_kg / 1000:.1f}T"
        )

    new_volume = current_load.total_volume + (order.volume_m3 or 0.0)
    if new_volume > unit.max_volume_m3 + CAPACITY_EPSILON:
        return _reject(
            f"Volume maximum dépassé : {new_volume:.1f}m³ > {unit.max_volume_m3:.1f}m³"
        )

    order_pallets = pallets_for_order(order) if pallets is None else int(pallets)
    new_pallets = current_load.total_pallets + order_pallets
    if new_pallets > unit.max_pallets:
        return _reject(f"Nombre de palettes dépassé : {new_pallets} > {unit.max_pallets}")

    return {"can_book": True, "reason": ""}


def utilization(totals, unit):
    def _pct(used, maximum):
        if not maximum:
            return 0.0
        return round((used / maximum) * 100.0, 1)

    return {
        "weight_pct": _pct(totals.total_weight, unit.max_weight_kg),
        "volume_pct": _pct(totals.total_volume, unit.max_volume_m3),
        "pallets_pct": _pct(totals.total_pallets, unit.max_pallets),
    }


def reserve_availability(unit, palettes, weight, volume):
    """Counters after reserving a booking, or None when they would go negative."""

    remaining = {
        "available_pallets": (unit.available_pallets or 0) - int(palettes or 0),
        "available_weight_kg": (unit.available_weight_kg or 0.0) - (weight or 0.0),
        "available_volume_m3": (unit.available_volume_m3 or 0.0) - (volume or 0.0),
    }
    if remaining["available_pallets"] < 0:
        return None
    if remaining["available_weight_kg"] < -CAPACITY_EPSILON:
        return None
    if remaining["available_volume_m3"] < -CAPACITY_EPSILON:
        return None
    return remaining


def release_availability(unit, palettes, weight, volume):
    return {
        "available_pallets": (unit.available_pallets or 0) + int(palettes or 0),
        "available_weight_kg": (unit.available_weight_kg or 0.0) + (weight or 0.0),
        "available_volume_m3": (unit.available_volume_m3 or 0.0) + (volume or 0.0),
    }
