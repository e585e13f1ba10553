"""Container assignment and groupage booking workflow.

The hazard check runs first, then the capacity check; a booking is written
only when both pass. Each check-then-write sequence runs inside
``db.write_transaction()`` so concurrent requests against the same unit are
serialized by the database write lock.
"""

import logging
from dataclasses import replace

import db
from services import capacity, imdg_compatibility
from services.models import (
    GROUPAGE_STATUS_AVAILABLE,
    UNIT_CONTAINER,
    UNIT_GROUPAGE,
    Booking,
    Order,
    ShippingUnit,
)

logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    pass


def _load_order(order_id, connection=None):
    row = db.get_order(order_id, connection=connection)
    if not row:
        raise NotFoundError(f"Order {order_id} not found")
    return Order.from_row(row, row.get("products"))


def _load_container(container_id, connection=None):
    row = db.get_container(container_id, connection=connection)
    if not row:
        raise NotFoundError(f"Container {container_id} not found")
    return ShippingUnit.from_container_row(row)


def _load_groupage(groupage_id, connection=None):
    row = db.get_groupage(groupage_id, connection=connection)
    if not row:
        raise NotFoundError(f"Groupage {groupage_id} not found")
    return ShippingUnit.from_groupage_row(row)


def _load_booking(booking_id, connection=None):
    row = db.get_booking(booking_id, connection=connection)
    if not row:
        raise NotFoundError(f"Booking {booking_id} not found")
    return Booking.from_row(row)


def _container_cargo(container_id, connection=None):
    return [
        Order.from_row(row, row.get("products"))
        for row in db.list_container_orders(container_id, connection=connection)
    ]


def _groupage_cargo(groupage_id, connection=None):
    bookings = [
        Booking.from_row(row)
        for row in db.list_groupage_bookings(groupage_id, connection=connection)
    ]
    orders = [
        Order.from_row(row, row.get("products"))
        for row in db.list_orders_by_ids(
            [booking.order_id for booking in bookings], connection=connection
        )
    ]
    return bookings, {order.id: order for order in orders}


def _hazard_result(cargo_orders, order, strict):
    existing_classes = []
    for loaded in cargo_orders:
        existing_classes.extend(imdg_compatibility.hazard_classes_for_products(loaded.products))
    candidate_classes = imdg_compatibility.hazard_classes_for_products(order.products)
    if not candidate_classes:
        return {"compatible": True, "conflicts": []}
    return imdg_compatibility.check_group_compatibility(
        existing_classes + candidate_classes,
        strict=strict,
    )


def _hazard_reason(conflicts):
    details = "; ".join(conflict["description"] for conflict in conflicts)
    return f"Marchandises dangereuses incompatibles : {details}"


def _evaluate(order, unit, cargo_orders, current_load, strict, pallets=None):
    hazard = _hazard_result(cargo_orders, order, strict)
    order_pallets = capacity.pallets_for_order(order) if pallets is None else int(pallets)
    result = {
        "can_book": False,
        "reason": "",
        "conflicts": hazard["conflicts"],
        "load": current_load.to_dict(),
        "order_pallets": order_pallets,
    }
    if not hazard["compatible"]:
        result["reason"] = _hazard_reason(hazard["conflicts"])
        return result

    decision = capacity.can_book(order, unit, current_load, pallets=order_pallets)
    result.update(decision)
    return result


def _placement_reason(order, connection=None):
    if order.container_id is not None:
        return f"Commande déjà affectée au conteneur {order.container_id}"
    active_booking = db.get_active_booking_for_order(order.id, connection=connection)
    if active_booking:
        return f"Commande déjà réservée dans le groupage {active_booking['groupage_id']}"
    return ""


def _evaluate_container(connection, container_id, order_id, strict):
    unit = _load_container(container_id, connection=connection)
    order = _load_order(order_id, connection=connection)
    cargo = [loaded for loaded in _container_cargo(container_id, connection) if loaded.id != order.id]
    current_load = capacity.aggregate_load(cargo)
    result = _evaluate(order, unit, cargo, current_load, strict)
    placed = _placement_reason(order, connection=connection)
    if placed:
        result.update({"can_book": False, "reason": placed})
    return order, result


def evaluate_container_order(container_id, order_id, strict=False):
    _, result = _evaluate_container(None, container_id, order_id, strict)
    return result


def assign_order_to_container(container_id, order_id, strict=False):
    with db.write_transaction() as connection:
        _, result = _evaluate_container(connection, container_id, order_id, strict)
        if not result["can_book"]:
            logger.info(
                "Container assignment rejected container_id=%s order_id=%s reason=%s",
                container_id,
                order_id,
                result["reason"],
            )
            return result
        if not db.link_order_to_container(connection, order_id, container_id):
            result.update({"can_book": False, "reason": "Commande déjà affectée à une autre unité"})
            return result

    logger.info("Order %s assigned to container %s", order_id, container_id)
    return result


def remove_order_from_container(container_id, order_id):
    _load_container(container_id)
    removed = db.unlink_order_from_container(container_id, order_id)
    if removed:
        logger.info("Order %s removed from container %s", order_id, container_id)
    return removed


def _booking_quantities(order, palettes, weight, volume):
    return (
        capacity.pallets_for_order(order) if palettes in (None, "") else int(palettes),
        order.weight_kg if weight in (None, "") else float(weight),
        order.volume_m3 if volume in (None, "") else float(volume),
    )


def _evaluate_groupage(connection, groupage_id, order_id, palettes, weight, volume, strict):
    unit = _load_groupage(groupage_id, connection=connection)
    order = _load_order(order_id, connection=connection)
    palettes, weight, volume = _booking_quantities(order, palettes, weight, volume)
    bookings, orders_by_id = _groupage_cargo(groupage_id, connection)
    current_load = capacity.aggregate_bookings(bookings, orders_by_id)

    if unit.status != GROUPAGE_STATUS_AVAILABLE and order.current_transitaire == unit.transitaire:
        result = {
            "can_book": False,
            "reason": "Groupage non disponible",
            "conflicts": [],
            "load": current_load.to_dict(),
            "order_pallets": palettes,
        }
        return order, (palettes, weight, volume), result

    # A booking reserves its own quantities, which may differ from the order's.
    demand = replace(order, weight_kg=weight, volume_m3=volume)
    cargo = list(orders_by_id.values())
    result = _evaluate(demand, unit, cargo, current_load, strict, pallets=palettes)
    placed = _placement_reason(order, connection=connection)
    if placed:
        result.update({"can_book": False, "reason": placed})
    return order, (palettes, weight, volume), result


def evaluate_groupage_booking(groupage_id, order_id, palettes=None, weight=None, volume=None, strict=False):
    _, _, result = _evaluate_groupage(None, groupage_id, order_id, palettes, weight, volume, strict)
    return result


def create_groupage_booking(groupage_id, order_id, palettes=None, weight=None, volume=None, strict=False):
    with db.write_transaction() as connection:
        order, quantities, result = _evaluate_groupage(
            connection, groupage_id, order_id, palettes, weight, volume, strict
        )
        if not result["can_book"]:
            logger.info(
                "Groupage booking rejected groupage_id=%s order_id=%s reason=%s",
                groupage_id,
                order_id,
                result["reason"],
            )
            return result

        palettes, weight, volume = quantities
        if not db.reserve_groupage_capacity(connection, groupage_id, palettes, weight, volume):
            result.update({"can_book": False, "reason": "Capacité disponible insuffisante"})
            logger.warning(
                "Groupage %s counters out of sync with active bookings; booking refused",
                groupage_id,
            )
            return result

        booking_id = db.insert_booking(
            connection,
            {
                "groupage_id": groupage_id,
                "order_id": order_id,
                "palettes_booked": palettes,
                "weight_booked": weight,
                "volume_booked": volume,
                "has_dangerous_goods": order.has_dangerous_goods,
            },
        )

    logger.info(
        "Booking %s created groupage_id=%s order_id=%s pallets=%s weight=%.1f volume=%.2f",
        booking_id,
        groupage_id,
        order_id,
        palettes,
        weight,
        volume,
    )
    result["booking_id"] = booking_id
    return result


def cancel_booking(booking_id):
    """Cancel a booking and give its space back to the groupage.

    Returns False when the booking was already cancelled; capacity is only
    restored on the first cancellation.
    """

    with db.write_transaction() as connection:
        booking = _load_booking(booking_id, connection=connection)
        if not db.mark_booking_cancelled(connection, booking_id):
            return False
        db.release_groupage_capacity(
            connection,
            booking.groupage_id,
            booking.palettes_booked,
            booking.weight_booked,
            booking.volume_booked,
        )
    logger.info("Booking %s cancelled, capacity restored to groupage %s", booking_id, booking.groupage_id)
    return True


def confirm_booking(booking_id):
    _load_booking(booking_id)
    confirmed = db.mark_booking_confirmed(booking_id)
    if confirmed:
        logger.info("Booking %s confirmed by transitaire", booking_id)
    return confirmed


def delete_booking(booking_id):
    with db.write_transaction() as connection:
        booking = _load_booking(booking_id, connection=connection)
        if booking.is_active:
            db.release_groupage_capacity(
                connection,
                booking.groupage_id,
                booking.palettes_booked,
                booking.weight_booked,
                booking.volume_booked,
            )
        db.delete_booking_row(connection, booking_id)
    logger.info("Booking %s deleted from groupage %s", booking_id, booking.groupage_id)


def unit_load_summary(kind, unit_id):
    if kind == UNIT_CONTAINER:
        unit = _load_container(unit_id)
        cargo = _container_cargo(unit_id)
        totals = capacity.aggregate_load(cargo)
        entries = [
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "pallets": capacity.pallets_for_order(order),
                "weight_kg": order.weight_kg,
                "volume_m3": order.volume_m3,
            }
            for order in cargo
        ]
    elif kind == UNIT_GROUPAGE:
        unit = _load_groupage(unit_id)
        bookings, orders_by_id = _groupage_cargo(unit_id)
        cargo = list(orders_by_id.values())
        totals = capacity.aggregate_bookings(bookings, orders_by_id)
        entries = [
            {
                "booking_id": booking.id,
                "order_id": booking.order_id,
                "booking_status": booking.booking_status,
                "pallets": booking.palettes_booked,
                "weight_kg": booking.weight_booked,
                "volume_m3": booking.volume_booked,
            }
            for booking in bookings
        ]
    else:
        raise ValueError(f"Unknown unit kind: {kind}")

    hazard_classes = []
    for order in cargo:
        hazard_classes.extend(imdg_compatibility.hazard_classes_for_products(order.products))

    summary = {
        "kind": unit.kind,
        "id": unit.id,
        "reference": unit.reference,
        "transitaire": unit.transitaire,
        "status": unit.status,
        "max_pallets": unit.max_pallets,
        "max_weight_kg": unit.max_weight_kg,
        "max_volume_m3": unit.max_volume_m3,
        "load": totals.to_dict(),
        "utilization": capacity.utilization(totals, unit),
        "hazard_classes": sorted(set(hazard_classes)),
        "entries": entries,
    }
    if unit.kind == UNIT_GROUPAGE:
        summary["available"] = {
            "pallets": unit.available_pallets,
            "weight_kg": unit.available_weight_kg,
            "volume_m3": unit.available_volume_m3,
        }
    return summary
