import logging
import os

from flask import Flask, jsonify, request

import db
from services import booking as booking_service
from services import capacity, imdg_compatibility, validation
from services.booking import NotFoundError
from services.models import (
    CONTAINER_STATUSES,
    UNIT_CONTAINER,
    UNIT_GROUPAGE,
    Order,
)
from services.validation import ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_CLASS_POLICY_OPEN = "open"
UNKNOWN_CLASS_POLICY_CLOSED = "closed"


def _is_local_dev_mode():
    env_hint = (os.environ.get("APP_ENV") or os.environ.get("FLASK_ENV") or "").strip().lower()
    if env_hint in {"dev", "development", "local", "test"}:
        return True
    return os.environ.get("FLASK_DEBUG", "").strip() == "1"


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return bool(default)
    normalized = str(raw).strip().lower()
    if normalized in {"1", "true", "yes", "on", "y"}:
        return True
    if normalized in {"0", "false", "no", "off", "n"}:
        return False
    return bool(default)


def _resolve_unknown_class_policy():
    raw = (os.environ.get("IMDG_UNKNOWN_CLASS_POLICY") or "").strip().lower()
    if not raw:
        return UNKNOWN_CLASS_POLICY_OPEN
    if raw not in {UNKNOWN_CLASS_POLICY_OPEN, UNKNOWN_CLASS_POLICY_CLOSED}:
        logger.warning(
            "Unsupported IMDG_UNKNOWN_CLASS_POLICY=%s; treating unknown classes as compatible.",
            raw,
        )
        return UNKNOWN_CLASS_POLICY_OPEN
    return raw


app = Flask(__name__)
_configured_secret = (os.environ.get("FLASK_SECRET_KEY") or "").strip()
if not _configured_secret and not _is_local_dev_mode():
    raise RuntimeError(
        "FLASK_SECRET_KEY must be set for non-development environments."
    )
if not _configured_secret:
    _configured_secret = "dev-session-key"
    logger.warning("Using development session secret key.")
app.secret_key = _configured_secret
app.config.update(
    IMDG_UNKNOWN_CLASS_POLICY=_resolve_unknown_class_policy(),
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=_env_bool(
        "SESSION_COOKIE_SECURE",
        default=not _is_local_dev_mode(),
    ),
)

db.init_db()


def _strict_hazard_mode():
    return app.config.get("IMDG_UNKNOWN_CLASS_POLICY") == UNKNOWN_CLASS_POLICY_CLOSED


def _json_payload():
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _rejection_response(result):
    status = 200 if result.get("can_book") else 409
    return jsonify(result), status


@app.errorhandler(ValidationError)
def _handle_validation_error(exc):
    return jsonify({"error": "Invalid payload.", "errors": exc.errors}), 400


@app.errorhandler(NotFoundError)
def _handle_not_found(exc):
    return jsonify({"error": str(exc)}), 404


@app.route("/api/imdg/classes")
def api_imdg_classes():
    rules = [imdg_compatibility.rule_to_dict(rule) for rule in imdg_compatibility.list_rules()]
    return jsonify({"classes": rules})


@app.route("/api/imdg/check", methods=["POST"])
def api_imdg_check():
    classes = validation.validate_hazard_classes(_json_payload())
    result = imdg_compatibility.check_group_compatibility(classes, strict=_strict_hazard_mode())
    return jsonify(result)


@app.route("/api/containers", methods=["POST"])
def api_create_container():
    payload = _json_payload()
    validation.validate_container_payload(payload)
    container_id = db.create_container(payload)
    logger.info("Container %s created for transitaire %s", container_id, payload.get("transitaire"))
    return jsonify({"id": container_id, "container": db.get_container(container_id)}), 201


@app.route("/api/containers")
def api_list_containers():
    transitaire = (request.args.get("transitaire") or "").strip() or None
    return jsonify({"containers": db.list_containers(transitaire=transitaire)})


@app.route("/api/containers/<int:container_id>")
def api_get_container(container_id):
    container = db.get_container(container_id)
    if not container:
        return jsonify({"error": "Container not found"}), 404
    return jsonify({"container": container})


@app.route("/api/containers/<int:container_id>/status", methods=["POST"])
def api_update_container_status(container_id):
    payload = _json_payload()
    errors = {}
    validation.validate_required(payload.get("status"), "status", errors)
    validation.validate_choice(payload.get("status"), "status", CONTAINER_STATUSES, errors)
    if errors:
        raise ValidationError(errors)
    if not db.update_container_status(container_id, payload["status"].strip()):
        return jsonify({"error": "Container not found"}), 404
    return jsonify({"container": db.get_container(container_id)})


@app.route("/api/containers/<int:container_id>/load")
def api_container_load(container_id):
    return jsonify(booking_service.unit_load_summary(UNIT_CONTAINER, container_id))


def _order_id_from_payload(payload):
    errors = {}
    validation.validate_positive_int(payload.get("order_id"), "order_id", errors)
    if errors:
        raise ValidationError(errors)
    return int(payload["order_id"])


@app.route("/api/containers/<int:container_id>/evaluate", methods=["POST"])
def api_evaluate_container_order(container_id):
    order_id = _order_id_from_payload(_json_payload())
    result = booking_service.evaluate_container_order(
        container_id, order_id, strict=_strict_hazard_mode()
    )
    return jsonify(result)


@app.route("/api/containers/<int:container_id>/orders", methods=["POST"])
def api_assign_container_order(container_id):
    order_id = _order_id_from_payload(_json_payload())
    result = booking_service.assign_order_to_container(
        container_id, order_id, strict=_strict_hazard_mode()
    )
    return _rejection_response(result)


@app.route("/api/containers/<int:container_id>/orders/<int:order_id>", methods=["DELETE"])
def api_remove_container_order(container_id, order_id):
    if not booking_service.remove_order_from_container(container_id, order_id):
        return jsonify({"error": "Order is not loaded in this container"}), 404
    return jsonify({"removed": True})


@app.route("/api/groupages", methods=["POST"])
def api_create_groupage():
    payload = _json_payload()
    validation.validate_groupage_payload(payload)
    groupage_id = db.create_groupage(payload)
    logger.info("Groupage %s created for transitaire %s", groupage_id, payload.get("transitaire"))
    return jsonify({"id": groupage_id, "groupage": db.get_groupage(groupage_id)}), 201


@app.route("/api/groupages/<int:groupage_id>/load")
def api_groupage_load(groupage_id):
    return jsonify(booking_service.unit_load_summary(UNIT_GROUPAGE, groupage_id))


@app.route("/api/groupages/<int:groupage_id>/evaluate", methods=["POST"])
def api_evaluate_groupage_booking(groupage_id):
    payload = _json_payload()
    validation.validate_booking_payload(payload)
    result = booking_service.evaluate_groupage_booking(
        groupage_id,
        int(payload["order_id"]),
        palettes=payload.get("palettes_booked"),
        weight=payload.get("weight_booked"),
        volume=payload.get("volume_booked"),
        strict=_strict_hazard_mode(),
    )
    return jsonify(result)


@app.route("/api/groupages/<int:groupage_id>/bookings", methods=["POST"])
def api_create_groupage_booking(groupage_id):
    payload = _json_payload()
    validation.validate_booking_payload(payload)
    result = booking_service.create_groupage_booking(
        groupage_id,
        int(payload["order_id"]),
        palettes=payload.get("palettes_booked"),
        weight=payload.get("weight_booked"),
        volume=payload.get("volume_booked"),
        strict=_strict_hazard_mode(),
    )
    if result.get("can_book"):
        return jsonify(result), 201
    return _rejection_response(result)


@app.route("/api/bookings/<int:booking_id>/confirm", methods=["POST"])
def api_confirm_booking(booking_id):
    if not booking_service.confirm_booking(booking_id):
        return jsonify({"error": "Only pending bookings can be confirmed."}), 409
    return jsonify({"booking": db.get_booking(booking_id)})


@app.route("/api/bookings/<int:booking_id>/cancel", methods=["POST"])
def api_cancel_booking(booking_id):
    cancelled = booking_service.cancel_booking(booking_id)
    return jsonify({"cancelled": cancelled, "booking": db.get_booking(booking_id)})


@app.route("/api/bookings/<int:booking_id>", methods=["DELETE"])
def api_delete_booking(booking_id):
    booking_service.delete_booking(booking_id)
    return jsonify({"deleted": True})


def _check_order_references(payload):
    errors = {}
    if db.get_order_by_number(payload.get("order_number")):
        errors["order_number"] = "Order Number already exists."
    for idx, line in enumerate(payload.get("products") or []):
        product_id = line.get("product_id")
        if product_id not in (None, "") and not db.get_product(int(product_id)):
            errors[f"products[{idx}].product_id"] = "Product not found."
    if errors:
        raise ValidationError(errors)


@app.route("/api/orders", methods=["POST"])
def api_create_order():
    payload = _json_payload()
    validation.validate_order_payload(payload)
    _check_order_references(payload)
    payload["is_received"] = bool(validation.parse_bool(payload.get("is_received")))
    order_id = db.create_order(payload)
    logger.info("Order %s created (%s)", order_id, payload.get("order_number"))
    return jsonify({"id": order_id, "order": db.get_order(order_id)}), 201


@app.route("/api/orders/<int:order_id>")
def api_get_order(order_id):
    row = db.get_order(order_id)
    if not row:
        return jsonify({"error": "Order not found"}), 404
    order = Order.from_row(row, row.get("products"))
    return jsonify(
        {
            "order": row,
            "pallets": capacity.pallets_for_order(order),
            "hazard_classes": imdg_compatibility.hazard_classes_for_products(order.products),
        }
    )


@app.route("/api/orders/<int:order_id>/reception", methods=["POST"])
def api_update_order_reception(order_id):
    payload = _json_payload()
    is_received = validation.validate_reception_payload(payload)
    transitaire = payload.get("current_transitaire")
    if transitaire is not None:
        transitaire = str(transitaire).strip() or None
    if not db.update_order_reception(order_id, is_received, transitaire):
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": db.get_order(order_id)})


@app.route("/api/products/<int:product_id>")
def api_get_product(product_id):
    product = db.get_product(product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product})


if __name__ == "__main__":
    logging.basicConfig(level=(os.environ.get("LOG_LEVEL") or "INFO").upper())
    app.run(debug=_is_local_dev_mode())
