from services import imdg_compatibility
from services.models import CONTAINER_STATUSES, GROUPAGE_STATUSES


class ValidationError(ValueError):
    def __init__(self, errors):
        super().__init__("Invalid payload: " + ", ".join(sorted(errors)))
        self.errors = dict(errors)


def _label(field_name):
    return field_name.replace("_", " ").title()


def _is_blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def validate_required(value, field_name, errors):
    if _is_blank(value):
        errors[field_name] = f"{_label(field_name)} is required."


def _parse_number(value, cast):
    if isinstance(value, bool):
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def validate_positive_int(value, field_name, errors):
    if _is_blank(value):
        errors[field_name] = f"{_label(field_name)} is required."
        return
    parsed = _parse_number(value, int)
    if parsed is None or parsed <= 0 or str(value).strip() != str(parsed):
        errors[field_name] = f"{_label(field_name)} must be a positive number."


def validate_positive_float(value, field_name, errors):
    if _is_blank(value):
        errors[field_name] = f"{_label(field_name)} is required."
        return
    parsed = _parse_number(value, float)
    if parsed is None or parsed <= 0:
        errors[field_name] = f"{_label(field_name)} must be a positive number."


def validate_non_negative_int(value, field_name, errors, required=False):
    if _is_blank(value):
        if required:
            errors[field_name] = f"{_label(field_name)} is required."
        return
    parsed = _parse_number(value, int)
    if parsed is None or parsed < 0 or str(value).strip() != str(parsed):
        errors[field_name] = f"{_label(field_name)} must be zero or a positive whole number."


def validate_non_negative_float(value, field_name, errors, required=False):
    if _is_blank(value):
        if required:
            errors[field_name] = f"{_label(field_name)} is required."
        return
    parsed = _parse_number(value, float)
    if parsed is None or parsed < 0:
        errors[field_name] = f"{_label(field_name)} must be zero or a positive number."


_TRUE_VALUES = {"1", "true", "yes", "on", "y"}
_FALSE_VALUES = {"0", "false", "no", "off", "n"}


def parse_bool(value):
    """Return True/False for a boolean-like value, None when it is not one."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
    return None


def validate_boolean(value, field_name, errors, required=False):
    if _is_blank(value):
        if required:
            errors[field_name] = f"{_label(field_name)} is required."
        return
    if parse_bool(value) is None:
        errors[field_name] = f"{_label(field_name)} must be true or false."


def validate_choice(value, field_name, choices, errors):
    if _is_blank(value):
        return
    if str(value).strip() not in choices:
        errors[field_name] = f"{_label(field_name)} must be one of: {', '.join(choices)}."


def validate_imdg_class(value, field_name, errors):
    if _is_blank(value):
        return
    if not imdg_compatibility.is_known_class(value):
        errors[field_name] = f"{_label(field_name)} is not a known IMDG class."


def _raise_if_errors(errors):
    if errors:
        raise ValidationError(errors)


def validate_container_payload(payload):
    errors = {}
    validate_required(payload.get("number"), "number", errors)
    validate_required(payload.get("transitaire"), "transitaire", errors)
    validate_positive_int(payload.get("max_pallets"), "max_pallets", errors)
    validate_positive_float(payload.get("max_weight_kg"), "max_weight_kg", errors)
    validate_positive_float(payload.get("max_volume_m3"), "max_volume_m3", errors)
    validate_choice(payload.get("status"), "status", CONTAINER_STATUSES, errors)
    _raise_if_errors(errors)


def validate_groupage_payload(payload):
    errors = {}
    validate_required(payload.get("transitaire"), "transitaire", errors)
    validate_positive_int(payload.get("max_space_pallets"), "max_space_pallets", errors)
    validate_positive_float(payload.get("max_weight_kg"), "max_weight_kg", errors)
    validate_positive_float(payload.get("max_volume_m3"), "max_volume_m3", errors)
    validate_choice(payload.get("status"), "status", GROUPAGE_STATUSES, errors)
    _raise_if_errors(errors)


def validate_order_payload(payload):
    errors = {}
    validate_required(payload.get("order_number"), "order_number", errors)
    validate_required(payload.get("supplier"), "supplier", errors)
    validate_non_negative_float(payload.get("weight_kg"), "weight_kg", errors, required=True)
    validate_non_negative_float(payload.get("volume_m3"), "volume_m3", errors, required=True)
    validate_non_negative_int(payload.get("carton_count"), "carton_count", errors)
    validate_non_negative_float(payload.get("total_value"), "total_value", errors)
    validate_boolean(payload.get("is_received"), "is_received", errors)

    products = payload.get("products") or []
    if not isinstance(products, list):
        errors["products"] = "Products must be a list."
        products = []
    for idx, line in enumerate(products):
        prefix = f"products[{idx}]"
        if not isinstance(line, dict):
            errors[prefix] = "Product line must be an object."
            continue
        if _is_blank(line.get("product_id")) and _is_blank(line.get("name")):
            errors[f"{prefix}.name"] = "Product name or id is required."
        elif not _is_blank(line.get("product_id")):
            validate_positive_int(line.get("product_id"), f"{prefix}.product_id", errors)
        validate_positive_int(line.get("quantity"), f"{prefix}.quantity", errors)
        validate_imdg_class(line.get("imdg_class"), f"{prefix}.imdg_class", errors)
        for ratio in ("units_per_package", "packages_per_carton", "cartons_per_palette"):
            validate_non_negative_int(line.get(ratio), f"{prefix}.{ratio}", errors)
    _raise_if_errors(errors)


def validate_booking_payload(payload):
    errors = {}
    validate_positive_int(payload.get("order_id"), "order_id", errors)
    validate_non_negative_int(payload.get("palettes_booked"), "palettes_booked", errors)
    validate_non_negative_float(payload.get("weight_booked"), "weight_booked", errors)
    validate_non_negative_float(payload.get("volume_booked"), "volume_booked", errors)
    _raise_if_errors(errors)


def validate_reception_payload(payload):
    errors = {}
    validate_boolean(payload.get("is_received"), "is_received", errors, required=True)
    _raise_if_errors(errors)
    return parse_bool(payload.get("is_received"))


def validate_hazard_classes(payload):
    errors = {}
    classes = payload.get("classes")
    if not isinstance(classes, list):
        errors["classes"] = "Classes must be a list."
    _raise_if_errors(errors)
    return classes
