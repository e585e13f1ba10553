import os

import pytest

import db

os.environ.setdefault("FLASK_SECRET_KEY", "test-secret")

import app as app_module


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "api.db")
    monkeypatch.setattr(db, "SEED_DIR", tmp_path / "seed")
    db.init_db()
    return app_module.app.test_client()


def _create_container(client, **overrides):
    payload = {
        "number": "TGHU8845120",
        "transitaire": "TAF",
        "max_pallets": 20,
        "max_weight_kg": 24000,
        "max_volume_m3": 67,
        "dangerous_goods": True,
    }
    payload.update(overrides)
    response = client.post("/api/containers", json=payload)
    assert response.status_code == 201
    return response.get_json()["id"]


def _create_order(client, order_number, **overrides):
    payload = {
        "order_number": order_number,
        "supplier": "Atlas Chimie",
        "current_transitaire": "TAF",
        "weight_kg": 2000,
        "volume_m3": 6,
        "carton_count": 41,
        "is_received": True,
        "total_value": 9800,
        "products": [],
    }
    payload.update(overrides)
    response = client.post("/api/orders", json=payload)
    assert response.status_code == 201
    return response.get_json()["id"]


def test_lists_every_imdg_class(client):
    response = client.get("/api/imdg/classes")

    assert response.status_code == 200
    classes = response.get_json()["classes"]
    assert len(classes) == 15
    assert classes[0]["class"] == "Classe 1"


def test_check_reports_conflicts(client):
    response = client.post("/api/imdg/check", json={"classes": ["Classe 1", None, "Classe 3"]})

    payload = response.get_json()
    assert response.status_code == 200
    assert payload["compatible"] is False
    assert len(payload["conflicts"]) == 1


def test_check_requires_class_list(client):
    response = client.post("/api/imdg/check", json={"classes": "Classe 1"})

    assert response.status_code == 400
    assert "classes" in response.get_json()["errors"]


def test_unknown_class_policy(client, monkeypatch):
    body = {"classes": ["Classe 3", "Classe 10"]}
    assert client.post("/api/imdg/check", json=body).get_json()["compatible"] is True

    monkeypatch.setitem(app_module.app.config, "IMDG_UNKNOWN_CLASS_POLICY", "closed")

    assert client.post("/api/imdg/check", json=body).get_json()["compatible"] is False


def test_container_payload_is_validated(client):
    response = client.post(
        "/api/containers",
        json={"number": "X", "transitaire": "", "max_pallets": -2, "max_weight_kg": "lourd"},
    )

    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert set(errors) >= {"transitaire", "max_pallets", "max_weight_kg", "max_volume_m3"}


def test_order_with_unknown_imdg_class_is_rejected(client):
    response = client.post(
        "/api/orders",
        json={
            "order_number": "CMD-X",
            "supplier": "Atlas",
            "weight_kg": 10,
            "volume_m3": 1,
            "products": [{"name": "Mystère", "quantity": 1, "imdg_class": "Classe 12"}],
        },
    )

    assert response.status_code == 400
    assert "products[0].imdg_class" in response.get_json()["errors"]


def test_assign_order_to_container_and_read_load(client):
    container_id = _create_container(client)
    order_id = _create_order(client, "CMD-100")

    response = client.post(f"/api/containers/{container_id}/orders", json={"order_id": order_id})

    assert response.status_code == 200
    assert response.get_json()["can_book"] is True
    load = client.get(f"/api/containers/{container_id}/load").get_json()
    assert load["load"]["total_pallets"] == 3
    assert load["utilization"]["pallets_pct"] == 15.0


def test_transitaire_mismatch_returns_conflict_status(client):
    container_id = _create_container(client)
    order_id = _create_order(client, "CMD-200", current_transitaire="SIFA")

    response = client.post(f"/api/containers/{container_id}/orders", json={"order_id": order_id})

    assert response.status_code == 409
    payload = response.get_json()
    assert payload["can_book"] is False
    assert "SIFA" in payload["reason"]
    assert "TAF" in payload["reason"]


def test_evaluate_unknown_order_returns_404(client):
    container_id = _create_container(client)

    response = client.post(f"/api/containers/{container_id}/evaluate", json={"order_id": 4242})

    assert response.status_code == 404


def test_remove_order_not_loaded_returns_404(client):
    container_id = _create_container(client)
    order_id = _create_order(client, "CMD-300")

    response = client.delete(f"/api/containers/{container_id}/orders/{order_id}")

    assert response.status_code == 404


def test_container_status_update(client):
    container_id = _create_container(client)

    bad = client.post(f"/api/containers/{container_id}/status", json={"status": "lost"})
    good = client.post(f"/api/containers/{container_id}/status", json={"status": "loading"})

    assert bad.status_code == 400
    assert good.status_code == 200
    assert good.get_json()["container"]["status"] == "loading"


def test_groupage_booking_cancel_cycle(client):
    response = client.post(
        "/api/groupages",
        json={"transitaire": "TAF", "max_space_pallets": 10, "max_weight_kg": 8000, "max_volume_m3": 30},
    )
    groupage_id = response.get_json()["id"]
    order_id = _create_order(client, "CMD-400")

    created = client.post(
        f"/api/groupages/{groupage_id}/bookings",
        json={"order_id": order_id, "palettes_booked": 4, "weight_booked": 1500, "volume_booked": 5},
    )
    assert created.status_code == 201
    booking_id = created.get_json()["booking_id"]
    assert client.get(f"/api/groupages/{groupage_id}/load").get_json()["available"]["pallets"] == 6

    first = client.post(f"/api/bookings/{booking_id}/cancel")
    second = client.post(f"/api/bookings/{booking_id}/cancel")

    assert first.get_json()["cancelled"] is True
    assert second.get_json()["cancelled"] is False
    assert client.get(f"/api/groupages/{groupage_id}/load").get_json()["available"]["pallets"] == 10


def test_confirm_cancelled_booking_is_refused(client):
    groupage_id = client.post(
        "/api/groupages",
        json={"transitaire": "TAF", "max_space_pallets": 5, "max_weight_kg": 3000, "max_volume_m3": 12},
    ).get_json()["id"]
    order_id = _create_order(client, "CMD-500")
    booking_id = client.post(
        f"/api/groupages/{groupage_id}/bookings", json={"order_id": order_id, "palettes_booked": 1}
    ).get_json()["booking_id"]
    client.post(f"/api/bookings/{booking_id}/cancel")

    response = client.post(f"/api/bookings/{booking_id}/confirm")

    assert response.status_code == 409


def test_order_detail_includes_derived_pallets(client):
    order_id = _create_order(
        client,
        "CMD-600",
        products=[
            {
                "name": "Solvant",
                "quantity": 1000,
                "imdg_class": "Classe 3",
                "units_per_package": 10,
                "packages_per_carton": 4,
                "cartons_per_palette": 12,
            }
        ],
    )

    payload = client.get(f"/api/orders/{order_id}").get_json()

    assert payload["pallets"] == 3
    assert payload["hazard_classes"] == ["Classe 3"]
    assert payload["order"]["products"][0]["dangerous"] == 1


def test_list_containers_filters_by_transitaire(client):
    _create_container(client)
    _create_container(client, number="MSKU0000001", transitaire="SIFA")

    everything = client.get("/api/containers").get_json()["containers"]
    sifa_only = client.get("/api/containers?transitaire=SIFA").get_json()["containers"]

    assert len(everything) == 2
    assert [container["number"] for container in sifa_only] == ["MSKU0000001"]


def test_reception_update_unblocks_assignment(client):
    container_id = _create_container(client)
    order_id = _create_order(client, "CMD-700", is_received=False, current_transitaire="SIFA")

    refused = client.post(f"/api/containers/{container_id}/evaluate", json={"order_id": order_id})
    updated = client.post(
        f"/api/orders/{order_id}/reception",
        json={"is_received": True, "current_transitaire": "TAF"},
    )
    accepted = client.post(f"/api/containers/{container_id}/evaluate", json={"order_id": order_id})

    assert refused.get_json()["can_book"] is False
    assert updated.status_code == 200
    assert updated.get_json()["order"]["is_received"] == 1
    assert accepted.get_json()["can_book"] is True


def test_reception_update_for_missing_order(client):
    response = client.post("/api/orders/999/reception", json={"is_received": True})

    assert response.status_code == 404


def test_product_detail(client):
    order_id = _create_order(client, "CMD-800", products=[{"name": "Acide", "quantity": 5, "imdg_class": "Classe 8"}])
    product_id = client.get(f"/api/orders/{order_id}").get_json()["order"]["products"][0]["product_id"]

    product = client.get(f"/api/products/{product_id}").get_json()["product"]

    assert product["name"] == "Acide"
    assert product["imdg_class"] == "Classe 8"
    assert client.get("/api/products/999").status_code == 404


def test_order_with_unknown_product_id_is_rejected(client):
    response = client.post(
        "/api/orders",
        json={
            "order_number": "CMD-900",
            "supplier": "Atlas",
            "weight_kg": 10,
            "volume_m3": 1,
            "products": [{"product_id": 9999, "quantity": 1}],
        },
    )

    assert response.status_code == 400
    assert "products[0].product_id" in response.get_json()["errors"]


def test_duplicate_order_number_is_rejected(client):
    _create_order(client, "CMD-901")

    response = client.post(
        "/api/orders",
        json={"order_number": "CMD-901", "supplier": "Atlas", "weight_kg": 10, "volume_m3": 1},
    )

    assert response.status_code == 400
    assert "order_number" in response.get_json()["errors"]


def test_string_false_keeps_order_unreceived(client):
    order_id = _create_order(client, "CMD-902", is_received="false")
    assert client.get(f"/api/orders/{order_id}").get_json()["order"]["is_received"] == 0

    client.post(f"/api/orders/{order_id}/reception", json={"is_received": True})
    response = client.post(f"/api/orders/{order_id}/reception", json={"is_received": "false"})

    assert response.status_code == 200
    assert response.get_json()["order"]["is_received"] == 0


def test_reception_rejects_non_boolean_value(client):
    order_id = _create_order(client, "CMD-903")

    response = client.post(f"/api/orders/{order_id}/reception", json={"is_received": "peut-être"})

    assert response.status_code == 400
    assert "is_received" in response.get_json()["errors"]
