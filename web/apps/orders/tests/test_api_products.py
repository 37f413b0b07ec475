import pytest

pytestmark = pytest.mark.django_db


def test_create_and_read_product(client):
    r = client.post(
        "/api/products/",
        data={"name": "Lamp", "price": "19.90", "available": 4},
        content_type="application/json",
    )
    assert r.status_code == 201
    body = r.json()
    assert body["name"] == "Lamp" and body["price"] == "19.90" and body["available"] == 4

    detail = client.get(f"/api/products/{body['id']}/")
    assert detail.status_code == 200 and detail.json() == body


def test_create_product_rejects_negative_stock(client):
    r = client.post(
        "/api/products/",
        data={"name": "Lamp", "price": "1.00", "available": -1},
        content_type="application/json",
    )
    assert r.status_code == 400


def test_list_products(client, products):
    body = client.get("/api/products/").json()
    assert body["count"] == 3
    assert {p["name"] for p in body["results"]} == {"Widget", "Gadget", "Gizmo"}


def test_missing_product(client):
    assert client.get("/api/products/123456/").status_code == 404
