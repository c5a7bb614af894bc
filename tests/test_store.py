from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from coffeeshop.models import Product
from coffeeshop.store import PLACEHOLDER_IMAGE


ESPRESSO = {
    "name": "Espresso",
    "description": "Double shot",
    "price": 180,
    "category": "Coffee",
    "is_popular": True,
}


def test_catalog_admin_flow(client, admin_headers):
    created = client.post("/admin/products", json=ESPRESSO, headers=admin_headers)
    assert created.status_code == 201
    product = created.json()
    assert product["image"] == PLACEHOLDER_IMAGE
    assert product["stock"] == "In Stock"

    product_id = product["id"]

    updated = client.put(
        f"/admin/products/{product_id}",
        json={"price": 200, "original_price": 220, "offer_tag": "10% off", "image": ""},
        headers=admin_headers,
    )
    assert updated.json()["price"] == 200
    assert updated.json()["image"] == PLACEHOLDER_IMAGE

    stock = client.patch(
        f"/admin/products/{product_id}/stock",
        json={"stock": "Low Stock"},
        headers=admin_headers,
    )
    assert stock.json()["stock"] == "Low Stock"

    assert client.delete(f"/admin/products/{product_id}", headers=admin_headers).status_code == 204
    assert client.get(f"/products/{product_id}").status_code == 404


def test_public_listing_filters_by_category(client, admin_headers):
    client.post("/admin/products", json=ESPRESSO, headers=admin_headers)
    client.post(
        "/admin/products",
        json={**ESPRESSO, "name": "Croissant", "category": "Pastry"},
        headers=admin_headers,
    )

    assert len(client.get("/products").json()) == 2
    assert [p["name"] for p in client.get("/products", params={"category": "Pastry"}).json()] == ["Croissant"]


def test_negative_price_rejected(client, admin_headers):
    response = client.post("/admin/products", json={**ESPRESSO, "price": -1}, headers=admin_headers)
    assert response.status_code == 422


def test_customers_cannot_edit_catalog(client, customer_headers):
    response = client.post("/admin/products", json=ESPRESSO, headers=customer_headers)
    assert response.status_code == 403


def test_update_rejects_null_required_fields(client, admin_headers):
    product_id = client.post("/admin/products", json=ESPRESSO, headers=admin_headers).json()["id"]

    for field in ("name", "price", "category"):
        response = client.put(
            f"/admin/products/{product_id}", json={field: None}, headers=admin_headers
        )
        assert response.status_code == 422

    # Optional fields can be cleared
    cleared = client.put(
        f"/admin/products/{product_id}", json={"offer_tag": None}, headers=admin_headers
    )
    assert cleared.status_code == 200
    assert cleared.json()["price"] == 180


def test_database_failure_rolls_back_with_500(client, db, admin_headers, monkeypatch):
    product_id = client.post("/admin/products", json=ESPRESSO, headers=admin_headers).json()["id"]

    def broken_commit(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", broken_commit)
    response = client.delete(f"/admin/products/{product_id}", headers=admin_headers)
    monkeypatch.undo()

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to save changes. Please try again."
    assert db.get(Product, product_id) is not None
