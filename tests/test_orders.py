from datetime import timedelta

import pytest
from fastapi import HTTPException

from coffeeshop.models import OrderStatusEnum, User, utcnow
from coffeeshop.order import (
    TRACKING_STEPS,
    create_order,
    delete_order,
    get_order_by_id,
    get_orders_by_customer,
    get_orders_by_status,
    link_order_to_user,
    remove_order_from_user,
    update_order_status,
)
from coffeeshop.store_schema import OrderCreate, TrackingStepSchema


def order_data(email="jane@example.com", date=None, status=OrderStatusEnum.PENDING, **overrides):
    values = {
        "customer": "Jane Doe",
        "email": email,
        "date": date,
        "items": [
            {"id": "latte", "name": "Caffe Latte", "price": 250, "quantity": 2},
            {"id": "mocha", "name": "Mocha", "price": 500, "quantity": 1},
        ],
        "subtotal": 1000,
        "delivery_fee": 150,
        "total": 1150,
        "status": status,
        "location": "1 Bean St, Nairobi",
    }
    values.update(overrides)
    return OrderCreate(**values)


def completed_flags(order):
    return [step.completed for step in order.tracking_steps]


def test_create_order_seeds_canonical_tracking(db):
    order_id = create_order(db, order_data())

    order = get_order_by_id(db, order_id)

    assert [step.title for step in order.tracking_steps] == [t for t, _ in TRACKING_STEPS]
    assert completed_flags(order) == [True, False, False, False, False]
    assert order.tracking_steps[0].time == order.date
    assert all(step.time is None for step in order.tracking_steps[1:])


def test_create_order_item_totals(db):
    order = get_order_by_id(db, create_order(db, order_data()))

    assert [(i.product_id, i.total) for i in order.items] == [("latte", 500), ("mocha", 500)]
    assert order.total == sum(i.total for i in order.items) + order.delivery_fee - order.discount


def test_create_order_keeps_supplied_tracking(db):
    steps = [
        TrackingStepSchema(title=title, description=description, completed=True)
        for title, description in TRACKING_STEPS
    ]

    order = get_order_by_id(db, create_order(db, order_data(tracking_steps=steps)))

    assert completed_flags(order) == [True] * 5


def test_missing_order_is_none(db):
    assert get_order_by_id(db, "missing") is None


def test_orders_by_customer_newest_first(db):
    now = utcnow()
    older = create_order(db, order_data(date=now - timedelta(days=2)))
    newer = create_order(db, order_data(date=now - timedelta(hours=1)))
    create_order(db, order_data(email="someone@else.com"))

    assert [o.id for o in get_orders_by_customer(db, "jane@example.com")] == [newer, older]


def test_orders_by_status(db):
    pending = create_order(db, order_data())
    delivered = create_order(db, order_data(status=OrderStatusEnum.DELIVERED))

    assert [o.id for o in get_orders_by_status(db, OrderStatusEnum.PENDING)] == [pending]
    assert [o.id for o in get_orders_by_status(db, OrderStatusEnum.DELIVERED)] == [delivered]


def test_delivered_completes_every_step(db):
    order_id = create_order(db, order_data())

    order = update_order_status(db, order_id, OrderStatusEnum.DELIVERED)

    assert order.status == OrderStatusEnum.DELIVERED
    assert completed_flags(order) == [True] * 5
    assert all(step.time is not None for step in order.tracking_steps)


def test_moving_back_to_pending_resets_forward_steps(db):
    order_id = create_order(db, order_data())
    update_order_status(db, order_id, OrderStatusEnum.DELIVERED)

    order = update_order_status(db, order_id, OrderStatusEnum.PENDING)

    assert completed_flags(order) == [True, False, False, False, False]


def test_completed_step_keeps_its_timestamp(db):
    order_id = create_order(db, order_data())
    placed_at = get_order_by_id(db, order_id).tracking_steps[0].time

    processing = update_order_status(db, order_id, OrderStatusEnum.PROCESSING)
    preparing_at = processing.tracking_steps[2].time
    assert completed_flags(processing) == [True, True, True, False, False]

    out = update_order_status(db, order_id, OrderStatusEnum.OUT_FOR_DELIVERY)

    assert out.tracking_steps[0].time == placed_at
    assert out.tracking_steps[2].time == preparing_at
    assert completed_flags(out) == [True, True, True, True, False]


def test_cancelled_clears_every_step(db):
    order_id = create_order(db, order_data())

    order = update_order_status(db, order_id, OrderStatusEnum.CANCELLED)

    assert completed_flags(order) == [False] * 5


def test_update_status_of_missing_order(db):
    with pytest.raises(HTTPException) as exc:
        update_order_status(db, "missing", OrderStatusEnum.PROCESSING)
    assert exc.value.status_code == 404


def test_link_is_idempotent_and_delete_prunes_user_list(db, customer):
    order_id = create_order(db, order_data())

    link_order_to_user(db, customer, order_id)
    link_order_to_user(db, customer, order_id)
    db.expire_all()
    assert db.get(User, customer.id).order_ids == [order_id]

    delete_order(db, order_id)

    db.expire_all()
    assert get_order_by_id(db, order_id) is None
    assert db.get(User, customer.id).order_ids == []


def test_remove_order_from_user(db, customer):
    order_id = create_order(db, order_data())
    link_order_to_user(db, customer, order_id)

    remove_order_from_user(db, customer, order_id)

    db.expire_all()
    assert db.get(User, customer.id).order_ids == []
    assert get_order_by_id(db, order_id) is not None


def test_customer_sees_own_orders(client, db, customer, customer_headers):
    mine = create_order(db, order_data())
    link_order_to_user(db, customer, mine)
    create_order(db, order_data(email="someone@else.com"))

    response = client.get("/orders", headers=customer_headers)

    assert [o["id"] for o in response.json()] == [mine]


def test_tracking_hidden_from_other_customers(client, db, customer_headers):
    theirs = create_order(db, order_data(email="someone@else.com"))

    assert client.get(f"/orders/{theirs}", headers=customer_headers).status_code == 404


def test_tracking_own_order(client, db, customer, customer_headers):
    order_id = create_order(db, order_data())
    link_order_to_user(db, customer, order_id)

    body = client.get(f"/orders/{order_id}", headers=customer_headers).json()

    assert body["status"] == "Pending"
    assert len(body["tracking_steps"]) == 5
    assert body["items"][0] == {
        "id": "latte", "name": "Caffe Latte", "price": 250.0, "quantity": 2, "total": 500.0
    }


def test_admin_order_management(client, db, admin_headers):
    order_id = create_order(db, order_data())

    listed = client.get("/admin/orders", params={"status": "Pending"}, headers=admin_headers)
    assert [o["id"] for o in listed.json()] == [order_id]

    moved = client.patch(
        f"/admin/orders/{order_id}/status",
        json={"status": "Out for Delivery"},
        headers=admin_headers,
    )
    assert moved.status_code == 200
    assert [s["completed"] for s in moved.json()["tracking_steps"]] == [True, True, True, True, False]

    paid = client.patch(
        f"/admin/orders/{order_id}/payment",
        json={"payment_status": "Paid"},
        headers=admin_headers,
    )
    assert paid.json()["payment_status"] == "Paid"

    assert client.delete(f"/admin/orders/{order_id}", headers=admin_headers).status_code == 204
    assert client.delete(f"/admin/orders/{order_id}", headers=admin_headers).status_code == 404


def test_customers_cannot_change_status(client, db, customer_headers):
    order_id = create_order(db, order_data())

    response = client.patch(
        f"/admin/orders/{order_id}/status",
        json={"status": "Delivered"},
        headers=customer_headers,
    )
    assert response.status_code == 403


def test_order_history_survives_email_change(client, customer, customer_headers, admin_headers):
    client.post(
        "/cart/items",
        json={"id": "latte", "name": "Caffe Latte", "price": 250, "quantity": 2},
        headers=customer_headers,
    )
    order_id = client.post(
        "/checkout", json={"location": "1 Bean St"}, headers=customer_headers
    ).json()["id"]

    changed = client.put(
        f"/admin/customers/{customer.id}",
        json={"email": "jane.new@example.com"},
        headers=admin_headers,
    )
    assert changed.json()["orders"] == [order_id]

    mine = client.get("/orders", headers=customer_headers).json()
    assert [o["id"] for o in mine] == [order_id]
    assert client.get(f"/orders/{order_id}", headers=customer_headers).status_code == 200
