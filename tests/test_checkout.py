from sqlalchemy.exc import OperationalError

import pytest
from fastapi import HTTPException

from coffeeshop import checkout as checkout_module
from coffeeshop.cart import add_to_cart, get_cart_items
from coffeeshop.checkout import place_order
from coffeeshop.models import Coupon, CouponTypeEnum, Order, User
from coffeeshop.order import get_order_by_id
from coffeeshop.store_schema import CartItemCreate, OrderCreate


LATTE = {"id": "latte", "name": "Caffe Latte", "price": 250, "quantity": 2}
BEANS = {"id": "beans", "name": "House Beans 500g", "price": 500, "quantity": 1}


def fill_cart(db, user):
    add_to_cart(db, user, CartItemCreate(**LATTE))
    add_to_cart(db, user, CartItemCreate(**BEANS))


def test_end_to_end_checkout_with_coupon(client, db, customer, customer_headers, make_coupon):
    coupon = make_coupon(code="SAVE10", value=10, min_purchase=500)
    fill_cart(db, customer)

    response = client.post(
        "/checkout",
        json={"location": "1 Bean St, Nairobi", "promo_code": "save10"},
        headers=customer_headers,
    )

    assert response.status_code == 201
    order = response.json()
    assert order["subtotal"] == 1000
    assert order["discount"] == 100
    assert order["delivery_fee"] == 150
    assert order["total"] == 1050
    assert order["loyalty_points"] == 9
    assert order["promo_code"] == "SAVE10"
    assert order["total"] == (
        sum(i["price"] * i["quantity"] for i in order["items"])
        + order["delivery_fee"]
        - order["discount"]
    )

    db.expire_all()
    assert db.get(Coupon, coupon.id).current_uses == 1
    assert get_cart_items(db, customer) == []

    user = db.get(User, customer.id)
    assert user.loyalty_points == 9
    assert user.order_ids == [order["id"]]


def test_checkout_without_coupon(client, db, customer, customer_headers):
    fill_cart(db, customer)

    order = client.post(
        "/checkout", json={"location": "1 Bean St"}, headers=customer_headers
    ).json()

    assert order["total"] == 1150
    assert order["loyalty_points"] == 10
    assert order["status"] == "Pending"
    assert order["payment_status"] == "Pending"
    assert order["payment_method"] == "Cash on Delivery"


def test_quote_matches_checkout(client, db, customer, customer_headers, make_coupon):
    make_coupon(code="SAVE10", value=10)
    fill_cart(db, customer)

    quote = client.get(
        "/checkout/quote", params={"promo_code": "SAVE10"}, headers=customer_headers
    ).json()

    assert quote == {
        "subtotal": 1000.0,
        "delivery_fee": 150.0,
        "discount": 100.0,
        "promo_code": "SAVE10",
        "total": 1050.0,
        "loyalty_points": 9,
    }


def test_gps_delivery_fee_is_in_range(client, db, customer, customer_headers):
    fill_cart(db, customer)

    quote = client.get(
        "/checkout/quote", params={"delivery_method": "gps"}, headers=customer_headers
    ).json()

    assert 100 <= quote["delivery_fee"] <= 300
    assert quote["total"] == quote["subtotal"] + quote["delivery_fee"]


def test_invalid_coupon_blocks_checkout(client, db, customer, customer_headers):
    fill_cart(db, customer)

    response = client.post(
        "/checkout",
        json={"location": "1 Bean St", "promo_code": "BOGUS"},
        headers=customer_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid coupon code"
    assert db.query(Order).count() == 0
    assert len(get_cart_items(db, customer)) == 2


def test_fixed_discount_capped_at_subtotal(client, db, customer, customer_headers, make_coupon):
    make_coupon(code="HUGE", type=CouponTypeEnum.FIXED, value=5000)
    fill_cart(db, customer)

    order = client.post(
        "/checkout",
        json={"location": "1 Bean St", "promo_code": "HUGE"},
        headers=customer_headers,
    ).json()

    assert order["discount"] == 1000
    assert order["total"] == 150


def test_empty_cart(client, customer_headers):
    response = client.post("/checkout", json={"location": "1 Bean St"}, headers=customer_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Cart is empty"


def test_missing_address(client, db, customer, customer_headers):
    fill_cart(db, customer)

    response = client.post("/checkout", json={"location": "  "}, headers=customer_headers)

    assert response.status_code == 400


def test_checkout_requires_login(client):
    assert client.post("/checkout", json={"location": "1 Bean St"}).status_code == 401


def _order(total, email="ghost@example.com"):
    return OrderCreate(
        customer="Ghost",
        email=email,
        items=[{"id": "latte", "name": "Caffe Latte", "price": total, "quantity": 1}],
        subtotal=total,
        total=total,
        location="Nowhere",
    )


def test_place_order_for_unknown_email_still_records(db):
    order_id = place_order(db, _order(1000), "ghost@example.com")

    order = get_order_by_id(db, order_id)
    assert order.loyalty_points == 8
    assert order.user_id is None


def test_place_order_credits_matching_account(db, customer):
    order_id = place_order(db, _order(230, email=customer.email), customer.email)

    db.expire_all()
    user = db.get(User, customer.id)
    assert user.loyalty_points == 2
    assert user.order_ids == [order_id]


def test_failure_rolls_back_every_step(db, customer, make_coupon, monkeypatch):
    coupon = make_coupon(code="SAVE10", value=10)
    fill_cart(db, customer)

    def broken_clear(*args, **kwargs):
        raise OperationalError("UPDATE carts", {}, Exception("connection lost"))

    monkeypatch.setattr(checkout_module, "clear_cart", broken_clear)

    with pytest.raises(HTTPException) as exc:
        place_order(
            db,
            _order(1000, email=customer.email),
            customer.email,
            promo_code="SAVE10",
            cart_owner=customer,
        )

    assert exc.value.status_code == 500

    db.expire_all()
    assert db.query(Order).count() == 0
    assert db.get(User, customer.id).loyalty_points == 0
    assert db.get(Coupon, coupon.id).current_uses == 0
    assert len(get_cart_items(db, customer)) == 2


def test_coupon_cap_hit_during_checkout_rolls_back(db, customer, make_coupon):
    make_coupon(code="LAST", value=10, max_uses=1, current_uses=1)
    fill_cart(db, customer)

    with pytest.raises(HTTPException) as exc:
        place_order(
            db,
            _order(1000, email=customer.email),
            customer.email,
            promo_code="LAST",
            cart_owner=customer,
        )

    assert exc.value.status_code == 409
    db.expire_all()
    assert db.query(Order).count() == 0
    assert db.get(User, customer.id).loyalty_points == 0
