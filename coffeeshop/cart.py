from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .dependencies import get_db, get_current_user
from .models import Cart, CartItem, Product, User, utcnow
from .store_schema import (
    CartItemCreate,
    CartItemUpdate,
    CartResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/cart",
)


# ---------- Cart store ----------

def _get_cart(db: Session, user: User) -> Cart | None:
    return db.query(Cart).filter(Cart.user_id == user.id).first()


def _item_to_dict(item: CartItem) -> dict:
    return {
        "id": item.product_id,
        "name": item.name,
        "price": item.price,
        "original_price": item.original_price,
        "image": item.image,
        "quantity": item.quantity,
    }


def cart_subtotal(items) -> float:
    return sum(item["price"] * item["quantity"] for item in items)


def get_cart_items(db: Session, user: User) -> list[dict]:
    cart = _get_cart(db, user)
    if not cart:
        return []
    return [_item_to_dict(item) for item in cart.items]


def add_to_cart(db: Session, user: User, data: CartItemCreate, commit: bool = True):
    """
    Add an item to the user's cart, merging quantity by product id.
    The cart itself is created on first add.
    """
    if not data.id or not data.name or data.price is None or data.quantity is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Item missing required properties"
        )

    quantity = data.quantity or 1

    cart = _get_cart(db, user)
    if not cart:
        cart = Cart(user_id=user.id)
        db.add(cart)
        db.flush()

    # Check if item already in cart
    cart_item = (
        db.query(CartItem)
        .filter(CartItem.cart_id == cart.id, CartItem.product_id == data.id)
        .first()
    )

    # Add or increment
    if cart_item:
        cart_item.quantity += quantity
    else:
        cart_item = CartItem(
            cart_id=cart.id,
            product_id=data.id,
            name=data.name,
            price=data.price,
            original_price=data.original_price or None,
            image=data.image or "",
            quantity=quantity,
        )
        cart.items.append(cart_item)

    cart.updated_at = utcnow()

    if commit:
        db.commit()
        db.refresh(cart)
    return cart


def update_cart_item_quantity(db: Session, user: User, product_id: str, quantity: int, commit: bool = True):
    # No cart or no such item: nothing to do
    cart = _get_cart(db, user)
    if not cart:
        return

    for item in cart.items:
        if item.product_id == product_id:
            item.quantity = quantity
            cart.updated_at = utcnow()
            break

    if commit:
        db.commit()


def remove_from_cart(db: Session, user: User, product_id: str, commit: bool = True):
    cart = _get_cart(db, user)
    if not cart:
        return

    cart.items = [item for item in cart.items if item.product_id != product_id]
    cart.updated_at = utcnow()

    if commit:
        db.commit()


def clear_cart(db: Session, user: User, commit: bool = True):
    cart = _get_cart(db, user)
    if not cart:
        return

    cart.items = []
    cart.updated_at = utcnow()

    if commit:
        db.commit()


def _cart_response(db: Session, user: User) -> dict:
    items = get_cart_items(db, user)
    return {"items": items, "subtotal": cart_subtotal(items)}


def _run(db: Session, action: str, fn, *args):
    try:
        fn(db, *args)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("cart_update_failed", action=action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update cart. Please try again."
        )


# ---------- CART ----------

@router.get("", response_model=CartResponse)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _cart_response(db, current_user)


@router.delete("", response_model=CartResponse)
def empty_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _run(db, "clear", clear_cart, current_user)
    return _cart_response(db, current_user)


# ---------- CART ITEM ----------

@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
def add_item_to_cart(
    data: CartItemCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # Same floors as the quantity update below
    if data.quantity is not None and data.quantity < 1:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")
    if data.price is not None and data.price < 0:
        raise HTTPException(status_code=400, detail="Price must not be negative")

    # Catalog products are priced from the catalog, not the client
    product = db.query(Product).filter(Product.id == data.id).first() if data.id else None
    if product:
        data = data.model_copy(update={
            "name": product.name,
            "price": product.price,
            "original_price": product.original_price,
            "image": data.image or product.image,
        })

    _run(db, "add", add_to_cart, current_user, data)
    return _cart_response(db, current_user)


@router.put("/items/{product_id}", response_model=CartResponse)
def update_cart_item(
    product_id: str,
    data: CartItemUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # The store accepts any quantity; the floor is enforced here
    if data.quantity < 1:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")

    _run(db, "update", update_cart_item_quantity, current_user, product_id, data.quantity)
    return _cart_response(db, current_user)


@router.delete("/items/{product_id}", response_model=CartResponse)
def remove_cart_item(
    product_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _run(db, "remove", remove_from_cart, current_user, product_id)
    return _cart_response(db, current_user)
