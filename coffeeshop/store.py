from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
import structlog

from .database import commit_or_500
from .dependencies import get_db, require_capability, MANAGE_CATALOG
from .models import Product
from .store_schema import (
    ProductCreate,
    ProductUpdate,
    ProductOut,
    StockUpdate,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

# Used when a product is saved without an image
PLACEHOLDER_IMAGE = "https://images.unsplash.com/photo-1518770660439-4636190af475"


def _get_product_or_404(db: Session, product_id: str) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# ---------- PRODUCT ----------
@router.get("/products", response_model=List[ProductOut])
def read_products(category: str | None = None, db: Session = Depends(get_db)):
    query = db.query(Product)
    if category:
        query = query.filter(Product.category == category)
    return query.order_by(Product.name).all()


@router.get("/products/{product_id}", response_model=ProductOut)
def read_product(product_id: str, db: Session = Depends(get_db)):
    return _get_product_or_404(db, product_id)


@router.post(
    "/admin/products",
    status_code=status.HTTP_201_CREATED,
    response_model=ProductOut
)
def create_product(
    product: ProductCreate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CATALOG)),
):
    values = product.model_dump()
    values["image"] = values["image"] or PLACEHOLDER_IMAGE

    db_product = Product(**values)

    db.add(db_product)
    commit_or_500(db, "create_product")
    db.refresh(db_product)
    logger.info("product_created", product_id=db_product.id, name=db_product.name)
    return db_product


@router.put("/admin/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    product: ProductUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CATALOG)),
):
    db_product = _get_product_or_404(db, product_id)

    for key, value in product.model_dump(exclude_unset=True).items():
        # A blank image keeps the current one
        if key == "image" and not value:
            continue
        setattr(db_product, key, value)

    commit_or_500(db, "update_product", product_id=product_id)
    db.refresh(db_product)
    return db_product


@router.patch("/admin/products/{product_id}/stock", response_model=ProductOut)
def update_product_stock(
    product_id: str,
    data: StockUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CATALOG)),
):
    db_product = _get_product_or_404(db, product_id)
    db_product.stock = data.stock
    commit_or_500(db, "update_stock", product_id=product_id)
    db.refresh(db_product)
    return db_product


@router.delete("/admin/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CATALOG)),
):
    product = _get_product_or_404(db, product_id)

    db.delete(product)
    commit_or_500(db, "delete_product", product_id=product_id)
    logger.info("product_deleted", product_id=product_id)
