import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .cart import router as cart_router
from .checkout import router as checkout_router
from .config import CORS_ORIGINS
from .coupon import router as coupon_router, admin_router as coupon_admin_router
from .customers import router as customers_router
from .database import Base, engine
from .logging_config import configure_logging
from .loyalty import router as loyalty_router, admin_router as loyalty_admin_router
from .main import app as user_router
from .order import router as order_router, admin_router as order_admin_router
from .store import router as store_router

configure_logging()

# Create database tables if they don't exist
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Coffee Shop")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"message": "Coffee Shop API running"}


app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(store_router, tags=["store"])
app.include_router(cart_router, tags=["cart"])
app.include_router(coupon_router)
app.include_router(checkout_router)
app.include_router(order_router)
app.include_router(loyalty_router)
app.include_router(coupon_admin_router)
app.include_router(order_admin_router)
app.include_router(loyalty_admin_router)
app.include_router(customers_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
