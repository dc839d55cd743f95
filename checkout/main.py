# checkout/main.py
from fastapi import FastAPI
from checkout.data.database import Base, engine
from checkout.api.routers import addresses, carts, health, orders, payments, returns
from checkout.api.routers import checkout as checkout_sessions
from checkout.utils.logging import get_logger
import uvicorn

logger = get_logger(__name__)

# IMPORT WSZYSTKICH MODELI NA POCZĄTKU (PRZED JAKIMKOLWIEK CREATE_ALL)
from checkout.data import models  # noqa: F401

logger.info("=" * 80)
logger.info("INITIALIZING DATABASE...")
logger.info(f"Models registered in Base.metadata: {list(Base.metadata.tables.keys())}")

try:
    Base.metadata.create_all(bind=engine)
    logger.info("DATABASE TABLES CREATED SUCCESSFULLY")
    logger.info("=" * 80)
except Exception as e:
    logger.critical(f"FAILED TO CREATE TABLES: {e}")
    raise


def create_app() -> FastAPI:
    app = FastAPI(
        title="Checkout Service",
        version="1.0.0",
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(checkout_sessions.router)
    app.include_router(addresses.router)
    app.include_router(payments.router)
    app.include_router(orders.router)
    app.include_router(returns.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
