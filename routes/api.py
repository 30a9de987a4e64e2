"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import (
    auth,
    businesses,
    checkout,
    grns,
    integrations,
    orders,
    parties,
    products,
    purchase_orders,
    realtime,
    returns,
    store_products,
    warehouses,
    webhooks,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    prefix = settings.API_PREFIX
    app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["auth"])
    app.include_router(businesses.router, prefix=f"{prefix}/businesses", tags=["businesses"])
    app.include_router(orders.router, prefix=f"{prefix}/orders", tags=["orders"])
    app.include_router(products.router, prefix=f"{prefix}/business/products", tags=["products"])
    app.include_router(store_products.router, prefix=f"{prefix}/store-products", tags=["store-products"])
    app.include_router(parties.router, prefix=f"{prefix}/business/parties", tags=["parties"])
    app.include_router(warehouses.router, prefix=f"{prefix}/warehouses", tags=["warehouses"])
    app.include_router(purchase_orders.router, prefix=f"{prefix}/purchase-orders", tags=["purchase-orders"])
    app.include_router(grns.router, prefix=f"{prefix}/grns", tags=["grns"])
    app.include_router(integrations.router, prefix=f"{prefix}/integrations", tags=["integrations"])
    app.include_router(webhooks.router, prefix=f"{prefix}/webhooks", tags=["webhooks"])
    app.include_router(realtime.router, prefix=f"{prefix}/realtime", tags=["realtime"])
    app.include_router(checkout.router, prefix=f"{prefix}/checkout", tags=["checkout"])
    app.include_router(checkout.proxy_router, prefix=f"{prefix}/proxy/checkout", tags=["checkout-proxy"])
    app.include_router(returns.router, prefix=f"{prefix}/proxy", tags=["customer-service"])
    logger.info("Registered API routes under %s", prefix)
