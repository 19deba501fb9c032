"""
Registre central des routers (API v1, cron, admin, health).
"""
from fastapi import FastAPI
from storefront.cart import views as cart_views
from storefront.checkout import views as checkout_views
from storefront.customers import views as customers_views
from storefront.discounts import views as discounts_views
from storefront.webhooks import views as webhooks_views
from storefront.emails import views as emails_views
from storefront.sync import views as sync_views
from storefront.orders import views as orders_views
from storefront.health.router import router as health_router


def register_routers(app: FastAPI) -> None:
    # API v1 (clients)
    app.include_router(cart_views.router)
    app.include_router(checkout_views.router)
    app.include_router(discounts_views.router)
    app.include_router(customers_views.router)
    # Stripe et tâches planifiées
    app.include_router(webhooks_views.router)
    app.include_router(emails_views.router)
    # Admin
    app.include_router(sync_views.router)
    app.include_router(orders_views.router)
    app.include_router(discounts_views.admin_router)
    # Health & monitoring
    app.include_router(health_router)
