"""
Registre central des routers (API v1 + health).
"""
from fastapi import FastAPI
from caisse.catalogue import views as catalogue_views
from caisse.cart import views as cart_views
from caisse.ventes import views as ventes_views
from caisse.payments import views as payments_views
from caisse.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    app.include_router(catalogue_views.router)
    app.include_router(cart_views.router)
    app.include_router(ventes_views.router)
    app.include_router(payments_views.router)
    app.include_router(health_router)
