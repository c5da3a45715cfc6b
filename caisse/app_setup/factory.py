"""
Factory d'application pour les entrypoints (ex: caisse.asgi) et les tests.
"""
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from caisse.config import CORS_ORIGINS
from .lifespan import lifespan
from .exceptions import register_exception_handlers
from .routers import register_routers
from .services import Services

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre:
      - CORS
      - gestionnaires d'exceptions
      - tous les routers (catalogue, panier, ventes, paiements, health)
    services: conteneur déjà construit (tests, démo); sinon créé au démarrage selon STORAGE_BACKEND.
    """
    app = FastAPI(title="Caisse API", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    register_routers(app)
    return app
