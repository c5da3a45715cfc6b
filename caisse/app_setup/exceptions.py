"""
Gestionnaires d'exceptions.
- CaisseError: JSON {detail, code, ...contexte} avec le statut propre à l'erreur
- HTTPException: réponse JSON FastAPI standard
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from caisse.errors import CaisseError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CaisseError)
    async def caisse_error_handler(request: Request, exc: CaisseError):
        if exc.status_code >= 500:
            logger.warning("caisse error path=%s code=%s detail=%s", request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
