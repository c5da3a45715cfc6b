import logging
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/storage")
def health_storage(request: Request):
    """
    Backend de stockage actif + test de lecture du registre de ventes et de la session Redis.
    """
    services = request.app.state.services
    info = {"backend": services.backend, "sales_ok": True, "sessions_ok": True}
    try:
        services.sales.list_sales("__health__", limit=1)
    except Exception:
        logger.exception("health.storage sales check failed")
        info["sales_ok"] = False
    try:
        services.sessions.load("__health__", "__health__")
    except Exception:
        logger.exception("health.storage sessions check failed")
        info["sessions_ok"] = False
    status = 200 if info["sales_ok"] and info["sessions_ok"] else 503
    return JSONResponse(info, status_code=status)
