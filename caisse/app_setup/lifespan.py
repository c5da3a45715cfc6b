"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Construit le conteneur de services (sauf s'il a été injecté, ex: tests)
- Lance la tâche d'expiration des paiements mobile money en attente
  (reprend d'abord les ventes en attente d'avant le démarrage; appels au dépôt via le threadpool)
Variables d'environnement:
  - STORAGE_BACKEND: 'supabase' ou 'memory'
  - PAYMENT_SWEEP_INTERVAL_SECONDS: période de la tâche d'expiration (0 = désactivée)
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from caisse.config import PAYMENT_SWEEP_INTERVAL_SECONDS
from .services import build_services

async def _sweep_overdue_payments(app: FastAPI, interval: int) -> None:
    logger = logging.getLogger("uvicorn.error")
    gate = app.state.services.gate
    restored = False
    while True:
        try:
            if not restored:
                count = await run_in_threadpool(gate.restore_pending)
                restored = True
                logger.info("Pending payments restored: %s", count)
            expired = await run_in_threadpool(gate.expire_overdue)
            if expired:
                logger.warning("Payment confirmations expired: %s", [o.sale_id for o in expired])
        except Exception:
            logger.exception("Payment sweep failed")
        await asyncio.sleep(interval)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("uvicorn.error")
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    logger.info("Storage backend: %s", app.state.services.backend)

    sweeper = None
    if PAYMENT_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(_sweep_overdue_payments(app, PAYMENT_SWEEP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
