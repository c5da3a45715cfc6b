import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from caisse.departements.service import resolve_department_id
from caisse.errors import CaisseError
from caisse.utils.security import require_user
from caisse.ventes import service as ventes_service
from . import webhook as payments_webhook

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module caisse.payments.views
@router.post("/webhook", include_in_schema=False)
async def payment_webhook(request: Request):
    """
    Webhook de la passerelle mobile money.
    - Signature: HMAC-SHA256 du body (X-Signature + MOBILE_MONEY_WEBHOOK_SECRET)
    - payment.succeeded / payment.failed: transmis à la porte de confirmation
    - Réponses: {"status": "ok"|"duplicate", ...} ou {"status": "ignored"}
    - Erreurs: 400 si signature/payload invalide, 404 si la vente est inconnue
    """
    try:
        event = await payments_webhook.parse_event(request)
        extracted = payments_webhook.extract_result(event)
        if extracted is None:
            return JSONResponse({"status": "ignored"})
        sale_id, result = extracted
        gate = request.app.state.services.gate
        status, outcome = await run_in_threadpool(gate.on_payment_result, sale_id, result)
        logger.info("payments.webhook sale_id=%s result=%s status=%s outcome=%s", sale_id, result.status, status, outcome.status.value)
        return JSONResponse({"status": status, "sale_id": sale_id, "outcome": outcome.status.value})
    except (HTTPException, CaisseError):
        raise
    except Exception:
        logger.exception("Erreur payment_webhook")
        raise HTTPException(status_code=400, detail="Payload webhook invalide")


@router.get("/{sale_id}")
def payment_status(sale_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """État de confirmation: awaiting, confirmed (avec reçu) ou failed (motif, escalade opérateur)."""
    services = request.app.state.services
    ventes_service.get_sale(services, sale_id, resolve_department_id(request, user))
    return services.gate.status(sale_id).model_dump(mode="json")


@router.get("/{sale_id}/await")
async def await_payment(sale_id: str, request: Request, timeout: float = 30, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Attente longue de la confirmation (au plus `timeout` secondes, borné par l'échéance de la vente).
    """
    services = request.app.state.services
    sale = await run_in_threadpool(ventes_service.get_sale, services, sale_id, resolve_department_id(request, user))
    outcome = await services.gate.await_confirmation(sale_id, sale.total, timeout=max(0.0, min(timeout, 120.0)))
    return outcome.model_dump(mode="json")


@router.post("/{sale_id}/retry")
def retry_payment(sale_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """Relance la demande mobile money d'une vente en attente dont le paiement a échoué ou expiré."""
    services = request.app.state.services
    ventes_service.get_sale(services, sale_id, resolve_department_id(request, user))
    result = services.finalizer.retry_payment(sale_id)
    logger.info("payments.retry sale_id=%s payment_error=%s", sale_id, result.payment_error)
    return result.model_dump(mode="json")
