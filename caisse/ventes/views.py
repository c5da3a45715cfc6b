import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from caisse.departements.service import resolve_department_id
from caisse.utils.security import require_user
from . import service as ventes_service
from .models import SaleStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/ventes", tags=["Ventes API"])


class CompleteSaleRequest(BaseModel):
    sale_date: Optional[date] = None


class VoidSaleRequest(BaseModel):
    reason: str
    restock: bool = False


# module caisse.ventes.views
@router.post("/complete")
def complete_sale(request: Request, body: Optional[CompleteSaleRequest] = None, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Encaisse l'onglet actif du caissier.
    - Entrée JSON optionnelle: {"sale_date": "YYYY-MM-DD"} pour une saisie antidatée
    - Réponse: {state, sale, receipt, payment_error}; receipt est null tant que le mobile money n'est pas confirmé
    - Erreurs: 422 panier vide / paiement absent, 409 stock insuffisant, conflit ou encaissement déjà en cours,
      503 écriture impossible
    """
    services = request.app.state.services
    department_id = resolve_department_id(request, user)
    result = ventes_service.checkout_session(
        services, department_id, user, sale_date=body.sale_date if body else None
    )
    logger.info("ventes.complete sale_id=%s state=%s user_id=%s", result.sale.id, result.state.value, user.get("id"))
    return result.model_dump(mode="json")


@router.get("")
def list_sales(request: Request, status: Optional[SaleStatus] = None, limit: int = 50, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    services = request.app.state.services
    sales = ventes_service.list_sales(services, resolve_department_id(request, user), status=status, limit=limit)
    return {"sales": [s.model_dump(mode="json") for s in sales]}


@router.get("/{sale_id}")
def get_sale(sale_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    sale = ventes_service.get_sale(request.app.state.services, sale_id, resolve_department_id(request, user))
    return {**sale.model_dump(mode="json"), "state": sale.state.value}


@router.get("/{sale_id}/receipt")
def get_receipt(sale_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    return ventes_service.get_receipt(request.app.state.services, sale_id, resolve_department_id(request, user)).model_dump(mode="json")


@router.post("/{sale_id}/void")
def void_sale(sale_id: str, body: VoidSaleRequest, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Annule une vente (motif obligatoire). Le stock n'est restitué que si restock=true.
    """
    sale = ventes_service.void_sale(
        request.app.state.services, sale_id, body.reason,
        voided_by=user.get("id"), restock=body.restock, department_id=resolve_department_id(request, user),
    )
    return {**sale.model_dump(mode="json"), "state": sale.state.value}
