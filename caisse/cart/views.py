import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, field_validator

from caisse.catalogue.models import ItemKind
from caisse.departements.service import resolve_department_id
from caisse.errors import NotFoundError
from caisse.pricing.resolver import PriceTier
from caisse.utils.security import is_privileged, require_user
from . import service as cart_service
from .models import PaymentMethod
from .sessions import CartSession

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])


class AddItemRequest(BaseModel):
    item_id: str
    kind: ItemKind = ItemKind.PRODUCT
    variant_id: Optional[str] = None
    quantity: Optional[int] = None
    tier: Optional[PriceTier] = None

    @field_validator("item_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("item_id requis")
        return v


class QuantityRequest(BaseModel):
    quantity: int


class PriceRequest(BaseModel):
    price: float


class TierRequest(BaseModel):
    tier: PriceTier


class ParkRequest(BaseModel):
    reason: str = ""


class CheckoutDetailsRequest(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    customer_label: Optional[str] = None
    customer_id: Optional[str] = None
    customer_phone: Optional[str] = None
    amount_tendered: Optional[float] = None
    remarks: Optional[str] = None


def session_payload(session: CartSession) -> Dict[str, Any]:
    return {
        "active_id": session.active.id,
        "active": session.active.model_dump(mode="json"),
        "tabs": [{"id": c.id, "items": len(c.lines), "total": c.total, "customer_label": c.customer_label} for c in session.tabs],
        "parked": [p.model_dump(mode="json") for p in session.parked],
    }


def _mutate(request: Request, user: Dict[str, Any], change: Callable[[Any, CartSession], Any]) -> Dict[str, Any]:
    """
    Charge la session du caissier, applique la modification puis la sauvegarde.
    Si la modification lève une erreur, rien n'est sauvegardé.
    """
    services = request.app.state.services
    department_id = resolve_department_id(request, user)
    session = services.sessions.load(department_id, user.get("id"))
    change(services, session)
    services.sessions.save(session)
    return session_payload(session)


# module caisse.cart.views
@router.get("/session")
def get_session(request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Session de caisse du caissier: onglet actif, onglets ouverts, paniers en attente.
    """
    services = request.app.state.services
    session = services.sessions.load(resolve_department_id(request, user), user.get("id"))
    return session_payload(session)


@router.post("/tabs")
def new_tab(request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: session.new_tab())


@router.post("/tabs/{tab_id}/activate")
def switch_tab(tab_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: session.switch_tab(tab_id))


@router.delete("/tabs/{tab_id}")
def close_tab(tab_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: session.close_tab(tab_id))


@router.post("/park")
def park_cart(body: ParkRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: session.park(body.reason))


@router.post("/parked/{parked_id}/resume")
def resume_parked(parked_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: session.resume(parked_id))


@router.delete("/parked/{parked_id}")
def delete_parked(parked_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: session.delete_parked(parked_id))


@router.post("/items")
def add_item(body: AddItemRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    """
    Ajoute un article au panier actif.
    - Entrée JSON: {item_id, kind, variant_id?, quantity?, tier?}
    - 404 si l'article ou la variante n'existe pas (ou relève d'un autre département), 409 si le stock ne suffit pas
    """
    def _add(services, session: CartSession):
        item = services.catalogue.get_item(body.kind, body.item_id)
        if item is None:
            raise NotFoundError("Article introuvable", code="item_not_found", item_id=body.item_id)
        variant = None
        if body.variant_id:
            variant = services.catalogue.get_variant(body.variant_id)
            if variant is None:
                raise NotFoundError("Variante introuvable", code="variant_not_found", variant_id=body.variant_id)
        cart_service.add_item(
            session.active, item, services.ledger,
            variant=variant, quantity=body.quantity, tier=body.tier, department_id=session.department_id,
        )

    return _mutate(request, user, _add)


@router.delete("/items/{key}")
def remove_item(key: str, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: cart_service.remove_item(session.active, key))


@router.patch("/items/{key}/quantity")
def set_quantity(key: str, body: QuantityRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(
        request, user,
        lambda services, session: cart_service.set_quantity(session.active, key, body.quantity, services.ledger),
    )


@router.patch("/items/{key}/price")
def set_price(key: str, body: PriceRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    """
    Prix personnalisé: refusé hors bornes, ou si l'article l'interdit (sauf admin/manager).
    """
    return _mutate(
        request, user,
        lambda services, session: cart_service.set_price(session.active, key, body.price, privileged=is_privileged(user)),
    )


@router.patch("/items/{key}/tier")
def set_tier(key: str, body: TierRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    return _mutate(request, user, lambda services, session: cart_service.set_tier(session.active, key, body.tier))


@router.put("/checkout")
def set_checkout_details(body: CheckoutDetailsRequest, request: Request, user: Dict[str, Any] = Depends(require_user)):
    """Moyen de paiement, client, montant reçu et remarques du panier actif."""
    return _mutate(
        request, user,
        lambda services, session: cart_service.set_checkout_details(session.active, **body.model_dump(exclude_none=True)),
    )
