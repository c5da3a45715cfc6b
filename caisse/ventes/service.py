"""
Cas d'usage 'ventes': encaissement du panier actif, annulation, historique, reçu.
Toute lecture ou écriture d'une vente est bornée au département courant.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from caisse import events
from caisse.cart.sessions import CartSession
from caisse.errors import CommitConflictError, NotFoundError, ValidationError
from caisse.payments.gate import ConfirmationStatus
from .models import FinalizationResult, Receipt, Sale, SaleStatus
from .receipt import build_receipt

logger = logging.getLogger(__name__)


def complete_sale(services, session: CartSession, department_id: str, cashier: Dict[str, Any], sale_date: Optional[date] = None) -> FinalizationResult:
    """
    Encaisse l'onglet actif puis le remet à zéro (vente terminée ou en attente de paiement).
    En cas d'erreur le panier est conservé tel quel pour correction.
    """
    result = services.finalizer.finalize(session.active, department_id, cashier, sale_date=sale_date)
    session.reset_active()
    return result


def checkout_session(services, department_id: str, cashier: Dict[str, Any], sale_date: Optional[date] = None) -> FinalizationResult:
    """
    Encaissement complet d'une session sous verrou: chargement, finalisation, sauvegarde.
    Si la sauvegarde échoue après la vente, le panier garde son jeton: le rejouer renvoie la même vente.
    """
    cashier_id = cashier.get("id")
    with services.sessions.checkout_lock(department_id, cashier_id):
        session = services.sessions.load(department_id, cashier_id)
        result = complete_sale(services, session, department_id, cashier, sale_date=sale_date)
        services.sessions.save(session)
    return result


def get_sale(services, sale_id: str, department_id: Optional[str] = None) -> Sale:
    """Vente par identifiant; une vente d'un autre département est introuvable."""
    sale = services.sales.get_sale(sale_id)
    if sale is None or (department_id is not None and sale.department_id != department_id):
        raise NotFoundError("Vente introuvable", code="sale_not_found", sale_id=sale_id)
    return sale


def list_sales(services, department_id: str, status: Optional[SaleStatus] = None, limit: int = 50) -> List[Sale]:
    return services.sales.list_sales(department_id, status=status, limit=max(1, min(int(limit), 500)))


def get_receipt(services, sale_id: str, department_id: Optional[str] = None) -> Receipt:
    sale = get_sale(services, sale_id, department_id)
    if sale.status == SaleStatus.PENDING:
        raise ValidationError("Reçu disponible après confirmation du paiement", code="payment_pending", sale_id=sale_id)
    if sale.status == SaleStatus.VOIDED:
        raise ValidationError("Vente annulée", code="sale_voided", sale_id=sale_id)
    return build_receipt(sale, services.business_info(sale.department_id))


def void_sale(
    services,
    sale_id: str,
    reason: str,
    voided_by: Optional[str] = None,
    restock: bool = False,
    department_id: Optional[str] = None,
) -> Sale:
    """
    Annule une vente avec un motif obligatoire.
    - refuse une vente déjà annulée
    - une vente en attente n'est annulable qu'après échec ou expiration du paiement
    - le stock n'est restitué que sur demande explicite (restock=True)
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Le motif d'annulation est obligatoire", code="void_reason_required", sale_id=sale_id)
    sale = get_sale(services, sale_id, department_id)
    if sale.status == SaleStatus.VOIDED:
        raise ValidationError("Cette vente est déjà annulée", code="already_voided", sale_id=sale_id)
    if sale.status == SaleStatus.PENDING and services.gate.status(sale_id).status == ConfirmationStatus.AWAITING:
        raise ValidationError("Paiement en attente de confirmation", code="payment_in_progress", sale_id=sale_id)

    updated = services.sales.transition(
        sale_id,
        [sale.status],
        {
            "status": SaleStatus.VOIDED,
            "void_reason": reason,
            "voided_by": voided_by,
            "voided_at": datetime.now(timezone.utc),
        },
    )
    if updated is None:
        raise CommitConflictError("La vente a changé d'état entre-temps", code="sale_state_changed", sale_id=sale_id)

    services.gate.cancel(sale_id)
    if restock:
        services.ledger.release(updated.lines)
    logger.info("ventes.service.void_sale sale_id=%s voided_by=%s restock=%s", sale_id, voided_by, restock)
    topics = events.AFTER_SALE if restock else (events.SALES, events.DASHBOARD)
    services.bus.emit(topics, updated.department_id, sale_id=sale_id, status=SaleStatus.VOIDED.value)
    return updated
