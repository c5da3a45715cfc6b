"""
Finalisation d'une vente: Draft -> Validating -> Committing -> {Completed | AwaitingPaymentConfirmation}.

Ordre retenu pour l'étape Committing:
  1) validation atomique du stock (tout le lot ou rien)
  2) numéro de reçu puis écriture de la vente et de ses lignes
  3) si l'écriture échoue: le stock validé est restitué (compensation) avant de remonter l'erreur
Ainsi il n'existe jamais de vente enregistrée sans stock décrémenté, ni de stock décrémenté sans vente.
Un panier porte un jeton d'encaissement: le rejouer renvoie la vente déjà enregistrée.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from caisse import events
from caisse.cart.models import ASYNC_PAYMENT_METHODS, Cart, PaymentMethod
from caisse.errors import CommitConflictError, PaymentGatewayError, PersistenceError, ValidationError
from caisse.stock.ledger import StockLedger
from .models import FinalizationResult, Sale, SaleLine, SaleState, SaleStatus
from .receipt import build_receipt

logger = logging.getLogger(__name__)

RECEIPT_NUMBER_ATTEMPTS = 3


def sale_timestamp(sale_date: Optional[date] = None, now: Optional[datetime] = None) -> datetime:
    """
    Horodatage de la vente. Une vente antidatée garde l'heure courante
    pour conserver l'ordre des ventes dans la journée.
    """
    now = now or datetime.now(timezone.utc)
    if sale_date is None:
        return now
    return datetime.combine(sale_date, now.timetz())


def freeze_lines(cart: Cart) -> List[SaleLine]:
    return [
        SaleLine(
            item_id=line.item.id,
            item_kind=line.item.kind,
            variant_id=line.variant.id if line.variant else None,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            subtotal=line.subtotal,
            tier=line.tier.value,
            volume_tracked=line.item.volume_tracked,
        )
        for line in cart.lines
    ]


class SaleFinalizer:
    def __init__(
        self,
        ledger: StockLedger,
        sales,
        gate,
        gateway,
        bus: Optional[events.InvalidationBus] = None,
        business_info: Optional[Callable[[str], Dict[str, Any]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger = ledger
        self.sales = sales
        self.gate = gate
        self.gateway = gateway
        self.bus = bus or events.InvalidationBus()
        self.business_info = business_info or (lambda department_id: {})
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # --- Validating ---

    def validate(self, cart: Cart) -> None:
        """
        Contrôles sans effet de bord: panier non vide, moyen de paiement choisi,
        stock suffisant pour chaque ligne suivie.
        """
        if cart.is_empty:
            raise ValidationError("Le panier est vide", code="empty_cart")
        if cart.payment_method is None:
            raise ValidationError("Veuillez choisir un moyen de paiement", code="payment_method_required")
        if (
            cart.payment_method == PaymentMethod.CASH
            and cart.amount_tendered is not None
            and cart.amount_tendered < cart.total
        ):
            raise ValidationError(
                "Montant reçu inférieur au total",
                code="insufficient_tender",
                total=cart.total,
                amount_tendered=cart.amount_tendered,
            )
        for line in cart.lines:
            target = line.stock_target
            if target is not None:
                self.ledger.ensure_available(target, line.quantity)

    # --- Committing ---

    def _build_sale(self, cart: Cart, department_id: str, cashier: Dict[str, Any], lines: List[SaleLine], created_at: datetime, receipt_number: str) -> Sale:
        asynchronous = cart.payment_method in ASYNC_PAYMENT_METHODS
        total = cart.total
        if cart.payment_method == PaymentMethod.CASH and cart.amount_tendered is not None:
            amount_paid = cart.amount_tendered
        else:
            amount_paid = 0 if asynchronous else total
        return Sale(
            id=str(uuid4()),
            department_id=department_id,
            receipt_number=receipt_number,
            cashier_id=cashier.get("id"),
            cashier_name=cashier.get("name") or cashier.get("email") or "",
            customer_label=cart.customer_label or "",
            customer_id=cart.customer_id,
            customer_phone=cart.customer_phone,
            payment_method=cart.payment_method,
            subtotal=cart.subtotal,
            total=total,
            amount_paid=amount_paid,
            change_amount=round(max(amount_paid - total, 0), 2) if not asynchronous else 0,
            status=SaleStatus.PENDING if asynchronous else SaleStatus.COMPLETED,
            created_at=created_at,
            lines=lines,
            remarks=cart.remarks or "",
            cart_token=cart.checkout_token,
        )

    def _persist(self, cart: Cart, department_id: str, cashier: Dict[str, Any], lines: List[SaleLine], created_at: datetime) -> Sale:
        for _ in range(RECEIPT_NUMBER_ATTEMPTS):
            number = self.sales.next_receipt_number(department_id)
            sale = self._build_sale(cart, department_id, cashier, lines, created_at, number)
            stored = self.sales.insert_sale(sale)
            if stored is not None:
                return stored
            logger.warning("ventes.finalizer.persist receipt number taken number=%s department_id=%s", number, department_id)
        raise PersistenceError("Numéro de reçu indisponible", code="receipt_number_conflict", department_id=department_id)

    def finalize(self, cart: Cart, department_id: str, cashier: Dict[str, Any], sale_date: Optional[date] = None) -> FinalizationResult:
        """
        Encaisse le panier.
        - paiement synchrone: vente 'completed' + reçu (état Finalized)
        - mobile money: vente 'pending', stock déjà validé, reçu différé jusqu'à la confirmation
        - panier déjà encaissé (même jeton): la vente existante est renvoyée, rien n'est réécrit
        Erreurs: ValidationError / InsufficientStockError (rien n'est écrit), CommitConflictError
        (stock pris entre-temps, rien n'est écrit), PersistenceError (stock restitué).
        """
        if not cart.is_empty:
            existing = self.sales.find_by_cart_token(cart.checkout_token)
            if existing is not None:
                logger.info("ventes.finalizer.finalize replay sale_id=%s cart_token=%s", existing.id, cart.checkout_token)
                return self._result_for(existing, payment_error=existing.payment_error)

        self.validate(cart)

        lines = freeze_lines(cart)
        commit = self.ledger.commit(lines)
        if not commit.success:
            failed = commit.failed
            raise CommitConflictError(
                failed.message or "Stock modifié pendant l'encaissement",
                item_id=failed.target.target_id,
                item_name=failed.target.name,
                requested=failed.requested,
                available=failed.available_qty,
            )

        try:
            sale = self._persist(cart, department_id, cashier, lines, sale_timestamp(sale_date, self.clock()))
        except Exception as write_error:
            logger.warning("ventes.finalizer.finalize sale write failed, releasing stock department_id=%s lines=%s", department_id, len(lines))
            try:
                self.ledger.release(lines)
            except Exception:
                logger.exception(
                    "ventes.finalizer.finalize stock release failed department_id=%s write_error=%r lines=%s",
                    department_id, write_error,
                    [(l.item_id, l.variant_id, l.quantity) for l in lines],
                )
            raise write_error

        logger.info(
            "ventes.finalizer.finalize sale_id=%s receipt=%s status=%s total=%s method=%s",
            sale.id, sale.receipt_number, sale.status.value, sale.total, sale.payment_method.value,
        )
        self.bus.emit(events.AFTER_SALE, department_id, sale_id=sale.id, status=sale.status.value)

        if sale.status == SaleStatus.COMPLETED:
            return self._result_for(sale)

        return self._await_payment(sale)

    def _result_for(self, sale: Sale, payment_error: Optional[str] = None) -> FinalizationResult:
        receipt = None
        if sale.status == SaleStatus.COMPLETED:
            receipt = build_receipt(sale, self.business_info(sale.department_id))
        return FinalizationResult(state=sale.state, sale=sale, receipt=receipt, payment_error=payment_error)

    def _await_payment(self, sale: Sale) -> FinalizationResult:
        self.gate.register(sale.id, sale.total)
        return self._request_payment(sale)

    def retry_payment(self, sale_id: str) -> FinalizationResult:
        """Relance la demande de paiement d'une vente restée en attente après un échec."""
        self.gate.rearm(sale_id)
        sale = self.sales.get_sale(sale_id)
        return self._request_payment(sale)

    def _request_payment(self, sale: Sale) -> FinalizationResult:
        """
        Demande le paiement à la passerelle. Le webhook peut confirmer avant le retour:
        la vente est alors relue et l'état suit son statut réel.
        """
        try:
            reference = self.gateway.request_payment(sale.id, sale.total, sale.customer_phone)
        except PaymentGatewayError as e:
            self.gate.fail(sale.id, e.message)
            return self._result_for(self.sales.get_sale(sale.id) or sale, payment_error=e.message)
        if reference:
            updated = self.sales.transition(sale.id, [SaleStatus.PENDING], {"payment_reference": reference})
            sale = updated or self.sales.get_sale(sale.id) or sale
        return self._result_for(sale)
