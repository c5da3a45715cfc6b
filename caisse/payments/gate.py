"""
Porte de confirmation des paiements asynchrones (mobile money).

- register: la vente en attente attend un unique événement terminal (succès ou échec)
- on_payment_result: appelé par le webhook de la passerelle; seul le premier événement compte
- await_confirmation: attente asyncio bornée par l'échéance de la vente
- expire_overdue: au-delà de l'échéance, la vente reste 'pending' et passe en escalade (échec 'timeout')
- restore_pending: reprise des ventes en attente après un redémarrage
Un échec ne déclenche jamais d'annulation automatique: l'opérateur décide (retry ou void).
"""
import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from caisse import events
from caisse.errors import NotFoundError, PersistenceError, ValidationError
from caisse.ventes.models import Receipt, Sale, SaleStatus
from caisse.ventes.receipt import build_receipt

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.005


class ConfirmationStatus(str, Enum):
    AWAITING = "awaiting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentResult(BaseModel):
    status: Literal["success", "failed"]
    amount: Optional[float] = None
    reference: Optional[str] = None
    reason: Optional[str] = None


class ConfirmationOutcome(BaseModel):
    sale_id: str
    status: ConfirmationStatus
    receipt: Optional[Receipt] = None
    reason: Optional[str] = None
    escalated: bool = False
    deadline: Optional[datetime] = None


class _Registration:
    def __init__(self, sale_id: str, amount: float, deadline: datetime):
        self.sale_id = sale_id
        self.amount = amount
        self.deadline = deadline
        self.outcome: Optional[ConfirmationOutcome] = None
        self.settling = False
        self.waiters: List[asyncio.Future] = []


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _resolve(fut: asyncio.Future, outcome: ConfirmationOutcome) -> None:
    if not fut.done():
        fut.set_result(outcome)


class PaymentConfirmationGate:
    """
    Le verrou ne protège que l'état en mémoire: aucun appel au dépôt des ventes n'est fait sous verrou.
    Un événement terminal est d'abord réservé (settling), écrit en base, puis publié aux attentes.
    """

    def __init__(
        self,
        sales,
        bus: Optional[events.InvalidationBus] = None,
        business_info: Optional[Callable[[str], Dict[str, Any]]] = None,
        timeout_seconds: int = 900,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.sales = sales
        self.bus = bus or events.InvalidationBus()
        self.business_info = business_info or (lambda department_id: {})
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._lock = threading.RLock()
        self._registrations: Dict[str, _Registration] = {}

    # --- Enregistrement ---

    def register(self, sale_id: str, amount: float, deadline: Optional[datetime] = None) -> ConfirmationOutcome:
        deadline = deadline or (self.clock() + timedelta(seconds=self.timeout_seconds))
        with self._lock:
            reg = _Registration(sale_id, float(amount), deadline)
            self._registrations[sale_id] = reg
        logger.info("payments.gate.register sale_id=%s amount=%s deadline=%s", sale_id, amount, deadline.isoformat())
        return ConfirmationOutcome(sale_id=sale_id, status=ConfirmationStatus.AWAITING, deadline=deadline)

    def _deadline_for(self, sale: Sale) -> datetime:
        created_at = sale.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return created_at + timedelta(seconds=self.timeout_seconds)

    def _registration_from_sale(self, sale: Sale) -> _Registration:
        """
        Registre reconstruit depuis la vente (après un redémarrage du service).
        L'échéance part de la création de la vente.
        """
        reg = _Registration(sale.id, sale.total, self._deadline_for(sale))
        if sale.status == SaleStatus.COMPLETED:
            reg.outcome = ConfirmationOutcome(
                sale_id=sale.id,
                status=ConfirmationStatus.CONFIRMED,
                receipt=build_receipt(sale, self.business_info(sale.department_id)),
            )
        elif sale.status == SaleStatus.VOIDED:
            reg.outcome = ConfirmationOutcome(sale_id=sale.id, status=ConfirmationStatus.FAILED, reason="voided")
        elif sale.payment_error:
            reg.outcome = ConfirmationOutcome(sale_id=sale.id, status=ConfirmationStatus.FAILED, reason=sale.payment_error, escalated=True)
        return reg

    def _load_registration(self, sale_id: str) -> _Registration:
        with self._lock:
            reg = self._registrations.get(sale_id)
        if reg is not None:
            return reg
        sale = self.sales.get_sale(sale_id)
        if sale is None:
            raise NotFoundError("Vente introuvable", code="sale_not_found", sale_id=sale_id)
        fresh = self._registration_from_sale(sale)
        with self._lock:
            return self._registrations.setdefault(sale_id, fresh)

    def restore_pending(self) -> int:
        """
        Réenregistre les ventes encore en attente de paiement (sans échec enregistré),
        pour que l'expiration s'applique aussi à celles créées avant un redémarrage.
        """
        restored = 0
        for sale in self.sales.list_awaiting_payment():
            reg = self._registration_from_sale(sale)
            with self._lock:
                if sale.id not in self._registrations:
                    self._registrations[sale.id] = reg
                    restored += 1
        if restored:
            logger.info("payments.gate.restore_pending restored=%s", restored)
        return restored

    def status(self, sale_id: str) -> ConfirmationOutcome:
        reg = self._load_registration(sale_id)
        with self._lock:
            if reg.outcome is not None:
                return reg.outcome
            return ConfirmationOutcome(sale_id=sale_id, status=ConfirmationStatus.AWAITING, deadline=reg.deadline)

    # --- Événements terminaux ---

    def _claim(self, reg: _Registration) -> Optional[ConfirmationOutcome]:
        """
        Réserve l'événement terminal de la vente. None si la réservation est obtenue,
        sinon l'issue déjà connue (ou 'awaiting' si un autre événement est en cours d'écriture).
        """
        with self._lock:
            if reg.outcome is not None:
                return reg.outcome
            if reg.settling:
                return ConfirmationOutcome(sale_id=reg.sale_id, status=ConfirmationStatus.AWAITING, deadline=reg.deadline)
            reg.settling = True
            return None

    def _unclaim(self, reg: _Registration) -> None:
        with self._lock:
            reg.settling = False

    def _settle(self, reg: _Registration, outcome: ConfirmationOutcome) -> ConfirmationOutcome:
        with self._lock:
            reg.outcome = outcome
            reg.settling = False
            waiters, reg.waiters = reg.waiters, []
        for fut in waiters:
            fut.get_loop().call_soon_threadsafe(_resolve, fut, outcome)
        return outcome

    def _fail_claimed(self, reg: _Registration, reason: str, escalated: bool = True) -> ConfirmationOutcome:
        try:
            sale = self.sales.transition(reg.sale_id, [SaleStatus.PENDING], {"payment_error": reason})
        except Exception:
            self._unclaim(reg)
            raise
        logger.warning("payments.gate.failed sale_id=%s reason=%s", reg.sale_id, reason)
        outcome = self._settle(reg, ConfirmationOutcome(sale_id=reg.sale_id, status=ConfirmationStatus.FAILED, reason=reason, escalated=escalated))
        if sale is not None:
            self.bus.emit([events.SALES], sale.department_id, sale_id=sale.id, status="payment_failed")
        return outcome

    def _fail(self, reg: _Registration, reason: str) -> ConfirmationOutcome:
        known = self._claim(reg)
        if known is not None:
            return known
        return self._fail_claimed(reg, reason)

    def on_payment_result(self, sale_id: str, result: PaymentResult) -> Tuple[str, ConfirmationOutcome]:
        """
        Applique le résultat de la passerelle.
        Retour: ("ok", outcome) au premier événement terminal, ("duplicate", outcome) ensuite.
        - succès dont le montant diffère du total de la vente: traité comme un échec 'amount_mismatch'
        """
        reg = self._load_registration(sale_id)
        known = self._claim(reg)
        if known is not None:
            logger.info("payments.gate.duplicate sale_id=%s status=%s", sale_id, result.status)
            return "duplicate", known

        if result.status == "failed":
            return "ok", self._fail_claimed(reg, result.reason or "payment_failed")

        if result.amount is not None and abs(float(result.amount) - reg.amount) > AMOUNT_TOLERANCE:
            return "ok", self._fail_claimed(reg, "amount_mismatch")

        try:
            sale = self.sales.transition(
                sale_id,
                [SaleStatus.PENDING],
                {"status": SaleStatus.COMPLETED, "payment_reference": result.reference, "payment_error": None, "amount_paid": reg.amount},
            )
        except Exception:
            self._unclaim(reg)
            raise
        if sale is None:
            logger.warning("payments.gate.confirm sale not pending sale_id=%s", sale_id)
            outcome = ConfirmationOutcome(sale_id=sale_id, status=ConfirmationStatus.FAILED, reason="sale_not_pending", escalated=True)
            return "ok", self._settle(reg, outcome)

        receipt = build_receipt(sale, self.business_info(sale.department_id))
        outcome = self._settle(reg, ConfirmationOutcome(sale_id=sale_id, status=ConfirmationStatus.CONFIRMED, receipt=receipt))
        logger.info("payments.gate.confirmed sale_id=%s reference=%s", sale_id, result.reference)
        self.bus.emit([events.SALES, events.DASHBOARD], sale.department_id, sale_id=sale.id, status="completed")
        return "ok", outcome

    def fail(self, sale_id: str, reason: str) -> ConfirmationOutcome:
        """Échec constaté côté moteur (ex: la passerelle refuse la demande de paiement)."""
        return self._fail(self._load_registration(sale_id), reason)

    def cancel(self, sale_id: str) -> None:
        """Vente annulée: tout événement ultérieur de la passerelle est ignoré."""
        with self._lock:
            reg = self._registrations.get(sale_id)
            if reg is None or reg.outcome is not None or reg.settling:
                return
            reg.settling = True
        self._settle(reg, ConfirmationOutcome(sale_id=sale_id, status=ConfirmationStatus.FAILED, reason="voided"))

    def rearm(self, sale_id: str) -> ConfirmationOutcome:
        """
        Relance manuelle après un échec: la vente doit encore être en attente.
        """
        reg = self._load_registration(sale_id)
        sale = self.sales.get_sale(sale_id)
        if sale is None or sale.status != SaleStatus.PENDING:
            raise ValidationError("La vente n'est plus en attente de paiement", code="sale_not_pending", sale_id=sale_id)
        with self._lock:
            if reg.outcome is None:
                raise ValidationError("Paiement déjà en attente de confirmation", code="payment_in_progress", sale_id=sale_id)
        self.sales.transition(sale_id, [SaleStatus.PENDING], {"payment_error": None})
        return self.register(sale_id, sale.total)

    # --- Attente et échéances ---

    async def await_confirmation(self, sale_id: str, amount: float, timeout: Optional[float] = None) -> ConfirmationOutcome:
        """
        Attend l'événement terminal de la vente (sans interroger la passerelle).
        - timeout: secondes; par défaut le temps restant avant l'échéance
        - à l'expiration de l'échéance: échec 'timeout', vente laissée en attente pour l'opérateur
        Les accès au dépôt passent par le threadpool.
        """
        loop = asyncio.get_running_loop()
        reg = await run_in_threadpool(self._load_registration, sale_id)
        with self._lock:
            if abs(reg.amount - float(amount)) > AMOUNT_TOLERANCE:
                raise ValidationError("Montant différent du total de la vente", code="amount_mismatch", sale_id=sale_id, expected=reg.amount, amount=amount)
            if reg.outcome is not None:
                return reg.outcome
            fut = loop.create_future()
            reg.waiters.append(fut)
            remaining = max((reg.deadline - self.clock()).total_seconds(), 0)
        wait_for = remaining if timeout is None else min(float(timeout), remaining)
        try:
            return await asyncio.wait_for(asyncio.shield(fut), wait_for)
        except asyncio.TimeoutError:
            with self._lock:
                if reg.outcome is not None:
                    return reg.outcome
                if fut in reg.waiters:
                    reg.waiters.remove(fut)
                overdue = self.clock() >= reg.deadline
            if overdue:
                return await run_in_threadpool(self._fail, reg, "timeout")
            return ConfirmationOutcome(sale_id=sale_id, status=ConfirmationStatus.AWAITING, deadline=reg.deadline)

    def expire_overdue(self, now: Optional[datetime] = None) -> List[ConfirmationOutcome]:
        """
        Passe en échec 'timeout' les ventes dont l'échéance est dépassée.
        Une écriture en échec est journalisée; la vente sera reprise au passage suivant.
        """
        now = now or self.clock()
        with self._lock:
            overdue = [
                reg for reg in self._registrations.values()
                if reg.outcome is None and not reg.settling and reg.deadline <= now
            ]
        expired: List[ConfirmationOutcome] = []
        for reg in overdue:
            if self._claim(reg) is not None:
                continue
            try:
                expired.append(self._fail_claimed(reg, "timeout"))
            except PersistenceError:
                logger.exception("payments.gate.expire_overdue failed sale_id=%s", reg.sale_id)
        return expired
