"""
Registre de stock: source de vérité des quantités disponibles par produit/variante.

- check_availability: lecture ponctuelle, ne réserve rien (contrôle indicatif pendant l'édition du panier)
- commit: re-contrôle puis décrémente tout le lot d'un coup, ou rien du tout
- release: réincrémente (compensation d'une vente non enregistrée, retour en stock demandé)
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from caisse.catalogue.models import StockLevel, StockTarget
from caisse.errors import InsufficientStockError

logger = logging.getLogger(__name__)


class Availability(BaseModel):
    available: bool
    available_qty: int = 0
    requested: int = 0
    target: StockTarget
    message: str = ""


class CommitResult(BaseModel):
    success: bool
    failed: Optional[Availability] = None


def aggregate_demand(lines: Iterable) -> List[Tuple[StockTarget, int]]:
    """
    Regroupe les quantités par cible de stock.
    - ignore les lignes sans cible (services, forfaits data) et les quantités nulles
    - conserve l'ordre de première apparition
    """
    totals: Dict[str, Tuple[StockTarget, int]] = {}
    for line in lines:
        target = getattr(line, "stock_target", None)
        qty = int(getattr(line, "quantity", 0) or 0)
        if target is None or qty <= 0:
            continue
        prev = totals.get(target.key)
        totals[target.key] = (target, qty + (prev[1] if prev else 0))
    return list(totals.values())


def _shortage_message(name: str, available: int) -> str:
    return f"Stock insuffisant pour {name}. Disponible: {available}"


class StockLedger:
    def __init__(self, store):
        self.store = store

    def _availability(self, target: StockTarget, level: Optional[StockLevel], requested: int) -> Availability:
        if level is None:
            missing = "Variante introuvable" if target.is_variant else "Produit introuvable"
            return Availability(available=False, available_qty=0, requested=requested, target=target, message=missing)
        ok = level.quantity >= requested
        return Availability(
            available=ok,
            available_qty=level.quantity,
            requested=requested,
            target=level.target,
            message="" if ok else _shortage_message(level.target.name or target.target_id, level.quantity),
        )

    def check_availability(self, target_id: str, is_variant: bool, requested_qty: int, name: str = "") -> Availability:
        """
        Compare la quantité demandée au stock actuel (volume cumulé pour un article au ml).
        """
        target = StockTarget(target_id=target_id, is_variant=is_variant, name=name)
        return self._availability(target, self.store.read_level(target), int(requested_qty))

    def ensure_available(self, target: StockTarget, requested_qty: int) -> Availability:
        result = self.check_availability(target.target_id, target.is_variant, requested_qty, name=target.name)
        if not result.available:
            raise InsufficientStockError(
                result.message,
                item_id=target.target_id,
                item_name=result.target.name or target.name,
                requested=int(requested_qty),
                available=result.available_qty,
            )
        return result

    def commit(self, lines: Iterable) -> CommitResult:
        """
        Valide le stock d'un lot de lignes.
        - Re-contrôle chaque cible (message précis en cas d'échec)
        - Puis application atomique du lot par le store: si une cible manque, aucune n'est décrémentée
        """
        demand = aggregate_demand(lines)
        if not demand:
            return CommitResult(success=True)

        for target, qty in demand:
            check = self._availability(target, self.store.read_level(target), qty)
            if not check.available:
                logger.info("stock.ledger.commit precheck_failed target=%s requested=%s available=%s", target.key, qty, check.available_qty)
                return CommitResult(success=False, failed=check)

        failed_level = self.store.apply_batch(demand)
        if failed_level is not None:
            requested = dict((t.key, q) for t, q in demand).get(failed_level.target.key, 0)
            failed = self._availability(failed_level.target, failed_level, requested)
            if failed.available:
                # le store a refusé alors que le niveau relu suffit: concurrence entre-temps
                failed.available = False
                failed.message = _shortage_message(failed.target.name or failed.target.target_id, failed.available_qty)
            logger.warning("stock.ledger.commit conflict target=%s requested=%s available=%s", failed_level.target.key, requested, failed_level.quantity)
            return CommitResult(success=False, failed=failed)

        logger.info("stock.ledger.commit ok targets=%s", len(demand))
        return CommitResult(success=True)

    def release(self, lines: Iterable) -> None:
        demand = aggregate_demand(lines)
        if not demand:
            return
        self.store.release_batch(demand)
        logger.info("stock.ledger.release ok targets=%s", len(demand))
