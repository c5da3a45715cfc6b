"""
Stockage des niveaux de stock (produits et variantes).

Deux implémentations avec la même interface:
- SupabaseStockStore: lecture directe des tables, application du lot par les fonctions
  Postgres commit_stock_batch / release_stock_batch (une transaction, lignes verrouillées)
- MemoryStockStore: contrôle et décrémentation du lot entier sous un seul verrou

apply_batch renvoie None si tout le lot est appliqué, sinon le niveau de la cible en échec;
dans ce cas aucune cible du lot n'est modifiée.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import caisse.infra.supabase_client as supabase_client
from caisse.catalogue.models import StockLevel, StockTarget
from caisse.catalogue.repository import MemoryCatalogue
from caisse.errors import PersistenceError

logger = logging.getLogger(__name__)

Demand = List[Tuple[StockTarget, int]]


def _payload(demand: Demand) -> List[Dict[str, Any]]:
    return [{"target_id": t.target_id, "is_variant": t.is_variant, "quantity": int(q)} for t, q in demand]


class SupabaseStockStore:
    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client_factory = client_factory or supabase_client.get_service_supabase

    def read_level(self, target: StockTarget) -> Optional[StockLevel]:
        try:
            if target.is_variant:
                res = (
                    self._client_factory()
                    .table("product_variants")
                    .select("id, name, variant_name, stock")
                    .eq("id", target.target_id)
                    .limit(1)
                    .execute()
                )
            else:
                res = (
                    self._client_factory()
                    .table("products")
                    .select("id, name, stock, current_stock, total_ml, tracking_type")
                    .eq("id", target.target_id)
                    .limit(1)
                    .execute()
                )
        except Exception:
            logger.exception("stock.store.read_level failed target=%s", target.key)
            raise PersistenceError("Stock indisponible", code="stock_unavailable")
        rows = res.data or []
        if not rows:
            return None
        row = rows[0]
        volume = (row.get("tracking_type") or "") == "ml"
        if volume:
            qty = row.get("total_ml")
        else:
            qty = row.get("stock") if row.get("stock") is not None else row.get("current_stock")
        name = target.name or row.get("variant_name") or row.get("name") or ""
        return StockLevel(
            target=StockTarget(target_id=target.target_id, is_variant=target.is_variant, name=name),
            quantity=int(qty or 0),
            volume_tracked=volume,
        )

    def apply_batch(self, demand: Demand) -> Optional[StockLevel]:
        try:
            res = self._client_factory().rpc("commit_stock_batch", {"p_items": _payload(demand)}).execute()
        except Exception:
            logger.exception("stock.store.apply_batch failed items=%s", len(demand))
            raise PersistenceError("Validation du stock impossible", code="stock_unavailable")
        data = res.data or {}
        if isinstance(data, list):
            data = data[0] if data else {}
        if data.get("success"):
            return None
        failed_id = str(data.get("failed_target_id") or "")
        names = {t.target_id: t.name for t, _ in demand}
        return StockLevel(
            target=StockTarget(target_id=failed_id, is_variant=bool(data.get("failed_is_variant")), name=names.get(failed_id, "")),
            quantity=int(data.get("available") or 0),
        )

    def release_batch(self, demand: Demand) -> None:
        try:
            self._client_factory().rpc("release_stock_batch", {"p_items": _payload(demand)}).execute()
        except Exception:
            logger.exception("stock.store.release_batch failed items=%s", len(demand))
            raise PersistenceError("Restauration du stock impossible", code="stock_unavailable")


class MemoryStockStore:
    """Stock porté par un MemoryCatalogue (mode démo, tests de concurrence)."""

    def __init__(self, catalogue: MemoryCatalogue):
        self.catalogue = catalogue

    def _stored(self, target: StockTarget):
        if target.is_variant:
            return self.catalogue._stored_variant(target.target_id)
        return self.catalogue._stored_item(target.target_id)

    def _level(self, target: StockTarget, stored) -> StockLevel:
        volume = bool(getattr(stored, "volume_tracked", False))
        return StockLevel(
            target=StockTarget(target_id=target.target_id, is_variant=target.is_variant, name=target.name or stored.name),
            quantity=int(stored.stock),
            volume_tracked=volume,
        )

    def read_level(self, target: StockTarget) -> Optional[StockLevel]:
        with self.catalogue.lock:
            stored = self._stored(target)
            return self._level(target, stored) if stored is not None else None

    def apply_batch(self, demand: Demand) -> Optional[StockLevel]:
        with self.catalogue.lock:
            for target, qty in demand:
                stored = self._stored(target)
                if stored is None:
                    return StockLevel(target=target, quantity=0)
                if stored.stock < qty:
                    return self._level(target, stored)
            for target, qty in demand:
                self._stored(target).stock -= int(qty)
        return None

    def release_batch(self, demand: Demand) -> None:
        with self.catalogue.lock:
            for target, qty in demand:
                stored = self._stored(target)
                if stored is not None:
                    stored.stock += int(qty)
