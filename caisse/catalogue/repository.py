"""
Accès au catalogue (produits, variantes, services, forfaits data).
- SupabaseCatalogue: tables 'products', 'product_variants', 'services', 'data_packages'
- MemoryCatalogue: mode démo / tests, même interface
Le moteur ne fait que lire ici; seule la décrémentation du stock passe par caisse.stock.
"""
import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import caisse.infra.supabase_client as supabase_client
from caisse.errors import PersistenceError
from .models import CatalogItem, ItemKind, PricingTiers, TrackingMode, Variant

logger = logging.getLogger(__name__)

TABLES = {
    ItemKind.PRODUCT: "products",
    ItemKind.SERVICE: "services",
    ItemKind.DATA_PACKAGE: "data_packages",
}


def _num(v: Any, default: float = 0) -> float:
    try:
        return float(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _opt_num(v: Any) -> Optional[float]:
    return None if v is None or v == "" else _num(v)


def _tiers_from_json(raw: Any) -> Optional[PricingTiers]:
    if not isinstance(raw, dict):
        return None
    tiers = PricingTiers(
        retail=_num(raw.get("retail")),
        wholesale=_num(raw.get("wholesale")),
        individual=_num(raw.get("individual")),
    )
    if not (tiers.retail or tiers.wholesale or tiers.individual):
        return None
    return tiers


# module caisse.catalogue.repository
def product_from_row(row: Dict[str, Any]) -> CatalogItem:
    """
    Convertit une ligne 'products'.
    - tracking_type 'ml' => suivi au volume, stock = total_ml
    - prix de base: selling_price, sinon price
    """
    volume = (row.get("tracking_type") or "") == "ml"
    stock = row.get("total_ml") if volume else (row.get("stock") if row.get("stock") is not None else row.get("current_stock"))
    return CatalogItem(
        id=str(row.get("id")),
        kind=ItemKind.PRODUCT,
        name=row.get("name") or "",
        department_id=row.get("department_id"),
        base_price=_num(row.get("selling_price") if row.get("selling_price") is not None else row.get("price")),
        tiers=_tiers_from_json(row.get("pricing_tiers")),
        retail_price_per_unit=_opt_num(row.get("retail_price_per_ml")),
        wholesale_price_per_unit=_opt_num(row.get("wholesale_price_per_ml")),
        tracking=TrackingMode.VOLUME if volume else TrackingMode.QUANTITY,
        volume_unit=row.get("volume_unit") or "ml",
        stock=int(_num(stock)),
        allow_custom_price=bool(row.get("allow_custom_price")),
        min_price=_opt_num(row.get("min_price")),
        max_price=_opt_num(row.get("max_price")),
        has_variants=bool(row.get("product_variants")),
        is_active=row.get("is_active") is not False,
    )


def service_from_row(row: Dict[str, Any]) -> CatalogItem:
    # is_negotiable joue le rôle de allow_custom_price pour un service
    return CatalogItem(
        id=str(row.get("id")),
        kind=ItemKind.SERVICE,
        name=row.get("name") or "",
        department_id=row.get("department_id"),
        base_price=_num(row.get("base_price") if row.get("base_price") is not None else row.get("price")),
        allow_custom_price=bool(row.get("is_negotiable")),
        is_active=row.get("is_active") is not False,
    )


def data_package_from_row(row: Dict[str, Any]) -> CatalogItem:
    label = " ".join(
        str(p) for p in (row.get("name"), f"{row.get('data_amount') or ''}{row.get('data_unit') or ''}", row.get("validity_period")) if p
    )
    return CatalogItem(
        id=str(row.get("id")),
        kind=ItemKind.DATA_PACKAGE,
        name=label.strip() or str(row.get("id")),
        department_id=row.get("department_id"),
        base_price=_num(row.get("price")),
        is_active=row.get("is_active") is not False,
    )


def variant_from_row(row: Dict[str, Any]) -> Variant:
    # La colonne 'price' d'une variante est un ajustement additif
    adjustment = row.get("price_adjustment") if row.get("price_adjustment") is not None else row.get("price")
    return Variant(
        id=str(row.get("id")),
        item_id=str(row.get("product_id")),
        name=row.get("variant_name") or row.get("name") or "",
        price_adjustment=_num(adjustment),
        stock=int(_num(row.get("stock"))),
        is_active=row.get("is_active") is not False,
    )


_MAPPERS: Dict[ItemKind, Callable[[Dict[str, Any]], CatalogItem]] = {
    ItemKind.PRODUCT: product_from_row,
    ItemKind.SERVICE: service_from_row,
    ItemKind.DATA_PACKAGE: data_package_from_row,
}


class SupabaseCatalogue:
    """Lecture du catalogue via le client service-role."""

    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client_factory = client_factory or supabase_client.get_service_supabase

    def _select(self, kind: ItemKind) -> str:
        return "*, product_variants(id)" if kind == ItemKind.PRODUCT else "*"

    def get_item(self, kind: ItemKind, item_id: str) -> Optional[CatalogItem]:
        kind = ItemKind(kind)
        try:
            res = (
                self._client_factory()
                .table(TABLES[kind])
                .select(self._select(kind))
                .eq("id", item_id)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("catalogue.repository.get_item failed kind=%s id=%s", kind.value, item_id)
            raise PersistenceError("Catalogue indisponible", code="catalogue_unavailable")
        rows = res.data or []
        return _MAPPERS[kind](rows[0]) if rows else None

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        try:
            res = (
                self._client_factory()
                .table("product_variants")
                .select("*")
                .eq("id", variant_id)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("catalogue.repository.get_variant failed id=%s", variant_id)
            raise PersistenceError("Catalogue indisponible", code="catalogue_unavailable")
        rows = res.data or []
        return variant_from_row(rows[0]) if rows else None

    def list_variants(self, item_id: str) -> List[Variant]:
        try:
            res = (
                self._client_factory()
                .table("product_variants")
                .select("*")
                .eq("product_id", item_id)
                .order("name")
                .execute()
            )
        except Exception:
            logger.exception("catalogue.repository.list_variants failed item_id=%s", item_id)
            raise PersistenceError("Catalogue indisponible", code="catalogue_unavailable")
        return [variant_from_row(r) for r in (res.data or [])]

    def list_items(self, department_id: str, kind: Optional[ItemKind] = None) -> List[CatalogItem]:
        """
        Articles actifs d'un département, tous types confondus sauf si kind est précisé.
        """
        kinds = [ItemKind(kind)] if kind else list(TABLES.keys())
        items: List[CatalogItem] = []
        for k in kinds:
            try:
                res = (
                    self._client_factory()
                    .table(TABLES[k])
                    .select(self._select(k))
                    .eq("department_id", department_id)
                    .eq("is_active", True)
                    .order("name")
                    .execute()
                )
            except Exception:
                logger.exception("catalogue.repository.list_items failed department_id=%s kind=%s", department_id, k.value)
                raise PersistenceError("Catalogue indisponible", code="catalogue_unavailable")
            items.extend(_MAPPERS[k](r) for r in (res.data or []))
        return items


class MemoryCatalogue:
    """
    Catalogue en mémoire (mode démo, tests).
    - Les lectures renvoient des copies: un panier ne partage jamais l'objet stocké
    - Le stock est modifié uniquement par MemoryStockStore, sous self.lock
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._items: Dict[str, CatalogItem] = {}
        self._variants: Dict[str, Variant] = {}

    def add_item(self, item: CatalogItem) -> CatalogItem:
        with self.lock:
            stored = item.model_copy(deep=True)
            if any(v.item_id == item.id for v in self._variants.values()):
                stored.has_variants = True
            self._items[item.id] = stored
        return item

    def add_variant(self, variant: Variant) -> Variant:
        with self.lock:
            self._variants[variant.id] = variant.model_copy(deep=True)
            parent = self._items.get(variant.item_id)
            if parent is not None:
                parent.has_variants = True
        return variant

    def seed(self, items: List[CatalogItem], variants: Optional[List[Variant]] = None) -> None:
        for item in items:
            self.add_item(item)
        for variant in variants or []:
            self.add_variant(variant)

    def get_item(self, kind: ItemKind, item_id: str) -> Optional[CatalogItem]:
        with self.lock:
            item = self._items.get(item_id)
            if item is None or item.kind != ItemKind(kind):
                return None
            return copy.deepcopy(item)

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        with self.lock:
            variant = self._variants.get(variant_id)
            return copy.deepcopy(variant) if variant else None

    def list_variants(self, item_id: str) -> List[Variant]:
        with self.lock:
            return [copy.deepcopy(v) for v in self._variants.values() if v.item_id == item_id]

    def list_items(self, department_id: str, kind: Optional[ItemKind] = None) -> List[CatalogItem]:
        with self.lock:
            return [
                copy.deepcopy(i)
                for i in sorted(self._items.values(), key=lambda x: x.name)
                if i.is_active and i.department_id == department_id and (kind is None or i.kind == ItemKind(kind))
            ]

    # Accès brut réservé au registre de stock (appelant déjà sous self.lock)
    def _stored_item(self, item_id: str) -> Optional[CatalogItem]:
        return self._items.get(item_id)

    def _stored_variant(self, variant_id: str) -> Optional[Variant]:
        return self._variants.get(variant_id)
