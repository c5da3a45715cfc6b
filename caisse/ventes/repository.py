"""
Accès aux données pour la feature 'ventes'.
- SupabaseSaleRepository: tables 'sales' + 'sale_items', RPC generate_receipt_number
- MemorySaleRepository: mode démo / tests
insert_sale renvoie None si le numéro de reçu existe déjà (contrainte unique), l'appelant en tire un autre.
Un panier déjà encaissé (même cart_token) lève CommitConflictError.
"""
import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError

import caisse.infra.supabase_client as supabase_client
from caisse.catalogue.models import ItemKind
from caisse.errors import CommitConflictError, PersistenceError
from .models import Sale, SaleLine, SaleStatus

# Colonnes écrites dans public.sale_items
SALE_ITEM_COLUMNS = {
    "sale_id", "product_id", "service_id", "data_package_id", "variant_id",
    "name", "item_name", "quantity", "unit_price", "total",
    "item_kind", "tier", "volume_tracked",
}

logger = logging.getLogger(__name__)

_ID_COLUMNS = {
    ItemKind.PRODUCT: "product_id",
    ItemKind.SERVICE: "service_id",
    ItemKind.DATA_PACKAGE: "data_package_id",
}


def fallback_receipt_number() -> str:
    return f"RCP{int(time.time() * 1000)}"


def format_receipt_number(seq: int) -> str:
    return f"RCP-{seq:06d}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def sale_to_row(sale: Sale) -> Dict[str, Any]:
    return {
        "id": sale.id,
        "department_id": sale.department_id,
        "receipt_number": sale.receipt_number,
        "sale_number": sale.receipt_number,
        "cashier_id": sale.cashier_id,
        "cashier_name": sale.cashier_name,
        "customer_id": sale.customer_id,
        "customer_name": sale.customer_label or None,
        "customer_phone": sale.customer_phone,
        "payment_method": sale.payment_method.value,
        "subtotal": sale.subtotal,
        "total": sale.total,
        "amount_paid": sale.amount_paid,
        "change_amount": sale.change_amount,
        "status": sale.status.value,
        "remarks": sale.remarks or None,
        "payment_reference": sale.payment_reference,
        "payment_error": sale.payment_error,
        "cart_token": sale.cart_token,
        "created_at": sale.created_at.isoformat(),
    }


def line_to_row(sale_id: str, line: SaleLine) -> Dict[str, Any]:
    """Ligne figée vers sale_items: 'name' est obligatoire, 'total' porte le montant de la ligne."""
    row = {
        "sale_id": sale_id,
        "item_kind": line.item_kind.value,
        "variant_id": line.variant_id,
        "name": line.name,
        "item_name": line.name,
        "quantity": line.quantity,
        "unit_price": line.unit_price,
        "total": line.subtotal,
        "tier": line.tier,
        "volume_tracked": line.volume_tracked,
    }
    row[_ID_COLUMNS[line.item_kind]] = line.item_id
    return row


def line_from_row(row: Dict[str, Any]) -> SaleLine:
    if row.get("item_kind"):
        kind = ItemKind(row["item_kind"])
    elif row.get("service_id"):
        kind = ItemKind.SERVICE
    elif row.get("data_package_id"):
        kind = ItemKind.DATA_PACKAGE
    else:
        kind = ItemKind.PRODUCT
    qty = int(row.get("quantity") or 0)
    unit_price = float(row.get("unit_price") or 0)
    return SaleLine(
        item_id=str(row.get(_ID_COLUMNS[kind]) or ""),
        item_kind=kind,
        variant_id=row.get("variant_id"),
        name=row.get("item_name") or row.get("name") or "",
        quantity=qty,
        unit_price=unit_price,
        subtotal=float(row.get("total") if row.get("total") is not None else round(qty * unit_price, 2)),
        tier=row.get("tier") or "default",
        volume_tracked=bool(row.get("volume_tracked")),
    )


def sale_from_row(row: Dict[str, Any]) -> Sale:
    return Sale(
        id=str(row.get("id")),
        department_id=str(row.get("department_id") or ""),
        receipt_number=row.get("receipt_number") or row.get("sale_number") or "",
        cashier_id=row.get("cashier_id"),
        cashier_name=row.get("cashier_name") or "",
        customer_label=row.get("customer_name") or "",
        customer_id=row.get("customer_id"),
        customer_phone=row.get("customer_phone"),
        payment_method=row.get("payment_method"),
        subtotal=float(row.get("subtotal") or 0),
        total=float(row.get("total") or 0),
        amount_paid=float(row.get("amount_paid") or 0),
        change_amount=float(row.get("change_amount") or 0),
        status=row.get("status") or SaleStatus.COMPLETED.value,
        created_at=row.get("created_at"),
        lines=[line_from_row(r) for r in (row.get("sale_items") or [])],
        remarks=row.get("remarks") or "",
        payment_reference=row.get("payment_reference"),
        payment_error=row.get("payment_error"),
        void_reason=row.get("void_reason"),
        voided_by=row.get("voided_by"),
        voided_at=row.get("voided_at"),
        cart_token=row.get("cart_token"),
    )


class SupabaseSaleRepository:
    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client_factory = client_factory or supabase_client.get_service_supabase

    def next_receipt_number(self, department_id: str) -> str:
        """
        Numéro séquentiel par département (RPC generate_receipt_number).
        - en cas d'échec: repli horodaté RCP<epoch_ms>, signalé dans les logs
        """
        try:
            res = self._client_factory().rpc("generate_receipt_number", {"p_department_id": department_id}).execute()
            number = res.data
            if isinstance(number, list):
                number = number[0] if number else None
            if number:
                return str(number)
            logger.warning("ventes.repository.next_receipt_number empty department_id=%s", department_id)
        except Exception:
            logger.warning("ventes.repository.next_receipt_number rpc failed department_id=%s", department_id, exc_info=True)
        number = fallback_receipt_number()
        logger.warning("ventes.repository.next_receipt_number fallback=%s department_id=%s", number, department_id)
        return number

    def insert_sale(self, sale: Sale) -> Optional[Sale]:
        client = self._client_factory()
        try:
            client.table("sales").insert(sale_to_row(sale)).execute()
        except APIError as e:
            if getattr(e, "code", None) == "23505":
                if "cart_token" in f"{e.message} {e.details}":
                    logger.warning("ventes.repository.insert_sale cart already sold cart_token=%s", sale.cart_token)
                    raise CommitConflictError("Ce panier a déjà été encaissé", code="cart_already_sold", cart_token=sale.cart_token)
                logger.info("ventes.repository.insert_sale duplicate receipt_number=%s", sale.receipt_number)
                return None
            logger.exception("ventes.repository.insert_sale failed sale_id=%s", sale.id)
            raise PersistenceError("Enregistrement de la vente impossible", code="sale_write_failed")
        except Exception:
            logger.exception("ventes.repository.insert_sale failed sale_id=%s", sale.id)
            raise PersistenceError("Enregistrement de la vente impossible", code="sale_write_failed")

        try:
            if sale.lines:
                client.table("sale_items").insert([line_to_row(sale.id, l) for l in sale.lines]).execute()
        except Exception:
            logger.exception("ventes.repository.insert_sale items failed sale_id=%s", sale.id)
            try:
                client.table("sales").delete().eq("id", sale.id).execute()
            except Exception:
                logger.exception("ventes.repository.insert_sale cleanup failed sale_id=%s", sale.id)
            raise PersistenceError("Enregistrement des lignes de vente impossible", code="sale_write_failed")
        return sale

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        try:
            res = (
                self._client_factory()
                .table("sales")
                .select("*, sale_items(*)")
                .eq("id", sale_id)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("ventes.repository.get_sale failed sale_id=%s", sale_id)
            raise PersistenceError("Historique des ventes indisponible", code="sales_unavailable")
        rows = res.data or []
        return sale_from_row(rows[0]) if rows else None

    def list_sales(self, department_id: str, status: Optional[SaleStatus] = None, limit: int = 50) -> List[Sale]:
        try:
            query = (
                self._client_factory()
                .table("sales")
                .select("*, sale_items(*)")
                .eq("department_id", department_id)
            )
            if status:
                query = query.eq("status", SaleStatus(status).value)
            res = query.order("created_at", desc=True).limit(limit).execute()
        except Exception:
            logger.exception("ventes.repository.list_sales failed department_id=%s", department_id)
            raise PersistenceError("Historique des ventes indisponible", code="sales_unavailable")
        return [sale_from_row(r) for r in (res.data or [])]

    def find_by_cart_token(self, cart_token: str) -> Optional[Sale]:
        try:
            res = (
                self._client_factory()
                .table("sales")
                .select("*, sale_items(*)")
                .eq("cart_token", cart_token)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("ventes.repository.find_by_cart_token failed cart_token=%s", cart_token)
            raise PersistenceError("Historique des ventes indisponible", code="sales_unavailable")
        rows = res.data or []
        return sale_from_row(rows[0]) if rows else None

    def list_awaiting_payment(self, limit: int = 500) -> List[Sale]:
        """Ventes en attente de paiement sans échec enregistré, tous départements."""
        try:
            res = (
                self._client_factory()
                .table("sales")
                .select("*, sale_items(*)")
                .eq("status", SaleStatus.PENDING.value)
                .is_("payment_error", "null")
                .order("created_at")
                .limit(limit)
                .execute()
            )
        except Exception:
            logger.exception("ventes.repository.list_awaiting_payment failed")
            raise PersistenceError("Historique des ventes indisponible", code="sales_unavailable")
        return [sale_from_row(r) for r in (res.data or [])]

    def transition(self, sale_id: str, from_statuses: Iterable[SaleStatus], fields: Dict[str, Any]) -> Optional[Sale]:
        """
        Mise à jour conditionnelle: ne s'applique que si le statut courant est dans from_statuses.
        Retourne la vente relue, ou None si la condition n'est plus vraie.
        """
        payload = {k: _jsonable(v) for k, v in fields.items()}
        try:
            res = (
                self._client_factory()
                .table("sales")
                .update(payload)
                .eq("id", sale_id)
                .in_("status", [SaleStatus(s).value for s in from_statuses])
                .execute()
            )
        except Exception:
            logger.exception("ventes.repository.transition failed sale_id=%s", sale_id)
            raise PersistenceError("Mise à jour de la vente impossible", code="sale_write_failed")
        if not res.data:
            return None
        return self.get_sale(sale_id)


class MemorySaleRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._sales: Dict[str, Sale] = {}
        self._counters: Dict[str, int] = {}

    def next_receipt_number(self, department_id: str) -> str:
        with self._lock:
            self._counters[department_id] = self._counters.get(department_id, 0) + 1
            return format_receipt_number(self._counters[department_id])

    def insert_sale(self, sale: Sale) -> Optional[Sale]:
        with self._lock:
            if sale.cart_token and any(s.cart_token == sale.cart_token for s in self._sales.values()):
                raise CommitConflictError("Ce panier a déjà été encaissé", code="cart_already_sold", cart_token=sale.cart_token)
            if any(s.receipt_number == sale.receipt_number and s.department_id == sale.department_id for s in self._sales.values()):
                return None
            self._sales[sale.id] = sale
        return sale

    def find_by_cart_token(self, cart_token: str) -> Optional[Sale]:
        with self._lock:
            return next((s for s in self._sales.values() if s.cart_token == cart_token), None)

    def list_awaiting_payment(self, limit: int = 500) -> List[Sale]:
        with self._lock:
            sales = [s for s in self._sales.values() if s.status == SaleStatus.PENDING and not s.payment_error]
        sales.sort(key=lambda s: s.created_at)
        return sales[:limit]

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        with self._lock:
            return self._sales.get(sale_id)

    def list_sales(self, department_id: str, status: Optional[SaleStatus] = None, limit: int = 50) -> List[Sale]:
        with self._lock:
            sales = [
                s for s in self._sales.values()
                if s.department_id == department_id and (status is None or s.status == SaleStatus(status))
            ]
        sales.sort(key=lambda s: s.created_at, reverse=True)
        return sales[:limit]

    def transition(self, sale_id: str, from_statuses: Iterable[SaleStatus], fields: Dict[str, Any]) -> Optional[Sale]:
        allowed = {SaleStatus(s) for s in from_statuses}
        with self._lock:
            sale = self._sales.get(sale_id)
            if sale is None or sale.status not in allowed:
                return None
            updated = Sale.model_validate({**sale.model_dump(), **fields})
            self._sales[sale_id] = updated
            return updated
