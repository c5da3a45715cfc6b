"""
Repositories Supabase: mapping des lignes et gestion des erreurs, avec un client simulé.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

import caisse.ventes.repository as repo
from caisse.cart.models import PaymentMethod
from caisse.catalogue.models import ItemKind, TrackingMode
from caisse.catalogue.repository import (
    SupabaseCatalogue,
    data_package_from_row,
    product_from_row,
    service_from_row,
    variant_from_row,
)
from caisse.errors import CommitConflictError, PersistenceError
from caisse.ventes.models import Sale, SaleLine, SaleStatus


# --- catalogue ---

def test_product_row_mapping_for_volume_product_with_variants():
    item = product_from_row({
        "id": "p-oud",
        "name": "Oud",
        "department_id": "dept-1",
        "price": 1000,
        "selling_price": 1200,
        "tracking_type": "ml",
        "total_ml": 800,
        "retail_price_per_ml": 300,
        "wholesale_price_per_ml": 250,
        "product_variants": [{"id": "v-1"}],
    })
    assert item.kind == ItemKind.PRODUCT
    assert item.base_price == 1200
    assert item.tracking == TrackingMode.VOLUME
    assert item.stock == 800
    assert item.retail_price_per_unit == 300
    assert item.has_variants is True


def test_service_and_data_package_rows():
    svc = service_from_row({"id": "s-1", "name": "Réparation", "price": 500, "is_negotiable": True})
    assert svc.kind == ItemKind.SERVICE and svc.allow_custom_price is True and not svc.stock_tracked
    data = data_package_from_row({"id": "d-1", "name": "1GB", "price": 2000})
    assert data.kind == ItemKind.DATA_PACKAGE and data.base_price == 2000


def test_variant_price_column_is_an_adjustment():
    assert variant_from_row({"id": "v-1", "product_id": "p-1", "variant_name": "XL", "price": 2000, "stock": 4}).price_adjustment == 2000
    assert variant_from_row({"id": "v-1", "product_id": "p-1", "name": "S", "price_adjustment": 0, "price": 999}).price_adjustment == 0


def test_catalogue_get_item_reads_the_kind_table():
    client = MagicMock()
    chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    chain.execute.return_value = MagicMock(data=[{"id": "s-1", "name": "Réparation", "price": 500}])
    item = SupabaseCatalogue(lambda: client).get_item(ItemKind.SERVICE, "s-1")
    client.table.assert_called_with("services")
    assert item.name == "Réparation"


def test_catalogue_errors_become_persistence_errors():
    client = MagicMock()
    client.table.side_effect = RuntimeError("network")
    with pytest.raises(PersistenceError):
        SupabaseCatalogue(lambda: client).get_variant("v-1")


# --- ventes ---

def _sale(**kw) -> Sale:
    data = dict(
        id="sale-1",
        department_id="dept-1",
        receipt_number="RCP-000001",
        payment_method=PaymentMethod.CASH,
        subtotal=2500,
        total=2500,
        amount_paid=3000,
        change_amount=500,
        status=SaleStatus.COMPLETED,
        created_at=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        lines=[
            SaleLine(item_id="p-soap", item_kind=ItemKind.PRODUCT, name="Savon", quantity=2, unit_price=1000, subtotal=2000),
            SaleLine(item_id="s-repair", item_kind=ItemKind.SERVICE, name="Réparation", quantity=1, unit_price=500, subtotal=500),
        ],
    )
    data.update(kw)
    return Sale(**data)


def test_receipt_number_formats():
    assert repo.format_receipt_number(42) == "RCP-000042"
    assert repo.fallback_receipt_number().startswith("RCP")


def test_line_rows_use_the_kind_specific_id_column():
    rows = [repo.line_to_row("sale-1", l) for l in _sale().lines]
    assert rows[0]["product_id"] == "p-soap"
    assert rows[1]["service_id"] == "s-repair"
    # colonnes de sale_items: name obligatoire, total = montant de la ligne
    for row in rows:
        assert set(row) <= repo.SALE_ITEM_COLUMNS
    assert (rows[0]["name"], rows[0]["total"]) == ("Savon", 2000)
    assert "subtotal" not in rows[0]
    assert repo.sale_to_row(_sale())["payment_method"] == "cash"


def test_sale_row_round_trip_keeps_lines():
    sale = _sale()
    row = {**repo.sale_to_row(sale), "sale_items": [repo.line_to_row(sale.id, l) for l in sale.lines]}
    loaded = repo.sale_from_row(row)
    assert loaded.total == 2500
    assert [l.item_id for l in loaded.lines] == ["p-soap", "s-repair"]
    assert loaded.lines[1].item_kind == ItemKind.SERVICE


def test_next_receipt_number_uses_rpc_then_fallback():
    client = MagicMock()
    client.rpc.return_value.execute.return_value = MagicMock(data="RCP-000007")
    assert repo.SupabaseSaleRepository(lambda: client).next_receipt_number("dept-1") == "RCP-000007"
    client.rpc.assert_called_with("generate_receipt_number", {"p_department_id": "dept-1"})

    client.rpc.return_value.execute.side_effect = RuntimeError("rpc down")
    assert repo.SupabaseSaleRepository(lambda: client).next_receipt_number("dept-1").startswith("RCP")


def test_insert_sale_duplicate_receipt_returns_none():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {"message": "duplicate key", "code": "23505", "details": None, "hint": None}
    )
    assert repo.SupabaseSaleRepository(lambda: client).insert_sale(_sale()) is None


def test_insert_sale_items_failure_deletes_sale_row():
    client = MagicMock()
    sales_table, items_table = MagicMock(), MagicMock()
    client.table.side_effect = lambda name: {"sales": sales_table, "sale_items": items_table}[name]
    items_table.insert.return_value.execute.side_effect = RuntimeError("boom")

    with pytest.raises(PersistenceError):
        repo.SupabaseSaleRepository(lambda: client).insert_sale(_sale())
    sales_table.delete.return_value.eq.assert_called_with("id", "sale-1")


def test_transition_is_conditional_on_current_status():
    client = MagicMock()
    update_chain = client.table.return_value.update.return_value.eq.return_value.in_.return_value
    update_chain.execute.return_value = MagicMock(data=[])
    result = repo.SupabaseSaleRepository(lambda: client).transition("sale-1", [SaleStatus.PENDING], {"status": SaleStatus.COMPLETED})
    assert result is None
    client.table.return_value.update.assert_called_with({"status": "completed"})
    client.table.return_value.update.return_value.eq.return_value.in_.assert_called_with("status", ["pending"])


def test_sale_row_carries_customer_and_cart_token():
    row = repo.sale_to_row(_sale(customer_id="cust-9", cart_token="tok-1"))
    assert row["customer_id"] == "cust-9"
    assert row["cart_token"] == "tok-1"
    assert repo.sale_to_row(_sale(payment_method=PaymentMethod.BANK_TRANSFER))["payment_method"] == "bank_transfer"


def test_insert_sale_duplicate_cart_token_is_a_conflict():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {"message": 'duplicate key value violates unique constraint "sales_cart_token_key"', "code": "23505", "details": None, "hint": None}
    )
    with pytest.raises(CommitConflictError) as exc:
        repo.SupabaseSaleRepository(lambda: client).insert_sale(_sale(cart_token="tok-1"))
    assert exc.value.code == "cart_already_sold"


def test_memory_repository_refuses_a_second_sale_for_the_same_cart():
    sales = repo.MemorySaleRepository()
    sales.insert_sale(_sale(cart_token="tok-1"))
    with pytest.raises(CommitConflictError):
        sales.insert_sale(_sale(id="sale-2", receipt_number="RCP-000002", cart_token="tok-1"))
    assert sales.find_by_cart_token("tok-1").id == "sale-1"


def test_list_awaiting_payment_skips_failed_payments():
    client = MagicMock()
    chain = client.table.return_value.select.return_value.eq.return_value.is_.return_value.order.return_value.limit.return_value
    chain.execute.return_value = MagicMock(data=[repo.sale_to_row(_sale(status=SaleStatus.PENDING))])
    pending = repo.SupabaseSaleRepository(lambda: client).list_awaiting_payment()
    client.table.return_value.select.return_value.eq.assert_called_with("status", "pending")
    client.table.return_value.select.return_value.eq.return_value.is_.assert_called_with("payment_error", "null")
    assert [s.status for s in pending] == [SaleStatus.PENDING]
