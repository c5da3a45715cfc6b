from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

import caisse.cart.service as cart_service
from caisse import events
from caisse.cart.models import Cart, PaymentMethod
from caisse.catalogue.models import ItemKind, StockLevel
from caisse.errors import CommitConflictError, InsufficientStockError, PaymentGatewayError, PersistenceError, ValidationError
from caisse.payments.gate import ConfirmationStatus, PaymentResult
from caisse.payments.gateway import NullGateway
from caisse.ventes.finalizer import SaleFinalizer, sale_timestamp
from caisse.ventes.models import SaleState, SaleStatus
from caisse.ventes.repository import MemorySaleRepository

CASHIER = {"id": "cashier-1", "name": "Aisha"}


def _cart(services, method=PaymentMethod.CASH, **details) -> Cart:
    """Panier type: 2 savons (1 000) + 1 réparation (500) = 2 500."""
    cart = Cart()
    cart_service.add_item(cart, services.catalogue.get_item(ItemKind.PRODUCT, "p-soap"), services.ledger, quantity=2)
    cart_service.add_item(cart, services.catalogue.get_item(ItemKind.SERVICE, "s-repair"), services.ledger)
    cart_service.set_checkout_details(cart, payment_method=method, **details)
    return cart


def _soap_stock(services):
    return services.catalogue._stored_item("p-soap").stock


class _FailingSales(MemorySaleRepository):
    def insert_sale(self, sale):
        raise PersistenceError("Enregistrement de la vente impossible", code="sale_write_failed")


class _TakenNumbers(MemorySaleRepository):
    """Les `taken` premiers numéros sont déjà pris (contrainte unique)."""

    def __init__(self, taken):
        super().__init__()
        self.taken = taken

    def insert_sale(self, sale):
        if self.taken > 0:
            self.taken -= 1
            return None
        return super().insert_sale(sale)


def _finalizer(services, sales=None, gateway=None, clock=None):
    return SaleFinalizer(services.ledger, sales or services.sales, services.gate, gateway or NullGateway(), bus=services.bus, clock=clock)


def test_cash_sale_end_to_end(services):
    seen = []
    services.bus.subscribe(events.STOCK, lambda topic, dept, payload: seen.append((topic, dept, payload["sale_id"])))

    cart = _cart(services, amount_tendered=3000, customer_label="Mme Diallo")
    result = services.finalizer.finalize(cart, "dept-1", CASHIER)

    assert result.state == SaleState.FINALIZED
    sale = result.sale
    assert sale.status == SaleStatus.COMPLETED
    assert sale.subtotal == 2500 and sale.total == 2500
    assert sale.amount_paid == 3000 and sale.change_amount == 500
    assert sale.receipt_number == "RCP-000001"
    assert sale.cashier_name == "Aisha"
    assert [(l.name, l.quantity, l.subtotal) for l in sale.lines] == [("Savon", 2, 2000), ("Réparation", 1, 500)]
    assert _soap_stock(services) == 8

    assert result.receipt.receipt_number == "RCP-000001"
    assert result.receipt.total == 2500
    assert seen == [(events.STOCK, "dept-1", sale.id)]


def test_card_sale_is_paid_in_full(services):
    result = services.finalizer.finalize(_cart(services, PaymentMethod.CARD), "dept-1", CASHIER)
    assert result.sale.amount_paid == 2500
    assert result.sale.change_amount == 0


def test_receipt_numbers_increase_per_department(services):
    first = services.finalizer.finalize(_cart(services), "dept-1", CASHIER).sale
    second = services.finalizer.finalize(_cart(services), "dept-1", CASHIER).sale
    other = services.finalizer.finalize(_cart(services), "dept-2", CASHIER).sale
    assert (first.receipt_number, second.receipt_number, other.receipt_number) == ("RCP-000001", "RCP-000002", "RCP-000001")
    assert first.id != second.id


def test_sale_is_decoupled_from_cart_and_catalogue(services):
    cart = _cart(services)
    sale = services.finalizer.finalize(cart, "dept-1", CASHIER).sale
    cart.lines[0].quantity = 99
    cart.lines[0].unit_price = 1
    services.catalogue._stored_item("p-soap").base_price = 9999
    stored = services.sales.get_sale(sale.id)
    assert stored.lines[0].quantity == 2
    assert stored.lines[0].unit_price == 1000


@pytest.mark.parametrize(
    "cart_factory, code",
    [
        (lambda s: Cart(payment_method=PaymentMethod.CASH), "empty_cart"),
        (lambda s: _cart(s, None), "payment_method_required"),
        (lambda s: _cart(s, amount_tendered=2000), "insufficient_tender"),
    ],
)
def test_validation_failures_write_nothing(services, cart_factory, code):
    with pytest.raises(ValidationError) as exc:
        services.finalizer.finalize(cart_factory(services), "dept-1", CASHIER)
    assert exc.value.code == code
    assert services.sales.list_sales("dept-1") == []
    assert _soap_stock(services) == 10


def test_stock_sold_elsewhere_fails_validation(services):
    cart = _cart(services)
    services.catalogue._stored_item("p-soap").stock = 1
    with pytest.raises(InsufficientStockError) as exc:
        services.finalizer.finalize(cart, "dept-1", CASHIER)
    assert exc.value.context["available"] == 1
    assert services.sales.list_sales("dept-1") == []


def test_commit_conflict_writes_nothing(services, monkeypatch):
    cart = _cart(services)
    # le store refuse le lot malgré un contrôle préalable favorable
    monkeypatch.setattr(services.ledger.store, "apply_batch", lambda demand: StockLevel(target=demand[0][0], quantity=0))
    with pytest.raises(CommitConflictError) as exc:
        services.finalizer.finalize(cart, "dept-1", CASHIER)
    assert exc.value.status_code == 409
    assert exc.value.context["item_id"] == "p-soap"
    assert services.sales.list_sales("dept-1") == []


def test_failed_sale_write_releases_committed_stock(services):
    finalizer = _finalizer(services, sales=_FailingSales())
    with pytest.raises(PersistenceError):
        finalizer.finalize(_cart(services), "dept-1", CASHIER)
    assert _soap_stock(services) == 10


def test_taken_receipt_number_is_retried(services):
    sales = _TakenNumbers(taken=2)
    sale = _finalizer(services, sales=sales).finalize(_cart(services), "dept-1", CASHIER).sale
    assert sale.receipt_number == "RCP-000003"
    assert _soap_stock(services) == 8


def test_receipt_number_exhaustion_releases_stock(services):
    finalizer = _finalizer(services, sales=_TakenNumbers(taken=10))
    with pytest.raises(PersistenceError) as exc:
        finalizer.finalize(_cart(services), "dept-1", CASHIER)
    assert exc.value.code == "receipt_number_conflict"
    assert _soap_stock(services) == 10


def test_backdated_sale_keeps_current_time_of_day(services):
    now = datetime(2025, 3, 1, 14, 30, tzinfo=timezone.utc)
    finalizer = _finalizer(services, clock=lambda: now)
    sale = finalizer.finalize(_cart(services), "dept-1", CASHIER, sale_date=date(2025, 2, 27)).sale
    assert sale.created_at == datetime(2025, 2, 27, 14, 30, tzinfo=timezone.utc)
    assert sale_timestamp(None, now) == now


def test_mobile_money_sale_waits_for_confirmation(services):
    cart = _cart(services, PaymentMethod.MOBILE_MONEY, customer_phone="+221770000000")
    result = services.finalizer.finalize(cart, "dept-1", CASHIER)

    assert result.state == SaleState.AWAITING_PAYMENT_CONFIRMATION
    assert result.receipt is None
    assert result.sale.status == SaleStatus.PENDING
    assert result.sale.amount_paid == 0
    assert result.sale.payment_reference == f"demo-{result.sale.id}"
    # stock déjà validé, pas de double décrément à la confirmation
    assert _soap_stock(services) == 8
    assert services.gate.status(result.sale.id).status == ConfirmationStatus.AWAITING


def test_gateway_refusal_is_recorded_then_retried(services):
    gateway = MagicMock()
    gateway.request_payment.side_effect = PaymentGatewayError("Passerelle mobile money injoignable")
    finalizer = _finalizer(services, gateway=gateway)

    result = finalizer.finalize(_cart(services, PaymentMethod.MOBILE_MONEY), "dept-1", CASHIER)
    assert result.payment_error == "Passerelle mobile money injoignable"
    assert result.sale.status == SaleStatus.PENDING
    assert result.sale.payment_error == "Passerelle mobile money injoignable"
    assert services.gate.status(result.sale.id).status == ConfirmationStatus.FAILED

    gateway.request_payment.side_effect = None
    gateway.request_payment.return_value = "ref-42"
    retried = finalizer.retry_payment(result.sale.id)
    assert retried.payment_error is None
    assert retried.sale.payment_reference == "ref-42"
    assert retried.sale.payment_error is None
    assert services.gate.status(result.sale.id).status == ConfirmationStatus.AWAITING


def test_retry_while_awaiting_is_refused(services):
    sale = services.finalizer.finalize(_cart(services, PaymentMethod.MOBILE_MONEY), "dept-1", CASHIER).sale
    with pytest.raises(ValidationError) as exc:
        services.finalizer.retry_payment(sale.id)
    assert exc.value.code == "payment_in_progress"


def test_same_cart_finalized_twice_gives_one_sale(services):
    cart = _cart(services)
    first = services.finalizer.finalize(cart, "dept-1", CASHIER)
    again = services.finalizer.finalize(cart.model_copy(deep=True), "dept-1", CASHIER)

    assert again.sale.id == first.sale.id
    assert again.state == SaleState.FINALIZED
    assert again.receipt.receipt_number == first.receipt.receipt_number
    assert len(services.sales.list_sales("dept-1")) == 1
    assert _soap_stock(services) == 8


def test_release_failure_keeps_the_write_error(services, monkeypatch, caplog):
    def broken_release(lines):
        raise RuntimeError("rpc down")

    monkeypatch.setattr(services.ledger, "release", broken_release)
    finalizer = _finalizer(services, sales=_FailingSales())
    with pytest.raises(PersistenceError) as exc:
        finalizer.finalize(_cart(services), "dept-1", CASHIER)
    assert exc.value.code == "sale_write_failed"
    assert "stock release failed" in caplog.text


def test_confirmation_before_reference_write_reports_the_completed_sale(services):
    class _ConfirmingGateway:
        """La passerelle confirme (webhook) avant de rendre la main."""
        def request_payment(self, sale_id, amount, phone):
            services.gate.on_payment_result(sale_id, PaymentResult(status="success", amount=amount, reference="mm-fast"))
            return "mm-fast"

    result = _finalizer(services, gateway=_ConfirmingGateway()).finalize(_cart(services, PaymentMethod.MOBILE_MONEY), "dept-1", CASHIER)
    assert result.state == SaleState.FINALIZED
    assert result.sale.status == SaleStatus.COMPLETED
    assert result.receipt is not None


def test_registered_customer_is_kept_on_the_sale(services):
    sale = services.finalizer.finalize(_cart(services, customer_id="cust-9"), "dept-1", CASHIER).sale
    assert sale.customer_id == "cust-9"
