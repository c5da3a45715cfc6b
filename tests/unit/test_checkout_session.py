import pytest

import caisse.cart.service as cart_service
import caisse.ventes.service as ventes
from caisse.cart.models import PaymentMethod
from caisse.catalogue.models import ItemKind
from caisse.errors import CommitConflictError, NotFoundError, PersistenceError

CASHIER = {"id": "cashier-1"}


def _stock(services):
    return services.catalogue._stored_item("p-soap").stock


def _save_soap_cart(services, qty=2):
    session = services.sessions.load("dept-1", "cashier-1")
    cart_service.add_item(session.active, services.catalogue.get_item(ItemKind.PRODUCT, "p-soap"), services.ledger, quantity=qty)
    cart_service.set_checkout_details(session.active, payment_method=PaymentMethod.CASH)
    services.sessions.save(session)


# --- encaissement unique par panier ---

def test_two_copies_of_the_same_session_sell_once(services):
    _save_soap_cart(services)
    first = services.sessions.load("dept-1", "cashier-1")
    second = services.sessions.load("dept-1", "cashier-1")

    a = ventes.complete_sale(services, first, "dept-1", CASHIER)
    b = ventes.complete_sale(services, second, "dept-1", CASHIER)

    assert a.sale.id == b.sale.id
    assert len(services.sales.list_sales("dept-1")) == 1
    assert _stock(services) == 8


def test_checkout_session_resets_the_saved_tab(services):
    _save_soap_cart(services)
    result = ventes.checkout_session(services, "dept-1", CASHIER)
    assert result.sale.total == 2000
    assert services.sessions.load("dept-1", "cashier-1").active.is_empty


def test_concurrent_checkout_of_a_session_is_refused(services):
    _save_soap_cart(services)
    with services.sessions.checkout_lock("dept-1", "cashier-1"):
        with pytest.raises(CommitConflictError) as exc:
            ventes.checkout_session(services, "dept-1", CASHIER)
    assert exc.value.code == "checkout_in_progress"
    assert _stock(services) == 10
    # verrou relâché: l'encaissement passe ensuite
    assert ventes.checkout_session(services, "dept-1", CASHIER).sale.total == 2000


def test_session_save_failure_after_sale_does_not_sell_again(services, monkeypatch):
    _save_soap_cart(services)
    save = services.sessions.save

    def down(session):
        raise PersistenceError("Session de caisse indisponible", code="session_unavailable")

    monkeypatch.setattr(services.sessions, "save", down)
    with pytest.raises(PersistenceError):
        ventes.checkout_session(services, "dept-1", CASHIER)
    assert _stock(services) == 8

    monkeypatch.setattr(services.sessions, "save", save)
    replay = ventes.checkout_session(services, "dept-1", CASHIER)
    assert len(services.sales.list_sales("dept-1")) == 1
    assert replay.sale.total == 2000
    assert _stock(services) == 8
    assert services.sessions.load("dept-1", "cashier-1").active.is_empty


# --- périmètre du département ---

def test_sales_of_another_department_are_not_found(services):
    _save_soap_cart(services)
    sale = ventes.checkout_session(services, "dept-1", CASHIER).sale

    assert ventes.get_sale(services, sale.id, "dept-1").id == sale.id
    with pytest.raises(NotFoundError):
        ventes.get_sale(services, sale.id, "dept-2")
    with pytest.raises(NotFoundError):
        ventes.get_receipt(services, sale.id, "dept-2")
    with pytest.raises(NotFoundError):
        ventes.void_sale(services, sale.id, "erreur", restock=True, department_id="dept-2")
    assert _stock(services) == 8
