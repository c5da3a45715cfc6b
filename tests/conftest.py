import pytest
from typing import Any, Dict, Generator
from fastapi.testclient import TestClient

from caisse.app_setup.factory import create_app
from caisse.app_setup.services import build_services
from caisse.catalogue.models import CatalogItem, ItemKind, PricingTiers, TrackingMode, Variant
from caisse.payments.gateway import NullGateway
from caisse.utils.security import require_user

DEPARTMENT_ID = "dept-1"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


def make_product(item_id: str, price: float = 1000, stock: int = 10, **kw) -> CatalogItem:
    return CatalogItem(id=item_id, kind=ItemKind.PRODUCT, name=kw.pop("name", item_id), department_id=DEPARTMENT_ID, base_price=price, stock=stock, **kw)


def seed_catalogue(catalogue) -> None:
    """
    Catalogue de démonstration partagé par les tests:
    - savon: 1 000, stock 10
    - riz: prix de base 5 000, seul le niveau gros (4 500) est renseigné
    - oud: suivi au ml, 300/ml détail, 250/ml gros, 1 000 ml en stock
    - t-shirt: variantes S (stock 3) et XL (+2 000, stock 1)
    - téléphone: prix libre entre 4 000 et 6 000
    - réparation (service, 500) et forfait 1GB (2 000)
    """
    catalogue.seed(
        [
            make_product("p-soap", 1000, 10, name="Savon"),
            make_product("p-rice", 5000, 100, name="Riz", tiers=PricingTiers(wholesale=4500)),
            make_product(
                "p-oud", 0, 1000, name="Oud",
                tracking=TrackingMode.VOLUME, retail_price_per_unit=300, wholesale_price_per_unit=250,
            ),
            make_product("p-shirt", 20000, 0, name="T-shirt"),
            make_product("p-phone", 5000, 5, name="Téléphone", allow_custom_price=True, min_price=4000, max_price=6000),
            CatalogItem(id="s-repair", kind=ItemKind.SERVICE, name="Réparation", department_id=DEPARTMENT_ID, base_price=500),
            CatalogItem(id="d-1gb", kind=ItemKind.DATA_PACKAGE, name="Forfait 1GB", department_id=DEPARTMENT_ID, base_price=2000),
        ],
        [
            Variant(id="v-s", item_id="p-shirt", name="S", price_adjustment=0, stock=3),
            Variant(id="v-xl", item_id="p-shirt", name="XL", price_adjustment=2000, stock=1),
        ],
    )


@pytest.fixture
def services():
    services = build_services(backend="memory", gateway=NullGateway(), timeout_seconds=900)
    seed_catalogue(services.catalogue)
    return services


@pytest.fixture
def catalogue(services):
    return services.catalogue


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def cashier() -> Dict[str, Any]:
    return {
        "id": "cashier-1",
        "email": "caisse@example.com",
        "name": "Aisha",
        "role": "cashier",
        "metadata": {"department_id": DEPARTMENT_ID},
        "token": "fake-token",
    }


@pytest.fixture
def app(services, cashier):
    app = create_app(services=services)
    # Simuler un caissier authentifié pour les endpoints protégés
    app.dependency_overrides[require_user] = lambda: cashier
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app, headers={"X-Department-Id": DEPARTMENT_ID}) as c:
        yield c


@pytest.fixture
def admin_client(app, client, cashier):
    admin = {**cashier, "id": "admin-1", "role": "admin"}
    app.dependency_overrides[require_user] = lambda: admin
    yield client
