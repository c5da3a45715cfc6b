"""
Assemblage des composants de la caisse selon le stockage configuré.
- 'supabase': catalogue, stock et ventes en base; sessions dans Redis
- 'memory': mode démo, tout en mémoire (fakeredis pour les sessions)
"""
import logging
from typing import Any, Callable, Dict, Optional

from caisse import config, events
from caisse.cart.repository import SessionStore
from caisse.catalogue.repository import MemoryCatalogue, SupabaseCatalogue
from caisse.departements.service import config_business_info, get_business_info
from caisse.infra.redis_client import get_redis, make_redis
from caisse.payments.gate import PaymentConfirmationGate
from caisse.payments.gateway import NullGateway, build_gateway
from caisse.stock.ledger import StockLedger
from caisse.stock.store import MemoryStockStore, SupabaseStockStore
from caisse.ventes.finalizer import SaleFinalizer
from caisse.ventes.repository import MemorySaleRepository, SupabaseSaleRepository

logger = logging.getLogger(__name__)


class Services:
    def __init__(self, *, backend, catalogue, ledger, sales, gate, gateway, sessions, bus, finalizer, business_info):
        self.backend = backend
        self.catalogue = catalogue
        self.ledger = ledger
        self.sales = sales
        self.gate = gate
        self.gateway = gateway
        self.sessions = sessions
        self.bus = bus
        self.finalizer = finalizer
        self.business_info = business_info


def build_services(
    backend: Optional[str] = None,
    redis_factory: Optional[Callable[[], Any]] = None,
    gateway=None,
    timeout_seconds: Optional[int] = None,
) -> Services:
    backend = (backend or config.STORAGE_BACKEND).lower()
    bus = events.InvalidationBus()
    timeout_seconds = timeout_seconds if timeout_seconds is not None else config.PAYMENT_CONFIRMATION_TIMEOUT_SECONDS

    if backend == "memory":
        catalogue = MemoryCatalogue()
        store = MemoryStockStore(catalogue)
        sales = MemorySaleRepository()
        gateway = gateway or NullGateway()
        if redis_factory is None:
            fake = make_redis(fake=True)
            redis_factory = lambda: fake
        business_info: Callable[[str], Dict[str, Any]] = lambda department_id: config_business_info()
    elif backend == "supabase":
        catalogue = SupabaseCatalogue()
        store = SupabaseStockStore()
        sales = SupabaseSaleRepository()
        gateway = gateway or build_gateway()
        redis_factory = redis_factory or get_redis
        business_info = get_business_info
    else:
        raise RuntimeError(f"STORAGE_BACKEND inconnu: {backend}")

    ledger = StockLedger(store)
    gate = PaymentConfirmationGate(sales, bus=bus, business_info=business_info, timeout_seconds=timeout_seconds)
    finalizer = SaleFinalizer(ledger, sales, gate, gateway, bus=bus, business_info=business_info)
    logger.info("app_setup.build_services backend=%s gateway=%s", backend, getattr(gateway, "name", type(gateway).__name__))
    return Services(
        backend=backend,
        catalogue=catalogue,
        ledger=ledger,
        sales=sales,
        gate=gate,
        gateway=gateway,
        sessions=SessionStore(redis_factory),
        bus=bus,
        finalizer=finalizer,
        business_info=business_info,
    )
