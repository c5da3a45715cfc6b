"""
Signaux d'invalidation côté lecture.
Après une vente, une confirmation de paiement ou une annulation, les vues dépendantes
(catalogue/stock, historique des ventes, tableau de bord) sont prévenues pour se rafraîchir.
"""
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List

logger = logging.getLogger(__name__)

CATALOGUE = "catalogue"
STOCK = "stock"
SALES = "sales"
DASHBOARD = "dashboard"

AFTER_SALE = (CATALOGUE, STOCK, SALES, DASHBOARD)

Listener = Callable[[str, str, Dict[str, Any]], None]


class InvalidationBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Listener) -> Callable[[], None]:
        """Abonne callback(topic, department_id, payload); retourne la fonction de désabonnement."""
        with self._lock:
            self._listeners[topic].append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._listeners[topic]:
                    self._listeners[topic].remove(callback)
        return _unsubscribe

    def emit(self, topics: Iterable[str], department_id: str, **payload: Any) -> int:
        topics = list(topics)
        delivered = 0
        for topic in topics:
            with self._lock:
                listeners = list(self._listeners.get(topic, ()))
            for callback in listeners:
                try:
                    callback(topic, department_id, payload)
                    delivered += 1
                except Exception:
                    logger.exception("events.emit listener failed topic=%s department_id=%s", topic, department_id)
        logger.debug("events.emit topics=%s department_id=%s delivered=%s", topics, department_id, delivered)
        return delivered
