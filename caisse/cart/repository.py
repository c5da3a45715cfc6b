"""
Persistance des sessions de caisse dans Redis.
- clé: caisse:session:<department_id>:<cashier_id>
- valeur: CartSession sérialisée en JSON, TTL SESSION_TTL_SECONDS
- verrou d'encaissement: <clé>:checkout
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4

import pydantic
import redis

from caisse.config import SESSION_TTL_SECONDS
from caisse.errors import CommitConflictError, PersistenceError
from caisse.infra.redis_client import get_redis
from .sessions import CartSession

logger = logging.getLogger(__name__)

SESSION_KEY = "caisse:session:{department_id}:{cashier_id}"
CHECKOUT_LOCK_SECONDS = 60


def session_key(department_id: str, cashier_id: str) -> str:
    return SESSION_KEY.format(department_id=department_id, cashier_id=cashier_id)


def lock_key(department_id: str, cashier_id: str) -> str:
    return session_key(department_id, cashier_id) + ":checkout"


class SessionStore:
    def __init__(self, redis_factory: Optional[Callable[[], Any]] = None, ttl: int = SESSION_TTL_SECONDS):
        self._redis_factory = redis_factory or get_redis
        self.ttl = ttl

    def load(self, department_id: str, cashier_id: str) -> CartSession:
        """
        Charge la session du caissier, ou en démarre une neuve (un onglet vide).
        """
        key = session_key(department_id, cashier_id)
        try:
            raw = self._redis_factory().get(key)
        except redis.RedisError:
            logger.exception("cart.repository.load failed key=%s", key)
            raise PersistenceError("Session de caisse indisponible", code="session_unavailable")
        if not raw:
            return CartSession.start(department_id, cashier_id)
        try:
            return CartSession.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.exception("cart.repository.load corrupted key=%s", key)
            raise PersistenceError("Session de caisse illisible", code="session_corrupted")

    def save(self, session: CartSession) -> None:
        key = session_key(session.department_id, session.cashier_id)
        try:
            self._redis_factory().set(key, session.model_dump_json(), ex=self.ttl)
        except redis.RedisError:
            logger.exception("cart.repository.save failed key=%s", key)
            raise PersistenceError("Session de caisse indisponible", code="session_unavailable")

    def delete(self, department_id: str, cashier_id: str) -> None:
        try:
            self._redis_factory().delete(session_key(department_id, cashier_id))
        except redis.RedisError:
            logger.exception("cart.repository.delete failed department_id=%s cashier_id=%s", department_id, cashier_id)
            raise PersistenceError("Session de caisse indisponible", code="session_unavailable")

    @contextmanager
    def checkout_lock(self, department_id: str, cashier_id: str, ttl: int = CHECKOUT_LOCK_SECONDS) -> Iterator[None]:
        """
        Verrou d'encaissement de la session (SET NX + expiration).
        Un second encaissement concurrent de la même session est refusé (409).
        """
        key = lock_key(department_id, cashier_id)
        token = uuid4().hex
        try:
            client = self._redis_factory()
            acquired = client.set(key, token, nx=True, ex=ttl)
        except redis.RedisError:
            logger.exception("cart.repository.checkout_lock failed key=%s", key)
            raise PersistenceError("Session de caisse indisponible", code="session_unavailable")
        if not acquired:
            logger.warning("cart.repository.checkout_lock busy key=%s", key)
            raise CommitConflictError("Encaissement déjà en cours pour cette session", code="checkout_in_progress")
        try:
            yield
        finally:
            try:
                if client.get(key) == token:
                    client.delete(key)
            except redis.RedisError:
                logger.exception("cart.repository.checkout_lock release failed key=%s", key)
