"""
Adaptateur passerelle mobile money.
- MobileMoneyGateway: demande de paiement (push sur le téléphone du client) via l'API HTTP du prestataire
- NullGateway: mode démo, aucune requête sortante; la confirmation arrive par le webhook
Le protocole du réseau mobile money reste du ressort du prestataire: la caisse ne fait
qu'émettre la demande puis attendre le webhook.
"""
import logging
from typing import Optional

import requests

from caisse.config import MOBILE_MONEY_API_KEY, MOBILE_MONEY_API_URL
from caisse.errors import PaymentGatewayError

logger = logging.getLogger(__name__)


class NullGateway:
    name = "null"

    def request_payment(self, sale_id: str, amount: float, phone: Optional[str]) -> str:
        logger.info("payments.gateway.null request sale_id=%s amount=%s", sale_id, amount)
        return f"demo-{sale_id}"


class MobileMoneyGateway:
    name = "mobile_money"

    def __init__(self, base_url: str, api_key: str, callback_url: Optional[str] = None, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.callback_url = callback_url
        self.timeout = timeout

    def request_payment(self, sale_id: str, amount: float, phone: Optional[str]) -> str:
        """
        Émet la demande de paiement et retourne la référence du prestataire.
        Lève PaymentGatewayError si le numéro manque, si la passerelle est injoignable ou refuse.
        """
        if not phone:
            raise PaymentGatewayError("Numéro de téléphone du client requis pour le mobile money", code="phone_required", sale_id=sale_id)
        payload = {"external_id": sale_id, "amount": amount, "phone": phone}
        if self.callback_url:
            payload["callback_url"] = self.callback_url
        try:
            r = requests.post(
                f"{self.base_url}/collections",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException:
            logger.exception("payments.gateway.request_payment unreachable sale_id=%s", sale_id)
            raise PaymentGatewayError("Passerelle mobile money injoignable", sale_id=sale_id)
        if r.status_code >= 400:
            logger.warning("payments.gateway.request_payment refused sale_id=%s status=%s body=%s", sale_id, r.status_code, r.text[:200])
            raise PaymentGatewayError(f"Passerelle mobile money: refus (HTTP {r.status_code})", sale_id=sale_id, gateway_status=r.status_code)
        try:
            data = r.json() or {}
        except ValueError:
            data = {}
        reference = str(data.get("reference") or data.get("id") or "")
        logger.info("payments.gateway.request_payment ok sale_id=%s reference=%s", sale_id, reference)
        return reference


def build_gateway(callback_url: Optional[str] = None):
    if MOBILE_MONEY_API_URL and MOBILE_MONEY_API_KEY:
        return MobileMoneyGateway(MOBILE_MONEY_API_URL, MOBILE_MONEY_API_KEY, callback_url=callback_url)
    return NullGateway()
