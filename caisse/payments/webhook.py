"""
Webhook de la passerelle mobile money: vérification de signature et extraction du résultat.
Événements reconnus: 'payment.succeeded', 'payment.failed'.
"""
import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, Request

from caisse.config import MOBILE_MONEY_WEBHOOK_SECRET
from .gate import PaymentResult

SIGNATURE_HEADER = "X-Signature"

EVENT_TYPES = {
    "payment.succeeded": "success",
    "payment.failed": "failed",
}


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


# module caisse.payments.webhook
async def parse_event(request: Request, secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Lit le body brut et valide la signature HMAC-SHA256 (en-tête X-Signature).
    - sans secret configuré: JSON accepté tel quel (développement)
    Retour: l'événement décodé.
    """
    secret = MOBILE_MONEY_WEBHOOK_SECRET if secret is None else secret
    payload = await request.body()
    if secret:
        provided = request.headers.get(SIGNATURE_HEADER) or ""
        if not hmac.compare_digest(provided, sign_payload(payload, secret)):
            raise HTTPException(status_code=400, detail="Signature webhook invalide")
    try:
        event = json.loads(payload or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Payload webhook invalide")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Payload webhook invalide")
    return event


def extract_result(event: Dict[str, Any]) -> Optional[Tuple[str, PaymentResult]]:
    """
    (sale_id, PaymentResult) pour un événement reconnu, None sinon (événement ignoré).
    """
    status = EVENT_TYPES.get(str(event.get("type") or ""))
    if status is None:
        return None
    data = event.get("data") or {}
    sale_id = str(data.get("sale_id") or data.get("external_id") or "")
    if not sale_id:
        raise HTTPException(status_code=400, detail="sale_id manquant dans l'événement")
    amount = data.get("amount")
    return sale_id, PaymentResult(
        status=status,
        amount=float(amount) if amount is not None else None,
        reference=data.get("reference"),
        reason=data.get("reason"),
    )
