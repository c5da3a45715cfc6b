"""
Module 'payments' (feature-first): confirmation des paiements asynchrones (mobile money).
Réunit la porte de confirmation, l'adaptateur passerelle et le webhook.
"""
from .gate import PaymentConfirmationGate, PaymentResult, ConfirmationOutcome, ConfirmationStatus
from .gateway import MobileMoneyGateway, NullGateway, build_gateway
from .webhook import parse_event, extract_result, sign_payload

__all__ = [
    # gate
    "PaymentConfirmationGate",
    "PaymentResult",
    "ConfirmationOutcome",
    "ConfirmationStatus",
    # gateway
    "MobileMoneyGateway",
    "NullGateway",
    "build_gateway",
    # webhook
    "parse_event",
    "extract_result",
    "sign_payload",
]
