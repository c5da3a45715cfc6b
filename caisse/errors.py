"""
Erreurs métier de la caisse.
- Chaque erreur porte un message lisible, un code machine, un statut HTTP et un contexte
  (article, quantités demandée/disponible, bornes de prix...) pour guider la correction côté UI.
- Converties en JSON par caisse.app_setup.exceptions.
"""
from typing import Any, Dict, Optional


class CaisseError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.context}


class ValidationError(CaisseError):
    """Refus avant tout effet de bord (panier vide, moyen de paiement absent...)."""
    status_code = 422
    code = "validation_error"


class PriceRangeError(ValidationError):
    code = "price_out_of_range"


class NotFoundError(CaisseError):
    status_code = 404
    code = "not_found"


class InsufficientStockError(CaisseError):
    status_code = 409
    code = "insufficient_stock"


class CommitConflictError(CaisseError):
    """Le contrôle préalable était bon mais la validation atomique du stock a échoué."""
    status_code = 409
    code = "commit_conflict"


class PaymentGatewayError(CaisseError):
    status_code = 502
    code = "payment_gateway_error"


class PersistenceError(CaisseError):
    status_code = 503
    code = "persistence_error"
