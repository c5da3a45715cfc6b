from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .models import Receipt, Sale


def build_receipt(sale: Sale, business: Optional[Dict[str, Any]] = None, issued_at: Optional[datetime] = None) -> Receipt:
    """Reçu d'une vente finalisée; la mise en forme du document est laissée au consommateur."""
    return Receipt(
        receipt_number=sale.receipt_number,
        sale_id=sale.id,
        department_id=sale.department_id,
        issued_at=issued_at or datetime.now(timezone.utc),
        cashier_name=sale.cashier_name,
        customer_label=sale.customer_label,
        lines=list(sale.lines),
        subtotal=sale.subtotal,
        total=sale.total,
        amount_paid=sale.amount_paid,
        change_amount=sale.change_amount,
        payment_method=sale.payment_method,
        payment_reference=sale.payment_reference,
        business=dict(business or {}),
    )
