"""
Modèles 'ventes': vente enregistrée, lignes figées, reçu, résultat de finalisation.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from caisse.cart.models import PaymentMethod
from caisse.catalogue.models import ItemKind, StockTarget


class SaleStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    VOIDED = "voided"


class SaleState(str, Enum):
    DRAFT = "draft"
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMPLETED = "completed"
    AWAITING_PAYMENT_CONFIRMATION = "awaiting_payment_confirmation"
    FINALIZED = "finalized"
    VOIDED = "voided"


class SaleLine(BaseModel):
    """Copie figée d'une ligne de panier: un changement de prix catalogue ne la modifie pas."""
    model_config = ConfigDict(frozen=True)

    item_id: str
    item_kind: ItemKind
    variant_id: Optional[str] = None
    name: str
    quantity: int
    unit_price: float
    subtotal: float
    tier: str = "default"
    volume_tracked: bool = False

    @property
    def stock_target(self) -> Optional[StockTarget]:
        if self.item_kind != ItemKind.PRODUCT:
            return None
        if self.variant_id:
            return StockTarget(target_id=self.variant_id, is_variant=True, name=self.name)
        return StockTarget(target_id=self.item_id, is_variant=False, name=self.name)


class Sale(BaseModel):
    """
    Vente enregistrée. Immuable: seules les transitions de statut produisent une nouvelle copie
    (pending -> completed à la confirmation du paiement, -> voided à l'annulation).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    department_id: str
    receipt_number: str
    cashier_id: Optional[str] = None
    cashier_name: str = ""
    customer_label: str = ""
    customer_id: Optional[str] = None
    customer_phone: Optional[str] = None
    payment_method: PaymentMethod
    subtotal: float
    total: float
    amount_paid: float = 0
    change_amount: float = 0
    status: SaleStatus
    created_at: datetime
    lines: List[SaleLine] = Field(default_factory=list)
    remarks: str = ""
    payment_reference: Optional[str] = None
    payment_error: Optional[str] = None
    void_reason: Optional[str] = None
    voided_by: Optional[str] = None
    voided_at: Optional[datetime] = None
    cart_token: Optional[str] = None

    @property
    def state(self) -> SaleState:
        if self.status == SaleStatus.VOIDED:
            return SaleState.VOIDED
        if self.status == SaleStatus.PENDING:
            return SaleState.AWAITING_PAYMENT_CONFIRMATION
        return SaleState.FINALIZED


class Receipt(BaseModel):
    receipt_number: str
    sale_id: str
    department_id: str
    issued_at: datetime
    cashier_name: str = ""
    customer_label: str = ""
    lines: List[SaleLine]
    subtotal: float
    total: float
    amount_paid: float = 0
    change_amount: float = 0
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    business: Dict[str, Any] = Field(default_factory=dict)


class FinalizationResult(BaseModel):
    state: SaleState
    sale: Sale
    receipt: Optional[Receipt] = None
    payment_error: Optional[str] = None
