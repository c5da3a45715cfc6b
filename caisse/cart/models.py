"""
Modèles du panier: lignes, panier, panier en attente.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from caisse.catalogue.models import CatalogItem, StockTarget, Variant
from caisse.pricing.resolver import PriceTier


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"
    MOBILE_MONEY = "mobile_money"


# Moyens dont la confirmation arrive plus tard par la passerelle
ASYNC_PAYMENT_METHODS = {PaymentMethod.MOBILE_MONEY}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


def line_key(item_id: str, variant_id: Optional[str] = None) -> str:
    return f"{item_id}-{variant_id or ''}"


def stock_target_for(item: CatalogItem, variant: Optional[Variant] = None) -> Optional[StockTarget]:
    """
    Cible de stock d'un article: la variante si elle est choisie, sinon le produit.
    Services et forfaits data n'ont pas de cible.
    """
    if not item.stock_tracked:
        return None
    if variant is not None:
        return StockTarget(target_id=variant.id, is_variant=True, name=f"{item.name} - {variant.name}")
    return StockTarget(target_id=item.id, is_variant=False, name=item.name)


class LineItem(BaseModel):
    """
    Ligne de panier. Garde un instantané de l'article (et de la variante) pour
    recalculer prix et bornes sans relire le catalogue.
    """
    item: CatalogItem
    variant: Optional[Variant] = None
    unit_price: float
    quantity: int
    tier: PriceTier = PriceTier.DEFAULT
    custom_price: bool = False

    @computed_field
    @property
    def key(self) -> str:
        return line_key(self.item.id, self.variant.id if self.variant else None)

    @computed_field
    @property
    def name(self) -> str:
        return f"{self.item.name} - {self.variant.name}" if self.variant else self.item.name

    @computed_field
    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)

    @property
    def stock_target(self) -> Optional[StockTarget]:
        return stock_target_for(self.item, self.variant)


class Cart(BaseModel):
    id: str = Field(default_factory=_new_id)
    lines: List[LineItem] = Field(default_factory=list)
    customer_label: str = ""
    customer_id: Optional[str] = None
    customer_phone: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    amount_tendered: Optional[float] = None
    remarks: str = ""
    created_at: datetime = Field(default_factory=_now)
    # jeton d'encaissement: une vente au plus par jeton, renouvelé à chaque remise à zéro
    checkout_token: str = Field(default_factory=_new_id)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @computed_field
    @property
    def subtotal(self) -> float:
        return round(sum(line.subtotal for line in self.lines), 2)

    @computed_field
    @property
    def total(self) -> float:
        return self.subtotal

    def find_line(self, key: str) -> Optional[LineItem]:
        for line in self.lines:
            if line.key == key:
                return line
        return None

    def emptied(self) -> "Cart":
        """Même onglet, remis à l'état par défaut (nouveau jeton d'encaissement)."""
        return Cart(id=self.id)


class ParkedCart(BaseModel):
    id: str = Field(default_factory=lambda: f"parked-{uuid4().hex[:12]}")
    cart: Cart
    reason: str = ""
    parked_at: datetime = Field(default_factory=_now)
