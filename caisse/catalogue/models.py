"""
Modèles du catalogue (lecture seule pour le moteur de caisse).
"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ItemKind(str, Enum):
    PRODUCT = "product"
    SERVICE = "service"
    DATA_PACKAGE = "data_package"


class TrackingMode(str, Enum):
    QUANTITY = "quantity"
    VOLUME = "volume"


class PricingTiers(BaseModel):
    retail: float = 0
    wholesale: float = 0
    individual: float = 0


class CatalogItem(BaseModel):
    """
    Article vendable: produit, service ou forfait data.
    - tiers: prix par niveau (seuls les niveaux non nuls sont sélectionnables)
    - retail/wholesale_price_per_unit: tarifs au volume (ml) si tracking == VOLUME
    - stock: unités, ou volume cumulé (ml) pour un article suivi au volume
    - has_variants: le stock du parent est ignoré, chaque variante porte le sien
    """
    id: str
    kind: ItemKind = ItemKind.PRODUCT
    name: str
    department_id: Optional[str] = None
    base_price: float = 0
    tiers: Optional[PricingTiers] = None
    retail_price_per_unit: Optional[float] = None
    wholesale_price_per_unit: Optional[float] = None
    tracking: TrackingMode = TrackingMode.QUANTITY
    volume_unit: str = "ml"
    stock: int = 0
    allow_custom_price: bool = False
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    has_variants: bool = False
    is_active: bool = True

    @property
    def stock_tracked(self) -> bool:
        # Services et forfaits data ne consomment pas de stock
        return self.kind == ItemKind.PRODUCT

    @property
    def volume_tracked(self) -> bool:
        return self.tracking == TrackingMode.VOLUME


class Variant(BaseModel):
    id: str
    item_id: str
    name: str
    price_adjustment: float = 0
    stock: int = 0
    is_active: bool = True


class StockTarget(BaseModel):
    """Identité contrôlée par le registre de stock: un produit ou une variante."""
    target_id: str
    is_variant: bool = False
    name: str = ""

    @property
    def key(self) -> str:
        return ("variant:" if self.is_variant else "product:") + self.target_id


class StockLevel(BaseModel):
    target: StockTarget
    quantity: int = Field(default=0)
    volume_tracked: bool = False
