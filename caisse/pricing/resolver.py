"""
Résolution du prix unitaire d'une ligne de panier.

Ordre:
  1) article suivi au volume: tarif détail au ml, sinon tarif gros au ml, sinon prix fixe
  2) prix par niveau: premier niveau non nul parmi retail -> wholesale -> individual,
     ou le niveau demandé explicitement s'il est non nul
  3) prix de base
L'ajustement de la variante s'ajoute toujours en dernier.
"""
from enum import Enum
from typing import List, Optional, Tuple

from caisse.catalogue.models import CatalogItem, Variant
from caisse.errors import PriceRangeError, ValidationError


class PriceTier(str, Enum):
    DEFAULT = "default"
    RETAIL = "retail"
    WHOLESALE = "wholesale"
    INDIVIDUAL = "individual"


TIER_ORDER = (PriceTier.RETAIL, PriceTier.WHOLESALE, PriceTier.INDIVIDUAL)
VOLUME_TIER_ORDER = (PriceTier.RETAIL, PriceTier.WHOLESALE)


def _coerce_tier(requested_tier) -> Optional[PriceTier]:
    if requested_tier is None or requested_tier == "":
        return None
    try:
        return PriceTier(requested_tier)
    except ValueError:
        raise ValidationError(f"Niveau de prix inconnu: {requested_tier}", code="unknown_tier", tier=str(requested_tier))


def _volume_rate(item: CatalogItem, tier: PriceTier) -> float:
    if tier == PriceTier.RETAIL:
        return item.retail_price_per_unit or 0
    if tier == PriceTier.WHOLESALE:
        return item.wholesale_price_per_unit or 0
    return 0


def _tier_price(item: CatalogItem, tier: PriceTier) -> float:
    if not item.tiers or tier == PriceTier.DEFAULT:
        return 0
    return getattr(item.tiers, tier.value) or 0


def selectable_tiers(item: CatalogItem) -> List[PriceTier]:
    """Niveaux proposables pour un article (seuls les niveaux non nuls)."""
    if item.volume_tracked:
        return [t for t in VOLUME_TIER_ORDER if _volume_rate(item, t) > 0]
    return [t for t in TIER_ORDER if _tier_price(item, t) > 0]


def _resolve_without_variant(item: CatalogItem, tier: Optional[PriceTier]) -> Tuple[float, PriceTier]:
    if tier == PriceTier.DEFAULT:
        return float(item.base_price), PriceTier.DEFAULT

    if item.volume_tracked:
        if tier is not None and _volume_rate(item, tier) > 0:
            return float(_volume_rate(item, tier)), tier
        for candidate in VOLUME_TIER_ORDER:
            rate = _volume_rate(item, candidate)
            if rate > 0:
                return float(rate), candidate
        return float(item.base_price), PriceTier.DEFAULT

    if item.tiers:
        if tier is not None and _tier_price(item, tier) > 0:
            return float(_tier_price(item, tier)), tier
        for candidate in TIER_ORDER:
            price = _tier_price(item, candidate)
            if price > 0:
                return float(price), candidate

    return float(item.base_price), PriceTier.DEFAULT


def resolve_price(item: CatalogItem, variant: Optional[Variant] = None, requested_tier=None) -> Tuple[float, PriceTier]:
    """
    Retourne (prix_unitaire, niveau_utilisé).
    - requested_tier: None (ordre par défaut), 'default' (prix de base) ou un niveau nommé
    - un niveau demandé mais nul retombe sur l'ordre par défaut
    """
    price, tier = _resolve_without_variant(item, _coerce_tier(requested_tier))
    if variant is not None:
        price += float(variant.price_adjustment or 0)
    return price, tier


def validate_custom_price(item: CatalogItem, proposed_price: float, privileged: bool = False) -> float:
    """
    Valide un prix saisi manuellement.
    - refuse si l'article n'autorise pas le prix libre, sauf appelant privilégié (admin/manager)
    - les bornes min/max s'appliquent à tous, privilégiés compris (borne absente = pas de limite)
    Retourne le prix accepté.
    """
    try:
        price = float(proposed_price)
    except (TypeError, ValueError):
        raise PriceRangeError("Prix invalide", proposed=proposed_price)
    if price < 0:
        raise PriceRangeError("Le prix ne peut pas être négatif", proposed=price)

    if not item.allow_custom_price and not privileged:
        raise PriceRangeError(
            f"Prix personnalisé non autorisé pour {item.name}",
            code="custom_price_not_allowed",
            item_id=item.id,
            item_name=item.name,
            proposed=price,
        )
    if item.min_price is not None and price < item.min_price:
        raise PriceRangeError(
            f"Le prix ne peut pas être inférieur à {item.min_price:g}",
            item_id=item.id,
            item_name=item.name,
            proposed=price,
            min_price=item.min_price,
            max_price=item.max_price,
        )
    if item.max_price is not None and price > item.max_price:
        raise PriceRangeError(
            f"Le prix ne peut pas dépasser {item.max_price:g}",
            item_id=item.id,
            item_name=item.name,
            proposed=price,
            min_price=item.min_price,
            max_price=item.max_price,
        )
    return price
