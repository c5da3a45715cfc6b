from .resolver import PriceTier, resolve_price, validate_custom_price, selectable_tiers

__all__ = ["PriceTier", "resolve_price", "validate_custom_price", "selectable_tiers"]
