"""
Module 'catalogue' (feature-first): modèles et accès en lecture au catalogue.
"""
from .models import CatalogItem, Variant, ItemKind, TrackingMode, PricingTiers, StockTarget, StockLevel
from .repository import SupabaseCatalogue, MemoryCatalogue

__all__ = [
    "CatalogItem",
    "Variant",
    "ItemKind",
    "TrackingMode",
    "PricingTiers",
    "StockTarget",
    "StockLevel",
    "SupabaseCatalogue",
    "MemoryCatalogue",
]
