"""
Module 'cart' (feature-first): paniers, onglets et paniers en attente d'un caissier.
"""
from .models import Cart, LineItem, ParkedCart, PaymentMethod, ASYNC_PAYMENT_METHODS, line_key
from .sessions import CartSession
from .service import add_item, remove_item, set_quantity, set_price, set_tier, set_checkout_details

__all__ = [
    "Cart",
    "LineItem",
    "ParkedCart",
    "PaymentMethod",
    "ASYNC_PAYMENT_METHODS",
    "line_key",
    "CartSession",
    "add_item",
    "remove_item",
    "set_quantity",
    "set_price",
    "set_tier",
    "set_checkout_details",
]
