"""
Cas d'usage 'cart': édition d'un panier.

- add_item contrôle le stock sur la quantité totale visée (déjà au panier + ajout)
- set_quantity contrôle le stock dès que la quantité augmente; <= 0 retire la ligne
- set_price passe par validate_custom_price, set_tier par resolve_price
En cas d'erreur le panier reste inchangé.
"""
import logging
from typing import Optional

from caisse.catalogue.models import CatalogItem, Variant
from caisse.config import VOLUME_DEFAULT_INCREMENT
from caisse.errors import NotFoundError, ValidationError
from caisse.pricing.resolver import resolve_price, validate_custom_price
from caisse.stock.ledger import StockLedger
from .models import Cart, LineItem, PaymentMethod, line_key, stock_target_for

logger = logging.getLogger(__name__)


def _require_line(cart: Cart, key: str) -> LineItem:
    line = cart.find_line(key)
    if line is None:
        raise NotFoundError("Ligne introuvable dans le panier", code="line_not_found", key=key)
    return line


def add_item(
    cart: Cart,
    item: CatalogItem,
    ledger: StockLedger,
    variant: Optional[Variant] = None,
    quantity: Optional[int] = None,
    tier=None,
    department_id: Optional[str] = None,
) -> LineItem:
    """
    Ajoute un article (ou incrémente la ligne existante de même clé article/variante).
    - department_id: département de la session; un article d'un autre département est introuvable
    - quantité par défaut: 1, ou VOLUME_DEFAULT_INCREMENT pour un article au volume
    - article à variantes: la variante est obligatoire
    """
    if department_id is not None and item.department_id != department_id:
        raise NotFoundError("Article introuvable", code="item_not_found", item_id=item.id)
    if not item.is_active:
        raise ValidationError(f"{item.name} n'est plus disponible à la vente", code="item_inactive", item_id=item.id)
    if variant is not None and variant.item_id != item.id:
        raise ValidationError("Variante sans rapport avec l'article", code="variant_mismatch", item_id=item.id, variant_id=variant.id)
    if variant is None and item.has_variants and item.stock_tracked:
        raise ValidationError(f"Choisissez une variante pour {item.name}", code="variant_required", item_id=item.id)

    qty = int(quantity) if quantity is not None else (VOLUME_DEFAULT_INCREMENT if item.volume_tracked else 1)
    if qty <= 0:
        raise ValidationError("La quantité doit être positive", code="invalid_quantity", quantity=qty)

    key = line_key(item.id, variant.id if variant else None)
    existing = cart.find_line(key)
    prospective = qty + (existing.quantity if existing else 0)

    target = stock_target_for(item, variant)
    if target is not None:
        ledger.ensure_available(target, prospective)

    if existing is not None:
        existing.quantity = prospective
        return existing

    price, used = resolve_price(item, variant, tier)
    line = LineItem(item=item, variant=variant, unit_price=price, quantity=qty, tier=used)
    cart.lines.append(line)
    logger.debug("cart.add_item cart=%s key=%s qty=%s price=%s", cart.id, key, qty, price)
    return line


def remove_item(cart: Cart, key: str) -> None:
    line = _require_line(cart, key)
    cart.lines.remove(line)


def set_quantity(cart: Cart, key: str, quantity: int, ledger: StockLedger) -> Optional[LineItem]:
    line = _require_line(cart, key)
    quantity = int(quantity)
    if quantity <= 0:
        cart.lines.remove(line)
        return None
    target = line.stock_target
    if target is not None and quantity > line.quantity:
        ledger.ensure_available(target, quantity)
    line.quantity = quantity
    return line


def set_price(cart: Cart, key: str, price: float, privileged: bool = False) -> LineItem:
    line = _require_line(cart, key)
    line.unit_price = validate_custom_price(line.item, price, privileged=privileged)
    line.custom_price = True
    return line


def set_tier(cart: Cart, key: str, tier) -> LineItem:
    """
    Change le niveau de prix d'une ligne; 'default' revient au prix de base.
    Un prix personnalisé éventuel est remplacé.
    """
    line = _require_line(cart, key)
    price, used = resolve_price(line.item, line.variant, tier)
    line.unit_price = price
    line.tier = used
    line.custom_price = False
    return line


def set_checkout_details(
    cart: Cart,
    *,
    payment_method: Optional[PaymentMethod] = None,
    customer_label: Optional[str] = None,
    customer_id: Optional[str] = None,
    customer_phone: Optional[str] = None,
    amount_tendered: Optional[float] = None,
    remarks: Optional[str] = None,
) -> Cart:
    if payment_method is not None:
        cart.payment_method = PaymentMethod(payment_method)
    if customer_label is not None:
        cart.customer_label = customer_label.strip()
    if customer_id is not None:
        cart.customer_id = customer_id.strip() or None
    if customer_phone is not None:
        cart.customer_phone = customer_phone.strip() or None
    if amount_tendered is not None:
        if amount_tendered < 0:
            raise ValidationError("Montant reçu invalide", code="invalid_amount", amount_tendered=amount_tendered)
        cart.amount_tendered = float(amount_tendered)
    if remarks is not None:
        cart.remarks = remarks
    return cart
