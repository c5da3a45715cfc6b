"""
Session de caisse d'un caissier: onglets ouverts + paniers en attente.

- un seul onglet actif à la fois; chaque onglet est un Cart indépendant
- park/resume sont tout-ou-rien et ne fusionnent jamais deux paniers non vides
- la session entière se sérialise en JSON (persistance explicite, voir cart.repository)
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from caisse.errors import NotFoundError, ValidationError
from .models import Cart, ParkedCart


class CartSession(BaseModel):
    department_id: str
    cashier_id: str
    tabs: List[Cart] = Field(default_factory=list)
    active_id: Optional[str] = None
    parked: List[ParkedCart] = Field(default_factory=list)

    @classmethod
    def start(cls, department_id: str, cashier_id: str) -> "CartSession":
        first = Cart()
        return cls(department_id=department_id, cashier_id=cashier_id, tabs=[first], active_id=first.id)

    # --- Onglets ---

    def _index(self, tab_id: str) -> int:
        for i, cart in enumerate(self.tabs):
            if cart.id == tab_id:
                return i
        raise NotFoundError("Onglet introuvable", code="tab_not_found", tab_id=tab_id)

    @property
    def active(self) -> Cart:
        if not self.tabs:
            self.new_tab()
        if self.active_id is None or not any(c.id == self.active_id for c in self.tabs):
            self.active_id = self.tabs[0].id
        return self.tabs[self._index(self.active_id)]

    def get_tab(self, tab_id: str) -> Cart:
        return self.tabs[self._index(tab_id)]

    def replace_tab(self, cart: Cart) -> Cart:
        self.tabs[self._index(cart.id)] = cart
        return cart

    def new_tab(self) -> Cart:
        cart = Cart()
        self.tabs.append(cart)
        self.active_id = cart.id
        return cart

    def switch_tab(self, tab_id: str) -> Cart:
        cart = self.get_tab(tab_id)
        self.active_id = cart.id
        return cart

    def close_tab(self, tab_id: str) -> None:
        """
        Ferme un onglet vide. Refus si l'onglet contient des articles ou si c'est le dernier.
        """
        idx = self._index(tab_id)
        if not self.tabs[idx].is_empty:
            raise ValidationError(
                "Onglet non vide: mettez le panier en attente ou encaissez-le avant de fermer",
                code="tab_not_empty",
                tab_id=tab_id,
            )
        if len(self.tabs) == 1:
            raise ValidationError("Impossible de fermer le dernier onglet", code="last_tab", tab_id=tab_id)
        self.tabs.pop(idx)
        if self.active_id == tab_id:
            self.active_id = self.tabs[max(idx - 1, 0)].id

    def reset_active(self) -> Cart:
        """Vide l'onglet actif (après encaissement)."""
        return self.replace_tab(self.active.emptied())

    # --- Paniers en attente ---

    def _parked_index(self, parked_id: str) -> int:
        for i, parked in enumerate(self.parked):
            if parked.id == parked_id:
                return i
        raise NotFoundError("Panier en attente introuvable", code="parked_not_found", parked_id=parked_id)

    def park(self, reason: str = "") -> ParkedCart:
        active = self.active
        if active.is_empty:
            raise ValidationError("Le panier est vide", code="empty_cart")
        parked = ParkedCart(cart=active.model_copy(deep=True), reason=(reason or "").strip())
        self.parked.append(parked)
        self.replace_tab(active.emptied())
        return parked

    def resume(self, parked_id: str) -> Cart:
        """
        Restaure un panier en attente dans l'onglet actif s'il est vide, sinon dans un nouvel onglet.
        """
        idx = self._parked_index(parked_id)
        snapshot = self.parked[idx].cart
        target = self.active if self.active.is_empty else self.new_tab()
        restored = snapshot.model_copy(deep=True, update={"id": target.id})
        self.replace_tab(restored)
        self.active_id = restored.id
        self.parked.pop(idx)
        return restored

    def delete_parked(self, parked_id: str) -> None:
        self.parked.pop(self._parked_index(parked_id))
