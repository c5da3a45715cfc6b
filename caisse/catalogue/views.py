import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from caisse.catalogue.models import ItemKind
from caisse.departements.service import resolve_department_id
from caisse.errors import NotFoundError
from caisse.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/catalogue", tags=["Catalogue API"])

# module caisse.catalogue.views
@router.get("/items")
def list_items(request: Request, kind: Optional[ItemKind] = None, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Articles actifs du département courant (produits, services, forfaits data).
    - Filtre optionnel ?kind=product|service|data_package
    """
    department_id = resolve_department_id(request, user)
    services = request.app.state.services
    items = services.catalogue.list_items(department_id, kind)
    return {"items": [i.model_dump(mode="json") for i in items]}


@router.get("/items/{item_id}/variants")
def list_variants(item_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """Variantes d'un produit du département courant (404 sinon)."""
    services = request.app.state.services
    item = services.catalogue.get_item(ItemKind.PRODUCT, item_id)
    if item is None or item.department_id != resolve_department_id(request, user):
        raise NotFoundError("Article introuvable", code="item_not_found", item_id=item_id)
    return {"variants": [v.model_dump(mode="json") for v in services.catalogue.list_variants(item_id)]}
