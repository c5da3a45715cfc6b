"""
Annuaire des départements: résolution du département courant et métadonnées du reçu.
L'identifiant est une clé opaque qui borne chaque lecture catalogue et chaque vente.
"""
from typing import Any, Callable, Dict, Optional

from fastapi import Request

from caisse.config import BUSINESS_ADDRESS, BUSINESS_NAME, BUSINESS_PHONE, DEFAULT_DEPARTMENT_ID
from caisse.errors import ValidationError
from .repository import SETTINGS_FIELDS, fetch_settings

DEPARTMENT_HEADER = "X-Department-Id"


def resolve_department_id(request: Request, user: Optional[Dict[str, Any]] = None) -> str:
    """
    Ordre: en-tête X-Department-Id, puis metadata.department_id de l'utilisateur,
    puis DEFAULT_DEPARTMENT_ID.
    """
    department_id = (request.headers.get(DEPARTMENT_HEADER) or "").strip()
    if not department_id and user:
        department_id = str((user.get("metadata") or {}).get("department_id") or "").strip()
    if not department_id:
        department_id = DEFAULT_DEPARTMENT_ID
    if not department_id:
        raise ValidationError("Département non défini", code="department_required")
    return department_id


def config_business_info() -> Dict[str, Any]:
    return {"business_name": BUSINESS_NAME, "business_address": BUSINESS_ADDRESS, "business_phone": BUSINESS_PHONE}


def get_business_info(department_id: Optional[str], fetch: Callable[[Optional[str]], Dict[str, Any]] = fetch_settings) -> Dict[str, Any]:
    """En-tête du reçu: réglages du département complétés par la configuration."""
    info = config_business_info()
    row = fetch(department_id) or {}
    for field in SETTINGS_FIELDS:
        if row.get(field):
            info[field] = row[field]
    return info
