"""
Lecture des réglages commerce par département (table 'settings').
"""
import logging
from typing import Any, Dict, Optional

import caisse.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = (
    "business_name",
    "business_address",
    "business_phone",
    "business_email",
    "logo_url",
    "whatsapp_number",
    "website",
    "seasonal_remark",
)


# module caisse.departements.repository
def fetch_settings(department_id: Optional[str]) -> Dict[str, Any]:
    """
    Réglages du département, sinon la ligne globale (department_id nul).
    - Retourne {} en cas d'erreur: ces informations ne servent qu'à l'en-tête du reçu.
    """
    try:
        client = supabase_client.get_service_supabase()
        if department_id:
            res = client.table("settings").select("*").eq("department_id", department_id).limit(1).execute()
            if res.data:
                return res.data[0]
        res = client.table("settings").select("*").is_("department_id", "null").limit(1).execute()
        return (res.data or [{}])[0]
    except Exception:
        logger.exception("departements.repository.fetch_settings failed department_id=%s", department_id)
        return {}
