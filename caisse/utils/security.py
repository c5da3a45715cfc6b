from fastapi import Request, HTTPException, Depends
from typing import Any, Dict, Optional

import caisse.infra.supabase_client as supabase_client

COOKIE_NAME = "sb_access"

# Rôles autorisés à forcer un prix sur un article qui ne l'autorise pas
PRIVILEGED_ROLES = {"admin", "manager"}

def determine_role(metadata: Dict[str, Any] | None, app_metadata: Dict[str, Any] | None = None) -> str:
    """
    Rôle applicatif (app_role): admin, manager, cashier ou staff.
    app_metadata (défini côté serveur) prime sur user_metadata.
    """
    for source in (app_metadata, metadata):
        role = str((source or {}).get("role", "")).lower()
        if role in ("admin", "manager", "cashier", "staff"):
            return role
    return "cashier"

def is_privileged(user: Optional[Dict[str, Any]]) -> bool:
    return str((user or {}).get("role", "")).lower() in PRIVILEGED_ROLES

def _user_from_token(token: str) -> Dict[str, Any]:
    res = supabase_client.get_supabase().auth.get_user(token)
    raw = getattr(res, "user", None)
    if raw is None:
        return {}
    metadata = getattr(raw, "user_metadata", None) or {}
    app_metadata = getattr(raw, "app_metadata", None) or {}
    return {
        "id": getattr(raw, "id", None),
        "email": getattr(raw, "email", None),
        "name": metadata.get("full_name") or getattr(raw, "email", None) or "",
        "metadata": metadata,
        "role": determine_role(metadata, app_metadata),
        "token": token,
    }

def get_current_user(request: Request) -> Dict[str, Any]:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)

    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    try:
        user = _user_from_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return user

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user
