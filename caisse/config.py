# caisse.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale de la caisse.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, passerelle mobile money, Redis)
- Choix du stockage: 'supabase' (production) ou 'memory' (mode démo, aucune écriture en base)
- Paramètres métier: délai de confirmation des paiements, incrément par défaut des articles au volume
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

# Supabase: URLs et clés (public/anon/service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stockage: 'supabase' ou 'memory' (démo)
STORAGE_BACKEND = (_clean_env(os.getenv("STORAGE_BACKEND") or "supabase")).lower()

# Sessions de caisse (onglets + paniers en attente) persistées dans Redis
REDIS_URL = _clean_env(os.getenv("REDIS_URL") or "redis://127.0.0.1:6379/0")
USE_FAKE_REDIS = (os.getenv("USE_FAKE_REDIS", "false").lower() in ("1", "true", "yes"))
SESSION_TTL_SECONDS = _int_env("SESSION_TTL_SECONDS", 60 * 60 * 12)

# Mobile money: passerelle externe + secret de signature du webhook
MOBILE_MONEY_API_URL = _clean_env(os.getenv("MOBILE_MONEY_API_URL") or "")
MOBILE_MONEY_API_KEY = _clean_env(os.getenv("MOBILE_MONEY_API_KEY") or "")
MOBILE_MONEY_WEBHOOK_SECRET = _clean_env(os.getenv("MOBILE_MONEY_WEBHOOK_SECRET") or "")
PAYMENT_CONFIRMATION_TIMEOUT_SECONDS = _int_env("PAYMENT_CONFIRMATION_TIMEOUT_SECONDS", 900)
PAYMENT_SWEEP_INTERVAL_SECONDS = _int_env("PAYMENT_SWEEP_INTERVAL_SECONDS", 30)

# Département par défaut si ni l'en-tête ni le profil n'en fournissent
DEFAULT_DEPARTMENT_ID = _clean_env(os.getenv("DEFAULT_DEPARTMENT_ID") or "")

# Quantité ajoutée par clic sur un article suivi au volume (ml)
VOLUME_DEFAULT_INCREMENT = _int_env("VOLUME_DEFAULT_INCREMENT", 100)

# Informations commerce (repli si la table settings est vide)
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "")
BUSINESS_ADDRESS = os.getenv("BUSINESS_ADDRESS", "")
BUSINESS_PHONE = os.getenv("BUSINESS_PHONE", "")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
