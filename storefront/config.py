# storefront.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

TEMPLATES_DIR = Path(__file__).resolve().parent / "emails" / "templates"

"""
Configuration centrale du backend checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, SMTP, cron)
- Sélectionne les clés Stripe selon STRIPE_MODE (test/production)
- Expose les bornes métier (taille du panier, fenêtre d'idempotence, file d'emails)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

APP_ENV = _clean_env(os.getenv("APP_ENV") or "development").lower()
IS_PRODUCTION = APP_ENV == "production"

# Supabase: URLs et clés (anon/service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: mode test/production, "test" par défaut
STRIPE_MODE = _clean_env(os.getenv("STRIPE_MODE") or "test").lower()
if STRIPE_MODE not in ("test", "production"):
    STRIPE_MODE = "test"

_suffix = "PRODUCTION" if STRIPE_MODE == "production" else "TEST"
STRIPE_SECRET_KEY = _clean_env(os.getenv(f"STRIPE_SECRET_KEY_{_suffix}") or os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv(f"STRIPE_WEBHOOK_SECRET_{_suffix}") or os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_CURRENCY = _clean_env(os.getenv("STRIPE_CURRENCY") or "usd").lower()

# URLs publiques et pages de retour du checkout
SITE_URL = _clean_env(os.getenv("SITE_URL") or os.getenv("NEXT_PUBLIC_SITE_URL") or "http://localhost:3000").rstrip("/")
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/checkout/success?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/cart")
# Portail de facturation Stripe: URL de retour fixe, sinon SITE_URL + chemin relatif demandé
STRIPE_BILLING_PORTAL_RETURN_URL = _clean_env(os.getenv("STRIPE_BILLING_PORTAL_RETURN_URL") or "")
BILLING_PORTAL_DEFAULT_PATH = os.getenv("BILLING_PORTAL_DEFAULT_PATH", "/account")

# Cron (drain de la file d'emails): Authorization: Bearer <CRON_SECRET>
CRON_SECRET = _clean_env(os.getenv("CRON_SECRET") or "")

# Admins (en plus du rôle "admin" dans user_metadata)
ADMIN_EMAILS = [e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# SMTP (envoi des emails de la file)
SMTP_HOST = _clean_env(os.getenv("SMTP_HOST") or "")
SMTP_PORT = _int_env("SMTP_PORT", 587)
SMTP_USER = _clean_env(os.getenv("SMTP_USER") or "")
SMTP_PASS = _clean_env(os.getenv("SMTP_PASS") or "")
MAIL_FROM = _clean_env(os.getenv("MAIL_FROM") or "")
APP_NAME = os.getenv("APP_NAME", "Long Life")

# Bornes panier / checkout
CART_MAX_ITEMS = _int_env("CART_MAX_ITEMS", 100)
CART_MAX_QUANTITY = _int_env("CART_MAX_QUANTITY", 999)
CHECKOUT_IDEMPOTENCY_WINDOW_SECONDS = _int_env("CHECKOUT_IDEMPOTENCY_WINDOW_SECONDS", 300)

# File d'emails (drain par cron)
EMAIL_QUEUE_MAX_RETRIES = _int_env("EMAIL_QUEUE_MAX_RETRIES", 3)
EMAIL_QUEUE_BATCH_SIZE = _int_env("EMAIL_QUEUE_BATCH_SIZE", 50)

# Cache des feature flags
FEATURE_FLAGS_TTL_SECONDS = _int_env("FEATURE_FLAGS_TTL_SECONDS", 60)
