"""
Cas d'usage Auth côté checkout: résolution de l'appelant à partir d'un jeton Supabase.
L'inscription/connexion (UI) n'est pas gérée ici: le jeton est émis par Supabase Auth.
"""
from typing import Any, Dict, Optional

from storefront.config import ADMIN_EMAILS
from storefront.auth.repository import get_user_from_access_token as _repo_get_user_from_token


def determine_role(email: Optional[str], metadata: Optional[Dict[str, Any]]) -> str:
    """admin si user_metadata.role == "admin" ou si l'email figure dans ADMIN_EMAILS."""
    if str((metadata or {}).get("role", "")).lower() == "admin":
        return "admin"
    if email and email.strip().lower() in ADMIN_EMAILS:
        return "admin"
    return "user"


def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token): {id, email, metadata, role, token}."""
    raw = _repo_get_user_from_token(access_token)
    email = raw.get("email")
    metadata = raw.get("user_metadata") or {}
    return {
        "id": raw.get("id"),
        "email": email,
        "metadata": metadata,
        "role": determine_role(email, metadata),
        "token": access_token,
    }
