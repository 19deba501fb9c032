"""
Feature flags avec cache TTL explicite.

- FeatureFlagCache garde (valeur, fetched_at) et recharge au-delà du TTL
- loader: fonction sans argument renvoyant un dict de flags (table Supabase par défaut)
- instance partagée dans app.state.feature_flags, obtenue via get_feature_flags()
- lecture « stale » possible pendant au plus ttl secondes
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from fastapi import Request

from storefront.config import FEATURE_FLAGS_TTL_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_FLAGS: Dict[str, Any] = {
    # Vérifie aussi côté Stripe les prix one_time lors de la validation panier
    "cart_verify_one_time_prices": False,
    "checkout_enabled": True,
    "email_queue_enabled": True,
}


def load_flags_from_store() -> Dict[str, Any]:
    """Lit la table feature_flags (name, enabled) et la fusionne sur DEFAULT_FLAGS."""
    from storefront.infra.supabase_client import get_service_supabase

    flags = dict(DEFAULT_FLAGS)
    res = get_service_supabase().table("feature_flags").select("name, enabled").execute()
    for row in res.data or []:
        name = row.get("name")
        if name:
            flags[str(name)] = bool(row.get("enabled"))
    return flags


class FeatureFlagCache:
    def __init__(
        self,
        loader: Callable[[], Dict[str, Any]] = load_flags_from_store,
        ttl_seconds: float = FEATURE_FLAGS_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0
        self._lock = threading.Lock()

    @property
    def fetched_at(self) -> float:
        return self._fetched_at

    def _expired(self) -> bool:
        return self._value is None or (self._clock() - self._fetched_at) >= self.ttl_seconds

    def get(self) -> Dict[str, Any]:
        """
        Flags courants. Si le rechargement échoue, on garde la dernière valeur connue
        (ou les valeurs par défaut) et on réessaiera au prochain TTL.
        """
        with self._lock:
            if self._expired():
                try:
                    loaded = self._loader()
                    self._value = {**DEFAULT_FLAGS, **(loaded or {})}
                except Exception:
                    logger.exception("feature_flags.get loader failed, keeping previous values")
                    if self._value is None:
                        self._value = dict(DEFAULT_FLAGS)
                self._fetched_at = self._clock()
            return dict(self._value)

    def is_enabled(self, name: str) -> bool:
        return bool(self.get().get(name, DEFAULT_FLAGS.get(name, False)))

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._fetched_at = 0.0


def get_feature_flags(request: Request) -> FeatureFlagCache:
    """Dépendance FastAPI: cache partagé de l'application (créé à la volée si absent)."""
    cache = getattr(request.app.state, "feature_flags", None)
    if cache is None:
        cache = FeatureFlagCache()
        request.app.state.feature_flags = cache
    return cache
