"""
Clé d'idempotence du checkout.

sha256(identité appelant | lignes triées (priceRef, qty) | code promo | tranche de temps):
deux soumissions identiques dans la même tranche (double clic, retry réseau)
donnent la même clé, donc la même session Stripe. La tranche change ensuite,
un nouveau checkout légitime n'est donc jamais bloqué durablement.
"""
import hashlib
import time
from typing import Iterable, Optional, Tuple

from storefront.config import CHECKOUT_IDEMPOTENCY_WINDOW_SECONDS

# module storefront.checkout.idempotency
def time_bucket(now: Optional[float] = None, window_seconds: int = CHECKOUT_IDEMPOTENCY_WINDOW_SECONDS) -> int:
    current = time.time() if now is None else now
    return int(current // max(int(window_seconds), 1))


def normalize_lines(lines: Iterable[Tuple[str, int]]) -> str:
    """Agrège par référence puis trie: l'ordre du panier n'influence pas la clé."""
    totals = {}
    for price_ref, qty in lines:
        totals[price_ref] = totals.get(price_ref, 0) + int(qty)
    return ";".join(f"{ref}x{totals[ref]}" for ref in sorted(totals))


def checkout_idempotency_key(
    *,
    caller: str,
    lines: Iterable[Tuple[str, int]],
    discount_code: Optional[str] = None,
    now: Optional[float] = None,
    window_seconds: int = CHECKOUT_IDEMPOTENCY_WINDOW_SECONDS,
) -> str:
    raw = "|".join([
        (caller or "").strip().lower(),
        normalize_lines(lines),
        (discount_code or "").strip().upper(),
        str(time_bucket(now, window_seconds)),
    ])
    return "checkout_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()
