"""
Conversion montant (unités majeures, ex: 12.99) <-> centimes (entiers Stripe).

Point de conversion unique du projet: toute comparaison ou création de prix
Stripe passe par to_minor_units, jamais par un calcul local `* 100`.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Union

# module storefront.payments.money
_CENT = Decimal("0.01")


def _to_decimal(amount: Union[str, int, float, Decimal, None]) -> Decimal:
    if amount is None:
        raise ValueError("Montant manquant")
    if isinstance(amount, Decimal):
        return amount
    try:
        # str() évite de propager l'erreur binaire du float (12.99 -> 12.9900000000000002...)
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Montant invalide: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Montant invalide: {amount!r}")
    return value


def to_minor_units(amount: Union[str, int, float, Decimal, None]) -> int:
    """
    Convertit un prix en unités majeures vers des centimes.
    - Arrondi au centime supérieur à partir de .5 (ROUND_HALF_UP)
    - Lève ValueError si le montant est absent ou illisible
    """
    value = _to_decimal(amount)
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Any) -> Decimal:
    """Centimes -> Decimal à deux décimales (12.99)."""
    return (Decimal(int(amount)) / 100).quantize(_CENT)


def format_amount(amount_minor: Any, currency: str = "usd") -> str:
    """Affichage simple pour les emails: 1299 -> '$12.99' (usd) ou '12.99 EUR'."""
    value = from_minor_units(amount_minor or 0)
    if (currency or "").lower() == "usd":
        return f"${value}"
    return f"{value} {(currency or '').upper()}"
