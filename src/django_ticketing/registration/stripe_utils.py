"""Amount conversion and key masking helpers for the Stripe integration.

Stripe expresses money as integers in the smallest currency unit (cents for
USD). Zero-decimal currencies such as JPY have no minor unit, so the integer
amount *is* the unit amount.
"""

from decimal import ROUND_HALF_UP, Decimal

_MASK = "****"
_MASK_VISIBLE_CHARS = 4

ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)


def _minor_units(currency: str) -> Decimal:
    return Decimal(1) if currency.upper() in ZERO_DECIMAL_CURRENCIES else Decimal(100)


def to_stripe_amount(amount: Decimal, currency: str) -> int:
    """Convert a price to the integer amount Stripe expects.

    Half-cent prices are rounded half-up, so ``Decimal("19.995")`` in USD
    becomes ``2000``.

    Args:
        amount: The price as stored on the event.
        currency: An ISO 4217 currency code (case-insensitive).

    Returns:
        The amount in the smallest currency unit.
    """
    scaled = (amount * _minor_units(currency)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def from_stripe_amount(amount: int, currency: str) -> Decimal:
    """Convert an integer Stripe amount back to a two-place ``Decimal``.

    This is the inverse of :func:`to_stripe_amount`.
    """
    return (Decimal(amount) / _minor_units(currency)).quantize(Decimal("0.01"))


def mask_key(key: str) -> str:
    """Mask a secret key for log output, keeping only its last four characters."""
    if len(key) < _MASK_VISIBLE_CHARS:
        return _MASK
    return _MASK + key[-_MASK_VISIBLE_CHARS:]
