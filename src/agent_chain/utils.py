"""Small helpers shared across the wallet subsystem."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation


def clean_handle(handle: str) -> str:
    """Normalise an agent handle: ``" @Alice "`` -> ``"alice"``."""
    cleaned = handle.strip().lstrip("@").strip().lower()
    if not cleaned:
        raise ValueError("Agent handle must not be empty.")
    return cleaned


def balance_tag(handle: str) -> str:
    """Cache tag for an agent's token balance."""
    return f"balance-{clean_handle(handle)}"


def to_base_units(amount: str | int | Decimal, decimals: int = 18) -> int:
    """Convert a human token amount (``"1.5"``) to integer base units.

    Raises ``ValueError`` for non-numeric or non-finite input and for
    amounts finer than the token's precision.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid token amount '{amount}'.") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid token amount '{amount}'.")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Amount '{amount}' has more than {decimals} decimal places."
        )
    return int(scaled)


def format_units(amount: int, decimals: int = 18) -> str:
    """Render integer base units as a human-readable decimal string."""
    value = Decimal(amount).scaleb(-decimals)
    text = format(value.normalize(), "f")
    return text
