"""
Persisted display preferences and formatting helpers.
"""

import logging
from typing import Optional, Union

from config.settings import DEFAULT_CURRENCY_DISPLAY
from bidstream.data.storage import LocalStorage, CURRENCY_KEY

logger = logging.getLogger(__name__)

CURRENCY_DISPLAYS = ("native", "usd")


def _parse_display(raw) -> str:
    if raw not in CURRENCY_DISPLAYS:
        raise ValueError(f"unknown currency display {raw!r}")
    return raw


class CurrencyPreference:
    """Whether prices are shown in the chain's native currency or USD."""

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.display: str = storage.load(CURRENCY_KEY, DEFAULT_CURRENCY_DISPLAY, parse=_parse_display)

    def set(self, display: str):
        self.display = _parse_display(display)
        self.storage.save(CURRENCY_KEY, self.display)
        logger.info(f"Currency display set to {self.display}")

    def format(self, amount: Union[float, str, None], currency: Optional[str] = None) -> str:
        return format_currency(amount, "USD" if self.display == "usd" else currency)


def format_currency(amount: Union[float, str, None], currency: Optional[str]) -> str:
    """'$1.50' for USD, '0.0150 ETH' for anything else."""
    value = float(amount or 0)
    symbol = currency or "ETH"
    if symbol == "USD":
        return f"${value:.2f}"
    return f"{value:.4f} {symbol}"


def format_address(address: Optional[str]) -> str:
    """0x1234...abcd"""
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"
