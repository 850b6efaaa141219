"""
Currency registry.

System currencies are the ones the market-rate provider can quote. Any other well-formed
three-letter code is a custom currency: it can only be priced from manually entered rates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    symbol: str
    display_name: str
    decimal_precision: int


_SYSTEM_CURRENCIES: tuple[CurrencyInfo, ...] = (
    CurrencyInfo("CNY", "¥", "Chinese Yuan", 2),
    CurrencyInfo("USD", "$", "US Dollar", 2),
    CurrencyInfo("EUR", "€", "Euro", 2),
    CurrencyInfo("GBP", "£", "British Pound", 2),
    CurrencyInfo("JPY", "JP¥", "Japanese Yen", 0),
    CurrencyInfo("HKD", "HK$", "Hong Kong Dollar", 2),
    CurrencyInfo("SGD", "S$", "Singapore Dollar", 2),
    CurrencyInfo("AUD", "A$", "Australian Dollar", 2),
    CurrencyInfo("CAD", "C$", "Canadian Dollar", 2),
    CurrencyInfo("KRW", "₩", "South Korean Won", 0),
)

_BY_CODE = {c.code: c for c in _SYSTEM_CURRENCIES}

_CODE_RE = re.compile(r"^[A-Z]{3}$")


def normalize_currency(raw: str | None) -> str | None:
    """Upper-cased code if ``raw`` is a well-formed three-letter code, else None."""
    if raw is None:
        return None
    code = str(raw).strip().upper()
    if not _CODE_RE.match(code):
        return None
    return code


def is_valid_currency_code(raw: str | None) -> bool:
    return normalize_currency(raw) is not None


def is_system_currency(code: str | None) -> bool:
    norm = normalize_currency(code)
    return norm is not None and norm in _BY_CODE


def list_currencies() -> list[CurrencyInfo]:
    return list(_SYSTEM_CURRENCIES)


def system_currency_codes() -> list[str]:
    return [c.code for c in _SYSTEM_CURRENCIES]


def get_currency_info(code: str) -> CurrencyInfo | None:
    norm = normalize_currency(code)
    return _BY_CODE.get(norm) if norm else None
