"""Currency -- minor-unit registry for opaque currency tags."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Precision information about a single currency tag."""

    code: str
    decimal_places: int
    name: str

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount (one minor unit)."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """
    Decimal places per currency tag.

    Currency tags are opaque: they are compared for equality only and never
    converted.  The registry answers one question, how many minor units a
    tag has, and falls back to two decimal places for unknown tags.
    """

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "AED": CurrencyInfo("AED", 2, "UAE Dirham"),
        "SAR": CurrencyInfo("SAR", 2, "Saudi Riyal"),
        "QAR": CurrencyInfo("QAR", 2, "Qatari Riyal"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        # Zero decimal currencies
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        # Three decimal currencies
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "OMR": CurrencyInfo("OMR", 3, "Omani Rial"),
        "JOD": CurrencyInfo("JOD", 3, "Jordanian Dinar"),
    }

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def get_minor_unit(cls, code: str) -> Decimal:
        """One minor unit of the currency (0.01 for AED, 1 for JPY)."""
        return Decimal(1).scaleb(-cls.get_decimal_places(code))
