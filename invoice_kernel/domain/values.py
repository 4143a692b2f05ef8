"""
Values -- Immutable, self-validating monetary value object.

Responsibility:
    Provides ``Money``, the single representation of an amount anywhere in
    engine or service logic.  An amount is never separated from its currency
    tag and is never a binary float.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Amounts are ``Decimal``; ``float`` is rejected at construction.
    - Arithmetic and comparison between different currency tags raise
      ``CurrencyMismatchError``.

Failure modes:
    - TypeError on float amounts.
    - ValueError on unparseable amounts or empty currency tags.
    - CurrencyMismatchError when operations mix currency tags.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from invoice_kernel.domain.currency import CurrencyRegistry
from invoice_kernel.exceptions import CurrencyMismatchError


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with an opaque currency tag.  Tags are
        normalized (stripped, uppercased) and compared for equality only.

    Guarantees:
        - Immutable and hashable.
        - amount is always a Decimal (never float).
        - No silent currency mixing in arithmetic or comparison.

    Non-goals:
        - Does NOT perform currency conversion.
        - Does NOT auto-round -- callers must explicitly call .round().
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if isinstance(self.amount, float):
            raise TypeError("Money amount must not be a float; pass Decimal or str")
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount: {self.amount}") from e
        if not self.amount.is_finite():
            raise ValueError(f"Invalid amount: {self.amount}")

        normalized = self.currency.upper().strip() if self.currency else ""
        if not normalized:
            raise ValueError("Money requires a currency tag")
        object.__setattr__(self, "currency", normalized)

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str) -> Money:
        """Factory method for creating Money."""
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        """Create a zero amount in the given currency."""
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def minor_unit(self) -> Decimal:
        return CurrencyRegistry.get_minor_unit(self.currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.amount > Decimal("0")

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's decimal places."""
        rounded = self.amount.quantize(self.minor_unit, rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        if isinstance(factor, (int, str)):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor, currency=self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount >= other.amount

    def max(self, other: Money) -> Money:
        """Larger of two amounts in the same currency."""
        return self if self >= other else other

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"
