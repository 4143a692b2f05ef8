"""
Module: invoice_kernel.db.types
Responsibility: Annotated type aliases for column definitions.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    CRITICAL: No floats anywhere.  All monetary amounts use Decimal with
    explicit precision.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Amount = Annotated[Decimal, Numeric(38, 9)]

# Opaque currency tag ("AED", "USD", ...), compared for equality only
CurrencyTag = Annotated[str, String(8)]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]
