"""
Invoice Kernel

The persistence and domain core of the invoice lifecycle engine:
- Typed, coded exception hierarchy
- Structured JSON logging with bound request context
- Money values (Decimal only) and an injectable clock
- Append-only payments and a hash-chained status audit trail
- Optimistic versioning plus row locks on invoices
"""

__version__ = "0.1.0"
