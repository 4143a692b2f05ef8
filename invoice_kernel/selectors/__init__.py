"""Selectors for the invoice kernel (read side)."""

from invoice_kernel.selectors.invoice_selector import InvoiceSelector

__all__ = ["InvoiceSelector"]
