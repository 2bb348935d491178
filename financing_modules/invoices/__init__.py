"""
Invoices Module.

Invoice registration and the invoice state machine: the aggregate root every
other financing module hangs off.
"""

from financing_modules.invoices.models import (
    TERMINAL_STATUSES,
    Invoice,
    InvoiceStatus,
    ProductType,
)
from financing_modules.invoices.workflows import INVOICE_WORKFLOW

__all__ = [
    "Invoice",
    "InvoiceStatus",
    "ProductType",
    "TERMINAL_STATUSES",
    "INVOICE_WORKFLOW",
]
