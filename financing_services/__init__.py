"""
Financing Services -- the operation-level API over the financing modules.

``WorkflowOrchestrator`` is the single entry point: one unit of work per
call, scoped to one invoice, returning an ``InvoiceAggregate`` snapshot.
"""

from financing_services.invoice_aggregate import InvoiceAggregate
from financing_services.workflow_orchestrator import BulkOfferResult, WorkflowOrchestrator

__all__ = [
    "BulkOfferResult",
    "InvoiceAggregate",
    "WorkflowOrchestrator",
]
