"""
Financing Batch -- time-driven sweeps over the invoice workflow.

Offer expiry, bid expiry and repayment overdue marking run as sweeps: each
eligible invoice is processed in its own unit of work, so a conflict or
failure on one row is logged and skipped without blocking the rest.
"""
