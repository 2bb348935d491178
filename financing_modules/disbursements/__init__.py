"""
Disbursements Module.

The money legs of a financed invoice: the early payment to the seller and
the financier's face-value repayment.
"""

from financing_modules.disbursements.models import (
    Disbursement,
    DisbursementStatus,
    PayerType,
    Repayment,
    RepaymentStatus,
)
from financing_modules.disbursements.workflows import DISBURSEMENT_WORKFLOW, REPAYMENT_WORKFLOW

__all__ = [
    "Disbursement",
    "DisbursementStatus",
    "PayerType",
    "Repayment",
    "RepaymentStatus",
    "DISBURSEMENT_WORKFLOW",
    "REPAYMENT_WORKFLOW",
]
