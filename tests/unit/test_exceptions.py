"""
Tests for financing_kernel.exceptions.

Every error carries a machine-readable ``code`` and the structured fields
callers and logs rely on.
"""

import inspect
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from financing_kernel import exceptions
from financing_kernel.exceptions import (
    BidExpiredError,
    ConcurrencyError,
    ConcurrentModificationError,
    DuplicateDisbursementError,
    ExpiryError,
    FinancingKernelError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    NotFoundError,
    OfferExpiredError,
    ValidationError,
)


def _error_classes():
    return [
        cls for _, cls in inspect.getmembers(exceptions, inspect.isclass)
        if issubclass(cls, FinancingKernelError)
    ]


class TestErrorCodes:
    def test_every_error_has_its_own_code(self):
        classes = _error_classes()
        codes = [cls.code for cls in classes]
        assert len(codes) == len(set(codes))

    def test_codes_are_upper_snake_case(self):
        for cls in _error_classes():
            assert cls.code == cls.code.upper()
            assert " " not in cls.code


class TestStructuredFields:
    def test_invalid_transition_message(self):
        invoice_id = uuid4()
        exc = InvalidTransitionError("Invoice", invoice_id, "settled", "cancel", reason="terminal")
        assert exc.entity_id == str(invoice_id)
        assert exc.current_state == "settled"
        assert "Cannot cancel Invoice" in str(exc)
        assert str(exc).endswith(": terminal")

    def test_validation_error_names_field(self):
        exc = ValidationError("discount_percentage", "must be positive")
        assert exc.field == "discount_percentage"
        assert exc.code == "VALIDATION_ERROR"

    def test_expiry_errors_share_a_base(self):
        at = datetime(2024, 1, 3, tzinfo=timezone.utc)
        assert isinstance(OfferExpiredError(uuid4(), at), ExpiryError)
        assert isinstance(BidExpiredError(uuid4(), at), ExpiryError)
        assert "2024-01-03" in str(OfferExpiredError(uuid4(), at))

    def test_not_found_names_entity(self):
        exc = InvoiceNotFoundError("abc")
        assert isinstance(exc, NotFoundError)
        assert str(exc) == "Invoice not found: abc"

    def test_duplicate_disbursement_fields(self):
        invoice_id, disbursement_id = uuid4(), uuid4()
        exc = DuplicateDisbursementError(invoice_id, disbursement_id)
        assert exc.disbursement_id == str(disbursement_id)
        assert exc.code == "DUPLICATE_DISBURSEMENT"

    def test_concurrent_modification_is_concurrency_error(self):
        with pytest.raises(ConcurrencyError):
            raise ConcurrentModificationError("Invoice", uuid4())
