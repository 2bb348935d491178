"""
Tests for financing_modules.disbursements.service.DisbursementTracker.

Covers exactly-once disbursement per invoice, the completion/failure
lifecycle, repayment bookkeeping and settlement.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from financing_kernel.domain.actor import Actor
from financing_kernel.exceptions import (
    DisbursementNotFoundError,
    DuplicateDisbursementError,
    InvalidActorError,
    InvalidTransitionError,
    ValidationError,
)
from financing_modules.bidding.service import BiddingMarketplace
from financing_modules.disbursements.models import (
    DisbursementStatus,
    PayerType,
    RepaymentStatus,
)
from financing_modules.disbursements.service import DisbursementTracker
from financing_modules.discounts.models import FundingType
from financing_modules.discounts.service import DiscountNegotiator
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.service import InvoiceService

DUE = date(2024, 3, 31)


@pytest.fixture
def services(session, deterministic_clock, config):
    return (
        InvoiceService(session, deterministic_clock, config),
        DiscountNegotiator(session, deterministic_clock, config),
        BiddingMarketplace(session, deterministic_clock, config),
        DisbursementTracker(session, deterministic_clock, config),
    )


@pytest.fixture
def tracker(services):
    return services[3]


def _invoice(invoices, seller, buyer, product_type, total="289100.00", number="INV-1"):
    return invoices.create_invoice(
        seller,
        invoice_number=number,
        issue_date=date(2024, 1, 1),
        due_date=DUE,
        total_amount=Decimal(total),
        seller_id=seller.actor_id,
        buyer_id=buyer.actor_id,
        product_type=product_type,
    )


@pytest.fixture
def self_funded(services, seller, buyer):
    """ACCEPTED invoice with a SELF_FUNDED 2% offer."""
    invoices, negotiator, _, _ = services
    invoice = _invoice(invoices, seller, buyer, ProductType.DYNAMIC_DISCOUNTING)
    offer = negotiator.create_offer(invoice, buyer, Decimal("2"), date(2024, 2, 1))
    negotiator.accept_offer(offer, invoice, seller)
    negotiator.select_funding_type(offer, invoice, buyer, FundingType.SELF_FUNDED)
    return invoice, offer


@pytest.fixture
def bid_selected(services, seller, buyer, financiers, deterministic_clock):
    """DD_EARLY_PAYMENT invoice with a selected 1.5% / 0.25% bid."""
    invoices, negotiator, marketplace, _ = services
    invoice = _invoice(invoices, seller, buyer, ProductType.DD_EARLY_PAYMENT, total="500000.00")
    offer = negotiator.create_offer(invoice, buyer, Decimal("2"), date(2024, 2, 1))
    negotiator.accept_offer(offer, invoice, seller)
    negotiator.select_funding_type(offer, invoice, buyer, FundingType.FINANCIER_FUNDED)
    marketplace.open_for_bidding(invoice, buyer, offer)
    bid = marketplace.submit_bid(
        invoice, financiers[0], Decimal("1.5"), Decimal("0.25"),
        deterministic_clock.now() + timedelta(days=1),
    )
    marketplace.select_bid(bid, invoice, buyer)
    return invoice, bid


class TestBuyerFunded:
    def test_authorize_records_net_amount(self, tracker, self_funded, buyer, seller):
        invoice, offer = self_funded
        disbursement = tracker.authorize_payment(offer, invoice, buyer, " ACC-1 ")
        assert disbursement.amount == Decimal("283318.00")
        assert disbursement.payer_id == buyer.actor_id
        assert disbursement.recipient_id == seller.actor_id
        assert disbursement.bank_account_id == "ACC-1"
        assert disbursement.status == DisbursementStatus.PENDING.value
        assert invoice.status == InvoiceStatus.DISBURSED.value
        assert tracker.repayments_for(invoice.id) == []

    def test_bank_account_required(self, tracker, self_funded, buyer):
        invoice, offer = self_funded
        with pytest.raises(ValidationError):
            tracker.authorize_payment(offer, invoice, buyer, "  ")

    def test_exactly_once(self, tracker, self_funded, buyer):
        invoice, offer = self_funded
        tracker.authorize_payment(offer, invoice, buyer, "ACC-1")
        with pytest.raises(DuplicateDisbursementError):
            tracker.record_disbursement(invoice, buyer, PayerType.BUYER)

    def test_amount_must_match_payable(self, tracker, self_funded, buyer):
        invoice, _ = self_funded
        with pytest.raises(ValidationError) as exc_info:
            tracker.record_disbursement(invoice, buyer, PayerType.BUYER, amount=Decimal("283000.00"))
        assert exc_info.value.field == "amount"

    def test_seller_cannot_fund(self, tracker, self_funded, seller):
        invoice, _ = self_funded
        with pytest.raises(ValidationError):
            tracker.record_disbursement(invoice, seller, PayerType.SELLER)

    def test_completion_settles(self, tracker, self_funded, buyer, deterministic_clock):
        invoice, offer = self_funded
        disbursement = tracker.authorize_payment(offer, invoice, buyer, "ACC-1")
        tracker.mark_disbursed(disbursement, invoice, buyer, "TXN-1")
        assert disbursement.status == DisbursementStatus.DISBURSED.value
        tracker.mark_completed(disbursement, invoice, buyer, "TXN-1")
        assert disbursement.status == DisbursementStatus.COMPLETED.value
        assert disbursement.completed_at == deterministic_clock.now()
        assert invoice.status == InvoiceStatus.SETTLED.value

    def test_completion_needs_reference(self, tracker, self_funded, buyer):
        invoice, offer = self_funded
        disbursement = tracker.authorize_payment(offer, invoice, buyer, "ACC-1")
        with pytest.raises(ValidationError):
            tracker.mark_completed(disbursement, invoice, buyer, "")

    def test_outsider_cannot_complete(self, tracker, self_funded, buyer):
        invoice, offer = self_funded
        disbursement = tracker.authorize_payment(offer, invoice, buyer, "ACC-1")
        with pytest.raises(InvalidActorError):
            tracker.mark_completed(disbursement, invoice, Actor.buyer(uuid4()), "TXN-1")

    def test_failure_reopens_invoice(self, tracker, self_funded, buyer):
        invoice, offer = self_funded
        disbursement = tracker.authorize_payment(offer, invoice, buyer, "ACC-1")
        tracker.mark_failed(disbursement, invoice, buyer, "bank rejected transfer")
        assert disbursement.status == DisbursementStatus.FAILED.value
        assert invoice.status == InvoiceStatus.ACCEPTED.value
        retry = tracker.authorize_payment(offer, invoice, buyer, "ACC-2")
        assert retry.id != disbursement.id
        assert tracker.live_disbursement(invoice.id) is retry

    def test_completed_cannot_fail(self, tracker, self_funded, buyer):
        invoice, offer = self_funded
        disbursement = tracker.authorize_payment(offer, invoice, buyer, "ACC-1")
        tracker.mark_completed(disbursement, invoice, buyer, "TXN-1")
        with pytest.raises(InvalidTransitionError):
            tracker.mark_failed(disbursement, invoice, buyer, "too late")


class TestFinancierFunded:
    def test_disbursement_creates_repayment(self, tracker, bid_selected, buyer, financiers):
        invoice, bid = bid_selected
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        assert disbursement.amount == Decimal("491250.00")
        assert disbursement.payer_id == financiers[0].actor_id
        assert disbursement.bid_id == bid.id

        repayment = tracker.live_repayment(disbursement.id)
        assert repayment.amount == Decimal("500000.00")
        assert repayment.due_date == DUE
        assert repayment.payer_id == buyer.actor_id
        assert repayment.payee_id == financiers[0].actor_id
        assert repayment.payer_type == PayerType.BUYER.value

    def test_repayment_recorded_once(self, tracker, bid_selected, buyer):
        invoice, _ = bid_selected
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        with pytest.raises(InvalidTransitionError):
            tracker.record_repayment_due(disbursement, invoice, buyer)

    def test_settles_after_completion_and_repayment(self, tracker, bid_selected, buyer, financiers):
        invoice, _ = bid_selected
        financier = financiers[0]
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        tracker.mark_completed(disbursement, invoice, financier, "TXN-F1")
        assert invoice.status == InvoiceStatus.DISBURSED.value

        repayment = tracker.live_repayment(disbursement.id)
        with pytest.raises(InvalidActorError):
            tracker.mark_repayment_paid(repayment, invoice, buyer)
        tracker.mark_repayment_paid(repayment, invoice, financier, "TXN-R1")
        assert repayment.status == RepaymentStatus.PAID.value
        assert invoice.status == InvoiceStatus.SETTLED.value

    def test_repayment_before_completion_waits(self, tracker, bid_selected, buyer, financiers):
        invoice, _ = bid_selected
        financier = financiers[0]
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        tracker.mark_disbursed(disbursement, invoice, financier, "TXN-F1")
        tracker.mark_repayment_paid(tracker.live_repayment(disbursement.id), invoice, financier)
        assert invoice.status == InvoiceStatus.DISBURSED.value
        tracker.mark_completed(disbursement, invoice, financier, "TXN-F1")
        assert invoice.status == InvoiceStatus.SETTLED.value

    def test_repayment_refused_until_funds_sent(self, tracker, bid_selected, buyer, financiers):
        invoice, _ = bid_selected
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        repayment = tracker.live_repayment(disbursement.id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            tracker.mark_repayment_paid(repayment, invoice, financiers[0])
        assert "has not been sent" in exc_info.value.reason
        assert repayment.status == RepaymentStatus.PENDING.value
        assert repayment.paid_at is None
        assert invoice.status == InvoiceStatus.DISBURSED.value

    def test_paid_repayment_blocks_failure(self, tracker, bid_selected, buyer, financiers):
        invoice, _ = bid_selected
        financier = financiers[0]
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        tracker.mark_disbursed(disbursement, invoice, financier)
        repayment = tracker.live_repayment(disbursement.id)
        tracker.mark_repayment_paid(repayment, invoice, financier)

        with pytest.raises(InvalidTransitionError):
            tracker.mark_failed(disbursement, invoice, financier, "reversed by bank")
        assert invoice.status == InvoiceStatus.DISBURSED.value
        assert disbursement.status == DisbursementStatus.DISBURSED.value
        assert repayment.status == RepaymentStatus.PAID.value

    def test_failure_cancels_repayment(self, tracker, bid_selected, buyer, financiers):
        invoice, _ = bid_selected
        financier = financiers[0]
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        repayment = tracker.live_repayment(disbursement.id)
        tracker.mark_failed(disbursement, invoice, financier, "insufficient funds")
        assert repayment.status == RepaymentStatus.CANCELLED.value
        assert invoice.status == InvoiceStatus.BID_SELECTED.value

        retry = tracker.record_disbursement(invoice, financier, PayerType.FINANCIER)
        assert tracker.live_repayment(retry.id).status == RepaymentStatus.PENDING.value

    def test_only_payer_marks_failed(self, tracker, bid_selected, buyer):
        invoice, _ = bid_selected
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        with pytest.raises(InvalidActorError):
            tracker.mark_failed(disbursement, invoice, buyer, "not mine to fail")

    def test_overdue(self, tracker, bid_selected, buyer, admin):
        invoice, _ = bid_selected
        disbursement = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        repayment = tracker.live_repayment(disbursement.id)
        assert not tracker.mark_overdue(repayment, invoice, admin, DUE)
        assert tracker.mark_overdue(repayment, invoice, admin, DUE + timedelta(days=1))
        assert repayment.status == RepaymentStatus.OVERDUE.value
        assert not tracker.mark_overdue(repayment, invoice, admin, DUE + timedelta(days=2))

    def test_list_repayments_by_party(self, tracker, bid_selected, buyer, seller, financiers):
        invoice, _ = bid_selected
        tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        assert len(tracker.list_repayments(buyer)) == 1
        assert len(tracker.list_repayments(financiers[0], upcoming=True)) == 1
        assert tracker.list_repayments(financiers[1]) == []
        assert tracker.list_repayments(seller) == []

    def test_list_disbursements_by_party(
        self, tracker, bid_selected, buyer, seller, financiers, admin,
    ):
        invoice, _ = bid_selected
        first = tracker.record_disbursement(invoice, buyer, PayerType.FINANCIER)
        tracker.mark_failed(first, invoice, financiers[0], "insufficient funds")
        retry = tracker.record_disbursement(invoice, financiers[0], PayerType.FINANCIER)

        assert {d.id for d in tracker.list_disbursements(financiers[0])} == {first.id, retry.id}
        assert {d.id for d in tracker.list_disbursements(seller)} == {first.id, retry.id}
        failed = tracker.list_disbursements(financiers[0], DisbursementStatus.FAILED)
        assert [d.id for d in failed] == [first.id]
        assert tracker.list_disbursements(buyer) == []
        assert tracker.list_disbursements(financiers[1]) == []
        assert len(tracker.list_disbursements(admin)) == 2


class TestGstBacked:
    def test_seller_repays(self, services, tracker, seller, buyer, financiers, deterministic_clock):
        invoices, _, marketplace, _ = services
        invoice = _invoice(invoices, seller, buyer, ProductType.GST_BACKED, total="100000.00")
        invoices.submit(invoice, seller, has_pending_offer=False)
        bid = marketplace.submit_bid(
            invoice, financiers[0], Decimal("2"), Decimal("0"),
            deterministic_clock.now() + timedelta(days=1),
        )
        marketplace.select_bid(bid, invoice, seller)
        disbursement = tracker.record_disbursement(invoice, seller, PayerType.FINANCIER)
        repayment = tracker.live_repayment(disbursement.id)
        assert repayment.payer_type == PayerType.SELLER.value
        assert repayment.payer_id == seller.actor_id


class TestLookup:
    def test_missing_disbursement(self, tracker):
        with pytest.raises(DisbursementNotFoundError):
            tracker.load_disbursement(uuid4())
