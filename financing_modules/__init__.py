"""
Financing Modules.

One package per financing concern, each with the same layout:

    models.py     frozen DTOs and status enums
    orm.py        SQLAlchemy models
    workflows.py  lifecycle transition tables
    service.py    flush-only service over the invoice lock

Modules:
    invoices       registration and the guarded invoice state machine
    discounts      buyer discount offers and the funding-type choice
    bidding        financier bids, ranking and selection
    disbursements  early payments, repayments and settlement
"""
