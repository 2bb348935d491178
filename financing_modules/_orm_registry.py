"""
ORM model registry.

Imports every module's ORM so ``Base.metadata`` knows all five tables before
``create_tables()`` runs.
"""


def import_all_orm_models() -> None:
    import financing_modules.bidding.orm  # noqa: F401
    import financing_modules.disbursements.orm  # noqa: F401
    import financing_modules.discounts.orm  # noqa: F401
    import financing_modules.invoices.orm  # noqa: F401
