"""Shared fixtures for the reconciliation test suite."""

import threading
from datetime import datetime
from decimal import Decimal

import pytest

from reconciliation.engine import PaymentReconciliationEngine
from reconciliation.matching import MatchingStrategy, ExactMatchingStrategy
from reconciliation.models import (
    ExternalRecord,
    PaymentRecord,
    PaymentStatus,
    ReconciliationSettings,
)

DAY1 = datetime(2024, 1, 15, 12, 0, 0)


def make_internal(
    transaction_id="TXN001",
    amount="99.99",
    currency="USD",
    order_id="ORDER001",
    when=DAY1,
    status=PaymentStatus.COMPLETED,
    **kwargs,
) -> PaymentRecord:
    return PaymentRecord(
        transaction_id=transaction_id,
        order_id=order_id,
        amount=Decimal(amount),
        currency=currency,
        status=status,
        transaction_date=when,
        customer_id=kwargs.pop("customer_id", "CUST001"),
        merchant_id=kwargs.pop("merchant_id", "MERCH001"),
        **kwargs,
    )


def make_external(
    reference_id="EXT001",
    amount="99.99",
    currency="USD",
    description="Payment for ORDER001",
    when=DAY1,
    **kwargs,
) -> ExternalRecord:
    return ExternalRecord(
        reference_id=reference_id,
        bank_transaction_id=kwargs.pop("bank_transaction_id", f"BANK-{reference_id}"),
        amount=Decimal(amount),
        currency=currency,
        description=description,
        settlement_date=when,
        account_number=kwargs.pop("account_number", "ACC-001"),
        counterparty_name=kwargs.pop("counterparty_name", "Acme Payments"),
        **kwargs,
    )


class GatedMatchingStrategy(MatchingStrategy):
    """Exact matching that blocks until the test opens the gate."""

    strategy_name = "gated"

    def __init__(self):
        self.gate = threading.Event()
        self.entered = threading.Event()
        self._inner = ExactMatchingStrategy()

    def score(self, internal, external):
        return self._inner.score(internal, external)

    def find_match(self, internal, externals):
        self.entered.set()
        if not self.gate.wait(timeout=10):
            raise RuntimeError("gate was never opened")
        return self._inner.find_match(internal, externals)


class ExplodingMatchingStrategy(MatchingStrategy):
    """Matching strategy that always fails."""

    strategy_name = "exploding"

    def score(self, internal, external):
        return 0.0

    def find_match(self, internal, externals):
        raise RuntimeError("matcher exploded")


@pytest.fixture
def settings():
    return ReconciliationSettings()


@pytest.fixture
def engine(settings):
    eng = PaymentReconciliationEngine("ENG-TEST", settings=settings)
    yield eng
    eng.shutdown(wait=True)


@pytest.fixture
def loaded_engine(engine):
    """Engine holding one exact pair, one fee-deducted pair and one orphan."""
    engine.ingest_internal_records([
        make_internal("TXN001", "99.99", order_id="ORDER001"),
        make_internal("TXN002", "150.00", order_id="ORDER002"),
    ])
    engine.ingest_external_records([
        make_external("EXT001", "99.99", description="Payment for ORDER001"),
        make_external("EXT002", "147.50", description="Payment for ORDER002"),
        make_external("EXT-ORPHAN", "42.00", description="Unknown transfer"),
    ])
    return engine
