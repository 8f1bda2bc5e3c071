"""Reconciliation strategies and discrepancy analysis.

A ReconciliationStrategy decides which pipeline steps run after matching
and how a matched pair is compared field by field. The DiscrepancyAnalyzer
turns a matching result into typed, severity-graded discrepancies.

Tolerances are inclusive: a difference equal to the tolerance is accepted.
"""

import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Sequence

from core.observability.logging import get_logger
from reconciliation.models import (
    Discrepancy,
    DiscrepancyAnalysisResult,
    DiscrepancySeverity,
    DiscrepancyType,
    ExternalRecord,
    MatchingResult,
    PaymentRecord,
    PaymentStatus,
    ReconciliationSettings,
)
from reconciliation.similarity import days_between, same_calendar_day

logger = get_logger(__name__)

CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")

LOW_SEVERITY_MULTIPLIER = Decimal("5")
CRITICAL_MATERIALITY_MULTIPLIER = Decimal("10")

# Internal statuses that should never have a settlement
_UNSETTLED_STATUSES = {PaymentStatus.FAILED, PaymentStatus.CANCELLED}


def grade_amount_difference(difference: Decimal, tolerance: Decimal) -> DiscrepancySeverity:
    """LOW up to 5x tolerance (inclusive), HIGH beyond."""
    if difference <= tolerance * LOW_SEVERITY_MULTIPLIER:
        return DiscrepancySeverity.LOW
    return DiscrepancySeverity.HIGH


def grade_missing_record(amount: Decimal, settings: ReconciliationSettings) -> DiscrepancySeverity:
    """MEDIUM by default, HIGH above the material threshold, CRITICAL above 10x."""
    material = settings.material_amount_threshold
    value = abs(amount)
    if value > material * CRITICAL_MATERIALITY_MULTIPLIER:
        return DiscrepancySeverity.CRITICAL
    if value > material:
        return DiscrepancySeverity.HIGH
    return DiscrepancySeverity.MEDIUM


# =============================================================================
# Reconciliation strategies
# =============================================================================

class ReconciliationStrategy(ABC):
    """Chooses the pipeline steps and the field comparison rules."""

    strategy_name: str = "base"
    run_analysis: bool = True
    run_resolution: bool = True

    @abstractmethod
    def identify_discrepancies(
        self,
        internal: PaymentRecord,
        external: ExternalRecord,
        settings: ReconciliationSettings,
    ) -> List[Discrepancy]:
        """Compare a matched pair and list every inconsistency."""
        pass

    def is_acceptable_variance(
        self,
        internal: PaymentRecord,
        external: ExternalRecord,
        settings: ReconciliationSettings,
    ) -> bool:
        return not self.identify_discrepancies(internal, external, settings)


class StandardReconciliationStrategy(ReconciliationStrategy):
    """Settings-driven tolerances. Currency mismatches are HIGH."""

    strategy_name = "standard"
    currency_severity = DiscrepancySeverity.HIGH

    def amount_tolerance(self, internal: PaymentRecord, settings: ReconciliationSettings) -> Decimal:
        return settings.amount_tolerance

    def date_tolerance(self, settings: ReconciliationSettings) -> timedelta:
        return settings.date_tolerance

    def identify_discrepancies(
        self,
        internal: PaymentRecord,
        external: ExternalRecord,
        settings: ReconciliationSettings,
    ) -> List[Discrepancy]:
        found = []
        for check in (self._check_amount, self._check_currency, self._check_date,
                      self._check_status, self._check_reference):
            discrepancy = check(internal, external, settings)
            if discrepancy is not None:
                found.append(discrepancy)
        return found

    def _check_amount(self, internal, external, settings):
        tolerance = self.amount_tolerance(internal, settings)
        difference = abs(internal.amount - external.amount)
        if difference <= tolerance:
            return None
        return Discrepancy.create(
            DiscrepancyType.AMOUNT_MISMATCH,
            f"Amount differs by {difference} {internal.currency} "
            f"({internal.amount} vs {external.amount})",
            grade_amount_difference(difference, max(tolerance, settings.amount_tolerance)),
            internal_record=internal,
            external_record=external,
            additional_data={
                "internal_amount": str(internal.amount),
                "external_amount": str(external.amount),
                "difference": str(difference),
                "tolerance": str(tolerance),
            },
        )

    def _check_currency(self, internal, external, settings):
        if internal.currency == external.currency:
            return None
        return Discrepancy.create(
            DiscrepancyType.CURRENCY_MISMATCH,
            f"Currency differs ({internal.currency} vs {external.currency})",
            self.currency_severity,
            internal_record=internal,
            external_record=external,
            additional_data={
                "internal_currency": internal.currency,
                "external_currency": external.currency,
            },
        )

    def _check_date(self, internal, external, settings):
        tolerance = self.date_tolerance(settings)
        days = days_between(internal.transaction_date, external.settlement_date)
        if timedelta(days=days) <= tolerance:
            return None
        return Discrepancy.create(
            DiscrepancyType.DATE_MISMATCH,
            f"Settlement is {days:.1f} days from the transaction date",
            DiscrepancySeverity.MEDIUM,
            internal_record=internal,
            external_record=external,
            additional_data={
                "days_difference": round(days, 4),
                "tolerance_days": tolerance.total_seconds() / 86400.0,
            },
        )

    def _check_status(self, internal, external, settings):
        reported = external.additional_fields.get("status")
        if reported is not None and str(reported).strip().upper() != internal.status.value:
            return Discrepancy.create(
                DiscrepancyType.STATUS_MISMATCH,
                f"External status {reported!r} does not match internal status {internal.status.value}",
                DiscrepancySeverity.MEDIUM,
                internal_record=internal,
                external_record=external,
                additional_data={
                    "internal_status": internal.status.value,
                    "external_status": str(reported),
                },
            )
        if internal.status in _UNSETTLED_STATUSES:
            return Discrepancy.create(
                DiscrepancyType.STATUS_MISMATCH,
                f"Payment is {internal.status.value} internally but was settled externally",
                DiscrepancySeverity.HIGH,
                internal_record=internal,
                external_record=external,
                additional_data={"internal_status": internal.status.value},
            )
        return None

    def _check_reference(self, internal, external, settings):
        return None


class StrictReconciliationStrategy(StandardReconciliationStrategy):
    """Zero tolerance: exact amount, same day, and a referenced id."""

    strategy_name = "strict"

    def amount_tolerance(self, internal, settings):
        return Decimal("0")

    def _check_date(self, internal, external, settings):
        if same_calendar_day(internal.transaction_date, external.settlement_date):
            return None
        days = days_between(internal.transaction_date, external.settlement_date)
        return Discrepancy.create(
            DiscrepancyType.DATE_MISMATCH,
            "Settlement is not on the transaction day",
            DiscrepancySeverity.MEDIUM,
            internal_record=internal,
            external_record=external,
            additional_data={"days_difference": round(days, 4), "tolerance_days": 0.0},
        )

    def _check_reference(self, internal, external, settings):
        text = (external.description or "").lower()
        for identifier in (internal.transaction_id, internal.order_id):
            if identifier and identifier.lower() in text:
                return None
        return Discrepancy.create(
            DiscrepancyType.REFERENCE_MISMATCH,
            "Description references neither the transaction nor the order id",
            DiscrepancySeverity.LOW,
            internal_record=internal,
            external_record=external,
            additional_data={"description": external.description},
        )


class FlexibleReconciliationStrategy(StandardReconciliationStrategy):
    """5% relative amount tolerance, 7-day date window, MEDIUM currency."""

    strategy_name = "flexible"
    currency_severity = DiscrepancySeverity.MEDIUM

    RELATIVE_AMOUNT_TOLERANCE = Decimal("0.05")
    MIN_DATE_TOLERANCE = timedelta(days=7)

    def amount_tolerance(self, internal, settings):
        relative = abs(internal.amount) * self.RELATIVE_AMOUNT_TOLERANCE
        return max(settings.amount_tolerance, relative)

    def date_tolerance(self, settings):
        return max(settings.date_tolerance, self.MIN_DATE_TOLERANCE)


class MatchOnlyReconciliationStrategy(ReconciliationStrategy):
    """Matching only; analysis and resolution are skipped."""

    strategy_name = "match_only"
    run_analysis = False
    run_resolution = False

    def identify_discrepancies(self, internal, external, settings):
        return []


RECONCILIATION_STRATEGIES = {
    StandardReconciliationStrategy.strategy_name: StandardReconciliationStrategy,
    StrictReconciliationStrategy.strategy_name: StrictReconciliationStrategy,
    FlexibleReconciliationStrategy.strategy_name: FlexibleReconciliationStrategy,
    MatchOnlyReconciliationStrategy.strategy_name: MatchOnlyReconciliationStrategy,
}


# =============================================================================
# Discrepancy analyzer
# =============================================================================

class DiscrepancyAnalyzer:
    """Classifies unmatched records and compares matched pairs.

    Every internal record ends up either matched or MISSING_EXTERNAL, and
    every external record either matched or MISSING_INTERNAL. Duplicate and
    invalid-data findings are reported in addition to that partition.
    """

    def __init__(self, settings: ReconciliationSettings, strategy: ReconciliationStrategy = None):
        self.settings = settings
        self.strategy = strategy or StandardReconciliationStrategy()

    def analyze(
        self,
        internal: Sequence[PaymentRecord],
        external: Sequence[ExternalRecord],
        matching_result: MatchingResult,
    ) -> DiscrepancyAnalysisResult:
        matched_internal = {m.internal_record.transaction_id for m in matching_result.matches}
        matched_external = {m.external_record.reference_id for m in matching_result.matches}

        discrepancies: List[Discrepancy] = []

        for record in internal:
            if record.transaction_id not in matched_internal:
                discrepancies.append(self._missing_external(record))

        for record in external:
            if record.reference_id not in matched_external:
                discrepancies.append(self._missing_internal(record))

        for match in matching_result.matches:
            discrepancies.extend(self.strategy.identify_discrepancies(
                match.internal_record, match.external_record, self.settings
            ))

        discrepancies.extend(self._find_duplicates(external))
        discrepancies.extend(self._find_invalid_data(internal, external))

        result = DiscrepancyAnalysisResult.from_discrepancies(discrepancies)
        logger.info(
            f"Analysis found {len(discrepancies)} discrepancies",
            extra_fields={
                "strategy": self.strategy.strategy_name,
                "by_type": {t.value: n for t, n in result.type_counts.items()},
            },
        )
        return result

    def _missing_external(self, record: PaymentRecord) -> Discrepancy:
        return Discrepancy.create(
            DiscrepancyType.MISSING_EXTERNAL,
            f"No external record found for transaction {record.transaction_id}",
            grade_missing_record(record.amount, self.settings),
            internal_record=record,
            additional_data={"amount": str(record.amount), "currency": record.currency},
        )

    def _missing_internal(self, record: ExternalRecord) -> Discrepancy:
        return Discrepancy.create(
            DiscrepancyType.MISSING_INTERNAL,
            f"No internal record found for external reference {record.reference_id}",
            grade_missing_record(record.amount, self.settings),
            external_record=record,
            additional_data={"amount": str(record.amount), "currency": record.currency},
        )

    def _find_duplicates(self, external: Sequence[ExternalRecord]) -> List[Discrepancy]:
        groups: Dict[str, List[ExternalRecord]] = OrderedDict()
        for record in external:
            if record.bank_transaction_id:
                groups.setdefault(record.bank_transaction_id, []).append(record)

        duplicates = []
        for bank_id, records in groups.items():
            first = records[0]
            for record in records[1:]:
                duplicates.append(Discrepancy.create(
                    DiscrepancyType.DUPLICATE_RECORD,
                    f"Bank transaction {bank_id} appears more than once",
                    DiscrepancySeverity.MEDIUM,
                    external_record=record,
                    additional_data={
                        "bank_transaction_id": bank_id,
                        "duplicate_of": first.reference_id,
                    },
                ))
        return duplicates

    def _find_invalid_data(
        self,
        internal: Sequence[PaymentRecord],
        external: Sequence[ExternalRecord],
    ) -> List[Discrepancy]:
        invalid = []
        for record in internal:
            if not CURRENCY_CODE.match(record.currency or ""):
                invalid.append(Discrepancy.create(
                    DiscrepancyType.INVALID_DATA,
                    f"Invalid currency code {record.currency!r}",
                    DiscrepancySeverity.MEDIUM,
                    internal_record=record,
                    additional_data={"field": "currency", "value": record.currency},
                ))
        for record in external:
            if not CURRENCY_CODE.match(record.currency or ""):
                invalid.append(Discrepancy.create(
                    DiscrepancyType.INVALID_DATA,
                    f"Invalid currency code {record.currency!r}",
                    DiscrepancySeverity.MEDIUM,
                    external_record=record,
                    additional_data={"field": "currency", "value": record.currency},
                ))
        return invalid
