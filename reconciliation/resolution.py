"""Discrepancy resolution strategies.

- AutomaticDiscrepancyResolutionStrategy: clears what is within tolerance
  or minor, sends the rest to review, escalates CRITICAL findings
- ManualReviewDiscrepancyResolutionStrategy: never resolves
- RuleBasedDiscrepancyResolutionStrategy: ordered rules first, then the
  automatic behaviour

Resolution is idempotent: a strategy caches each outcome by discrepancy id
and settings fingerprint, and returns the same object when asked again.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from reconciliation.models import (
    Discrepancy,
    DiscrepancyResolution,
    DiscrepancySeverity,
    DiscrepancyType,
    ReconciliationSettings,
    ResolutionAction,
)
from reconciliation.similarity import days_between

MINOR_AMOUNT_LIMIT = Decimal("1.00")
MINOR_DATE_LIMIT = timedelta(days=3)
RULE_AMOUNT_LIMIT = Decimal("5.00")

RECOGNISED_FX_PAIRS = {
    frozenset(pair) for pair in [
        ("USD", "EUR"), ("USD", "GBP"), ("EUR", "GBP"), ("USD", "JPY"),
        ("USD", "CAD"), ("USD", "CHF"), ("EUR", "CHF"), ("USD", "AUD"),
    ]
}

_RESOLUTION_NAMESPACE = uuid.UUID("9e8f3a52-1c7d-4d8e-8a34-6f2b7c1e0d45")

# Discrepancies that always need a person to look at them
_REVIEW_TYPES = {
    DiscrepancyType.MISSING_INTERNAL,
    DiscrepancyType.MISSING_EXTERNAL,
    DiscrepancyType.DUPLICATE_RECORD,
    DiscrepancyType.INVALID_DATA,
}


@dataclass(frozen=True)
class Outcome:
    """A resolution decision before it becomes a DiscrepancyResolution."""
    action: ResolutionAction
    resolved: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


def amount_difference(discrepancy: Discrepancy) -> Optional[Decimal]:
    """Absolute amount difference recorded on (or derivable from) a discrepancy."""
    raw = discrepancy.additional_data.get("difference")
    if raw is not None:
        return Decimal(str(raw))
    if discrepancy.internal_record and discrepancy.external_record:
        return abs(discrepancy.internal_record.amount - discrepancy.external_record.amount)
    return None


def date_difference(discrepancy: Discrepancy) -> Optional[timedelta]:
    """Absolute date difference recorded on (or derivable from) a discrepancy."""
    raw = discrepancy.additional_data.get("days_difference")
    if raw is not None:
        return timedelta(days=float(raw))
    if discrepancy.internal_record and discrepancy.external_record:
        return timedelta(days=days_between(
            discrepancy.internal_record.transaction_date,
            discrepancy.external_record.settlement_date,
        ))
    return None


class DiscrepancyResolutionStrategy(ABC):
    """Base class for resolution policies.

    Subclasses implement decide(); the base class handles caching, manual
    approval and building the resolution record.
    """

    strategy_name: str = "base"

    def __init__(self):
        self._cache: Dict[Tuple[str, str, str], DiscrepancyResolution] = {}
        self._lock = Lock()

    @abstractmethod
    def decide(self, discrepancy: Discrepancy, settings: ReconciliationSettings) -> Outcome:
        """Choose an outcome for one discrepancy."""
        pass

    def resolve_discrepancy(
        self,
        discrepancy: Discrepancy,
        settings: ReconciliationSettings,
    ) -> DiscrepancyResolution:
        content = discrepancy.content_fingerprint()
        key = (discrepancy.discrepancy_id, content, settings.fingerprint())
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            outcome = self._apply_approval(self.decide(discrepancy, settings), settings)
            resolution = DiscrepancyResolution(
                resolution_id=str(uuid.uuid5(
                    _RESOLUTION_NAMESPACE,
                    f"{discrepancy.discrepancy_id}|{content}|{outcome.action.value}|{self.strategy_name}",
                )),
                discrepancy=discrepancy,
                action=outcome.action,
                resolution=outcome.message,
                resolved=outcome.resolved,
                resolved_by=self.strategy_name,
                resolution_data=outcome.data,
            )
            self._cache[key] = resolution
            return resolution

    def can_auto_resolve(self, discrepancy: Discrepancy, settings: ReconciliationSettings) -> bool:
        return self._apply_approval(self.decide(discrepancy, settings), settings).resolved

    def get_suggested_actions(
        self,
        discrepancy: Discrepancy,
        settings: ReconciliationSettings,
    ) -> List[ResolutionAction]:
        """Plausible actions for a reviewer, the strategy's own choice first."""
        chosen = self._apply_approval(self.decide(discrepancy, settings), settings).action
        suggestions = [chosen]
        for action in _SUGGESTIONS.get(discrepancy.type, [ResolutionAction.MANUAL_REVIEW]):
            if action not in suggestions:
                suggestions.append(action)
        return suggestions

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @staticmethod
    def _apply_approval(outcome: Outcome, settings: ReconciliationSettings) -> Outcome:
        if outcome.resolved and settings.require_manual_approval:
            return Outcome(
                action=ResolutionAction.PENDING_APPROVAL,
                resolved=False,
                message=f"Awaiting approval: {outcome.message}",
                data={**outcome.data, "proposed_action": outcome.action.value},
            )
        return outcome


_SUGGESTIONS: Dict[DiscrepancyType, List[ResolutionAction]] = {
    DiscrepancyType.AMOUNT_MISMATCH: [
        ResolutionAction.AUTO_RESOLVED, ResolutionAction.SYSTEM_CORRECTION, ResolutionAction.MANUAL_REVIEW,
    ],
    DiscrepancyType.DATE_MISMATCH: [ResolutionAction.AUTO_RESOLVED, ResolutionAction.IGNORED],
    DiscrepancyType.CURRENCY_MISMATCH: [ResolutionAction.SYSTEM_CORRECTION, ResolutionAction.MANUAL_REVIEW],
    DiscrepancyType.STATUS_MISMATCH: [ResolutionAction.MANUAL_REVIEW, ResolutionAction.SYSTEM_CORRECTION],
    DiscrepancyType.MISSING_INTERNAL: [ResolutionAction.MANUAL_REVIEW, ResolutionAction.ESCALATED],
    DiscrepancyType.MISSING_EXTERNAL: [ResolutionAction.MANUAL_REVIEW, ResolutionAction.ESCALATED],
    DiscrepancyType.DUPLICATE_RECORD: [ResolutionAction.REJECTED, ResolutionAction.MANUAL_REVIEW],
    DiscrepancyType.INVALID_DATA: [ResolutionAction.REJECTED, ResolutionAction.MANUAL_REVIEW],
    DiscrepancyType.REFERENCE_MISMATCH: [ResolutionAction.AUTO_RESOLVED, ResolutionAction.MANUAL_REVIEW],
}


# =============================================================================
# Automatic
# =============================================================================

class AutomaticDiscrepancyResolutionStrategy(DiscrepancyResolutionStrategy):
    """Clears tolerable and minor discrepancies, escalates critical ones."""

    strategy_name = "automatic"

    def decide(self, discrepancy: Discrepancy, settings: ReconciliationSettings) -> Outcome:
        if discrepancy.severity == DiscrepancySeverity.CRITICAL:
            return Outcome(ResolutionAction.ESCALATED, False, "Critical discrepancy escalated")

        if not settings.auto_resolve_minor_discrepancies:
            return Outcome(ResolutionAction.MANUAL_REVIEW, False, "Automatic resolution is disabled")

        if discrepancy.type == DiscrepancyType.AMOUNT_MISMATCH:
            return self._decide_amount(discrepancy, settings)
        if discrepancy.type == DiscrepancyType.DATE_MISMATCH:
            return self._decide_date(discrepancy, settings)
        if discrepancy.type in _REVIEW_TYPES:
            return Outcome(ResolutionAction.MANUAL_REVIEW, False, f"{discrepancy.type.display_name} needs review")
        if discrepancy.severity == DiscrepancySeverity.LOW:
            return Outcome(ResolutionAction.AUTO_RESOLVED, True, "Low severity discrepancy cleared")
        return Outcome(ResolutionAction.MANUAL_REVIEW, False, f"{discrepancy.type.display_name} needs review")

    def _decide_amount(self, discrepancy, settings) -> Outcome:
        difference = amount_difference(discrepancy)
        if difference is None:
            return Outcome(ResolutionAction.MANUAL_REVIEW, False, "Amount difference unknown")
        data = {"difference": str(difference)}
        if difference <= settings.amount_tolerance:
            return Outcome(ResolutionAction.IGNORED, True, "Amount difference within tolerance", data)
        if difference <= MINOR_AMOUNT_LIMIT:
            return Outcome(ResolutionAction.AUTO_RESOLVED, True, f"Minor amount difference of {difference}", data)
        return Outcome(ResolutionAction.MANUAL_REVIEW, False, f"Amount difference of {difference} needs review", data)

    def _decide_date(self, discrepancy, settings) -> Outcome:
        difference = date_difference(discrepancy)
        if difference is None:
            return Outcome(ResolutionAction.MANUAL_REVIEW, False, "Date difference unknown")
        data = {"days_difference": difference.total_seconds() / 86400.0}
        if difference <= settings.date_tolerance:
            return Outcome(ResolutionAction.IGNORED, True, "Date difference within tolerance", data)
        if difference <= MINOR_DATE_LIMIT:
            return Outcome(ResolutionAction.AUTO_RESOLVED, True, "Settlement delay within 3 days", data)
        return Outcome(ResolutionAction.MANUAL_REVIEW, False, "Settlement delay needs review", data)


# =============================================================================
# Manual review
# =============================================================================

class ManualReviewDiscrepancyResolutionStrategy(DiscrepancyResolutionStrategy):
    """Queues every discrepancy for a person."""

    strategy_name = "manual_review"

    def decide(self, discrepancy: Discrepancy, settings: ReconciliationSettings) -> Outcome:
        if settings.require_manual_approval:
            return Outcome(ResolutionAction.PENDING_APPROVAL, False, "Queued for approval")
        return Outcome(ResolutionAction.MANUAL_REVIEW, False, "Queued for manual review")


# =============================================================================
# Rule based
# =============================================================================

@dataclass
class ResolutionRule:
    """An ordered resolution rule.

    predicate receives the discrepancy and the run settings.
    """
    name: str
    predicate: Callable[[Discrepancy, ReconciliationSettings], bool]
    action: ResolutionAction
    message: str
    resolved: bool = True

    def applies_to(self, discrepancy: Discrepancy, settings: ReconciliationSettings) -> bool:
        return bool(self.predicate(discrepancy, settings))


def _is_fx_pair_mismatch(discrepancy: Discrepancy, settings: ReconciliationSettings) -> bool:
    if discrepancy.type != DiscrepancyType.CURRENCY_MISMATCH:
        return False
    if not (discrepancy.internal_record and discrepancy.external_record):
        return False
    pair = frozenset((discrepancy.internal_record.currency, discrepancy.external_record.currency))
    return pair in RECOGNISED_FX_PAIRS


def _is_small_amount_difference(discrepancy: Discrepancy, settings: ReconciliationSettings) -> bool:
    if discrepancy.type != DiscrepancyType.AMOUNT_MISMATCH:
        return False
    difference = amount_difference(discrepancy)
    return difference is not None and difference <= RULE_AMOUNT_LIMIT


def default_rules() -> List[ResolutionRule]:
    return [
        ResolutionRule(
            name="fx_pair_currency_mismatch",
            predicate=_is_fx_pair_mismatch,
            action=ResolutionAction.SYSTEM_CORRECTION,
            message="Currency mismatch on a recognised FX pair corrected by conversion",
        ),
        ResolutionRule(
            name="small_amount_difference",
            predicate=_is_small_amount_difference,
            action=ResolutionAction.AUTO_RESOLVED,
            message="Amount difference of at most 5.00 accepted",
        ),
        ResolutionRule(
            name="escalate_missing_external",
            predicate=lambda d, s: d.type == DiscrepancyType.MISSING_EXTERNAL,
            action=ResolutionAction.ESCALATED,
            message="Internal payment without settlement escalated",
            resolved=False,
        ),
    ]


class RuleBasedDiscrepancyResolutionStrategy(DiscrepancyResolutionStrategy):
    """First applicable rule wins; otherwise behaves like the automatic strategy."""

    strategy_name = "rule_based"

    def __init__(self, rules: Optional[List[ResolutionRule]] = None):
        super().__init__()
        self._rules: List[ResolutionRule] = list(rules) if rules is not None else default_rules()
        self._fallback = AutomaticDiscrepancyResolutionStrategy()

    @property
    def rules(self) -> List[ResolutionRule]:
        return list(self._rules)

    def add_rule(self, rule: ResolutionRule) -> None:
        with self._lock:
            self._rules.append(rule)
            self._cache.clear()

    def insert_rule(self, index: int, rule: ResolutionRule) -> None:
        with self._lock:
            self._rules.insert(index, rule)
            self._cache.clear()

    def remove_rule(self, name: str) -> bool:
        with self._lock:
            before = len(self._rules)
            self._rules = [r for r in self._rules if r.name != name]
            self._cache.clear()
            return len(self._rules) != before

    def decide(self, discrepancy: Discrepancy, settings: ReconciliationSettings) -> Outcome:
        for rule in self._rules:
            if rule.applies_to(discrepancy, settings):
                return Outcome(rule.action, rule.resolved, rule.message, {"rule": rule.name})
        return self._fallback.decide(discrepancy, settings)


RESOLUTION_STRATEGIES = {
    AutomaticDiscrepancyResolutionStrategy.strategy_name: AutomaticDiscrepancyResolutionStrategy,
    ManualReviewDiscrepancyResolutionStrategy.strategy_name: ManualReviewDiscrepancyResolutionStrategy,
    RuleBasedDiscrepancyResolutionStrategy.strategy_name: RuleBasedDiscrepancyResolutionStrategy,
}
