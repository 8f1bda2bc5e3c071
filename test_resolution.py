"""
Discrepancy Resolution Tests

Pass criteria:
1. Automatic resolution ignores tolerable differences, clears minor ones
   and escalates CRITICAL findings
2. Resolution is idempotent per discrepancy and settings
3. Manual approval turns every resolved outcome into PENDING_APPROVAL
4. Rule-based resolution applies the first matching rule in order
"""

from decimal import Decimal

import pytest

from conftest import make_external, make_internal
from reconciliation.models import (
    Discrepancy,
    DiscrepancySeverity,
    DiscrepancyType,
    ReconciliationSettings,
    ResolutionAction,
)
from reconciliation.resolution import (
    AutomaticDiscrepancyResolutionStrategy,
    ManualReviewDiscrepancyResolutionStrategy,
    ResolutionRule,
    RuleBasedDiscrepancyResolutionStrategy,
)


def amount_mismatch(difference: str, severity=DiscrepancySeverity.LOW) -> Discrepancy:
    internal = make_internal(amount="100.00")
    external = make_external(amount=str(Decimal("100.00") - Decimal(difference)))
    return Discrepancy.create(
        DiscrepancyType.AMOUNT_MISMATCH,
        f"Amount differs by {difference}",
        severity,
        internal_record=internal,
        external_record=external,
        additional_data={"difference": difference},
    )


def date_mismatch(days: float) -> Discrepancy:
    return Discrepancy.create(
        DiscrepancyType.DATE_MISMATCH,
        f"{days} days late",
        DiscrepancySeverity.MEDIUM,
        internal_record=make_internal(),
        external_record=make_external(),
        additional_data={"days_difference": days},
    )


def currency_mismatch(internal_currency="EUR", external_currency="USD") -> Discrepancy:
    return Discrepancy.create(
        DiscrepancyType.CURRENCY_MISMATCH,
        "Currency differs",
        DiscrepancySeverity.HIGH,
        internal_record=make_internal(currency=internal_currency),
        external_record=make_external(currency=external_currency),
    )


def missing(discrepancy_type, amount="50.00", severity=DiscrepancySeverity.MEDIUM) -> Discrepancy:
    if discrepancy_type == DiscrepancyType.MISSING_EXTERNAL:
        return Discrepancy.create(discrepancy_type, "missing", severity, internal_record=make_internal(amount=amount))
    return Discrepancy.create(discrepancy_type, "missing", severity, external_record=make_external(amount=amount))


class TestAutomaticResolution:
    """Tolerance, minor-difference and escalation decisions."""

    @pytest.mark.parametrize("difference,action,resolved", [
        ("0.01", ResolutionAction.IGNORED, True),
        ("0.75", ResolutionAction.AUTO_RESOLVED, True),
        ("1.00", ResolutionAction.AUTO_RESOLVED, True),
        ("2.50", ResolutionAction.MANUAL_REVIEW, False),
    ])
    def test_amount_differences(self, settings, difference, action, resolved):
        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            amount_mismatch(difference), settings
        )

        assert resolution.action == action
        assert resolution.resolved is resolved
        assert resolution.resolved_by == "automatic"

    @pytest.mark.parametrize("days,action", [
        (1.0, ResolutionAction.IGNORED),
        (2.5, ResolutionAction.AUTO_RESOLVED),
        (5.0, ResolutionAction.MANUAL_REVIEW),
    ])
    def test_date_differences(self, settings, days, action):
        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            date_mismatch(days), settings
        )
        assert resolution.action == action

    def test_critical_is_escalated(self, settings):
        discrepancy = missing(DiscrepancyType.MISSING_INTERNAL, "150000.00", DiscrepancySeverity.CRITICAL)

        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(discrepancy, settings)

        assert resolution.action == ResolutionAction.ESCALATED
        assert not resolution.resolved

    def test_missing_records_need_review(self, settings):
        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            missing(DiscrepancyType.MISSING_EXTERNAL), settings
        )
        assert resolution.action == ResolutionAction.MANUAL_REVIEW

    def test_disabled_auto_resolve(self):
        settings = ReconciliationSettings(auto_resolve_minor_discrepancies=False)

        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            amount_mismatch("0.01"), settings
        )

        assert resolution.action == ResolutionAction.MANUAL_REVIEW
        assert not resolution.resolved

    def test_can_auto_resolve(self, settings):
        strategy = AutomaticDiscrepancyResolutionStrategy()
        assert strategy.can_auto_resolve(amount_mismatch("0.50"), settings)
        assert not strategy.can_auto_resolve(amount_mismatch("3.00"), settings)

    def test_suggested_actions_lead_with_choice(self, settings):
        suggestions = AutomaticDiscrepancyResolutionStrategy().get_suggested_actions(
            amount_mismatch("3.00"), settings
        )

        assert suggestions[0] == ResolutionAction.MANUAL_REVIEW
        assert len(suggestions) == len(set(suggestions))
        assert ResolutionAction.SYSTEM_CORRECTION in suggestions


class TestIdempotence:
    """Same discrepancy and settings give the same resolution."""

    def test_repeat_returns_same_resolution(self, settings):
        strategy = AutomaticDiscrepancyResolutionStrategy()
        discrepancy = amount_mismatch("0.50")

        first = strategy.resolve_discrepancy(discrepancy, settings)
        second = strategy.resolve_discrepancy(discrepancy, settings)

        assert first is second

    def test_resolution_id_is_stable_across_instances(self, settings):
        discrepancy = amount_mismatch("0.50")

        a = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(discrepancy, settings)
        b = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(discrepancy, settings)

        assert a.resolution_id == b.resolution_id

    def test_changed_settings_are_not_served_from_cache(self):
        strategy = AutomaticDiscrepancyResolutionStrategy()
        discrepancy = amount_mismatch("0.50")

        lenient = strategy.resolve_discrepancy(discrepancy, ReconciliationSettings(amount_tolerance=Decimal("1")))
        default = strategy.resolve_discrepancy(discrepancy, ReconciliationSettings())

        assert lenient.action == ResolutionAction.IGNORED
        assert default.action == ResolutionAction.AUTO_RESOLVED

    def test_redetected_discrepancy_is_served_from_cache(self, settings):
        """A fresh detection of identical data differs only in detected_at."""
        strategy = AutomaticDiscrepancyResolutionStrategy()

        first = strategy.resolve_discrepancy(amount_mismatch("0.50"), settings)
        second = strategy.resolve_discrepancy(amount_mismatch("0.50"), settings)

        assert first is second

    def test_changed_record_under_same_key_is_resolved_again(self, settings):
        strategy = AutomaticDiscrepancyResolutionStrategy()
        small = amount_mismatch("0.50")
        large = amount_mismatch("10.00")
        assert small.discrepancy_id == large.discrepancy_id

        first = strategy.resolve_discrepancy(small, settings)
        second = strategy.resolve_discrepancy(large, settings)

        assert first.action == ResolutionAction.AUTO_RESOLVED
        assert second.action == ResolutionAction.MANUAL_REVIEW
        assert second.discrepancy.external_record.amount == Decimal("90.00")
        assert first.resolution_id != second.resolution_id


class TestManualApproval:
    """require_manual_approval holds every resolved outcome."""

    def test_resolved_becomes_pending(self):
        settings = ReconciliationSettings(require_manual_approval=True)

        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            amount_mismatch("0.50"), settings
        )

        assert resolution.action == ResolutionAction.PENDING_APPROVAL
        assert not resolution.resolved
        assert resolution.resolution_data["proposed_action"] == "AUTO_RESOLVED"

    def test_unresolved_outcome_unchanged(self):
        settings = ReconciliationSettings(require_manual_approval=True)

        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            amount_mismatch("3.00"), settings
        )

        assert resolution.action == ResolutionAction.MANUAL_REVIEW

    def test_manual_review_strategy_never_resolves(self, settings):
        strategy = ManualReviewDiscrepancyResolutionStrategy()

        resolution = strategy.resolve_discrepancy(amount_mismatch("0.01"), settings)

        assert resolution.action == ResolutionAction.MANUAL_REVIEW
        assert not resolution.resolved
        assert not strategy.can_auto_resolve(amount_mismatch("0.01"), settings)


class TestRuleBasedResolution:
    """Ordered rules with the automatic strategy as fallback."""

    def test_fee_difference_auto_resolved_by_rule(self, settings):
        resolution = RuleBasedDiscrepancyResolutionStrategy().resolve_discrepancy(
            amount_mismatch("2.50"), settings
        )

        assert resolution.action == ResolutionAction.AUTO_RESOLVED
        assert resolution.resolution_data == {"rule": "small_amount_difference"}

    def test_recognised_fx_pair_corrected(self, settings):
        resolution = RuleBasedDiscrepancyResolutionStrategy().resolve_discrepancy(
            currency_mismatch("EUR", "USD"), settings
        )
        assert resolution.action == ResolutionAction.SYSTEM_CORRECTION
        assert resolution.resolved

    def test_unrecognised_pair_falls_back(self, settings):
        resolution = RuleBasedDiscrepancyResolutionStrategy().resolve_discrepancy(
            currency_mismatch("EUR", "JPY"), settings
        )
        assert resolution.action == ResolutionAction.MANUAL_REVIEW
        assert "rule" not in resolution.resolution_data

    def test_missing_external_escalated(self, settings):
        resolution = RuleBasedDiscrepancyResolutionStrategy().resolve_discrepancy(
            missing(DiscrepancyType.MISSING_EXTERNAL), settings
        )
        assert resolution.action == ResolutionAction.ESCALATED
        assert not resolution.resolved

    def test_first_rule_wins(self, settings):
        strategy = RuleBasedDiscrepancyResolutionStrategy()
        strategy.insert_rule(0, ResolutionRule(
            name="ignore_all_amounts",
            predicate=lambda d, s: d.type == DiscrepancyType.AMOUNT_MISMATCH,
            action=ResolutionAction.IGNORED,
            message="ignored",
        ))

        resolution = strategy.resolve_discrepancy(amount_mismatch("2.50"), settings)

        assert resolution.action == ResolutionAction.IGNORED
        assert [r.name for r in strategy.rules][0] == "ignore_all_amounts"

    def test_rule_changes_clear_cache(self, settings):
        strategy = RuleBasedDiscrepancyResolutionStrategy()
        discrepancy = amount_mismatch("2.50")
        assert strategy.resolve_discrepancy(discrepancy, settings).action == ResolutionAction.AUTO_RESOLVED

        assert strategy.remove_rule("small_amount_difference")
        assert not strategy.remove_rule("small_amount_difference")

        assert strategy.resolve_discrepancy(discrepancy, settings).action == ResolutionAction.MANUAL_REVIEW

    def test_add_rule_appends(self):
        strategy = RuleBasedDiscrepancyResolutionStrategy(rules=[])
        strategy.add_rule(ResolutionRule(
            name="late_settlement",
            predicate=lambda d, s: d.type == DiscrepancyType.DATE_MISMATCH,
            action=ResolutionAction.SYSTEM_CORRECTION,
            message="settlement date corrected",
        ))

        resolution = strategy.resolve_discrepancy(date_mismatch(10.0), ReconciliationSettings())

        assert resolution.action == ResolutionAction.SYSTEM_CORRECTION
        assert resolution.resolution_data == {"rule": "late_settlement"}


class TestResolutionLimits:
    """Constants near the decision edges."""

    def test_date_exactly_three_days_auto_resolved(self, settings):
        resolution = AutomaticDiscrepancyResolutionStrategy().resolve_discrepancy(
            date_mismatch(3.0), settings
        )
        assert resolution.action == ResolutionAction.AUTO_RESOLVED
