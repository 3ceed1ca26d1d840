"""
Tests for the lemon law rule engine (check_lemon_law_qualification).
"""

import pytest

from lemon_law.conversation_state import FactRecord
from lemon_law.rules import Rule, parse_rule_groups
from lemon_law.tools import (
    NOT_QUALIFIED_REASON,
    QUALIFIED_REASON,
    Verdict,
    check_lemon_law_qualification,
    evaluate_fact_record,
    first_matching_rule,
)


class TestReferenceCases:
    """Reference cases the assessment must reproduce exactly."""

    def test_ford_two_repairs_qualifies(self):
        """Group A, 2 repairs, 35 days out of service, 1 year, 15k miles."""
        result = check_lemon_law_qualification(
            manufacturer="Ford",
            repair_orders=2,
            repair_type="Any",
            days_out_of_service=35,
            vehicle_age_years=1,
            mileage=15000,
            within_warranty=False,
        )

        assert result == Verdict(qualified=True, reason="Qualified for lemon law.")

    def test_kia_electric_repairs_not_qualified(self):
        """Group B, 3 repairs of a type outside the serious set, no warranty."""
        result = check_lemon_law_qualification(
            manufacturer="Kia",
            repair_orders=3,
            repair_type="Electric",
            days_out_of_service=0,
            vehicle_age_years=2,
            mileage=70000,
            within_warranty=False,
        )

        assert result.qualified is False
        assert result.reason == "Not qualified for lemon law."

    def test_nissan_four_repairs_under_warranty_qualifies(self):
        """Group B, 4 repairs under warranty needs nothing else."""
        result = check_lemon_law_qualification(
            manufacturer="Nissan", repair_orders=4, within_warranty=True
        )

        assert result.qualified is True
        assert result.reason == "Qualified for lemon law."

    @pytest.mark.parametrize(
        "extra",
        [
            {},
            {"repair_type": "Electric"},
            {"days_out_of_service": 0, "vehicle_age_years": 9, "mileage": 150000},
        ],
    )
    def test_nissan_ignores_other_optional_fields(self, extra):
        result = check_lemon_law_qualification(
            manufacturer="Nissan", repair_orders=4, within_warranty=True, **extra
        )

        assert result.qualified is True


class TestManufacturerCoverage:
    """Group lookup and the not-covered path."""

    @pytest.mark.parametrize(
        "fields",
        [
            {},
            {"repair_orders": 4, "within_warranty": True},
            {
                "repair_orders": 2,
                "repair_type": "Engine",
                "days_out_of_service": 60,
                "vehicle_age_years": 0.5,
                "mileage": 100,
            },
        ],
    )
    def test_unknown_manufacturer_never_qualifies(self, fields):
        result = check_lemon_law_qualification(manufacturer="Ferrari", **fields)

        assert result.qualified is False
        assert result.reason == "No lemon law rules found for manufacturer: Ferrari."

    def test_missing_manufacturer_is_not_covered(self):
        result = check_lemon_law_qualification(
            manufacturer=None, repair_orders=4, within_warranty=True
        )

        assert result.qualified is False
        assert result.reason.startswith("No lemon law rules found for manufacturer")

    def test_alias_resolves_to_group(self):
        """'vw' is Volkswagen, a Group B brand."""
        result = check_lemon_law_qualification(
            manufacturer="vw", repair_orders=4, within_warranty=True
        )

        assert result.reason == QUALIFIED_REASON

    def test_manufacturer_lookup_is_case_insensitive(self):
        result = check_lemon_law_qualification(
            manufacturer="  tOyOtA ", repair_orders=3, within_warranty=True
        )

        assert result.qualified is True

    def test_malformed_facts_take_not_covered_path(self):
        """Wrongly typed facts must not raise."""
        result = check_lemon_law_qualification(
            manufacturer="Ford", repair_orders="two", within_warranty=True
        )

        assert result.qualified is False
        assert result.reason == "No lemon law rules found for manufacturer: Ford."


class TestGroupARules:
    """Ford, Toyota, Honda ..."""

    def test_bounds_are_inclusive(self):
        result = check_lemon_law_qualification(
            manufacturer="Ford",
            repair_orders=1,
            days_out_of_service=30,
            vehicle_age_years=1.5,
            mileage=18000,
        )

        assert result.qualified is True

    def test_mileage_over_limit(self):
        result = check_lemon_law_qualification(
            manufacturer="Ford",
            repair_orders=2,
            days_out_of_service=35,
            vehicle_age_years=1,
            mileage=18001,
        )

        assert result.reason == NOT_QUALIFIED_REASON

    def test_missing_days_out_of_service_fails_rule(self):
        """A missing input never satisfies a constraint."""
        result = check_lemon_law_qualification(
            manufacturer="Ford", repair_orders=2, vehicle_age_years=1, mileage=15000
        )

        assert result.qualified is False

    def test_zero_days_is_a_real_value(self):
        result = check_lemon_law_qualification(
            manufacturer="Ford",
            repair_orders=2,
            days_out_of_service=0,
            vehicle_age_years=1,
            mileage=15000,
        )

        assert result.reason == NOT_QUALIFIED_REASON

    def test_three_repairs_need_warranty(self):
        assert check_lemon_law_qualification(
            manufacturer="Honda", repair_orders=3, within_warranty=True
        ).qualified
        assert not check_lemon_law_qualification(
            manufacturer="Honda", repair_orders=3, within_warranty=False
        ).qualified
        assert not check_lemon_law_qualification(manufacturer="Honda", repair_orders=3).qualified

    def test_zero_repairs_not_qualified(self):
        result = check_lemon_law_qualification(
            manufacturer="Ford", repair_orders=0, within_warranty=True
        )

        assert result.reason == NOT_QUALIFIED_REASON


class TestGroupBRules:
    """Kia, Hyundai, Nissan, Volkswagen ..."""

    def test_serious_repair_type_is_case_insensitive(self):
        result = check_lemon_law_qualification(
            manufacturer="Hyundai",
            repair_orders=2,
            repair_type="safety concern",
            days_out_of_service=31,
            vehicle_age_years=1,
            mileage=9000,
        )

        assert result.qualified is True

    def test_missing_repair_type_fails(self):
        result = check_lemon_law_qualification(
            manufacturer="Hyundai",
            repair_orders=2,
            days_out_of_service=31,
            vehicle_age_years=1,
            mileage=9000,
        )

        assert result.qualified is False

    def test_three_transmission_repairs_under_warranty(self):
        result = check_lemon_law_qualification(
            manufacturer="Kia", repair_orders=3, repair_type="Transmission", within_warranty=True
        )

        assert result.qualified is True

    def test_warranty_must_be_strictly_true(self):
        result = check_lemon_law_qualification(
            manufacturer="Kia", repair_orders=5, within_warranty=None
        )

        assert result.qualified is False


class TestRuleOrder:
    """First declared matching rule wins."""

    def test_first_of_overlapping_rules_wins(self):
        broad = Rule(min_repair_orders=1, requires_warranty=True)
        narrow = Rule(min_repair_orders=2, max_repair_orders=2, requires_warranty=True)

        facts = {
            "repair_orders": 2,
            "repair_type": None,
            "days_out_of_service": None,
            "vehicle_age_years": None,
            "mileage": None,
            "within_warranty": True,
        }

        assert first_matching_rule([broad, narrow], **facts) == 0
        assert first_matching_rule([narrow, broad], **facts) == 0
        assert first_matching_rule([Rule(min_repair_orders=5), broad], **facts) == 1

    def test_first_matching_group_wins(self):
        groups = parse_rule_groups(
            [
                {
                    "name": "Strict",
                    "manufacturers": ["Ford"],
                    "rules": [{"min_repair_orders": 10}],
                },
                {
                    "name": "Lenient",
                    "manufacturers": ["Ford"],
                    "rules": [{"min_repair_orders": 1}],
                },
            ]
        )

        result = check_lemon_law_qualification(
            manufacturer="Ford", repair_orders=2, rule_groups=groups
        )

        assert result.reason == NOT_QUALIFIED_REASON

    def test_not_applicable_days_is_not_evaluated(self):
        rule = Rule(min_repair_orders=1, min_days_out_of_service="N/A")

        assert first_matching_rule(
            [rule],
            repair_orders=1,
            repair_type=None,
            days_out_of_service=None,
            vehicle_age_years=None,
            mileage=None,
            within_warranty=None,
        ) == 0


def test_evaluate_fact_record():
    facts = FactRecord(manufacturer="mercedes", repair_orders=4, within_warranty=True)

    assert evaluate_fact_record(facts).qualified is True


def test_verdict_is_immutable():
    verdict = check_lemon_law_qualification(manufacturer="Ford", repair_orders=0)

    with pytest.raises(Exception):
        verdict.qualified = True
