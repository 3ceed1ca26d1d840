"""
Lemon law qualification - the only place where eligibility is decided.

Architectural role
------------------
The language model collects facts and writes prose. It never decides whether a
vehicle qualifies. Every verdict the assistant communicates originates in
check_lemon_law_qualification().
"""

import logging
from typing import Annotated

from pydantic import BaseModel, ConfigDict

from lemon_law.brands import normalize_manufacturer
from lemon_law.conversation_state import FactRecord
from lemon_law.observability import trace_span
from lemon_law.rules import ANY_REPAIR_TYPE, NOT_APPLICABLE, Rule, get_group_for_brand

logger = logging.getLogger(__name__)

QUALIFIED_REASON = "Qualified for lemon law."
NOT_QUALIFIED_REASON = "Not qualified for lemon law."
NOT_COVERED_REASON = "No lemon law rules found for manufacturer: {brand}."


class Verdict(BaseModel):
    """Final qualification determination. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    qualified: bool
    reason: str


def _within_max(value, maximum) -> bool:
    if maximum is None:
        return True
    return value is not None and value <= maximum


def _repair_type_matches(rule: Rule, repair_type: str | None) -> bool:
    allowed = rule.repair_type
    if allowed is None or allowed == ANY_REPAIR_TYPE:
        return True
    if repair_type is None:
        return False
    if isinstance(allowed, str):
        allowed = (allowed,)
    repair_type = repair_type.strip().lower()
    return any(repair_type == option.strip().lower() for option in allowed)


def rule_matches(
    rule: Rule,
    repair_orders: int | None,
    repair_type: str | None,
    days_out_of_service: int | None,
    vehicle_age_years: float | None,
    mileage: int | None,
    within_warranty: bool | None,
) -> bool:
    """
    True when every constraint the rule declares holds.

    A constraint the rule declares but the input lacks is a failed constraint,
    never a satisfied one.
    """
    if rule.min_repair_orders is not None or rule.max_repair_orders is not None:
        if repair_orders is None or not rule.applies_to_repair_count(repair_orders):
            return False

    if not _repair_type_matches(rule, repair_type):
        return False

    if rule.min_days_out_of_service not in (None, NOT_APPLICABLE):
        if days_out_of_service is None or days_out_of_service < rule.min_days_out_of_service:
            return False

    if not _within_max(vehicle_age_years, rule.max_vehicle_age_years):
        return False

    if not _within_max(mileage, rule.max_mileage):
        return False

    if rule.requires_warranty and within_warranty is not True:
        return False

    return True


def first_matching_rule(rules, **facts) -> int | None:
    """Index of the first rule, in declared order, whose constraints all hold."""
    for index, rule in enumerate(rules):
        if rule_matches(rule, **facts):
            return index
    return None


def check_lemon_law_qualification(
    manufacturer: Annotated[str | None, "Vehicle manufacturer, free-form (e.g. 'Ford', 'vw')"],
    repair_orders: Annotated[int | None, "Number of repair orders for the same defect"] = None,
    repair_type: Annotated[str | None, "Repair type (Engine, Transmission, Safety Concern)"] = None,
    days_out_of_service: Annotated[int | None, "Cumulative days out of service"] = None,
    vehicle_age_years: Annotated[float | None, "Vehicle age in years"] = None,
    mileage: Annotated[int | None, "Current odometer reading"] = None,
    within_warranty: Annotated[bool | None, "Repairs within manufacturer warranty"] = None,
    rule_groups=None,
) -> Annotated[Verdict, "Qualification verdict with reason"]:
    """
    Evaluate the lemon law rule table for one vehicle.

    Steps:
    1. Normalize the manufacturer and find its group (first match wins).
       No group -> not covered.
    2. Walk the group's rules in declared order; the first rule whose
       constraints all hold qualifies the vehicle.
    3. No matching rule -> not qualified.

    Guarantees
    ----------
    - deterministic, no I/O
    - never raises for missing or malformed facts; they take the
      not-covered or not-qualified path

    Example:
        >>> check_lemon_law_qualification("Nissan", repair_orders=4, within_warranty=True)
        Verdict(qualified=True, reason='Qualified for lemon law.')
    """
    with trace_span("rule_evaluation", manufacturer=manufacturer) as span:
        brand = normalize_manufacturer(manufacturer) if isinstance(manufacturer, str) else ""
        group = get_group_for_brand(brand, rule_groups)

        if group is None:
            logger.info(f"No rule group for manufacturer={manufacturer!r} (normalized={brand!r})")
            span["qualified"] = False
            return Verdict(qualified=False, reason=NOT_COVERED_REASON.format(brand=brand))

        try:
            index = first_matching_rule(
                group.rules,
                repair_orders=repair_orders,
                repair_type=repair_type,
                days_out_of_service=days_out_of_service,
                vehicle_age_years=vehicle_age_years,
                mileage=mileage,
                within_warranty=within_warranty,
            )
        except (TypeError, AttributeError) as e:
            logger.warning(f"Malformed facts for {brand}, treating as not covered: {e}")
            span["qualified"] = False
            return Verdict(qualified=False, reason=NOT_COVERED_REASON.format(brand=brand))

        if index is not None:
            logger.info(f"Rule {index} of {group.name} matched for {brand}")
            span["qualified"] = True
            return Verdict(qualified=True, reason=QUALIFIED_REASON)

        logger.info(f"No {group.name} rule matched for {brand}")
        span["qualified"] = False
        return Verdict(qualified=False, reason=NOT_QUALIFIED_REASON)


def evaluate_fact_record(facts: FactRecord, rule_groups=None) -> Verdict:
    """Run the rule engine on a cumulative FactRecord."""
    return check_lemon_law_qualification(
        manufacturer=facts.manufacturer,
        repair_orders=facts.repair_orders,
        repair_type=facts.repair_type,
        days_out_of_service=facts.days_out_of_service,
        vehicle_age_years=facts.vehicle_age_years,
        mileage=facts.mileage,
        within_warranty=facts.within_warranty,
        rule_groups=rule_groups,
    )
