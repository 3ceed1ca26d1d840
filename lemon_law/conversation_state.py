"""
Deterministic conversation state tracker.

Why:
LLMs are probabilistic. Eligibility decisions are not.
The model extracts facts; this module decides which facts are still missing
and what the dialogue does next.
"""

import logging
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from lemon_law.brands import normalize_manufacturer
from lemon_law.rules import RuleGroup, get_group_for_brand

logger = logging.getLogger(__name__)

# Order in which missing facts are asked for
FIELD_ORDER = [
    "manufacturer",
    "repair_orders",
    "repair_type",
    "days_out_of_service",
    "vehicle_age_years",
    "mileage",
    "within_warranty",
]

FIELD_LABELS = {
    "manufacturer": "vehicle manufacturer",
    "repair_orders": "number of repair orders",
    "repair_type": "repair type (Engine, Transmission, or Safety Concern)",
    "days_out_of_service": "total days out of service",
    "vehicle_age_years": "vehicle age in years",
    "mileage": "current mileage",
    "within_warranty": "whether the repairs were within the manufacturer warranty",
}


class ControlState(str, Enum):
    """Dialogue control states."""

    COLLECT = "COLLECT"  # Asking for missing facts
    ASSESS = "ASSESS"  # Facts complete, run the rule engine
    END = "END"  # Terminal


class FactRecord(BaseModel):
    """
    Facts about the consumer's vehicle gathered so far.

    Every field is optional until a rule branch needs it. 0 and False are real
    answers; only None and blank strings count as "not provided".
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    manufacturer: str | None = None
    repair_orders: int | None = Field(default=None, ge=0, alias="repairOrders")
    repair_type: str | None = Field(default=None, alias="repairType")
    days_out_of_service: int | None = Field(
        default=None,
        ge=0,
        alias="daysOutOfService",
        validation_alias=AliasChoices("daysOutOfService", "daysOOS", "days_out_of_service"),
    )
    vehicle_age_years: float | None = Field(default=None, ge=0, alias="vehicleAgeYears")
    mileage: int | None = Field(default=None, ge=0)
    within_warranty: bool | None = Field(
        default=None,
        alias="withinWarranty",
        validation_alias=AliasChoices("withinWarranty", "withinMfrWarranty", "within_warranty"),
    )

    def merge(self, partial: "FactRecord") -> "FactRecord":
        """
        Union of two records: provided values in `partial` win, absent ones
        never erase what is already known.
        """
        updates = {
            name: value
            for name, value in partial.model_dump().items()
            if is_provided(value)
        }
        return self.model_copy(update=updates)

    def to_wire(self) -> dict:
        """Camel-cased dict with only the provided fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


def is_provided(value) -> bool:
    """None and blank strings are "not provided"; 0 and False are answers."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def get_group(facts: FactRecord, rule_groups=None) -> RuleGroup | None:
    """Manufacturer group for the record's manufacturer, or None."""
    if not is_provided(facts.manufacturer):
        return None
    brand = normalize_manufacturer(facts.manufacturer)
    return get_group_for_brand(brand, rule_groups)


def missing_fields(facts: FactRecord, group: RuleGroup | None) -> list[str]:
    """
    Required facts still missing for this manufacturer group and repair count.

    The requirement comes from the rules themselves: every rule whose repair
    order range contains the reported count contributes the fields it reads.
    A count no rule covers (e.g. 0 repairs) needs nothing more and goes
    straight to assessment.
    """
    if not is_provided(facts.manufacturer):
        return ["manufacturer"]
    if group is None:
        return []
    if facts.repair_orders is None:
        return ["repair_orders"]

    required = set()
    for rule in group.rules:
        if rule.applies_to_repair_count(facts.repair_orders):
            required.update(rule.required_fields())

    return [
        name for name in FIELD_ORDER if name in required and not is_provided(getattr(facts, name))
    ]


def is_complete(facts: FactRecord, group: RuleGroup | None) -> bool:
    return group is not None and not missing_fields(facts, group)


def resolve_next_state(
    signal: ControlState, facts: FactRecord, rule_groups=None
) -> ControlState:
    """
    Decide the next control state from the extractor's signal and the facts.

    The model's signal is advisory. The facts decide whenever they can:
    - known manufacturer outside every group -> END
    - covered manufacturer -> ASSESS when complete, else COLLECT
    - manufacturer still unknown -> END only if the model says so, else COLLECT
    """
    if is_provided(facts.manufacturer):
        group = get_group(facts, rule_groups)
        if group is None:
            return ControlState.END

        next_state = ControlState.ASSESS if is_complete(facts, group) else ControlState.COLLECT
        if signal != next_state:
            logger.info(
                f"Overriding extractor signal {signal.value} -> {next_state.value} "
                f"(group={group.name}, missing={missing_fields(facts, group)})"
            )
        return next_state

    if signal == ControlState.END:
        return ControlState.END
    return ControlState.COLLECT
