"""
Rule table models and loading.

The rule table is read-only policy data: an ordered list of manufacturer
groups, each holding an ordered list of rules. Order is significant in both
lists (first matching group, then first matching rule wins).
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from data.lemon_law_rules import get_brand_aliases, get_rule_table_data
from lemon_law.config import settings

logger = logging.getLogger(__name__)

ANY_REPAIR_TYPE = "any"
NOT_APPLICABLE = "n/a"


class RuleTableError(ValueError):
    """Raised when a rule table document cannot be parsed."""


class Rule(BaseModel):
    """
    Predicate thresholds for one qualifying scenario.

    Unset thresholds impose no constraint. All bounds are inclusive.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_repair_orders: int | None = Field(default=None, alias="minRepairOrders", ge=0)
    max_repair_orders: int | None = Field(default=None, alias="maxRepairOrders", ge=0)
    repair_type: str | tuple[str, ...] | None = Field(default=None, alias="repairType")
    min_days_out_of_service: float | Literal["n/a"] | None = Field(
        default=None, alias="minDaysOutOfService"
    )
    max_vehicle_age_years: float | None = Field(default=None, alias="maxVehicleAgeYears", ge=0)
    max_mileage: int | None = Field(default=None, alias="maxMileage", ge=0)
    requires_warranty: bool = Field(default=False, alias="requiresWarranty")

    def applies_to_repair_count(self, repair_orders: int) -> bool:
        """Whether a repair order count falls inside this rule's range."""
        if self.min_repair_orders is not None and repair_orders < self.min_repair_orders:
            return False
        if self.max_repair_orders is not None and repair_orders > self.max_repair_orders:
            return False
        return True

    def required_fields(self) -> list[str]:
        """FactRecord fields this rule reads besides manufacturer and repair_orders."""
        fields = []
        if self.repair_type is not None and self.repair_type != ANY_REPAIR_TYPE:
            fields.append("repair_type")
        if self.min_days_out_of_service not in (None, NOT_APPLICABLE):
            fields.append("days_out_of_service")
        if self.max_vehicle_age_years is not None:
            fields.append("vehicle_age_years")
        if self.max_mileage is not None:
            fields.append("mileage")
        if self.requires_warranty:
            fields.append("within_warranty")
        return fields

    @field_validator("repair_type", mode="before")
    @classmethod
    def _normalize_repair_type(cls, value):
        if isinstance(value, list | tuple | set):
            return tuple(value)
        if isinstance(value, str) and value.strip().lower() == ANY_REPAIR_TYPE:
            return ANY_REPAIR_TYPE
        return value

    @field_validator("min_days_out_of_service", mode="before")
    @classmethod
    def _normalize_not_applicable(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("n/a", "na", "not applicable"):
            return NOT_APPLICABLE
        return value


class RuleGroup(BaseModel):
    """A set of canonical manufacturers sharing one ordered rule list."""

    model_config = ConfigDict(frozen=True)

    name: str
    manufacturers: tuple[str, ...]
    rules: tuple[Rule, ...]

    def covers(self, brand: str) -> bool:
        """Case-insensitive membership test for a canonical brand."""
        brand = brand.strip().lower()
        return any(m.lower() == brand for m in self.manufacturers)


def parse_rule_groups(data: list[dict]) -> list[RuleGroup]:
    """
    Parse a rule table document into RuleGroup objects.

    Raises:
        RuleTableError: If the document does not match the RuleGroup/Rule shapes
    """
    if not isinstance(data, list):
        raise RuleTableError("Rule table must be a list of manufacturer groups.")

    try:
        return [RuleGroup.model_validate(group) for group in data]
    except ValidationError as e:
        raise RuleTableError(f"Invalid rule table: {e}") from e


def load_rule_groups_from_file(path: str | Path) -> list[RuleGroup]:
    """Load a JSON rule table from disk."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RuleTableError(f"Cannot read rule table {path}: {e}") from e

    groups = parse_rule_groups(data)
    logger.info(f"Loaded {len(groups)} rule groups from {path}")
    return groups


@lru_cache(maxsize=1)
def get_rule_groups() -> tuple[RuleGroup, ...]:
    """Return the active rule table (RULES_PATH if configured, else built-in)."""
    if settings.rules_path:
        return tuple(load_rule_groups_from_file(settings.rules_path))
    return tuple(parse_rule_groups(get_rule_table_data()))


def get_group_for_brand(brand: str | None, rule_groups=None) -> RuleGroup | None:
    """Return the first group covering a canonical brand, or None."""
    if not brand:
        return None
    for group in rule_groups if rule_groups is not None else get_rule_groups():
        if group.covers(brand):
            return group
    return None


def canonical_brands(rule_groups=None) -> list[str]:
    """All canonical brand names in table order."""
    groups = rule_groups if rule_groups is not None else get_rule_groups()
    return [brand for group in groups for brand in group.manufacturers]


def brand_aliases() -> dict[str, str]:
    """Alias table (lower-cased keys)."""
    return {k.lower(): v for k, v in get_brand_aliases().items()}
