"""
Built-in lemon law rule table.
In production, this would be loaded from a reviewed JSON document (see RULES_PATH).

Thresholds follow the California presumption window: 18 months / 18,000 miles
and more than 30 cumulative days out of service.
"""

# Repair types that count toward a Group B claim with fewer than 4 repairs
SERIOUS_REPAIR_TYPES = ["Engine", "Transmission", "Safety Concern"]

LEMON_LAW_RULES = [
    {
        "name": "Group A",
        "manufacturers": [
            "Ford",
            "Chevrolet",
            "GMC",
            "Buick",
            "Cadillac",
            "Chrysler",
            "Dodge",
            "Jeep",
            "Ram",
            "Tesla",
            "Toyota",
            "Lexus",
            "Honda",
            "Acura",
        ],
        "rules": [
            {
                "min_repair_orders": 1,
                "max_repair_orders": 2,
                "repair_type": "any",
                "min_days_out_of_service": 30,
                "max_vehicle_age_years": 1.5,
                "max_mileage": 18000,
                "requires_warranty": False,
            },
            {
                "min_repair_orders": 3,
                "repair_type": "any",
                "min_days_out_of_service": "n/a",
                "requires_warranty": True,
            },
        ],
    },
    {
        "name": "Group B",
        "manufacturers": [
            "Kia",
            "Hyundai",
            "Genesis",
            "Nissan",
            "Infiniti",
            "Volkswagen",
            "Audi",
            "Mercedes Benz",
            "BMW",
            "Mazda",
            "Subaru",
        ],
        "rules": [
            {
                "min_repair_orders": 1,
                "max_repair_orders": 2,
                "repair_type": SERIOUS_REPAIR_TYPES,
                "min_days_out_of_service": 30,
                "max_vehicle_age_years": 1.5,
                "max_mileage": 18000,
                "requires_warranty": False,
            },
            {
                "min_repair_orders": 3,
                "max_repair_orders": 3,
                "repair_type": SERIOUS_REPAIR_TYPES,
                "min_days_out_of_service": "n/a",
                "requires_warranty": True,
            },
            {
                "min_repair_orders": 4,
                "repair_type": "any",
                "min_days_out_of_service": "n/a",
                "requires_warranty": True,
            },
        ],
    },
]

# Free-form spellings users type, mapped to canonical brand names
BRAND_ALIASES = {
    "vw": "Volkswagen",
    "volks": "Volkswagen",
    "mb": "Mercedes Benz",
    "benz": "Mercedes Benz",
    "mercedes": "Mercedes Benz",
    "mercedes-benz": "Mercedes Benz",
    "chevy": "Chevrolet",
    "caddy": "Cadillac",
    "dodge ram": "Ram",
}


def get_rule_table_data():
    """Get the built-in rule table (manufacturer groups in evaluation order)."""
    return LEMON_LAW_RULES


def get_brand_aliases():
    """Get the built-in alias table."""
    return BRAND_ALIASES
