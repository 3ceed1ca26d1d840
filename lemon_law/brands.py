"""
Manufacturer name normalization.

Users type "vw", "chevy", "benz" or "mercedes". The rule table is keyed by
canonical brand names, so every manufacturer string passes through
normalize_manufacturer() before a group lookup.
"""

from lemon_law.rules import brand_aliases, canonical_brands


def normalize_manufacturer(
    raw: str,
    brands: list[str] | None = None,
    aliases: dict[str, str] | None = None,
) -> str:
    """
    Map a free-form manufacturer string to its canonical brand name.

    Lookup order:
    1. alias table (exact, case-insensitive)
    2. canonical brand list (exact, case-insensitive)
    3. first canonical brand whose name contains the input
    4. the input unchanged, so the group lookup reports it as not covered

    Idempotent: a canonical name normalizes to itself.
    """
    if not isinstance(raw, str):
        return raw

    key = raw.strip().lower()
    if not key:
        return raw

    aliases = aliases if aliases is not None else brand_aliases()
    brands = brands if brands is not None else canonical_brands()

    if key in aliases:
        return aliases[key]

    for brand in brands:
        if brand.lower() == key:
            return brand

    for brand in brands:
        if key in brand.lower():
            return brand

    return raw
