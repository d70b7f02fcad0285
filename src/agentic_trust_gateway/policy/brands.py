"""Well-known brands and claimed-name matching."""

from __future__ import annotations

import re
from collections.abc import Iterable

from agentic_trust_gateway.common.types import AssuranceLevel, IssuerType
from agentic_trust_gateway.policy.models import WellKnownBrand

# Names shorter than this must match a whole word ("AA", "BofA", "Citi").
PREFIX_MATCH_MIN_LENGTH = 5

_WHITESPACE = re.compile(r"\s+")


def _brand(
    name: str,
    *aliases: str,
    min_assurance: AssuranceLevel = AssuranceLevel.REGULATED_ENTITY,
) -> WellKnownBrand:
    return WellKnownBrand(
        brand_name=name,
        aliases=aliases,
        min_type=IssuerType.CORPORATION,
        min_assurance=min_assurance,
    )


WELL_KNOWN_BRANDS: tuple[WellKnownBrand, ...] = (
    # Technology
    _brand("Amazon", "Amazon.com", "AWS", "Amazon Web Services"),
    _brand("Google", "Google Cloud", "GCP", "Alphabet"),
    _brand("Microsoft", "Microsoft Azure", "Azure"),
    _brand("Apple", "Apple Inc", "Apple Pay"),
    # Banking
    _brand("Bank of America", "BOA", "BofA"),
    _brand("JPMorgan", "JP Morgan", "Chase", "JPMorgan Chase"),
    _brand("Wells Fargo"),
    _brand("Citibank", "Citi", "Citigroup"),
    # Crypto exchanges
    _brand("Coinbase", "Coinbase Pro"),
    _brand("Binance", "Binance US"),
    _brand("Kraken"),
    # Airlines
    _brand("Delta", "Delta Airlines", "Delta Air Lines", min_assurance=AssuranceLevel.BASIC_KYC),
    _brand("American Airlines", "AA", "AmericanAir", min_assurance=AssuranceLevel.BASIC_KYC),
    _brand("United Airlines", "United", min_assurance=AssuranceLevel.BASIC_KYC),
)


def normalize_name(name: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", name.strip().lower())


def _contains(haystack: str, token: str, *, anchored: bool = True) -> bool:
    """True if ``token`` occurs in ``haystack``.

    Short tokens must match a whole word. Longer tokens must start at a word
    boundary when ``anchored``, otherwise any substring counts.
    """
    if not token:
        return False
    if len(token) < PREFIX_MATCH_MIN_LENGTH:
        pattern = rf"(?<![a-z0-9]){re.escape(token)}(?![a-z0-9])"
    elif anchored:
        pattern = rf"(?<![a-z0-9]){re.escape(token)}"
    else:
        return token in haystack
    return re.search(pattern, haystack) is not None


def names_match(claimed: str, candidate: str, *, anchored: bool = True) -> bool:
    """
    Compare a claimed name with a brand name or alias.

    Both are normalized. They match when equal, or when either contains the
    other. Canonical brand names are compared with ``anchored=False`` so that
    "MyAmazon Store" still matches Amazon; aliases stay anchored at a word
    boundary so "Purchase Co" does not match Chase.
    """
    a, b = normalize_name(claimed), normalize_name(candidate)
    if not a or not b:
        return False
    return a == b or _contains(a, b, anchored=anchored) or _contains(b, a, anchored=anchored)


def match_brand(
    claimed_name: str | None,
    brands: Iterable[WellKnownBrand] = WELL_KNOWN_BRANDS,
) -> WellKnownBrand | None:
    """
    Find the well-known brand a claimed name refers to.

    Exact matches win over containment matches. Among containment matches
    the first brand in table order wins.

    Args:
        claimed_name: Brand name claimed by an issuer
        brands: Brand table to search

    Returns:
        The matched brand, or None
    """
    if not claimed_name or not normalize_name(claimed_name):
        return None

    brands = tuple(brands)
    normalized = normalize_name(claimed_name)
    for brand in brands:
        if any(normalize_name(n) == normalized for n in brand.names):
            return brand
    for brand in brands:
        if names_match(normalized, brand.brand_name, anchored=False):
            return brand
        if any(names_match(normalized, alias) for alias in brand.aliases):
            return brand
    return None


def validate_brand_table(brands: Iterable[WellKnownBrand]) -> None:
    """Reject tables where two brands share a normalized name."""
    seen: dict[str, str] = {}
    for brand in brands:
        for name in brand.names:
            key = normalize_name(name)
            if not key:
                raise ValueError(f"{brand.brand_name}: empty brand name or alias")
            owner = seen.setdefault(key, brand.brand_name)
            if owner != brand.brand_name:
                raise ValueError(f"'{name}' is claimed by both {owner} and {brand.brand_name}")
