"""Normalization helpers used at the provider boundary.

Money rule: snapshots carry MAJOR units. StockX already sends decimal strings in
major units ("27" is 27.00); Alias sends integer cents as strings ("14500" is
145.00). Conversion happens here and nowhere else.

Size parsing for sold listings assigns a confidence:
- 1.0: structured aspect (variation or item-level "UK Shoe Size" etc.)
- 0.7: free-text title with an explicit system ("UK 9", "44 EU")
- 0.3: free-text title with an assumed system ("Size 10") or a generic aspect
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import logging
import re

from market_sync.services.types import SizeSystem

logger = logging.getLogger("uvicorn.error")

CONFIDENCE_STRUCTURED = 1.0
CONFIDENCE_TITLE_EXPLICIT = 0.7
CONFIDENCE_TITLE_ASSUMED = 0.3


# ============================================================
# Identifiers
# ============================================================


def normalize_style_id(style_id: str) -> str:
    """Style codes are case-insensitive; store them upper-cased with inner spaces as dashes."""
    return re.sub(r"\s+", "-", (style_id or "").strip()).upper()


def style_ids_match(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    strip = lambda s: re.sub(r"[\s\-]", "", s).upper()  # noqa: E731
    return strip(a) == strip(b)


# ============================================================
# Money
# ============================================================


def parse_major_amount(value: object) -> float | None:
    """Decimal amount in major units ("27", "145.50", 27) -> 27.0. Empty/invalid -> None."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def cents_to_major(value: object) -> float | None:
    """Integer cents as string ("14500") -> 145.0. "0", empty or invalid -> None."""
    if value is None or value == "" or str(value).strip() == "0":
        return None
    try:
        cents = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not cents.is_finite():
        return None
    return float((cents / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def major_to_minor(value: object) -> int | None:
    """Major-unit amount ("189.99") -> minor units (18999)."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_plausible_price(value: float | None, *, max_price: float) -> bool:
    """False for values that look like a unit mix-up (cents stored as major units) or are negative."""
    if value is None:
        return True
    return 0 <= value <= max_price


def parse_iso_date(value: object) -> date | None:
    if not value:
        return None
    s = str(value).strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def parse_iso_datetime(value: object) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None


# ============================================================
# Sizes
# ============================================================


@dataclass(frozen=True)
class ExtractedSize:
    size: str
    system: SizeSystem
    confidence: float
    source: str  # variation | item_aspect | title

    @property
    def size_key(self) -> str:
        if self.system == SizeSystem.UNKNOWN:
            return self.size
        return f"{self.system.value} {self.size}"


_ASPECT_SYSTEMS: tuple[tuple[str, SizeSystem], ...] = (
    ("US Shoe Size", SizeSystem.US),
    ("UK Shoe Size", SizeSystem.UK),
    ("EU Shoe Size", SizeSystem.EU),
)
_GENERIC_ASPECTS = {"Size", "Shoe Size"}
_MARKETPLACE_SYSTEM_ORDER: dict[str, tuple[SizeSystem, ...]] = {
    "EBAY_GB": (SizeSystem.UK, SizeSystem.EU, SizeSystem.US),
    "EBAY_DE": (SizeSystem.EU, SizeSystem.UK, SizeSystem.US),
    "EBAY_FR": (SizeSystem.EU, SizeSystem.UK, SizeSystem.US),
}
_DEFAULT_SYSTEM_ORDER = (SizeSystem.US, SizeSystem.UK, SizeSystem.EU)


def clean_size_value(value: str) -> str:
    """'UK 9.0' -> '9', ' 10.5 ' -> '10.5'."""
    s = (value or "").strip()
    m = re.search(r"\d+(?:[.,]\d+)?", s)
    if not m:
        return s
    num = m.group(0).replace(",", ".")
    if "." in num:
        num = num.rstrip("0").rstrip(".")
    return num


def size_from_aspects(
    aspects: list[dict[str, str]] | None,
    *,
    marketplace_id: str,
    source: str,
) -> ExtractedSize | None:
    """Pick a size from structured aspects, preferring the marketplace's native system."""
    if not aspects:
        return None
    found: dict[SizeSystem, str] = {}
    generic: str | None = None
    for aspect in aspects:
        name = str(aspect.get("name") or "")
        value = str(aspect.get("value") or "").strip()
        if not value:
            continue
        for needle, system in _ASPECT_SYSTEMS:
            if needle in name:
                found.setdefault(system, value)
                break
        else:
            if name in _GENERIC_ASPECTS:
                generic = value

    for system in _MARKETPLACE_SYSTEM_ORDER.get(marketplace_id, _DEFAULT_SYSTEM_ORDER):
        if system in found:
            return ExtractedSize(clean_size_value(found[system]), system, CONFIDENCE_STRUCTURED, source)
    if generic:
        return ExtractedSize(clean_size_value(generic), SizeSystem.UNKNOWN, CONFIDENCE_TITLE_ASSUMED, source)
    return None


_TITLE_EXPLICIT = (
    (SizeSystem.UK, re.compile(r"\bUK\s*(\d{1,2}(?:\.\d)?)\b|\b(\d{1,2}(?:\.\d)?)\s*UK\b", re.I)),
    (SizeSystem.US, re.compile(r"\bUS\s*M?\s*(\d{1,2}(?:\.\d)?)\b|\b(\d{1,2}(?:\.\d)?)\s*US\b", re.I)),
    (SizeSystem.EU, re.compile(r"\bEU\s*(\d{2}(?:[.,]\d)?(?:\s?[123]/3)?)\b|\b(\d{2}(?:[.,]\d)?)\s*EU\b", re.I)),
)
_TITLE_ASSUMED = (
    re.compile(r"\bSize:?\s*(\d{1,2}(?:\.\d)?)\b", re.I),
    re.compile(r"\b(?:Men's|Women's|Mens|Womens)\s+(\d{1,2}(?:\.\d)?)\b", re.I),
)


def size_from_title(title: str | None) -> ExtractedSize | None:
    if not title:
        return None
    for system, pattern in _TITLE_EXPLICIT:
        m = pattern.search(title)
        if m:
            raw = m.group(1) or m.group(2)
            return ExtractedSize(clean_size_value(raw), system, CONFIDENCE_TITLE_EXPLICIT, "title")
    for pattern in _TITLE_ASSUMED:
        m = pattern.search(title)
        if m:
            return ExtractedSize(clean_size_value(m.group(1)), SizeSystem.US, CONFIDENCE_TITLE_ASSUMED, "title")
    return None


def extract_listing_size(
    *,
    title: str | None,
    variation_aspects: list[list[dict[str, str]]] | None,
    item_aspects: list[dict[str, str]] | None,
    marketplace_id: str,
) -> ExtractedSize | None:
    """Best size guess for a sold listing.

    Multi-variation listings only count as structured when every variation agrees
    on one size; otherwise we cannot tell which size actually sold.
    """
    variation_sizes = [
        s
        for s in (
            size_from_aspects(aspects, marketplace_id=marketplace_id, source="variation")
            for aspects in (variation_aspects or [])
        )
        if s is not None
    ]
    if variation_sizes:
        keys = {s.size_key for s in variation_sizes}
        if len(keys) == 1:
            return variation_sizes[0]
        logger.info(f"[sizes] ambiguous variations ({len(keys)} sizes) for title={title!r}")

    item_size = size_from_aspects(item_aspects, marketplace_id=marketplace_id, source="item_aspect")
    if item_size is not None:
        return item_size

    return size_from_title(title)
