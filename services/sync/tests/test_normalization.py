from market_sync.services.normalization import (
    CONFIDENCE_STRUCTURED,
    CONFIDENCE_TITLE_ASSUMED,
    CONFIDENCE_TITLE_EXPLICIT,
    cents_to_major,
    clean_size_value,
    extract_listing_size,
    is_plausible_price,
    major_to_minor,
    normalize_style_id,
    parse_major_amount,
    style_ids_match,
)
from market_sync.services.types import SizeSystem


def test_money_conversions():
    assert parse_major_amount("27") == 27.0
    assert parse_major_amount("145.505") == 145.51
    assert parse_major_amount("") is None
    assert cents_to_major("14500") == 145.0
    assert cents_to_major("0") is None
    assert cents_to_major("abc") is None
    assert major_to_minor("189.99") == 18999


def test_plausible_price_rejects_unit_mixups():
    assert is_plausible_price(None, max_price=100_000)
    assert is_plausible_price(150.0, max_price=100_000)
    assert not is_plausible_price(1_450_000.0, max_price=100_000)
    assert not is_plausible_price(-1.0, max_price=100_000)


def test_style_ids():
    assert normalize_style_id(" dd1391 100 ") == "DD1391-100"
    assert style_ids_match("DD1391-100", "dd1391 100")
    assert not style_ids_match("DD1391-100", None)


def test_clean_size_value():
    assert clean_size_value("UK 9.0") == "9"
    assert clean_size_value(" 10.5 ") == "10.5"
    assert clean_size_value("44,5") == "44.5"


def test_structured_variation_size_wins():
    size = extract_listing_size(
        title="Dunk Low US 11",
        variation_aspects=[[{"name": "UK Shoe Size", "value": "9"}], [{"name": "UK Shoe Size", "value": "9"}]],
        item_aspects=None,
        marketplace_id="EBAY_GB",
    )
    assert (size.size, size.system, size.confidence) == ("9", SizeSystem.UK, CONFIDENCE_STRUCTURED)


def test_ambiguous_variations_fall_back_to_title():
    size = extract_listing_size(
        title="Dunk Low UK 8",
        variation_aspects=[[{"name": "UK Shoe Size", "value": "9"}], [{"name": "UK Shoe Size", "value": "10"}]],
        item_aspects=None,
        marketplace_id="EBAY_GB",
    )
    assert (size.size, size.system, size.confidence) == ("8", SizeSystem.UK, CONFIDENCE_TITLE_EXPLICIT)


def test_marketplace_prefers_native_size_system():
    aspects = [{"name": "US Shoe Size", "value": "10"}, {"name": "UK Shoe Size", "value": "9"}]
    gb = extract_listing_size(title=None, variation_aspects=None, item_aspects=aspects, marketplace_id="EBAY_GB")
    us = extract_listing_size(title=None, variation_aspects=None, item_aspects=aspects, marketplace_id="EBAY_US")
    assert gb.size_key == "UK 9"
    assert us.size_key == "US 10"


def test_assumed_title_size_is_low_confidence():
    size = extract_listing_size(
        title="Nike Dunk Low Panda Size 10", variation_aspects=None, item_aspects=None, marketplace_id="EBAY_US"
    )
    assert size.confidence == CONFIDENCE_TITLE_ASSUMED
    assert size.system == SizeSystem.US
    assert extract_listing_size(title="Nike Dunk Low", variation_aspects=None, item_aspects=None, marketplace_id="EBAY_US") is None
