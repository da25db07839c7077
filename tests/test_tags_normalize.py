import pytest

from personalization.core.errors import InvalidTagFormat
from personalization.core.tags import (
    color_combo_key,
    normalize_color,
    normalize_item_key,
    normalize_many,
    normalize_season,
    normalize_tag,
    split_combo_key,
)
from personalization.recs.types import BlockCategory, RepeatCategory
from personalization.schemas.outfits import OutfitTags

def test_normalize_basic_slug():
    assert normalize_tag(" Boho/Chic ") == "boho-chic"
    assert normalize_tag("Street   Wear") == "street-wear"

def test_normalize_unicode_and_case():
    assert normalize_tag("Café Crème") == "cafe-creme"

def test_length_bounds():
    with pytest.raises(ValueError):
        normalize_tag("a" * 33)
    assert normalize_tag("a" * 32) == "a" * 32

def test_normalize_many_dedupes_and_drops_malformed():
    assert normalize_many(["Minimal", "minimal", "  minimal  ", "!!!"]) == ["minimal"]

def test_color_hex_and_names():
    assert normalize_color("cc5500") == "#CC5500"
    assert normalize_color("#abc") == "#AABBCC"
    assert normalize_color("Navy") == "#000080"
    assert normalize_color("Burnt Orange") == "#CC5500"
    with pytest.raises(InvalidTagFormat):
        normalize_color("not-a-colour")
    with pytest.raises(InvalidTagFormat):
        normalize_color("#12345")

def test_season_aliases():
    assert normalize_season("Fall") == "autumn"
    assert normalize_season("summer") == "summer"
    with pytest.raises(InvalidTagFormat):
        normalize_season("dry")

def test_item_key_truncates():
    assert normalize_item_key("Floral Maxi Dress!") == "floral-maxi-dress"
    assert len(normalize_item_key("x" * 100)) == 64

def test_combo_key_order_independent():
    assert color_combo_key(["#FFFFFF", "#000080", "#FFFFFF"]) == "#000080|#FFFFFF"
    assert split_combo_key("#000080|#FFFFFF") == {"#000080", "#FFFFFF"}
    assert split_combo_key("") == set()

def test_outfit_tags_normalized_on_ingest():
    tags = OutfitTags(
        colors=["Navy", "#fff", "bogus-colour"],
        styles=["Street Wear", "street-wear", "Classic"],
        occasion="Date Night",
        season="Fall",
        items=["Leather Jacket"],
    )
    assert tags.colors == ["#000080", "#FFFFFF"]
    assert tags.styles == ["street-wear", "classic"]
    assert tags.occasion == "date-night"
    assert tags.season == "autumn"
    assert tags.block_tags()[BlockCategory.ITEMS] == ["leather-jacket"]
    assert tags.repeat_keys() == {
        RepeatCategory.COLOR_COMBO: "#000080|#FFFFFF",
        RepeatCategory.STYLE: "street-wear",
        RepeatCategory.OCCASION: "date-night",
    }

def test_outfit_tags_invalid_season_dropped():
    tags = OutfitTags(colors=[], season="dry")
    assert tags.season is None
    assert tags.repeat_keys() == {}
