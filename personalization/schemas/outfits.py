from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from personalization.core.tags import (
    color_combo_key,
    normalize_color,
    normalize_item_key,
    normalize_many,
    normalize_one,
    normalize_season,
    normalize_tag,
)
from personalization.recs.types import BlockCategory, RepeatCategory


class OutfitTags(BaseModel):
    """Tags describing an outfit, normalized on the way in.

    Colors become canonical ``#RRGGBB``; styles and occasions become slugs;
    malformed values are dropped with a logged warning.
    """

    colors: List[str] = Field(default_factory=list)
    styles: List[str] = Field(default_factory=list)
    occasion: Optional[str] = None
    season: Optional[str] = None
    items: List[str] = Field(default_factory=list)

    @field_validator("colors", mode="before")
    @classmethod
    def _colors(cls, v):
        return normalize_many(v or [], normalize_color)

    @field_validator("styles", mode="before")
    @classmethod
    def _styles(cls, v):
        return normalize_many(v or [], normalize_tag)

    @field_validator("occasion", mode="before")
    @classmethod
    def _occasion(cls, v):
        return normalize_one(v, normalize_tag)

    @field_validator("season", mode="before")
    @classmethod
    def _season(cls, v):
        return normalize_one(v, normalize_season)

    @property
    def item_keys(self) -> List[str]:
        return normalize_many(self.items, normalize_item_key)

    @property
    def combo_key(self) -> str:
        return color_combo_key(self.colors)

    def block_tags(self) -> Dict[BlockCategory, List[str]]:
        return {
            BlockCategory.COLORS: list(self.colors),
            BlockCategory.STYLES: list(self.styles),
            BlockCategory.ITEMS: self.item_keys,
        }

    def repeat_keys(self) -> Dict[RepeatCategory, str]:
        keys: Dict[RepeatCategory, str] = {}
        if self.colors:
            keys[RepeatCategory.COLOR_COMBO] = self.combo_key
        if self.styles:
            keys[RepeatCategory.STYLE] = self.styles[0]
        if self.occasion:
            keys[RepeatCategory.OCCASION] = self.occasion
        return keys


class CandidateOutfit(OutfitTags):
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class InteractionContext(BaseModel):
    position: Optional[int] = Field(default=None, ge=1, le=3)
    session_id: Optional[str] = None
    dedup_key: Optional[str] = None
    platform: Optional[str] = None
