import logging
import re
import unicodedata
from typing import Callable, Iterable

from personalization.core.errors import InvalidTagFormat

logger = logging.getLogger("personalization.tags")

ALLOWED_SEASONS = {"spring", "summer", "autumn", "winter", "monsoon"}
SEASON_ALIASES = {"fall": "autumn", "rainy": "monsoon"}

COLOR_NAMES = {
    "black": "#000000",
    "white": "#FFFFFF",
    "gray": "#808080",
    "grey": "#808080",
    "red": "#FF0000",
    "blue": "#0000FF",
    "green": "#008000",
    "yellow": "#FFFF00",
    "orange": "#FFA500",
    "purple": "#800080",
    "pink": "#FFC0CB",
    "brown": "#A52A2A",
    "navy": "#000080",
    "beige": "#F5F5DC",
    "cream": "#FFFDD0",
    "coral": "#FF7F50",
    "burnt-orange": "#CC5500",
    "olive": "#808000",
    "maroon": "#800000",
    "tan": "#D2B48C",
    "teal": "#008080",
}

_HEX_RE = re.compile(r"^#?([0-9a-f]{3}|[0-9a-f]{6})$")
COMBO_SEPARATOR = "|"


def normalize_tag(s: str) -> str:
    s = unicodedata.normalize("NFKD", s or "").encode("ascii", "ignore").decode()
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    if not (1 <= len(s) <= 32):
        raise InvalidTagFormat(f"invalid_length:{s!r}")
    return s


def normalize_color(s: str) -> str:
    """Canonical ``#RRGGBB`` for a hex string or a known color name."""
    raw = (s or "").strip().lower()
    m = _HEX_RE.match(raw)
    if m:
        digits = m.group(1)
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        return f"#{digits.upper()}"
    try:
        name = normalize_tag(raw)
    except InvalidTagFormat:
        raise InvalidTagFormat(f"invalid_color:{s!r}") from None
    if name in COLOR_NAMES:
        return COLOR_NAMES[name]
    raise InvalidTagFormat(f"invalid_color:{s!r}")


def normalize_season(s: str) -> str:
    t = normalize_tag(s)
    t = SEASON_ALIASES.get(t, t)
    if t not in ALLOWED_SEASONS:
        raise InvalidTagFormat(f"invalid_season:{s!r}")
    return t


def normalize_item_key(s: str) -> str:
    """Item descriptors are free text; keys are slugs truncated to 64 chars."""
    s = unicodedata.normalize("NFKD", s or "").encode("ascii", "ignore").decode().lower()
    s = re.sub(r"[^a-z0-9]+", "-", s).strip("-")[:64].strip("-")
    if not s:
        raise InvalidTagFormat("empty_item")
    return s


def normalize_many(xs: Iterable[str], normalizer: Callable[[str], str] = normalize_tag) -> list[str]:
    """Normalize and dedupe, dropping malformed tags with a warning."""
    seen: set[str] = set()
    out: list[str] = []
    for x in xs or []:
        try:
            t = normalizer(x)
        except InvalidTagFormat as e:
            logger.warning("tags: dropped malformed tag value=%r reason=%s", x, e)
            continue
        if t not in seen:
            seen.add(t)
            out.append(t)
    return out


def normalize_one(x: str | None, normalizer: Callable[[str], str] = normalize_tag) -> str | None:
    if not x:
        return None
    vals = normalize_many([x], normalizer)
    return vals[0] if vals else None


def color_combo_key(colors: Iterable[str]) -> str:
    return COMBO_SEPARATOR.join(sorted(set(colors)))


def split_combo_key(key: str) -> set[str]:
    return {c for c in (key or "").split(COMBO_SEPARATOR) if c}
