"""URL slug helpers."""
import re
import unicodedata
from typing import Collection

AREA_SLUG_MAX_LENGTH = 150
SHOP_SLUG_MAX_LENGTH = 250

_NON_ALNUM = re.compile(r"[^a-z0-9\s-]")
_SEPARATORS = re.compile(r"[\s-]+")


def slugify(text: str, max_length: int = AREA_SLUG_MAX_LENGTH) -> str:
    """Lower-case, strip non-alphanumerics, collapse whitespace to hyphens, cap length."""
    if not text:
        return ""
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    cleaned = _NON_ALNUM.sub("", ascii_text.lower())
    slug = _SEPARATORS.sub("-", cleaned).strip("-")
    return slug[:max_length].rstrip("-")


def composite_shop_slug(base: str, area_slug: str) -> str:
    """``{shop}-in-{area}``, trimming the shop part so the area suffix survives the cap."""
    suffix = f"-in-{area_slug}"
    room = SHOP_SLUG_MAX_LENGTH - len(suffix)
    return f"{base[:max(room, 1)].rstrip('-')}{suffix}"[:SHOP_SLUG_MAX_LENGTH]


def next_free_slug(slug: str, taken: Collection[str]) -> str:
    """Return ``slug`` or the first ``slug-N`` not in ``taken``."""
    if slug not in taken:
        return slug
    counter = 1
    while True:
        suffix = f"-{counter}"
        candidate = f"{slug[:SHOP_SLUG_MAX_LENGTH - len(suffix)]}{suffix}"
        if candidate not in taken:
            return candidate
        counter += 1
