"""
Keyword categorization of headlines.

This is a heuristic: a headline is tested against fixed keyword tables in
priority order and the first table with a hit wins. It knows nothing about
the feed an item came from.
"""
import re
from typing import Dict, List, Pattern, Tuple

from .models.news import Category

# Priority order matters: a headline mentioning both "nvidia" and "war" is tech.
KEYWORDS: List[Tuple[Category, List[str]]] = [
    (Category.TECH, [
        "ai", "artificial intelligence", "tech", "technology", "google",
        "microsoft", "openai", "apple", "amazon", "meta", "nvidia",
    ]),
    (Category.FINANCE, [
        "stock", "market", "finance", "economy", "federal", "reserve",
        "inflation", "interest", "bank", "wall street",
    ]),
    (Category.GEO, [
        "russia", "ukraine", "china", "trump", "biden", "iran", "israel",
        "war", "military", "nato", "europe",
    ]),
    (Category.VC, [
        "funding", "venture", "startup", "investment", "billion",
        "valuation", "series",
    ]),
    (Category.COMMODITY, [
        "oil", "gold", "commodity", "energy", "price", "天然气", "石油", "黄金",
    ]),
    # "stock" is already claimed by finance, so only the index names land here
    (Category.STOCK, ["stock", "nasdaq", "dow"]),
]


def _compile(words: List[str]) -> Pattern:
    """
    ASCII keywords may not touch another ASCII letter or digit (a plural "s"
    aside), so "ai" misses "said" but still hits "AI芯片". CJK keywords match
    anywhere.
    """
    parts = []
    for word in words:
        if word.isascii():
            # \b would treat CJK characters as word characters
            parts.append(rf"(?<![a-z0-9]){re.escape(word)}s?(?![a-z0-9])")
        else:
            parts.append(re.escape(word))
    return re.compile("|".join(parts))


_PATTERNS: Dict[Category, Pattern] = {category: _compile(words) for category, words in KEYWORDS}


def classify(title: str) -> Category:
    """Category for a headline; Category.ALL when nothing matches."""
    lowered = (title or "").lower()
    for category, _ in KEYWORDS:
        if _PATTERNS[category].search(lowered):
            return category
    return Category.ALL
