"""
Item Matcher -- map noisy OCR item text onto the master item list.

Layered, first hit wins:

  1. Exact match on the normalized form (lowercase, punctuation stripped,
     whitespace collapsed).
  2. Strings of 3 characters or fewer with no exact match: no match.
  3. Substring containment (either direction, the contained side >= 5 chars),
     e.g. "Ketchup" -> "Bulk Ketchup".
  4. Bounded Levenshtein distance, ceiling scaled by input length. For short
     inputs (<= 8 chars) the first three characters must also agree within
     one edit, so "Bun" style fragments cannot drift onto unrelated entries.

A wrong match is worse than no match: every number later attached to the row
inherits the item name. Returns the canonical name from the category's list
or None, never an invented string.

Entry points: ItemMatcher.from_json(path), ItemMatcher.match_item(text, category)
"""
from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from rapidfuzz.distance import Levenshtein

from .config import DEFAULT_ITEMS_PATH
from .errors import VocabularyError
from .ocr_types import WasteCategory

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Text cleanup / normalisation
# ---------------------------------------------------------------------------

# Scripts the engines hallucinate on handwriting strokes: Devanagari,
# Tibetan digits, Hangul (jamo, compatibility jamo, syllables).
_JUNK_SCRIPT_RE = re.compile(
    "[\\u0900-\\u097F\\u0F20-\\u0F33\\u1100-\\u11FF\\u3130-\\u318F\\uAC00-\\uD7AF]"
)
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_NON_ALPHA_RE = re.compile(r"[^A-Z]")

_SHORT_LEN = 3            # <= this: exact match only
_SUBSTRING_MIN_LEN = 5    # contained side must be at least this long
_PREFIX_CHECK_MAX_LEN = 8
_PREFIX_LEN = 3
_PREFIX_MAX_DISTANCE = 1

# Section labels printed inside the item column; never item names.
SUB_HEADERS = frozenset({
    "BUNS", "SAUCES", "BREAKFAST BREAD", "MEAT AND CHICKEN",
    "SALAD AND TOPPINGS", "PREP TABLE", "POTATO PRODUCT", "EGGS",
    "CHEESES", "SEASONINGS", "BREAKFAST MEAT", "SHAKE AND SUNDAE",
    "MISCELLANEOUS", "SMOOTHIE MACHINE", "BREAKFAST SAUCES",
    "MCCAFE AND COFFEE", "POP", "POTATO", "MEAT", "BREAKFAST", "BREAD",
})

# Pre-printed unit words in the SIZE column.
SIZE_KEYWORDS = frozenset({
    "EACH", "BAG", "BOX", "TUBE", "JUG", "BOTTLE", "INNER",
    "CAN", "STICK", "TUB", "MACHINE",
})


def clean_ocr_text(text: Optional[str]) -> str:
    if not text:
        return ""
    cleaned = _JUNK_SCRIPT_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    lowered = _NON_ALNUM_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", lowered).strip()


def max_distance_for(length: int) -> int:
    if length <= 6:
        return 1
    if length <= 10:
        return 2
    if length <= 15:
        return 3
    return 4


def is_sub_header(text: str) -> bool:
    return clean_ocr_text(text).upper() in SUB_HEADERS


def is_size_keyword(text: str) -> bool:
    upper = clean_ocr_text(text).upper()
    if upper in SIZE_KEYWORDS:
        return True
    # "BAG." / "(EACH)" style noise
    return _NON_ALPHA_RE.sub("", upper) in SIZE_KEYWORDS


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

class ItemMatcher:
    def __init__(self, completed_waste: Iterable[str], raw_waste: Iterable[str]):
        self._items: Dict[WasteCategory, List[str]] = {
            WasteCategory.COMPLETED_WASTE: [s for s in completed_waste if s and s.strip()],
            WasteCategory.RAW_WASTE: [s for s in raw_waste if s and s.strip()],
        }
        self._normalized: Dict[WasteCategory, Dict[str, str]] = {}
        for category, items in self._items.items():
            lookup: Dict[str, str] = {}
            for item in items:
                lookup.setdefault(normalize(item), item)
            self._normalized[category] = lookup

    @classmethod
    def from_json(cls, path: Union[str, Path] = DEFAULT_ITEMS_PATH) -> "ItemMatcher":
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise VocabularyError(f"master item list not found: {p}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise VocabularyError(f"master item list unreadable: {p}: {e}") from e

        if not isinstance(data, dict):
            raise VocabularyError("master item list must be a JSON object")
        completed = data.get(WasteCategory.COMPLETED_WASTE.value, [])
        raw = data.get(WasteCategory.RAW_WASTE.value, [])
        if not isinstance(completed, list) or not isinstance(raw, list):
            raise VocabularyError("completedWaste / rawWaste must be lists")
        if not completed and not raw:
            raise VocabularyError("master item list is empty")

        matcher = cls(completed, raw)
        log.info(
            "Loaded master item list: %d completed waste items, %d raw waste items",
            len(matcher._items[WasteCategory.COMPLETED_WASTE]),
            len(matcher._items[WasteCategory.RAW_WASTE]),
        )
        return matcher

    # -- queries ------------------------------------------------------------

    def get_all_items(self, category: WasteCategory) -> List[str]:
        return list(self._items[category])

    def export_for_frontend(self) -> Dict[str, List[str]]:
        return {category.value: list(items) for category, items in self._items.items()}

    def match_item(self, ocr_text: Optional[str], category: WasteCategory) -> Optional[str]:
        cleaned = clean_ocr_text(ocr_text)
        norm = normalize(cleaned)
        if not norm:
            return None

        exact = self._normalized[category].get(norm)
        if exact is not None:
            return exact

        if len(norm) <= _SHORT_LEN:
            return None

        candidates = self._items[category]

        for item in candidates:
            cand = normalize(item)
            if len(norm) >= _SUBSTRING_MIN_LEN and norm in cand:
                log.debug("Substring match: %r -> %r", cleaned, item)
                return item
            if len(cand) >= _SUBSTRING_MIN_LEN and cand in norm:
                log.debug("Substring match: %r -> %r", cleaned, item)
                return item

        return self._fuzzy(norm, candidates, cleaned)

    def _fuzzy(self, norm: str, candidates: List[str], cleaned: str) -> Optional[str]:
        ceiling = max_distance_for(len(norm))
        best: Optional[str] = None
        best_distance = ceiling + 1

        for item in candidates:
            cand = normalize(item)
            distance = Levenshtein.distance(norm, cand, score_cutoff=ceiling)
            if distance > ceiling or distance >= best_distance:
                continue
            if distance > 0 and len(norm) <= _PREFIX_CHECK_MAX_LEN:
                n = min(_PREFIX_LEN, len(norm), len(cand))
                if Levenshtein.distance(norm[:n], cand[:n]) > _PREFIX_MAX_DISTANCE:
                    continue
            best, best_distance = item, distance

        if best is not None:
            log.debug("Fuzzy match: %r -> %r (distance %d)", cleaned, best, best_distance)
        return best


@lru_cache(maxsize=4)
def load_matcher(path: str = str(DEFAULT_ITEMS_PATH)) -> ItemMatcher:
    """Process-wide matcher per vocabulary file (loaded once)."""
    return ItemMatcher.from_json(path)


__all__ = [
    "SUB_HEADERS",
    "SIZE_KEYWORDS",
    "clean_ocr_text",
    "normalize",
    "max_distance_for",
    "is_sub_header",
    "is_size_keyword",
    "ItemMatcher",
    "load_matcher",
]
