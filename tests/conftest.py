# tests/conftest.py
"""
Shared fixtures for the waste form test suite.

  matcher          ItemMatcher over the shipped master item list
  five_col_page    one RAW_WASTE_5COL table, headers ITEM/SIZE/OPEN/SWING/CLOSE
                   at x = 100/300/500/650/800, header row y = 40
  full_page        the standard five-table form (2x completed, 5-col, 2x 3-col)
  FakeEngine       scripted OCR engine (no tesseract needed)
"""

import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from wasteform.errors import OCREngineError
from wasteform.item_matcher import ItemMatcher
from wasteform.ocr_types import TextFragment


def frag(text: str, x: int, y: int, w: int = 60, h: int = 20) -> TextFragment:
    return TextFragment(text, x, y, w, h)


class FakeEngine:
    """
    Returns page_fragments when OCR'd at page_size, otherwise the next scripted
    recovery response (a fragment list, or an exception to raise).
    """
    name = "fake"

    def __init__(
        self,
        page_fragments: List[TextFragment],
        page_size: Tuple[int, int] = (1000, 600),
        recoveries: Optional[List[object]] = None,
        fail_pass1: bool = False,
    ):
        self.page_fragments = list(page_fragments)
        self.page_size = page_size
        self.recoveries = list(recoveries or [])
        self.fail_pass1 = fail_pass1
        self.calls: List[Tuple[int, int]] = []

    def detect(self, image) -> List[TextFragment]:
        self.calls.append(image.size)
        if image.size == self.page_size:
            if self.fail_pass1:
                raise OCREngineError("quota exceeded", engine=self.name)
            return list(self.page_fragments)
        if not self.recoveries:
            return []
        nxt = self.recoveries.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return list(nxt)


def up(fragment: TextFragment, factor: float) -> TextFragment:
    """Fragment as an engine would report it on an image upscaled by factor."""
    return TextFragment(
        fragment.text,
        int(round(fragment.x * factor)),
        int(round(fragment.y * factor)),
        int(round(fragment.width * factor)),
        int(round(fragment.height * factor)),
    )


FIVE_COL_HEADERS = [
    frag("ITEM", 100, 40),
    frag("SIZE", 300, 40),
    frag("OPEN", 500, 40),
    frag("SWING", 650, 40),
    frag("CLOSE", 800, 40),
]


def five_col_fragments() -> List[TextFragment]:
    return FIVE_COL_HEADERS + [
        frag("Reg", 80, 200, w=40),
        frag("Bun", 130, 200, w=40),
        frag("45", 510, 204, w=20),
        frag("Each", 300, 200, w=40),
        frag("Coffee", 70, 300),
        frag("Frappe", 140, 302),
        frag("12", 810, 305, w=20),
    ]


def full_page_fragments() -> List[TextFragment]:
    headers = [
        frag("Item", 100, 40),
        frag("Item", 500, 40),
        frag("ITEM", 900, 40),
        frag("SIZE", 1100, 40),
        frag("OPEN", 1300, 40),
        frag("SWING", 1450, 40),
        frag("CLOSE", 1600, 40),
        frag("ITEM", 1900, 40),
        frag("SIZE", 2100, 40),
        frag("COUNT", 2300, 40),
        frag("ITEM", 2600, 40),
        frag("SIZE", 2800, 40),
        frag("COUNT", 3000, 40),
    ]
    data = [
        frag("Bacon", 80, 100),
        frag("12", 250, 105, w=20),
        frag("Reg", 880, 200, w=40),
        frag("Bun", 930, 200, w=40),
        frag("45", 1310, 204, w=20),
        frag("Mayo", 1880, 200, w=40),
        frag("3", 2310, 205, w=15),
    ]
    return headers + data


@pytest.fixture(scope="session")
def matcher() -> ItemMatcher:
    return ItemMatcher.from_json()


@pytest.fixture
def five_col_page() -> List[TextFragment]:
    return five_col_fragments()


@pytest.fixture
def full_page() -> List[TextFragment]:
    return full_page_fragments()
