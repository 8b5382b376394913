"""Extract order numbers from the "Recebidas" listing response.

The body arrives in one of three shapes, tried in order:

1. a PrimeFaces ``<partial-response>`` envelope, whose results-grid update is
   unwrapped from its CDATA section and parsed as markup;
2. an HTML fragment that still has ``<tr data-ri=…>`` rows, where the order
   number sits in the fourth cell;
3. text already stripped of row structure, scanned for 16–18 digit tokens.

Each strategy returns ``None`` when its shape does not apply so the next one
gets a chance. ``parse_order_ids`` never raises.
"""
from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

RESULTS_GRID_ID = "abas:formRecebidas:tblRecebidas"
PARTIAL_RESPONSE_MARKER = "<partial-response"
ORDER_CELL_INDEX = 3
ORDER_TOKEN_PATTERN = re.compile(r"\b\d{16,18}\b")
_GRID_UPDATE_PATTERN = re.compile(
    r"<update[^>]*id=\"" + re.escape(RESULTS_GRID_ID) + r"\"[^>]*>\s*<!\[CDATA\[(.*?)]]>",
    re.S,
)

Strategy = Callable[[str], Optional[List[str]]]


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def from_partial_response(body: str) -> Optional[List[str]]:
    if PARTIAL_RESPONSE_MARKER not in body:
        return None
    match = _GRID_UPDATE_PATTERN.search(body)
    if not match:
        return []
    return _parse_markup(match.group(1))


def from_table_rows(markup: str) -> Optional[List[str]]:
    if "<tr" not in markup:
        return None
    soup = BeautifulSoup(f"<table>{markup}</table>", "html.parser")
    found: list[str] = []
    for row in soup.select("tr[data-ri]"):
        cells = row.select("td")
        if len(cells) <= ORDER_CELL_INDEX:
            continue
        found.append(cells[ORDER_CELL_INDEX].get_text().strip())
    unique = _unique(found)
    return unique or None


def from_digit_tokens(text: str) -> Optional[List[str]]:
    return _unique(ORDER_TOKEN_PATTERN.findall(text))


MARKUP_STRATEGIES: Sequence[Strategy] = (from_table_rows, from_digit_tokens)


def _parse_markup(markup: str) -> list[str]:
    for strategy in MARKUP_STRATEGIES:
        result = strategy(markup)
        if result is not None:
            return result
    return []


def parse_order_ids(body: str | None) -> list[str]:
    if not body:
        return []
    unwrapped = from_partial_response(body)
    if unwrapped is not None:
        return unwrapped
    return _parse_markup(body)


__all__ = [
    "MARKUP_STRATEGIES",
    "RESULTS_GRID_ID",
    "from_digit_tokens",
    "from_partial_response",
    "from_table_rows",
    "parse_order_ids",
]
