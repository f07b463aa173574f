"""
Quote anchoring — locate each feedback item's quote in the document.

Models paraphrase, re-wrap and truncate the passages they quote, so lookup
falls through progressively looser strategies:

  1. exact substring
  2. case-insensitive
  3. whitespace-normalized
  4. case-insensitive + whitespace-normalized
  5. first-3-words ... last-3-words anchors (quotes of 6+ words)
  6. progressively shorter prefixes of the quote
  7. progressively shorter suffixes of the quote

Offsets always refer to the original, un-normalized document.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from forge.models.schemas import FeedbackItem

MIN_QUOTE_LENGTH = 3
ANCHOR_WORDS = 3
SHORTEN_STEP = 5
MIN_SHORTENED_CHARS = 20
MIN_SHORTENED_RATIO = 0.4


@dataclass(frozen=True)
class Match:
    start: int
    end: int


def normalize_with_mapping(text: str) -> Tuple[str, List[int]]:
    """
    Collapse whitespace runs to single spaces and drop leading/trailing
    whitespace. Returns the normalized string and, for every character in
    it, its index in `text`.
    """
    chars: List[str] = []
    pos_map: List[int] = []
    in_whitespace = False
    for i, ch in enumerate(text):
        if ch.isspace():
            if not in_whitespace and chars:
                chars.append(" ")
                pos_map.append(i)
                in_whitespace = True
        else:
            chars.append(ch)
            pos_map.append(i)
            in_whitespace = False

    if chars and chars[-1] == " ":
        chars.pop()
        pos_map.pop()
    return "".join(chars), pos_map


def _map_pos(pos_map: List[int], idx: int) -> int:
    if idx < 0:
        return 0
    if idx >= len(pos_map):
        return pos_map[-1] + 1
    return pos_map[idx]


def _span(pos_map: List[int], idx: int, length: int) -> Match:
    return Match(_map_pos(pos_map, idx), _map_pos(pos_map, idx + length - 1) + 1)


def find_best_match(needle: str, haystack: str) -> Optional[Match]:
    """Best-effort location of `needle` in `haystack`, or None."""
    if not needle or not haystack or len(needle) < MIN_QUOTE_LENGTH:
        return None

    idx = haystack.find(needle)
    if idx != -1:
        return Match(idx, idx + len(needle))

    idx = haystack.lower().find(needle.lower())
    if idx != -1:
        return Match(idx, idx + len(needle))

    norm_needle = " ".join(needle.split())
    if not norm_needle:
        return None
    norm_haystack, pos_map = normalize_with_mapping(haystack)
    if not pos_map:
        return None

    idx = norm_haystack.find(norm_needle)
    if idx != -1:
        return _span(pos_map, idx, len(norm_needle))

    norm_lower = norm_needle.lower()
    haystack_lower = norm_haystack.lower()
    idx = haystack_lower.find(norm_lower)
    if idx != -1:
        return _span(pos_map, idx, len(norm_lower))

    words = norm_lower.split(" ")
    if len(words) >= 2 * ANCHOR_WORDS:
        prefix = " ".join(words[:ANCHOR_WORDS])
        suffix = " ".join(words[-ANCHOR_WORDS:])
        prefix_idx = haystack_lower.find(prefix)
        if prefix_idx != -1:
            suffix_idx = haystack_lower.find(suffix, prefix_idx)
            if suffix_idx != -1 and suffix_idx - prefix_idx < len(norm_needle) * 2:
                return _span(pos_map, prefix_idx, suffix_idx + len(suffix) - prefix_idx)

    min_chars = max(MIN_SHORTENED_CHARS, int(len(norm_lower) * MIN_SHORTENED_RATIO))
    for length in range(len(norm_lower), min_chars - 1, -SHORTEN_STEP):
        idx = haystack_lower.find(norm_lower[:length])
        if idx != -1:
            return _span(pos_map, idx, length)

    for length in range(len(norm_lower), min_chars - 1, -SHORTEN_STEP):
        idx = haystack_lower.find(norm_lower[len(norm_lower) - length:])
        if idx != -1:
            return _span(pos_map, idx, length)

    return None


def compute_document_positions(document: str, items: List[FeedbackItem]) -> Dict[int, int]:
    """Map each item id to the start offset of its quote; unmatched items are omitted."""
    positions: Dict[int, int] = {}
    for item in items:
        if item.id is None:
            continue
        match = find_best_match(item.quote, document)
        if match is not None:
            positions[item.id] = match.start
    return positions
