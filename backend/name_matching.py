"""
Name Matching Utilities

Text normalization and fuzzy matching used to link one artist across the
catalog, ticketing and setlist services when we only know its name, and the
live-recording filters applied to catalog imports.

Functions in this module are stateless and can be used independently.
"""

import re
import logging
import unicodedata
from typing import Any, Dict, List, Optional

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)


# Ticketing listings often bill an act with a tour or support suffix
# e.g. "Nova Ray: The Long Night Tour" or "Nova Ray with special guests"
BILLING_SUFFIX_PATTERNS = [
    r'\s*[:\-]\s*.*\btour\b.*$',
    r'\s+with\s+special\s+guests?.*$',
    r'\s*\((feat\.?|featuring|with)\s+[^)]+\)',
    r'\s+(feat\.?|featuring|ft\.?)\s+.*$',
]


def strip_accents(text: str) -> str:
    """Strip diacritics: 'Beyoncé' -> 'Beyonce'"""
    if not text:
        return text
    decomposed = unicodedata.normalize('NFKD', text)
    return ''.join(c for c in decomposed if not unicodedata.combining(c))


def normalize_for_comparison(text: str) -> str:
    """
    Normalize an artist name for fuzzy comparison
    Removes variations that shouldn't affect matching
    """
    if not text:
        return ""

    text = strip_accents(text).lower()

    for pattern in BILLING_SUFFIX_PATTERNS:
        text = re.sub(pattern, '', text, flags=re.IGNORECASE)

    # Apostrophes become spaces so "Guns N' Roses" matches "Guns N Roses"
    text = text.replace("'", " ")
    text = text.replace("’", " ")
    text = text.replace("‘", " ")
    text = text.replace("`", " ")
    text = text.replace('"', '')

    # Leading article ("The National" vs "National")
    text = re.sub(r'^the\s+', '', text)

    # Normalize "and" vs "&" vs "+"
    text = re.sub(r'\s*[&+]\s*', ' and ', text)

    # Dots in initialisms ("M.I.A." vs "MIA")
    text = text.replace('.', '')

    text = text.replace('–', '-')
    text = text.replace('—', '-')
    text = re.sub(r'\s*-\s*', ' ', text)

    # Remove extra whitespace
    text = ' '.join(text.split())

    return text


def calculate_similarity(text1: str, text2: str) -> float:
    """
    Calculate similarity between two artist names using fuzzy matching.

    Returns a score from 0-100
    """
    if not text1 or not text2:
        return 0

    norm1 = normalize_for_comparison(text1)
    norm2 = normalize_for_comparison(text2)
    if not norm1 or not norm2:
        return 0

    # Primary comparison using token_sort_ratio
    score = fuzz.token_sort_ratio(norm1, norm2)

    # Compare without parenthetical disambiguation ("Nova Ray (US)" vs "Nova Ray")
    if score < 80:
        stripped1 = re.sub(r'\s*\([^)]*\)\s*', ' ', norm1).strip()
        stripped2 = re.sub(r'\s*\([^)]*\)\s*', ' ', norm2).strip()
        if (stripped1 != norm1 or stripped2 != norm2) and stripped1 and stripped2:
            stripped_score = fuzz.token_sort_ratio(stripped1, stripped2)
            if stripped_score > score:
                logger.debug(f"      Parenthetical fallback: {score}% → {stripped_score}%")
                score = stripped_score

    return score


def pick_best_match(name: str, candidates: List[Dict[str, Any]],
                    threshold: float = 90) -> Optional[Dict[str, Any]]:
    """
    Pick the candidate whose 'name' best matches, if it clears the threshold

    Ties keep the earlier candidate (upstream relevance order).

    Args:
        name: Name we are looking for
        candidates: Normalized artist payloads from one service
        threshold: Minimum similarity (0-100)

    Returns:
        The winning candidate or None
    """
    best = None
    best_score = -1
    for candidate in candidates or []:
        score = calculate_similarity(name, candidate.get('name'))
        logger.debug(f"    Candidate '{candidate.get('name')}': {score:.0f}%")
        if score > best_score:
            best, best_score = candidate, score

    if best is None or best_score < threshold:
        logger.debug(f"    No candidate for '{name}' reached {threshold}% (best {max(best_score, 0):.0f}%)")
        return None

    return best


# ============================================================================
# LIVE RECORDINGS
# ============================================================================

# A performance context, not just the word "live" ("Live Wire" is a studio song)
LIVE_TITLE_PATTERNS = [
    re.compile(r'\blive\s+(at|from|in|on)\b', re.IGNORECASE),
    re.compile(r'\bunplugged\b', re.IGNORECASE),
    re.compile(r'\bacoustic\s+(live\s+)?(version|sessions?)\b', re.IGNORECASE),
    re.compile(r'[(\[][^)\]]*\b(live|concert)\b[^)\]]*[)\]]', re.IGNORECASE),
    re.compile(r'\s-\s(.*\s)?(live|concert)\b', re.IGNORECASE),
]

LIVE_ALBUM_PATTERNS = LIVE_TITLE_PATTERNS + [
    re.compile(r'\bconcert\b', re.IGNORECASE),
    re.compile(r'^live\s*([(\[]|$)', re.IGNORECASE),
]


def is_likely_live_title(title: str) -> bool:
    """'Low Orbit (Live at The Fillmore)' -> True, 'Live Wire' -> False"""
    if not title:
        return False
    return any(pattern.search(title) for pattern in LIVE_TITLE_PATTERNS)


def is_likely_live_album(name: str) -> bool:
    """Album names are also flagged by 'concert' anywhere or a bare 'Live' title"""
    if not name:
        return False
    return any(pattern.search(name.strip()) for pattern in LIVE_ALBUM_PATTERNS)
