"""
Text and path naming helpers shared by the decision engine, enrichment
and move executor.
"""

import re
import time
import uuid
from typing import Optional

from unidecode import unidecode

_INVALID_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')
_REPEATED_UNDERSCORES = re.compile(r'_{2,}')
_WHITESPACE = re.compile(r'\s+')
_NON_ALNUM = re.compile(r'[^0-9a-z]+')


def generate_id() -> str:
    """Time-ordered unique id: <epoch ms>_<8 hex chars>"""
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def sanitize_component(value: str, max_length: Optional[int] = None) -> str:
    """
    Make a string safe as a single path component.

    Invalid characters and control characters become '_', runs of '_' and
    whitespace collapse, leading dots and trailing dots/spaces are removed.
    """
    cleaned = _INVALID_CHARS.sub('_', str(value))
    cleaned = _REPEATED_UNDERSCORES.sub('_', cleaned)
    cleaned = _WHITESPACE.sub(' ', cleaned).strip()
    cleaned = cleaned.lstrip('.').rstrip('. ')

    if max_length and len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip('. ')

    return cleaned


def normalize_text(value: Optional[str]) -> str:
    """Lower-case alphanumerics only, accents folded; used for matching and cache keys"""
    if not value:
        return ""
    folded = unidecode(str(value)).lower()
    return _NON_ALNUM.sub('', folded)


def tokenize(value: Optional[str]) -> set:
    if not value:
        return set()
    folded = unidecode(str(value)).lower()
    return {t for t in _NON_ALNUM.split(folded) if t}


def parse_year(value) -> Optional[int]:
    """First plausible 4-digit year in a tag or API value"""
    if value is None:
        return None
    if isinstance(value, int):
        return value if 1000 <= value <= 2999 else None
    match = re.search(r'(1[89]\d\d|20\d\d)', str(value))
    return int(match.group(1)) if match else None


def catalog_prefix(catalog_number: Optional[str]) -> Optional[str]:
    """Catalog number without its trailing sequence digits ('WARP123' -> 'WARP')"""
    if not catalog_number:
        return None
    prefix = re.sub(r'[\s\-_.]*\d+[A-Za-z]?$', '', catalog_number.strip())
    return prefix or None
