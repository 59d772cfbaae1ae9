"""Vietnamese text processing and slug utilities"""

import re
import unicodedata
from typing import Optional

from slugify import slugify


_DIACRITICS_MAP = {
    'à': 'a', 'á': 'a', 'ả': 'a', 'ã': 'a', 'ạ': 'a',
    'ă': 'a', 'ằ': 'a', 'ắ': 'a', 'ẳ': 'a', 'ẵ': 'a', 'ặ': 'a',
    'â': 'a', 'ầ': 'a', 'ấ': 'a', 'ẩ': 'a', 'ẫ': 'a', 'ậ': 'a',
    'đ': 'd',
    'è': 'e', 'é': 'e', 'ẻ': 'e', 'ẽ': 'e', 'ẹ': 'e',
    'ê': 'e', 'ề': 'e', 'ế': 'e', 'ể': 'e', 'ễ': 'e', 'ệ': 'e',
    'ì': 'i', 'í': 'i', 'ỉ': 'i', 'ĩ': 'i', 'ị': 'i',
    'ò': 'o', 'ó': 'o', 'ỏ': 'o', 'õ': 'o', 'ọ': 'o',
    'ô': 'o', 'ồ': 'o', 'ố': 'o', 'ổ': 'o', 'ỗ': 'o', 'ộ': 'o',
    'ơ': 'o', 'ờ': 'o', 'ớ': 'o', 'ở': 'o', 'ỡ': 'o', 'ợ': 'o',
    'ù': 'u', 'ú': 'u', 'ủ': 'u', 'ũ': 'u', 'ụ': 'u',
    'ư': 'u', 'ừ': 'u', 'ứ': 'u', 'ử': 'u', 'ữ': 'u', 'ự': 'u',
    'ỳ': 'y', 'ý': 'y', 'ỷ': 'y', 'ỹ': 'y', 'ỵ': 'y',
    # Uppercase
    'À': 'A', 'Á': 'A', 'Ả': 'A', 'Ã': 'A', 'Ạ': 'A',
    'Ă': 'A', 'Ằ': 'A', 'Ắ': 'A', 'Ẳ': 'A', 'Ẵ': 'A', 'Ặ': 'A',
    'Â': 'A', 'Ầ': 'A', 'Ấ': 'A', 'Ẩ': 'A', 'Ẫ': 'A', 'Ậ': 'A',
    'Đ': 'D',
    'È': 'E', 'É': 'E', 'Ẻ': 'E', 'Ẽ': 'E', 'Ẹ': 'E',
    'Ê': 'E', 'Ề': 'E', 'Ế': 'E', 'Ể': 'E', 'Ễ': 'E', 'Ệ': 'E',
    'Ì': 'I', 'Í': 'I', 'Ỉ': 'I', 'Ĩ': 'I', 'Ị': 'I',
    'Ò': 'O', 'Ó': 'O', 'Ỏ': 'O', 'Õ': 'O', 'Ọ': 'O',
    'Ô': 'O', 'Ồ': 'O', 'Ố': 'O', 'Ổ': 'O', 'Ỗ': 'O', 'Ộ': 'O',
    'Ơ': 'O', 'Ờ': 'O', 'Ớ': 'O', 'Ở': 'O', 'Ỡ': 'O', 'Ợ': 'O',
    'Ù': 'U', 'Ú': 'U', 'Ủ': 'U', 'Ũ': 'U', 'Ụ': 'U',
    'Ư': 'U', 'Ừ': 'U', 'Ứ': 'U', 'Ử': 'U', 'Ữ': 'U', 'Ự': 'U',
    'Ỳ': 'Y', 'Ý': 'Y', 'Ỷ': 'Y', 'Ỹ': 'Y', 'Ỵ': 'Y',
}


def clean_text(text: str) -> str:
    """Collapse whitespace and strip"""
    return re.sub(r'\s+', ' ', text or '').strip()


def remove_diacritics(text: str) -> str:
    """
    Remove Vietnamese diacritics from text.
    Converts "Trấn Thành" -> "Tran Thanh", "Đạo diễn" -> "Dao dien"
    """
    # NFC first so decomposed input ("a" + combining grave) hits the map
    text = unicodedata.normalize('NFC', text or '')
    return ''.join(_DIACRITICS_MAP.get(char, char) for char in text)


def remove_tone_marks(text: str) -> str:
    """Strip any remaining combining marks (tones on non-Vietnamese Latin letters)"""
    decomposed = unicodedata.normalize('NFKD', text or '')
    return ''.join(c for c in decomposed if not unicodedata.combining(c))


def slugify_vietnamese(text: str) -> str:
    """Build a URL-safe slug from a Vietnamese display name.

    Returns an empty string when nothing Latin survives (e.g. CJK names);
    callers needing a guaranteed slug should use `make_slug`.

    Examples:
        "Trấn Thành"         → "tran-thanh"
        "Phim Lẻ: Mai (2024)" → "phim-le-mai-2024"
    """
    text = remove_tone_marks(remove_diacritics(text)).lower()
    text = re.sub(r'[^a-z0-9]+', '-', text)
    return text.strip('-')


def make_slug(text: str, fallback: Optional[str] = None) -> str:
    """Slug with fallbacks so an empty slug never reaches storage.

    1. Vietnamese-aware slug
    2. Plain transliteration ("周杰伦" → "zhou-jie-lun")
    3. `fallback` (e.g. "t-<external id>" or "actor-<generated id>")
    """
    slug = slugify_vietnamese(text)
    if slug:
        return slug

    slug = slugify(remove_diacritics(text or ''), lowercase=True)
    if slug:
        return slug

    if not fallback:
        from movie_aggregator.db.base import new_document_id

        fallback = new_document_id()
    return fallback


def normalize_movie_slug(slug: str) -> str:
    """Normalize a source-provided movie slug before lookup or storage"""
    return slugify_vietnamese(slug)
