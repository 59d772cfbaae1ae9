"""Mapping of source-specific values onto the canonical vocabulary"""

import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from bs4 import BeautifulSoup

from movie_aggregator.utils.vietnamese import remove_diacritics, slugify_vietnamese

UPDATING_TIME = "Đang cập nhật"

MOVIE_TYPE_MAP = {
    "phim lẻ": "single",
    "phim bộ": "series",
    "tv shows": "tvshows",
    "phim hoạt hình": "hoathinh",
    "single": "single",
    "series": "series",
    "tvshows": "tvshows",
    "hoathinh": "hoathinh",
}

# 4K > FHD > HD > SD > CAM
QUALITY_RANK = {
    "4k": 5,
    "fhd": 4,
    "fullhd": 4,
    "hd": 3,
    "sd": 2,
    "cam": 1,
}

_QUALITY_ALIASES = {
    "4k": "4k",
    "fhd": "fhd",
    "full hd": "fhd",
    "fullhd": "fhd",
    "hd": "hd",
    "hd 720p": "hd",
    "^hd": "hd",
    "sd": "sd",
    "360p": "sd",
    "cam": "cam",
}

_LANGUAGE_ALIASES = {
    "việt nam": "vietsub",
    "vietsub": "vietsub",
    "vietsub (ai)": "vietsub",
    "1": "vietsub",
    "lồng tiếng": "lồng tiếng",
    "lồng tiếng việt": "lồng tiếng",
    "thuyết minh": "thuyết minh",
    "vietsub + thuyết minh": "vietsub, thuyết minh",
    "vietsub + tm": "vietsub, thuyết minh",
    "thuyết minh + lồng tiếng": "thuyết minh, lồng tiếng",
    "nosub": "chưa có phụ đề",
    "engsub": "phụ đề tiếng anh",
    "vietsub + lt": "vietsub, lồng tiếng",
    "vietsub + lồng tiếng": "vietsub, lồng tiếng",
    "vietsub + thuyết minh + lồng tiếng": "vietsub, thuyết minh, lồng tiếng",
}

_TIME_WORDS = {
    "gio": "tiếng",
    "tieng": "tiếng",
    "phut": "phút",
    "giay": "giây",
    "tap": "tập",
}


def map_quality(quality: Optional[str]) -> Optional[str]:
    """Map a source quality label onto 4k/fhd/hd/sd/cam (unknown labels pass through lowercased)"""
    if not quality:
        return None
    key = quality.strip().lower()
    return _QUALITY_ALIASES.get(key, key)


def quality_rank(quality: Optional[str]) -> int:
    return QUALITY_RANK.get((quality or "").strip().lower(), 0)


def best_quality(existing: Optional[str], incoming: Optional[str]) -> Optional[str]:
    """Keep whichever quality ranks higher; ties keep the existing value"""
    if not existing:
        return incoming
    if not incoming:
        return existing
    return incoming if quality_rank(incoming) > quality_rank(existing) else existing


def map_language(language: Optional[str]) -> Optional[str]:
    if language is None:
        return None
    key = " ".join(language.strip().lower().split())
    return _LANGUAGE_ALIASES.get(key, key)


def map_status(status: Optional[str]) -> str:
    """ongoing/completed/trailer pass through, everything else is 'updating'"""
    value = (status or "").strip().lower()
    if value in ("ongoing", "completed", "trailer"):
        return value
    return "updating"


def map_movie_type(movie_type: Optional[str]) -> Optional[str]:
    if not movie_type:
        return None
    return MOVIE_TYPE_MAP.get(movie_type.strip().lower())


def _normalize_time_words(text: str) -> str:
    normalized = remove_diacritics(text.strip()).lower()
    words = []
    for word in normalized.split():
        words.append(word if word.isdigit() else _TIME_WORDS.get(word, word))
    return " ".join(words)


def _convert_single_time(part: str) -> str:
    hours = 0.0
    minutes = 0.0
    seconds = 0.0

    if ":" in part:
        pieces = [p.strip() for p in part.split(":")]
        numbers = [int(p) if p.isdigit() else 0 for p in pieces]
        if len(numbers) == 3:
            hours, minutes, seconds = numbers
        elif len(numbers) == 2:
            minutes, seconds = numbers
    else:
        hour_match = re.search(r"(\d+(?:\.\d+)?)\s*(?:g|h|gio|hour|tieng|tiếng)", part, re.IGNORECASE)
        minute_match = re.search(r"(\d+(?:\.\d+)?)\s*(?:m|p|ph|phut|phút|min)", part, re.IGNORECASE)
        second_match = re.search(r"(\d+(?:\.\d+)?)\s*(?:s|giay|giây|sec)", part, re.IGNORECASE)

        hours = float(hour_match.group(1)) if hour_match else 0.0
        minutes = float(minute_match.group(1)) if minute_match else 0.0
        seconds = float(second_match.group(1)) if second_match else 0.0

        # 1.5h -> 1 hour 30 minutes
        if hours % 1:
            minutes += (hours % 1) * 60
            hours = int(hours)

        if not (hour_match or minute_match or second_match):
            number = re.match(r"\s*(\d+(?:\.\d+)?)", part)
            minutes = float(number.group(1)) if number else 0.0

    if seconds >= 30:
        minutes += 1
    minutes = round(minutes)
    hours = int(hours)
    if minutes >= 60:
        hours += minutes // 60
        minutes %= 60

    if hours == 0 and minutes == 0 and seconds == 0:
        return UPDATING_TIME

    if hours > 0:
        result = f"{hours} tiếng"
        if minutes > 0:
            result += f" {minutes:02d} phút"
        return result
    if minutes > 0:
        return f"{minutes} phút"
    return f"{int(seconds)} giây"


def convert_to_vietnamese_time(time_string: Optional[str]) -> str:
    """Normalize free-form durations.

    Examples:
        "2g 12phút"     → "2 tiếng 12 phút"
        "45M14S"        → "45 phút"
        "120-140 phút"  → "2 tiếng - 2 tiếng 20 phút"
        "45 phút/tập"   → "45 phút/tập"
    """
    if not time_string:
        return UPDATING_TIME
    lowered = time_string.lower()
    if "cập nhật" in lowered or "undefined" in lowered or "null" in lowered or not lowered.strip():
        return UPDATING_TIME

    normalized = _normalize_time_words(time_string)

    per_episode = re.match(r"(.+?)\s*(?:/|per)\s*(?:tập|tap|episode)", normalized, re.IGNORECASE)
    if per_episode:
        episode_time = _convert_single_time(per_episode.group(1))
        return UPDATING_TIME if episode_time == UPDATING_TIME else f"{episode_time}/tập"

    if "-" in normalized:
        start, _, end = normalized.partition("-")
        start_time = _convert_single_time(start.strip())
        end_time = _convert_single_time(end.strip())
        if UPDATING_TIME in (start_time, end_time):
            return UPDATING_TIME
        return f"{start_time} - {end_time}"

    return _convert_single_time(normalized)


def mapping_name_slug_episode(name: Optional[str], slug: Optional[str], index: int) -> Tuple[str, str]:
    """Episode display name and slug.

    "" + slug "3"  → ("Tập 03", "tap-03")
    "12"           → ("Tập 12", "tap-12")
    "124-125"      → ("Tập 124-125", "tap-124-125")
    "Full"         → ("Full", "full")
    """
    name = (name or "").strip()
    slug = (slug or "").strip()

    if not name and slug.isdigit():
        name = f"Tập {int(slug):02d}"
    if not name:
        name = f"Tập {index + 1:02d}"
    if name.isdigit():
        name = f"Tập {int(name):02d}"
    if "-" in name and not name.lower().startswith("tập"):
        parts = [p.strip() for p in name.split("-") if p.strip()]
        name = f"Tập {'-'.join(parts)}"

    return name, slugify_vietnamese(name) or f"tap-{index + 1:02d}"


def resolve_url(path: Optional[str], host: Optional[str] = None) -> Optional[str]:
    """Join a relative image/link path onto a host; absolute URLs pass through"""
    if not path:
        return None
    if path.startswith("http://") or path.startswith("https://"):
        return path
    if host:
        return f"{host.strip('/')}/{path.strip('/')}"
    return path


def strip_html(content: Optional[str]) -> str:
    """Plain-text synopsis from source HTML"""
    if not content:
        return ""
    return BeautifulSoup(content, "html.parser").get_text(" ", strip=True)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Source timestamp (ISO string, epoch ms or datetime) as an aware UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = re.search(r"-?\d+", str(value))
    return int(match.group(0)) if match else None
