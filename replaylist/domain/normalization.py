from __future__ import annotations

import logging
import re
import unicodedata
from typing import Optional

from .entities import Track

logger = logging.getLogger(__name__)


COVER_SIZE = 300
COVER_FORMAT = "jpg"
TOPIC_SUFFIX = " - Topic"

_ISRC_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{3}\d{7}$")
_ISRC_STRIP_PATTERN = re.compile(r"[\s\-]")
_MULTISPACE_PATTERN = re.compile(r"\s+")
_QUOTE_PATTERN = re.compile(r"[\"“”]")


def normalize_isrc(value: Optional[str]) -> Optional[str]:
    """Canonical ISRC form (``CCXXXYYNNNNN``) or None when the value is not an ISRC."""
    if not value:
        return None
    candidate = _ISRC_STRIP_PATTERN.sub("", str(value)).upper()
    if not _ISRC_PATTERN.match(candidate):
        logger.debug(f"Dropping malformed ISRC {value!r}, track will be matched by text")
        return None
    return candidate


def normalize_cover_url(url: Optional[str], size: int = COVER_SIZE, fmt: str = COVER_FORMAT) -> str:
    """Substitute Apple artwork template tokens with a fixed size and format."""
    if not url:
        return ""
    return url.replace("{w}x{h}", f"{size}x{size}").replace("{w}", str(size)).replace(
        "{h}", str(size)).replace("{f}", fmt)


def strip_topic_suffix(channel_title: Optional[str]) -> str:
    """Recover the artist name from an auto-generated YouTube ``"<Artist> - Topic"`` channel."""
    name = (channel_title or "").strip()
    if name.endswith(TOPIC_SUFFIX):
        name = name[: -len(TOPIC_SUFFIX)].rstrip()
    return name


def clean_text(value: Optional[str]) -> str:
    value = unicodedata.normalize("NFKC", value or "")
    return _MULTISPACE_PATTERN.sub(" ", value).strip()


def text_query(track: Track) -> str:
    """Free-text search query ``"<title> <artist>"``; empty when the track has neither."""
    return " ".join(p for p in (clean_text(track.title), clean_text(track.artist)) if p)


def structured_query(track: Track) -> str:
    """Field-filtered query in the ``track:"x" artist:"y"`` form."""
    parts = []
    title = _QUOTE_PATTERN.sub("", clean_text(track.title))
    artist = _QUOTE_PATTERN.sub("", clean_text(track.artist))
    if title:
        parts.append(f'track:"{title}"')
    if artist:
        parts.append(f'artist:"{artist}"')
    return " ".join(parts)
