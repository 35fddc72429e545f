from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import urlparse

from smartmark.errors import ValidationError
from smartmark.services.records import BookmarkPayload, parse_timestamp


RECOGNIZED_SCHEMES = ("http://", "https://")
DEFAULT_SCHEME = "https://"


def ensure_scheme(url: str) -> str:
    value = (url or "").strip()
    if not value:
        return ""
    if value.lower().startswith(RECOGNIZED_SCHEMES):
        return value
    return DEFAULT_SCHEME + value


def validate_bookmark(title: str | None, url: str | None) -> BookmarkPayload:
    clean_title = (title or "").strip()
    clean_url = (url or "").strip()
    if not clean_title:
        raise ValidationError("title is required")
    if not clean_url:
        raise ValidationError("url is required")
    return BookmarkPayload(url=ensure_scheme(clean_url), title=clean_title)


def display_domain(url: str) -> str:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return url
    if not hostname:
        return url
    return hostname.replace("www.", "", 1)


def format_relative_time(created_at: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    created_at = parse_timestamp(created_at)
    seconds = (now - created_at).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    label = f"{created_at.strftime('%b')} {created_at.day}"
    if created_at.year != now.year:
        label = f"{label}, {created_at.year}"
    return label


def bookmark_count_label(count: int) -> str:
    suffix = "" if count == 1 else "s"
    return f"{count} bookmark{suffix} saved"
