"""
portalscraper.portalnorm.

Normalization of raw feed records into :class:`CanonicalEvent`.

The feed is owned by the portal, so every field is treated as optional:
each access below has a defined fallback and nothing here raises on a
malformed record. The functions are pure; escaping for non-HTML contexts is
left to the renderer.

Helpers
-------
- clean_html_description(html): strip data-*/style/class attributes and span
    wrappers, collapse inter-tag whitespace. Idempotent.
- html_to_plain_text(html): paragraph/bullet aware plain-text rendering with
    a fixed entity table.
- format_event_datetime(date, time): tidy free-text date/time strings into
    ``"<date> at <time>"``.
- resolve_banner_url(base_url, raw): absolutize root-relative image paths.
- build_event_url(base_url, identity, detail_path): portal detail link.
- map_event(record, ...): the full RawRecord -> CanonicalEvent mapping.
- sort_events(events): ascending by start timestamp, "no preference" for
    events without one.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from functools import cmp_to_key
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_ID_KEYS = ("id", "event_id", "eventId")

# Decoded in this order; &amp; runs before the others like the portal's own
# client, so "&amp;lt;" ends up as "<".
HTML_ENTITIES = {
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&apos;": "'",
    "&rsquo;": "'",
    "&lsquo;": "'",
    "&ldquo;": '"',
    "&rdquo;": '"',
    "&ndash;": "–",
    "&mdash;": "—",
    "&hellip;": "…",
}

_DATA_ATTR_RE = re.compile(r"""\sdata-[a-zA-Z0-9_-]+=(?:"[^"]*"|'[^']*')""")
_STYLE_ATTR_RE = re.compile(r"""\sstyle=(?:"[^"]*"|'[^']*')""", re.IGNORECASE)
_CLASS_ATTR_RE = re.compile(r"""\sclass=(?:"[^"]*"|'[^']*')""", re.IGNORECASE)
_SPAN_TAG_RE = re.compile(r"</?span\b[^>]*>", re.IGNORECASE)
_INTER_TAG_WS_RE = re.compile(r">\s+<")

_P_CLOSE_RE = re.compile(r"</p>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_LI_CLOSE_RE = re.compile(r"</li>", re.IGNORECASE)
_LI_OPEN_RE = re.compile(r"<li[^>]*>", re.IGNORECASE)
_ANY_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_RUN_RE = re.compile(r"\r?\n\s*\r?\n\s*\r?\n+")
_HSPACE_RUN_RE = re.compile(r"[ \t]{2,}")
_LEADING_HSPACE_RE = re.compile(r"\n[ \t]+")

_YEAR_COMMA_RE = re.compile(r",\s*\d{4}\b")
_YEAR_SPACE_RE = re.compile(r"\s+\d{4}\b")
_SLASH_DATE_RE = re.compile(r"(\d{1,2}/\d{1,2})/\d{2,4}\b")
_GLUED_MERIDIEM_RE = re.compile(r"(\d)(AM|PM)\b", re.IGNORECASE)
_LOWER_MERIDIEM_RE = re.compile(r"\b(am|pm)\b")


@dataclass
class CanonicalEvent:
    """
    The stable event shape handed to rendering.

    Attribute names are snake_case; :meth:`to_dict` produces the camelCase
    wire shape (``longDescriptionHTML``, ``startISO`` ...) used by the HTTP
    layer and the email renderer.
    """

    id: Any = None
    url: str = ""
    title: str = ""
    description: str = ""
    long_description: str = ""
    long_description_html: str = ""
    date: str = ""
    time: str = ""
    start_iso: str | None = None
    end_iso: str | None = None
    location: str = ""
    banner_image: str = ""
    external_link: str = ""
    categories: list = field(default_factory=list)
    availability: str = ""
    raw: dict = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "longDescription": self.long_description,
            "longDescriptionHTML": self.long_description_html,
            "date": self.date,
            "time": self.time,
            "startISO": self.start_iso,
            "endISO": self.end_iso,
            "location": self.location,
            "bannerImage": self.banner_image,
            "externalLink": self.external_link,
            "categories": list(self.categories),
            "availability": self.availability,
            "raw": self.raw,
        }


# ----------------------------
# Field access
# ----------------------------


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def event_identity(record: Any, id_keys: tuple[str, ...] | list[str] = DEFAULT_ID_KEYS) -> Any:
    """
    Return the record's identity, or None when it has none.

    Keys are tried in order; only non-empty strings and numbers count as an
    identity, so the value is always usable as a dict key.
    """
    if not isinstance(record, dict):
        return None
    for key in id_keys:
        val = record.get(key)
        if isinstance(val, bool) or not isinstance(val, (str, int, float)):
            continue
        if val == "":
            continue
        return val
    return None


def _local_or_absolute(record: dict, local_key: str, abs_key: str) -> str | None:
    local = record.get(local_key)
    if isinstance(local, dict):
        val = local.get("date")
        if isinstance(val, str) and val.strip():
            return val.strip()
    elif isinstance(local, str) and local.strip():
        return local.strip()
    val = record.get(abs_key)
    if isinstance(val, str) and val.strip():
        return val.strip()
    return None


# ----------------------------
# HTML description
# ----------------------------


def clean_html_description(html: str | None) -> str:
    """
    Clean a portal HTML description for the rich email layout.

    Removes ``data-*``, ``style`` and ``class`` attributes, drops ``<span>``
    wrappers (keeping their content) and collapses whitespace between tags.
    Semantic tags (p, br, strong, em, a, ul, ol, li, ...) are kept.
    Running it on its own output returns the same string.
    """
    if not html:
        return ""
    # A removal can splice a new attribute or span tag together
    cleaned, previous = html, None
    while cleaned != previous:
        previous = cleaned
        cleaned = _DATA_ATTR_RE.sub("", cleaned)
        cleaned = _STYLE_ATTR_RE.sub("", cleaned)
        cleaned = _CLASS_ATTR_RE.sub("", cleaned)
        cleaned = _SPAN_TAG_RE.sub("", cleaned)
    cleaned = _INTER_TAG_WS_RE.sub("><", cleaned)
    return cleaned.strip()


def decode_entities(text: str) -> str:
    for entity, value in HTML_ENTITIES.items():
        text = text.replace(entity, value)
    return text


def html_to_plain_text(html: str | None) -> str:
    """
    Render an HTML fragment as readable plain text.

    Paragraphs become blank-line separated, ``<br>`` a newline and list
    items bullet lines (``"• item"``). Remaining tags are stripped, the
    :data:`HTML_ENTITIES` table is decoded and whitespace is collapsed
    (at most one blank line in a row, single spaces).
    """
    if not html:
        return ""
    text = _P_CLOSE_RE.sub("\n\n", html)
    text = _BR_RE.sub("\n", text)
    text = _LI_CLOSE_RE.sub("\n", text)
    text = _LI_OPEN_RE.sub("• ", text)
    text = _ANY_TAG_RE.sub("", text)
    text = decode_entities(text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    text = _HSPACE_RUN_RE.sub(" ", text)
    text = _LEADING_HSPACE_RE.sub("\n", text)
    return text.strip()


# ----------------------------
# Dates and times
# ----------------------------


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        logger.debug("Unparseable feed timestamp: %r", value)
        return None


def resolve_timezone(name: str | None) -> tzinfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; keeping feed wall clock", name)
        return None


def _localize(dt: datetime, tz: tzinfo | None) -> datetime:
    if tz is not None and dt.tzinfo is not None:
        return dt.astimezone(tz)
    return dt


def format_long_date(dt: datetime) -> str:
    """``Saturday, November 29``: weekday, month and day without year."""
    return f"{dt:%A}, {dt:%B} {dt.day}"


def format_clock(dt: datetime) -> str:
    """``3:00 PM`` style time of day."""
    hour = dt.hour % 12 or 12
    meridiem = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {meridiem}"


def format_time_range(start: datetime | None, end: datetime | None) -> str:
    if start is None:
        return ""
    start_time = format_clock(start)
    end_time = format_clock(end) if end is not None else ""
    if end_time and end_time != start_time:
        return f"{start_time} – {end_time}"
    return start_time


def normalize_date_text(date: str | None) -> str:
    part = (date or "").strip()
    part = _YEAR_COMMA_RE.sub("", part, count=1)
    part = _YEAR_SPACE_RE.sub("", part, count=1).strip()
    return _SLASH_DATE_RE.sub(r"\1", part, count=1)


def normalize_time_text(time: str | None) -> str:
    part = (time or "").strip()
    if not part:
        return ""
    part = _GLUED_MERIDIEM_RE.sub(r"\1 \2", part, count=1)
    return _LOWER_MERIDIEM_RE.sub(lambda m: m.group(1).upper(), part)


def format_event_datetime(date: str | None, time: str | None) -> str:
    """
    Combine free-text date and time into one display line.

    ``("Thursday, November 29, 2025", "3:00PM")`` gives
    ``"Thursday, November 29 at 3:00 PM"``; either half alone is returned
    normalized, and two empty inputs give ``""``.
    """
    date_part = normalize_date_text(date)
    time_part = normalize_time_text(time)
    if date_part and time_part:
        return f"{date_part} at {time_part}"
    return date_part or time_part


# ----------------------------
# URLs
# ----------------------------


def resolve_banner_url(base_url: str, raw: Any) -> str:
    banner = raw if isinstance(raw, str) else ""
    if banner.startswith("/"):
        return f"{(base_url or '').rstrip('/')}{banner}"
    return banner


def build_event_url(base_url: str, identity: Any, detail_path: str = "/events/") -> str:
    if identity is None or identity == "":
        return ""
    return f"{(base_url or '').rstrip('/')}{detail_path}{identity}"


# ----------------------------
# Mapping
# ----------------------------


def map_event(
    record: dict,
    base_url: str,
    *,
    id_keys: tuple[str, ...] | list[str] = DEFAULT_ID_KEYS,
    detail_path: str = "/events/",
    tz: tzinfo | None = None,
) -> CanonicalEvent:
    """Map one raw feed record to a :class:`CanonicalEvent`."""
    record = record if isinstance(record, dict) else {}
    identity = event_identity(record, id_keys)

    title = _text(record.get("title"))
    summary = _text(record.get("summary"))

    long_html = clean_html_description(_text(record.get("description")))
    long_text = html_to_plain_text(long_html or summary) or summary

    start_iso = _local_or_absolute(record, "start_date_local", "start_date")
    end_iso = _local_or_absolute(record, "end_date_local", "end_date")

    start = parse_timestamp(start_iso)
    end = parse_timestamp(end_iso)
    if start is not None:
        start = _localize(start, tz)
    if end is not None:
        end = _localize(end, tz)

    categories = record.get("categories")
    return CanonicalEvent(
        id=identity,
        url=build_event_url(base_url, identity, detail_path),
        title=title,
        description=summary,
        long_description=long_text,
        long_description_html=long_html,
        date=format_long_date(start) if start is not None else "",
        time=format_time_range(start, end),
        start_iso=start_iso,
        end_iso=end_iso,
        location=_text(record.get("venue")),
        banner_image=resolve_banner_url(base_url, record.get("graphic")),
        external_link=_text(record.get("external_link")),
        categories=list(categories) if isinstance(categories, list) else [],
        availability=_text(record.get("availability")),
        raw=record,
    )


def _sort_instant(event: CanonicalEvent) -> datetime | None:
    dt = parse_timestamp(event.start_iso)
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def _compare_start(a: CanonicalEvent, b: CanonicalEvent) -> int:
    # Missing starts express no preference either way.
    sa, sb = _sort_instant(a), _sort_instant(b)
    if sa is None or sb is None:
        return 0
    return (sa > sb) - (sa < sb)


def sort_events(events: list[CanonicalEvent]) -> list[CanonicalEvent]:
    """Stable ascending sort by ``start_iso``."""
    return sorted(events, key=cmp_to_key(_compare_start))
