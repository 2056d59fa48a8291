"""
portalscraper.portalemail.

Inline-styled, table-based HTML email built from canonical events.

Two layouts share one block structure and differ only in the description:

- ``interest``: the cleaned rich HTML description, inserted as-is;
- ``insider``: the short summary as escaped plain text.

Any other template name falls back to ``insider``. The function is pure.
"""

from collections.abc import Iterable
from typing import Any

from .portalnorm import CanonicalEvent, format_event_datetime

DEFAULT_TITLE = "This Week at the Club"
UNTITLED = "Untitled Event"
TEMPLATES = ("interest", "insider")


def escape_html(s: Any) -> str:
    s = "" if s is None else str(s)
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _as_dict(event: CanonicalEvent | dict) -> dict:
    if isinstance(event, CanonicalEvent):
        return event.to_dict()
    return event if isinstance(event, dict) else {}


def _description(e: dict, template: str) -> str:
    style = "color:#4b5563; font-size:14px; margin-top:12px; line-height:1.5;"
    if template == "interest":
        source = e.get("longDescriptionHTML") or e.get("longDescription") or e.get("description") or ""
        return f'<div style="{style}">{source}</div>' if source else ""
    source = e.get("description") or e.get("summary") or e.get("longDescription") or ""
    return f'<div style="{style}">{escape_html(source)}</div>' if source else ""


def event_block(event: CanonicalEvent | dict, template: str) -> str:
    e = _as_dict(event)

    banner = ""
    if e.get("bannerImage"):
        banner = (
            f'<tr><td><img src="{escape_html(e["bannerImage"])}" alt="" width="640" '
            'style="display:block; width:100%; height:auto; border:0;" /></td></tr>'
        )

    title = escape_html(e.get("title") or UNTITLED)

    when = format_event_datetime(e.get("date"), e.get("time"))
    date_meta = (
        f'<div style="color:#374151; font-size:14px; margin-top:4px;">{escape_html(when)}</div>'
        if when
        else ""
    )

    cta = ""
    if e.get("url"):
        cta = (
            f'<a href="{escape_html(e["url"])}" style="display:inline-block; margin-top:14px; '
            "background:#111111; color:#ffffff; text-decoration:none; padding:10px 14px; "
            'border-radius:4px; font-size:14px;">View Event</a>'
        )

    return f"""
<table width="100%" role="presentation" cellpadding="0" cellspacing="0" style="border-top:1px solid #e5e7eb;">
  {banner}
  <tr>
    <td style="padding:16px 24px; font-family:Arial,Helvetica,sans-serif;">
      <div style="font-size:18px; color:#111111; font-weight:bold;">{title}</div>
      {date_meta}
      {_description(e, template)}
      {cta}
    </td>
  </tr>
</table>"""


def build_email_html(
    events: Iterable[CanonicalEvent | dict],
    title: str | None = None,
    template: str | None = "insider",
) -> str:
    """
    Render ``events`` as a self-contained HTML email document.

    ``title`` defaults to :data:`DEFAULT_TITLE` and is escaped. The event
    order is kept as given.
    """
    safe_template = "interest" if template == "interest" else "insider"
    safe_title = escape_html(title or DEFAULT_TITLE)
    items = "\n".join(event_block(e, safe_template) for e in events)

    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{safe_title}</title>
</head>
<body style="margin:0; padding:0; background:#f5f5f7;">
  <table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="background:#f5f5f7;">
    <tr>
      <td align="center" style="padding:24px;">
        <table width="640" cellpadding="0" cellspacing="0" role="presentation" style="max-width:640px; width:100%; background:#ffffff; border-radius:8px; overflow:hidden;">
          <tr>
            <td style="padding:24px 24px 8px 24px; font-family:Arial,Helvetica,sans-serif;">
              <h1 style="margin:0; font-size:24px; line-height:1.2; color:#111111;">{safe_title}</h1>
            </td>
          </tr>
          <tr><td style="height:8px; line-height:8px; font-size:0;">&nbsp;</td></tr>
          <tr>
            <td style="padding:0 0 16px 0;">{items}</td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""
