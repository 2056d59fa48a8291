"""HTTP helpers and list filtering used by the Streamlit UI."""

from typing import Any

import requests


def post_scrape(
    base_url: str,
    email: str,
    password: str,
    max_events: int | None = None,
    timeout: float = 600,
) -> list[dict[str, Any]]:
    url = f"{base_url.rstrip('/')}/api/scrape"
    body: dict[str, Any] = {"email": email, "password": password}
    if max_events:
        body["max"] = int(max_events)
    resp = requests.post(url, json=body, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    return list(data.get("events") or []) if isinstance(data, dict) else []


def post_email(
    base_url: str,
    events: list[dict[str, Any]],
    title: str,
    template: str,
    timeout: float = 60,
) -> str:
    url = f"{base_url.rstrip('/')}/api/email"
    resp = requests.post(
        url,
        json={"events": events, "title": title, "template": template},
        timeout=timeout,
    )
    resp.raise_for_status()
    return resp.text


def error_message(http_err: requests.HTTPError) -> str:
    """Pull the ``{"error": ...}`` message out of a failed API response."""
    resp = http_err.response
    if resp is None:
        return str(http_err)
    try:
        body = resp.json()
    except ValueError:
        return resp.text or str(http_err)
    if isinstance(body, dict) and body.get("error"):
        return f"HTTP {resp.status_code}: {body['error']}"
    return f"HTTP {resp.status_code}: {body}"


def filter_events(events: list[dict[str, Any]], query: str) -> list[tuple[int, dict[str, Any]]]:
    """
    Case-insensitive search over title, date and summary.

    Returns ``(index, event)`` pairs so a selection made on the filtered
    view still points at the right entry of the full list.
    """
    indexed = list(enumerate(events))
    q = (query or "").strip().lower()
    if not q:
        return indexed

    def hit(event: dict[str, Any]) -> bool:
        haystack = (
            event.get("title") or "",
            event.get("date") or "",
            event.get("description") or event.get("summary") or "",
        )
        return any(q in str(h).lower() for h in haystack)

    return [(i, e) for i, e in indexed if hit(e)]
