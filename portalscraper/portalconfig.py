"""
portalscraper.portalconfig
=================================

Configuration dataclasses and helpers used to coerce a JSON configuration
(or the process environment) into Python objects consumed by the event
scraper runtime.

The primary public surface is :class:`Config`, which mirrors the JSON
structure users author. :func:`load_config` reads a JSON file and returns a
typed :class:`Config`; :func:`config_from_env` builds one from environment
variables (optionally seeded by a JSON file named in ``PORTAL_CONFIG``).
"""

import json
import os
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Literal, Union, get_args, get_origin

from dotenv import load_dotenv


@dataclass
class SelectorCandidate:
    """
    An individual selector candidate.

    A selector candidate is one of the ordered fallbacks attempted when
    resolving an element.

    Fields
    ------
    selector: Playwright (CSS superset) or XPath selector string.
    engine: either ``css`` or ``xpath``. Defaults to ``css``.
    state: one of ``attached``, ``visible`` or ``hidden`` describing the
        required DOM state before the element is considered resolved.
    timeout_ms: how long to wait in milliseconds before considering this
        candidate a failure.
    allow_unstable: when True, allows selectors that are heuristically
        considered brittle.
    """

    selector: str
    engine: Literal["css", "xpath"] = "css"
    state: Literal["attached", "visible", "hidden"] = "visible"
    timeout_ms: int = 8000
    allow_unstable: bool = False


@dataclass
class SelectorSet:
    """An ordered list of :class:`SelectorCandidate`, first match wins."""

    candidates: list[SelectorCandidate]


@dataclass
class TimeoutConfig:
    """
    Timeout budgets in milliseconds.

    ``step_ms`` bounds each locate-and-act login step and the listing ready
    probe; the redirect budgets bound the best-effort post-login wait.
    """

    step_ms: int = 8000
    post_login_settle_ms: int = 1000
    login_redirect_ms: int = 15000
    navigation_ms: int = 30000


@dataclass
class ScrollConfig:
    """
    Policy for the scroll-to-bottom pagination loop.

    The defaults were tuned against one portal; they are policy rather than
    structure.
    """

    max_iterations: int = 40
    settle_ms: int = 1500
    stable_threshold: int = 3


@dataclass
class FeedConfig:
    """
    Where the listing page's background data feed lives and how it is shaped.

    A response belongs to the feed when its URL contains both
    ``path_marker`` and ``group_param``.
    """

    path_marker: str = "/api/events"
    group_param: str = "group=events"
    list_keys: list[str] = field(default_factory=lambda: ["items", "data"])
    id_keys: list[str] = field(default_factory=lambda: ["id", "event_id", "eventId"])
    detail_path: str = "/events/"


@dataclass
class Config:
    """
    Top-level runtime configuration.

    This dataclass mirrors the keys accepted by the JSON configuration
    files. ``selectors`` holds per-run overrides of
    :data:`portalscraper.portalselectors.SELECTOR_CATALOG` keyed by logical
    name; values may be plain lists of selector strings or
    ``{"candidates": [...]}`` objects.
    """

    browser: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True

    base_url: str = ""
    login_url: str = ""
    events_url: str = ""

    # IANA zone used to render aware feed timestamps; empty keeps wall clock
    timezone: str = ""
    login_url_pattern: str = r"/login(?:$|[?#])"
    max_events: int = 0

    selectors: dict = field(default_factory=dict)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    scroll: ScrollConfig = field(default_factory=ScrollConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)


def _unwrap_optional(t: Any) -> Any:
    """
    Return the inner type if ``t`` is Optional[...] else ``t``.

    This helper is used when coercing JSON values into typed dataclass
    fields so Optional[...] annotations are handled correctly.
    """
    if get_origin(t) is Union:
        non_none = [a for a in get_args(t) if a is not type(None)]
        if len(non_none) == 1:
            return non_none[0]
    return t


def coerce_value(val: Any, target_type: type[Any]) -> Any:
    inner_type = _unwrap_optional(target_type)

    if is_dataclass(inner_type) and isinstance(val, dict):
        return coerce_nested(val, inner_type)

    origin = get_origin(inner_type)
    args = get_args(inner_type)

    if origin in (list, tuple) and args and isinstance(val, (list, tuple)):
        inner_arg = args[0]
        return type(val)(coerce_value(v, inner_arg) for v in val)

    if origin is dict and len(args) == 2 and isinstance(val, dict):
        key_type, value_type = args
        return {
            coerce_value(k, key_type): coerce_value(v, value_type)
            for k, v in val.items()
        }

    return val


def coerce_nested(obj: dict, cls: type[Any]) -> Any:
    if not is_dataclass(cls):
        return obj

    kwargs = {}
    for f in fields(cls):
        if f.name not in obj:
            continue
        val = obj[f.name]
        if val is MISSING:
            continue
        kwargs[f.name] = coerce_value(val, f.type)

    return cls(**kwargs)


def coerce_headless(value: Any, default: bool = True) -> bool:
    """
    Interpret a bool-or-string headless flag.

    Strings mean headless unless they spell ``false`` (any case); ``None``
    falls back to ``default``.
    """
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() != "false"
    return bool(value)


def load_config(path: str | Path) -> Config:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return coerce_nested(raw, Config)


def config_from_env(env: dict[str, str] | None = None) -> Config:
    """
    Build a :class:`Config` from environment variables.

    ``.env`` in the working directory is loaded first (existing variables
    win). When ``PORTAL_CONFIG`` names a JSON file it seeds the config; the
    URL, headless, timezone and max variables then override it.
    """
    if env is None:
        load_dotenv()
        env = dict(os.environ)

    cfg_path = env.get("PORTAL_CONFIG")
    cfg = load_config(cfg_path) if cfg_path else Config()

    cfg.base_url = env.get("BASE_URL", cfg.base_url)
    cfg.login_url = env.get("LOGIN_URL", cfg.login_url)
    cfg.events_url = env.get("EVENTS_URL", cfg.events_url)
    cfg.timezone = env.get("PORTAL_TIMEZONE", cfg.timezone)
    cfg.headless = coerce_headless(env.get("HEADLESS"), default=cfg.headless)

    max_raw = env.get("PORTAL_MAX_EVENTS")
    if max_raw:
        try:
            cfg.max_events = int(max_raw)
        except ValueError:
            msg = f"PORTAL_MAX_EVENTS must be an integer, got {max_raw!r}"
            raise ValueError(msg) from None
    return cfg
