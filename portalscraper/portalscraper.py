"""
portalscraper.portalscraper.

Core scraper runtime and extraction primitives.

- selector resolution over ranked candidate lists (:class:`SelectorResolver`);
- the portal login state machine (:class:`PortalLoginAuth`);
- scroll-to-bottom pagination that forces the event grid to materialize
    (:class:`ScrollPaginator`);
- passive capture of the listing page's JSON feed (:class:`FeedInterceptor`);
- the run orchestrator (:class:`EventScraper`) that ties them together and
    normalizes the captured records via :mod:`portalscraper.portalnorm`.

The public contract:

- EventScraper(cfg, credentials).run(max_events) -> list[CanonicalEvent]
- scrape_events(base_url=..., login_url=..., events_url=..., email=...,
    password=...) -> list[CanonicalEvent]

The feed, not the rendered DOM, is the source of truth: the grid only has to
be scrolled far enough for the page's own client code to request every
window of events.
"""

import contextlib
import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import pandas as pd
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page, Response, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .portalconfig import (
    Config,
    FeedConfig,
    ScrollConfig,
    SelectorCandidate,
    SelectorSet,
    coerce_headless,
)
from .portalnorm import (
    CanonicalEvent,
    event_identity,
    map_event,
    resolve_timezone,
    sort_events,
)
from .portalselectors import selector_set

logger = logging.getLogger(__name__)

UNSTABLE_PATTERNS = [
    r":nth-(child|of-type)\(",  # brittle positional CSS
    r"//.*text\(\)\s*=",  # text-based XPath
    r"^/{1,2}(?!html)",  # absolute XPaths from root (allow 'html' root narrowly)
]

HEIGHT_JS = "() => document.documentElement.scrollHeight"
SCROLL_JS = "() => window.scrollTo(0, document.documentElement.scrollHeight)"


# ----------------------------
# Errors
# ----------------------------


class ScrapeError(RuntimeError):
    """Base class for failures that abort an extraction run."""


class AuthenticationError(ScrapeError):
    """Raised when the login sequence ends in ``FAILED``."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Login failed: {reason}")
        self.reason = reason


class SessionError(ScrapeError):
    """Browser, context or navigation failure."""


class FeedParseError(ValueError):
    """A feed response whose JSON body has no recognizable event list."""


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str = field(repr=False)


# ----------------------------
# Selector resolution
# ----------------------------


class SelectorResolver:
    """
    Resolve selector candidates into Playwright Locator objects.

    The resolver accepts a :class:`SelectorSet` (an ordered list of
    :class:`SelectorCandidate`) and attempts each candidate in order,
    waiting up to the candidate's timeout for its first match to reach the
    requested state. It performs lightweight validation against a set of
    unstable selector heuristics. ``locate`` raises when nothing matched;
    ``maybe`` returns None instead, so callers decide how severe a miss is.
    """

    def __init__(self, page: Page) -> None:
        self.page = page

    def _validate(self, cand: SelectorCandidate) -> None:
        if cand.allow_unstable:
            return
        for pat in UNSTABLE_PATTERNS:
            if re.search(pat, cand.selector):
                msg = f"Rejected unstable selector: {cand.selector}"
                raise ValueError(msg)

    def locate(self, root: Locator | Page, selset: SelectorSet) -> Locator:
        last_err: Exception | None = None
        for cand in selset.candidates:
            try:
                self._validate(cand)
                loc = self._loc(root, cand).first
                loc.wait_for(state=cand.state, timeout=cand.timeout_ms)
            except (PlaywrightError, PlaywrightTimeoutError, ValueError) as e:
                last_err = e
                logger.debug("Selector candidate missed: %s (%s)", cand.selector, e)
                continue
            else:
                return loc

        sel_list = [c.selector for c in selset.candidates]
        msg = f"None of the candidates matched: {sel_list} | last_error={last_err}"
        raise RuntimeError(msg)

    def maybe(self, root: Locator | Page, selset: SelectorSet) -> Locator | None:
        try:
            return self.locate(root, selset)
        except (PlaywrightError, PlaywrightTimeoutError, ValueError, RuntimeError):
            return None

    def _loc(self, root: Locator | Page, cand: SelectorCandidate) -> Locator:
        if cand.engine == "css":
            return root.locator(cand.selector)
        return root.locator(f"xpath={cand.selector}")


# ----------------------------
# Authentication
# ----------------------------


class AuthState(enum.Enum):
    START = "start"
    EMAIL_FILLED = "email-filled"
    EMAIL_SUBMITTED = "email-submitted"
    PASSWORD_FILLED = "password-filled"
    SUBMITTED = "submitted"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class AuthStrategy:
    """
    Base class for authentication strategies.

    ``login`` is called with the Playwright :class:`Page` already on the
    login URL, the loaded :class:`Config` and a :class:`SelectorResolver`.
    It returns the terminal :class:`AuthState`; on ``FAILED`` the strategy
    exposes a short ``failure_reason``.
    """

    failure_reason: str | None = None

    def login(
        self,
        _page: Page,
        _cfg: Config,
        _resolver: SelectorResolver,
    ) -> AuthState:  # pragma: no cover
        return AuthState.AUTHENTICATED


# Each step: logical selector, action, credential attribute, next state, failure reason
_LOGIN_STEPS = (
    ("email_input", "fill", "email", AuthState.EMAIL_FILLED, "email-input-missing"),
    ("email_next_button", "click", None, AuthState.EMAIL_SUBMITTED, "email-next-missing"),
    ("password_input", "fill", "password", AuthState.PASSWORD_FILLED, "password-input-missing"),
    ("login_button", "click", None, AuthState.SUBMITTED, "login-button-missing"),
)


class PortalLoginAuth(AuthStrategy):
    """
    Two-step portal login (email, next, password, log in).

    Every control is found through the ranked selector catalog with the
    short per-step timeout. A control that cannot be found moves the
    machine to ``FAILED`` and stops it; ``FAILED`` is terminal. Once the
    form is submitted, leaving the login URL is awaited on a best-effort
    basis only: the listing navigation that follows is the real check.
    """

    def __init__(self, credentials: Credentials) -> None:
        self.credentials = credentials
        self.state = AuthState.START
        self.failure_reason = None

    def _advance(self, state: AuthState) -> None:
        logger.debug("PortalLoginAuth: %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, reason: str) -> AuthState:
        logger.warning("PortalLoginAuth: login failed in %s: %s", self.state.value, reason)
        self.failure_reason = reason
        self.state = AuthState.FAILED
        return self.state

    def _await_redirect(self, page: Page, cfg: Config) -> None:
        page.wait_for_timeout(cfg.timeouts.post_login_settle_ms)
        login_re = re.compile(cfg.login_url_pattern, re.IGNORECASE)
        try:
            page.wait_for_url(
                lambda url: not login_re.search(url),
                timeout=cfg.timeouts.login_redirect_ms,
            )
        except PlaywrightTimeoutError:
            logger.info(
                "PortalLoginAuth: still on a login URL after %sms; continuing",
                cfg.timeouts.login_redirect_ms,
            )

    def login(self, page: Page, cfg: Config, resolver: SelectorResolver) -> AuthState:
        self.state = AuthState.START
        self.failure_reason = None

        for name, action, attr, next_state, reason in _LOGIN_STEPS:
            element = resolver.maybe(page, selector_set(name, cfg))
            if element is None:
                return self._fail(reason)
            if action == "fill":
                element.fill(getattr(self.credentials, attr))
            else:
                element.click()
            self._advance(next_state)

        self._await_redirect(page, cfg)
        self._advance(AuthState.AUTHENTICATED)
        return self.state


# ----------------------------
# Pagination
# ----------------------------


class Paginator:
    """
    Abstract pagination strategy.

    Subclasses implement ``next_page`` returning True when more content was
    requested and False when the list is exhausted.
    """

    def next_page(self) -> bool:  # pragma: no cover
        raise NotImplementedError


@dataclass
class ScrollSummary:
    iterations: int
    stabilized: bool
    final_height: int


class ScrollPaginator(Paginator):
    """Paginator that scrolls the document to the bottom until it stops growing.

    Each step reads the document height, scrolls to the bottom and waits
    ``settle_ms`` for background fetches to land. ``stable_threshold``
    consecutive unchanged heights end the loop early; ``max_iterations``
    caps it otherwise.
    """

    def __init__(self, page: Page, cfg: ScrollConfig | None = None) -> None:
        cfg = cfg or ScrollConfig()
        self.page = page
        self.max_iterations = int(cfg.max_iterations)
        self.settle_ms = int(cfg.settle_ms)
        self.stable_threshold = int(cfg.stable_threshold)
        self._count = 0
        self._last_height = 0
        self._stable = 0
        self.stabilized = False

    def next_page(self) -> bool:
        if self._count >= self.max_iterations:
            return False
        try:
            height = int(self.page.evaluate(HEIGHT_JS) or 0)
        except (PlaywrightError, PlaywrightTimeoutError, TypeError, ValueError) as exc:
            logger.debug("ScrollPaginator: height probe failed: %s", exc)
            return False

        if height == self._last_height:
            self._stable += 1
            if self._stable >= self.stable_threshold:
                self.stabilized = True
                return False
        else:
            self._stable = 0
        self._last_height = height

        try:
            self.page.evaluate(SCROLL_JS)
        except (PlaywrightError, PlaywrightTimeoutError) as exc:
            logger.debug("ScrollPaginator: scroll attempt failed: %s", exc)
            return False
        self._count += 1
        logger.debug("ScrollPaginator: scroll %s at height %s", self._count, height)
        self.page.wait_for_timeout(self.settle_ms)
        return True

    def run(self) -> ScrollSummary:
        while self.next_page():
            pass
        # stragglers from the last scroll
        self.page.wait_for_timeout(self.settle_ms)
        return ScrollSummary(
            iterations=self._count,
            stabilized=self.stabilized,
            final_height=self._last_height,
        )


# ----------------------------
# Feed capture
# ----------------------------


def extract_records(payload: Any, list_keys: Iterable[str] = ("items", "data")) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in list_keys:
            if isinstance(payload.get(key), list):
                return payload[key]
    msg = f"Unexpected feed payload shape: {type(payload).__name__}"
    raise FeedParseError(msg)


class FeedInterceptor:
    """
    Passive listener that accumulates feed records by identity.

    Attach it before the first navigation and detach it once pagination has
    finished; :meth:`drain` is only meaningful after that. A re-sent record
    replaces the earlier one (last write wins) but keeps its position.
    """

    def __init__(self, cfg: FeedConfig | None = None) -> None:
        self.cfg = cfg or FeedConfig()
        self.records: dict[Any, dict] = {}
        self.responses_seen = 0
        self.parse_failures = 0

    def matches(self, url: str) -> bool:
        u = url or ""
        return self.cfg.path_marker in u and self.cfg.group_param in u

    def attach(self, page: Page) -> None:
        page.on("response", self.on_response)

    def detach(self, page: Page) -> None:
        page.remove_listener("response", self.on_response)

    def on_response(self, response: Response) -> None:
        url = response.url
        if not self.matches(url):
            return
        self.responses_seen += 1
        if not response.ok:
            logger.debug("FeedInterceptor: ignoring HTTP %s from %s", response.status, url)
            return
        try:
            records = extract_records(response.json(), self.cfg.list_keys)
        except (PlaywrightError, ValueError) as exc:
            self.parse_failures += 1
            logger.warning("FeedInterceptor: skipping unreadable response %s: %s", url, exc)
            return
        self.add(records)

    def add(self, records: Iterable[Any]) -> None:
        for rec in records:
            key = event_identity(rec, self.cfg.id_keys)
            if key is None:
                logger.debug("FeedInterceptor: dropping record without identity")
                continue
            self.records[key] = rec

    def drain(self) -> list[dict]:
        out = list(self.records.values())
        self.records = {}
        return out


# ----------------------------
# Scraper runtime
# ----------------------------


class EventScraper:
    """
    Orchestrates a single extraction run using a :class:`Config`.

    Responsibilities:

    - manage the Playwright lifecycle (driver, browser, context, page) and
      release it on every exit path
    - attach the :class:`FeedInterceptor` before any navigation
    - log in through the configured :class:`AuthStrategy`
    - open the listing page and scroll it until it stops growing
    - normalize, sort and bound the captured records
    """

    def __init__(
        self,
        cfg: Config,
        credentials: Credentials,
        auth: AuthStrategy | None = None,
    ) -> None:
        self.cfg = cfg
        self.auth = auth or PortalLoginAuth(credentials)
        self._play = None
        self.browser = None
        self.context = None
        self.page: Page | None = None
        self.interceptor: FeedInterceptor | None = None
        self.scroll_summary: ScrollSummary | None = None

    def open(self) -> Page:
        self._play = sync_playwright().start()
        browser_type = getattr(self._play, self.cfg.browser)
        self.browser = browser_type.launch(headless=self.cfg.headless)
        self.context = self.browser.new_context()
        self.page = self.context.new_page()
        self.page.set_default_navigation_timeout(self.cfg.timeouts.navigation_ms)
        return self.page

    def close(self) -> None:
        """
        Shut down the context, the browser and the driver, in that order.

        Each step is best-effort; a dead browser must not mask the error
        that ended the run.
        """
        try:
            for closer in (self.context, self.browser):
                if closer is None:
                    continue
                with contextlib.suppress(PlaywrightError):
                    closer.close()
            if self._play is not None:
                with contextlib.suppress(PlaywrightError):
                    self._play.stop()
        finally:
            self._play = self.browser = self.context = self.page = None

    def run(self, max_events: int | None = None) -> list[CanonicalEvent]:
        try:
            return self.extract(self.open(), max_events)
        except PlaywrightError as exc:
            msg = f"Browser session failed: {exc}"
            raise SessionError(msg) from exc
        finally:
            self.close()

    def _goto(self, page: Page, url: str) -> None:
        logger.debug("EventScraper: navigating to %s", url)
        page.goto(url, wait_until="domcontentloaded")

    def _wait_ready(self, resolver: SelectorResolver, page: Page) -> None:
        if resolver.maybe(page, selector_set("events_ready", self.cfg)) is None:
            logger.info("EventScraper: listing ready probe timed out; scrolling anyway")

    def extract(self, page: Page, max_events: int | None = None) -> list[CanonicalEvent]:
        """
        Run the pipeline against an already opened ``page``.

        Login failure raises :class:`AuthenticationError` before the listing
        page is requested. After that everything is best-effort: whatever
        the feed delivered is normalized and returned.
        """
        self.interceptor = FeedInterceptor(self.cfg.feed)
        self.interceptor.attach(page)
        try:
            self._goto(page, self.cfg.login_url)
            resolver = SelectorResolver(page)
            state = self.auth.login(page, self.cfg, resolver)
            if state is not AuthState.AUTHENTICATED:
                raise AuthenticationError(self.auth.failure_reason or "login-failed")

            self._goto(page, self.cfg.events_url)
            self._wait_ready(resolver, page)
            self.scroll_summary = ScrollPaginator(page, self.cfg.scroll).run()
        finally:
            self.interceptor.detach(page)

        records = self.interceptor.drain()
        tz = resolve_timezone(self.cfg.timezone)
        events = sort_events(
            [
                map_event(
                    rec,
                    self.cfg.base_url,
                    id_keys=self.cfg.feed.id_keys,
                    detail_path=self.cfg.feed.detail_path,
                    tz=tz,
                )
                for rec in records
            ],
        )

        limit = self.cfg.max_events if max_events is None else max_events
        if isinstance(limit, int) and limit > 0:
            events = events[:limit]

        logger.info(
            "EventScraper: responses=%s parse_failures=%s records=%s returned=%s scrolls=%s",
            self.interceptor.responses_seen,
            self.interceptor.parse_failures,
            len(records),
            len(events),
            self.scroll_summary.iterations,
        )
        return events


def scrape_events(
    *,
    base_url: str,
    login_url: str,
    events_url: str,
    email: str,
    password: str,
    headless: bool | str | None = True,
    max_events: int | None = None,
    cfg: Config | None = None,
) -> list[CanonicalEvent]:
    """
    Run one extraction from the request fields.

    ``cfg`` supplies everything the request does not (selectors, timeouts,
    scroll and feed policy); the request's URLs and headless flag win.
    """
    if not (email and password):
        msg = "Both email and password are required"
        raise ValueError(msg)
    cfg = cfg or Config()
    cfg.base_url = base_url
    cfg.login_url = login_url
    cfg.events_url = events_url
    cfg.headless = coerce_headless(headless)
    scraper = EventScraper(cfg, Credentials(email, password))
    return scraper.run(max_events)


def events_to_dataframe(events: Iterable[CanonicalEvent | dict]) -> pd.DataFrame:
    """Flatten events into a DataFrame (``raw`` dropped, categories joined)."""
    rows = []
    for e in events:
        d = e.to_dict() if isinstance(e, CanonicalEvent) else dict(e)
        d.pop("raw", None)
        cats = d.get("categories")
        if isinstance(cats, list):
            d["categories"] = ", ".join(str(c) for c in cats)
        rows.append(d)
    return pd.DataFrame(rows)
