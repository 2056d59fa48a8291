from typing import Any

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from portalscraper import Config, ScrollConfig, TimeoutConfig

BASE = "https://portal.example.com/"
LOGIN_URL = "https://portal.example.com/login"
EVENTS_URL = "https://portal.example.com/events"
FEED_URL = "https://portal.example.com/api/events?group=events&page={n}"

# First catalog candidate for each login control, plus the grid card
PORTAL_CONTROLS = {
    "#login_username",
    'button:has-text("Next")',
    "#login_password",
    'button:has-text("Log in")',
    ".pv-card",
}


class FakeResponse:
    def __init__(
        self,
        url: str,
        payload: Any = None,
        ok: bool = True,
        status: int = 200,
        body_error: Exception | None = None,
    ) -> None:
        self.url = url
        self.ok = ok
        self.status = status
        self._payload = payload
        self._body_error = body_error

    def json(self) -> Any:
        if self._body_error is not None:
            raise self._body_error
        return self._payload


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def wait_for(self, state: str = "visible", timeout: float | None = None) -> None:
        self.page.waits.append(self.selector)
        if self.selector not in self.page.present:
            msg = f"Timeout {timeout}ms exceeded waiting for {self.selector}"
            raise PlaywrightTimeoutError(msg)

    def fill(self, value: str) -> None:
        self.page.actions.append(("fill", self.selector, value))

    def click(self) -> None:
        self.page.actions.append(("click", self.selector))
        if self.selector in self.page.click_urls:
            self.page.url = self.page.click_urls[self.selector]


class FakePage:
    """
    Minimal stand-in for a Playwright sync Page.

    ``feed_batches[i]`` is the list of responses the page's client code
    "fetches" after the (i+1)-th scroll; they are dispatched to ``response``
    listeners on the next ``wait_for_timeout``, mirroring how Playwright
    delivers events while the main flow waits. The document grows by one
    screen per delivered batch, then stops growing.
    """

    def __init__(
        self,
        present: set[str] | None = None,
        feed_batches: list[list[FakeResponse]] | None = None,
        click_urls: dict[str, str] | None = None,
        on_goto: dict[str, list[FakeResponse]] | None = None,
    ) -> None:
        self.present = set(PORTAL_CONTROLS if present is None else present)
        self.feed_batches = list(feed_batches or [])
        self.click_urls = {'button:has-text("Log in")': BASE + "home"}
        self.click_urls.update(click_urls or {})
        self.on_goto = dict(on_goto or {})
        self.url = "about:blank"
        self.handlers: dict[str, list] = {}
        self.gotos: list[str] = []
        self.actions: list[tuple] = []
        self.waits: list[str] = []
        self.timeouts: list[int] = []
        self.scrolls = 0
        self._pending: list[FakeResponse] = []

    def on(self, event: str, handler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.handlers.get(event, []).remove(handler)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def goto(self, url: str, wait_until: str | None = None) -> None:
        self.gotos.append(url)
        self.url = url
        self._pending.extend(self.on_goto.get(url, []))

    def wait_for_timeout(self, ms: int) -> None:
        self.timeouts.append(ms)
        pending, self._pending = self._pending, []
        for resp in pending:
            for handler in list(self.handlers.get("response", [])):
                handler(resp)

    def wait_for_url(self, predicate, timeout: float | None = None) -> None:
        if not predicate(self.url):
            msg = f"Timeout {timeout}ms exceeded waiting for navigation"
            raise PlaywrightTimeoutError(msg)

    def evaluate(self, script: str) -> Any:
        if "scrollTo(" in script:
            self.scrolls += 1
            if self.scrolls <= len(self.feed_batches):
                self._pending.extend(self.feed_batches[self.scrolls - 1])
            return None
        return 1000 * (1 + min(self.scrolls, len(self.feed_batches)))


class BrokenPage(FakePage):
    def evaluate(self, script: str) -> Any:
        raise PlaywrightError("Execution context was destroyed")


@pytest.fixture
def cfg() -> Config:
    return Config(
        base_url=BASE,
        login_url=LOGIN_URL,
        events_url=EVENTS_URL,
        timeouts=TimeoutConfig(step_ms=50, post_login_settle_ms=0, login_redirect_ms=50),
        scroll=ScrollConfig(max_iterations=40, settle_ms=0, stable_threshold=3),
    )


@pytest.fixture
def fake_page():
    return FakePage


@pytest.fixture
def broken_page():
    return BrokenPage


@pytest.fixture
def fake_response():
    return FakeResponse


def feed_record(n: int, title: str | None = None, day: int | None = None) -> dict:
    day = 13 - n if day is None else day
    return {
        "id": n,
        "title": title if title is not None else f"Event {n}",
        "summary": f"Summary {n}",
        "description": f'<p style="color:red">Details <span data-x="{n}">{n}</span></p>',
        "graphic": f"/img/{n}.png",
        "venue": "Main Hall",
        "start_date": f"2025-12-{day:02d}T18:00:00",
        "end_date": f"2025-12-{day:02d}T20:00:00",
        "categories": ["Social"],
    }


@pytest.fixture
def make_record():
    return feed_record
