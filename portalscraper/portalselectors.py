"""
portalscraper.portalselectors.

Ranked selector catalog for the member portal.

Each logical field maps to an ordered list of Playwright selectors; the
resolver tries them top to bottom and the first visible match wins. The
catalog ships with the code and is never mutated at runtime. Per-run
overrides come from ``Config.selectors`` via :func:`selector_set`.
"""

from collections.abc import Mapping
from types import MappingProxyType

from .portalconfig import Config, SelectorCandidate, SelectorSet

SELECTOR_CATALOG: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        # Login form (two-step: email, then password)
        "email_input": (
            "#login_username",
            'input[autocomplete="username"]',
            'input[type="email"]',
            'input[id*="email" i]',
        ),
        "email_next_button": (
            'button:has-text("Next")',
            'button:has-text("Continue")',
            'button:has-text("Submit")',
            "button",
        ),
        "password_input": (
            "#login_password",
            'input[autocomplete="current-password"]',
            'input[type="password"]',
            'input[id*="password" i]',
        ),
        "login_button": (
            'button:has-text("Log in")',
            'button:has-text("Sign in")',
            'button:has-text("Login")',
            'button[type="submit"]',
        ),
        # Events grid; cards render nine at a time as the page scrolls, so the
        # first card doubles as the ready signal
        "events_ready": (".pv-card", "main", "body"),
    },
)


def _candidates_from(raw: object, timeout_ms: int) -> list[SelectorCandidate]:
    if isinstance(raw, dict):
        out = []
        for c in raw.get("candidates") or []:
            if isinstance(c, SelectorCandidate):
                out.append(c)
            elif isinstance(c, str):
                out.append(SelectorCandidate(selector=c, timeout_ms=timeout_ms))
            else:
                out.append(SelectorCandidate(**{"timeout_ms": timeout_ms, **c}))
        return out
    if isinstance(raw, SelectorSet):
        return list(raw.candidates)
    return [SelectorCandidate(selector=s, timeout_ms=timeout_ms) for s in raw]


def selector_set(name: str, cfg: Config | None = None) -> SelectorSet:
    """
    Build the :class:`SelectorSet` for logical field ``name``.

    A config override replaces the catalog entry wholesale. Plain string
    candidates inherit ``cfg.timeouts.step_ms`` as their wait budget.
    Unknown names raise ``KeyError``.
    """
    cfg = cfg or Config()
    raw = cfg.selectors.get(name)
    if raw is None:
        raw = SELECTOR_CATALOG[name]
    return SelectorSet(_candidates_from(raw, cfg.timeouts.step_ms))
