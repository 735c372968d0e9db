"""
Anti-fingerprinting profile for rendering sessions.

Each session gets one randomized identity at creation and keeps it for its
whole lifetime; a restart draws a new one.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
]

VIEWPORTS = [
    (1280, 800),
    (1366, 768),
    (1440, 900),
    (1536, 864),
    (1600, 900),
    (1920, 1080),
]

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--no-first-run",
    "--no-default-browser-check",
]

STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined, configurable: true});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en'], configurable: true});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3], configurable: true});
window.chrome = window.chrome || {};
window.chrome.runtime = window.chrome.runtime || {};
delete window.__playwright;
delete window.__pw_manual;
"""


@dataclass(frozen=True)
class BrowserIdentity:
    user_agent: str
    viewport_width: int
    viewport_height: int
    locale: str = "en-US"
    timezone_id: str = "America/New_York"

    def context_options(self) -> dict[str, Any]:
        """
        Keyword arguments for Playwright's `browser.new_context()`.
        """

        return {
            "user_agent": self.user_agent,
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "extra_http_headers": {
                "Accept-Language": "en-US,en;q=0.9",
                "DNT": "1",
            },
        }


def random_identity(rng: random.Random | None = None) -> BrowserIdentity:
    chooser = rng or random.Random()
    width, height = chooser.choice(VIEWPORTS)
    # Small offsets keep the window size from matching a stock preset exactly.
    return BrowserIdentity(
        user_agent=chooser.choice(USER_AGENTS),
        viewport_width=width - chooser.randint(0, 24),
        viewport_height=height - chooser.randint(0, 48),
    )
