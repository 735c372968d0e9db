"""
Playwright-backed rendering session.

Playwright's sync API is bound to the thread that started it, so the session
supervisor creates, uses and closes each session on one dedicated render
thread. `process_ids` only consults psutil and is safe from any thread.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright

from listing_watch.scraping.base import RenderSession
from listing_watch.scraping.logging_utils import log_event
from listing_watch.scraping.processes import find_pids_by_marker, kill_pids, marker_arg
from listing_watch.scraping.stealth import (
    LAUNCH_ARGS,
    STEALTH_INIT_SCRIPT,
    BrowserIdentity,
    random_identity,
)

logger = logging.getLogger(__name__)


class PlaywrightRenderSession(RenderSession):
    def __init__(
        self,
        *,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        marker: str,
        identity: BrowserIdentity,
    ) -> None:
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.marker = marker
        self.identity = identity

    @classmethod
    def launch(
        cls,
        *,
        headless: bool = True,
        navigation_timeout_seconds: float = 60.0,
        executable_path: str | None = None,
        rng: random.Random | None = None,
    ) -> "PlaywrightRenderSession":
        """
        Start Chromium with a fresh randomized identity.
        """

        marker = uuid.uuid4().hex
        identity = random_identity(rng)
        playwright = sync_playwright().start()
        try:
            browser = playwright.chromium.launch(
                headless=headless,
                executable_path=executable_path,
                args=[*LAUNCH_ARGS, marker_arg(marker)],
            )
            context = browser.new_context(**identity.context_options())
            context.add_init_script(STEALTH_INIT_SCRIPT)
            context.set_default_navigation_timeout(navigation_timeout_seconds * 1000)
            context.set_default_timeout(navigation_timeout_seconds * 1000)
            page = context.new_page()
        except Exception:
            kill_pids(find_pids_by_marker(marker))
            playwright.stop()
            raise

        log_event(
            logger,
            logging.INFO,
            "browser_launched",
            marker=marker,
            user_agent=identity.user_agent,
            viewport=f"{identity.viewport_width}x{identity.viewport_height}",
        )
        return cls(
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
            marker=marker,
            identity=identity,
        )

    def close(self) -> None:
        try:
            try:
                self.context.close()
            finally:
                self.browser.close()
        finally:
            self.playwright.stop()

    def process_ids(self) -> set[int]:
        return find_pids_by_marker(self.marker)


@dataclass(frozen=True)
class PlaywrightSessionFactory:
    """
    Callable factory handed to the session supervisor.
    """

    headless: bool = True
    navigation_timeout_seconds: float = 60.0
    executable_path: str | None = None

    def __call__(self) -> PlaywrightRenderSession:
        return PlaywrightRenderSession.launch(
            headless=self.headless,
            navigation_timeout_seconds=self.navigation_timeout_seconds,
            executable_path=self.executable_path,
        )
