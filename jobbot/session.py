"""Persistent, authenticated Playwright browser session.

The Chromium profile directory keeps LinkedIn cookies between runs, so a
single interactive `login()` is enough for later headless cycles.
"""
from __future__ import annotations

import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from jobbot.config import DATA_DIR, Settings
from jobbot.errors import SessionError
from jobbot.log import get_logger

log = get_logger(__name__)

USER_DATA_DIR: Path = DATA_DIR / "browser-profile"
LOGIN_URL = "https://www.linkedin.com/login"
FEED_URL = "https://www.linkedin.com/feed/"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
BROWSER_ARGS: list[str] = [
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-gpu",
    "--disable-extensions",
]

CHECKPOINT_MARKERS: tuple[str, ...] = ("/checkpoint/", "/authwall", "/challenge", "captcha")


def is_checkpoint(url: str) -> bool:
    """True when LinkedIn redirected to a verification/challenge page."""
    u = (url or "").lower()
    return any(marker in u for marker in CHECKPOINT_MARKERS)


def _sanitize_browsers_path() -> None:
    _pw = os.environ.get("PLAYWRIGHT_BROWSERS_PATH", "")
    if _pw and not Path(_pw).exists():
        os.environ.pop("PLAYWRIGHT_BROWSERS_PATH", None)


class SessionProvider:
    """Hands out a persistent browser context for one scheduler cycle."""

    def __init__(self, settings: Settings, user_data_dir: Path = USER_DATA_DIR) -> None:
        self.settings = settings
        self.user_data_dir = Path(user_data_dir)

    @contextmanager
    def session(self, *, headless: bool | None = None) -> Iterator:
        """Yield a BrowserContext; raises SessionError when it cannot start."""
        _sanitize_browsers_path()
        try:
            from playwright.sync_api import Error as PlaywrightError
            from playwright.sync_api import sync_playwright
        except ImportError as exc:
            raise SessionError("Playwright not installed") from exc

        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        with sync_playwright() as p:
            try:
                context = p.chromium.launch_persistent_context(
                    str(self.user_data_dir),
                    headless=self.settings.headless if headless is None else headless,
                    viewport={"width": 1280, "height": 900},
                    user_agent=USER_AGENT,
                    ignore_https_errors=True,
                    args=BROWSER_ARGS,
                )
            except PlaywrightError as exc:
                raise SessionError(f"Browser launch failed: {str(exc)[:150]}") from exc

            context.set_default_timeout(20_000)
            log.debug("Browser session opened (%s)", self.user_data_dir)
            try:
                yield context
            finally:
                try:
                    context.close()
                    log.debug("Browser session closed")
                except PlaywrightError as exc:
                    log.warning("Error closing browser session: %s", exc)

    def login(self, wait_for_user=input) -> bool:
        """Open a visible browser so the user can sign in once."""
        with self.session(headless=False) as context:
            page = context.new_page()
            page.goto(LOGIN_URL, wait_until="domcontentloaded")
            page.wait_for_timeout(2000)
            if "/feed" not in page.url:
                wait_for_user("Log into LinkedIn in the browser window, then press ENTER here... ")
            page.goto(FEED_URL, wait_until="domcontentloaded")
            page.wait_for_timeout(2000)
            landed = page.url
            ok = "/feed" in landed and not is_checkpoint(landed)
        if ok:
            log.info("LinkedIn session saved to %s", self.user_data_dir)
        else:
            log.warning("Login not confirmed (landed on %s)", landed)
        return ok

    def clear(self) -> None:
        """Forget the stored session (cookies, local storage)."""
        if self.user_data_dir.exists():
            shutil.rmtree(self.user_data_dir, ignore_errors=True)
            log.info("Session state cleared")
