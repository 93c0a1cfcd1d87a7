"""Remote-surface delivery backend.

Speech is produced by an external interactive page already running in a
Chromium-family browser. The backend attaches over the Chrome DevTools
Protocol, keeps track of every tab showing the surface URL, and drives the
page's own controls: click stop, fill the text field, let the page react,
click speak.

A tab that fails a scripted interaction is evicted from the candidate set and
the action is retried on another candidate, opening a new tab when none is
left. Evicted and discarded tabs get a best-effort stop click, and tabs the
backend opened itself are closed. An evicted tab the user owns is admitted
again only if it navigates back to the surface URL (for example after the
user reloads it).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from narrator.errors import DeliveryError, DeliveryUnavailable
from narrator.schemas.reader_settings import VoiceSettings

from .base import DeliveryBackend

logger = logging.getLogger(__name__)

_SPEAKING_PROBE = "() => Boolean(window.speechSynthesis && window.speechSynthesis.speaking)"


async def _start_playwright() -> Playwright:
    return await async_playwright().start()


class RemoteSurfaceBackend(DeliveryBackend):
    name = "remote"

    def __init__(
        self,
        *,
        surface_url: str,
        cdp_url: str = "http://localhost:9222",
        stop_selector: str,
        text_selector: str,
        speak_selector: str,
        action_timeout: float = 2.0,
        input_settle: float = 0.1,
        max_candidate_attempts: int = 2,
        playwright_starter: Callable[[], Awaitable[Any]] = _start_playwright,
    ):
        self._surface_url = surface_url
        self._surface = urlsplit(surface_url)
        self._cdp_url = cdp_url
        self._stop_selector = stop_selector
        self._text_selector = text_selector
        self._speak_selector = speak_selector
        self._action_timeout = action_timeout
        self._input_settle = input_settle
        self._max_attempts = max(1, max_candidate_attempts)
        self._playwright_starter = playwright_starter

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._candidates: list[Page] = []
        self._preferred: Optional[Page] = None
        self._watched: set[int] = set()
        # Tabs opened by this backend rather than by the user
        self._owned: list[Page] = []

    @property
    def candidates(self) -> list[Page]:
        return list(self._candidates)

    @property
    def preferred(self) -> Optional[Page]:
        return self._preferred

    @property
    def _timeout_ms(self) -> float:
        return self._action_timeout * 1000

    def matches_surface(self, url: str) -> bool:
        parts = urlsplit(url)
        return (
            parts.scheme == self._surface.scheme
            and parts.netloc == self._surface.netloc
            and parts.path.startswith(self._surface.path or "/")
        )

    # ------------------------------------------------------------------
    # Candidate tracking
    # ------------------------------------------------------------------

    def _watch(self, page: Page) -> None:
        if id(page) not in self._watched:
            self._watched.add(id(page))
            page.on("close", lambda _page: self._forget(page))
            page.on("framenavigated", lambda frame: self._on_navigated(page, frame))
        if self.matches_surface(page.url):
            self._track(page)

    def _on_navigated(self, page: Page, frame: Any) -> None:
        if frame is not page.main_frame:
            return
        if self.matches_surface(page.url):
            self._track(page)
        else:
            self._evict(page, reason="navigated away")

    def _track(self, page: Page) -> None:
        if page not in self._candidates:
            self._candidates.append(page)
            logger.info(f"Tracking surface tab {page.url} ({len(self._candidates)} known)")

    def _evict(self, page: Page, *, reason: str) -> None:
        if page in self._candidates:
            self._candidates.remove(page)
            logger.info(f"Evicted surface tab ({reason}), {len(self._candidates)} left")
        if self._preferred is page:
            self._preferred = None

    def _forget(self, page: Page) -> None:
        self._watched.discard(id(page))
        if page in self._owned:
            self._owned.remove(page)
        self._evict(page, reason="closed")

    async def _retire(self, page: Page, *, reason: str) -> None:
        """Evict ``page``, silence it, and close it if this backend opened it."""
        self._evict(page, reason=reason)
        try:
            await asyncio.wait_for(
                page.click(self._stop_selector, timeout=self._timeout_ms),
                timeout=self._action_timeout,
            )
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.debug(f"Stop on retired surface tab failed: {e}")

        if page in self._owned:
            await self._close_owned(page)

    async def _close_owned(self, page: Page) -> None:
        if page in self._owned:
            self._owned.remove(page)
        try:
            await asyncio.wait_for(page.close(), timeout=self._action_timeout)
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not close surface tab: {e}")

    def _on_disconnected(self, _browser: Any = None) -> None:
        logger.warning("Browser connection lost")
        self._browser = None
        self._context = None
        self._candidates.clear()
        self._watched.clear()
        self._owned.clear()
        self._preferred = None

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def _connect(self) -> BrowserContext:
        if self._context is not None and self._browser is not None and self._browser.is_connected():
            return self._context

        try:
            if self._playwright is None:
                self._playwright = await self._playwright_starter()
            browser = await self._playwright.chromium.connect_over_cdp(
                self._cdp_url, timeout=self._timeout_ms
            )
        except PlaywrightError as e:
            raise DeliveryUnavailable("connect", f"browser unreachable at {self._cdp_url}: {e}") from e

        browser.on("disconnected", self._on_disconnected)
        context = browser.contexts[0] if browser.contexts else await browser.new_context()
        context.on("page", self._watch)
        for page in context.pages:
            self._watch(page)

        self._browser = browser
        self._context = context
        logger.info(f"Attached to browser at {self._cdp_url} ({len(self._candidates)} surface tabs)")
        return context

    async def ensure_ready(self) -> bool:
        context = await self._connect()
        if self._candidates:
            return False

        logger.info(f"No surface tab open, opening {self._surface_url}")
        try:
            page = await context.new_page()
        except PlaywrightError as e:
            raise DeliveryUnavailable("provision", f"could not open surface tab: {e}") from e

        self._owned.append(page)
        self._watch(page)
        try:
            await page.goto(
                self._surface_url,
                wait_until="domcontentloaded",
                timeout=self._timeout_ms,
            )
        except PlaywrightError as e:
            await self._close_owned(page)
            raise DeliveryUnavailable("provision", f"could not open surface tab: {e}") from e
        self._track(page)
        return True

    def _pick_candidate(self) -> Optional[Page]:
        if self._preferred is not None and self._preferred in self._candidates:
            return self._preferred
        return self._candidates[0] if self._candidates else None

    # ------------------------------------------------------------------
    # Scripted interactions
    # ------------------------------------------------------------------

    async def _run_on_candidates(
        self, action: str, interaction: Callable[[Page], Awaitable[None]]
    ) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            await self.ensure_ready()
            page = self._pick_candidate()
            if page is None:
                raise DeliveryUnavailable(action, "no surface tab available")
            try:
                await interaction(page)
            except PlaywrightError as e:
                last_error = e
                logger.warning(f"{action} failed on surface tab (attempt {attempt}): {e}")
                await self._retire(page, reason=f"{action} failed")
                continue
            self._preferred = page
            return {"success": True, "action": action}

        raise DeliveryError(action, f"all surface tabs failed: {last_error}")

    async def start(self, text: str, settings: VoiceSettings) -> Dict[str, Any]:
        logger.debug(f"Surface tab uses its own voice; ignoring {settings.selected_voice!r}")

        async def speak(page: Page) -> None:
            await page.click(self._stop_selector, timeout=self._timeout_ms)
            await page.fill(self._text_selector, text, timeout=self._timeout_ms)
            await asyncio.sleep(self._input_settle)
            await page.click(self._speak_selector, timeout=self._timeout_ms)

        return await self._run_on_candidates("playTTS", speak)

    async def stop(self) -> Dict[str, Any]:
        async def silence(page: Page) -> None:
            await page.click(self._stop_selector, timeout=self._timeout_ms)

        return await self._run_on_candidates("stopTTS", silence)

    async def is_speaking(self) -> bool:
        page = self._pick_candidate()
        if page is None:
            return False
        try:
            result = await asyncio.wait_for(
                page.evaluate(_SPEAKING_PROBE), timeout=self._action_timeout
            )
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.debug(f"Speaking probe failed: {e}")
            return False
        return bool(result)

    async def discard(self) -> None:
        page = self._pick_candidate()
        if page is not None:
            await self._retire(page, reason="discarded")

    async def close(self) -> None:
        for page in list(self._owned):
            await self._close_owned(page)
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        self._context = None
        self._candidates.clear()
        self._watched.clear()
        self._preferred = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error detaching from browser: {e}")
        if playwright is not None:
            await playwright.stop()

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "connected": self._browser is not None,
            "candidates": len(self._candidates),
            "surface_url": self._surface_url,
        }


__all__ = ["RemoteSurfaceBackend"]
