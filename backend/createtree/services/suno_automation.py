"""Suno web-app automation with Playwright.

Drives the Suno create page the way a logged-in user would: load the
session cookies exported from a browser, fill in the song form, wait for
the render to finish, then download the MP3 into the uploads directory.

There is no public Suno API, so every selector here mirrors the web UI and
may need adjusting when the site changes.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx
from playwright.async_api import Browser, Page, async_playwright

from createtree.schemas.common import VocalGender
from createtree.schemas.generation import MusicGenerationRequest
from createtree.services.http_client_manager import get_http_client

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

# ── Page selectors ─────────────────────────────────────────────────────

SEL_PROMPT = 'textarea[placeholder*="prompt"]'
SEL_STYLE_BUTTON = 'button[aria-label*="Style"]'
SEL_STYLE_ITEM = ".style-dropdown .style-item"
SEL_LYRICS_BUTTON = 'button[aria-label*="Lyrics"]'
SEL_LYRICS = 'textarea[placeholder*="lyrics"]'
SEL_VOICE_BUTTON = 'button[aria-label*="Voice"]'
SEL_VOICE_ITEM = ".voice-dropdown .voice-item"
SEL_DURATION_BUTTON = 'button[aria-label*="Duration"]'
SEL_DURATION_ITEM = ".duration-dropdown .duration-item"
SEL_CREATE = 'button[aria-label="Create"]'
SEL_COMPLETE = ".generation-complete"
SEL_SIGN_IN = 'a[href="/auth/sign-in"]'
SEL_TITLE = ".song-title"
SEL_LYRICS_LINE = ".lyrics-line"
SEL_DURATION_INFO = ".duration-info"
SEL_COVER = "img.cover-image"
SEL_DOWNLOAD = 'button[aria-label="Download"]'
SEL_DOWNLOAD_MP3 = '.download-option[data-format="mp3"]'
SEL_DOWNLOAD_LINK = '.download-link[data-format="mp3"]'

VOICE_LABELS = {
    VocalGender.MALE: "Male",
    VocalGender.FEMALE: "Female",
    VocalGender.NONE: "Instrumental",
}

_DURATION_RE = re.compile(r"(\d+):(\d{2})")


class SunoAutomationError(RuntimeError):
    """The Suno page did not behave as expected."""


class SunoConfigurationError(SunoAutomationError):
    """The automation cannot start (missing or unreadable cookies)."""


@dataclass
class MusicGenerationResult:
    audio_url: str
    local_path: str
    title: str
    lyrics: str | None = None
    duration: int | None = None
    cover_image_url: str | None = None


# ── Cookie handling ────────────────────────────────────────────────────


def _same_site(value: str | None) -> str:
    lowered = (value or "").lower()
    if lowered == "lax":
        return "Lax"
    if lowered == "strict":
        return "Strict"
    return "None"


def convert_cookies(raw_cookies: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert browser-extension cookie exports to Playwright's cookie shape."""
    converted = []
    for cookie in raw_cookies:
        if not cookie.get("name") or "value" not in cookie:
            continue
        domain = cookie.get("domain") or ""
        expires = cookie.get("expirationDate")
        converted.append({
            "name": cookie["name"],
            "value": cookie["value"],
            "domain": domain[1:] if domain.startswith(".") else domain,
            "path": cookie.get("path") or "/",
            "expires": int(expires) if expires else -1,
            "httpOnly": bool(cookie.get("httpOnly", False)),
            "secure": bool(cookie.get("secure", False)),
            "sameSite": _same_site(cookie.get("sameSite")),
        })
    return converted


def load_cookies(cookie_file: str | Path) -> list[dict[str, Any]]:
    path = Path(cookie_file)
    if not path.is_file():
        raise SunoConfigurationError(f"Suno cookie file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SunoConfigurationError(f"Suno cookie file is unreadable: {exc}") from exc
    if not isinstance(raw, list):
        raise SunoConfigurationError("Suno cookie file must contain a JSON list")
    cookies = convert_cookies(raw)
    if not cookies:
        raise SunoConfigurationError("Suno cookie file contains no usable cookies")
    logger.info("Loaded %d Suno cookie(s)", len(cookies))
    return cookies


def parse_duration(text: str | None) -> int | None:
    """Parse ``m:ss`` into seconds."""
    if not text:
        return None
    match = _DURATION_RE.search(text)
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def duration_label(seconds: str) -> str:
    minutes = int(seconds) / 60
    return f"{minutes:g} min"


# ── Automation ─────────────────────────────────────────────────────────


class SunoAutomation:
    """One browser session per generation; the browser is always closed."""

    def __init__(
        self,
        *,
        base_url: str = "https://app.suno.ai",
        cookie_file: str | Path = "./config/suno-cookies.json",
        output_dir: str | Path = "./uploads/suno",
        generation_timeout: float = 300.0,
        headless: bool = True,
        public_prefix: str = "/uploads/suno",
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cookie_file = Path(cookie_file)
        self.output_dir = Path(output_dir)
        self.generation_timeout = generation_timeout
        self.headless = headless
        self.public_prefix = public_prefix.rstrip("/")
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "SunoAutomation":
        return cls(
            base_url=settings.SUNO_BASE_URL,
            cookie_file=settings.SUNO_COOKIE_FILE,
            output_dir=settings.music_output_path,
            generation_timeout=settings.SUNO_GENERATION_TIMEOUT_SECONDS,
            headless=settings.SUNO_HEADLESS,
        )

    async def generate(
        self,
        request: MusicGenerationRequest,
        job_id: str,
        progress: ProgressCallback | None = None,
    ) -> MusicGenerationResult:
        report = progress or (lambda message, pct: None)
        cookies = load_cookies(self.cookie_file)

        report("Starting music generation", 10)
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
            try:
                return await self._run(browser, cookies, request, job_id, report)
            finally:
                await browser.close()
                logger.debug("Suno browser closed for job %s", job_id[:8])

    async def _run(
        self,
        browser: Browser,
        cookies: list[dict[str, Any]],
        request: MusicGenerationRequest,
        job_id: str,
        report: ProgressCallback,
    ) -> MusicGenerationResult:
        context = await browser.new_context(
            user_agent=USER_AGENT,
            viewport={"width": 1920, "height": 1080},
        )
        await context.add_cookies(cookies)
        page = await context.new_page()

        await page.goto(self.base_url, wait_until="networkidle")
        if not await self._is_logged_in(page):
            raise SunoAutomationError("Not logged in to Suno; refresh the cookie file")

        report("Filling in song details", 20)
        await page.goto(f"{self.base_url}/create", wait_until="networkidle")
        await self._fill_form(page, request)

        report("Composing music", 30)
        await page.click(SEL_CREATE)
        await page.wait_for_selector(SEL_COMPLETE, timeout=self.generation_timeout * 1000)

        report("Reading song details", 80)
        info = await self._extract_info(page)

        report("Downloading audio", 90)
        mp3_url = await self._find_mp3_url(page)
        local_path = await self._download(mp3_url, job_id)

        filename = local_path.name
        title = info.get("title") or request.title or f"Suno-{uuid.uuid4().hex[:6]}"
        return MusicGenerationResult(
            audio_url=f"{self.public_prefix}/{filename}",
            local_path=str(local_path),
            title=title,
            lyrics=info.get("lyrics") or request.lyrics,
            duration=info.get("duration"),
            cover_image_url=info.get("cover_image_url"),
        )

    async def _is_logged_in(self, page: Page) -> bool:
        if await page.locator(SEL_CREATE).count():
            return True
        return await page.locator(SEL_SIGN_IN).count() == 0

    async def _fill_form(self, page: Page, request: MusicGenerationRequest) -> None:
        await page.wait_for_selector(SEL_PROMPT, state="visible")
        await page.fill(SEL_PROMPT, request.prompt)

        if request.style:
            logger.debug("Selecting style %s", request.style)
            await page.click(SEL_STYLE_BUTTON)
            await self._pick_option(page, SEL_STYLE_ITEM, request.style)

        if request.lyrics:
            await page.click(SEL_LYRICS_BUTTON)
            await page.wait_for_selector(SEL_LYRICS, state="visible")
            await page.fill(SEL_LYRICS, request.lyrics)

        if request.vocal_gender:
            await page.click(SEL_VOICE_BUTTON)
            await self._pick_option(page, SEL_VOICE_ITEM, VOICE_LABELS[request.vocal_gender])

        if request.duration:
            await page.click(SEL_DURATION_BUTTON)
            await self._pick_option(page, SEL_DURATION_ITEM, duration_label(request.duration.value))

    async def _pick_option(self, page: Page, selector: str, label: str) -> None:
        await page.wait_for_selector(selector, state="visible")
        option = page.locator(selector).filter(has_text=re.compile(re.escape(label), re.IGNORECASE))
        if await option.count():
            await option.first.click()
        else:
            logger.warning("No Suno option matching %r under %s", label, selector)

    async def _extract_info(self, page: Page) -> dict[str, Any]:
        info: dict[str, Any] = {}
        title = page.locator(SEL_TITLE)
        if await title.count():
            info["title"] = (await title.first.inner_text()).strip() or None

        lines = [line.strip() for line in await page.locator(SEL_LYRICS_LINE).all_inner_texts()]
        if lines:
            info["lyrics"] = "\n".join(lines)

        duration = page.locator(SEL_DURATION_INFO)
        if await duration.count():
            info["duration"] = parse_duration(await duration.first.inner_text())

        cover = page.locator(SEL_COVER)
        if await cover.count():
            info["cover_image_url"] = await cover.first.get_attribute("src")
        return info

    async def _find_mp3_url(self, page: Page) -> str:
        await page.click(SEL_DOWNLOAD)
        await page.wait_for_selector(SEL_DOWNLOAD_MP3, state="visible")
        await page.click(SEL_DOWNLOAD_MP3)
        link = page.locator(SEL_DOWNLOAD_LINK)
        href = await link.first.get_attribute("href") if await link.count() else None
        if not href:
            raise SunoAutomationError("MP3 download URL not found on the Suno page")
        return href

    async def _download(self, url: str, job_id: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"suno-{job_id}.mp3"
        client = self._client or get_http_client("suno")
        resp = await client.get(url)
        resp.raise_for_status()
        path.write_bytes(resp.content)
        logger.info("Saved Suno audio to %s (%d bytes)", path, len(resp.content))
        return path
