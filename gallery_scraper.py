# gallery_scraper.py
"""
Headless-browser scraper for ahottie.net galleries.

A scrape searches the site for a model, picks the N-th gallery link on the
results page and collects the image URLs of that gallery. Every attempt runs
in its own browser instance which is closed whatever the outcome.
"""
import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence, Tuple
from urllib.parse import quote, urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError, async_playwright

import settings
from schemas import ImageRecord

logger = logging.getLogger(__name__)

# --- Constants ---
SITE_HOST = "ahottie.net"
BASE_URL = f"https://{SITE_HOST}"
SEARCH_URL = BASE_URL + "/search?kw={query}"

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
VIEWPORT = {"width": 1280, "height": 720}
LAUNCH_TIMEOUT_MS = 30000
ACTION_TIMEOUT_MS = 15000

# Flags for running Chromium inside small containers.
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-zygote",
    "--disable-features=VizDisplayCompositor",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]
FALLBACK_BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

CHROME_CANDIDATES = [
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "/usr/bin/chrome",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
]

# Tried in order; later selectors only add links the earlier ones missed.
GALLERY_LINK_SELECTORS = [
    'a[href*="/20"]',  # dated permalinks, e.g. /2024/05/some-gallery
    "article a[href]",
    ".post a[href]",
    ".entry-title a[href]",
    'a[rel="bookmark"]',
    "h2 a[href]",
    "h3 a[href]",
]
EXCLUDED_PATH_PREFIXES = ("/search", "/tag/", "/tags/", "/category/", "/page/", "/author/", "/wp-content/")

# Lazy-load attributes win over `src`, which then usually holds a placeholder.
LAZY_SOURCE_ATTRS = ("data-src", "data-original", "data-lazy-src")
IMAGE_EXTENSION_PATTERN = re.compile(r"\.(jpe?g|png|webp|gif)\b", re.IGNORECASE)
BACKGROUND_IMAGE_PATTERN = re.compile(
    r"background(?:-image)?\s*:[^;{}]*?url\(\s*['\"]?([^'\")]+?)['\"]?\s*\)", re.IGNORECASE
)
KNOWN_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "gif")

DEMO_IMAGE_COUNT = 3


# --- Errors ---

class ScrapeError(Exception):
    """A scrape attempt failed in a way that is worth retrying."""


class InvalidIndexError(Exception):
    """The requested gallery index is outside the links found on the search page."""

    def __init__(self, index: int, links_found: int):
        self.index = index
        self.links_found = links_found
        super().__init__(f"Invalid index {index}: found {links_found} gallery link(s)")


# --- HTML extraction ---

def build_search_url(model: str) -> str:
    return SEARCH_URL.format(query=quote(model, safe=""))


def _is_site_host(url: str, site_host: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return host == site_host or host.endswith("." + site_host)


def extract_gallery_links(
    html: str,
    page_url: str,
    selectors: Sequence[str] = GALLERY_LINK_SELECTORS,
    limit: int = 0,
    site_host: str = SITE_HOST,
) -> List[str]:
    """
    Collects gallery links from a search results page.

    Links are resolved against `page_url`, kept only when they point into the
    site, and returned de-duplicated in discovery order. `limit` of 0 keeps all.
    """
    soup = BeautifulSoup(html, "html.parser")
    page_url_clean = urldefrag(page_url)[0]
    links: List[str] = []
    seen = set()

    for selector in selectors:
        for anchor in soup.select(selector):
            href = (anchor.get("href") or "").strip()
            if not href or href.startswith(("javascript:", "mailto:", "#")):
                continue
            url = urldefrag(urljoin(page_url, href))[0]
            if url in seen or url == page_url_clean or not _is_site_host(url, site_host):
                continue
            path = urlparse(url).path
            if path in ("", "/") or path.startswith(EXCLUDED_PATH_PREFIXES) or IMAGE_EXTENSION_PATTERN.search(path):
                continue
            seen.add(url)
            links.append(url)
            if limit and len(links) >= limit:
                return links
    return links


def _first_srcset_url(srcset: str) -> Optional[str]:
    first = srcset.split(",")[0].strip()
    return first.split()[0] if first else None


def extract_image_urls(
    html: str,
    page_url: str,
    allowed_domains: Sequence[str] = (),
    limit: int = 0,
) -> List[str]:
    """
    Collects image URLs from `img` elements and CSS background-image declarations.

    Only URLs with an image file extension survive; when `allowed_domains` is
    non-empty a URL must also contain one of its entries.
    """
    soup = BeautifulSoup(html, "html.parser")
    candidates: List[str] = []

    for img in soup.find_all("img"):
        lazy = next((img[attr] for attr in LAZY_SOURCE_ATTRS if img.get(attr)), None)
        source = lazy or img.get("src")
        if source:
            candidates.append(source)
        srcset = img.get("srcset") or img.get("data-srcset")
        if srcset:
            first = _first_srcset_url(srcset)
            if first:
                candidates.append(first)

    for tag in soup.select("[style]"):
        candidates.extend(BACKGROUND_IMAGE_PATTERN.findall(tag["style"]))
    for style_block in soup.find_all("style"):
        candidates.extend(BACKGROUND_IMAGE_PATTERN.findall(style_block.string or ""))

    urls: List[str] = []
    seen = set()
    for candidate in candidates:
        candidate = candidate.strip()
        if not candidate or candidate.startswith("data:"):
            continue
        url = urljoin(page_url, candidate)
        if url in seen or not url.startswith(("http://", "https://")):
            continue
        if not IMAGE_EXTENSION_PATTERN.search(url):
            continue
        if allowed_domains and not any(domain in url for domain in allowed_domains):
            continue
        seen.add(url)
        urls.append(url)
        if limit and len(urls) >= limit:
            break
    return urls


def infer_extension(url: str) -> str:
    match = re.search(r"\.([A-Za-z0-9]+)$", urlparse(url).path)
    ext = match.group(1).lower() if match else ""
    return ext if ext in KNOWN_EXTENSIONS else "jpg"


def build_image_records(urls: Sequence[str]) -> List[ImageRecord]:
    return [
        ImageRecord(id=i, name=f"image_{i}.{infer_extension(url)}", url=url, thumb=url)
        for i, url in enumerate(urls, start=1)
    ]


def demo_records() -> List[ImageRecord]:
    """Placeholder album served when scraping fails and DEMO_FALLBACK is on."""
    return [
        ImageRecord(
            id=i,
            name=f"sample_{i}.jpg",
            url=f"https://picsum.photos/800/600?random={i}",
            thumb=f"https://picsum.photos/400/300?random={i}",
        )
        for i in range(1, DEMO_IMAGE_COUNT + 1)
    ]


# --- Browser ---

def find_chrome_executable(configured: str = "") -> Optional[str]:
    """Returns the first existing browser binary, or None to use Playwright's bundled Chromium."""
    for path in [configured, *CHROME_CANDIDATES]:
        if path and os.path.exists(path):
            return path
    return None


async def auto_scroll(page, max_rounds: int, delay: float) -> None:
    """Scrolls to the bottom until the page height stops growing or `max_rounds` is reached."""
    last_height = await page.evaluate("document.body.scrollHeight")
    for _ in range(max_rounds):
        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        await asyncio.sleep(delay)
        new_height = await page.evaluate("document.body.scrollHeight")
        if new_height == last_height:
            break
        last_height = new_height


class BrowserSession:
    """One open page. `render` navigates, lets lazy content load and returns the final HTML."""

    def __init__(self, page, navigation_timeout_ms: int, settle_delay: float, scroll_rounds: int, scroll_delay: float):
        self.page = page
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay = settle_delay
        self.scroll_rounds = scroll_rounds
        self.scroll_delay = scroll_delay

    async def render(self, url: str) -> Tuple[str, str]:
        """Returns (final page URL, HTML)."""
        logger.info(f"Navigating to: {url}")
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        await asyncio.sleep(self.settle_delay)
        await auto_scroll(self.page, self.scroll_rounds, self.scroll_delay)
        return self.page.url, await self.page.content()


class GalleryScraper:
    def __init__(
        self,
        max_attempts: int = settings.MAX_ATTEMPTS,
        retry_delay: float = settings.RETRY_DELAY,
        max_gallery_links: int = settings.MAX_GALLERY_LINKS,
        max_images: int = settings.MAX_IMAGES,
        image_domains: Sequence[str] = tuple(settings.IMAGE_DOMAINS),
        search_page_fallback: bool = settings.SEARCH_PAGE_FALLBACK,
        chrome_path: str = settings.CHROME_PATH,
        proxy_url: str = settings.PROXY_URL,
        navigation_timeout_ms: int = settings.NAVIGATION_TIMEOUT_MS,
        settle_delay: float = settings.PAGE_SETTLE_DELAY,
        scroll_rounds: int = settings.SCROLL_MAX_ROUNDS,
        scroll_delay: float = settings.SCROLL_DELAY,
    ):
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.max_gallery_links = max_gallery_links
        self.max_images = max_images
        self.image_domains = tuple(image_domains)
        self.search_page_fallback = search_page_fallback
        self.chrome_path = chrome_path
        self.proxy_url = proxy_url
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay = settle_delay
        self.scroll_rounds = scroll_rounds
        self.scroll_delay = scroll_delay

    async def _launch(self, playwright):
        launch_kwargs = {"headless": True, "args": BROWSER_ARGS, "timeout": LAUNCH_TIMEOUT_MS}
        if self.proxy_url:
            launch_kwargs["proxy"] = {"server": self.proxy_url}

        executable = find_chrome_executable(self.chrome_path)
        if executable is None:
            logger.info("Launching bundled Chromium...")
            return await playwright.chromium.launch(**launch_kwargs)

        logger.info(f"Launching browser: {executable}")
        try:
            return await playwright.chromium.launch(executable_path=executable, **launch_kwargs)
        except PlaywrightError as e:
            logger.warning(f"Browser launch failed ({e}); trying bundled Chromium with minimal flags")
            return await playwright.chromium.launch(**dict(launch_kwargs, args=FALLBACK_BROWSER_ARGS))

    @asynccontextmanager
    async def open_browser(self) -> AsyncIterator[BrowserSession]:
        async with async_playwright() as playwright:
            browser = await self._launch(playwright)
            try:
                context = await browser.new_context(user_agent=USER_AGENT, viewport=VIEWPORT)
                page = await context.new_page()
                page.set_default_navigation_timeout(self.navigation_timeout_ms)
                page.set_default_timeout(ACTION_TIMEOUT_MS)
                yield BrowserSession(
                    page, self.navigation_timeout_ms, self.settle_delay, self.scroll_rounds, self.scroll_delay
                )
            finally:
                await browser.close()

    async def _attempt(self, model: str, index: int) -> List[str]:
        async with self.open_browser() as session:
            search_page_url, search_html = await session.render(build_search_url(model))
            links = extract_gallery_links(search_html, search_page_url, limit=self.max_gallery_links)
            logger.info(f"Found {len(links)} gallery links")
            if not links:
                raise ScrapeError("No galleries found")
            if not 1 <= index <= len(links):
                raise InvalidIndexError(index, len(links))

            gallery_page_url, gallery_html = await session.render(links[index - 1])
            urls = extract_image_urls(gallery_html, gallery_page_url, self.image_domains, self.max_images)
            logger.info(f"Found {len(urls)} images")

            if not urls and self.search_page_fallback:
                urls = extract_image_urls(search_html, search_page_url, self.image_domains, self.max_images)
                logger.info(f"Search page fallback found {len(urls)} images")
            return urls

    async def scrape(self, model: str, index: int) -> List[str]:
        """
        Returns the image URLs of the `index`-th (1-based) gallery found for `model`.

        Navigation failures and empty results are retried up to `max_attempts`
        times; an empty list means every attempt failed. InvalidIndexError is
        raised straight away since retrying cannot fix it.
        """
        logger.info(f"Scraping {model} at index {index}...")
        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Attempt {attempt}/{self.max_attempts}")
            try:
                urls = await self._attempt(model, index)
            except (ScrapeError, PlaywrightError) as e:
                logger.warning(f"Attempt {attempt}/{self.max_attempts} failed: {e}")
            else:
                if urls:
                    return urls
                logger.warning(f"Attempt {attempt}/{self.max_attempts} found no images")
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)

        logger.warning(f"All {self.max_attempts} attempts failed for {model} at index {index}")
        return []
