import asyncio
import itertools
from contextlib import asynccontextmanager

import pytest
from playwright.async_api import Error as PlaywrightError

import gallery_scraper
from gallery_scraper import (
    FALLBACK_BROWSER_ARGS,
    GalleryScraper,
    InvalidIndexError,
    auto_scroll,
    build_image_records,
    build_search_url,
    extract_gallery_links,
    extract_image_urls,
    find_chrome_executable,
    infer_extension,
)

SEARCH_PAGE_URL = "https://ahottie.net/search?kw=cosplay"

SEARCH_HTML = """
<html><body>
<div class="posts">
  <article>
    <a href="https://ahottie.net/2024/05/alpha"><img src="/thumbs/alpha.jpg"></a>
    <a href="/tag/cosplay">cosplay</a>
  </article>
  <article><a href="/2024/06/beta">Beta</a></article>
  <a href="https://ahottie.net/2024/05/alpha#comments">Alpha comments</a>
  <a href="https://other.example/2024/01/offsite">Offsite</a>
  <div class="post"><a href="/gamma">Gamma</a></div>
  <a href="/search?kw=cosplay&amp;p=2">Next page</a>
</div>
</body></html>
"""

GALLERY_HTML = """
<html><head>
<style>.hero { background: #000 url(/img/e.gif) no-repeat; }</style>
</head><body>
<div class="entry">
  <img src="/wp-content/uploads/a.jpg">
  <img data-src="https://cdn.example.com/b.PNG?w=800" src="data:image/gif;base64,R0lGOD">
  <img srcset="https://cdn.example.com/c.webp 1x, https://cdn.example.com/c2.webp 2x">
  <img src="https://ahottie.net/logo.svg">
  <img src="/wp-content/uploads/a.jpg">
  <div style="background-image: url('https://cdn.example.com/d.jpeg')"></div>
</div>
</body></html>
"""

GALLERY_PAGE_URL = "https://ahottie.net/2024/06/beta"

EXPECTED_GALLERY_IMAGES = [
    "https://ahottie.net/wp-content/uploads/a.jpg",
    "https://cdn.example.com/b.PNG?w=800",
    "https://cdn.example.com/c.webp",
    "https://cdn.example.com/d.jpeg",
    "https://ahottie.net/img/e.gif",
]


# --- HTML extraction ---

def test_extract_gallery_links_dedupes_and_keeps_discovery_order():
    links = extract_gallery_links(SEARCH_HTML, SEARCH_PAGE_URL)
    assert links == [
        "https://ahottie.net/2024/05/alpha",
        "https://ahottie.net/2024/06/beta",
        "https://ahottie.net/gamma",
    ]


def test_extract_gallery_links_limit():
    links = extract_gallery_links(SEARCH_HTML, SEARCH_PAGE_URL, limit=2)
    assert links == ["https://ahottie.net/2024/05/alpha", "https://ahottie.net/2024/06/beta"]


def test_extract_gallery_links_empty_page():
    assert extract_gallery_links("<html><body><p>No results</p></body></html>", SEARCH_PAGE_URL) == []


def test_extract_image_urls_from_img_and_css():
    assert extract_image_urls(GALLERY_HTML, GALLERY_PAGE_URL) == EXPECTED_GALLERY_IMAGES


def test_extract_image_urls_domain_allow_list():
    urls = extract_image_urls(GALLERY_HTML, GALLERY_PAGE_URL, allowed_domains=["cdn.example.com"])
    assert urls == [
        "https://cdn.example.com/b.PNG?w=800",
        "https://cdn.example.com/c.webp",
        "https://cdn.example.com/d.jpeg",
    ]


def test_extract_image_urls_limit():
    assert extract_image_urls(GALLERY_HTML, GALLERY_PAGE_URL, limit=2) == EXPECTED_GALLERY_IMAGES[:2]


def test_extract_gallery_links_skips_links_to_uploaded_files():
    html = """
    <article><a href="/wp-content/uploads/2024/05/a.jpg"><img src="/wp-content/uploads/2024/05/a-300x200.jpg"></a></article>
    <a href="https://ahottie.net/2024/05/b.webp">full size</a>
    <article><a href="/2024/05/alpha">Alpha</a></article>
    """
    assert extract_gallery_links(html, SEARCH_PAGE_URL) == ["https://ahottie.net/2024/05/alpha"]


def test_extract_image_urls_prefers_lazy_source_over_placeholder_src():
    html = """
    <img src="/img/loading.gif" data-src="https://cdn.example.com/real.jpg">
    <img src="/img/loading.gif" data-lazy-src="https://cdn.example.com/other.png">
    <img src="https://cdn.example.com/plain.jpg">
    """
    assert extract_image_urls(html, GALLERY_PAGE_URL) == [
        "https://cdn.example.com/real.jpg",
        "https://cdn.example.com/other.png",
        "https://cdn.example.com/plain.jpg",
    ]


@pytest.mark.parametrize("url, expected", [
    ("https://cdn.example.com/a.PNG?w=1", "png"),
    ("https://cdn.example.com/a.jpeg", "jpeg"),
    ("https://cdn.example.com/a.webp#x", "webp"),
    ("https://cdn.example.com/a", "jpg"),
    ("https://cdn.example.com/a.svg", "jpg"),
])
def test_infer_extension(url, expected):
    assert infer_extension(url) == expected


def test_build_image_records():
    records = build_image_records(["https://cdn.example.com/x.png", "https://cdn.example.com/y"])
    assert [r.id for r in records] == [1, 2]
    assert [r.name for r in records] == ["image_1.png", "image_2.jpg"]
    assert all(r.thumb == r.url for r in records)


def test_build_search_url_encodes_keyword():
    assert build_search_url("Mia Nanasawa") == "https://ahottie.net/search?kw=Mia%20Nanasawa"


# --- Retry loop ---

class FakeSession:
    def __init__(self, pages, visited):
        self.pages = pages
        self.visited = visited

    async def render(self, url):
        self.visited.append(url)
        outcome = self.pages[url]
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return url, outcome


class FakeBrowserScraper(GalleryScraper):
    """GalleryScraper whose browser serves canned HTML."""

    def __init__(self, pages, **kwargs):
        kwargs.setdefault("max_attempts", 2)
        kwargs.setdefault("max_gallery_links", 10)
        kwargs.setdefault("max_images", 0)
        kwargs.setdefault("image_domains", ())
        kwargs.setdefault("search_page_fallback", True)
        super().__init__(retry_delay=0, **kwargs)
        self.pages = pages
        self.visited = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def open_browser(self):
        self.opened += 1
        try:
            yield FakeSession(self.pages, self.visited)
        finally:
            self.closed += 1


def test_scrape_returns_images_of_selected_gallery():
    scraper = FakeBrowserScraper({SEARCH_PAGE_URL: SEARCH_HTML, GALLERY_PAGE_URL: GALLERY_HTML})

    urls = asyncio.run(scraper.scrape("cosplay", 2))

    assert urls == EXPECTED_GALLERY_IMAGES
    assert scraper.visited == [SEARCH_PAGE_URL, GALLERY_PAGE_URL]
    assert scraper.opened == scraper.closed == 1


@pytest.mark.parametrize("index", [0, 4, 99])
def test_scrape_rejects_index_out_of_range_without_retrying(index):
    scraper = FakeBrowserScraper({SEARCH_PAGE_URL: SEARCH_HTML}, max_attempts=3)

    with pytest.raises(InvalidIndexError) as excinfo:
        asyncio.run(scraper.scrape("cosplay", index))

    assert excinfo.value.index == index
    assert excinfo.value.links_found == 3
    assert scraper.opened == scraper.closed == 1


def test_scrape_gives_up_after_max_attempts_when_no_galleries():
    scraper = FakeBrowserScraper({SEARCH_PAGE_URL: "<html><body>Nothing here</body></html>"}, max_attempts=3)

    assert asyncio.run(scraper.scrape("cosplay", 1)) == []
    assert scraper.opened == scraper.closed == 3


def test_scrape_retries_after_navigation_error():
    pages = {
        SEARCH_PAGE_URL: [PlaywrightError("net::ERR_CONNECTION_RESET"), SEARCH_HTML],
        GALLERY_PAGE_URL: GALLERY_HTML,
    }
    scraper = FakeBrowserScraper(pages)

    assert asyncio.run(scraper.scrape("cosplay", 2)) == EXPECTED_GALLERY_IMAGES
    assert scraper.opened == scraper.closed == 2


def test_scrape_falls_back_to_search_page_images():
    pages = {SEARCH_PAGE_URL: SEARCH_HTML, GALLERY_PAGE_URL: "<html><body>empty</body></html>"}
    scraper = FakeBrowserScraper(pages)

    assert asyncio.run(scraper.scrape("cosplay", 2)) == ["https://ahottie.net/thumbs/alpha.jpg"]
    assert scraper.opened == 1


def test_scrape_without_fallback_returns_empty_after_all_attempts():
    pages = {SEARCH_PAGE_URL: SEARCH_HTML, GALLERY_PAGE_URL: "<html><body>empty</body></html>"}
    scraper = FakeBrowserScraper(pages, search_page_fallback=False)

    assert asyncio.run(scraper.scrape("cosplay", 2)) == []
    assert scraper.opened == scraper.closed == 2


# --- Scrolling ---

class FakeScrollPage:
    """Answers scrollHeight queries from `heights` and counts scrolls."""

    def __init__(self, heights):
        self.heights = iter(heights)
        self.scrolls = 0

    async def evaluate(self, script):
        if "scrollTo" in script:
            self.scrolls += 1
            return None
        return next(self.heights)


def test_auto_scroll_stops_when_height_stops_growing():
    page = FakeScrollPage([100, 200, 300, 300])

    asyncio.run(auto_scroll(page, max_rounds=10, delay=0))

    assert page.scrolls == 3


def test_auto_scroll_stops_after_max_rounds():
    page = FakeScrollPage(itertools.count(100, 100))

    asyncio.run(auto_scroll(page, max_rounds=4, delay=0))

    assert page.scrolls == 4


# --- Browser launch ---

class FakeChromium:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    async def launch(self, **kwargs):
        self.calls.append(kwargs)
        if len(self.calls) <= self.failures:
            raise PlaywrightError("Failed to launch chromium because executable doesn't exist")
        return "browser"


class FakePlaywright:
    def __init__(self, chromium):
        self.chromium = chromium


def test_launch_falls_back_to_bundled_chromium(monkeypatch):
    monkeypatch.setattr(gallery_scraper, "find_chrome_executable", lambda configured: "/usr/bin/chromium")
    chromium = FakeChromium(failures=1)

    browser = asyncio.run(GalleryScraper(proxy_url="")._launch(FakePlaywright(chromium)))

    assert browser == "browser"
    assert len(chromium.calls) == 2
    assert chromium.calls[0]["executable_path"] == "/usr/bin/chromium"
    assert "executable_path" not in chromium.calls[1]
    assert chromium.calls[1]["args"] == FALLBACK_BROWSER_ARGS
    assert chromium.calls[1]["headless"] is True


def test_launch_uses_bundled_chromium_and_proxy_when_no_executable(monkeypatch):
    monkeypatch.setattr(gallery_scraper, "find_chrome_executable", lambda configured: None)
    chromium = FakeChromium()

    asyncio.run(GalleryScraper(proxy_url="http://127.0.0.1:7890")._launch(FakePlaywright(chromium)))

    assert len(chromium.calls) == 1
    assert "executable_path" not in chromium.calls[0]
    assert chromium.calls[0]["proxy"] == {"server": "http://127.0.0.1:7890"}


def test_launch_without_proxy_passes_no_proxy(monkeypatch):
    monkeypatch.setattr(gallery_scraper, "find_chrome_executable", lambda configured: None)
    chromium = FakeChromium()

    asyncio.run(GalleryScraper(proxy_url="")._launch(FakePlaywright(chromium)))

    assert "proxy" not in chromium.calls[0]


def test_find_chrome_executable(tmp_path, monkeypatch):
    configured = tmp_path / "chrome"
    candidate = tmp_path / "chromium"
    candidate.write_text("")
    monkeypatch.setattr(gallery_scraper, "CHROME_CANDIDATES", [str(tmp_path / "missing"), str(candidate)])

    assert find_chrome_executable(str(configured)) == str(candidate)

    configured.write_text("")
    assert find_chrome_executable(str(configured)) == str(configured)

    monkeypatch.setattr(gallery_scraper, "CHROME_CANDIDATES", [])
    assert find_chrome_executable(str(tmp_path / "nope")) is None
