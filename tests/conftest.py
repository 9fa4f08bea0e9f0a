import pytest
import requests
from fastapi.testclient import TestClient

import app as app_module
import settings
from album_cache import AlbumCache


class FakeScraper:
    """Stands in for GalleryScraper; answers from a dict keyed by (model, index)."""

    def __init__(self):
        self.results = {}
        self.error = None
        self.calls = []

    async def scrape(self, model, index):
        self.calls.append((model, index))
        if self.error is not None:
            raise self.error
        return list(self.results.get((model, index), []))


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size=1):
        yield self.content


class FakeHttpSession:
    """Minimal requests.Session replacement: url -> bytes, status code, or exception."""

    def __init__(self, responses):
        self.responses = responses
        self.requested = []
        self.closed = False

    def get(self, url, timeout=None, stream=False):
        self.requested.append(url)
        outcome = self.responses[url]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return FakeResponse(status_code=outcome)
        return FakeResponse(content=outcome)

    def close(self):
        self.closed = True


@pytest.fixture
def cache(tmp_path):
    return AlbumCache(str(tmp_path / "cache"))


@pytest.fixture
def fake_scraper():
    return FakeScraper()


@pytest.fixture
def downloads_dir(tmp_path, monkeypatch):
    path = tmp_path / "downloads"
    monkeypatch.setattr(settings, "DOWNLOADS_DIR", str(path))
    return path


@pytest.fixture
def client(monkeypatch, cache, fake_scraper, downloads_dir):
    monkeypatch.setattr(app_module, "cache", cache)
    monkeypatch.setattr(app_module, "scraper", fake_scraper)
    monkeypatch.setattr(settings, "DEMO_FALLBACK", False)
    return TestClient(app_module.app)


@pytest.fixture
def http_session():
    return FakeHttpSession
