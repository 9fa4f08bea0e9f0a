# pages.py
"""Inline HTML pages: home, cached gallery viewer and its not-found page."""
from html import escape
from typing import List
from urllib.parse import quote

from schemas import ImageRecord

BASE_STYLE = """
    body { font-family: Arial, sans-serif; margin: 0; padding: 20px; background: #f5f5f5; }
    .container, .header { max-width: 900px; margin: 0 auto 20px auto; background: white; padding: 30px;
                          border-radius: 10px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
    .btn { display: inline-block; background: #0066cc; color: white; padding: 10px 20px;
           border-radius: 5px; text-decoration: none; margin: 5px; }
    .btn.secondary { background: #666; }
    .image { max-width: 900px; margin: 20px auto; padding: 15px; background: white; border-radius: 8px;
             box-shadow: 0 2px 5px rgba(0,0,0,0.1); }
    .image img { max-width: 100%; height: auto; border-radius: 5px; border: 1px solid #ddd; }
    code { background: #f0f0f0; padding: 2px 6px; border-radius: 4px; }
    .note { background: #fff3cd; border: 1px solid #ffeaa7; padding: 15px; border-radius: 5px; margin: 20px 0; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{escape(title)}</title>
    <style>{BASE_STYLE}</style>
  </head>
  <body>
{body}
  </body>
</html>
"""


def _album_path(prefix: str, model: str, index: int) -> str:
    return f"/api/{prefix}/{quote(model, safe='')}/{index}"


def render_no_cache(model: str, index: int) -> str:
    body = f"""
    <div class="container">
      <h1>No Cached Images</h1>
      <p>No images found for <strong>{escape(model)}</strong> at index <strong>{index}</strong>.</p>
      <a class="btn" href="{escape(_album_path('album', model, index))}">Scrape Images</a>
      <a class="btn secondary" href="/">Home</a>
    </div>"""
    return _page("No Cached Images", body)


def render_gallery(model: str, index: int, images: List[ImageRecord]) -> str:
    image_blocks = "".join(
        f"""
    <div class="image">
      <h4>{escape(img.name)}</h4>
      <img src="{escape(img.url)}" loading="lazy" onerror="this.style.display='none'">
    </div>"""
        for img in images
    )
    rescrape = _album_path("album", model, index) + "?refresh=true"
    body = f"""
    <div class="header">
      <h1>{escape(model)} - Gallery {index}</h1>
      <p>Total: {len(images)} images</p>
      <a class="btn" href="{escape(rescrape)}">Rescrape</a>
      <a class="btn" href="{escape(_album_path('bulk-download', model, index))}">Download All</a>
      <a class="btn secondary" href="/">Home</a>
    </div>{image_blocks}"""
    return _page(f"{model} - Gallery {index}", body)


def render_home(base_url: str, environment: str) -> str:
    body = f"""
    <div class="container">
      <h1>Image Scraper API</h1>
      <div class="note"><strong>Status:</strong> Service is running ({escape(environment)}).</div>

      <h2>Quick Start</h2>
      <a class="btn" href="/api/album/cosplay/1">Scrape Cosplay</a>
      <a class="btn" href="/api/album/Mia%20Nanasawa/1">Scrape Mia Nanasawa</a>

      <h2>API Endpoints</h2>
      <ul>
        <li><code>GET /api/album/{{model}}/{{index}}</code> - Scrape images (add <code>?refresh=true</code> to bypass the cache)</li>
        <li><code>GET /api/nsfw/{{model}}/{{index}}</code> - View cached images</li>
        <li><code>GET /api/bulk-download/{{model}}/{{index}}</code> - Download cached images to the server</li>
        <li><code>GET /downloads/{{model}}</code> - List downloaded files</li>
        <li><code>GET /health</code> - Health check</li>
        <li><code>/docs</code> - Swagger UI documentation</li>
      </ul>

      <p><strong>Base URL:</strong> <code>{escape(base_url)}</code></p>
      <p><em>First request may take a few seconds while the browser starts.</em></p>
    </div>"""
    return _page("Image Scraper API", body)
