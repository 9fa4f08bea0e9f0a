# app.py

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import downloader
import pages
import settings
from album_cache import AlbumCache, safe_name
from gallery_scraper import (
    SITE_HOST,
    GalleryScraper,
    InvalidIndexError,
    build_image_records,
    demo_records,
    find_chrome_executable,
)
from schemas import AlbumResponse, BulkDownloadResponse, DownloadedFile, DownloadListing, ErrorResponse

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# --- Shared collaborators ---
# Module-level so the handlers (and tests) can swap them.
cache = AlbumCache(settings.CACHE_DIR)
scraper = GalleryScraper()


def error_detail(error: str, **fields) -> dict:
    """Builds an HTTPException detail rendered as the JSON body of an error response."""
    return ErrorResponse(error=error, **fields).model_dump(exclude_none=True)


def album_not_found(model: str, index: int) -> HTTPException:
    return HTTPException(status_code=404, detail=error_detail(
        "No images found",
        suggestion=(
            f"Check the spelling of '{model}' or try another index. "
            f"To scrape again, call /api/album/{quote(model, safe='')}/{index}?refresh=true"
        ),
    ))


@asynccontextmanager
async def lifespan(app: FastAPI):
    for directory in (settings.CACHE_DIR, settings.DOWNLOADS_DIR):
        os.makedirs(directory, exist_ok=True)
        logger.info(f"Directory ready: {directory}")
    logger.info(f"Server running on {settings.get_base_url()}")
    yield


# --- FastAPI App Setup ---
# Enable docs at /docs and /redoc automatically
app = FastAPI(title="Image Scraper API", lifespan=lifespan)

# Add CORS middleware to allow cross-origin requests from anywhere
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Exception Handlers ---

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(InvalidIndexError)
async def invalid_index_handler(request: Request, exc: InvalidIndexError):
    logger.info(f"Rejected {request.url.path}: {exc}")
    payload = ErrorResponse(
        error=f"Invalid index {exc.index}. Found {exc.links_found} galleries.",
        index=exc.index,
        links_found=exc.links_found,
    )
    return JSONResponse(status_code=400, content=payload.model_dump(exclude_none=True))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


# --- API Endpoints ---

@app.get("/", response_class=HTMLResponse, include_in_schema=False)
async def root():
    """Home page listing the endpoints."""
    environment = "Render" if settings.RENDER else "Local"
    return HTMLResponse(pages.render_home(settings.get_base_url(), environment))


@app.get("/health", summary="Health check")
async def health():
    return {
        "status": "OK",
        "service": "Image Scraper API",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": "Render" if settings.RENDER else "Local",
        "browser": find_chrome_executable(settings.CHROME_PATH) or "bundled chromium",
    }


@app.get(
    "/api/album/{model}/{index}",
    response_model=AlbumResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get the images of a model's gallery",
)
async def get_album(
    model: str = Path(..., description="Search keyword, usually a model name."),
    index: int = Path(..., description="1-based position of the gallery on the search results page."),
    refresh: bool = Query(False, description="Ignore the cache and scrape again."),
):
    """
    Returns the images of the `index`-th gallery found when searching for `model`.

    - Served from the on-disk cache when present.
    - A cached empty result answers 404 without scraping again, unless `refresh` is set.
    - Otherwise a headless browser scrapes the site and the result (even an empty one) is cached.
    """
    if index <= 0:
        raise HTTPException(status_code=400, detail=error_detail("Index must be a positive integer.", index=index))

    cached = None if refresh else cache.get(model, index)
    if cached:
        logger.info(f"Serving {len(cached)} cached images for {model} at index {index}")
        return AlbumResponse(model=model, index=index, album=cached, total=len(cached), source="cache")
    if cached is not None:
        logger.info(f"Cached empty result for {model} at index {index}; not scraping again")
        return empty_album_response(model, index)

    urls = await scraper.scrape(model, index)
    images = build_image_records(urls)
    cache.put(model, index, images)
    if not images:
        return empty_album_response(model, index)

    return AlbumResponse(
        model=model,
        index=index,
        album=images,
        total=len(images),
        source=SITE_HOST,
        note="Images scraped successfully",
    )


def empty_album_response(model: str, index: int) -> AlbumResponse:
    if not settings.DEMO_FALLBACK:
        raise album_not_found(model, index)
    images = demo_records()
    return AlbumResponse(
        model=model,
        index=index,
        album=images,
        total=len(images),
        source="demo",
        note="Scraping found nothing. Showing demo images.",
    )


@app.get("/api/nsfw/{model}/{index}", response_class=HTMLResponse, summary="View cached images as an HTML gallery")
async def view_album(
    model: str = Path(..., description="Search keyword, usually a model name."),
    index: int = Path(..., description="1-based gallery position."),
):
    images = cache.get(model, index)
    if not images:
        return HTMLResponse(pages.render_no_cache(model, index), status_code=404)
    return HTMLResponse(pages.render_gallery(model, index, images))


@app.get(
    "/api/bulk-download/{model}/{index}",
    response_model=BulkDownloadResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Download the cached images to the server",
)
def bulk_download(
    model: str = Path(..., description="Search keyword, usually a model name."),
    index: int = Path(..., description="1-based gallery position."),
):
    """
    Fetches every cached image of the album into the model's downloads directory.
    Failed images are reported in `failed` and do not stop the batch.
    """
    images = cache.get(model, index)
    if not images:
        raise HTTPException(status_code=404, detail=error_detail(
            "No cached images found",
            suggestion=f"Run /api/album/{quote(model, safe='')}/{index} first",
        ))

    downloaded, failed = downloader.download_album(
        model, images, downloads_dir=settings.DOWNLOADS_DIR, timeout=settings.DOWNLOAD_TIMEOUT
    )
    return BulkDownloadResponse(
        model=model,
        index=index,
        downloaded=downloaded,
        total=len(images),
        failed=failed,
        directory=f"/downloads/{quote(safe_name(model))}",
    )


@app.get(
    "/downloads/{model}",
    response_model=DownloadListing,
    responses={404: {"model": ErrorResponse}},
    summary="List downloaded files of a model",
)
def list_downloads(model: str = Path(..., description="Model name as used for /api/bulk-download.")):
    directory = downloader.model_directory(settings.DOWNLOADS_DIR, model)
    if not os.path.isdir(directory):
        raise HTTPException(status_code=404, detail=error_detail(
            f"No downloads for {model}",
            suggestion="Use /api/bulk-download/{model}/{index} first",
        ))

    folder = quote(safe_name(model))
    files = [
        DownloadedFile(name=entry.name, url=f"/downloads/{folder}/{quote(entry.name)}", size=entry.stat().st_size)
        for entry in sorted(os.scandir(directory), key=lambda e: e.name)
        if entry.is_file() and not entry.name.endswith(".part")
    ]
    return DownloadListing(model=model, files=files, total=len(files))


@app.get("/downloads/{model}/{filename}", summary="Serve a downloaded file")
def get_download(model: str, filename: str):
    directory = os.path.realpath(downloader.model_directory(settings.DOWNLOADS_DIR, model))
    path = os.path.realpath(os.path.join(directory, filename))
    if os.path.dirname(path) != directory or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail=error_detail(f"File not found: {filename}"))
    return FileResponse(path)


# --- Main execution block for running with uvicorn ---
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
