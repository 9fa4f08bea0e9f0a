# schemas.py
"""Pydantic models for cached records and API responses."""
from typing import List, Optional

from pydantic import BaseModel, Field


class ImageRecord(BaseModel):
    """A single scraped image, as cached on disk and returned by /api/album."""
    id: int = Field(..., description="1-based position of the image in the album.")
    name: str = Field(..., description="File name derived from the position and the URL's extension (e.g. 'image_3.jpg').")
    url: str = Field(..., description="Absolute URL of the full-size image.")
    thumb: str = Field(..., description="Thumbnail URL. Same as `url`; the site exposes no separate thumbnails.")


class AlbumResponse(BaseModel):
    model: str
    index: int
    album: List[ImageRecord] = Field([], description="Images of the selected gallery.")
    total: int = Field(..., description="Number of images in `album`.")
    source: str = Field(..., description="'cache', the scraped site's host, or 'demo'.")
    note: Optional[str] = Field(None, description="Extra information, e.g. when demo images are served.")


class ErrorResponse(BaseModel):
    error: str
    suggestion: Optional[str] = None
    index: Optional[int] = None
    links_found: Optional[int] = Field(None, description="Number of gallery links discovered on the search page.")


class FailedDownload(BaseModel):
    name: str
    url: str
    error: str


class BulkDownloadResponse(BaseModel):
    model: str
    index: int
    downloaded: int = Field(..., description="Images now present on disk (fetched or already there).")
    total: int
    failed: List[FailedDownload] = []
    directory: str = Field(..., description="URL path listing the downloaded files.")


class DownloadedFile(BaseModel):
    name: str
    url: str
    size: int


class DownloadListing(BaseModel):
    model: str
    files: List[DownloadedFile] = []
    total: int
