# downloader.py
"""Fetches cached album images to a per-model directory on disk."""
import logging
import os
from typing import List, Optional, Tuple

import requests

import settings
from album_cache import safe_name
from gallery_scraper import BASE_URL, USER_AGENT
from schemas import FailedDownload, ImageRecord

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": USER_AGENT,
    "Referer": BASE_URL + "/",
}
CHUNK_SIZE = 64 * 1024


def new_session(proxy_url: str = settings.PROXY_URL) -> requests.Session:
    s = requests.Session()
    s.headers.update(HEADERS)
    if proxy_url:
        s.proxies.update({"http": proxy_url, "https": proxy_url})
    return s


def model_directory(downloads_dir: str, model: str) -> str:
    return os.path.join(downloads_dir, safe_name(model))


def download_image(session: requests.Session, record: ImageRecord, target_dir: str, timeout: int) -> str:
    """Downloads one image unless it is already on disk. Returns the file path."""
    path = os.path.join(target_dir, os.path.basename(record.name))
    if os.path.exists(path):
        logger.debug(f"Already downloaded: {path}")
        return path

    tmp_path = path + ".part"
    try:
        with session.get(record.url, timeout=timeout, stream=True) as response:
            response.raise_for_status()
            with open(tmp_path, "wb") as fh:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
    return path


def download_album(
    model: str,
    records: List[ImageRecord],
    downloads_dir: str = settings.DOWNLOADS_DIR,
    timeout: int = settings.DOWNLOAD_TIMEOUT,
    session: Optional[requests.Session] = None,
) -> Tuple[int, List[FailedDownload]]:
    """
    Downloads every record into `<downloads_dir>/<safe model name>/`.

    A failing image is recorded and skipped; the rest of the batch still runs.
    Returns (number of images on disk, failures).
    """
    target_dir = model_directory(downloads_dir, model)
    os.makedirs(target_dir, exist_ok=True)
    owns_session = session is None
    session = session or new_session()

    downloaded = 0
    failed: List[FailedDownload] = []
    try:
        for record in records:
            try:
                download_image(session, record, target_dir, timeout)
                downloaded += 1
            except (requests.exceptions.RequestException, OSError) as e:
                logger.warning(f"Failed to download {record.url}: {e}")
                failed.append(FailedDownload(name=record.name, url=record.url, error=str(e)))
    finally:
        if owns_session:
            session.close()

    logger.info(f"Downloaded {downloaded}/{len(records)} images for {model} into {target_dir}")
    return downloaded, failed
