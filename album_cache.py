# album_cache.py
"""On-disk JSON cache of scraped albums, one file per (model, index)."""
import json
import logging
import os
import re
import tempfile
from typing import List, Optional

from pydantic import ValidationError

from schemas import ImageRecord

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_name(model: str) -> str:
    """Turns a model name into something usable as a single path component."""
    cleaned = _UNSAFE_CHARS.sub("_", model).strip("._")
    return cleaned or "_"


class AlbumCache:
    """
    Memoizes scrape results as JSON arrays of ImageRecord.

    An empty array is a negative entry: the key was scraped and nothing was found.
    There is no expiry; entries live until deleted or overwritten.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, model: str, index: int) -> str:
        return os.path.join(self.directory, f"{safe_name(model)}_{index}.json")

    def get(self, model: str, index: int) -> Optional[List[ImageRecord]]:
        """Returns the cached list, [] for a negative entry, or None when nothing usable is cached."""
        path = self.path_for(model, index)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            logger.info(f"No cache found for {model} at index {index}")
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {path}: {e}")
            return None

        if not isinstance(raw, list):
            logger.warning(f"Ignoring cache file {path}: expected a JSON array")
            return None
        try:
            return [ImageRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.warning(f"Ignoring cache file {path}: {e.error_count()} invalid record(s)")
            return None

    def put(self, model: str, index: int, records: List[ImageRecord]) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(model, index)
        payload = json.dumps([record.model_dump() for record in records], indent=2)

        # Write next to the target so os.replace stays on one filesystem.
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info(f"Cached {len(records)} images for {model} at index {index}")

    def delete(self, model: str, index: int) -> bool:
        try:
            os.remove(self.path_for(model, index))
            return True
        except FileNotFoundError:
            return False
