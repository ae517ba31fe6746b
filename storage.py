"""File storage for product images and payment proofs.

Objects live under ``STORAGE_ROOT`` using the same keys as the bucket layout
(``product_images/...``, ``payment_proofs/...``) and are served back by the
``/files`` route.
"""
import logging
import os
import re
import time
from typing import Optional

from config import settings
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PRODUCT_IMAGES = "product_images"
PAYMENT_PROOFS = "payment_proofs"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: Optional[str]) -> str:
    name = _UNSAFE.sub("_", os.path.basename(filename or "")).strip("._")
    if not name:
        raise ValidationError("A file name is required")
    return name


def product_image_key(filename: str, timestamp_ms: Optional[int] = None) -> str:
    timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    return f"{PRODUCT_IMAGES}/{timestamp_ms}_{safe_filename(filename)}"


def payment_proof_key(order_id: str, filename: str) -> str:
    return f"{PAYMENT_PROOFS}/{order_id}_{safe_filename(filename)}"


class FileStorage:
    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = os.path.abspath(root or settings.storage_root)
        self.base_url = (base_url or settings.public_base_url).rstrip("/")

    def path_for(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if not path.startswith(self.root + os.sep):
            raise NotFoundError("File not found")
        return path

    def save(self, key: str, data: bytes) -> str:
        path = self.path_for(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(data)
        logger.info("Stored %s (%d bytes)", key, len(data))
        return self.url_for(key)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/files/{key}"

    def open_path(self, key: str) -> str:
        path = self.path_for(key)
        if not os.path.isfile(path):
            raise NotFoundError("File not found")
        return path


def get_storage() -> FileStorage:
    return FileStorage()
