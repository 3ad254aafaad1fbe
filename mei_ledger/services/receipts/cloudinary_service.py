"""
Receipt Storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. Reliable cloud infrastructure
2. Handles both images and PDFs (resource_type="auto")
3. Simple API
4. Free tier sufficient for a single MEI

Receipts are stored under one folder per record kind (DAS payments,
sales) and one sub-folder per owner.
"""

import hashlib
import re
from typing import Optional
from urllib.parse import urlparse
from uuid import uuid4

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from mei_ledger.config import get_settings
from mei_ledger.services.receipts.interface import (
    ReceiptStorageError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)


logger = structlog.get_logger("mei_ledger.receipts")

_VERSION_SEGMENT = re.compile(r"^v\d+$")


def parse_public_id(url: str) -> tuple[str, str]:
    """
    Extract (resource_type, public_id) from a Cloudinary delivery URL.

    https://res.cloudinary.com/<cloud>/<type>/upload/v123/<folder>/<name>.<ext>
    """
    parts = [p for p in urlparse(url).path.split("/") if p]
    try:
        upload_idx = parts.index("upload")
    except ValueError:
        raise ReceiptStorageError(f"Not a Cloudinary upload URL: {url}") from None

    resource_type = parts[upload_idx - 1] if upload_idx > 0 else "image"
    tail = parts[upload_idx + 1:]
    if tail and _VERSION_SEGMENT.match(tail[0]):
        tail = tail[1:]
    if not tail:
        raise ReceiptStorageError(f"Cloudinary URL has no public id: {url}")

    public_id = "/".join(tail)
    # Raw files keep their extension as part of the public id
    if resource_type != "raw":
        public_id = public_id.rsplit(".", 1)[0]
    return resource_type, public_id


class CloudinaryReceiptStorage(ReceiptStorageInterface):
    """
    Receipt storage backed by Cloudinary.

    Flow:
    1. Build a unique public id under <folder>/<owner_id>/
    2. Upload the raw bytes (images and PDFs alike)
    3. Return the secure URL for the record to keep
    """

    def __init__(self, default_folder: Optional[str] = None):
        self._settings = get_settings().cloudinary
        self._default_folder = default_folder or self._settings.tax_receipts_folder
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _generate_public_id(self, owner_id: str, filename: str) -> str:
        """
        Generate a unique public ID for Cloudinary.

        Format: {owner_id}/{random}_{filename_hash}
        """
        filename_hash = hashlib.md5(filename.encode()).hexdigest()[:8]
        return f"{owner_id}/{uuid4().hex[:12]}_{filename_hash}"

    async def upload(
        self,
        content: bytes,
        filename: str,
        owner_id: str,
        folder: Optional[str] = None,
    ) -> str:
        """
        Upload a receipt to Cloudinary.

        Raises:
            ReceiptUploadError: If upload fails
        """
        if not content:
            raise ReceiptUploadError("Cannot upload an empty receipt")

        url = await self._upload(
            content,
            self._generate_public_id(owner_id, filename),
            folder or self._default_folder,
        )
        logger.info("receipt_uploaded", owner_id=owner_id, url=url)
        return url

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _upload(self, content: bytes, public_id: str, folder: str) -> str:
        self._configure()
        try:
            result = cloudinary.uploader.upload(
                content,
                public_id=public_id,
                folder=folder,
                resource_type="auto",
                use_filename=False,
                overwrite=False,
            )
        except cloudinary.exceptions.Error as e:
            raise ReceiptUploadError(f"Cloudinary error: {e}") from e
        except Exception as e:
            raise ReceiptUploadError(f"Failed to upload receipt: {e}") from e

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise ReceiptUploadError("No URL returned from Cloudinary")
        return url

    async def delete(self, url: str) -> bool:
        """Destroy the asset behind a receipt URL. False if it was already gone."""
        resource_type, public_id = parse_public_id(url)
        outcome = await self._destroy(resource_type, public_id)
        if outcome == "ok":
            logger.info("receipt_deleted", url=url)
            return True
        if outcome == "not found":
            return False
        raise ReceiptStorageError(f"Unexpected Cloudinary response: {outcome}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _destroy(self, resource_type: str, public_id: str) -> Optional[str]:
        self._configure()
        try:
            result = cloudinary.uploader.destroy(
                public_id,
                resource_type=resource_type,
                invalidate=True,
            )
        except cloudinary.exceptions.Error as e:
            raise ReceiptStorageError(f"Cloudinary error: {e}") from e
        return result.get("result")
