"""In-memory receipt storage for tests and local runs."""

from typing import Optional
from uuid import uuid4

from mei_ledger.services.receipts.interface import (
    ReceiptStorageInterface,
    ReceiptUploadError,
)


class InMemoryReceiptStorage(ReceiptStorageInterface):
    """Keeps receipt bytes in a dict keyed by a synthetic URL."""

    def __init__(self, default_folder: str = "receipts"):
        self._default_folder = default_folder
        self.files: dict[str, bytes] = {}

    async def upload(
        self,
        content: bytes,
        filename: str,
        owner_id: str,
        folder: Optional[str] = None,
    ) -> str:
        if not content:
            raise ReceiptUploadError("Cannot upload an empty receipt")
        url = f"memory://{folder or self._default_folder}/{owner_id}/{uuid4().hex}_{filename}"
        self.files[url] = content
        return url

    async def delete(self, url: str) -> bool:
        return self.files.pop(url, None) is not None
