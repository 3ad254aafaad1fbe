"""Receipt storage: Cloudinary backend plus an in-memory stand-in."""

from mei_ledger.services.receipts.interface import (
    ReceiptStorageError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from mei_ledger.services.receipts.memory import InMemoryReceiptStorage
from mei_ledger.services.receipts.cloudinary_service import (
    CloudinaryReceiptStorage,
    parse_public_id,
)

__all__ = [
    "CloudinaryReceiptStorage",
    "InMemoryReceiptStorage",
    "ReceiptStorageError",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    "parse_public_id",
]
