"""
Receipt Storage Interface

Receipts (payment proofs for DAS obligations and sales) are plain files
held outside the relational store. Records keep only the returned URL.
"""

from abc import ABC, abstractmethod
from typing import Optional


class ReceiptStorageInterface(ABC):
    """Abstract interface for receipt file storage."""

    @abstractmethod
    async def upload(
        self,
        content: bytes,
        filename: str,
        owner_id: str,
        folder: Optional[str] = None,
    ) -> str:
        """
        Store a receipt file.

        Args:
            content: Raw file bytes
            filename: Original filename (used to build the stored name)
            owner_id: Owner the receipt belongs to
            folder: Optional folder/bucket override

        Returns:
            Public URL of the stored file

        Raises:
            ReceiptUploadError: If the upload fails
        """

    @abstractmethod
    async def delete(self, url: str) -> bool:
        """
        Delete a stored receipt by URL.

        Returns False if the file didn't exist.

        Raises:
            ReceiptStorageError: If the backend call fails
        """


class ReceiptStorageError(Exception):
    """Base exception for receipt storage."""
    pass


class ReceiptUploadError(ReceiptStorageError):
    """Failed to upload a receipt."""
    pass
