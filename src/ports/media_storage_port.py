"""MediaStoragePort - Remote object storage for chat attachments.

Accepts raw bytes plus metadata and returns a durable reference that is
stored on the chat message. Underlying implementation: S3 / MinIO.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.shared.types import UploadedMedia


class MediaStoragePort(ABC):
    """Port: attachment upload and deletion."""

    @abstractmethod
    async def upload(
        self,
        data: bytes,
        filename: str,
        kind: str,
        content_type: str = "application/octet-stream",
    ) -> UploadedMedia:
        """Store an attachment.

        Args:
            data: Raw file bytes.
            filename: Original file name (kept for display).
            kind: ``image`` or ``video``.
            content_type: MIME type of the payload.

        Returns:
            UploadedMedia with url, public_id and size.
        """

    @abstractmethod
    async def delete(self, public_id: str, kind: str) -> bool:
        """Delete a stored attachment. Returns True on success."""
