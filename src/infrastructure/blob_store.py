"""
Photo blob storage client.
Deletes photo binaries from ImageKit by file id.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import quote

import httpx

from src.config import settings

logger = logging.getLogger(__name__)


@dataclass
class BlobDeletionResult:
    """Outcome of deleting one blob."""
    file_id: str
    success: bool
    already_absent: bool = False
    error: Optional[str] = None


class BlobStore(ABC):
    """Delete-by-identifier access to the photo object store."""

    @abstractmethod
    async def delete_blob(self, file_id: str) -> BlobDeletionResult:
        """
        Delete one blob.

        Never raises for remote failures; the result carries the error so
        callers can keep going with the remaining ids.
        """


class ImageKitBlobStore(BlobStore):
    """
    Blob store backed by the ImageKit media API.
    Uses HTTP basic auth with the private key as the username.
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        api_base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the ImageKit client.

        Args:
            private_key: ImageKit private API key (defaults to settings)
            api_base_url: Media API base URL (defaults to settings)
            timeout_seconds: HTTP timeout per call (defaults to settings)
        """
        self.private_key = private_key or settings.imagekit_private_key
        self.api_base_url = (api_base_url or settings.imagekit_api_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.blob_store_timeout_seconds

    def _file_url(self, file_id: str) -> str:
        return f"{self.api_base_url}/files/{quote(file_id, safe='')}"

    async def delete_blob(self, file_id: str) -> BlobDeletionResult:
        if not self.private_key:
            logger.warning(f"ImageKit private key not configured, cannot delete file {file_id}")
            return BlobDeletionResult(file_id=file_id, success=False, error="blob store not configured")

        if not file_id:
            return BlobDeletionResult(file_id=file_id, success=False, error="empty file id")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.delete(self._file_url(file_id), auth=(self.private_key, ""))

                if response.status_code == 404:
                    # Someone else (a concurrent cascade, a retry) already removed it
                    logger.info(f"ImageKit file {file_id} already absent")
                    return BlobDeletionResult(file_id=file_id, success=True, already_absent=True)

                response.raise_for_status()

            logger.info(f"Deleted ImageKit file {file_id}")
            return BlobDeletionResult(file_id=file_id, success=True)

        except httpx.TimeoutException:
            logger.warning(f"ImageKit delete timeout after {self.timeout_seconds}s for file {file_id}")
            return BlobDeletionResult(file_id=file_id, success=False, error="timeout")
        except httpx.HTTPStatusError as e:
            logger.warning(f"ImageKit delete HTTP error {e.response.status_code} for file {file_id}")
            return BlobDeletionResult(
                file_id=file_id, success=False, error=f"http {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            logger.warning(f"ImageKit delete transport error for file {file_id}: {e}")
            return BlobDeletionResult(file_id=file_id, success=False, error=str(e) or type(e).__name__)
        except Exception as e:
            logger.error(f"Unexpected error deleting ImageKit file {file_id}: {e}")
            return BlobDeletionResult(file_id=file_id, success=False, error=str(e) or type(e).__name__)


async def delete_blobs(
    store: BlobStore,
    file_ids: Iterable[str],
    concurrency: Optional[int] = None,
) -> list[BlobDeletionResult]:
    """
    Delete many blobs independently, at most `concurrency` at a time.

    Every id gets an attempt; results come back in input order.
    """
    ids = list(file_ids)
    if not ids:
        return []

    semaphore = asyncio.Semaphore(concurrency or settings.blob_delete_concurrency)

    async def _delete_one(file_id: str) -> BlobDeletionResult:
        async with semaphore:
            return await store.delete_blob(file_id)

    outcomes = await asyncio.gather(
        *(_delete_one(file_id) for file_id in ids),
        return_exceptions=True,
    )

    results = []
    for file_id, outcome in zip(ids, outcomes):
        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, Exception):
            logger.error(f"Blob store raised while deleting file {file_id}: {outcome!r}")
            outcome = BlobDeletionResult(
                file_id=file_id, success=False, error=str(outcome) or type(outcome).__name__
            )
        results.append(outcome)
    return results


# Global client instance
_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Get or create the blob store singleton."""
    global _blob_store
    if _blob_store is None:
        _blob_store = ImageKitBlobStore()
    return _blob_store
