"""
Media Attachment Coordinator
Uploads listing images to the blob store and records the ones that made it.

A listing is already durable when its images are uploaded, so one failed file
must not sink the others: outcomes are collected per file in an UploadBatch
and only the successful subset is written as listing_images rows.
"""

import os
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from classifieds.config import settings
from classifieds.errors import AuthorizationError, QuotaExceededError, StorageError, ValidationError
from classifieds.models.schemas import AttachmentReport, FailedUpload, ListingImageOut
from classifieds.repositories import PersistenceGateway
from classifieds.storage.blob_store import BlobStore
from classifieds.utils import get_logger, utcnow

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@dataclass
class UploadedFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None


@dataclass
class UploadOutcome:
    index: int
    filename: str
    key: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class UploadBatch:
    """Best-effort batch: records every per-file outcome, commits only successes."""
    outcomes: List[UploadOutcome] = field(default_factory=list)

    def attempt(self, index: int, filename: str, key: str, upload: Callable[[], str]) -> UploadOutcome:
        try:
            url = upload()
        except StorageError as e:
            outcome = UploadOutcome(index=index, filename=filename, key=key, error=str(e))
        else:
            outcome = UploadOutcome(index=index, filename=filename, key=key, url=url)
        self.outcomes.append(outcome)
        return outcome

    @property
    def successes(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failures(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if not o.ok]


def _key_segment(value) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", str(value)) or "_"


def storage_key(owner_id: str, listing_id: str, stamp: int, token: str, index: int, filename: str) -> str:
    """`<owner>/<listing>/<millis>-<token>-<index>.<ext>`

    The millisecond stamp alone repeats for batches submitted together, so
    every batch also carries a random token.
    """
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    ext = _UNSAFE_KEY_CHARS.sub("", ext)
    name = f"{stamp}-{_key_segment(token)}-{index}" + (f".{ext}" if ext else "")
    return f"{_key_segment(owner_id)}/{_key_segment(listing_id)}/{name}"


class MediaAttachmentCoordinator:
    """Attaches uploaded images to an existing listing"""

    def __init__(
        self,
        gateway: PersistenceGateway,
        blob_store: BlobStore,
        max_images: int = settings.MAX_IMAGES_PER_LISTING,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.blob_store = blob_store
        self.max_images = max_images
        self.clock = clock

    def attach_images(self, listing_id: str, owner_id: Optional[str], files: List[UploadedFile]) -> AttachmentReport:
        listing = self.gateway.get("listings", listing_id)
        if not owner_id or listing["user_id"] != owner_id:
            raise AuthorizationError("Only the owner can add images to this listing")
        if not files:
            raise ValidationError("files", "files: at least one image is required")

        # Early exit before uploading; the limit is enforced again by the row insert
        existing = self.gateway.count("listing_images", {"listing_id": listing_id})
        if existing + len(files) > self.max_images:
            raise QuotaExceededError(
                f"A listing can have at most {self.max_images} images "
                f"({existing} attached, {len(files)} submitted)"
            )

        # Appended images sort after the ones already attached
        last = self.gateway.first("listing_images", {"listing_id": listing_id}, order=["-sort_order"])
        base = last["sort_order"] + 1 if last else 0

        stamp = int(self.clock().timestamp() * 1000)
        token = secrets.token_hex(4)
        batch = UploadBatch()
        for index, item in enumerate(files):
            key = storage_key(owner_id, listing_id, stamp, token, index, item.filename)
            outcome = batch.attempt(
                index,
                item.filename,
                key,
                lambda: self.blob_store.upload(key, item.content, item.content_type),
            )
            if not outcome.ok:
                logger.warning(
                    "Upload %d/%d (%s) for listing %s failed: %s",
                    index + 1, len(files), item.filename, listing_id, outcome.error,
                )

        report = AttachmentReport(
            listing_id=listing_id,
            failed=[FailedUpload(index=o.index, filename=o.filename, reason=o.error) for o in batch.failures],
        )

        successes = batch.successes
        if not successes:
            report.warning = f"None of the {len(files)} images could be uploaded; the listing was kept without them"
            logger.warning("No images attached to listing %s: all %d uploads failed", listing_id, len(files))
            return report

        # Original file index is kept as the sort offset, so gaps mark failed files
        rows = [
            {
                "listing_id": listing_id,
                "image_url": o.url,
                "storage_key": o.key,
                "sort_order": base + o.index,
            }
            for o in successes
        ]
        try:
            ids = self.gateway.insert_children(
                "listings", listing_id, "listing_images", "listing_id", rows, max_children=self.max_images
            )
        except Exception:
            self._discard_blobs([o.key for o in successes])
            raise

        report.attached = [
            ListingImageOut(id=image_id, image_url=row["image_url"], sort_order=row["sort_order"])
            for image_id, row in zip(ids, rows)
        ]
        if batch.failures:
            report.warning = f"{len(batch.failures)} of {len(files)} images could not be uploaded"
        logger.info(
            "Attached %d/%d images to listing %s", len(report.attached), len(files), listing_id
        )
        return report

    def _discard_blobs(self, keys: List[str]) -> None:
        for key in keys:
            try:
                self.blob_store.delete(key)
            except StorageError as e:
                logger.warning("Could not discard blob %s: %s", key, e)
