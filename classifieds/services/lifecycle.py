"""
Listing Lifecycle Engine
Creation, the status state machine, view counting and owner deletion.
"""

import re
import secrets
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from classifieds.config import settings
from classifieds.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
    from_pydantic,
)
from classifieds.models.schemas import (
    ListingCard,
    ListingDetail,
    ListingDraft,
    ListingOut,
    ListingStatus,
)
from classifieds.repositories import PersistenceGateway
from classifieds.services.listing_views import to_cards, to_listing_out
from classifieds.storage.blob_store import BlobStore
from classifieds.utils import get_logger, utcnow

logger = get_logger(__name__)

SLUG_TITLE_LENGTH = 30
META_TITLE_LENGTH = 60
META_DESCRIPTION_LENGTH = 160

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS = {
    ListingStatus.APPROVED: {ListingStatus.PENDING},
    ListingStatus.REJECTED: {ListingStatus.PENDING},
}

_UNSAFE_SLUG_CHARS = re.compile(r"[^\w\-]+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            return "".join(reversed(digits))


def slug_base(title: str, length: int = SLUG_TITLE_LENGTH) -> str:
    """Truncated, whitespace-normalized title prefix for URLs.

    Unicode word characters (e.g. Persian letters) are kept as they are, so
    such slugs are URL-safe only once percent-encoded.
    """
    base = re.sub(r"\s+", "-", title.strip()[:length])
    base = _UNSAFE_SLUG_CHARS.sub("", base)
    base = re.sub(r"-{2,}", "-", base).strip("-_")
    return base.lower() or "listing"


def make_slug(title: str, created_at: datetime) -> str:
    """Title prefix + creation time + random suffix.

    The time part alone collides for submissions within the same millisecond,
    so a random token is appended and the store's unique index decides.
    """
    millis = int(created_at.timestamp() * 1000)
    return f"{slug_base(title)}-{_base36(millis)}-{secrets.token_hex(3)}"


class ListingLifecycleEngine:
    """Creates listings, moves them through their statuses and deletes them"""

    def __init__(
        self,
        gateway: PersistenceGateway,
        blob_store: Optional[BlobStore] = None,
        clock: Callable[[], datetime] = utcnow,
        slug_factory: Callable[[str, datetime], str] = make_slug,
        max_slug_attempts: int = settings.SLUG_MAX_ATTEMPTS,
    ):
        self.gateway = gateway
        self.blob_store = blob_store
        self.clock = clock
        self.slug_factory = slug_factory
        self.max_slug_attempts = max(1, max_slug_attempts)

    # -----------------------------
    # Creation
    # -----------------------------
    @staticmethod
    def validate_draft(draft: Union[ListingDraft, Mapping[str, Any]]) -> ListingDraft:
        data = draft.model_dump() if isinstance(draft, ListingDraft) else draft
        try:
            return ListingDraft.model_validate(data)
        except PydanticValidationError as e:
            raise from_pydantic(e) from e

    def create_listing(self, owner_id: Optional[str], draft: Union[ListingDraft, Mapping[str, Any]]) -> ListingOut:
        if not owner_id:
            raise AuthorizationError("You must be signed in to submit a listing")

        validated = self.validate_draft(draft)
        if self.gateway.first("categories", {"id": validated.category_id}) is None:
            raise ValidationError("category_id", f"category_id: unknown category {validated.category_id}")

        now = self.clock()
        row: Dict[str, Any] = {
            "user_id": owner_id,
            "title": validated.title,
            "description": validated.description,
            "price": validated.price,
            "city": validated.city,
            "address": validated.address or None,
            "phone": validated.phone,
            "category_id": validated.category_id,
            "condition": validated.condition.value,
            "is_negotiable": validated.is_negotiable,
            "status": ListingStatus.PENDING.value,
            "views_count": 0,
            "meta_title": validated.meta_title or validated.title[:META_TITLE_LENGTH],
            "meta_description": validated.meta_description or validated.description[:META_DESCRIPTION_LENGTH],
            "created_at": now,
            "approved_at": None,
        }

        for attempt in range(1, self.max_slug_attempts + 1):
            row["id"] = uuid.uuid4().hex
            row["slug"] = self.slug_factory(validated.title, now)
            try:
                self.gateway.insert("listings", row)
            except ConflictError:
                logger.warning(
                    "Slug collision for %s (attempt %d/%d)", row["slug"], attempt, self.max_slug_attempts
                )
                continue
            logger.info("Listing %s created by %s with slug %s", row["id"], owner_id, row["slug"])
            return to_listing_out(self.gateway, self.gateway.get("listings", row["id"]))

        raise ConflictError(f"Could not allocate a unique slug after {self.max_slug_attempts} attempts")

    # -----------------------------
    # Status transitions
    # -----------------------------
    def transition(
        self,
        listing_id: str,
        target: ListingStatus,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Move a listing to `target` with a conditional single-row update.

        Raises NotFoundError for unknown ids and ConflictError when the current
        status does not allow the transition.
        """
        sources = ALLOWED_TRANSITIONS.get(target)
        if not sources:
            raise ValueError(f"No transition into '{target.value}' is defined")

        changes = {**(patch or {}), "status": target.value}
        try:
            return self.gateway.update(
                "listings",
                listing_id,
                changes,
                precondition={"status__in": sorted(s.value for s in sources)},
            )
        except ConflictError:
            current = self.gateway.get("listings", listing_id)["status"]
            raise ConflictError(
                f"Listing {listing_id} is {current}; it cannot become {target.value}"
            ) from None

    # -----------------------------
    # Views
    # -----------------------------
    def record_view(self, listing_id: str) -> bool:
        """Atomically add one view. Never raises; returns False if the increment failed."""
        try:
            self.gateway.increment("listings", listing_id, "views_count", 1)
        except Exception as e:
            logger.warning("Could not record view for listing %s: %s", listing_id, e)
            return False
        return True

    def get_public_listing(self, slug: str) -> ListingDetail:
        row = self.gateway.first("listings", {"slug": slug, "status": ListingStatus.APPROVED.value})
        if row is None:
            raise NotFoundError(f"Listing '{slug}' not found", table="listings", key=slug)
        detail = to_listing_out(self.gateway, row, model=ListingDetail)
        self.record_view(row["id"])
        return detail

    def list_owner_listings(self, owner_id: Optional[str], status: Optional[ListingStatus] = None) -> List[ListingCard]:
        if not owner_id:
            raise AuthorizationError("You must be signed in to see your listings")
        filters: Dict[str, Any] = {"user_id": owner_id}
        if status is not None:
            filters["status"] = status.value
        rows = self.gateway.query("listings", filters, order=["-created_at", "id"])
        return to_cards(self.gateway, rows)

    # -----------------------------
    # Deletion
    # -----------------------------
    def delete_listing(self, listing_id: str, requester_id: Optional[str]) -> None:
        row = self.gateway.get("listings", listing_id)
        if not requester_id or row["user_id"] != requester_id:
            raise AuthorizationError("Only the owner can delete this listing")
        if row["status"] != ListingStatus.PENDING.value:
            raise ConflictError(f"Listing {listing_id} is {row['status']}; only pending listings can be deleted")

        images = self.gateway.query("listing_images", {"listing_id": listing_id})
        # Image rows cascade with the listing row
        self.gateway.delete(
            "listings",
            listing_id,
            precondition={"status": ListingStatus.PENDING.value, "user_id": requester_id},
        )
        logger.info("Listing %s deleted by %s (%d images)", listing_id, requester_id, len(images))

        if self.blob_store is None:
            return
        for image in images:
            key = image.get("storage_key")
            if not key:
                continue
            try:
                self.blob_store.delete(key)
            except StorageError as e:
                # Orphaned blobs are garbage, the listing row is already gone
                logger.warning("Could not delete blob %s of listing %s: %s", key, listing_id, e)
