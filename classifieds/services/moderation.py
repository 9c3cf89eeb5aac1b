"""
Moderation Engine
Admin-only status transitions and the admin dashboard views.
"""

from datetime import datetime
from typing import Callable, List, Optional

from classifieds.errors import AuthorizationError
from classifieds.models.schemas import (
    DashboardStats,
    ListingDetail,
    ListingOut,
    ListingStatus,
    SeoReportEntry,
)
from classifieds.repositories import PersistenceGateway
from classifieds.services import seo
from classifieds.services.lifecycle import ListingLifecycleEngine
from classifieds.services.listing_views import to_listing_out, to_listing_outs
from classifieds.utils import get_logger, utcnow

logger = get_logger(__name__)

ADMIN_ROLE = "admin"


class ModerationEngine:
    """Approves and rejects pending listings on behalf of admins"""

    def __init__(
        self,
        gateway: PersistenceGateway,
        lifecycle: Optional[ListingLifecycleEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.lifecycle = lifecycle or ListingLifecycleEngine(gateway, clock=clock)
        self.clock = clock

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        return self.gateway.count("user_roles", {"user_id": user_id, "role": ADMIN_ROLE}) > 0

    def require_admin(self, user_id: Optional[str]) -> None:
        if not self.is_admin(user_id):
            raise AuthorizationError("Admin role required")

    # -----------------------------
    # Transitions
    # -----------------------------
    def approve(self, listing_id: str, admin_id: Optional[str]) -> ListingOut:
        self.require_admin(admin_id)
        row = self.lifecycle.transition(listing_id, ListingStatus.APPROVED, {"approved_at": self.clock()})
        logger.info("Listing %s approved by %s", listing_id, admin_id)
        return to_listing_out(self.gateway, row)

    def reject(self, listing_id: str, admin_id: Optional[str]) -> ListingOut:
        # Only pending listings can be rejected, so this never erases an earlier approval
        self.require_admin(admin_id)
        row = self.lifecycle.transition(listing_id, ListingStatus.REJECTED, {"approved_at": None})
        logger.info("Listing %s rejected by %s", listing_id, admin_id)
        return to_listing_out(self.gateway, row)

    # -----------------------------
    # Dashboard
    # -----------------------------
    def all_listings(self, admin_id: Optional[str], status: Optional[ListingStatus] = None) -> List[ListingDetail]:
        self.require_admin(admin_id)
        filters = {"status": status.value} if status is not None else {}
        rows = self.gateway.query("listings", filters, order=["-created_at", "id"])
        return to_listing_outs(self.gateway, rows, model=ListingDetail)

    def pending_queue(self, admin_id: Optional[str]) -> List[ListingDetail]:
        return self.all_listings(admin_id, status=ListingStatus.PENDING)

    def dashboard_stats(self, admin_id: Optional[str]) -> DashboardStats:
        self.require_admin(admin_id)
        return DashboardStats(
            total_listings=self.gateway.count("listings"),
            pending_listings=self.gateway.count("listings", {"status": ListingStatus.PENDING.value}),
            approved_listings=self.gateway.count("listings", {"status": ListingStatus.APPROVED.value}),
            total_users=self.gateway.count("profiles"),
        )

    def seo_report(self, admin_id: Optional[str]) -> List[SeoReportEntry]:
        """SEO audit of every approved listing, newest first."""
        self.require_admin(admin_id)
        rows = self.gateway.query(
            "listings", {"status": ListingStatus.APPROVED.value}, order=["-created_at", "id"]
        )
        report = []
        for row in rows:
            issues = seo.audit(row)
            report.append(
                SeoReportEntry(
                    listing_id=row["id"],
                    slug=row["slug"],
                    title=row["title"],
                    meta_title=row.get("meta_title"),
                    meta_description=row.get("meta_description"),
                    issues=issues,
                    optimal=not issues,
                )
            )
        return report
