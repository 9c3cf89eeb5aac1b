from typing import Any, Dict, Optional

from classifieds.config import settings
from classifieds.models.schemas import ListingStatus, SearchFilters, SearchPage
from classifieds.repositories import PersistenceGateway
from classifieds.services.listing_views import to_cards
from classifieds.utils import get_logger

logger = get_logger(__name__)

# Filter value meaning "no filter", as sent by the category and city pickers
ANY = "all"


def _selected(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    if not value or value == ANY:
        return None
    return value


class SearchService:
    """Browse/search over approved listings.

    - Always restricted to status == approved
    - `search` is a case-insensitive substring match on the title (no ranking)
    - `category` is a category slug; an unknown slug yields an empty page
    - Newest first, fixed page size, offset pagination (1-based pages)
    """

    def __init__(self, gateway: PersistenceGateway, page_size: int = settings.PAGE_SIZE):
        self.gateway = gateway
        self.page_size = page_size

    def build_filters(self, filters: SearchFilters) -> Optional[Dict[str, Any]]:
        """Translate search filters into gateway filters; None means nothing can match."""
        query: Dict[str, Any] = {"status": ListingStatus.APPROVED.value}

        text = (filters.search or "").strip()
        if text:
            query["title__icontains"] = text

        category_slug = _selected(filters.category)
        if category_slug:
            category = self.gateway.first("categories", {"slug": category_slug}, order=["id"])
            if category is None:
                logger.info("Unknown category slug %r, returning no results", category_slug)
                return None
            query["category_id"] = category["id"]

        city = _selected(filters.city)
        if city:
            query["city"] = city

        return query

    def search(self, filters: Optional[SearchFilters] = None, page: int = 1) -> SearchPage:
        page = max(1, int(page))
        query = self.build_filters(filters or SearchFilters())
        if query is None:
            return SearchPage(items=[], page=page, page_size=self.page_size)

        rows = self.gateway.query(
            "listings",
            query,
            order=["-created_at", "id"],
            limit=self.page_size,
            offset=(page - 1) * self.page_size,
        )
        return SearchPage(items=to_cards(self.gateway, rows), page=page, page_size=self.page_size)
