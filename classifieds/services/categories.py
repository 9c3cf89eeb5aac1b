from typing import List

from classifieds.models.schemas import CategoryOut
from classifieds.repositories import PersistenceGateway


def root_categories(gateway: PersistenceGateway) -> List[CategoryOut]:
    """Top-level categories in display order."""
    rows = gateway.query("categories", {"parent_id__isnull": True}, order=["sort_order", "id"])
    return [CategoryOut(**row) for row in rows]


def child_categories(gateway: PersistenceGateway, parent_id: int) -> List[CategoryOut]:
    rows = gateway.query("categories", {"parent_id": parent_id}, order=["sort_order", "id"])
    return [CategoryOut(**row) for row in rows]
