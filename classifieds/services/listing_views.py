"""Builds listing representations joined with category names, images and owner profiles."""

from collections import defaultdict
from typing import Any, Dict, List, Type

from classifieds.models.schemas import ListingCard, ListingDetail, ListingImageOut, ListingOut
from classifieds.repositories import PersistenceGateway


def category_names(gateway: PersistenceGateway, category_ids) -> Dict[int, str]:
    ids = sorted({cid for cid in category_ids if cid is not None})
    if not ids:
        return {}
    return {r["id"]: r["name"] for r in gateway.query("categories", {"id__in": ids})}


def images_by_listing(gateway: PersistenceGateway, listing_ids) -> Dict[str, List[ListingImageOut]]:
    grouped: Dict[str, List[ListingImageOut]] = defaultdict(list)
    ids = list(listing_ids)
    if not ids:
        return grouped
    rows = gateway.query("listing_images", {"listing_id__in": ids}, order=["sort_order", "id"])
    for row in rows:
        grouped[row["listing_id"]].append(
            ListingImageOut(id=row["id"], image_url=row["image_url"], sort_order=row["sort_order"])
        )
    return grouped


def owner_profiles(gateway: PersistenceGateway, user_ids) -> Dict[str, Dict[str, Any]]:
    ids = sorted(set(user_ids))
    if not ids:
        return {}
    return {r["id"]: r for r in gateway.query("profiles", {"id__in": ids})}


def to_listing_outs(
    gateway: PersistenceGateway,
    rows: List[Dict[str, Any]],
    model: Type[ListingOut] = ListingOut,
) -> List[ListingOut]:
    names = category_names(gateway, [r.get("category_id") for r in rows])
    images = images_by_listing(gateway, [r["id"] for r in rows])
    with_owner = issubclass(model, ListingDetail)
    profiles = owner_profiles(gateway, [r["user_id"] for r in rows]) if with_owner else {}

    results = []
    for row in rows:
        extra: Dict[str, Any] = {
            "category_name": names.get(row.get("category_id")),
            "images": images.get(row["id"], []),
        }
        if with_owner:
            profile = profiles.get(row["user_id"], {})
            extra["owner_name"] = profile.get("full_name")
            extra["owner_phone"] = profile.get("phone")
        results.append(model(**{**row, **extra}))
    return results


def to_listing_out(gateway: PersistenceGateway, row: Dict[str, Any], model: Type[ListingOut] = ListingOut):
    return to_listing_outs(gateway, [row], model=model)[0]


def to_cards(gateway: PersistenceGateway, rows: List[Dict[str, Any]]) -> List[ListingCard]:
    """Join rows with their category name and first image (lowest sort order)."""
    if not rows:
        return []
    names = category_names(gateway, [r.get("category_id") for r in rows])
    images = images_by_listing(gateway, [r["id"] for r in rows])

    cards = []
    for row in rows:
        first = images.get(row["id"])
        cards.append(
            ListingCard(
                **{k: row[k] for k in ListingCard.model_fields if k in row},
                category_name=names.get(row.get("category_id")),
                image_url=first[0].image_url if first else None,
            )
        )
    return cards
