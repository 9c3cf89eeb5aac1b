"""
SEO auditing for listing meta fields.
Advisory only: results never block creation or moderation.
"""

from typing import Any, List, Mapping, Union

META_TITLE_MIN = 30
META_TITLE_MAX = 60
META_DESCRIPTION_MIN = 120
META_DESCRIPTION_MAX = 160

TITLE_TOO_SHORT = "title too short"
TITLE_TOO_LONG = "title too long"
DESCRIPTION_TOO_SHORT = "description too short"
DESCRIPTION_TOO_LONG = "description too long"


def _field(listing: Union[Mapping[str, Any], Any], name: str):
    if isinstance(listing, Mapping):
        return listing.get(name)
    return getattr(listing, name, None)


def audit(listing) -> List[str]:
    """Return the SEO issues of a listing; an empty list means optimal.

    Each rule is evaluated independently, so a listing can trigger any subset.
    Accepts a row mapping or any object with meta_title/meta_description.
    """
    issues: List[str] = []
    meta_title = _field(listing, "meta_title")
    meta_description = _field(listing, "meta_description")

    if not meta_title or len(meta_title) < META_TITLE_MIN:
        issues.append(TITLE_TOO_SHORT)
    if meta_title and len(meta_title) > META_TITLE_MAX:
        issues.append(TITLE_TOO_LONG)
    if not meta_description or len(meta_description) < META_DESCRIPTION_MIN:
        issues.append(DESCRIPTION_TOO_SHORT)
    if meta_description and len(meta_description) > META_DESCRIPTION_MAX:
        issues.append(DESCRIPTION_TOO_LONG)

    return issues


def is_optimal(listing) -> bool:
    return not audit(listing)
