import pytest

from classifieds.errors import AuthorizationError, NotFoundError, ValidationError
from classifieds.identity import ANONYMOUS, HeaderIdentityProvider
from classifieds.repositories import InMemoryGateway
from classifieds.seed import DEFAULT_CATEGORIES, seed_categories
from classifieds.services.categories import child_categories, root_categories
from classifieds.services.profiles import ProfileService
from conftest import ADMIN_ID, OTHER_USER_ID, OWNER_ID


def test_get_profile(gateway):
    profile = ProfileService(gateway).get_profile(OWNER_ID)
    assert profile.full_name == "Sara Ahmadi"
    assert profile.city == "تهران"

    with pytest.raises(NotFoundError):
        ProfileService(gateway).get_profile("nobody")


def test_update_own_profile(gateway):
    service = ProfileService(gateway)
    updated = service.update_profile(OWNER_ID, OWNER_ID, {"full_name": "  Sara A.  ", "phone": "09351234567"})

    assert updated.full_name == "Sara A."
    assert updated.phone == "09351234567"
    # fields left out of the patch keep their value
    assert updated.city == "تهران"


def test_update_profile_rules(gateway):
    service = ProfileService(gateway)
    with pytest.raises(AuthorizationError):
        service.update_profile(OWNER_ID, OTHER_USER_ID, {"full_name": "Mallory", "phone": "09351234567"})
    with pytest.raises(ValidationError) as exc:
        service.update_profile(OWNER_ID, OWNER_ID, {"full_name": "Sara", "phone": "12345"})
    assert exc.value.field == "phone"
    assert gateway.get("profiles", OWNER_ID)["full_name"] == "Sara Ahmadi"


def test_identity_from_header(gateway):
    provider = HeaderIdentityProvider(gateway, header="X-User-Id")

    admin = provider.current_user({"X-User-Id": ADMIN_ID})
    assert admin.id == ADMIN_ID
    assert admin.has_role("admin")

    owner = provider.current_user({"X-User-Id": f" {OWNER_ID} "})
    assert owner.id == OWNER_ID
    assert owner.roles == frozenset()

    assert provider.current_user({}) is ANONYMOUS
    assert provider.current_user({"X-User-Id": "  "}).is_anonymous


def test_category_tree(gateway):
    roots = root_categories(gateway)
    assert [c.slug for c in roots] == ["electronics", "vehicles"]
    assert [c.slug for c in child_categories(gateway, roots[0].id)] == ["mobile"]
    assert child_categories(gateway, roots[1].id) == []


def test_seed_categories_is_idempotent():
    gateway = InMemoryGateway()
    expected = sum(1 + len(children) for _, _, children in DEFAULT_CATEGORIES)

    assert seed_categories(gateway) == expected
    assert seed_categories(gateway) == 0
    assert gateway.count("categories") == expected
    assert [c.slug for c in root_categories(gateway)][:3] == ["real-estate", "vehicles", "electronics"]


def test_seed_categories_fills_gaps(sql_gateway):
    # the fixture already holds "electronics" and "vehicles" roots
    added = seed_categories(sql_gateway)
    assert added > 0
    assert sql_gateway.count("categories", {"slug": "electronics"}) == 1
    assert seed_categories(sql_gateway) == 0
