import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from classifieds.db import Base, build_engine
from classifieds.errors import StorageError
from classifieds.repositories import InMemoryGateway, SqlAlchemyGateway
from classifieds.storage.blob_store import InMemoryBlobStore

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
ADMIN_ID = "admin-1"
OWNER_ID = "owner-1"
OTHER_USER_ID = "user-2"


class FlakyBlobStore(InMemoryBlobStore):
    """In-memory store that fails uploads for chosen payloads"""

    def __init__(self, fail_on=(), fail_delete=False):
        super().__init__("/media")
        self.fail_on = set(fail_on)
        self.fail_delete = fail_delete
        self.upload_calls = 0

    def upload(self, key, data, content_type=None):
        self.upload_calls += 1
        if data in self.fail_on:
            raise StorageError(f"upload of {key} failed")
        return super().upload(key, data, content_type)

    def delete(self, key):
        if self.fail_delete:
            raise StorageError(f"delete of {key} failed")
        super().delete(key)


class FixedClock:
    """Clock returning BASE_TIME, advancing one second per call"""

    def __init__(self, start=BASE_TIME):
        self.current = start

    def __call__(self):
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def valid_draft(**overrides):
    draft = {
        "title": "گوشی سامسونگ S23 نو در حد صفر",
        "description": "گوشی کاملا سالم با جعبه و شارژر اصلی، بدون خط و خش، فقط دو ماه استفاده شده است.",
        "price": 25000000,
        "city": "تهران",
        "category_id": 1,
        "phone": "09123456789",
        "condition": "like_new",
        "is_negotiable": True,
    }
    draft.update(overrides)
    return draft


def seed_people(gateway):
    gateway.insert("user_roles", {"user_id": ADMIN_ID, "role": "admin"})
    gateway.insert("profiles", {"id": OWNER_ID, "full_name": "Sara Ahmadi", "phone": "09121111111", "city": "تهران"})
    gateway.insert("profiles", {"id": OTHER_USER_ID, "full_name": "Reza Karimi", "phone": "09122222222"})


def seed_categories(gateway):
    ids = {}
    ids["electronics"] = gateway.insert(
        "categories", {"name": "کالای دیجیتال", "slug": "electronics", "sort_order": 0, "parent_id": None}
    )
    ids["vehicles"] = gateway.insert(
        "categories", {"name": "وسایل نقلیه", "slug": "vehicles", "sort_order": 1, "parent_id": None}
    )
    ids["mobile"] = gateway.insert(
        "categories", {"name": "موبایل", "slug": "mobile", "sort_order": 0, "parent_id": ids["electronics"]}
    )
    return ids


@pytest.fixture
def gateway():
    gw = InMemoryGateway()
    seed_categories(gw)
    seed_people(gw)
    return gw


@pytest.fixture
def sql_gateway(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"timeout": 30})
    Base.metadata.create_all(bind=engine)
    gw = SqlAlchemyGateway(sessionmaker(bind=engine, autoflush=False))
    seed_categories(gw)
    seed_people(gw)
    yield gw
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def any_gateway(request):
    return request.getfixturevalue("gateway" if request.param == "memory" else "sql_gateway")


@pytest.fixture
def blob_store():
    return InMemoryBlobStore("/media")


@pytest.fixture
def make_listing():
    """Factory inserting a listing row directly, bypassing validation."""
    counter = itertools.count()

    def _make(gw, **overrides):
        n = next(counter)
        row = {
            "id": f"listing{n:03d}",
            "user_id": OWNER_ID,
            "title": f"Used phone number {n}",
            "description": "A well kept phone with its original box and charger, no scratches.",
            "price": 1000 + n,
            "city": "تهران",
            "address": None,
            "phone": "09123456789",
            "category_id": 1,
            "condition": "good",
            "is_negotiable": True,
            "status": "pending",
            "views_count": 0,
            "slug": f"used-phone-{n}",
            "meta_title": None,
            "meta_description": None,
            "created_at": BASE_TIME + timedelta(minutes=n),
            "approved_at": None,
        }
        row.update(overrides)
        gw.insert("listings", row)
        return row

    return _make
