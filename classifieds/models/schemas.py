from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

MOBILE_PHONE_PATTERN = r"^09\d{9}$"

LISTING_EXAMPLE = {
    "title": "گوشی سامسونگ S23 نو در حد صفر",
    "description": "گوشی کاملا سالم با جعبه و شارژر اصلی، بدون خط و خش، فقط دو ماه استفاده شده است.",
    "price": 25000000,
    "city": "تهران",
    "category_id": 1,
    "phone": "09123456789",
    "condition": "like_new",
    "is_negotiable": True,
    "address": "خیابان ولیعصر",
}


class ListingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"   # set by an external expiry process


class ListingCondition(str, Enum):
    NEW = "new"
    LIKE_NEW = "like_new"
    GOOD = "good"
    FAIR = "fair"


class ListingDraft(BaseModel):
    # Field order is the order in which failures are reported
    title: str = Field(..., min_length=10, max_length=100)
    description: str = Field(..., min_length=50, max_length=2000)
    price: int = Field(..., ge=0, description="Non-negative amount, currency-agnostic")
    city: str = Field(..., min_length=2, max_length=80)
    category_id: int = Field(..., description="Root or leaf category id")
    phone: str = Field(..., pattern=MOBILE_PHONE_PATTERN)
    condition: ListingCondition = ListingCondition.GOOD
    is_negotiable: bool = True
    address: Optional[str] = Field(None, max_length=255)
    meta_title: Optional[str] = Field(None, max_length=120)
    meta_description: Optional[str] = Field(None, max_length=320)

    class Config:
        str_strip_whitespace = True
        json_schema_extra = {"example": LISTING_EXAMPLE}


class ListingImageOut(BaseModel):
    id: int
    image_url: str
    sort_order: int


class ListingOut(BaseModel):
    id: str
    user_id: str
    title: str
    description: str
    price: int
    city: str
    address: Optional[str] = None
    phone: str
    category_id: int
    category_name: Optional[str] = None
    condition: ListingCondition
    is_negotiable: bool
    status: ListingStatus
    views_count: int
    slug: str
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    images: List[ListingImageOut] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ListingDetail(ListingOut):
    """Listing with the owner's public profile fields"""
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None


class ListingCard(BaseModel):
    """Compact listing representation for result lists"""
    id: str
    slug: str
    title: str
    price: int
    city: str
    condition: ListingCondition
    is_negotiable: bool
    status: ListingStatus
    views_count: int
    created_at: Optional[datetime] = None
    category_name: Optional[str] = None
    image_url: Optional[str] = None   # first image by sort order


class SearchFilters(BaseModel):
    search: Optional[str] = None      # substring of the title, case-insensitive
    category: Optional[str] = None    # category slug
    city: Optional[str] = None


class SearchPage(BaseModel):
    items: List[ListingCard]
    page: int
    page_size: int


class FailedUpload(BaseModel):
    index: int
    filename: str
    reason: str


class AttachmentReport(BaseModel):
    listing_id: str
    attached: List[ListingImageOut] = Field(default_factory=list)
    failed: List[FailedUpload] = Field(default_factory=list)
    warning: Optional[str] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str
    sort_order: int
    parent_id: Optional[int] = None


class ProfileOut(BaseModel):
    id: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    avatar_url: Optional[str] = None


class ProfileUpdate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=120)
    phone: str = Field(..., pattern=MOBILE_PHONE_PATTERN)
    city: Optional[str] = Field(None, max_length=80)
    avatar_url: Optional[str] = Field(None, max_length=500)

    class Config:
        str_strip_whitespace = True


class DashboardStats(BaseModel):
    total_listings: int
    pending_listings: int
    approved_listings: int
    total_users: int


class SeoReportEntry(BaseModel):
    listing_id: str
    slug: str
    title: str
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    issues: List[str] = Field(default_factory=list)
    optimal: bool
