import mimetypes
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from classifieds.config import settings
from classifieds.db import Base, SessionLocal, engine
from classifieds.errors import AuthorizationError, ClassifiedsError
from classifieds.identity import HeaderIdentityProvider, Principal
from classifieds.models.schemas import (
    AttachmentReport,
    CategoryOut,
    DashboardStats,
    ListingCard,
    ListingDetail,
    LISTING_EXAMPLE,
    ListingOut,
    ListingStatus,
    ProfileOut,
    SearchFilters,
    SearchPage,
    SeoReportEntry,
)
from classifieds.repositories import PersistenceGateway, SqlAlchemyGateway
from classifieds.seed import seed_categories
from classifieds.services.categories import child_categories, root_categories
from classifieds.services.lifecycle import ListingLifecycleEngine
from classifieds.services.media import MediaAttachmentCoordinator, UploadedFile
from classifieds.services.moderation import ADMIN_ROLE, ModerationEngine
from classifieds.services.profiles import ProfileService
from classifieds.services.search import SearchService
from classifieds.storage.blob_store import BlobStore, build_blob_store
from classifieds.utils import get_logger

logger = get_logger(__name__)

app = FastAPI(title="Classifieds listing service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

gateway = SqlAlchemyGateway(SessionLocal)
blob_store = build_blob_store(settings)


def get_gateway() -> PersistenceGateway:
    return gateway


def get_blob_store() -> BlobStore:
    return blob_store


def get_principal(request: Request, gateway: PersistenceGateway = Depends(get_gateway)) -> Principal:
    return HeaderIdentityProvider(gateway).current_user(request.headers)


def get_lifecycle(
    gateway: PersistenceGateway = Depends(get_gateway),
    blob_store: BlobStore = Depends(get_blob_store),
) -> ListingLifecycleEngine:
    return ListingLifecycleEngine(gateway, blob_store)


def get_media(
    gateway: PersistenceGateway = Depends(get_gateway),
    blob_store: BlobStore = Depends(get_blob_store),
) -> MediaAttachmentCoordinator:
    return MediaAttachmentCoordinator(gateway, blob_store)


def get_moderation(
    gateway: PersistenceGateway = Depends(get_gateway),
    lifecycle: ListingLifecycleEngine = Depends(get_lifecycle),
) -> ModerationEngine:
    return ModerationEngine(gateway, lifecycle)


def get_search(gateway: PersistenceGateway = Depends(get_gateway)) -> SearchService:
    return SearchService(gateway)


@app.exception_handler(ClassifiedsError)
async def classifieds_error_handler(request: Request, exc: ClassifiedsError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    if settings.SEED_ON_STARTUP:
        added = seed_categories(gateway)
        if added:
            logger.info("Seeded %d categories", added)


@app.get("/health")
def health():
    return {"status": "ok"}


# -----------------------------
# Categories
# -----------------------------
@app.get("/categories", response_model=List[CategoryOut])
def list_categories(gateway: PersistenceGateway = Depends(get_gateway)):
    return root_categories(gateway)


@app.get("/categories/{category_id}/children", response_model=List[CategoryOut])
def list_child_categories(category_id: int, gateway: PersistenceGateway = Depends(get_gateway)):
    gateway.get("categories", category_id)
    return child_categories(gateway, category_id)


# -----------------------------
# Listings
# -----------------------------
@app.post("/listings", response_model=ListingOut, status_code=201)
def create_listing(
    payload: Dict[str, Any] = Body(..., examples=[LISTING_EXAMPLE]),
    principal: Principal = Depends(get_principal),
    lifecycle: ListingLifecycleEngine = Depends(get_lifecycle),
):
    # Validation happens in the engine so every caller gets the same first-field error
    return lifecycle.create_listing(principal.id, payload)


@app.get("/listings", response_model=SearchPage)
def search_listings(
    search: Optional[str] = None,
    category: Optional[str] = None,
    city: Optional[str] = None,
    page: int = Query(1, ge=1),
    service: SearchService = Depends(get_search),
):
    return service.search(SearchFilters(search=search, category=category, city=city), page=page)


@app.get("/listings/{slug}", response_model=ListingDetail)
def get_listing(slug: str, lifecycle: ListingLifecycleEngine = Depends(get_lifecycle)):
    return lifecycle.get_public_listing(slug)


@app.post("/listings/{listing_id}/images", response_model=AttachmentReport)
async def upload_listing_images(
    listing_id: str,
    files: List[UploadFile] = File(...),
    principal: Principal = Depends(get_principal),
    media: MediaAttachmentCoordinator = Depends(get_media),
):
    uploads = [
        UploadedFile(filename=f.filename or "", content=await f.read(), content_type=f.content_type)
        for f in files
    ]
    # Blob and database calls block, keep them off the event loop
    return await run_in_threadpool(media.attach_images, listing_id, principal.id, uploads)


@app.delete("/listings/{listing_id}", status_code=204)
def delete_listing(
    listing_id: str,
    principal: Principal = Depends(get_principal),
    lifecycle: ListingLifecycleEngine = Depends(get_lifecycle),
):
    lifecycle.delete_listing(listing_id, principal.id)
    return Response(status_code=204)


# -----------------------------
# Current user
# -----------------------------
@app.get("/me")
def whoami(principal: Principal = Depends(get_principal)):
    return {"id": principal.id, "roles": sorted(principal.roles), "is_admin": principal.has_role(ADMIN_ROLE)}


@app.get("/me/listings", response_model=List[ListingCard])
def my_listings(
    status: Optional[ListingStatus] = None,
    principal: Principal = Depends(get_principal),
    lifecycle: ListingLifecycleEngine = Depends(get_lifecycle),
):
    return lifecycle.list_owner_listings(principal.id, status)


@app.get("/me/profile", response_model=ProfileOut)
def my_profile(principal: Principal = Depends(get_principal), gateway: PersistenceGateway = Depends(get_gateway)):
    if principal.is_anonymous:
        raise AuthorizationError("You must be signed in to see your profile")
    return ProfileService(gateway).get_profile(principal.id)


@app.put("/me/profile", response_model=ProfileOut)
def update_my_profile(
    payload: Dict[str, Any] = Body(...),
    principal: Principal = Depends(get_principal),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return ProfileService(gateway).update_profile(principal.id, principal.id, payload)


# -----------------------------
# Admin
# -----------------------------
@app.get("/admin/stats", response_model=DashboardStats)
def admin_stats(principal: Principal = Depends(get_principal), moderation: ModerationEngine = Depends(get_moderation)):
    return moderation.dashboard_stats(principal.id)


@app.get("/admin/listings", response_model=List[ListingDetail])
def admin_listings(
    status: Optional[ListingStatus] = None,
    principal: Principal = Depends(get_principal),
    moderation: ModerationEngine = Depends(get_moderation),
):
    return moderation.all_listings(principal.id, status)


@app.get("/admin/listings/seo-report", response_model=List[SeoReportEntry])
def admin_seo_report(principal: Principal = Depends(get_principal), moderation: ModerationEngine = Depends(get_moderation)):
    return moderation.seo_report(principal.id)


@app.post("/admin/listings/{listing_id}/approve", response_model=ListingOut)
def approve_listing(
    listing_id: str,
    principal: Principal = Depends(get_principal),
    moderation: ModerationEngine = Depends(get_moderation),
):
    return moderation.approve(listing_id, principal.id)


@app.post("/admin/listings/{listing_id}/reject", response_model=ListingOut)
def reject_listing(
    listing_id: str,
    principal: Principal = Depends(get_principal),
    moderation: ModerationEngine = Depends(get_moderation),
):
    return moderation.reject(listing_id, principal.id)


# -----------------------------
# Media
# -----------------------------
@app.get("/media/{key:path}")
def get_media_blob(key: str, blob_store: BlobStore = Depends(get_blob_store)):
    data = blob_store.read(key)
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)


def serve():
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    serve()
