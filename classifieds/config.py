import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./classifieds.db")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Listings
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", 20))
    MAX_IMAGES_PER_LISTING: int = int(os.getenv("MAX_IMAGES_PER_LISTING", 8))
    SLUG_MAX_ATTEMPTS: int = int(os.getenv("SLUG_MAX_ATTEMPTS", 3))

    # Blob storage: "local", "memory" or "redis"
    BLOB_BACKEND: str = os.getenv("BLOB_BACKEND", "local")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "./uploads")
    MEDIA_BASE_URL: str = os.getenv("MEDIA_BASE_URL", "/media")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # HTTP server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", 8000))

    # Header set by the upstream identity provider
    IDENTITY_HEADER: str = os.getenv("IDENTITY_HEADER", "X-User-Id")
    SEED_ON_STARTUP: bool = os.getenv("SEED_ON_STARTUP", "true").lower() in ("1", "true", "yes")

settings = Settings()
