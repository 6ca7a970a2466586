# doodlesync/core/config.py
import os
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from typing import Optional, Tuple
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra='ignore')

    # Application Settings
    APP_NAME: str = "DoodleSync API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./doodlesync.db")

    # Storage backends: "firebase" or "local"
    STORAGE_BACKEND: str = os.environ.get("STORAGE_BACKEND", "firebase")
    UPLOAD_DIR: str = "uploads"
    # Object metadata sidecars; kept out of the public /uploads mount
    UPLOAD_META_DIR: Optional[str] = None
    BASE_URL: str = os.environ.get("BASE_URL", "http://localhost:8000")

    # Firebase Settings
    FIREBASE_PROJECT_ID: str = os.environ.get("FIREBASE_PROJECT_ID", "")
    FIREBASE_PRIVATE_KEY: str = os.environ.get("FIREBASE_PRIVATE_KEY", "").replace('\\n', '\n')
    FIREBASE_CLIENT_EMAIL: str = os.environ.get("FIREBASE_CLIENT_EMAIL", "")
    FIREBASE_STORAGE_BUCKET: str = os.environ.get("FIREBASE_STORAGE_BUCKET", "")

    # Metadata document contract shared with the 3D generation backend
    METADATA_COLLECTION: str = "drawings"
    DEFAULT_STORAGE_USER: str = "anonymous"
    DEFAULT_METADATA_USER: str = "dummy"  # matches documents already written by the iOS client
    INITIAL_PROCESSING_STATUS: str = "pending"

    # Sync behaviour
    URL_RESOLVE_MAX_ATTEMPTS: int = 3
    URL_RESOLVE_RETRY_DELAY_SEC: float = 1.0
    SYNC_TIMEOUT_SEC: Optional[float] = 120.0
    SYNC_ON_SAVE: bool = True

    # Rendering
    RASTER_SCALE: float = 2.0
    BACKGROUND_COLOR: str = "#FFFFFF"
    THUMBNAIL_SIZE: Tuple[int, int] = (400, 400)
    MAX_RASTER_DIMENSION: int = 8192  # pixels per side
    MAX_DRAWING_DATA_SIZE: int = 5 * 1024 * 1024  # 5MB

    # Download limits
    MAX_IMAGE_DOWNLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    MAX_THUMBNAIL_DOWNLOAD_SIZE: int = 1 * 1024 * 1024  # 1MB

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def allowed_origins_list(self) -> list:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings: Settings = get_settings()
