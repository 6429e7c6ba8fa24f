import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger("print-kit.config")

ENV_PREFIX = "PRINT_KIT_"
PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_ICC_PROFILE_PATH = PACKAGE_DIR / "icc" / "sRGB.icc"


class Settings(BaseModel):
    dpi: int = Field(300, gt=0)
    jpeg_quality: int = Field(95, ge=1, le=100)
    crop_workers: int = Field(4, ge=1)
    queue_size: int = Field(4, ge=1)
    # Seconds; 0 disables the limit
    operation_timeout: float = Field(600.0, ge=0)
    detector_timeout: float = Field(30.0, gt=0)
    max_upload_mb: float = Field(50.0, gt=0)
    compress_level: int = Field(9, ge=0, le=9)
    icc_profile_path: Optional[Path] = DEFAULT_ICC_PROFILE_PATH
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * 1024 * 1024)

    @property
    def timeout(self) -> Optional[float]:
        return self.operation_timeout or None


def load_env_file() -> Optional[str]:
    """Discover and load .env.local / .env, returning the resolved path."""
    resolved = find_dotenv(".env.local")
    if not resolved:
        fallback = PACKAGE_DIR / ".env"
        if fallback.exists():
            resolved = str(fallback)

    if resolved:
        # utf-8-sig tolerates a BOM in files saved on Windows
        load_dotenv(resolved, override=True, encoding="utf-8-sig")
    logger.info(f"dotenv loaded from: {resolved or 'not found'}")
    return resolved


def _env(name: str) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings() -> Settings:
    """Build settings from PRINT_KIT_* environment variables."""
    load_env_file()
    values = {}
    for field in ("dpi", "jpeg_quality", "crop_workers", "queue_size",
                  "compress_level"):
        raw = _env(field.upper())
        if raw is not None:
            values[field] = int(raw)
    for field in ("operation_timeout", "detector_timeout", "max_upload_mb"):
        raw = _env(field.upper())
        if raw is not None:
            values[field] = float(raw)

    icc = _env("ICC_PROFILE_PATH")
    if icc is not None:
        values["icc_profile_path"] = Path(icc)
    origins = _env("CORS_ORIGINS")
    if origins is not None:
        values["cors_origins"] = [o.strip() for o in origins.split(",")
                                  if o.strip()]
    level = _env("LOG_LEVEL")
    if level is not None:
        values["log_level"] = level.upper()

    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
