from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env lives in the project root: app/core/config.py -> app/core -> app -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./tummy.db"
    # CORS: comma separated origins; "*" allows everything
    cors_origins: str = "*"
    # Per-IP requests per minute on /ingredients/analyze
    rate_limit_per_minute: int = 60
    upload_max_mb: int = 10
    environment: str = "development"
    log_level: str = "INFO"

    # Object store (any S3-compatible endpoint: AWS, MinIO, R2)
    s3_endpoint: str = ""
    s3_region: str = "us-east-1"
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_bucket_name: str = "tummy-ai-uploads"
    s3_force_path_style: bool = False

    # Inference: "mock" | "openrouter"
    inference_provider: str = "mock"
    open_router_key: str = ""
    # Several keys, comma separated. When one hits auth/rate limits the next one is tried.
    open_router_keys: str = ""
    open_router_base_url: str = "https://openrouter.ai/api/v1"
    open_router_image_model: str = "openai/gpt-4o-mini"
    inference_timeout: float = 30.0

    # Image transcoder
    compression_max_dimension: int = 1024
    compression_quality: int = 80
    compression_target_kb: int = 100

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("open_router_key", "open_router_keys", mode="before")
    @classmethod
    def strip_keys(cls, v: str | None) -> str:
        """Whitespace from copy/paste breaks the Authorization header."""
        return (v or "").strip()

    @field_validator("inference_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str | None) -> str:
        return (v or "mock").strip().lower()

    @property
    def upload_max_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024


settings = Settings()


def get_open_router_keys(cfg: Settings | None = None) -> list[str]:
    """
    Usable inference keys in priority order.
    OPEN_ROUTER_KEYS wins when set; otherwise OPEN_ROUTER_KEY is the only entry.
    """
    cfg = cfg or settings
    keys_raw = (cfg.open_router_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip()]
        if keys:
            return keys
    single = (cfg.open_router_key or "").strip()
    return [single] if single else []


def is_inference_configured(cfg: Settings | None = None) -> bool:
    cfg = cfg or settings
    if cfg.inference_provider == "mock":
        return True
    return len(get_open_router_keys(cfg)) > 0
