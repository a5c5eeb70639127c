from dotenv import load_dotenv
load_dotenv()

import os
from pathlib import Path

from app.schemas.config import ServerSettings


def _env_list(name: str, default: str) -> list[str]:
  raw = os.getenv(name, default)
  return [item.strip() for item in raw.split(",") if item.strip()]


def load_settings() -> ServerSettings:
  """Đọc cấu hình server từ biến môi trường

  Returns:
      ServerSettings: Cấu hình đã được validate
  """
  return ServerSettings(
    files_dir=Path(os.getenv("FILES_DIR", "./files")),
    host=os.getenv("HOST", "0.0.0.0"),
    port=int(os.getenv("PORT", "8081")),
    environment=os.getenv("ENVIRONMENT", "development"),
    secret_key=os.getenv("SECRET_KEY") or None,
    algorithm=os.getenv("ALGORITHM", "HS256"),
    jwks_url=os.getenv("JWKS_URL") or None,
    jwks_refresh_minutes=int(os.getenv("JWKS_REFRESH_MINUTES", "15")),
    admin_role=os.getenv("ADMIN_ROLE", "admin"),
    allowed_origins=_env_list("ALLOWED_ORIGINS", "*"),
    rate_limit_capacity=int(os.getenv("RATE_LIMIT_CAPACITY", "10")),
    rate_limit_refill_seconds=float(os.getenv("RATE_LIMIT_REFILL_SECONDS", "60")),
    rate_limit_idle_seconds=float(os.getenv("RATE_LIMIT_IDLE_SECONDS", "300")),
    rate_limit_sweep_seconds=float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "60")),
    manifest_cache_control=os.getenv("MANIFEST_CACHE_CONTROL", "no-cache"),
    log_level=os.getenv("LOG_LEVEL", "INFO"),
  )
