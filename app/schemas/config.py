from pathlib import Path
from pydantic import BaseModel, Field, model_validator


class ServerSettings(BaseModel):
    """Server configuration loaded from the environment (.env supported)"""
    files_dir: Path = Path("./files")
    host: str = "0.0.0.0"
    port: int = 8081
    environment: str = "development"

    secret_key: str | None = None
    algorithm: str = "HS256"
    jwks_url: str | None = None
    jwks_refresh_minutes: int = 15
    admin_role: str = "admin"

    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])

    rate_limit_capacity: int = Field(10, gt=0)
    rate_limit_refill_seconds: float = Field(60.0, gt=0)
    rate_limit_idle_seconds: float = Field(300.0, gt=0)
    rate_limit_sweep_seconds: float = Field(60.0, gt=0)

    manifest_cache_control: str = "no-cache"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _require_signing_key(self):
        if not self.secret_key and not self.jwks_url:
            raise ValueError("SECRET_KEY or JWKS_URL must be configured")
        return self
