import time
from contextlib import asynccontextmanager
import anyio
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import PlainTextResponse
from app.core.config import load_settings
from app.core.logger import setup_logger, set_log_level
from app.core.rate_limit import RateLimiter
from app.core.security import JWKSCache
from app.routers.distribution import router as distribution_router
from app.routers.patches import router as patches_router
from app.schemas.config import ServerSettings
from app.services.distribution_service import DistributionService

logger = setup_logger("PatchServer")


def create_app(settings: ServerSettings | None = None) -> FastAPI:
  settings = settings or load_settings()
  set_log_level(settings.log_level)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    logger.info(f"Starting patch server in {settings.environment} mode")
    # OSError here is fatal: the server never starts without a manifest
    service = await anyio.to_thread.run_sync(DistributionService, settings.files_dir)
    manifest = service.get_manifest()
    logger.info(f"Loaded manifest version: {manifest.version} with {len(manifest.files)} files")

    app.state.distribution = service
    async with anyio.create_task_group() as tg:
      tg.start_soon(app.state.limiter.run_sweeper)
      yield
      tg.cancel_scope.cancel()
    logger.info("Server exited")

  app = FastAPI(title="PatchServer", version="0.1.0", lifespan=lifespan)
  app.state.settings = settings
  app.state.limiter = RateLimiter(
    capacity=settings.rate_limit_capacity,
    refill_seconds=settings.rate_limit_refill_seconds,
    idle_seconds=settings.rate_limit_idle_seconds,
    sweep_interval=settings.rate_limit_sweep_seconds,
  )
  app.state.jwks = (
    JWKSCache(settings.jwks_url, settings.jwks_refresh_minutes * 60)
    if settings.jwks_url else None
  )

  app.add_middleware(GZipMiddleware, minimum_size=1024)
  app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "If-None-Match"],
    expose_headers=["ETag", "X-Batch-Included", "X-Batch-Skipped"],
  )

  @app.middleware("http")
  async def access_log(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
    return response

  @app.get("/health", response_class=PlainTextResponse, tags=["health"])
  async def health():
    return "ok"

  app.include_router(distribution_router)
  app.include_router(patches_router)
  return app


def run():
  settings = load_settings()
  uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
  run()
