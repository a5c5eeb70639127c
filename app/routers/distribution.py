from typing import Dict
from urllib.parse import quote
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from app.dependencies import admit_request, get_distribution_service
from app.schemas.manifest import BatchRequest, VerifyResponse, VersionResponse
from app.services.distribution_service import DistributionService
from app.utils.paths import PathViolation

router = APIRouter(dependencies=[Depends(admit_request)], tags=["distribution"])


@router.get("/manifest")
async def get_manifest(
    request: Request,
    if_none_match: str | None = Header(None, alias="If-None-Match"),
    service: DistributionService = Depends(get_distribution_service),
):
    """Current manifest. 304 when If-None-Match already names the current version."""
    # One snapshot for the whole response, so ETag and body always agree
    manifest = service.get_manifest()
    headers = {
        "ETag": manifest.version,
        "Cache-Control": request.app.state.settings.manifest_cache_control,
    }
    if service.not_modified(manifest, if_none_match):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
    return JSONResponse(content=manifest.to_json_dict(), headers=headers)


@router.get("/version", response_model=VersionResponse)
async def get_version(service: DistributionService = Depends(get_distribution_service)):
    return VersionResponse(version=service.get_version())


@router.post("/files/batch")
def download_batch(
    payload: BatchRequest,
    service: DistributionService = Depends(get_distribution_service),
):
    """
    Zip bundle of the requested files.

    Unsafe or missing paths are left out of the archive rather than failing
    the request; X-Batch-Included / X-Batch-Skipped report what happened.
    """
    if not payload.files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files specified")

    plan = service.plan_batch(payload.files)
    headers = {
        "Content-Disposition": 'attachment; filename="patch.zip"',
        "X-Batch-Included": str(len(plan.entries)),
        "X-Batch-Skipped": ",".join(quote(p, safe="/") for p in plan.skipped),
    }
    return StreamingResponse(service.stream_batch(plan), media_type="application/zip", headers=headers)


@router.get("/files/{file_path:path}")
def download_file(
    file_path: str,
    service: DistributionService = Depends(get_distribution_service),
):
    """Download a single file from the file root."""
    try:
        absolute_path = service.get_file_path(file_path)
    except PathViolation:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file path")
    except FileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return FileResponse(absolute_path, filename=absolute_path.name)


@router.post("/verify", response_model=VerifyResponse)
async def verify_files(
    client_files: Dict[str, str],
    service: DistributionService = Depends(get_distribution_service),
):
    """Compare client hashes (fileName -> hash) with the current manifest."""
    return service.verify(client_files).to_response()
