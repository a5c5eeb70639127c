from fastapi import APIRouter, Depends, HTTPException, status
from app.core.logger import setup_logger
from app.core.security import require_role
from app.dependencies import admit_request, get_distribution_service
from app.schemas.manifest import PatchCreatedResponse
from app.services.distribution_service import DistributionService, InvalidVersionError

logger = setup_logger("PatchServer.Patches")

router = APIRouter(dependencies=[Depends(admit_request)], tags=["patches"])


@router.post("/patches/{version}", status_code=status.HTTP_201_CREATED, response_model=PatchCreatedResponse)
async def create_patch(
    version: str,
    claims: dict = Depends(require_role()),
    service: DistributionService = Depends(get_distribution_service),
):
    """Rescan the file root and publish it as `version` (admin only)."""
    logger.info(f"Creating patch {version!r} requested by {claims.get('sub', 'unknown')}")
    try:
        manifest = await service.create_patch(version)
    except InvalidVersionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except OSError as e:
        logger.error(f"Patch {version!r} failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create patch")

    return PatchCreatedResponse(version=manifest.version)
