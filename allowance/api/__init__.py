from fastapi import APIRouter

from allowance.api.schemas import HealthResponse

VERSION = "0.1.0"

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health."""
    return HealthResponse(status="healthy", version=VERSION)
