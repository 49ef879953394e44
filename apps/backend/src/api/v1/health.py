from fastapi import APIRouter

from schemas.api import ApiResponse


router = APIRouter()


@router.get("/health", response_model=ApiResponse[dict[str, str]])
def health_check() -> ApiResponse[dict[str, str]]:
    """Liveness probe; does not touch the upstream services."""
    return ApiResponse(
        success=True,
        data={"status": "healthy", "message": "Portfolio gateway is running"},
        message="Health check successful",
    )
