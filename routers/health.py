"""
Google Drive self-check endpoint.
"""

from fastapi import APIRouter, Depends, Query

from services.health_service import DriveHealthService

router = APIRouter(prefix="/api/google_drive", tags=["health"])

FORCE_VALUES = {"1", "true", "yes", "si", "sí", "force"}


def get_drive_health_service() -> DriveHealthService:
    return DriveHealthService()


def _force_flag(*values) -> bool:
    return any((value or "").strip().lower() in FORCE_VALUES for value in values)


@router.get("/self_check")
def drive_self_check(
    force: str = Query(None),
    refresh: str = Query(None),
    recheck: str = Query(None),
    service: DriveHealthService = Depends(get_drive_health_service),
):
    """
    Obtain an access token and read the shared drive's metadata.

    ``force`` (also ``refresh``/``recheck``) bypasses the cached result and the
    cached token. Failures answer with ``GOOGLE_DRIVE_SELF_CHECK_FAILED``.
    """
    return service.self_check(force=_force_flag(force, refresh, recheck))
