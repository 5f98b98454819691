import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from activity_overview.dependencies import get_current_user, get_overview_service
from activity_overview.models import User
from activity_overview.schemas import ActivityOverviewSchema, ErrorSchema, OverviewRequest
from activity_overview.services.clock import iso_z
from activity_overview.services.overview import (
    ActivityOverviewService,
    OverviewAuthError,
    OverviewResult,
    OverviewValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard/recent-activity", tags=["activity-overview"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _overview_response(result: OverviewResult) -> JSONResponse:
    return JSONResponse(
        result.body(),
        headers={
            "cache-control": "no-store",
            "x-activity-overview-cache": result.status,
            "x-activity-overview-cached-at": iso_z(result.cached_at),
            "x-activity-overview-expires-at": iso_z(result.expires_at),
        },
    )


@router.post(
    "/summary",
    response_model=ActivityOverviewSchema,
    responses={
        400: {"model": ErrorSchema},
        401: {"model": ErrorSchema},
        500: {"model": ErrorSchema},
    },
)
async def recent_activity_summary(
    request: Request,
    user: User | None = Depends(get_current_user),
    service: ActivityOverviewService = Depends(get_overview_service),
) -> JSONResponse:
    if user is None:
        return _error("Unauthorized", 401)

    try:
        payload = await request.json()
    except (ValueError, UnicodeDecodeError) as exc:
        logger.info("Invalid request body for recent activity summary: %s", exc)
        return _error("Invalid request body.", 400)

    try:
        body = OverviewRequest.model_validate(payload)
    except ValidationError:
        return _error("Invalid request payload.", 400)

    try:
        result = await service.get_overview(
            user, body.timeframe_days, force_refresh=body.force_refresh
        )
    except OverviewAuthError:
        return _error("Unauthorized", 401)
    except OverviewValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:
        logger.error(
            "Failed to resolve recent activity overview for user %s: %s",
            user.id, exc, exc_info=True,
        )
        return _error("Unable to summarize recent activity.", 500)

    return _overview_response(result)
