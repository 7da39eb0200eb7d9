from fastapi import APIRouter, Depends, Query, Request
from database.models.user import Role, User
from schemas.api_usage import (
    ApiUsageOverviewResponse,
    CurrentUsageUpdateResponse,
    UsageHistoryResponse,
    UsageSettingsRequest,
    UsageSummaryResponse,
)
from services.api_usage import DEFAULT_HISTORY_DAYS, ApiUsageService
from services.usage_ledger import UsageLedger, get_usage_ledger
from utils.auth import require_role
from utils.rate_limiter import limiter

admin_router = APIRouter()

require_admin = require_role(Role.ADMIN)


def get_api_usage_service(ledger: UsageLedger = Depends(get_usage_ledger)) -> ApiUsageService:
    return ApiUsageService(ledger)

# ------------------ API USAGE ROUTES ------------------ #

@admin_router.get("/api-usage", response_model=ApiUsageOverviewResponse, summary="Current AI usage")
@limiter.limit("30/minute")
async def get_api_usage(
    request: Request,
    current_user: User = Depends(require_admin),
    service: ApiUsageService = Depends(get_api_usage_service),
):
    """
    Today's usage snapshot plus statistics and trend for the last 7 days.

    Rate limit: 30 requests per minute.
    """
    return await service.get_overview()


@admin_router.put("/api-usage/settings", response_model=CurrentUsageUpdateResponse, summary="Update AI usage settings")
@limiter.limit("10/minute")
async def update_api_usage_settings(
    request: Request,
    payload: UsageSettingsRequest,
    current_user: User = Depends(require_admin),
    service: ApiUsageService = Depends(get_api_usage_service),
):
    """
    Change today's `maxRequests`, `isActive` or `adminNotes`.

    `maxRequests` outside 1-1000 is clamped into range rather than rejected.

    Rate limit: 10 requests per minute.
    """
    return await service.update_settings(payload)


@admin_router.post("/api-usage/reset", response_model=CurrentUsageUpdateResponse, summary="Reset today's AI usage")
@limiter.limit("10/minute")
async def reset_api_usage(
    request: Request,
    current_user: User = Depends(require_admin),
    service: ApiUsageService = Depends(get_api_usage_service),
):
    """
    Rate limit: 10 requests per minute.
    """
    return await service.reset()


@admin_router.get("/api-usage/history", response_model=UsageHistoryResponse, summary="AI usage history")
@limiter.limit("30/minute")
async def get_api_usage_history(
    request: Request,
    days: int = Query(DEFAULT_HISTORY_DAYS, ge=1),
    current_user: User = Depends(require_admin),
    service: ApiUsageService = Depends(get_api_usage_service),
):
    """
    Daily records of the last `days` days, most recent first.

    Rate limit: 30 requests per minute.
    """
    return await service.get_history(days)


@admin_router.get("/api-usage/summary", response_model=UsageSummaryResponse, summary="AI usage summary")
@limiter.limit("30/minute")
async def get_api_usage_summary(
    request: Request,
    current_user: User = Depends(require_admin),
    service: ApiUsageService = Depends(get_api_usage_service),
):
    """
    Today's consumption against the ceiling and this month's totals.

    Rate limit: 30 requests per minute.
    """
    return await service.get_summary()
