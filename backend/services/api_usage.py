from database.models.api_usage import ApiUsage
from schemas.api_usage import (
    ApiUsageOverviewResponse,
    CurrentDaySummary,
    CurrentUsage,
    CurrentUsageUpdateResponse,
    DailyUsagePoint,
    MonthSummary,
    UsageHistoryEntry,
    UsageHistoryResponse,
    UsageSettingsRequest,
    UsageStatisticsResponse,
    UsageStatus,
    UsageSummary,
    UsageSummaryResponse,
)
from services.usage_ledger import UsageLedger, summarize, usage_percentage
from utils.dates import start_of_month

OVERVIEW_DAYS = 7
DEFAULT_HISTORY_DAYS = 30


def current_usage_snapshot(usage: ApiUsage) -> CurrentUsage:
    return CurrentUsage(
        requests_today=usage.requests_today,
        max_requests=usage.max_requests,
        remaining_requests=usage.remaining_requests,
        is_limit_reached=usage.is_limit_reached(),
        is_active=usage.is_active,
        last_reset=usage.last_reset,
        admin_notes=usage.admin_notes,
    )


class ApiUsageService:
    """Admin views over the usage ledger."""

    def __init__(self, ledger: UsageLedger):
        self.ledger = ledger

    async def get_overview(self) -> ApiUsageOverviewResponse:
        current = await self.ledger.get_or_create_today()
        history = await self.ledger.query_last_n_days(OVERVIEW_DAYS)
        stats = summarize(history)

        return ApiUsageOverviewResponse(
            current_usage=current_usage_snapshot(current),
            statistics=UsageStatisticsResponse(
                total_requests=stats.total_requests,
                average_requests_per_day=stats.average_requests,
                days_tracked=stats.days_tracked,
            ),
            historical_data=[
                DailyUsagePoint(
                    date=day.date,
                    requests_today=day.requests_today,
                    max_requests=day.max_requests,
                )
                for day in history
            ],
        )

    async def update_settings(self, settings: UsageSettingsRequest) -> CurrentUsageUpdateResponse:
        usage = await self.ledger.update_settings(
            max_requests=settings.max_requests,
            is_active=settings.is_active,
            admin_notes=settings.admin_notes,
        )
        return CurrentUsageUpdateResponse(
            message="API usage settings updated successfully",
            current_usage=current_usage_snapshot(usage),
        )

    async def reset(self) -> CurrentUsageUpdateResponse:
        usage = await self.ledger.reset_daily_count()
        return CurrentUsageUpdateResponse(
            message="Daily API usage count reset successfully",
            current_usage=current_usage_snapshot(usage),
        )

    async def get_history(self, days: int = DEFAULT_HISTORY_DAYS) -> UsageHistoryResponse:
        history = await self.ledger.query_last_n_days(days, descending=True)
        return UsageHistoryResponse(
            history=[
                UsageHistoryEntry(
                    date=day.date,
                    requests_today=day.requests_today,
                    max_requests=day.max_requests,
                    total_requests=day.total_requests,
                    is_active=day.is_active,
                    admin_notes=day.admin_notes,
                    created_at=day.created_at,
                )
                for day in history
            ]
        )

    async def get_summary(self) -> UsageSummaryResponse:
        current = await self.ledger.get_or_create_today()
        month = summarize(await self.ledger.query_since(start_of_month(self.ledger.today())))

        return UsageSummaryResponse(
            summary=UsageSummary(
                current_day=CurrentDaySummary(
                    requests=current.requests_today,
                    max_requests=current.max_requests,
                    remaining=current.remaining_requests,
                    percentage=usage_percentage(current),
                ),
                this_month=MonthSummary(
                    total_requests=month.total_requests,
                    average_daily_requests=month.average_requests,
                    days_tracked=month.days_tracked,
                ),
                status=UsageStatus(
                    is_active=current.is_active,
                    is_limit_reached=current.is_limit_reached(),
                ),
            )
        )
