from datetime import datetime
from typing import List, Optional

from schemas.base import ApiModel


class UsageSettingsRequest(ApiModel):
    max_requests: Optional[int] = None
    is_active: Optional[bool] = None
    admin_notes: Optional[str] = None


class CurrentUsage(ApiModel):
    requests_today: int
    max_requests: int
    remaining_requests: int
    is_limit_reached: bool
    is_active: bool
    last_reset: datetime
    admin_notes: str


class UsageStatisticsResponse(ApiModel):
    total_requests: int
    average_requests_per_day: int
    days_tracked: int


class DailyUsagePoint(ApiModel):
    date: datetime
    requests_today: int
    max_requests: int


class ApiUsageOverviewResponse(ApiModel):
    current_usage: CurrentUsage
    statistics: UsageStatisticsResponse
    historical_data: List[DailyUsagePoint]


class CurrentUsageUpdateResponse(ApiModel):
    message: str
    current_usage: CurrentUsage


class UsageHistoryEntry(ApiModel):
    date: datetime
    requests_today: int
    max_requests: int
    total_requests: int
    is_active: bool
    admin_notes: str
    created_at: datetime


class UsageHistoryResponse(ApiModel):
    history: List[UsageHistoryEntry]


class CurrentDaySummary(ApiModel):
    requests: int
    max_requests: int
    remaining: int
    percentage: int


class MonthSummary(ApiModel):
    total_requests: int
    average_daily_requests: int
    days_tracked: int


class UsageStatus(ApiModel):
    is_active: bool
    is_limit_reached: bool


class UsageSummary(ApiModel):
    current_day: CurrentDaySummary
    this_month: MonthSummary
    status: UsageStatus


class UsageSummaryResponse(ApiModel):
    summary: UsageSummary
