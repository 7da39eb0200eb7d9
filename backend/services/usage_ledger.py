"""
Daily usage ledger for the external AI advisor.

One `ApiUsage` record exists per UTC calendar day. Callers gate the advisor
call with either the two-step interface (`can_make_request` followed by
`increment` on success) or the atomic one (`try_reserve`, then `commit` on
success or `release` on failure). The two-step interface is not atomic: two
concurrent callers can both pass the check and both increment, pushing
`requests_today` past `max_requests`. `try_reserve` is a single conditional
update evaluated against the stored counters and never overshoots.
"""
import functools
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from beanie.operators import Expr, Inc, Set
from beanie.odm.queries.update import UpdateResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

from database.models.api_usage import ApiUsage, clamp_max_requests
from utils.dates import day_bounds, start_of_day, utc_now

logger = logging.getLogger(__name__)


class LedgerUnavailableError(Exception):
    """The usage store could not be reached; quota cannot be verified."""


def _storage_guard(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"Usage ledger storage failure in {func.__name__}: {e}")
            raise LedgerUnavailableError(str(e)) from e

    return wrapper


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class UsageStatistics:
    def __init__(self, total_requests: int, average_requests: int, days_tracked: int):
        self.total_requests = total_requests
        self.average_requests = average_requests
        self.days_tracked = days_tracked


def summarize(records: list[ApiUsage]) -> UsageStatistics:
    """Windowed totals use `requests_today`, never the lifetime counter."""
    total = sum(record.requests_today for record in records)
    average = round_half_up(total / len(records)) if records else 0
    return UsageStatistics(total, average, len(records))


def usage_percentage(record: ApiUsage) -> int:
    return round_half_up(record.requests_today / record.max_requests * 100)


class UsageLedger:
    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def today(self) -> datetime:
        return start_of_day(self._clock())

    @_storage_guard
    async def get_or_create_today(self) -> ApiUsage:
        """
        Return today's record, creating it with defaults if absent.

        Creation is an upsert matched on the same day range the read uses, so
        a record stamped anywhere within today is reused and concurrent first
        calls of the day converge on a single record.
        """
        day = self.today()
        start, end = day_bounds(day)
        collection = ApiUsage.get_motor_collection()
        try:
            await collection.update_one(
                {"date": {"$gte": start, "$lt": end}},
                {"$setOnInsert": ApiUsage.defaults_for(day, self._clock())},
                upsert=True,
            )
        except DuplicateKeyError:
            # Lost the insert race against another upsert; the record exists.
            pass

        usage = await ApiUsage.find_one(ApiUsage.date >= start, ApiUsage.date < end)
        if usage is None:
            raise LedgerUnavailableError(f"Usage record for {day.date()} vanished after upsert")
        return usage

    async def can_make_request(self) -> bool:
        usage = await self.get_or_create_today()
        return usage.can_make_request()

    @_storage_guard
    async def increment(self) -> ApiUsage:
        """
        Charge one successful call to today's record.

        No ceiling is enforced here; callers check `can_make_request` first.
        """
        usage = await self.get_or_create_today()
        await usage.update(
            Inc({ApiUsage.requests_today: 1, ApiUsage.total_requests: 1}),
            Set({ApiUsage.updated_at: self._clock()}),
        )
        return usage

    @_storage_guard
    async def try_reserve(self) -> Optional[ApiUsage]:
        """
        Atomically take one slot of today's quota.

        Returns the updated record, or None when the day is inactive or full.
        The ceiling is checked by the store against the counters it holds at
        update time, so concurrent writers never push the day past its limit.
        """
        usage = await self.get_or_create_today()
        return await ApiUsage.find_one(
            ApiUsage.id == usage.id,
            ApiUsage.is_active == True,  # noqa: E712
            Expr({"$lt": ["$requests_today", "$max_requests"]}),
        ).update(
            Inc({ApiUsage.requests_today: 1}),
            Set({ApiUsage.updated_at: self._clock()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    @_storage_guard
    async def commit(self, reserved: ApiUsage) -> ApiUsage:
        """Record a reserved slot as a successful call in the lifetime counter."""
        await reserved.update(
            Inc({ApiUsage.total_requests: 1}),
            Set({ApiUsage.updated_at: self._clock()}),
        )
        return reserved

    @_storage_guard
    async def release(self, reserved: ApiUsage) -> None:
        """Hand back a reserved slot whose call failed."""
        await ApiUsage.find_one(
            ApiUsage.id == reserved.id,
            ApiUsage.requests_today > 0,
        ).update(
            Inc({ApiUsage.requests_today: -1}),
            Set({ApiUsage.updated_at: self._clock()}),
        )

    @_storage_guard
    async def reset_daily_count(self) -> ApiUsage:
        usage = await self.get_or_create_today()
        now = self._clock()
        await usage.update(
            Set({
                ApiUsage.requests_today: 0,
                ApiUsage.last_reset: now,
                ApiUsage.updated_at: now,
            })
        )
        logger.info(f"Daily API usage count reset for {usage.date.date()}")
        return usage

    @_storage_guard
    async def update_settings(
        self,
        max_requests: Optional[int] = None,
        is_active: Optional[bool] = None,
        admin_notes: Optional[str] = None,
    ) -> ApiUsage:
        """
        Apply any subset of the admin settings to today's record.

        Out-of-range `max_requests` is clamped to [1, 1000], not rejected.
        """
        usage = await self.get_or_create_today()
        changes: dict = {ApiUsage.updated_at: self._clock()}
        if max_requests is not None:
            changes[ApiUsage.max_requests] = clamp_max_requests(max_requests)
        if is_active is not None:
            changes[ApiUsage.is_active] = is_active
        if admin_notes is not None:
            changes[ApiUsage.admin_notes] = admin_notes

        await usage.update(Set(changes))
        logger.info(
            f"API usage settings updated: max_requests={usage.max_requests} "
            f"is_active={usage.is_active}"
        )
        return usage

    @_storage_guard
    async def query_range(
        self, start: datetime, end: datetime, descending: bool = False
    ) -> list[ApiUsage]:
        order = -ApiUsage.date if descending else +ApiUsage.date
        return await ApiUsage.find(
            ApiUsage.date >= start,
            ApiUsage.date < end,
        ).sort(order).to_list()

    async def query_last_n_days(self, n: int, descending: bool = False) -> list[ApiUsage]:
        """Records for today and the `n - 1` days before it."""
        today = self.today()
        start = today - timedelta(days=max(n, 1) - 1)
        return await self.query_range(start, today + timedelta(days=1), descending)

    async def query_since(self, start: datetime, descending: bool = False) -> list[ApiUsage]:
        return await self.query_range(start, self.today() + timedelta(days=1), descending)


usage_ledger = UsageLedger()


def get_usage_ledger() -> UsageLedger:
    return usage_ledger
