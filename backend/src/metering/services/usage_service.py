"""Usage ledger: per-identity counters and the daily reset rule."""
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from metering import metrics
from metering.config import Settings, settings
from metering.models.ip_usage import IPUsage
from metering.models.user import SubscriptionStatus, User
from metering.schemas.usage import LimitDecision, UsageCounters, UsageStatus
from metering.services.identity import Identity
from metering.services.limit_policy import Entitlement, Limits, decide
from metering.utils.clock import (
    format_time_until_reset,
    get_zone,
    history_key,
    is_past_reset,
    local_date,
    next_reset_time,
    prune_history,
    utcnow,
)

logger = structlog.get_logger(__name__)

UsageRow = User | IPUsage


def entitlement_for(user: User) -> Entitlement:
    """Subscription flags the limit policy reads."""
    return Entitlement(
        is_active=user.subscription_status == SubscriptionStatus.ACTIVE,
        is_trial=user.is_trial,
        trial_end_date=user.trial_end_date,
    )


class UsageLedger:
    """Service owning usage counters for accounts and anonymous addresses."""

    def __init__(
        self,
        db: AsyncSession,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the ledger with a database session."""
        self.db = db
        self.config = config
        self.clock = clock
        self.zone = get_zone(config.reset_timezone)
        self.limits = Limits(
            free_daily_limit=config.free_daily_limit,
            anonymous_limit=config.anonymous_usage_limit,
        )

    async def get(self, identity: Identity, lock: bool = False) -> UsageRow | None:
        """
        Read the usage row for an identity without creating it.

        Args:
            identity: Caller identity
            lock: Take a row lock for a following read-modify-write

        Returns:
            The row, or None if the identity has never been seen
        """
        if identity.is_email:
            query = select(User).where(User.email == identity.value)
        else:
            query = select(IPUsage).where(IPUsage.ip_address == identity.value)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        identity: Identity,
        name: str | None = None,
        picture: str | None = None,
        lock: bool = False,
    ) -> UsageRow:
        """
        Return the usage row for an identity, inserting a zeroed one if absent.

        A concurrent insert of the same identity loses on the unique key and
        falls back to reading the winner's row.
        """
        row = await self.get(identity, lock=lock)
        if row is not None:
            return row

        now = self.clock()
        if identity.is_email:
            row = User(
                email=identity.value,
                name=name,
                picture=picture,
                daily_usage=0,
                total_usage=0,
                last_used=now,
                last_reset=now,
                daily_usage_history={},
                subscription_updated_at=now,
            )
        else:
            row = IPUsage(
                ip_address=identity.value,
                daily_usage=0,
                total_usage=0,
                last_used=now,
                last_reset=now,
            )

        try:
            async with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            logger.info("usage_record_insert_raced", identity_kind=identity.kind.value, identity=identity.value)
            row = await self.get(identity, lock=lock)
            if row is None:
                raise
            return row

        logger.info("usage_record_created", identity_kind=identity.kind.value, identity=identity.value)
        return row

    async def check_and_reset(self, identity: Identity) -> bool:
        """
        Reset daily usage if the last reset precedes today's local midnight.

        Accounts are created on first lookup; unknown addresses have nothing
        to reset. The prior day's count is archived under yesterday's local
        date when non-zero.

        Returns:
            True if a reset was performed
        """
        now = self.clock()
        if identity.is_email:
            row = await self.get_or_create(identity, lock=True)
        else:
            row = await self.get(identity, lock=True)
            if row is None:
                return False

        if not is_past_reset(row.last_reset, now, self.zone):
            return False

        prior = row.daily_usage or 0
        if isinstance(row, User):
            today = local_date(now, self.zone)
            history = dict(row.daily_usage_history or {})
            if prior > 0:
                history[history_key(today - timedelta(days=1))] = prior
            row.daily_usage_history = prune_history(history, today, self.config.usage_history_retention_days)

        row.daily_usage = 0
        row.last_reset = now
        await self.db.flush()

        metrics.usage_resets_total.labels(identity_kind=identity.kind.value).inc()
        logger.info(
            "usage_reset",
            identity_kind=identity.kind.value,
            identity=identity.value,
            archived_daily_usage=prior,
        )
        return True

    async def increment(self, identity: Identity) -> UsageCounters:
        """
        Record one chargeable action.

        Runs the reset check first, then re-reads the counters under a row
        lock and adds one to daily, total and today's history bucket.
        Persistence errors propagate to the caller.
        """
        await self.check_and_reset(identity)

        now = self.clock()
        row = await self.get_or_create(identity, lock=True)
        row.daily_usage = (row.daily_usage or 0) + 1
        row.total_usage = (row.total_usage or 0) + 1
        row.last_used = now

        history: dict[str, int] = {}
        if isinstance(row, User):
            today = local_date(now, self.zone)
            history = dict(row.daily_usage_history or {})
            key = history_key(today)
            history[key] = history.get(key, 0) + 1
            history = prune_history(history, today, self.config.usage_history_retention_days)
            row.daily_usage_history = history

        await self.db.flush()

        metrics.swipes_recorded_total.labels(identity_kind=identity.kind.value).inc()
        logger.debug(
            "usage_incremented",
            identity_kind=identity.kind.value,
            identity=identity.value,
            daily_usage=row.daily_usage,
            total_usage=row.total_usage,
        )
        return UsageCounters(
            daily_usage=row.daily_usage,
            total_usage=row.total_usage,
            last_reset=row.last_reset,
            daily_usage_history=history,
        )

    def _decide(self, row: UsageRow | None, now: datetime) -> LimitDecision:
        daily = row.daily_usage if row is not None else 0
        entitlement = entitlement_for(row) if isinstance(row, User) else None
        return decide(daily or 0, entitlement, self.limits, now)

    async def check_limits(self, identity: Identity) -> LimitDecision:
        """Reset if due, then evaluate the limit policy without charging."""
        await self.check_and_reset(identity)
        row = await self.get(identity)
        return self._decide(row, self.clock())

    async def record_swipe(self, identity: Identity) -> LimitDecision:
        """
        Charge one swipe if the limit policy allows it.

        Returns:
            The denial unchanged when refused, otherwise the decision
            re-evaluated against the incremented counters
        """
        decision = await self.check_limits(identity)
        if not decision.can_swipe:
            reason = "requires_sign_in" if decision.requires_sign_in else "requires_upgrade"
            metrics.swipes_denied_total.labels(reason=reason).inc()
            logger.info(
                "swipe_denied",
                identity_kind=identity.kind.value,
                identity=identity.value,
                daily_swipes=decision.daily_swipes,
                reason=reason,
            )
            return decision

        await self.increment(identity)
        row = await self.get(identity)
        return self._decide(row, self.clock())

    async def usage_status(
        self,
        identity: Identity,
        name: str | None = None,
        picture: str | None = None,
    ) -> UsageStatus:
        """Reset if due, then report counters and entitlement."""
        if identity.is_email:
            await self.get_or_create(identity, name=name, picture=picture)
        was_reset = await self.check_and_reset(identity)
        row = await self.get(identity)
        now = self.clock()

        is_premium = is_trial = False
        trial_ends_at = None
        if isinstance(row, User):
            entitlement = entitlement_for(row)
            is_premium = entitlement.is_active
            is_trial = entitlement.trial_active(now)
            trial_ends_at = row.trial_end_date if is_trial else None

        return UsageStatus(
            daily_swipes=row.daily_usage if row is not None else 0,
            total_swipes=row.total_usage if row is not None else 0,
            is_premium=is_premium,
            is_trial=is_trial,
            was_reset=was_reset,
            trial_ends_at=trial_ends_at,
            next_reset_at=next_reset_time(now, self.zone),
            resets_in=format_time_until_reset(now, self.zone),
        )
