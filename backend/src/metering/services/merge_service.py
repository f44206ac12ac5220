"""One-time transfer of anonymous usage into an account at sign-in."""
from datetime import datetime
from typing import Callable

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metering import metrics
from metering.config import Settings, settings
from metering.exceptions import IdentityValidationError
from metering.models.ip_usage import IPUsage
from metering.models.user import User
from metering.schemas.usage import MergeResult
from metering.services.identity import UNKNOWN_ADDRESS, Identity
from metering.services.usage_service import UsageLedger, entitlement_for
from metering.utils.clock import history_key, local_date, prune_history, utcnow

logger = structlog.get_logger(__name__)


class IdentityMergeService:
    """
    Merges an anonymous address's daily usage into an account.

    The account write is committed first and is authoritative. Clearing the
    anonymous record is a separate compensating step: if it fails the merge
    still succeeds and the failure is logged, so the same swipes may be
    counted again if the client keeps using the service anonymously.
    """

    def __init__(
        self,
        db: AsyncSession,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize merge service with database session."""
        self.db = db
        self.clock = clock
        self.config = config
        self.ledger = UsageLedger(db, config=config, clock=clock)

    async def merge(
        self,
        account: Identity,
        address: Identity,
        declared_swipes: int | None = None,
        name: str | None = None,
        picture: str | None = None,
    ) -> MergeResult:
        """
        Add anonymous daily usage onto the account's counters.

        Args:
            account: Signing-in account identity
            address: Network address the anonymous usage was recorded under
            declared_swipes: Client-declared anonymous count, used instead of
                the stored address record when given
            name: Profile name for a newly created account
            picture: Profile picture for a newly created account

        Returns:
            The account's counters after the merge
        """
        if not account.is_email:
            raise IdentityValidationError("Merge target must be an account", value=account.value)

        anonymous_swipes, source = await self._anonymous_swipes(address, declared_swipes)

        try:
            await self.ledger.get_or_create(account, name=name, picture=picture)
            await self.ledger.check_and_reset(account)
            user = await self.ledger.get(account, lock=True)
            self._add_to_account(user, anonymous_swipes)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "merge_account_write_failed",
                email=account.value,
                ip_address=address.value,
                anonymous_swipes=anonymous_swipes,
                error=str(e),
            )
            raise

        now = self.clock()
        entitlement = entitlement_for(user)
        trial_active = entitlement.trial_active(now)
        result = MergeResult(
            user_id=str(user.id),
            email=user.email,
            daily_swipes=user.daily_usage,
            total_swipes=user.total_usage,
            merged_swipes=anonymous_swipes,
            source=source,
            ip_cleared=False,
            is_premium=entitlement.is_active,
            is_trial=trial_active,
            trial_ends_at=user.trial_end_date if trial_active else None,
        )

        if address.value != UNKNOWN_ADDRESS:
            result.ip_cleared = await self.clear_anonymous_usage(address, account)

        metrics.merges_total.labels(source=source).inc()
        logger.info(
            "usage_merged",
            email=account.value,
            ip_address=address.value,
            source=source,
            merged_swipes=anonymous_swipes,
            daily_usage=result.daily_swipes,
            ip_cleared=result.ip_cleared,
        )
        return result

    async def _anonymous_swipes(self, address: Identity, declared: int | None) -> tuple[int, str]:
        if declared is not None:
            return declared, "client_declared"
        if address.value == UNKNOWN_ADDRESS:
            # Shared bucket for callers without an address, not attributable to one person
            return 0, "none"

        await self.ledger.check_and_reset(address)
        record = await self.ledger.get(address)
        if record is None:
            return 0, "none"
        return record.daily_usage or 0, "ip_record"

    def _add_to_account(self, user: User, swipes: int) -> None:
        if swipes <= 0:
            return
        now = self.clock()
        today = local_date(now, self.ledger.zone)
        history = dict(user.daily_usage_history or {})
        key = history_key(today)
        history[key] = history.get(key, 0) + swipes

        user.daily_usage = (user.daily_usage or 0) + swipes
        user.total_usage = (user.total_usage or 0) + swipes
        user.daily_usage_history = prune_history(history, today, self.config.usage_history_retention_days)
        user.last_used = now

    async def clear_anonymous_usage(self, address: Identity, account: Identity) -> bool:
        """
        Zero the address's daily usage after a committed merge.

        Best-effort: failures are logged and reported as False, never raised.
        """
        try:
            await self._zero_ip_daily_usage(address.value)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            metrics.merge_partial_failures_total.inc()
            logger.error(
                "merge_ip_clear_failed",
                email=account.value,
                ip_address=address.value,
                error=str(e),
            )
            return False
        return True

    async def _zero_ip_daily_usage(self, ip_address: str) -> None:
        await self.db.execute(
            update(IPUsage)
            .where(IPUsage.ip_address == ip_address)
            .values(daily_usage=0)
            .execution_options(synchronize_session=False)
        )
