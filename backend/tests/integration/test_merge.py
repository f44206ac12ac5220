"""Integration tests for merging anonymous usage into an account at sign-in."""
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import IdentityValidationError
from metering.services.identity import Identity
from metering.services.merge_service import IdentityMergeService
from metering.services.usage_service import UsageLedger
from tests.utils.factories import IPUsageFactory, UserFactory


@pytest.mark.asyncio
async def test_merge_adds_anonymous_swipes_and_clears_address(db_session: AsyncSession, clock) -> None:
    user = await UserFactory.create(db_session, UserFactory.build(clock.now, {"daily_usage": 3, "total_usage": 20}))
    record = await IPUsageFactory.create(db_session, clock.now, {"daily_usage": 5, "total_usage": 11})
    service = IdentityMergeService(db_session, clock=clock)

    result = await service.merge(Identity.email(user.email), Identity.ip(record.ip_address))

    ledger = UsageLedger(db_session, clock=clock)
    account = await ledger.get(Identity.email(user.email))
    address = await ledger.get(Identity.ip(record.ip_address))
    assert result.daily_swipes == 8
    assert result.merged_swipes == 5
    assert result.source == "ip_record"
    assert result.ip_cleared is True
    assert account.daily_usage == 8
    assert account.total_usage == 25
    assert account.daily_usage_history == {"2025-06-15": 5}
    assert address.daily_usage == 0
    assert address.total_usage == 11


@pytest.mark.asyncio
async def test_merge_creates_account_on_first_sign_in(db_session: AsyncSession, clock) -> None:
    record = await IPUsageFactory.create(db_session, clock.now, {"daily_usage": 2, "total_usage": 2})
    service = IdentityMergeService(db_session, clock=clock)

    result = await service.merge(
        Identity.email("first.time@example.com"),
        Identity.ip(record.ip_address),
        name="First Time",
    )

    assert result.email == "first.time@example.com"
    assert result.daily_swipes == 2
    assert result.total_swipes == 2


@pytest.mark.asyncio
async def test_client_declared_count_overrides_and_clears_stored_record(db_session: AsyncSession, clock) -> None:
    user = await UserFactory.create(db_session, UserFactory.build(clock.now, {"daily_usage": 1, "total_usage": 1}))
    record = await IPUsageFactory.create(db_session, clock.now, {"daily_usage": 9, "total_usage": 9})
    service = IdentityMergeService(db_session, clock=clock)

    result = await service.merge(Identity.email(user.email), Identity.ip(record.ip_address), declared_swipes=4)

    address = await UsageLedger(db_session, clock=clock).get(Identity.ip(record.ip_address))
    assert result.source == "client_declared"
    assert result.daily_swipes == 5
    assert result.ip_cleared is True
    assert address.daily_usage == 0
    assert address.total_usage == 9


@pytest.mark.asyncio
async def test_replayed_declared_merge_leaves_address_cleared(db_session: AsyncSession, clock) -> None:
    user = await UserFactory.create(db_session, UserFactory.build(clock.now))
    record = await IPUsageFactory.create(db_session, clock.now, {"daily_usage": 5, "total_usage": 5})
    service = IdentityMergeService(db_session, clock=clock)
    email, ip_address = user.email, record.ip_address

    await service.merge(Identity.email(email), Identity.ip(ip_address), declared_swipes=5)
    second = await service.merge(Identity.email(email), Identity.ip(ip_address))

    address = await UsageLedger(db_session, clock=clock).get(Identity.ip(ip_address))
    assert second.source == "ip_record"
    assert second.merged_swipes == 0
    assert second.daily_swipes == 5
    assert address.daily_usage == 0


@pytest.mark.asyncio
async def test_unknown_address_contributes_nothing(db_session: AsyncSession, clock) -> None:
    user = await UserFactory.create(db_session, UserFactory.build(clock.now, {"daily_usage": 2, "total_usage": 2}))
    service = IdentityMergeService(db_session, clock=clock)

    result = await service.merge(Identity.email(user.email), Identity.ip(None))

    assert result.source == "none"
    assert result.merged_swipes == 0
    assert result.daily_swipes == 2


@pytest.mark.asyncio
async def test_stale_anonymous_usage_is_reset_before_merge(db_session: AsyncSession, clock) -> None:
    user = await UserFactory.create(db_session, UserFactory.build(clock.now))
    record = await IPUsageFactory.create(db_session, clock.now, {"daily_usage": 7, "total_usage": 7})
    service = IdentityMergeService(db_session, clock=clock)

    clock.advance(days=1)
    result = await service.merge(Identity.email(user.email), Identity.ip(record.ip_address))

    assert result.merged_swipes == 0
    assert result.daily_swipes == 0


@pytest.mark.asyncio
async def test_failed_address_clear_does_not_fail_merge(db_session: AsyncSession, clock, monkeypatch) -> None:
    user = await UserFactory.create(db_session, UserFactory.build(clock.now, {"daily_usage": 3, "total_usage": 3}))
    record = await IPUsageFactory.create(db_session, clock.now, {"daily_usage": 5, "total_usage": 5})
    service = IdentityMergeService(db_session, clock=clock)

    async def broken_clear(ip_address: str) -> None:
        raise OperationalError("UPDATE ip_usage", {}, Exception("database is locked"))

    monkeypatch.setattr(service, "_zero_ip_daily_usage", broken_clear)

    # The rollback expires loaded rows
    email, ip_address = user.email, record.ip_address
    result = await service.merge(Identity.email(email), Identity.ip(ip_address))

    ledger = UsageLedger(db_session, clock=clock)
    account = await ledger.get(Identity.email(email))
    address = await ledger.get(Identity.ip(ip_address))
    assert result.ip_cleared is False
    assert result.daily_swipes == 8
    assert account.daily_usage == 8
    assert address.daily_usage == 5


@pytest.mark.asyncio
async def test_merge_target_must_be_an_account(db_session: AsyncSession, clock) -> None:
    service = IdentityMergeService(db_session, clock=clock)

    with pytest.raises(IdentityValidationError):
        await service.merge(Identity.ip("198.51.100.30"), Identity.ip("198.51.100.31"))
