"""Test data factories using Faker for generating realistic test data."""
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from faker import Faker
from sqlalchemy.ext.asyncio import AsyncSession

from metering.models import IPUsage, SubscriptionStatus, SubscriptionType, User

fake = Faker()


class UserFactory:
    """Factory for creating test accounts."""

    @staticmethod
    def build(now: datetime, overrides: dict[str, Any] | None = None) -> User:
        """
        Build an unsaved free account that was last reset at ``now``.

        Args:
            now: Instant used for every timestamp column
            overrides: Optional column overrides
        """
        data: dict[str, Any] = {
            "id": uuid4(),
            "email": fake.unique.email().lower(),
            "name": fake.name(),
            "picture": fake.image_url(),
            "daily_usage": 0,
            "total_usage": 0,
            "last_used": now,
            "last_reset": now,
            "daily_usage_history": {},
            "subscription_type": SubscriptionType.STANDARD,
            "subscription_status": SubscriptionStatus.INACTIVE,
            "subscription_updated_at": now,
            "is_trial": False,
            "trial_ending_soon": False,
            "cancel_at_period_end": False,
        }
        if overrides:
            data.update(overrides)
        return User(**data)

    @staticmethod
    def trialing(now: datetime, overrides: dict[str, Any] | None = None) -> User:
        """Account two hours into a three-day trial."""
        started = now - timedelta(hours=2)
        data = {
            "subscription_type": SubscriptionType.PREMIUM,
            "subscription_status": SubscriptionStatus.ACTIVE,
            "is_trial": True,
            "trial_started_at": started,
            "trial_end_date": started + timedelta(days=3),
            "stripe_customer_id": f"cus_{fake.unique.lexify('????????????')}",
        }
        data.update(overrides or {})
        return UserFactory.build(now, data)

    @staticmethod
    def premium(now: datetime, overrides: dict[str, Any] | None = None) -> User:
        """Paying account past its trial."""
        data = {
            "subscription_type": SubscriptionType.PREMIUM,
            "subscription_status": SubscriptionStatus.ACTIVE,
            "trial_started_at": now - timedelta(days=20),
            "subscription_end_date": now + timedelta(days=10),
            "stripe_customer_id": f"cus_{fake.unique.lexify('????????????')}",
        }
        data.update(overrides or {})
        return UserFactory.build(now, data)

    @staticmethod
    async def create(db: AsyncSession, user: User) -> User:
        db.add(user)
        await db.commit()
        return user


class IPUsageFactory:
    """Factory for anonymous usage records."""

    @staticmethod
    async def create(db: AsyncSession, now: datetime, overrides: dict[str, Any] | None = None) -> IPUsage:
        data: dict[str, Any] = {
            "ip_address": fake.unique.ipv4_public(),
            "daily_usage": 0,
            "total_usage": 0,
            "last_used": now,
            "last_reset": now,
        }
        if overrides:
            data.update(overrides)
        record = IPUsage(**data)
        db.add(record)
        await db.commit()
        return record
