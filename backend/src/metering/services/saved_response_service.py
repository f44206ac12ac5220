"""Service for the per-account saved response list."""
from datetime import datetime

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import SignInRequiredError
from metering.models.saved_response import SavedResponse
from metering.models.user import User
from metering.schemas.learning import SavedResponseCreate
from metering.services.identity import Identity
from metering.services.usage_service import UsageLedger

logger = structlog.get_logger(__name__)


class SavedResponseService:
    """Append, list and delete saved responses for an account."""

    def __init__(self, db: AsyncSession, ledger: UsageLedger | None = None):
        self.db = db
        self.ledger = ledger or UsageLedger(db)

    async def _account(self, identity: Identity) -> User:
        if not identity.is_email:
            raise SignInRequiredError("Saved responses require a signed-in account")
        return await self.ledger.get_or_create(identity)

    async def save(self, identity: Identity, data: SavedResponseCreate) -> SavedResponse:
        """
        Append a response to the caller's list.

        Raises:
            SignInRequiredError: If the caller is anonymous
        """
        user = await self._account(identity)
        saved = SavedResponse(
            user_id=user.id,
            text=data.text,
            context=data.context,
            last_message=data.last_message,
            created_at=self.ledger.clock(),
        )
        self.db.add(saved)
        await self.db.flush()
        await self.db.refresh(saved)

        logger.info("saved_response_created", user_id=str(user.id), saved_response_id=str(saved.id))
        return saved

    async def list_responses(self, identity: Identity) -> list[SavedResponse]:
        """Saved responses, newest first."""
        user = await self._account(identity)
        result = await self.db.execute(
            select(SavedResponse)
            .where(SavedResponse.user_id == user.id)
            .order_by(SavedResponse.created_at.desc())
        )
        return list(result.scalars().all())

    async def remove(self, identity: Identity, created_at: datetime) -> int:
        """
        Remove the caller's responses saved at ``created_at``.

        The list is otherwise append-only. This is the one explicit,
        user-initiated delete, keyed by ``createdAt`` as the client shows it.
        Rows are hard-deleted and learning percentage drops accordingly.
        """
        user = await self._account(identity)
        result = await self.db.execute(
            delete(SavedResponse).where(
                SavedResponse.user_id == user.id,
                SavedResponse.created_at == created_at,
            )
        )
        logger.info("saved_response_deleted", user_id=str(user.id), deleted=result.rowcount)
        return result.rowcount
