"""
Upsert Resolver

Decides whether a canonical record creates a new property or updates the
offer of an existing one. Identity is the exact normalized address tuple.
"""
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from src.offerlookup.db.models import Property
from src.offerlookup.db.repository import PropertyRepository
from src.offerlookup.transformers.record_mapper import PropertyRecord
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)


class UpsertResolver:
    """
    Insert-or-update of a single record inside the caller's transaction.

    Only the offer and updated_at of an existing property change on a
    match; owner names and created_at keep their stored values.
    """

    def __init__(self, repository: Optional[PropertyRepository] = None):
        self.repository = repository or PropertyRepository()

    async def resolve(self, session: AsyncSession, record: PropertyRecord) -> Tuple[Property, bool]:
        """
        Apply a record to the properties table.

        Args:
            session: Session holding the batch transaction
            record: Canonical record

        Returns:
            Tuple of (stored property, True if it was created)
        """
        existing = await self.repository.find_by_address_tuple(session, *record.address_tuple)

        if existing is None:
            created = await self.repository.create(session, **record.to_model_kwargs())
            return created, True

        if round(existing.offer or 0.0, 2) != record.offer:
            logger.debug(
                "property_offer_changed",
                property_id=existing.id,
                old_offer=existing.offer,
                new_offer=record.offer,
            )
            await self.repository.update_offer(session, existing, record.offer, record.updated_at)

        return existing, False
