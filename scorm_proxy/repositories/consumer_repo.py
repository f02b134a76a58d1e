"""Repository layer for LTI consumers (tenant LMSs).

Credentials are generated once on creation and never rotated here.
"""
from __future__ import annotations
import secrets
import uuid
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from scorm_proxy.models.records import ConsumerRecord


class ConsumerNotFoundError(Exception):
    """Raised when a consumer record could not be located."""


def generate_credentials() -> tuple[str, str]:
    """``(consumer_key, consumer_secret)`` for a new consumer."""
    key = f"key_{uuid.uuid4().hex[:16]}"
    secret = secrets.token_hex(16)
    return key, secret


class ConsumerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        xapi_lrs_endpoint: Optional[str] = None,
        xapi_lrs_key: Optional[str] = None,
        xapi_lrs_secret: Optional[str] = None,
    ) -> ConsumerRecord:
        key, secret = generate_credentials()
        record = ConsumerRecord(
            name=name,
            lti_consumer_key=key,
            lti_consumer_secret=secret,
            xapi_lrs_endpoint=xapi_lrs_endpoint or None,
            xapi_lrs_key=xapi_lrs_key or None,
            xapi_lrs_secret=xapi_lrs_secret or None,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def list(self) -> Sequence[ConsumerRecord]:
        result = await self.session.execute(
            select(ConsumerRecord).order_by(ConsumerRecord.created_at.desc())
        )
        return result.scalars().all()

    async def get(self, consumer_id: str) -> ConsumerRecord:
        record = await self.session.get(ConsumerRecord, consumer_id)
        if not record:
            raise ConsumerNotFoundError
        return record

    async def get_active(self, consumer_id: str) -> ConsumerRecord:
        record = await self.get(consumer_id)
        if not record.active:
            raise ConsumerNotFoundError
        return record

    async def get_active_by_key(self, consumer_key: str) -> Optional[ConsumerRecord]:
        result = await self.session.execute(
            select(ConsumerRecord).where(
                ConsumerRecord.lti_consumer_key == consumer_key,
                ConsumerRecord.active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def deactivate(self, consumer_id: str) -> ConsumerRecord:
        record = await self.get(consumer_id)
        record.active = False
        await self.session.commit()
        await self.session.refresh(record)
        return record
