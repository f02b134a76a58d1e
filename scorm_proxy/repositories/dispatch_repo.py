"""Repository layer for dispatch tokens.

At most one active token exists per (consumer, course) pair: callers always
go through :meth:`DispatchTokenRepository.get_or_create`.
"""
from __future__ import annotations
import uuid
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from scorm_proxy.models.records import DispatchTokenRecord


class DispatchTokenRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, token: str) -> Optional[DispatchTokenRecord]:
        result = await self.session.execute(
            select(DispatchTokenRecord).where(
                DispatchTokenRecord.token == token,
                DispatchTokenRecord.active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def find_for_pair(
        self, consumer_id: str, course_id: str
    ) -> Optional[DispatchTokenRecord]:
        result = await self.session.execute(
            select(DispatchTokenRecord)
            .where(
                DispatchTokenRecord.consumer_id == consumer_id,
                DispatchTokenRecord.course_id == course_id,
                DispatchTokenRecord.active.is_(True),
            )
            .order_by(DispatchTokenRecord.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self, consumer_id: str, course_id: str
    ) -> DispatchTokenRecord:
        existing = await self.find_for_pair(consumer_id, course_id)
        if existing:
            return existing
        record = DispatchTokenRecord(
            consumer_id=consumer_id,
            course_id=course_id,
            token=str(uuid.uuid4()),
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record
