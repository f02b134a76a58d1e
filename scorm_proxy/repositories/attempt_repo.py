"""Repository layer for launches and attempts.

Launch rows are immutable once written. Attempts are only changed through
``save_runtime`` (commit) and ``finish``.
"""
from __future__ import annotations
import uuid
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from sqlalchemy import func, select

from scorm_proxy.models.records import (
    AttemptRecord,
    ConsumerRecord,
    CourseRecord,
    LaunchRecord,
)


class AttemptNotFoundError(Exception):
    """Raised when an attempt record could not be located."""


def open_attempt_key(course_id: str, learner_id: str) -> str:
    return f"{course_id}:{learner_id}"


class AttemptRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # CREATE -----------------------------------------------------------------
    async def create_launch_with_attempt(
        self, launch: LaunchRecord, open_key: Optional[str] = None
    ) -> AttemptRecord:
        """Insert a launch and its first attempt in one transaction."""
        launch.id = launch.id or str(uuid.uuid4())
        attempt = AttemptRecord(
            id=str(uuid.uuid4()),
            launch_id=launch.id,
            cmi_data={},
            open_key=open_key,
        )
        self.session.add(launch)
        await self.session.flush()
        self.session.add(attempt)
        await self.session.commit()
        await self.session.refresh(attempt)
        return attempt

    async def establish_open_attempt(
        self, launch: LaunchRecord, open_key: str
    ) -> Tuple[AttemptRecord, bool]:
        """Create launch + attempt unless a concurrent launch already opened
        one for the same key; returns ``(attempt, created)``."""
        try:
            return await self.create_launch_with_attempt(launch, open_key), True
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_by_open_key(open_key)
            if existing is None:
                raise
            return existing, False

    # READ -------------------------------------------------------------------
    async def find_open_attempt(
        self, learner_id: str, course_id: str
    ) -> Optional[AttemptRecord]:
        result = await self.session.execute(
            select(AttemptRecord)
            .join(LaunchRecord, AttemptRecord.launch_id == LaunchRecord.id)
            .where(
                LaunchRecord.user_id == learner_id,
                LaunchRecord.course_id == course_id,
                AttemptRecord.finished_at.is_(None),
            )
            .order_by(AttemptRecord.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_open_key(self, open_key: str) -> Optional[AttemptRecord]:
        result = await self.session.execute(
            select(AttemptRecord).where(AttemptRecord.open_key == open_key)
        )
        return result.scalar_one_or_none()

    async def get(self, attempt_id: str) -> AttemptRecord:
        record = await self.session.get(AttemptRecord, attempt_id)
        if not record:
            raise AttemptNotFoundError
        return record

    async def get_with_context(self, attempt_id: str) -> AttemptRecord:
        """Attempt with its launch, consumer and course loaded."""
        result = await self.session.execute(
            select(AttemptRecord)
            .where(AttemptRecord.id == attempt_id)
            .options(
                joinedload(AttemptRecord.launch).joinedload(LaunchRecord.consumer),
                joinedload(AttemptRecord.launch).joinedload(LaunchRecord.course),
            )
        )
        record = result.scalar_one_or_none()
        if not record:
            raise AttemptNotFoundError
        return record

    async def list_recent_launches(self, limit: int = 50) -> List[dict]:
        result = await self.session.execute(
            select(
                LaunchRecord.id,
                LaunchRecord.user_id,
                LaunchRecord.created_at,
                CourseRecord.title,
                ConsumerRecord.name,
                AttemptRecord.completion_status,
                AttemptRecord.score,
            )
            .join(CourseRecord, LaunchRecord.course_id == CourseRecord.id)
            .outerjoin(ConsumerRecord, LaunchRecord.consumer_id == ConsumerRecord.id)
            .outerjoin(AttemptRecord, AttemptRecord.launch_id == LaunchRecord.id)
            .order_by(LaunchRecord.created_at.desc())
            .limit(limit)
        )
        return [
            {
                "id": row.id,
                "userId": row.user_id,
                "courseTitle": row.title,
                "consumerName": row.name,
                "createdAt": row.created_at.isoformat(),
                "completionStatus": row.completion_status,
                "score": row.score,
            }
            for row in result.all()
        ]

    async def stats(self) -> dict:
        consumers = select(func.count()).select_from(ConsumerRecord).where(
            ConsumerRecord.active.is_(True)
        )
        courses = select(func.count()).select_from(CourseRecord).where(
            CourseRecord.active.is_(True)
        )
        launches = select(func.count()).select_from(LaunchRecord)
        completions = select(func.count()).select_from(AttemptRecord).where(
            AttemptRecord.completion_status == "completed"
        )
        return {
            "totalConsumers": (await self.session.execute(consumers)).scalar_one(),
            "totalCourses": (await self.session.execute(courses)).scalar_one(),
            "totalLaunches": (await self.session.execute(launches)).scalar_one(),
            "totalCompletions": (await self.session.execute(completions)).scalar_one(),
        }

    # UPDATE -----------------------------------------------------------------
    async def save_runtime(
        self,
        attempt: AttemptRecord,
        cmi_data: dict,
        score: Optional[float],
        completion_status: str,
        success_status: Optional[str],
        total_time: Optional[str],
    ) -> AttemptRecord:
        attempt.cmi_data = dict(cmi_data)
        attempt.score = score
        attempt.completion_status = completion_status
        attempt.success_status = success_status
        attempt.total_time = total_time
        attempt.updated_at = datetime.utcnow()
        await self.session.commit()
        return attempt

    async def finish(self, attempt_id: str) -> AttemptRecord:
        attempt = await self.get(attempt_id)
        attempt.finished_at = datetime.utcnow()
        attempt.open_key = None
        await self.session.commit()
        await self.session.refresh(attempt)
        return attempt
