"""Repository layer for Course persistence.

Provides an abstraction over direct SQLAlchemy session usage so that routers
and services remain thin and testable. Courses are soft-deleted: rows stay
and ``active`` is cleared.
"""
from __future__ import annotations
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from scorm_proxy.models.records import CourseRecord
from scorm_proxy.models.schemas import ManifestData


class CourseNotFoundError(Exception):
    """Raised when a course record could not be located."""


class CourseRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # CREATE -----------------------------------------------------------------
    async def create(
        self,
        course_id: str,
        title: str,
        manifest: ManifestData,
        content_path: str,
        description: Optional[str] = None,
    ) -> CourseRecord:
        record = CourseRecord(
            id=course_id,
            title=title,
            description=description,
            scorm_version=manifest.scormVersion,
            launch_path=manifest.launchPath,
            manifest_data=manifest.model_dump(mode="json"),
            content_path=content_path,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    # READ -------------------------------------------------------------------
    async def list(self) -> Sequence[CourseRecord]:
        result = await self.session.execute(
            select(CourseRecord).order_by(CourseRecord.created_at.desc())
        )
        return result.scalars().all()

    async def get(self, course_id: str) -> CourseRecord:
        record = await self.session.get(CourseRecord, course_id)
        if not record:
            raise CourseNotFoundError
        return record

    async def get_active(self, course_id: str) -> CourseRecord:
        record = await self.session.get(CourseRecord, course_id)
        if not record or not record.active:
            raise CourseNotFoundError
        return record

    async def first_active(self) -> Optional[CourseRecord]:
        result = await self.session.execute(
            select(CourseRecord)
            .where(CourseRecord.active.is_(True))
            .order_by(CourseRecord.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # UPDATE -----------------------------------------------------------------
    async def replace_content(
        self,
        course_id: str,
        manifest: ManifestData,
        content_path: str,
        title: Optional[str] = None,
    ) -> CourseRecord:
        record = await self.get(course_id)
        if title is not None:
            record.title = title
        record.scorm_version = manifest.scormVersion
        record.launch_path = manifest.launchPath
        record.manifest_data = manifest.model_dump(mode="json")
        record.content_path = content_path
        await self.session.commit()
        await self.session.refresh(record)
        return record

    # DELETE -----------------------------------------------------------------
    async def deactivate(self, course_id: str) -> CourseRecord:
        record = await self.get(course_id)
        record.active = False
        await self.session.commit()
        await self.session.refresh(record)
        return record
