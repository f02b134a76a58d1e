"""SQLAlchemy ORM models for persisted entities.

Separate from the Pydantic models in schemas.py which describe request and
response payloads. This layer manages persistence concerns only.
"""
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, declarative_base, relationship
from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
)

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class ConsumerRecord(Base):
    """A tenant LMS holding its own OAuth credentials."""

    __tablename__ = "consumers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    lti_consumer_key: Mapped[str] = mapped_column(
        String(255), unique=True, index=True
    )
    lti_consumer_secret: Mapped[str] = mapped_column(String(255))
    xapi_lrs_endpoint: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    xapi_lrs_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    xapi_lrs_secret: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def to_dict(self, include_secret: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "ltiConsumerKey": self.lti_consumer_key,
            "xapiLrsEndpoint": self.xapi_lrs_endpoint,
            "active": self.active,
            "createdAt": self.created_at.isoformat(),
        }
        if include_secret:
            data["ltiConsumerSecret"] = self.lti_consumer_secret
        return data


class CourseRecord(Base):
    """An ingested SCORM package."""

    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scorm_version: Mapped[str] = mapped_column(String(20))
    launch_path: Mapped[str] = mapped_column(String(500))
    manifest_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    content_path: Mapped[str] = mapped_column(String(500))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def to_dict(self, include_manifest: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "scormVersion": self.scorm_version,
            "launchPath": self.launch_path,
            "active": self.active,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if include_manifest:
            data["manifest"] = self.manifest_data
        return data


class LaunchRecord(Base):
    """One inbound launch event, LTI or dispatch. Never updated."""

    __tablename__ = "launches"
    __table_args__ = (Index("ix_launches_user_course", "user_id", "course_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    consumer_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("consumers.id"), nullable=True
    )
    course_id: Mapped[str] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE")
    )
    user_id: Mapped[str] = mapped_column(String(255))
    context_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resource_link_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    lis_outcome_service_url: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    lis_result_sourcedid: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    launch_data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    consumer: Mapped[Optional[ConsumerRecord]] = relationship(lazy="raise")
    course: Mapped[CourseRecord] = relationship(lazy="raise")

    @property
    def is_dispatch(self) -> bool:
        return (self.launch_data or {}).get("type") == "dispatch"

    @property
    def has_outcome_service(self) -> bool:
        return bool(self.lis_outcome_service_url and self.lis_result_sourcedid)


class AttemptRecord(Base):
    """One learner's session against a course, tied to a single launch.

    ``open_key`` is set to ``"<course_id>:<learner_id>"`` for attempts opened
    by an LTI launch and cleared on finish; the unique constraint keeps at
    most one such open attempt per learner and course.
    """

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    launch_id: Mapped[str] = mapped_column(
        ForeignKey("launches.id", ondelete="CASCADE"), index=True
    )
    cmi_data: Mapped[dict] = mapped_column(JSON, default=dict)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    completion_status: Mapped[str] = mapped_column(
        String(50), default="not attempted"
    )
    success_status: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )
    total_time: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    open_key: Mapped[Optional[str]] = mapped_column(
        String(600), unique=True, nullable=True
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    launch: Mapped[LaunchRecord] = relationship(lazy="raise")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "launchId": self.launch_id,
            "cmiData": self.cmi_data or {},
            "score": self.score,
            "completionStatus": self.completion_status,
            "successStatus": self.success_status,
            "totalTime": self.total_time,
            "startedAt": self.started_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "finishedAt": (
                self.finished_at.isoformat() if self.finished_at else None
            ),
        }


class DispatchTokenRecord(Base):
    """Bearer capability binding one consumer to one course."""

    __tablename__ = "dispatch_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    consumer_id: Mapped[str] = mapped_column(ForeignKey("consumers.id"))
    course_id: Mapped[str] = mapped_column(
        ForeignKey("courses.id", ondelete="CASCADE")
    )
    token: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )


class SettingRecord(Base):
    """Key/value store for live-editable configuration."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
